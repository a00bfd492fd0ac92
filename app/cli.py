"""
Command-line interface for the BNCC activity generator.

Usage:
    python -m app generate --subject Matemática --topic Frações --grade "6º Ano" \\
        --pillar Algoritmos --level Médio [--quantity 2] [--document notes.pdf ...] \\
        [--output activities.json] [--pdf activities.pdf]
"""

import argparse
import asyncio
import json
import mimetypes
import sys
import uuid
from pathlib import Path
from typing import List, Optional, Sequence

from pydantic import ValidationError

from app.config import get_settings
from app.middleware.logging import configure_logging
from app.models.activity import (
    Activity,
    ActivityLevel,
    ActivityRequest,
    ComputationalThinkingPillar,
)
from app.models.document import DocumentStatus, StoredDocument
from app.services.activity_generator import ActivityGenerator
from app.services.document_parser import encode_content
from app.services.errors import RateLimitedError
from app.services.file_validator import EXTENSION_MEDIA_TYPES
from app.services.model_backends import create_model_backend
from app.services.pdf_export import export_activities_to_pdf


def create_parser() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="bncc-activities",
        description="BNCC Activity Generator CLI - generate lesson plans locally"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    generate_parser = subparsers.add_parser(
        "generate",
        help="Generate activities, optionally grounded on local documents"
    )
    generate_parser.add_argument("--subject", "-s", required=True, help="Disciplina")
    generate_parser.add_argument("--topic", "-t", required=True, help="Tópico da aula")
    generate_parser.add_argument("--grade", "-g", required=True, help="Turma/ano")
    generate_parser.add_argument(
        "--pillar",
        required=True,
        choices=[p.value for p in ComputationalThinkingPillar],
        help="Pilar do pensamento computacional"
    )
    generate_parser.add_argument(
        "--level",
        required=True,
        choices=[lvl.value for lvl in ActivityLevel],
        help="Nível de dificuldade"
    )
    generate_parser.add_argument(
        "--quantity", "-n", type=int, default=1, help="Number of activities (1-5, default: 1)"
    )
    generate_parser.add_argument(
        "--document",
        "-d",
        action="append",
        default=[],
        help="Support document (.txt, .md, .pdf, .docx); repeatable"
    )
    generate_parser.add_argument(
        "--output", "-o", type=str, default=None, help="Write activities as JSON to this file"
    )
    generate_parser.add_argument(
        "--pdf", type=str, default=None, help="Export the activities to this PDF file"
    )

    return parser


def guess_media_type(path: Path) -> str:
    extension = path.suffix.lower()
    if extension in EXTENSION_MEDIA_TYPES:
        return EXTENSION_MEDIA_TYPES[extension]
    guessed, _ = mimetypes.guess_type(path.name)
    return guessed or "application/octet-stream"


def load_documents(paths: Sequence[str]) -> List[StoredDocument]:
    """
    Read local files as ready documents.

    Parsing happens inside the pipeline, so unreadable or unsupported files
    are reported as excluded rather than aborting the run.

    Raises:
        FileNotFoundError: If a path does not exist
    """
    documents = []
    for raw_path in paths:
        path = Path(raw_path)
        if not path.is_file():
            raise FileNotFoundError(f"Document not found: {path}")
        documents.append(
            StoredDocument(
                id=str(uuid.uuid4()),
                name=path.name,
                media_type=guess_media_type(path),
                content=encode_content(path.read_bytes()),
                status=DocumentStatus.READY,
            )
        )
    return documents


async def generate_command(args: argparse.Namespace) -> int:
    """
    Execute the generate command.

    Returns:
        int: Exit code (0 for success, 1 for error)
    """
    try:
        settings = get_settings()
    except ValueError as e:
        print(f"Configuration error: {e}")
        print("\nMake sure you have a .env file with:")
        print("  GEMINI_API_KEY=your_api_key")
        print("or select another backend with MODEL_BACKEND=apifreellm")
        return 1

    configure_logging(settings.log_level)

    try:
        request = ActivityRequest(
            subject=args.subject,
            topic=args.topic,
            grade=args.grade,
            pillar=args.pillar,
            level=args.level,
            quantity=args.quantity,
        )
    except ValidationError as e:
        print(f"Invalid request: {e}")
        return 1

    try:
        documents = load_documents(args.document)
        backend = create_model_backend(settings)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: {e}")
        return 1

    generator = ActivityGenerator(
        backend,
        max_prompt_chars=settings.max_prompt_chars,
        timeout_seconds=settings.model_timeout_seconds,
    )
    outcome = await generator.run(request, documents)

    for excluded in outcome.excluded_documents:
        print(f"Document skipped: {excluded.name} ({excluded.reason})", file=sys.stderr)
    if outcome.truncated_documents:
        print(f"Documents truncated: {', '.join(outcome.truncated_documents)}", file=sys.stderr)

    if outcome.failure is not None:
        print(f"Generation failed ({outcome.failure.kind.value}): {outcome.failure.message}")
        if isinstance(generator.error, RateLimitedError):
            print(f"Retry after {generator.error.retry_after} seconds.")
        return 1

    for warning in outcome.warnings:
        print(f"Warning: {warning}", file=sys.stderr)

    activities = [
        Activity.from_generated(generated, request, str(uuid.uuid4()))
        for generated in outcome.activities
    ]
    payload = json.dumps(
        [a.model_dump(mode="json", by_alias=True) for a in activities],
        ensure_ascii=False,
        indent=2,
    )

    if args.output:
        Path(args.output).write_text(payload, encoding="utf-8")
        print(f"Wrote {len(activities)} activities to {args.output}")
    else:
        print(payload)

    if args.pdf:
        Path(args.pdf).write_bytes(export_activities_to_pdf(activities))
        print(f"Exported PDF to {args.pdf}")

    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    """
    Main CLI entry point.

    Returns:
        int: Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    if args.command == "generate":
        return asyncio.run(generate_command(args))

    print(f"Unknown command: {args.command}")
    return 1


if __name__ == "__main__":
    sys.exit(main())
