"""
Recovery of the structured activity payload from raw model output.

Free-text models often wrap the JSON in markdown fences or surround it with
prose. Extraction tries, in order:

1. The first fenced code block (```json ... ``` or ``` ... ```)
2. The first balanced {...} or [...] span, found by a string- and
   escape-aware scan

The parsed value must be an object with an ``atividades`` list.
"""

import json
import logging
import re
from typing import Any, List, Optional

from pydantic import ValidationError

from app.models.activity import GeneratedActivity
from app.services.errors import (
    MalformedPayloadError,
    NoStructuredPayloadFoundError,
    UnexpectedPayloadShapeError,
)

logger = logging.getLogger(__name__)

ACTIVITIES_FIELD = "atividades"

_FENCED_BLOCK = re.compile(r"```(?:json|JSON)?[ \t]*\r?\n?([\s\S]*?)```")

_CLOSERS = {"{": "}", "[": "]"}


def find_fenced_block(text: str) -> Optional[str]:
    """Return the body of the first fenced code block, if any."""
    match = _FENCED_BLOCK.search(text)
    if match is None:
        return None
    body = match.group(1).strip()
    return body or None


def find_balanced_span(text: str) -> Optional[str]:
    """
    Return the first balanced JSON-looking span in ``text``.

    Scanning starts at the first ``{`` or ``[``. Brackets inside string
    literals are ignored, honouring backslash escapes. Returns None when the
    opening bracket is never closed.
    """
    starts = [i for i in (text.find("{"), text.find("[")) if i != -1]
    if not starts:
        return None
    start = min(starts)

    stack: List[str] = []
    in_string = False
    escaped = False

    for i in range(start, len(text)):
        char = text[i]

        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue

        if char == '"':
            in_string = True
        elif char in _CLOSERS:
            stack.append(_CLOSERS[char])
        elif char in ("}", "]"):
            if not stack or stack[-1] != char:
                # Mismatched closer: the span is not valid JSON structure
                return None
            stack.pop()
            if not stack:
                return text[start:i + 1]

    return None


def _try_parse(candidate: str) -> Optional[Any]:
    try:
        return json.loads(candidate)
    except (json.JSONDecodeError, ValueError, RecursionError):
        return None


def locate_payload(text: str) -> Any:
    """
    Find and parse the structured payload embedded in ``text``.

    Raises:
        NoStructuredPayloadFoundError: If no balanced span exists
        MalformedPayloadError: If the candidate span is not valid JSON
    """
    fenced = find_fenced_block(text)
    if fenced is not None:
        parsed = _try_parse(fenced)
        if parsed is not None:
            return parsed
        logger.debug("Fenced block did not parse; scanning for a balanced span")

    candidate = find_balanced_span(text)
    if candidate is None:
        raise NoStructuredPayloadFoundError(
            "A IA retornou uma resposta que não contém um JSON válido.",
            excerpt=text,
        )

    try:
        return json.loads(candidate)
    except (json.JSONDecodeError, ValueError, RecursionError) as e:
        raise MalformedPayloadError(
            f"Falha ao analisar o JSON da resposta da IA: {e}",
            excerpt=candidate,
        ) from e


def validate_payload(payload: Any, raw_text: str = "") -> List[GeneratedActivity]:
    """
    Check the top-level shape and convert entries into GeneratedActivity.

    Raises:
        UnexpectedPayloadShapeError: If ``atividades`` is missing, not a list,
            or holds entries that are not activity objects
    """
    if not isinstance(payload, dict) or ACTIVITIES_FIELD not in payload:
        raise UnexpectedPayloadShapeError(
            "A resposta da IA não corresponde à estrutura esperada "
            f"(falta a chave '{ACTIVITIES_FIELD}' na resposta JSON).",
            excerpt=raw_text or json.dumps(payload, ensure_ascii=False),
        )

    entries = payload[ACTIVITIES_FIELD]
    if not isinstance(entries, list):
        raise UnexpectedPayloadShapeError(
            f"A chave '{ACTIVITIES_FIELD}' da resposta da IA não é uma lista.",
            excerpt=raw_text or json.dumps(payload, ensure_ascii=False),
        )

    activities: List[GeneratedActivity] = []
    for index, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise UnexpectedPayloadShapeError(
                f"A atividade {index + 1} da resposta da IA não é um objeto JSON.",
                excerpt=json.dumps(entry, ensure_ascii=False),
            )
        try:
            activities.append(GeneratedActivity.model_validate(entry))
        except ValidationError as e:
            raise UnexpectedPayloadShapeError(
                f"A atividade {index + 1} da resposta da IA está incompleta: "
                f"{e.error_count()} campo(s) inválido(s).",
                excerpt=json.dumps(entry, ensure_ascii=False),
            ) from e

    return activities


def extract_activities(text: Optional[str], structured: bool = False) -> List[GeneratedActivity]:
    """
    Recover the activity list from a model response.

    Args:
        text: Raw response text
        structured: True when the backend constrained the response to the
            schema; the search steps are skipped and the text is parsed as is

    Returns:
        Activities in the order the model returned them

    Raises:
        NoStructuredPayloadFoundError: Empty response or no JSON found
        MalformedPayloadError: JSON found but invalid
        UnexpectedPayloadShapeError: JSON valid but not the expected shape
    """
    if text is None or not text.strip():
        raise NoStructuredPayloadFoundError("A IA retornou uma resposta vazia.", excerpt=text or "")

    if structured:
        try:
            payload = json.loads(text)
        except (json.JSONDecodeError, ValueError, RecursionError) as e:
            raise MalformedPayloadError(
                f"Falha ao analisar o JSON estruturado da IA: {e}",
                excerpt=text,
            ) from e
    else:
        payload = locate_payload(text)

    return validate_payload(payload, raw_text=text)
