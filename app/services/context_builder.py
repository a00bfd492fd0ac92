"""
Retrieval context assembly under a fixed character budget.

Support documents are parsed concurrently, framed with start/end delimiters
and joined in input order. When the framed result does not fit the budget,
each document receives a share of the budget proportional to its length and
is cut at a word boundary, followed by a truncation marker.

The returned context is never longer than the budget.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from app.models.document import (
    ContextReport,
    DocumentStatus,
    ExcludedDocument,
    StoredDocument,
)
from app.services.document_parser import parse_document
from app.services.errors import DocumentParseError

logger = logging.getLogger(__name__)

DOCUMENT_SEPARATOR = "\n\n"
TRUNCATION_MARKER = "\n[... conteúdo truncado para respeitar o limite de contexto ...]"

# What happened to each document while combining
FULL = "full"
TRUNCATED = "truncated"
DROPPED = "dropped"


def document_start(name: str) -> str:
    return f"### INÍCIO DO DOCUMENTO: {name} ###"


def document_end(name: str) -> str:
    return f"### FIM DO DOCUMENTO: {name} ###"


def frame_document(name: str, text: str, truncated: bool = False) -> str:
    """Wrap document text in its delimiter pair."""
    framed = f"{document_start(name)}\n{text}\n{document_end(name)}"
    if truncated:
        framed += TRUNCATION_MARKER
    return framed


def _framing_overhead(name: str) -> int:
    # Length of the frame around an empty body, plus the marker
    return len(frame_document(name, "", truncated=True))


def truncate_words(text: str, limit: int) -> str:
    """
    Cut ``text`` to at most ``limit`` characters without splitting a word.

    The cut falls on the last whitespace at or before ``limit``; trailing
    whitespace is dropped. Text with no whitespace inside the limit yields
    an empty string.

    Args:
        text: Text to shorten
        limit: Maximum length of the result

    Returns:
        ``text`` unchanged when it already fits, otherwise a word-safe prefix
    """
    if limit <= 0:
        return ""
    if len(text) <= limit:
        return text

    # Leading whitespace is not a word boundary worth keeping
    text = text.lstrip()
    if len(text) <= limit:
        return text

    if text[limit].isspace():
        return text[:limit].rstrip()

    head = text[:limit]
    cut = len(head) - 1
    while cut > 0 and not head[cut].isspace():
        cut -= 1
    if cut <= 0:
        return ""
    return head[:cut].rstrip()


def allocate_shares(lengths: Sequence[int], budget: int) -> List[int]:
    """
    Split ``budget`` across documents proportionally to their lengths.

    Each share is ``floor(length / total * budget)``. A zero total yields
    zero shares.
    """
    total = sum(lengths)
    if total <= 0 or budget <= 0:
        return [0 for _ in lengths]
    return [(length * budget) // total for length in lengths]


def combine_texts(named_texts: Sequence[Tuple[str, str]], budget: int) -> Tuple[str, List[str]]:
    """
    Combine already-parsed texts into one context no longer than ``budget``.

    Args:
        named_texts: ``(name, text)`` pairs in the order they must appear
        budget: Maximum length of the result

    Returns:
        Tuple of (context, fate per input) where each fate is one of
        FULL, TRUNCATED or DROPPED, aligned with ``named_texts``
    """
    dropped = [DROPPED] * len(named_texts)
    if budget <= 0 or not named_texts:
        return "", dropped

    total_length = sum(len(text) for _, text in named_texts)
    if total_length == 0:
        return "", dropped

    framed = [frame_document(name, text) for name, text in named_texts]
    full = DOCUMENT_SEPARATOR.join(framed)
    if len(full) <= budget:
        return full, [FULL] * len(named_texts)

    logger.warning(
        f"Support material ({total_length} chars, {len(full)} framed) exceeds the "
        f"context budget ({budget} chars); truncating proportionally"
    )

    # Reserve delimiters, separators and one marker per document
    overhead = sum(_framing_overhead(name) for name, _ in named_texts)
    overhead += len(DOCUMENT_SEPARATOR) * (len(named_texts) - 1)
    text_budget = budget - overhead
    if text_budget <= 0:
        logger.warning(
            f"Context budget ({budget} chars) cannot hold the document framing "
            f"({overhead} chars); proceeding without support material"
        )
        return "", dropped

    shares = allocate_shares([len(text) for _, text in named_texts], text_budget)

    segments: List[str] = []
    fates: List[str] = []
    for (name, text), share in zip(named_texts, shares):
        if len(text) <= share:
            segments.append(frame_document(name, text))
            fates.append(FULL)
            continue

        cut = truncate_words(text, share)
        if not cut:
            logger.warning(
                f"Document '{name}' dropped: its share of the budget ({share} chars) "
                "holds no whole word"
            )
            fates.append(DROPPED)
            continue
        segments.append(frame_document(name, cut, truncated=True))
        fates.append(TRUNCATED)

    return DOCUMENT_SEPARATOR.join(segments), fates


@dataclass(frozen=True)
class ParsedDocument:
    document: StoredDocument
    text: str


async def _parse_one(document: StoredDocument) -> Tuple[StoredDocument, Optional[str], Optional[str]]:
    try:
        return document, await parse_document(document), None
    except DocumentParseError as e:
        return document, None, e.message


async def parse_documents(
    documents: Sequence[StoredDocument],
) -> Tuple[List[ParsedDocument], List[ExcludedDocument]]:
    """
    Parse every ``ready`` document concurrently.

    A document that is not ready, or fails to parse, is excluded and reported;
    the others continue. Results keep the input order.

    Returns:
        Tuple of (parsed documents, excluded documents)
    """
    excluded: List[ExcludedDocument] = []
    eligible: List[StoredDocument] = []
    for doc in documents:
        if doc.status == DocumentStatus.READY:
            eligible.append(doc)
        else:
            excluded.append(
                ExcludedDocument(id=doc.id, name=doc.name, reason=f"status is {doc.status.value}")
            )

    # Fan out, then join every outcome before anything is budgeted
    outcomes = await asyncio.gather(*(_parse_one(doc) for doc in eligible))

    parsed: List[ParsedDocument] = []
    for doc, text, error in outcomes:
        if error is not None:
            logger.warning(f"Excluding document '{doc.name}' from context: {error}")
            excluded.append(ExcludedDocument(id=doc.id, name=doc.name, reason=error))
            continue
        parsed.append(ParsedDocument(document=doc, text=text or ""))

    return parsed, excluded


def assemble_context(
    parsed: Sequence[ParsedDocument],
    budget: int,
    excluded: Sequence[ExcludedDocument] = (),
) -> ContextReport:
    """Combine parsed documents under ``budget`` and report what happened to each."""
    budget = max(0, budget)
    report = ContextReport(budget=budget, excluded=list(excluded))

    report.context, fates = combine_texts([(p.document.name, p.text) for p in parsed], budget)

    for item, fate in zip(parsed, fates):
        doc = item.document
        if fate == DROPPED:
            report.excluded.append(
                ExcludedDocument(id=doc.id, name=doc.name, reason="no room in context budget")
            )
            continue
        report.included.append(doc.name)
        if fate == TRUNCATED:
            report.truncated.append(doc.name)

    return report
