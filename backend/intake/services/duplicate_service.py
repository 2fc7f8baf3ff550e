"""
Duplicate and lineage detection.

Exact duplicates are byte-identical uploads (same SHA-256) and are rejected.
Similar documents are only candidates for linking as a new version: filename
edit distance and token overlap of the extracted text are scored separately
and combined with a plain average when both clear the threshold.
"""
import logging
import re
from dataclasses import dataclass

from sqlalchemy.orm import Session

from intake.config import Settings, settings as default_settings
from intake.models.document import Document

logger = logging.getLogger("intake.duplicates")

_NON_WORD = re.compile(r"[^\w\s]")


@dataclass
class SimilarityMatch:
    id: str
    file_name: str
    document_type: str | None
    similarity_score: float
    match_type: str  # "filename", "text" or "both"


def levenshtein_distance(a: str, b: str) -> int:
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def filename_similarity(a: str, b: str) -> float:
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1 - levenshtein_distance(a.lower(), b.lower()) / longest


def _tokens(text: str) -> set[str]:
    return {word for word in _NON_WORD.sub(" ", text.lower()).split() if len(word) > 2}


def jaccard_similarity(a: str, b: str) -> float:
    if not a or not b:
        return 0.0
    tokens_a, tokens_b = _tokens(a), _tokens(b)
    if not tokens_a and not tokens_b:
        return 1.0
    if not tokens_a or not tokens_b:
        return 0.0
    return len(tokens_a & tokens_b) / len(tokens_a | tokens_b)


def find_exact_duplicate(db: Session, user_id: str, file_hash: str) -> Document | None:
    """Byte-identical document among the user's live documents. Same name, different hash is not a duplicate."""
    return (
        db.query(Document)
        .filter(
            Document.user_id == user_id,
            Document.file_hash == file_hash,
            Document.deleted_at.is_(None),
        )
        .order_by(Document.created_at)
        .first()
    )


def score_candidate(
    file_name: str,
    extracted_text: str | None,
    candidate: Document,
    threshold: float,
    text_prefix: int,
) -> SimilarityMatch | None:
    name_score = filename_similarity(file_name, candidate.file_name)
    text_score = 0.0
    if extracted_text and candidate.extracted_text:
        text_score = jaccard_similarity(extracted_text[:text_prefix], candidate.extracted_text[:text_prefix])

    if name_score >= threshold and text_score >= threshold:
        score, match_type = (name_score + text_score) / 2, "both"
    elif text_score >= threshold:
        score, match_type = text_score, "text"
    elif name_score >= threshold:
        score, match_type = name_score, "filename"
    else:
        return None

    return SimilarityMatch(
        id=candidate.id,
        file_name=candidate.file_name,
        document_type=candidate.document_type,
        similarity_score=round(score, 4),
        match_type=match_type,
    )


def find_similar(
    db: Session,
    user_id: str,
    file_name: str,
    extracted_text: str | None,
    threshold: float | None = None,
    exclude_id: str | None = None,
    config: Settings | None = None,
) -> list[SimilarityMatch]:
    config = config or default_settings
    threshold = config.similarity_threshold if threshold is None else threshold

    query = db.query(Document).filter(
        Document.user_id == user_id,
        Document.deleted_at.is_(None),
        Document.extracted_text.is_not(None),
    )
    if exclude_id:
        query = query.filter(Document.id != exclude_id)

    matches = []
    for candidate in query.all():
        match = score_candidate(file_name, extracted_text, candidate, threshold, config.similarity_text_prefix)
        if match:
            matches.append(match)

    matches.sort(key=lambda m: m.similarity_score, reverse=True)
    matches = matches[: config.similarity_max_results]
    if matches:
        logger.info(
            "Found %d similar document(s) for %s (top: %s %.2f via %s)",
            len(matches), file_name, matches[0].file_name, matches[0].similarity_score, matches[0].match_type,
        )
    return matches


def decide_link(matches: list[SimilarityMatch], auto_link_threshold: float | None) -> SimilarityMatch | None:
    """The match to link automatically, or None when matches are only suggestions."""
    if auto_link_threshold is None or not matches:
        return None
    top = matches[0]
    return top if top.similarity_score >= auto_link_threshold else None
