"""
Version lineage for documents.

Versions form an append-only log numbered 1, 2, 3... per document. Exactly one
version is current once a document has versions; moving the current marker is
a compare-and-set update so two writers cannot both win. Restoring an older
version only moves the marker and copies its snapshot back onto the document.
"""
import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import func
from sqlalchemy.orm import Session

from intake.exceptions import (
    DocumentNotFoundError,
    LineageError,
    LineageIntegrityError,
    VersionNotFoundError,
)
from intake.models.document import Document
from intake.models.document_version import DocumentVersion
from intake.services.diff_service import compare_fields, compare_text

logger = logging.getLogger("intake.versions")

SNAPSHOT_FIELDS = (
    "file_name",
    "mime_type",
    "file_size",
    "file_hash",
    "storage_path",
    "document_type",
    "tags",
    "language",
    "extracted_fields",
    "confidence",
    "requires_review",
    "text_metadata",
    "processing_status",
    "processing_error",
)

# Extraction diagnostics travel with a version but are not compared.
_UNCOMPARED_FIELDS = ("text_metadata",)


def document_snapshot(document: Document) -> dict:
    return {name: getattr(document, name) for name in SNAPSHOT_FIELDS}


def verify_lineage(versions: list[DocumentVersion]) -> None:
    current = [v for v in versions if v.is_current]
    if len(current) > 1:
        raise LineageIntegrityError(
            f"Document has {len(current)} current versions: {', '.join(v.id for v in current)}"
        )
    numbers = sorted(v.version_number for v in versions)
    if numbers != list(range(1, len(numbers) + 1)):
        raise LineageIntegrityError(f"Version numbers are not contiguous: {numbers}")


def _get_document(db: Session, document_id: str) -> Document:
    document = db.query(Document).filter(Document.id == document_id).first()
    if not document:
        raise DocumentNotFoundError(document_id)
    return document


def list_versions(db: Session, document_id: str) -> list[DocumentVersion]:
    versions = (
        db.query(DocumentVersion)
        .filter(DocumentVersion.document_id == document_id)
        .order_by(DocumentVersion.version_number)
        .all()
    )
    verify_lineage(versions)
    return versions


def get_version(db: Session, document_id: str, version_id: str) -> DocumentVersion:
    version = (
        db.query(DocumentVersion)
        .filter(DocumentVersion.id == version_id, DocumentVersion.document_id == document_id)
        .first()
    )
    if not version:
        raise VersionNotFoundError(f"Version {version_id} not found for document {document_id}")
    return version


def _current_version(db: Session, document_id: str) -> DocumentVersion | None:
    return (
        db.query(DocumentVersion)
        .filter(DocumentVersion.document_id == document_id, DocumentVersion.is_current.is_(True))
        .first()
    )


def _clear_current(db: Session, document_id: str, expected: DocumentVersion | None) -> None:
    """Compare-and-set: unset the current flag only if it is still where we saw it."""
    if expected is None:
        remaining = (
            db.query(func.count(DocumentVersion.id))
            .filter(DocumentVersion.document_id == document_id, DocumentVersion.is_current.is_(True))
            .scalar()
        )
        if remaining:
            raise LineageError("Current version changed concurrently; retry the operation")
        return

    updated = (
        db.query(DocumentVersion)
        .filter(DocumentVersion.id == expected.id, DocumentVersion.is_current.is_(True))
        .update({DocumentVersion.is_current: False}, synchronize_session="fetch")
    )
    if updated != 1:
        raise LineageError("Current version changed concurrently; retry the operation")


def commit_version(
    db: Session,
    document: Document,
    uploaded_by: str,
    snapshot: dict | None = None,
    extracted_text: str | None = None,
    parent_version_id: str | None = None,
    change_summary: str | None = None,
) -> DocumentVersion:
    """Append a version and make it current. The session is committed on success."""
    current = _current_version(db, document.id)

    if parent_version_id is None:
        parent_version_id = current.id if current else None
    else:
        parent = db.query(DocumentVersion).filter(DocumentVersion.id == parent_version_id).first()
        if not parent or parent.document_id != document.id:
            raise LineageError(f"Parent version {parent_version_id} does not belong to document {document.id}")

    highest = (
        db.query(func.max(DocumentVersion.version_number))
        .filter(DocumentVersion.document_id == document.id)
        .scalar()
    )

    try:
        _clear_current(db, document.id, current)
        version = DocumentVersion(
            id=str(uuid.uuid4()),
            document_id=document.id,
            version_number=(highest or 0) + 1,
            parent_version_id=parent_version_id,
            is_current=True,
            uploaded_by=uploaded_by,
            uploaded_at=datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
            change_summary=change_summary,
            snapshot=snapshot if snapshot is not None else document_snapshot(document),
            extracted_text=extracted_text if extracted_text is not None else document.extracted_text,
        )
        db.add(version)
        db.flush()
        verify_lineage(list_versions(db, document.id))
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(version)
    logger.info("Committed version %d of document %s", version.version_number, document.id)
    return version


def restore(db: Session, document_id: str, version_id: str) -> DocumentVersion:
    """Make an existing version current again. Never creates a version."""
    document = _get_document(db, document_id)
    target = get_version(db, document_id, version_id)
    if target.is_current:
        return target

    current = _current_version(db, document_id)
    try:
        _clear_current(db, document_id, current)
        db.flush()
        target.is_current = True

        for name, value in (target.snapshot or {}).items():
            if name in SNAPSHOT_FIELDS:
                setattr(document, name, value)
        document.extracted_text = target.extracted_text
        document.updated_at = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")

        db.flush()
        verify_lineage(list_versions(db, document_id))
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(target)
    logger.info("Restored document %s to version %d", document_id, target.version_number)
    return target


def _flatten(snapshot: dict) -> dict:
    flat = {
        k: v for k, v in snapshot.items() if k != "extracted_fields" and k not in _UNCOMPARED_FIELDS
    }
    for key, value in (snapshot.get("extracted_fields") or {}).items():
        flat[f"extracted_fields.{key}"] = value
    return flat


def compare_versions(db: Session, document_id: str, version_a_id: str, version_b_id: str) -> dict:
    a = get_version(db, document_id, version_a_id)
    b = get_version(db, document_id, version_b_id)
    return {
        "version_a": a,
        "version_b": b,
        "field_diffs": compare_fields(_flatten(a.snapshot or {}), _flatten(b.snapshot or {})),
        "text_diffs": compare_text(a.extracted_text, b.extracted_text),
    }
