import os
from pathlib import Path

from sqlalchemy.orm import Session

from intake.config import settings
from intake.models.document import Document
from intake.utils.filesystem import ensure_user_dir, sanitize_filename
from intake.utils.hashing import sha256_bytes, short_hash


def store_document(user_id: str, filename: str, content: bytes) -> tuple[str, str, int, bool]:
    """Store raw upload bytes immutably.

    Returns (relative_path, file_hash, file_size, created); created is False
    when identical bytes were already stored under the same name.
    """
    file_hash = sha256_bytes(content)
    safe_name = sanitize_filename(filename)
    stored_name = f"{short_hash(file_hash)}_{safe_name}"

    user_dir = ensure_user_dir(user_id)
    doc_path = user_dir / stored_name
    created = not doc_path.exists()
    if created:
        doc_path.write_bytes(content)
        os.chmod(doc_path, 0o444)

    relative_path = f"files/{user_dir.name}/{stored_name}"
    return relative_path, file_hash, len(content), created


def remove_stored_document(storage_path: str, data_path: Path | None = None) -> None:
    """Delete bytes written for an upload that was never committed."""
    full_path = get_document_full_path(storage_path, data_path)
    if full_path.exists():
        os.chmod(full_path, 0o644)
        full_path.unlink()


def get_document_full_path(storage_path: str, data_path: Path | None = None) -> Path:
    return (data_path or settings.data_path) / storage_path


def get_user_document(db: Session, document_id: str, user_id: str) -> Document | None:
    """A live (not soft-deleted) document owned by the user."""
    return (
        db.query(Document)
        .filter(Document.id == document_id, Document.user_id == user_id, Document.deleted_at.is_(None))
        .first()
    )
