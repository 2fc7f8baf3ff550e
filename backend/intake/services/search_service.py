from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

SEARCH_SQL = text(
    """
    SELECT d.id AS document_id, d.file_name, d.document_type,
           snippet(documents_fts, 1, '<mark>', '</mark>', '...', 32) AS snippet,
           rank
    FROM documents_fts
    JOIN documents d ON d.rowid = documents_fts.rowid
    WHERE documents_fts MATCH :query
      AND d.user_id = :user_id
      AND d.deleted_at IS NULL
    ORDER BY rank
    LIMIT :limit OFFSET :offset
    """
)


def search_documents(db: Session, user_id: str, query: str, limit: int = 20, offset: int = 0) -> list[dict]:
    """Full-text search over file names and extracted text of the user's live documents."""
    try:
        rows = db.execute(
            SEARCH_SQL,
            {"query": query, "user_id": user_id, "limit": limit, "offset": offset},
        ).mappings().all()
    except OperationalError as exc:
        # Malformed FTS syntax surfaces as a client error, not a 500.
        db.rollback()
        raise ValueError("Invalid search query") from exc
    return [dict(r) for r in rows]
