import sqlite3
from pathlib import Path
from sqlalchemy import create_engine, event
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from intake.config import settings


class Base(DeclarativeBase):
    pass


def _set_sqlite_pragmas(dbapi_conn, connection_record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def get_engine(db_path: Path | None = None):
    path = db_path or settings.db_path
    engine = create_engine(
        f"sqlite:///{path}",
        connect_args={"check_same_thread": False},
    )
    event.listen(engine, "connect", _set_sqlite_pragmas)
    return engine


engine = get_engine()
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


SCHEMA_SQL = """\
-- ============================================================
-- DOCUMENTS
-- ============================================================
CREATE TABLE IF NOT EXISTS documents (
    id                TEXT PRIMARY KEY,
    user_id           TEXT NOT NULL,
    file_name         TEXT NOT NULL,
    mime_type         TEXT NOT NULL,
    file_size         INTEGER NOT NULL,
    file_hash         TEXT NOT NULL,
    storage_path      TEXT NOT NULL,
    document_type     TEXT NOT NULL DEFAULT 'other'
                      CHECK(document_type IN ('passport','birth_certificate','marriage_certificate',
                                              'employment_contract','rental_contract','vaccination_record',
                                              'residence_permit','bank_documents','insurance_documents',
                                              'school_documents','other')),
    tags              TEXT NOT NULL DEFAULT '[]',
    extracted_text    TEXT,
    extracted_fields  TEXT NOT NULL DEFAULT '{}',
    text_metadata     TEXT,
    confidence        REAL NOT NULL DEFAULT 0.5 CHECK(confidence >= 0 AND confidence <= 1),
    language          TEXT NOT NULL DEFAULT 'en' CHECK(language IN ('de','fr','it','en')),
    requires_review   INTEGER NOT NULL DEFAULT 1,
    processing_status TEXT NOT NULL DEFAULT 'pending'
                      CHECK(processing_status IN ('pending','processing','completed','failed')),
    processing_error  TEXT,
    created_at        TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ','now')),
    updated_at        TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ','now')),
    deleted_at        TEXT
);

CREATE INDEX IF NOT EXISTS idx_documents_user ON documents(user_id);
CREATE INDEX IF NOT EXISTS idx_documents_user_active ON documents(user_id, created_at) WHERE deleted_at IS NULL;
CREATE INDEX IF NOT EXISTS idx_documents_hash ON documents(user_id, file_hash);
CREATE INDEX IF NOT EXISTS idx_documents_type ON documents(document_type) WHERE deleted_at IS NULL;

-- ============================================================
-- DOCUMENT VERSIONS (append-only log, one current per document)
-- ============================================================
CREATE TABLE IF NOT EXISTS document_versions (
    id                TEXT PRIMARY KEY,
    document_id       TEXT NOT NULL REFERENCES documents(id) ON DELETE RESTRICT,
    version_number    INTEGER NOT NULL CHECK(version_number > 0),
    parent_version_id TEXT REFERENCES document_versions(id) ON DELETE SET NULL,
    is_current        INTEGER NOT NULL DEFAULT 0,
    uploaded_by       TEXT NOT NULL,
    uploaded_at       TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ','now')),
    change_summary    TEXT,
    metadata          TEXT NOT NULL DEFAULT '{}',
    extracted_text    TEXT,
    UNIQUE(document_id, version_number)
);

CREATE INDEX IF NOT EXISTS idx_versions_document ON document_versions(document_id, version_number);
CREATE INDEX IF NOT EXISTS idx_versions_parent ON document_versions(parent_version_id);
CREATE UNIQUE INDEX IF NOT EXISTS idx_versions_single_current
    ON document_versions(document_id) WHERE is_current = 1;

-- ============================================================
-- FTS5
-- ============================================================
CREATE VIRTUAL TABLE IF NOT EXISTS documents_fts USING fts5(
    file_name, extracted_text,
    content='documents', content_rowid='rowid'
);
"""

FTS_TRIGGERS_SQL = """\
-- Documents FTS sync triggers
CREATE TRIGGER IF NOT EXISTS documents_ai AFTER INSERT ON documents BEGIN
    INSERT INTO documents_fts(rowid, file_name, extracted_text)
    VALUES (new.rowid, new.file_name, new.extracted_text);
END;

CREATE TRIGGER IF NOT EXISTS documents_ad AFTER DELETE ON documents BEGIN
    INSERT INTO documents_fts(documents_fts, rowid, file_name, extracted_text)
    VALUES ('delete', old.rowid, old.file_name, old.extracted_text);
END;

CREATE TRIGGER IF NOT EXISTS documents_au AFTER UPDATE ON documents BEGIN
    INSERT INTO documents_fts(documents_fts, rowid, file_name, extracted_text)
    VALUES ('delete', old.rowid, old.file_name, old.extracted_text);
    INSERT INTO documents_fts(rowid, file_name, extracted_text)
    VALUES (new.rowid, new.file_name, new.extracted_text);
END;
"""


MIGRATIONS = [
    # v0.2: extraction diagnostics
    "ALTER TABLE documents ADD COLUMN text_metadata TEXT",
    # v0.3: text snapshot per version for character-level diffs
    "ALTER TABLE document_versions ADD COLUMN extracted_text TEXT",
]


def init_db(db_path: Path | None = None):
    path = db_path or settings.db_path
    conn = sqlite3.connect(str(path))
    conn.executescript(SCHEMA_SQL)
    conn.executescript(FTS_TRIGGERS_SQL)
    # Run migrations idempotently (ALTER TABLE fails if column exists)
    for migration in MIGRATIONS:
        try:
            conn.execute(migration)
            conn.commit()
        except sqlite3.OperationalError:
            pass  # column already exists
    conn.close()
