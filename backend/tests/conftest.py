import uuid
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from intake.config import settings
from intake.database import get_db
from intake.dependencies import get_pipeline
from intake.main import app
from intake.models.document import Document
from intake.services.classification_service import Classifier
from intake.services.extraction_service import ExtractionCascade
from intake.services.intake_service import IntakePipeline
from intake.services.llm_client import NullClassificationClient
from intake.services.ocr_service import OcrService

from tests.fakes import FakeOcrEngine


def _set_sqlite_pragmas(dbapi_conn, connection_record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


@pytest.fixture
def tmp_data(tmp_path):
    data_path = tmp_path / "IntakeData"
    data_path.mkdir()
    original = settings.data_path
    settings.data_path = data_path
    yield data_path
    settings.data_path = original


@pytest.fixture
def test_db(tmp_data):
    db_path = tmp_data / "db.sqlite"
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )
    event.listen(engine, "connect", _set_sqlite_pragmas)
    TestSession = sessionmaker(bind=engine, autoflush=False, autocommit=False)

    from intake.database import init_db
    init_db(db_path)

    def override_get_db():
        db = TestSession()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestSession
    app.dependency_overrides.clear()
    engine.dispose()


@pytest.fixture
def db(test_db):
    session = test_db()
    yield session
    session.close()


@pytest.fixture
def ocr_engine():
    return FakeOcrEngine()


@pytest.fixture
def classification_client():
    return NullClassificationClient()


@pytest.fixture
def vision_client():
    return None


@pytest.fixture
def pipeline(ocr_engine, classification_client, vision_client):
    extractor = ExtractionCascade(
        ocr=OcrService(engine=ocr_engine, config=settings),
        vision_client=vision_client,
        config=settings,
    )
    classifier = Classifier(client=classification_client, config=settings)
    return IntakePipeline(extractor=extractor, classifier=classifier, config=settings)


@pytest.fixture
def client(tmp_data, test_db, pipeline):
    app.dependency_overrides[get_pipeline] = lambda: pipeline
    c = TestClient(app)
    yield c


@pytest.fixture
def make_document(db):
    """Insert a document row directly, bypassing the pipeline."""

    def _make(user_id="user-1", file_name="doc.txt", extracted_text=None, **overrides):
        now = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        doc = Document(
            id=str(uuid.uuid4()),
            user_id=user_id,
            file_name=file_name,
            mime_type="text/plain",
            file_size=len(extracted_text or ""),
            file_hash=uuid.uuid4().hex * 2,
            storage_path=f"files/{user_id}/{file_name}",
            document_type="other",
            tags=["other"],
            extracted_text=extracted_text,
            extracted_fields={},
            confidence=0.3,
            language="en",
            requires_review=True,
            processing_status="completed",
            created_at=now,
            updated_at=now,
        )
        for key, value in overrides.items():
            setattr(doc, key, value)
        db.add(doc)
        db.commit()
        db.refresh(doc)
        return doc

    return _make
