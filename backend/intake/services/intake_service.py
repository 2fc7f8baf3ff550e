"""
Upload pipeline: extraction, classification, duplicate/lineage detection and
version commit, run strictly in that order for one upload.
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from intake.config import Settings, settings as default_settings
from intake.exceptions import DocumentNotFoundError, DuplicateDocumentError
from intake.models.document import Document
from intake.models.document_version import DocumentVersion
from intake.services.classification_service import (
    DEFAULT_TAGS,
    DOCUMENT_TYPES,
    ClassificationResult,
    Classifier,
)
from intake.services.document_service import get_user_document, remove_stored_document, store_document
from intake.services.duplicate_service import (
    SimilarityMatch,
    decide_link,
    find_exact_duplicate,
    find_similar,
)
from intake.services.extraction_service import ExtractionCascade, ExtractionResult, resolve_mime_type
from intake.services.version_service import commit_version
from intake.utils.hashing import sha256_bytes

logger = logging.getLogger("intake.pipeline")


@dataclass
class ProcessedUpload:
    file_name: str
    mime_type: str
    file_size: int
    file_hash: str
    extraction: ExtractionResult
    classification: ClassificationResult
    error: str | None = None

    @property
    def requires_review(self) -> bool:
        return self.classification.requires_review or not self.extraction.text or self.error is not None


@dataclass
class IngestResult:
    document: Document
    version: DocumentVersion
    similar: list[SimilarityMatch] = field(default_factory=list)
    linked: bool = False


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def apply_type_override(result: ClassificationResult, document_type: str) -> ClassificationResult:
    """A caller-provided type is authoritative; its default tags are merged with the classifier's."""
    tags = list(DEFAULT_TAGS[document_type])
    tags.extend(t for t in result.tags if t not in tags and t != "other")
    return ClassificationResult(
        document_type=document_type,
        confidence=1.0,
        tags=tags,
        extracted_fields=result.extracted_fields,
        language=result.language,
        requires_review=False,
        source=result.source,
    )


class IntakePipeline:
    def __init__(
        self,
        extractor: ExtractionCascade | None = None,
        classifier: Classifier | None = None,
        config: Settings | None = None,
    ):
        self.config = config or default_settings
        self.extractor = extractor or ExtractionCascade(config=self.config)
        self.classifier = classifier or Classifier(config=self.config)

    def process_upload(
        self,
        content: bytes,
        file_name: str,
        mime_type: str | None,
        user_id: str | None = None,
        document_type: str | None = None,
    ) -> ProcessedUpload:
        """Extract and classify without persisting anything. Never raises for a byte buffer."""
        mime = resolve_mime_type(mime_type, file_name)
        extraction = self.extractor.extract(content, mime, file_name)
        error = None

        try:
            classification = self.classifier.classify(extraction.text, file_name)
        except Exception as exc:
            logger.exception("Classification failed unexpectedly for %s", file_name)
            classification = self.classifier.classify_with_keywords(extraction.text, file_name)
            error = f"Classification failed: {exc}"

        if document_type:
            classification = apply_type_override(classification, document_type)

        logger.info(
            "Processed %s for user %s: %s (confidence %.2f, %d chars, source %s)",
            file_name, user_id or "-", classification.document_type, classification.confidence,
            len(extraction.text), extraction.source_strategy,
        )
        return ProcessedUpload(
            file_name=file_name,
            mime_type=mime,
            file_size=len(content),
            file_hash=sha256_bytes(content),
            extraction=extraction,
            classification=classification,
            error=error,
        )

    def _apply(self, document: Document, processed: ProcessedUpload, storage_path: str) -> None:
        cap = self.config.max_extracted_text_chars
        text = processed.extraction.text[:cap] if processed.extraction.text else None
        classification = processed.classification

        document.file_name = processed.file_name
        document.mime_type = processed.mime_type
        document.file_size = processed.file_size
        document.file_hash = processed.file_hash
        document.storage_path = storage_path
        document.extracted_text = text
        document.document_type = classification.document_type
        document.confidence = classification.confidence
        document.tags = classification.tags
        document.extracted_fields = classification.extracted_fields
        document.language = classification.language
        document.requires_review = processed.requires_review
        document.text_metadata = {
            **processed.extraction.to_metadata(),
            "classification_source": classification.source,
        }
        document.processing_status = "failed" if processed.error else "completed"
        document.processing_error = processed.error
        document.updated_at = _now()

    def _check_duplicate(self, db: Session, user_id: str, file_hash: str) -> None:
        existing = find_exact_duplicate(db, user_id, file_hash)
        if existing:
            logger.info("Rejected exact duplicate of document %s", existing.id)
            raise DuplicateDocumentError(existing.id, existing.file_name)

    def ingest(
        self,
        db: Session,
        content: bytes,
        file_name: str,
        mime_type: str | None,
        user_id: str,
        document_type: str | None = None,
    ) -> IngestResult:
        """Accept an upload: reject exact duplicates, then create a document or link a new version."""
        if document_type and document_type not in DOCUMENT_TYPES:
            raise ValueError(f"Unknown document type: {document_type}")

        self._check_duplicate(db, user_id, sha256_bytes(content))
        storage_path, _, _, created = store_document(user_id, file_name, content)
        try:
            return self._ingest_stored(db, content, file_name, mime_type, user_id, document_type, storage_path)
        except Exception:
            if created:
                logger.warning("Upload of %s was not committed; removing %s", file_name, storage_path)
                remove_stored_document(storage_path)
            raise

    def _ingest_stored(
        self,
        db: Session,
        content: bytes,
        file_name: str,
        mime_type: str | None,
        user_id: str,
        document_type: str | None,
        storage_path: str,
    ) -> IngestResult:
        processed = self.process_upload(content, file_name, mime_type, user_id, document_type)

        similar = find_similar(
            db, user_id, file_name, processed.extraction.text,
            threshold=self.config.similarity_threshold, config=self.config,
        )
        link = decide_link(similar, self.config.auto_link_threshold)

        if link:
            document = db.query(Document).filter(Document.id == link.id).first()
            self._apply(document, processed, storage_path)
            version = commit_version(
                db,
                document,
                uploaded_by=user_id,
                change_summary=f"Linked automatically ({link.match_type} similarity {link.similarity_score:.2f})",
            )
            logger.info("Linked %s as version %d of document %s", file_name, version.version_number, document.id)
            return IngestResult(document=document, version=version, similar=similar, linked=True)

        now = _now()
        document = Document(id=str(uuid.uuid4()), user_id=user_id, created_at=now)
        self._apply(document, processed, storage_path)
        db.add(document)
        db.flush()
        version = commit_version(db, document, uploaded_by=user_id, change_summary="Initial upload")
        db.refresh(document)
        logger.info("Created document %s from %s", document.id, file_name)
        return IngestResult(document=document, version=version, similar=similar)

    def ingest_version(
        self,
        db: Session,
        document_id: str,
        content: bytes,
        file_name: str,
        mime_type: str | None,
        user_id: str,
        parent_version_id: str | None = None,
        change_summary: str | None = None,
    ) -> DocumentVersion:
        """Upload new content for an existing document as its next version."""
        document = get_user_document(db, document_id, user_id)
        if not document:
            raise DocumentNotFoundError(document_id)

        self._check_duplicate(db, user_id, sha256_bytes(content))
        storage_path, _, _, created = store_document(user_id, file_name, content)
        try:
            processed = self.process_upload(content, file_name, mime_type, user_id)
            self._apply(document, processed, storage_path)
            return commit_version(
                db,
                document,
                uploaded_by=user_id,
                parent_version_id=parent_version_id,
                change_summary=change_summary,
            )
        except Exception:
            if created:
                logger.warning("Version upload of %s was not committed; removing %s", file_name, storage_path)
                remove_stored_document(storage_path)
            raise
