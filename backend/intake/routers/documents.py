import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from intake.config import settings
from intake.database import get_db
from intake.dependencies import get_pipeline, require_user_id
from intake.exceptions import DuplicateDocumentError
from intake.models.document import Document
from intake.models.document_version import DocumentVersion
from intake.schemas.document import (
    ClassificationOut,
    DocumentDetailResponse,
    DocumentResponse,
    DocumentUpdate,
    ExactDuplicateResponse,
    ProcessResponse,
    SimilarDocument,
    UploadResponse,
)
from intake.services.classification_service import DEFAULT_TAGS, DOCUMENT_TYPES, VALID_TAGS
from intake.services.document_service import get_document_full_path, get_user_document
from intake.services.duplicate_service import find_exact_duplicate, find_similar
from intake.services.extraction_service import resolve_mime_type
from intake.services.intake_service import IntakePipeline
from intake.utils.hashing import sha256_file

logger = logging.getLogger("intake.api")

router = APIRouter(
    prefix="/documents",
    tags=["documents"],
)


def _doc_to_response(doc: Document) -> DocumentResponse:
    return DocumentResponse(
        id=doc.id,
        user_id=doc.user_id,
        file_name=doc.file_name,
        mime_type=doc.mime_type,
        file_size=doc.file_size,
        file_hash=doc.file_hash,
        document_type=doc.document_type,
        tags=doc.tags or [],
        extracted_fields=doc.extracted_fields or {},
        confidence=doc.confidence,
        language=doc.language,
        requires_review=doc.requires_review,
        processing_status=doc.processing_status,
        processing_error=doc.processing_error,
        text_metadata=doc.text_metadata,
        created_at=doc.created_at,
        updated_at=doc.updated_at,
    )


def _similar_to_response(matches) -> list[SimilarDocument]:
    return [
        SimilarDocument(
            id=m.id,
            file_name=m.file_name,
            document_type=m.document_type,
            similarity_score=m.similarity_score,
            match_type=m.match_type,
        )
        for m in matches
    ]


def _owned_or_404(db: Session, document_id: str, user_id: str) -> Document:
    doc = get_user_document(db, document_id, user_id)
    if not doc:
        raise HTTPException(status_code=404, detail="Document not found")
    return doc


def duplicate_conflict(exc: DuplicateDocumentError) -> HTTPException:
    return HTTPException(
        status_code=409,
        detail={
            "message": "Document with identical content already exists",
            "existing_document_id": exc.existing_document_id,
            "existing_file_name": exc.existing_file_name,
        },
    )


async def read_upload(file: UploadFile) -> tuple[bytes, str]:
    """Read an upload with the size cap enforced; returns (content, resolved media type)."""
    mime_type = resolve_mime_type(file.content_type, file.filename or "")
    if mime_type not in settings.allowed_mime_types:
        raise HTTPException(status_code=415, detail=f"Unsupported file type: {mime_type}")

    # Reject oversized files before buffering the whole body.
    max_bytes = settings.max_upload_bytes
    size = 0
    chunks: list[bytes] = []
    while True:
        chunk = await file.read(1024 * 1024)
        if not chunk:
            break
        size += len(chunk)
        if size > max_bytes:
            raise HTTPException(status_code=413, detail=f"File too large (max {max_bytes} bytes)")
        chunks.append(chunk)

    content = b"".join(chunks)
    if not content:
        raise HTTPException(status_code=400, detail="Empty file")
    return content, mime_type


@router.post("", response_model=UploadResponse, status_code=201)
async def upload_document(
    file: UploadFile = File(...),
    document_type: str | None = Form(None),
    user_id: str = Depends(require_user_id),
    db: Session = Depends(get_db),
    pipeline: IntakePipeline = Depends(get_pipeline),
):
    if document_type and document_type not in DOCUMENT_TYPES:
        raise HTTPException(status_code=400, detail=f"Invalid document_type. Must be one of: {DOCUMENT_TYPES}")

    content, mime_type = await read_upload(file)
    try:
        result = await run_in_threadpool(
            pipeline.ingest, db, content, file.filename, mime_type, user_id, document_type
        )
    except DuplicateDocumentError as exc:
        raise duplicate_conflict(exc) from exc

    return UploadResponse(
        document=_doc_to_response(result.document),
        version_id=result.version.id,
        version_number=result.version.version_number,
        linked=result.linked,
        similar_documents=_similar_to_response(
            [m for m in result.similar if m.id != result.document.id]
        ),
    )


@router.post("/process", response_model=ProcessResponse)
async def process_document(
    file: UploadFile = File(...),
    user_id: str = Depends(require_user_id),
    db: Session = Depends(get_db),
    pipeline: IntakePipeline = Depends(get_pipeline),
):
    """Dry run: extract and classify without storing anything."""
    content, mime_type = await read_upload(file)
    processed = await run_in_threadpool(pipeline.process_upload, content, file.filename, mime_type, user_id)
    similar = find_similar(db, user_id, processed.file_name, processed.extraction.text)
    c = processed.classification

    return ProcessResponse(
        file_name=processed.file_name,
        mime_type=processed.mime_type,
        file_size=processed.file_size,
        file_hash=processed.file_hash,
        extracted_text=processed.extraction.text,
        text_metadata=processed.extraction.to_metadata(),
        classification=ClassificationOut(
            document_type=c.document_type,
            confidence=c.confidence,
            tags=c.tags,
            extracted_fields=c.extracted_fields,
            language=c.language,
            requires_review=processed.requires_review,
            source=c.source,
        ),
        similar_documents=_similar_to_response(similar),
        error=processed.error,
    )


@router.get("", response_model=list[DocumentResponse])
async def list_documents(
    document_type: str | None = Query(None),
    requires_review: bool | None = Query(None),
    user_id: str = Depends(require_user_id),
    db: Session = Depends(get_db),
):
    query = db.query(Document).filter(Document.user_id == user_id, Document.deleted_at.is_(None))
    if document_type:
        query = query.filter(Document.document_type == document_type)
    if requires_review is not None:
        query = query.filter(Document.requires_review == requires_review)
    docs = query.order_by(Document.created_at.desc()).all()
    return [_doc_to_response(d) for d in docs]


@router.get("/duplicates/exact", response_model=ExactDuplicateResponse)
async def check_exact_duplicate(
    file_hash: str = Query(..., min_length=64, max_length=64),
    user_id: str = Depends(require_user_id),
    db: Session = Depends(get_db),
):
    existing = find_exact_duplicate(db, user_id, file_hash.lower())
    if not existing:
        return ExactDuplicateResponse(duplicate=False)
    return ExactDuplicateResponse(duplicate=True, document_id=existing.id, file_name=existing.file_name)


@router.get("/{document_id}", response_model=DocumentDetailResponse)
async def get_document(document_id: str, user_id: str = Depends(require_user_id), db: Session = Depends(get_db)):
    doc = _owned_or_404(db, document_id, user_id)
    current = (
        db.query(DocumentVersion)
        .filter(DocumentVersion.document_id == doc.id, DocumentVersion.is_current.is_(True))
        .first()
    )
    return DocumentDetailResponse(
        **_doc_to_response(doc).model_dump(),
        extracted_text=doc.extracted_text,
        current_version=current.version_number if current else None,
    )


@router.patch("/{document_id}", response_model=DocumentResponse)
async def update_document(
    document_id: str,
    req: DocumentUpdate,
    user_id: str = Depends(require_user_id),
    db: Session = Depends(get_db),
):
    """Manual re-classification; a human decision clears the review flag."""
    doc = _owned_or_404(db, document_id, user_id)

    if req.document_type is not None:
        if req.document_type not in DOCUMENT_TYPES:
            raise HTTPException(status_code=400, detail=f"Invalid document_type. Must be one of: {DOCUMENT_TYPES}")
        doc.document_type = req.document_type
        if req.tags is None:
            doc.tags = list(DEFAULT_TAGS[req.document_type])
    if req.tags is not None:
        invalid = [t for t in req.tags if t not in VALID_TAGS]
        if invalid:
            raise HTTPException(status_code=400, detail=f"Invalid tags: {invalid}")
        doc.tags = list(dict.fromkeys(req.tags))

    doc.requires_review = False
    doc.updated_at = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    db.commit()
    db.refresh(doc)
    return _doc_to_response(doc)


@router.delete("/{document_id}")
async def delete_document(document_id: str, user_id: str = Depends(require_user_id), db: Session = Depends(get_db)):
    """Soft delete: versions keep referencing the row, so it is never removed."""
    doc = _owned_or_404(db, document_id, user_id)
    now = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    doc.deleted_at = now
    doc.updated_at = now
    db.commit()
    logger.info("Soft-deleted document %s", document_id)
    return {"message": "Document deleted"}


@router.get("/{document_id}/similar", response_model=list[SimilarDocument])
async def similar_documents(
    document_id: str,
    threshold: float = Query(settings.similarity_threshold, ge=0.0, le=1.0),
    user_id: str = Depends(require_user_id),
    db: Session = Depends(get_db),
):
    doc = _owned_or_404(db, document_id, user_id)
    matches = find_similar(db, user_id, doc.file_name, doc.extracted_text, threshold=threshold, exclude_id=doc.id)
    return _similar_to_response(matches)


@router.get("/{document_id}/verify")
async def verify_document(document_id: str, user_id: str = Depends(require_user_id), db: Session = Depends(get_db)):
    """Re-hash the stored file and compare against the recorded SHA-256."""
    doc = _owned_or_404(db, document_id, user_id)

    full_path = get_document_full_path(doc.storage_path, settings.data_path)
    if not full_path.exists():
        raise HTTPException(status_code=404, detail="Document file missing from storage")

    actual_hash = sha256_file(full_path)
    return {
        "verified": actual_hash == doc.file_hash,
        "file_name": doc.file_name,
        "stored_hash": doc.file_hash,
        "actual_hash": actual_hash,
    }


@router.get("/{document_id}/download")
async def download_document(document_id: str, user_id: str = Depends(require_user_id), db: Session = Depends(get_db)):
    doc = _owned_or_404(db, document_id, user_id)

    full_path = get_document_full_path(doc.storage_path, settings.data_path)
    if not full_path.exists():
        raise HTTPException(status_code=404, detail="Document file missing from storage")

    return FileResponse(
        path=str(full_path),
        filename=doc.file_name,
        media_type=doc.mime_type or "application/octet-stream",
    )
