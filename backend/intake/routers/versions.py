from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from intake.database import get_db
from intake.dependencies import get_pipeline, require_user_id
from intake.exceptions import DocumentNotFoundError, DuplicateDocumentError, LineageError, VersionNotFoundError
from intake.models.document_version import DocumentVersion
from intake.routers.documents import duplicate_conflict, read_upload
from intake.schemas.version import (
    FieldDiffOut,
    TextDiffOut,
    TextSegment,
    VersionCompareResponse,
    VersionDetailResponse,
    VersionResponse,
)
from intake.services import version_service
from intake.services.document_service import get_user_document
from intake.services.intake_service import IntakePipeline

router = APIRouter(
    prefix="/documents/{document_id}/versions",
    tags=["versions"],
)


def _version_to_response(v: DocumentVersion) -> VersionResponse:
    return VersionResponse(
        id=v.id,
        document_id=v.document_id,
        version_number=v.version_number,
        parent_version_id=v.parent_version_id,
        is_current=v.is_current,
        uploaded_by=v.uploaded_by,
        uploaded_at=v.uploaded_at,
        change_summary=v.change_summary,
        metadata=v.snapshot or {},
    )


def _require_document(db: Session, document_id: str, user_id: str):
    doc = get_user_document(db, document_id, user_id)
    if not doc:
        raise HTTPException(status_code=404, detail="Document not found")
    return doc


@router.get("", response_model=list[VersionResponse])
async def list_versions(document_id: str, user_id: str = Depends(require_user_id), db: Session = Depends(get_db)):
    _require_document(db, document_id, user_id)
    return [_version_to_response(v) for v in version_service.list_versions(db, document_id)]


@router.post("", response_model=VersionResponse, status_code=201)
async def upload_version(
    document_id: str,
    file: UploadFile = File(...),
    parent_version_id: str | None = Form(None),
    change_summary: str | None = Form(None),
    user_id: str = Depends(require_user_id),
    db: Session = Depends(get_db),
    pipeline: IntakePipeline = Depends(get_pipeline),
):
    _require_document(db, document_id, user_id)
    content, mime_type = await read_upload(file)
    try:
        version = await run_in_threadpool(
            pipeline.ingest_version,
            db, document_id, content, file.filename, mime_type, user_id,
            parent_version_id, change_summary,
        )
    except DuplicateDocumentError as exc:
        raise duplicate_conflict(exc) from exc
    except DocumentNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Document not found") from exc
    except LineageError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _version_to_response(version)


@router.get("/compare", response_model=VersionCompareResponse)
async def compare_versions(
    document_id: str,
    a: str = Query(...),
    b: str = Query(...),
    user_id: str = Depends(require_user_id),
    db: Session = Depends(get_db),
):
    _require_document(db, document_id, user_id)
    try:
        result = version_service.compare_versions(db, document_id, a, b)
    except VersionNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Version not found") from exc

    text_diff = result["text_diffs"]
    return VersionCompareResponse(
        version_a=_version_to_response(result["version_a"]),
        version_b=_version_to_response(result["version_b"]),
        field_diffs=[
            FieldDiffOut(field=d.field, change=d.change, old=d.old, new=d.new)
            for d in result["field_diffs"]
        ],
        text_diffs=TextDiffOut(
            changed=text_diff.changed,
            segments=[TextSegment(**s) for s in text_diff.segments],
        ),
    )


@router.get("/{version_id}", response_model=VersionDetailResponse)
async def get_version(
    document_id: str,
    version_id: str,
    user_id: str = Depends(require_user_id),
    db: Session = Depends(get_db),
):
    _require_document(db, document_id, user_id)
    try:
        version = version_service.get_version(db, document_id, version_id)
    except VersionNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Version not found") from exc
    return VersionDetailResponse(
        **_version_to_response(version).model_dump(),
        extracted_text=version.extracted_text,
    )


@router.post("/{version_id}/restore", response_model=VersionResponse)
async def restore_version(
    document_id: str,
    version_id: str,
    user_id: str = Depends(require_user_id),
    db: Session = Depends(get_db),
):
    """Make an earlier version current again. No new version is created."""
    _require_document(db, document_id, user_id)
    try:
        version = version_service.restore(db, document_id, version_id)
    except VersionNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Version not found") from exc
    except LineageError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return _version_to_response(version)
