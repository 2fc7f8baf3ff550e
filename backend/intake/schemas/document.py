from pydantic import BaseModel


class DocumentResponse(BaseModel):
    id: str
    user_id: str
    file_name: str
    mime_type: str
    file_size: int
    file_hash: str
    document_type: str
    tags: list[str]
    extracted_fields: dict
    confidence: float
    language: str
    requires_review: bool
    processing_status: str
    processing_error: str | None
    text_metadata: dict | None
    created_at: str
    updated_at: str


class DocumentDetailResponse(DocumentResponse):
    extracted_text: str | None
    current_version: int | None


class SimilarDocument(BaseModel):
    id: str
    file_name: str
    document_type: str | None
    similarity_score: float
    match_type: str


class UploadResponse(BaseModel):
    document: DocumentResponse
    version_id: str
    version_number: int
    linked: bool
    similar_documents: list[SimilarDocument]


class ClassificationOut(BaseModel):
    document_type: str
    confidence: float
    tags: list[str]
    extracted_fields: dict
    language: str
    requires_review: bool
    source: str


class ProcessResponse(BaseModel):
    file_name: str
    mime_type: str
    file_size: int
    file_hash: str
    extracted_text: str
    text_metadata: dict
    classification: ClassificationOut
    similar_documents: list[SimilarDocument]
    error: str | None


class DocumentUpdate(BaseModel):
    document_type: str | None = None
    tags: list[str] | None = None


class ExactDuplicateResponse(BaseModel):
    duplicate: bool
    document_id: str | None = None
    file_name: str | None = None
