from typing import Any

from pydantic import BaseModel


class VersionResponse(BaseModel):
    id: str
    document_id: str
    version_number: int
    parent_version_id: str | None
    is_current: bool
    uploaded_by: str
    uploaded_at: str
    change_summary: str | None
    metadata: dict


class VersionDetailResponse(VersionResponse):
    extracted_text: str | None


class FieldDiffOut(BaseModel):
    field: str
    change: str  # "added", "removed" or "changed"
    old: Any = None
    new: Any = None


class TextSegment(BaseModel):
    operation: str  # "equal", "delete" or "insert"
    text: str


class TextDiffOut(BaseModel):
    changed: bool
    segments: list[TextSegment]


class VersionCompareResponse(BaseModel):
    version_a: VersionResponse
    version_b: VersionResponse
    field_diffs: list[FieldDiffOut]
    text_diffs: TextDiffOut
