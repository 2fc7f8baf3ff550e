from intake.models.document import Document
from intake.models.document_version import DocumentVersion

__all__ = ["Document", "DocumentVersion"]
