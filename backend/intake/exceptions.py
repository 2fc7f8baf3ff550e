"""Error taxonomy for the intake pipeline.

Extraction and classification failures are recovered inside the pipeline.
Duplicate conflicts are reported to the caller with a reference to the
existing document. Lineage integrity violations always propagate.
"""


class IntakeError(Exception):
    pass


class ExtractionError(IntakeError):
    """A single extraction strategy failed; the cascade falls through."""


class ClassificationUnavailable(IntakeError):
    """The AI classification service is unconfigured, unreachable or returned junk."""


class DuplicateDocumentError(IntakeError):
    def __init__(self, existing_document_id: str, existing_file_name: str):
        super().__init__(f"Document with identical content already exists: {existing_document_id}")
        self.existing_document_id = existing_document_id
        self.existing_file_name = existing_file_name


class DocumentNotFoundError(IntakeError):
    pass


class LineageError(IntakeError):
    """A version operation referenced something outside the document's lineage."""


class LineageIntegrityError(IntakeError):
    """More than one current version, or version numbers with gaps."""


class VersionNotFoundError(LineageError):
    pass
