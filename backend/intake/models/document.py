from sqlalchemy import JSON, Boolean, Column, Float, Integer, Text
from sqlalchemy.orm import relationship
from intake.database import Base


class Document(Base):
    __tablename__ = "documents"

    id = Column(Text, primary_key=True)
    user_id = Column(Text, nullable=False)
    file_name = Column(Text, nullable=False)
    mime_type = Column(Text, nullable=False)
    file_size = Column(Integer, nullable=False)
    file_hash = Column(Text, nullable=False)
    storage_path = Column(Text, nullable=False)
    document_type = Column(Text, nullable=False, default="other")
    tags = Column(JSON, nullable=False, default=list)
    extracted_text = Column(Text)
    extracted_fields = Column(JSON, nullable=False, default=dict)
    text_metadata = Column(JSON)
    confidence = Column(Float, nullable=False, default=0.5)
    language = Column(Text, nullable=False, default="en")
    requires_review = Column(Boolean, nullable=False, default=True)
    processing_status = Column(Text, nullable=False, default="pending")
    processing_error = Column(Text)
    created_at = Column(Text, nullable=False)
    updated_at = Column(Text, nullable=False)
    deleted_at = Column(Text, nullable=True)

    versions = relationship(
        "DocumentVersion",
        back_populates="document",
        order_by="DocumentVersion.version_number",
    )
