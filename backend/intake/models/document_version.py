from sqlalchemy import JSON, Boolean, Column, ForeignKey, Integer, Text
from sqlalchemy.orm import relationship
from intake.database import Base


class DocumentVersion(Base):
    __tablename__ = "document_versions"

    id = Column(Text, primary_key=True)
    document_id = Column(Text, ForeignKey("documents.id", ondelete="RESTRICT"), nullable=False)
    version_number = Column(Integer, nullable=False)
    parent_version_id = Column(Text, ForeignKey("document_versions.id", ondelete="SET NULL"), nullable=True)
    is_current = Column(Boolean, nullable=False, default=False)
    uploaded_by = Column(Text, nullable=False)
    uploaded_at = Column(Text, nullable=False)
    change_summary = Column(Text)
    # "metadata" is reserved on declarative classes
    snapshot = Column("metadata", JSON, nullable=False, default=dict)
    extracted_text = Column(Text)

    document = relationship("Document", back_populates="versions")
