# app/db/models/evidence.py
"""Evidence model - supplies text and file hashes to the correlation engine"""
from sqlalchemy import Column, Integer, String, Text, JSON, ForeignKey, Index, Enum, DateTime
from sqlalchemy.orm import relationship

from app.db.models.base import Base, TimestampMixin, UUIDMixin
from app.db.models.enums import EvidenceType, EvidenceVerdict, enum_values


class Evidence(Base, UUIDMixin, TimestampMixin):
    """A piece of evidence attached to a case"""
    __tablename__ = "evidence"

    type = Column(
        Enum(EvidenceType, name="evidence_type", values_callable=enum_values),
        nullable=False,
        default=EvidenceType.TEXT
    )
    title = Column(String(500), nullable=False)
    content = Column(Text, nullable=False, default="")
    source = Column(String(255), nullable=False, default="manual")
    tags = Column(JSON, default=list, nullable=False)
    verdict = Column(
        Enum(EvidenceVerdict, name="evidence_verdict", values_callable=enum_values),
        nullable=False,
        default=EvidenceVerdict.PENDING
    )
    files = Column(JSON, default=list, nullable=False)  # [{name, size, mime, sha256}]
    observation_ts = Column(DateTime(timezone=True), nullable=False)
    imported_by = Column(String(255), nullable=False, default="local_user")
    imported_at = Column(DateTime(timezone=True), nullable=False)

    # Foreign keys
    case_id = Column(Integer, ForeignKey("cases.id", ondelete="CASCADE"), nullable=False)

    # Relationships
    case = relationship("Case", back_populates="evidence")

    __table_args__ = (
        Index('idx_evidence_case', 'case_id'),
        Index('idx_evidence_observation', 'observation_ts'),
    )

    def __repr__(self):
        return f"<Evidence uuid={self.uuid} title={self.title[:50]}>"
