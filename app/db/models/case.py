# app/db/models/case.py
"""Investigation case model"""
from sqlalchemy import Column, String, JSON, Index, Enum
from sqlalchemy.orm import relationship

from app.db.models.base import Base, TimestampMixin, UUIDMixin
from app.db.models.enums import CaseStatus, enum_values


class Case(Base, UUIDMixin, TimestampMixin):
    """Investigation case; only its id and title matter to observable correlation"""
    __tablename__ = "cases"

    title = Column(String(500), nullable=False)
    status = Column(
        Enum(CaseStatus, name="case_status", values_callable=enum_values),
        nullable=False,
        default=CaseStatus.OPEN
    )
    tags = Column(JSON, default=list, nullable=False)

    evidence = relationship(
        "Evidence",
        back_populates="case",
        cascade="all, delete-orphan",
        passive_deletes=True
    )

    __table_args__ = (
        Index('idx_case_status', 'status'),
        Index('idx_case_updated', 'updated_at'),
    )

    def __repr__(self):
        return f"<Case uuid={self.uuid} title={self.title}>"
