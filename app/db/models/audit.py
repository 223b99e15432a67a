# app/db/models/audit.py
"""Audit log model"""
from sqlalchemy import Column, Integer, String, JSON, DateTime, Index, func

from app.db.models.base import Base


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    ts = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    action = Column(String(100), nullable=False, index=True)
    actor = Column(String(100), nullable=False, default="local")
    payload = Column(JSON, default=dict, nullable=False)
    case_id = Column(String(36), nullable=True)  # case UUID, not a foreign key: logs outlive cases

    __table_args__ = (
        Index('idx_audit_case_ts', 'case_id', 'ts'),
    )

    def __repr__(self):
        return f"<AuditLog action={self.action} ts={self.ts}>"
