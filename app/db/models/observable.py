# app/db/models/observable.py
"""Canonical observable (IOC) model and its evidence link table"""
from sqlalchemy import Column, Integer, String, ForeignKey, Index, Enum, DateTime

from app.db.models.base import Base, TimestampMixin, UUIDMixin
from app.db.models.enums import IndicatorType, ThreatLevel, enum_values


class Observable(Base, UUIDMixin, TimestampMixin):
    """One row per distinct indicator value"""
    __tablename__ = "observables"

    value = Column(String(2048), nullable=False, unique=True)
    type = Column(
        Enum(IndicatorType, name="indicator_type", values_callable=enum_values),
        nullable=False,
        index=True
    )
    threat_level = Column(
        Enum(ThreatLevel, name="threat_level", values_callable=enum_values),
        nullable=False,
        default=ThreatLevel.SUSPICIOUS
    )
    source = Column(String(255), nullable=True)
    first_seen = Column(DateTime(timezone=True), nullable=False)
    last_seen = Column(DateTime(timezone=True), nullable=False)

    # Cached aggregates, re-derived from evidence_observables by recount
    evidences_count = Column(Integer, default=0, nullable=False)
    cases_count = Column(Integer, default=0, nullable=False)

    __table_args__ = (
        Index('idx_observable_last_seen', 'last_seen'),
    )

    def __repr__(self):
        return f"<Observable type={self.type} value={self.value[:50]}>"


class EvidenceObservable(Base):
    """Many-to-many association between evidence and the observables it mentions"""
    __tablename__ = "evidence_observables"

    evidence_id = Column(Integer, ForeignKey("evidence.id", ondelete="CASCADE"), primary_key=True)
    observable_id = Column(Integer, ForeignKey("observables.id", ondelete="CASCADE"), primary_key=True)

    __table_args__ = (
        Index('idx_evidence_observable_observable', 'observable_id'),
    )

    def __repr__(self):
        return f"<EvidenceObservable evidence={self.evidence_id} observable={self.observable_id}>"
