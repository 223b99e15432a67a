# app/db/models/__init__.py
"""
Database models package
Imports all models for easy access
"""

# Import base classes and mixins
from app.db.models.base import Base, TimestampMixin, UUIDMixin

# Import all enums
from app.db.models.enums import (
    IndicatorType, ThreatLevel, CaseStatus,
    EvidenceType, EvidenceVerdict, AuditAction
)

# Import case and evidence models
from app.db.models.case import Case
from app.db.models.evidence import Evidence

# Import correlation models
from app.db.models.observable import Observable, EvidenceObservable
from app.db.models.audit import AuditLog

# Export all models and enums
__all__ = [
    # Base classes
    'Base', 'TimestampMixin', 'UUIDMixin',

    # Enums
    'IndicatorType', 'ThreatLevel', 'CaseStatus',
    'EvidenceType', 'EvidenceVerdict', 'AuditAction',

    # Case models
    'Case', 'Evidence',

    # Correlation models
    'Observable', 'EvidenceObservable', 'AuditLog',
]
