# app/db/records.py
"""Plain records passed between the correlation engine and its storage backends"""
from uuid import UUID, uuid4
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Hashable, NamedTuple, Optional

from app.db.models.enums import IndicatorType, ThreatLevel


@dataclass(frozen=True)
class IndicatorCandidate:
    """A typed indicator ready for the observable store"""
    value: str
    type: IndicatorType
    threat_level: ThreatLevel = ThreatLevel.SUSPICIOUS
    source: Optional[str] = None


class UpsertResult(NamedTuple):
    observable_id: Hashable
    uuid: UUID
    created: bool


class RelatedCase(NamedTuple):
    id: UUID
    title: str


class Counts(NamedTuple):
    evidences_count: int
    cases_count: int


@dataclass
class ObservableRecord:
    """In-memory stand-in for the Observable ORM row (same attribute names)"""
    id: Hashable
    value: str
    type: IndicatorType
    threat_level: ThreatLevel
    source: Optional[str]
    first_seen: datetime
    last_seen: datetime
    created_at: datetime
    updated_at: datetime
    uuid: UUID = field(default_factory=uuid4)
    evidences_count: int = 0
    cases_count: int = 0


@dataclass
class AuditEvent:
    action: str
    payload: Dict[str, Any]
    ts: datetime
    actor: str = "local"
    case_id: Optional[str] = None
