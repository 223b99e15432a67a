# app/api/v1/schemas/observables.py
from pydantic import Field, field_validator, model_validator
from typing import Optional, List
from datetime import datetime
from uuid import UUID

from app.api.v1.schemas.common import CamelModel
from app.db.models.enums import IndicatorType, ThreatLevel


class ObservableCandidate(CamelModel):
    """
    One indicator submitted with an evidence write.

    An entry with an empty threatValue is accepted and ignored by the engine.
    firstSeen/lastSeen are informational: the store stamps its own times.
    """
    threat_value: str = Field("", max_length=2048, description="Indicator value")
    threat_type: Optional[IndicatorType] = Field(None, description="Indicator type")
    threat_level: ThreatLevel = Field(ThreatLevel.SUSPICIOUS, description="Threat level")
    source: Optional[str] = Field(None, max_length=255, description="Reporting source")
    first_seen: Optional[datetime] = None
    last_seen: Optional[datetime] = None

    @field_validator('threat_value', mode='before')
    @classmethod
    def validate_threat_value(cls, v):
        """Treat null as empty and trim whitespace"""
        if v is None:
            return ""
        return v.strip() if isinstance(v, str) else v

    @model_validator(mode='after')
    def require_type_for_value(self):
        if self.threat_value and self.threat_type is None:
            raise ValueError("threatType is required when threatValue is set")
        return self


class RelatedCaseResponse(CamelModel):
    id: UUID
    title: str


class ObservableResponse(CamelModel):
    """Canonical observable with the cases it is reachable from"""
    id: UUID = Field(..., description="Observable UUID")
    value: str
    type: IndicatorType
    threat_level: ThreatLevel
    source: Optional[str] = None
    first_seen: datetime
    last_seen: datetime
    created_at: Optional[datetime] = None
    evidences_count: int = 0
    cases_count: int = 0
    related_cases: List[RelatedCaseResponse] = Field(default_factory=list)

    @classmethod
    def from_model(cls, observable, related_cases=()):
        """Build from an Observable row (or an in-memory record) and its related cases"""
        return cls(
            id=observable.uuid,
            value=observable.value,
            type=observable.type,
            threat_level=observable.threat_level,
            source=observable.source,
            first_seen=observable.first_seen,
            last_seen=observable.last_seen,
            created_at=observable.created_at,
            evidences_count=observable.evidences_count,
            cases_count=observable.cases_count,
            related_cases=[RelatedCaseResponse(id=case.id, title=case.title) for case in related_cases],
        )


class AttachmentIn(CamelModel):
    mime: str = ""
    sha256: str = ""


class ExtractionRequest(CamelModel):
    """Text (and optional attachments) to scan without storing anything"""
    text: str = Field("", description="Free-form text to scan")
    files: List[AttachmentIn] = Field(default_factory=list)


class ExtractedIndicatorResponse(CamelModel):
    value: str
    type: IndicatorType
