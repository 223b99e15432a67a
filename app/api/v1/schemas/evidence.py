# app/api/v1/schemas/evidence.py
from pydantic import Field, field_validator
from typing import Optional, List
from datetime import datetime
from uuid import UUID

from app.api.v1.schemas.common import CamelModel
from app.api.v1.schemas.observables import ObservableCandidate
from app.db.models.enums import EvidenceType, EvidenceVerdict


class EvidenceFile(CamelModel):
    """Attachment metadata; file bytes are stored elsewhere"""
    name: str = Field(..., max_length=500)
    size: int = Field(0, ge=0)
    mime: str = Field("", max_length=255)
    sha256: str = Field("", max_length=64)

    @field_validator('sha256')
    @classmethod
    def normalize_sha256(cls, v):
        return v.strip().lower()


class EvidenceBase(CamelModel):
    """Base schema for evidence"""
    type: EvidenceType = Field(EvidenceType.TEXT, description="Evidence type")
    title: str = Field(..., min_length=1, max_length=500)
    content: str = Field("", description="Evidence text, scanned for indicators")
    source: str = Field("manual", max_length=255, description="Where the evidence came from")
    tags: List[str] = Field(default_factory=list)
    verdict: EvidenceVerdict = Field(EvidenceVerdict.PENDING)
    files: List[EvidenceFile] = Field(default_factory=list)
    observation_ts: Optional[datetime] = Field(None, description="When the observed event happened")


class EvidenceCreate(EvidenceBase):
    """Evidence write with the observables it carries"""
    case_id: UUID = Field(..., description="Owning case UUID")
    imported_by: str = Field("local_user", max_length=255)
    observables: List[ObservableCandidate] = Field(default_factory=list)
    extract_observables: Optional[bool] = Field(
        None, description="Scan content and attachments for indicators (defaults to server setting)"
    )


class EvidenceUpdate(CamelModel):
    """Partial evidence update; observables are added, never removed"""
    case_id: Optional[UUID] = None
    type: Optional[EvidenceType] = None
    title: Optional[str] = Field(None, min_length=1, max_length=500)
    content: Optional[str] = None
    source: Optional[str] = Field(None, max_length=255)
    tags: Optional[List[str]] = None
    verdict: Optional[EvidenceVerdict] = None
    files: Optional[List[EvidenceFile]] = None
    observation_ts: Optional[datetime] = None
    observables: List[ObservableCandidate] = Field(default_factory=list)
    extract_observables: Optional[bool] = None


class EvidenceResponse(EvidenceBase):
    id: UUID
    case_id: UUID
    imported_by: str
    imported_at: datetime
    observation_ts: datetime
    observable_ids: List[UUID] = Field(
        default_factory=list, description="Observables linked by this write"
    )

    @classmethod
    def from_model(cls, evidence, observable_ids=()):
        return cls(
            id=evidence.uuid,
            case_id=evidence.case.uuid,
            type=evidence.type,
            title=evidence.title,
            content=evidence.content,
            source=evidence.source,
            tags=evidence.tags or [],
            verdict=evidence.verdict,
            files=evidence.files or [],
            observation_ts=evidence.observation_ts,
            imported_by=evidence.imported_by,
            imported_at=evidence.imported_at,
            observable_ids=list(observable_ids),
        )
