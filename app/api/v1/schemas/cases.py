# app/api/v1/schemas/cases.py
from pydantic import Field, field_validator
from typing import Optional, List
from datetime import datetime
from uuid import UUID

from app.api.v1.schemas.common import CamelModel
from app.db.models.enums import CaseStatus


def _clean_tags(v):
    if v is None:
        return v
    # Remove duplicates and empty tags, keep order
    return list(dict.fromkeys(tag.strip() for tag in v if tag and tag.strip()))


class CaseBase(CamelModel):
    """Base schema for case"""
    title: str = Field(..., min_length=1, max_length=500, description="Case title")
    status: CaseStatus = Field(CaseStatus.OPEN, description="Case status")
    tags: List[str] = Field(default_factory=list, description="Case tags")

    @field_validator('tags')
    @classmethod
    def validate_tags(cls, v):
        return _clean_tags(v) or []


class CaseCreate(CaseBase):
    """Schema for creating a case"""
    pass


class CaseUpdate(CamelModel):
    """Schema for updating a case"""
    title: Optional[str] = Field(None, min_length=1, max_length=500)
    status: Optional[CaseStatus] = None
    tags: Optional[List[str]] = None

    @field_validator('tags')
    @classmethod
    def validate_tags(cls, v):
        return _clean_tags(v)


class CaseResponse(CaseBase):
    """Schema for case response with UUID"""
    id: UUID = Field(..., description="Case UUID")
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_model(cls, case):
        return cls(
            id=case.uuid,
            title=case.title,
            status=case.status,
            tags=case.tags or [],
            created_at=case.created_at,
            updated_at=case.updated_at,
        )
