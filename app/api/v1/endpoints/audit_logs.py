# app/api/v1/endpoints/audit_logs.py
"""Read access to the audit trail"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional
from uuid import UUID

from app.db.database import get_db
from app.db import crud
from app.api.v1.schemas.audit import AuditLogResponse

router = APIRouter()


@router.get("/", response_model=List[AuditLogResponse])
async def list_audit_logs(
    case_id: Optional[UUID] = Query(None, alias="caseId", description="Only entries for this case"),
    limit: int = Query(50, ge=1, le=500, description="Maximum number of entries"),
    db: AsyncSession = Depends(get_db)
):
    """Newest audit entries first"""
    logs = await crud.audit.list_audit_logs(db, case_id=str(case_id) if case_id else None, limit=limit)
    return [AuditLogResponse.model_validate(log) for log in logs]
