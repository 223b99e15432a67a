# app/api/v1/endpoints/cases.py
"""Case management endpoints"""
from fastapi import APIRouter, Depends, HTTPException, Query, Response, status, Path
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional
from uuid import UUID
from loguru import logger

from app.db.database import get_db
from app.db import crud
from app.db.models.enums import AuditAction, CaseStatus
from app.api.v1.dependencies import get_correlation_engine
from app.api.v1.schemas.cases import CaseCreate, CaseUpdate, CaseResponse
from app.core.correlation import CorrelationEngine
from app.exceptions.correlation import CaseNotFoundError

router = APIRouter()


@router.post("/", response_model=CaseResponse, status_code=status.HTTP_201_CREATED)
async def create_case(
    case_data: CaseCreate,
    db: AsyncSession = Depends(get_db),
    engine: CorrelationEngine = Depends(get_correlation_engine)
):
    """Create a new case"""
    try:
        case = await crud.case.create_case(db=db, case_data=case_data)
    except Exception as e:
        logger.error(f"Failed to create case: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create case"
        )

    engine.audit.notify(AuditAction.CASE_CREATED, {"id": str(case.uuid), "title": case.title}, case_id=case.uuid)
    await engine.flush_audit()
    return CaseResponse.from_model(case)


@router.get("/", response_model=List[CaseResponse])
async def list_cases(
    status_filter: Optional[CaseStatus] = Query(None, alias="status", description="Filter by case status"),
    db: AsyncSession = Depends(get_db)
):
    """List cases, most recently updated first"""
    cases = await crud.case.list_cases(db, status_filter=status_filter)
    return [CaseResponse.from_model(case) for case in cases]


@router.get("/{case_id}", response_model=CaseResponse)
async def get_case(
    case_id: UUID = Path(..., description="Case UUID"),
    db: AsyncSession = Depends(get_db)
):
    """Get case details"""
    case = await crud.case.get_case_by_uuid(db, case_id)
    if not case:
        raise CaseNotFoundError()
    return CaseResponse.from_model(case)


@router.put("/{case_id}", response_model=CaseResponse)
async def update_case(
    case_update: CaseUpdate,
    case_id: UUID = Path(..., description="Case UUID"),
    db: AsyncSession = Depends(get_db),
    engine: CorrelationEngine = Depends(get_correlation_engine)
):
    """Update case title, status or tags"""
    case = await crud.case.get_case_by_uuid(db, case_id)
    if not case:
        raise CaseNotFoundError()

    try:
        case = await crud.case.update_case(db, case, case_update)
    except Exception as e:
        logger.error(f"Failed to update case {case_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update case"
        )

    engine.audit.notify(
        AuditAction.CASE_UPDATED,
        {"id": str(case.uuid), "fields": sorted(case_update.model_fields_set)},
        case_id=case.uuid
    )
    await engine.flush_audit()
    return CaseResponse.from_model(case)


@router.delete("/{case_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_case(
    case_id: UUID = Path(..., description="Case UUID"),
    db: AsyncSession = Depends(get_db),
    engine: CorrelationEngine = Depends(get_correlation_engine)
):
    """Delete a case with all of its evidence; observable counts are recomputed"""
    case = await crud.case.get_case_by_uuid(db, case_id)
    if not case:
        raise CaseNotFoundError()

    engine.audit.notify(AuditAction.CASE_DELETED, {"id": str(case.uuid), "title": case.title}, case_id=case.uuid)
    try:
        deleted = await engine.remove_case(case.id)
    except Exception as e:
        logger.error(f"Failed to delete case {case_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete case"
        )

    if not deleted:
        raise CaseNotFoundError()

    logger.info(f"Case deleted: {case_id}")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
