# app/db/crud/case.py
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from typing import Optional, List
from uuid import UUID
from loguru import logger

from app.db.models import Case
from app.db.models.enums import CaseStatus
from app.api.v1.schemas.cases import CaseCreate, CaseUpdate


async def get_case_by_uuid(db: AsyncSession, case_uuid: UUID) -> Optional[Case]:
    """Get case by UUID"""
    result = await db.execute(
        select(Case)
        .filter(Case.uuid == case_uuid)
        .execution_options(populate_existing=True)
    )
    return result.scalars().first()


async def list_cases(
        db: AsyncSession,
        status_filter: Optional[CaseStatus] = None
) -> List[Case]:
    """List cases, most recently updated first"""
    query = select(Case)
    if status_filter:
        query = query.filter(Case.status == status_filter)

    query = query.order_by(Case.updated_at.desc(), Case.id.desc())
    result = await db.execute(query)
    return list(result.scalars().all())


async def create_case(db: AsyncSession, case_data: CaseCreate) -> Case:
    """Create a new case"""
    try:
        case = Case(
            title=case_data.title.strip(),
            status=case_data.status,
            tags=case_data.tags or [],
        )
        db.add(case)
        await db.commit()
        await db.refresh(case)

        logger.info(f"Case created: {case.uuid} - {case.title[:50]}")
        return case

    except Exception as e:
        logger.error(f"Failed to create case: {e}")
        await db.rollback()
        raise


async def update_case(db: AsyncSession, case: Case, updates: CaseUpdate) -> Case:
    """Update case details"""
    try:
        update_data = updates.model_dump(exclude_unset=True)

        for field, value in update_data.items():
            if value is None:
                continue
            if field == 'title':
                value = value.strip()
            setattr(case, field, value)

        await db.commit()
        await db.refresh(case)

        logger.info(f"Case {case.uuid} updated")
        return case

    except Exception as e:
        logger.error(f"Failed to update case {case.uuid}: {e}")
        await db.rollback()
        raise
