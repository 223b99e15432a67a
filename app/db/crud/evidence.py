# app/db/crud/evidence.py
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm import joinedload
from typing import Optional, List
from uuid import UUID
from loguru import logger

from app.db.models import Evidence, Case
from app.api.v1.schemas.evidence import EvidenceCreate, EvidenceUpdate
from app.utils.helpers import utc_now


async def get_evidence_by_uuid(db: AsyncSession, evidence_uuid: UUID) -> Optional[Evidence]:
    """Get evidence by UUID with its case loaded"""
    result = await db.execute(
        select(Evidence)
        .options(joinedload(Evidence.case))
        .filter(Evidence.uuid == evidence_uuid)
        .execution_options(populate_existing=True)
    )
    return result.scalars().first()


async def list_evidence(db: AsyncSession, case_id: Optional[int] = None) -> List[Evidence]:
    """List evidence, newest observation first, optionally for one case"""
    query = select(Evidence).options(joinedload(Evidence.case))
    if case_id is not None:
        query = query.filter(Evidence.case_id == case_id)

    query = query.order_by(Evidence.observation_ts.desc(), Evidence.id.desc())
    result = await db.execute(query)
    return list(result.scalars().unique().all())


async def create_evidence(db: AsyncSession, evidence_data: EvidenceCreate, case: Case) -> Evidence:
    """
    Stage a new evidence row and flush it so it has an id.

    The caller commits: evidence and its observables are written in one
    transaction by the correlation engine.
    """
    now = utc_now()
    evidence = Evidence(
        type=evidence_data.type,
        title=evidence_data.title.strip(),
        content=evidence_data.content,
        source=evidence_data.source,
        tags=evidence_data.tags or [],
        verdict=evidence_data.verdict,
        files=[attachment.model_dump() for attachment in evidence_data.files],
        observation_ts=evidence_data.observation_ts or now,
        imported_by=evidence_data.imported_by,
        imported_at=now,
        case_id=case.id,
    )
    evidence.case = case

    db.add(evidence)
    await db.flush()

    logger.info(f"Evidence staged: {evidence.uuid} in case {case.uuid}")
    return evidence


async def update_evidence(
        db: AsyncSession,
        evidence: Evidence,
        updates: EvidenceUpdate,
        case: Optional[Case] = None
) -> Evidence:
    """Apply field updates and flush; the caller commits"""
    update_data = updates.model_dump(exclude_unset=True, exclude={"case_id", "observables", "extract_observables"})

    for field, value in update_data.items():
        # Every evidence column is NOT NULL; an explicit null leaves the field as is
        if value is None:
            continue
        if field == 'title':
            value = value.strip()
        setattr(evidence, field, value)

    if case is not None and case.id != evidence.case_id:
        evidence.case_id = case.id
        evidence.case = case

    await db.flush()
    logger.info(f"Evidence staged for update: {evidence.uuid}")
    return evidence
