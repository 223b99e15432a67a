# app/db/crud/observable.py
import uuid
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy import func, distinct, case, update, delete
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from typing import Optional, List, Dict, Tuple
from uuid import UUID
from loguru import logger

from app.db.models import Observable, EvidenceObservable, Evidence, Case, IndicatorType, ThreatLevel
from app.db.records import UpsertResult, RelatedCase, Counts

observables_table = Observable.__table__
links_table = EvidenceObservable.__table__
evidence_table = Evidence.__table__
cases_table = Case.__table__


def _dialect_insert(db: AsyncSession):
    """Pick the dialect insert construct that supports ON CONFLICT"""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert
    if dialect == "sqlite":
        return sqlite_insert
    raise NotImplementedError(f"Atomic upsert is not supported on dialect '{dialect}'")


async def upsert_observable(
        db: AsyncSession,
        value: str,
        indicator_type: IndicatorType,
        threat_level: ThreatLevel,
        source: Optional[str],
        seen_at: datetime
) -> UpsertResult:
    """
    Insert the observable, or refresh threat level and last_seen if the value exists.

    One INSERT ... ON CONFLICT (value) DO UPDATE statement, so two concurrent
    ingestions of a new value both end up on the same row. The row was created
    by this call when the returned uuid is the one proposed here.
    """
    insert = _dialect_insert(db)
    proposed_uuid = uuid.uuid4()

    stmt = insert(observables_table).values(
        uuid=proposed_uuid,
        value=value,
        type=indicator_type,
        threat_level=threat_level,
        source=source,
        first_seen=seen_at,
        last_seen=seen_at,
        evidences_count=0,
        cases_count=0,
        created_at=seen_at,
        updated_at=seen_at,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[observables_table.c.value],
        set_={
            "threat_level": stmt.excluded.threat_level,
            "last_seen": case(
                (stmt.excluded.last_seen > observables_table.c.last_seen, stmt.excluded.last_seen),
                else_=observables_table.c.last_seen,
            ),
            "updated_at": stmt.excluded.updated_at,
        },
    ).returning(observables_table.c.id, observables_table.c.uuid)

    row = (await db.execute(stmt)).one()
    return UpsertResult(observable_id=row.id, uuid=row.uuid, created=row.uuid == proposed_uuid)


async def link_evidence_observable(db: AsyncSession, evidence_id: int, observable_id: int) -> bool:
    """Associate evidence and observable; returns False when the pair already existed"""
    insert = _dialect_insert(db)
    stmt = insert(links_table).values(
        evidence_id=evidence_id,
        observable_id=observable_id,
    ).on_conflict_do_nothing(index_elements=[links_table.c.evidence_id, links_table.c.observable_id])

    result = await db.execute(stmt)
    return result.rowcount == 1


async def recount_observable(db: AsyncSession, observable_id: int) -> Optional[Counts]:
    """Re-derive evidences_count / cases_count from the link table in one UPDATE"""
    evidences_count = (
        select(func.count(distinct(links_table.c.evidence_id)))
        .where(links_table.c.observable_id == observable_id)
        .scalar_subquery()
    )
    cases_count = (
        select(func.count(distinct(evidence_table.c.case_id)))
        .select_from(links_table.join(evidence_table, evidence_table.c.id == links_table.c.evidence_id))
        .where(links_table.c.observable_id == observable_id)
        .scalar_subquery()
    )

    stmt = (
        update(observables_table)
        .where(observables_table.c.id == observable_id)
        .values(evidences_count=evidences_count, cases_count=cases_count)
        .returning(observables_table.c.evidences_count, observables_table.c.cases_count)
    )
    row = (await db.execute(stmt)).first()
    if row is None:
        logger.warning(f"Recount skipped: observable {observable_id} no longer exists")
        return None
    return Counts(evidences_count=row.evidences_count, cases_count=row.cases_count)


async def get_linked_observable_ids(db: AsyncSession, evidence_id: int) -> List[int]:
    """Observable ids currently linked to one evidence item"""
    result = await db.execute(
        select(links_table.c.observable_id).where(links_table.c.evidence_id == evidence_id)
    )
    return list(result.scalars().all())


async def get_linked_observable_uuids(db: AsyncSession, evidence_ids: List[int]) -> Dict[int, List[UUID]]:
    """Public observable UUIDs linked to each evidence item"""
    if not evidence_ids:
        return {}

    result = await db.execute(
        select(links_table.c.evidence_id, observables_table.c.uuid)
        .select_from(links_table.join(observables_table, observables_table.c.id == links_table.c.observable_id))
        .where(links_table.c.evidence_id.in_(evidence_ids))
        .order_by(links_table.c.evidence_id, observables_table.c.id)
    )

    linked: Dict[int, List[UUID]] = {}
    for evidence_id, observable_uuid in result.all():
        linked.setdefault(evidence_id, []).append(observable_uuid)
    return linked


async def get_case_observable_ids(db: AsyncSession, case_id: int) -> List[int]:
    """Observable ids linked to any evidence of a case"""
    result = await db.execute(
        select(links_table.c.observable_id)
        .select_from(links_table.join(evidence_table, evidence_table.c.id == links_table.c.evidence_id))
        .where(evidence_table.c.case_id == case_id)
        .distinct()
    )
    return list(result.scalars().all())


async def delete_evidence(db: AsyncSession, evidence_id: int) -> bool:
    """Delete an evidence row; link rows go with it through ON DELETE CASCADE"""
    result = await db.execute(delete(evidence_table).where(evidence_table.c.id == evidence_id))
    return result.rowcount > 0


async def delete_case(db: AsyncSession, case_id: int) -> bool:
    """Delete a case; its evidence and their link rows cascade"""
    result = await db.execute(delete(cases_table).where(cases_table.c.id == case_id))
    return result.rowcount > 0


async def delete_observable(db: AsyncSession, observable_id: int) -> bool:
    """Delete the canonical record; link rows cascade"""
    result = await db.execute(delete(observables_table).where(observables_table.c.id == observable_id))
    return result.rowcount > 0


async def get_observable_by_uuid(db: AsyncSession, observable_uuid: UUID) -> Optional[Observable]:
    """Get observable by UUID"""
    result = await db.execute(
        select(Observable)
        .filter(Observable.uuid == observable_uuid)
        .execution_options(populate_existing=True)
    )
    return result.scalars().first()


async def get_related_cases(db: AsyncSession, observable_ids: List[int]) -> Dict[int, List[RelatedCase]]:
    """Distinct (case uuid, case title) pairs reachable from each observable's links"""
    if not observable_ids:
        return {}

    result = await db.execute(
        select(links_table.c.observable_id, cases_table.c.uuid, cases_table.c.title)
        .select_from(
            links_table
            .join(evidence_table, evidence_table.c.id == links_table.c.evidence_id)
            .join(cases_table, cases_table.c.id == evidence_table.c.case_id)
        )
        .where(links_table.c.observable_id.in_(observable_ids))
        .distinct()
        .order_by(links_table.c.observable_id, cases_table.c.title)
    )

    related: Dict[int, List[RelatedCase]] = {}
    for observable_id, case_uuid, title in result.all():
        related.setdefault(observable_id, []).append(RelatedCase(id=case_uuid, title=title))
    return related


async def list_observables_with_cases(db: AsyncSession) -> List[Tuple[Observable, List[RelatedCase]]]:
    """All observables, most recently seen first, each with its related cases"""
    result = await db.execute(
        select(Observable)
        .order_by(Observable.last_seen.desc(), Observable.id.desc())
        .execution_options(populate_existing=True)
    )
    observables = result.scalars().all()

    related = await get_related_cases(db, [observable.id for observable in observables])
    return [(observable, related.get(observable.id, [])) for observable in observables]


async def get_observable_with_cases(
        db: AsyncSession,
        observable_id: int
) -> Optional[Tuple[Observable, List[RelatedCase]]]:
    """One observable with its related cases"""
    result = await db.execute(
        select(Observable)
        .filter(Observable.id == observable_id)
        .execution_options(populate_existing=True)
    )
    observable = result.scalars().first()
    if observable is None:
        return None

    related = await get_related_cases(db, [observable.id])
    return observable, related.get(observable.id, [])
