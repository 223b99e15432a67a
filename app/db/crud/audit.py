# app/db/crud/audit.py
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from typing import Optional, List

from app.db.models import AuditLog
from app.db.records import AuditEvent


async def create_audit_log(db: AsyncSession, event: AuditEvent) -> AuditLog:
    """Persist one audit event in its own commit"""
    audit_log = AuditLog(
        ts=event.ts,
        action=event.action,
        actor=event.actor,
        payload=event.payload,
        case_id=event.case_id,
    )
    db.add(audit_log)
    await db.commit()
    return audit_log


async def list_audit_logs(db: AsyncSession, case_id: Optional[str] = None, limit: int = 50) -> List[AuditLog]:
    """Newest audit entries first, optionally for one case UUID"""
    query = select(AuditLog)
    if case_id:
        query = query.filter(AuditLog.case_id == case_id)

    query = query.order_by(AuditLog.ts.desc(), AuditLog.id.desc()).limit(limit)
    result = await db.execute(query)
    return list(result.scalars().all())
