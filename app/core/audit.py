# app/core/audit.py
"""
Best-effort audit trail.

Events are queued while a unit of work runs and written only after it has
committed. Queuing never raises, and a failed write is logged and dropped:
the audit log documents changes but never decides whether they happen.
"""
from typing import Any, Dict, List, Optional

from app.core import tracing
from app.core.metrics import AUDIT_FAILURES
from app.core.config import settings
from app.db.records import AuditEvent
from app.utils.helpers import utc_now


class AuditTrail:
    def __init__(self, actor: Optional[str] = None):
        self.actor = actor or settings.AUDIT_ACTOR
        self._pending: List[AuditEvent] = []

    @property
    def pending(self) -> List[AuditEvent]:
        return list(self._pending)

    def notify(self, action: str, payload: Dict[str, Any], case_id: Optional[str] = None) -> None:
        """Queue an event; fire-and-forget from the caller's point of view"""
        action_value = getattr(action, "value", action)
        self._pending.append(AuditEvent(
            action=action_value,
            payload=payload,
            ts=utc_now(),
            actor=self.actor,
            case_id=str(case_id) if case_id is not None else None,
        ))

    def discard(self) -> None:
        """Drop queued events (their unit of work was rolled back)"""
        self._pending.clear()

    async def flush(self, repository) -> int:
        """Write queued events through the repository; returns how many were stored"""
        events, self._pending = self._pending, []
        written = 0
        for event in events:
            try:
                await repository.record_audit_event(event)
                written += 1
            except Exception as e:
                AUDIT_FAILURES.inc()
                tracing.warning(
                    f"Audit log write failed for {event.action}: {e}",
                    action=event.action,
                    error_type=type(e).__name__
                )
                try:
                    await repository.rollback()
                except Exception as rollback_error:
                    tracing.warning(f"Rollback after audit failure failed: {rollback_error}")
        return written
