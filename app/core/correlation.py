# app/core/correlation.py
"""
Observable correlation engine.

For every evidence write the engine upserts each candidate indicator into
the canonical observable store, links it to the evidence and re-derives the
observable's cached counts. Deleting evidence (or a whole case) captures the
linked observables first, deletes, then recounts them.
"""
from datetime import datetime
from typing import Callable, Hashable, Iterable, List, Optional, Sequence

from app.core import tracing
from app.core.audit import AuditTrail
from app.core.ioc_classifier import extract_indicators, file_hash_indicators
from app.core.metrics import OBSERVABLES_CREATED, OBSERVABLE_LINKS, INGESTION_FAILURES
from app.db.models.enums import AuditAction, ThreatLevel
from app.db.records import IndicatorCandidate, UpsertResult
from app.db.repository import ObservableRepository, EnrichedObservable
from app.exceptions.correlation import IngestionError
from app.utils.helpers import utc_now, truncate_string


def build_candidates(
        explicit: Iterable[IndicatorCandidate] = (),
        content: Optional[str] = None,
        files: Optional[Iterable] = None,
        extract: bool = True,
        threat_level: ThreatLevel = ThreatLevel.SUSPICIOUS,
        source: Optional[str] = None
) -> List[IndicatorCandidate]:
    """
    Merge submitted candidates with indicators found in content and attachments.

    Submitted entries come first and win over extracted ones with the same
    (case-insensitive) value. Entries with an empty value are dropped.
    """
    candidates: List[IndicatorCandidate] = []
    seen = set()

    def add(candidate: IndicatorCandidate):
        value = (candidate.value or "").strip()
        key = value.lower()
        if not value or key in seen:
            return
        seen.add(key)
        if value != candidate.value:
            candidate = IndicatorCandidate(
                value=value,
                type=candidate.type,
                threat_level=candidate.threat_level,
                source=candidate.source
            )
        candidates.append(candidate)

    for candidate in explicit:
        add(candidate)

    if extract:
        for found in extract_indicators(content) + file_hash_indicators(files):
            add(IndicatorCandidate(value=found.value, type=found.type, threat_level=threat_level, source=source))

    return candidates


class CorrelationEngine:
    """Keeps observables, evidence links and cached counts consistent"""

    def __init__(
            self,
            repository: ObservableRepository,
            audit: Optional[AuditTrail] = None,
            clock: Callable[[], datetime] = utc_now
    ):
        self.repository = repository
        self.audit = audit or AuditTrail()
        self.clock = clock

    async def ingest(
            self,
            evidence_id: Hashable,
            candidates: Sequence[IndicatorCandidate],
            seen_at: Optional[datetime] = None
    ) -> List[UpsertResult]:
        """
        Upsert, link and recount each candidate in order, without committing.

        Raises:
            IngestionError: on the first candidate that cannot be stored; later
                candidates are not attempted.
        """
        seen_at = seen_at or self.clock()
        results: List[UpsertResult] = []

        for candidate in candidates:
            value = (candidate.value or "").strip()
            if not value:
                continue

            try:
                result = await self.repository.upsert(candidate, seen_at)
                linked = await self.repository.link(evidence_id, result.observable_id)
                counts = await self.repository.recount(result.observable_id)
            except Exception as e:
                INGESTION_FAILURES.inc()
                tracing.error(
                    f"Observable ingestion failed for evidence {evidence_id}: {e}",
                    value=truncate_string(value),
                    error_type=type(e).__name__
                )
                raise IngestionError(evidence_id, value, e) from e

            if result.created:
                OBSERVABLES_CREATED.labels(type=candidate.type.value).inc()
                self.audit.notify(AuditAction.OBSERVABLE_CREATED, {"id": str(result.uuid), "value": value})
                tracing.info(
                    f"Observable created: {candidate.type.value} - {truncate_string(value, 50)}",
                    observable_id=str(result.uuid)
                )
            if linked:
                OBSERVABLE_LINKS.inc()

            tracing.debug(
                f"Observable {result.uuid} recounted",
                evidences_count=counts.evidences_count if counts else None,
                cases_count=counts.cases_count if counts else None
            )
            results.append(result)

        return results

    async def process_evidence(
            self,
            evidence_id: Hashable,
            candidates: Sequence[IndicatorCandidate],
            recount_linked: bool = False,
            seen_at: Optional[datetime] = None
    ) -> List[UpsertResult]:
        """
        Ingest as one unit of work: commit on success, roll back everything on failure.

        With recount_linked, observables already linked to the evidence are
        recounted too (its case may have changed).
        """
        span_attributes = {"evidence_id": evidence_id, "candidates": len(candidates)}
        with tracing.start_span("correlation.process_evidence", span_attributes):
            try:
                results = await self.ingest(evidence_id, candidates, seen_at=seen_at)

                if recount_linked:
                    touched = {result.observable_id for result in results}
                    await self.refresh_evidence(evidence_id, skip=touched)

                await self.repository.commit()
            except Exception:
                self.audit.discard()
                await self.repository.rollback()
                raise

        tracing.info(
            f"Evidence {evidence_id} correlated",
            candidates=len(candidates),
            observables=len(results),
            created=sum(1 for result in results if result.created)
        )
        await self.flush_audit()
        return results

    async def remove_evidence(self, evidence_id: Hashable) -> bool:
        """Delete evidence and recount every observable it was linked to"""
        return await self._remove(
            capture=self.repository.linked_observable_ids,
            delete=self.repository.delete_evidence,
            target_id=evidence_id,
            label="evidence"
        )

    async def remove_case(self, case_id: Hashable) -> bool:
        """Delete a case (cascading to its evidence) and recount affected observables"""
        return await self._remove(
            capture=self.repository.case_observable_ids,
            delete=self.repository.delete_case,
            target_id=case_id,
            label="case"
        )

    async def _remove(self, capture, delete, target_id: Hashable, label: str) -> bool:
        try:
            # Capture before the delete: the cascade removes the link rows
            observable_ids = await capture(target_id)
            deleted = await delete(target_id)
            if not deleted:
                await self.repository.rollback()
                self.audit.discard()
                return False

            for observable_id in observable_ids:
                await self.repository.recount(observable_id)

            await self.repository.commit()
        except Exception:
            self.audit.discard()
            await self.repository.rollback()
            raise

        tracing.info(f"Removed {label} {target_id}, recounted {len(observable_ids)} observables")
        await self.flush_audit()
        return True

    async def refresh_evidence(self, evidence_id: Hashable, skip: Iterable[Hashable] = ()) -> int:
        """Recount every observable linked to the evidence, without committing"""
        skip = set(skip)
        refreshed = 0
        for observable_id in await self.repository.linked_observable_ids(evidence_id):
            if observable_id in skip:
                continue
            await self.repository.recount(observable_id)
            refreshed += 1
        return refreshed

    async def delete_observable(self, observable_id: Hashable, observable_uuid=None) -> bool:
        """Delete a canonical observable; its links cascade"""
        try:
            deleted = await self.repository.delete_observable(observable_id)
            await self.repository.commit()
        except Exception:
            self.audit.discard()
            await self.repository.rollback()
            raise

        if deleted:
            self.audit.notify(AuditAction.OBSERVABLE_DELETED, {"id": str(observable_uuid or observable_id)})
            await self.flush_audit()
        return deleted

    async def list_observables(self) -> List[EnrichedObservable]:
        return await self.repository.list_with_related_cases()

    async def get_observable(self, observable_id: Hashable) -> Optional[EnrichedObservable]:
        return await self.repository.get_with_related_cases(observable_id)

    async def flush_audit(self) -> int:
        return await self.audit.flush(self.repository)
