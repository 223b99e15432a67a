# app/db/repository.py
"""
Storage interface of the correlation engine.

The engine only talks to an ObservableRepository. The SQLAlchemy
implementation runs against the request's AsyncSession; the in-memory one
keeps the same semantics (unique values, idempotent links, cascading
deletes) in dictionaries so engine behaviour can be tested without a
database.
"""
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Hashable, List, Optional, Set, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from app.db.crud import observable as observable_crud
from app.db.crud import audit as audit_crud
from app.db.records import (
    AuditEvent, Counts, IndicatorCandidate, ObservableRecord, RelatedCase, UpsertResult
)

EnrichedObservable = Tuple[object, List[RelatedCase]]


class ObservableRepository(ABC):
    """Persistence operations needed by the correlation engine"""

    @abstractmethod
    async def upsert(self, candidate: IndicatorCandidate, seen_at: datetime) -> UpsertResult:
        """Atomically create the observable for candidate.value or refresh threat level / last_seen"""

    @abstractmethod
    async def link(self, evidence_id: Hashable, observable_id: Hashable) -> bool:
        """Create the evidence/observable association if absent; True when a row was added"""

    @abstractmethod
    async def recount(self, observable_id: Hashable) -> Optional[Counts]:
        """Re-derive and store the cached counts; None when the observable is gone"""

    @abstractmethod
    async def linked_observable_ids(self, evidence_id: Hashable) -> List[Hashable]:
        ...

    @abstractmethod
    async def case_observable_ids(self, case_id: Hashable) -> List[Hashable]:
        ...

    @abstractmethod
    async def delete_evidence(self, evidence_id: Hashable) -> bool:
        ...

    @abstractmethod
    async def delete_case(self, case_id: Hashable) -> bool:
        ...

    @abstractmethod
    async def delete_observable(self, observable_id: Hashable) -> bool:
        ...

    @abstractmethod
    async def list_with_related_cases(self) -> List[EnrichedObservable]:
        """Observables ordered by last_seen descending, each with its related cases"""

    @abstractmethod
    async def get_with_related_cases(self, observable_id: Hashable) -> Optional[EnrichedObservable]:
        ...

    @abstractmethod
    async def record_audit_event(self, event: AuditEvent) -> None:
        ...

    @abstractmethod
    async def commit(self) -> None:
        ...

    @abstractmethod
    async def rollback(self) -> None:
        ...


class SQLAlchemyObservableRepository(ObservableRepository):
    """Repository bound to one AsyncSession; ids are internal integer primary keys"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def upsert(self, candidate: IndicatorCandidate, seen_at: datetime) -> UpsertResult:
        return await observable_crud.upsert_observable(
            self.db,
            value=candidate.value,
            indicator_type=candidate.type,
            threat_level=candidate.threat_level,
            source=candidate.source,
            seen_at=seen_at,
        )

    async def link(self, evidence_id: int, observable_id: int) -> bool:
        return await observable_crud.link_evidence_observable(self.db, evidence_id, observable_id)

    async def recount(self, observable_id: int) -> Optional[Counts]:
        return await observable_crud.recount_observable(self.db, observable_id)

    async def linked_observable_ids(self, evidence_id: int) -> List[int]:
        return await observable_crud.get_linked_observable_ids(self.db, evidence_id)

    async def case_observable_ids(self, case_id: int) -> List[int]:
        return await observable_crud.get_case_observable_ids(self.db, case_id)

    async def delete_evidence(self, evidence_id: int) -> bool:
        return await observable_crud.delete_evidence(self.db, evidence_id)

    async def delete_case(self, case_id: int) -> bool:
        return await observable_crud.delete_case(self.db, case_id)

    async def delete_observable(self, observable_id: int) -> bool:
        return await observable_crud.delete_observable(self.db, observable_id)

    async def list_with_related_cases(self) -> List[EnrichedObservable]:
        return await observable_crud.list_observables_with_cases(self.db)

    async def get_with_related_cases(self, observable_id: int) -> Optional[EnrichedObservable]:
        return await observable_crud.get_observable_with_cases(self.db, observable_id)

    async def record_audit_event(self, event: AuditEvent) -> None:
        await audit_crud.create_audit_log(self.db, event)

    async def commit(self) -> None:
        await self.db.commit()

    async def rollback(self) -> None:
        await self.db.rollback()


class InMemoryObservableRepository(ObservableRepository):
    """
    Dictionary-backed repository.

    Cases and evidence are registered with add_case/add_evidence since they
    belong to other subsystems. Commit and rollback only count calls.
    """

    def __init__(self):
        self.observables: Dict[Hashable, ObservableRecord] = {}
        self.links: Set[Tuple[Hashable, Hashable]] = set()
        self.evidence: Dict[Hashable, Hashable] = {}
        self.cases: Dict[Hashable, str] = {}
        self.audit_log: List[AuditEvent] = []
        self.commits = 0
        self.rollbacks = 0
        self._ids_by_value: Dict[str, Hashable] = {}

    # Collaborator setup

    def add_case(self, title: str, case_id: Optional[Hashable] = None) -> Hashable:
        case_id = case_id if case_id is not None else uuid.uuid4()
        self.cases[case_id] = title
        return case_id

    def add_evidence(self, case_id: Hashable, evidence_id: Optional[Hashable] = None) -> Hashable:
        if case_id not in self.cases:
            raise KeyError(f"Unknown case {case_id}")
        evidence_id = evidence_id if evidence_id is not None else uuid.uuid4()
        self.evidence[evidence_id] = case_id
        return evidence_id

    def move_evidence(self, evidence_id: Hashable, case_id: Hashable) -> None:
        if case_id not in self.cases:
            raise KeyError(f"Unknown case {case_id}")
        self.evidence[evidence_id] = case_id

    # ObservableRepository

    async def upsert(self, candidate: IndicatorCandidate, seen_at: datetime) -> UpsertResult:
        existing_id = self._ids_by_value.get(candidate.value)
        if existing_id is not None:
            record = self.observables[existing_id]
            record.threat_level = candidate.threat_level
            record.last_seen = max(record.last_seen, seen_at)
            record.updated_at = seen_at
            return UpsertResult(observable_id=record.id, uuid=record.uuid, created=False)

        observable_uuid = uuid.uuid4()
        record = ObservableRecord(
            id=observable_uuid,
            uuid=observable_uuid,
            value=candidate.value,
            type=candidate.type,
            threat_level=candidate.threat_level,
            source=candidate.source,
            first_seen=seen_at,
            last_seen=seen_at,
            created_at=seen_at,
            updated_at=seen_at,
        )
        self.observables[record.id] = record
        self._ids_by_value[record.value] = record.id
        return UpsertResult(observable_id=record.id, uuid=record.uuid, created=True)

    async def link(self, evidence_id: Hashable, observable_id: Hashable) -> bool:
        if evidence_id not in self.evidence:
            raise KeyError(f"Unknown evidence {evidence_id}")
        if observable_id not in self.observables:
            raise KeyError(f"Unknown observable {observable_id}")

        pair = (evidence_id, observable_id)
        if pair in self.links:
            return False
        self.links.add(pair)
        return True

    async def recount(self, observable_id: Hashable) -> Optional[Counts]:
        record = self.observables.get(observable_id)
        if record is None:
            return None

        evidence_ids = {evidence_id for evidence_id, linked_id in self.links if linked_id == observable_id}
        case_ids = {self.evidence[evidence_id] for evidence_id in evidence_ids}
        record.evidences_count = len(evidence_ids)
        record.cases_count = len(case_ids)
        return Counts(evidences_count=record.evidences_count, cases_count=record.cases_count)

    async def linked_observable_ids(self, evidence_id: Hashable) -> List[Hashable]:
        return [observable_id for linked_evidence, observable_id in self.links if linked_evidence == evidence_id]

    async def case_observable_ids(self, case_id: Hashable) -> List[Hashable]:
        return list({
            observable_id for evidence_id, observable_id in self.links
            if self.evidence.get(evidence_id) == case_id
        })

    async def delete_evidence(self, evidence_id: Hashable) -> bool:
        if evidence_id not in self.evidence:
            return False
        del self.evidence[evidence_id]
        self.links = {pair for pair in self.links if pair[0] != evidence_id}
        return True

    async def delete_case(self, case_id: Hashable) -> bool:
        if case_id not in self.cases:
            return False
        for evidence_id in [e for e, owner in self.evidence.items() if owner == case_id]:
            await self.delete_evidence(evidence_id)
        del self.cases[case_id]
        return True

    async def delete_observable(self, observable_id: Hashable) -> bool:
        record = self.observables.pop(observable_id, None)
        if record is None:
            return False
        del self._ids_by_value[record.value]
        self.links = {pair for pair in self.links if pair[1] != observable_id}
        return True

    def _related_cases(self, observable_id: Hashable) -> List[RelatedCase]:
        case_ids = {
            self.evidence[evidence_id] for evidence_id, linked_id in self.links
            if linked_id == observable_id
        }
        related = [RelatedCase(id=case_id, title=self.cases[case_id]) for case_id in case_ids]
        return sorted(related, key=lambda case: case.title)

    async def list_with_related_cases(self) -> List[EnrichedObservable]:
        records = sorted(self.observables.values(), key=lambda record: record.last_seen, reverse=True)
        return [(record, self._related_cases(record.id)) for record in records]

    async def get_with_related_cases(self, observable_id: Hashable) -> Optional[EnrichedObservable]:
        record = self.observables.get(observable_id)
        if record is None:
            return None
        return record, self._related_cases(record.id)

    async def record_audit_event(self, event: AuditEvent) -> None:
        self.audit_log.append(event)

    async def commit(self) -> None:
        self.commits += 1

    async def rollback(self) -> None:
        self.rollbacks += 1
