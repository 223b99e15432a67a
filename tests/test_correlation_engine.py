"""
Correlation engine tests against the in-memory repository
"""
import pytest
from datetime import timedelta
from uuid import UUID
from prometheus_client import REGISTRY

from app.core.audit import AuditTrail
from app.core.correlation import CorrelationEngine, build_candidates
from app.db.models.enums import AuditAction, IndicatorType, ThreatLevel
from app.db.records import IndicatorCandidate, ObservableRecord
from app.db.repository import InMemoryObservableRepository
from app.exceptions.correlation import CorrelationError, IngestionError
from app.utils.helpers import utc_now


def candidate(value, indicator_type=IndicatorType.DOMAIN, level=ThreatLevel.SUSPICIOUS, source=None):
    return IndicatorCandidate(value=value, type=indicator_type, threat_level=level, source=source)


def counts(repository, observable_id):
    record = repository.observables[observable_id]
    return record.evidences_count, record.cases_count


class FailingLinkRepository(InMemoryObservableRepository):
    """Fails to link one specific value"""

    def __init__(self, failing_value):
        super().__init__()
        self.failing_value = failing_value
        self.upserted = []

    async def upsert(self, candidate, seen_at):
        self.upserted.append(candidate.value)
        return await super().upsert(candidate, seen_at)

    async def link(self, evidence_id, observable_id):
        if self.observables[observable_id].value == self.failing_value:
            raise RuntimeError("database is locked")
        return await super().link(evidence_id, observable_id)


class FailingAuditRepository(InMemoryObservableRepository):

    async def record_audit_event(self, event):
        raise RuntimeError("audit table unavailable")


class TestIngest:
    """Upsert, link and recount per candidate"""

    async def test_same_value_across_evidence_and_cases(self, memory_repository, correlation_engine):
        case_a = memory_repository.add_case("Case A")
        case_b = memory_repository.add_case("Case B")
        e1 = memory_repository.add_evidence(case_a)
        e2 = memory_repository.add_evidence(case_a)
        e3 = memory_repository.add_evidence(case_b)

        first = await correlation_engine.process_evidence(e1, [candidate("evil.com")])
        second = await correlation_engine.process_evidence(e2, [candidate("evil.com")])
        third = await correlation_engine.process_evidence(e3, [candidate("evil.com")])

        assert first[0].created is True
        assert second[0].created is False
        assert third[0].created is False
        assert first[0].observable_id == second[0].observable_id == third[0].observable_id
        assert len(memory_repository.observables) == 1
        assert counts(memory_repository, first[0].observable_id) == (3, 2)

    async def test_relinking_same_evidence_is_idempotent(self, memory_repository, correlation_engine):
        case_id = memory_repository.add_case("Case A")
        evidence_id = memory_repository.add_evidence(case_id)

        await correlation_engine.process_evidence(evidence_id, [candidate("evil.com")])
        results = await correlation_engine.process_evidence(evidence_id, [candidate("evil.com")])

        assert len(memory_repository.links) == 1
        assert counts(memory_repository, results[0].observable_id) == (1, 1)

    async def test_empty_values_skipped(self, memory_repository, correlation_engine):
        evidence_id = memory_repository.add_evidence(memory_repository.add_case("Case A"))

        results = await correlation_engine.process_evidence(
            evidence_id, [candidate(""), candidate("   "), candidate("evil.com")]
        )

        assert [memory_repository.observables[r.observable_id].value for r in results] == ["evil.com"]

    async def test_upsert_takes_latest_threat_level(self, memory_repository, correlation_engine):
        case_id = memory_repository.add_case("Case A")
        e1 = memory_repository.add_evidence(case_id)
        e2 = memory_repository.add_evidence(case_id)

        await correlation_engine.process_evidence(e1, [candidate("evil.com", level=ThreatLevel.SUSPICIOUS)])
        results = await correlation_engine.process_evidence(e2, [candidate("evil.com", level=ThreatLevel.MALICIOUS)])

        record = memory_repository.observables[results[0].observable_id]
        assert record.threat_level == ThreatLevel.MALICIOUS

    async def test_first_seen_kept_and_last_seen_monotonic(self, memory_repository, correlation_engine):
        case_id = memory_repository.add_case("Case A")
        e1 = memory_repository.add_evidence(case_id)
        e2 = memory_repository.add_evidence(case_id)
        e3 = memory_repository.add_evidence(case_id)
        t0 = utc_now()

        await correlation_engine.process_evidence(e1, [candidate("evil.com")], seen_at=t0)
        await correlation_engine.process_evidence(e2, [candidate("evil.com")], seen_at=t0 + timedelta(hours=1))
        results = await correlation_engine.process_evidence(e3, [candidate("evil.com")], seen_at=t0 - timedelta(days=1))

        record = memory_repository.observables[results[0].observable_id]
        assert record.first_seen == t0
        assert record.last_seen == t0 + timedelta(hours=1)

    async def test_ingest_does_not_commit(self, memory_repository, correlation_engine):
        evidence_id = memory_repository.add_evidence(memory_repository.add_case("Case A"))

        await correlation_engine.ingest(evidence_id, [candidate("evil.com")])

        assert memory_repository.commits == 0
        assert len(correlation_engine.audit.pending) == 1


class TestFailures:
    """Storage failures abort the ingestion and roll back"""

    async def test_failure_raises_ingestion_error(self):
        repository = FailingLinkRepository("bad.com")
        engine = CorrelationEngine(repository)
        evidence_id = repository.add_evidence(repository.add_case("Case A"))

        with pytest.raises(IngestionError) as exc_info:
            await engine.process_evidence(
                evidence_id, [candidate("ok.com"), candidate("bad.com"), candidate("later.com")]
            )

        assert isinstance(exc_info.value, CorrelationError)
        assert exc_info.value.value == "bad.com"
        assert exc_info.value.evidence_id == evidence_id
        assert isinstance(exc_info.value.cause, RuntimeError)
        assert repository.upserted == ["ok.com", "bad.com"]
        assert repository.rollbacks == 1
        assert repository.commits == 0

    async def test_failure_drops_queued_audit_events(self):
        repository = FailingLinkRepository("bad.com")
        engine = CorrelationEngine(repository)
        evidence_id = repository.add_evidence(repository.add_case("Case A"))

        with pytest.raises(IngestionError):
            await engine.process_evidence(evidence_id, [candidate("ok.com"), candidate("bad.com")])

        assert engine.audit.pending == []
        assert repository.audit_log == []

    async def test_failure_counted(self):
        repository = FailingLinkRepository("bad.com")
        engine = CorrelationEngine(repository)
        evidence_id = repository.add_evidence(repository.add_case("Case A"))
        before = REGISTRY.get_sample_value("correlator_ingestion_failures_total") or 0

        with pytest.raises(IngestionError):
            await engine.process_evidence(evidence_id, [candidate("bad.com")])

        assert REGISTRY.get_sample_value("correlator_ingestion_failures_total") == before + 1

    async def test_audit_failure_does_not_fail_ingestion(self):
        repository = FailingAuditRepository()
        engine = CorrelationEngine(repository)
        evidence_id = repository.add_evidence(repository.add_case("Case A"))
        before = REGISTRY.get_sample_value("correlator_audit_failures_total") or 0

        results = await engine.process_evidence(evidence_id, [candidate("evil.com")])

        assert results[0].created is True
        assert repository.commits == 1
        assert counts(repository, results[0].observable_id) == (1, 1)
        assert REGISTRY.get_sample_value("correlator_audit_failures_total") == before + 1


class TestAudit:

    def test_default_trail_uses_configured_actor(self):
        assert AuditTrail().actor == "local"

    async def test_creation_audited_once(self, memory_repository, correlation_engine):
        case_id = memory_repository.add_case("Case A")
        e1 = memory_repository.add_evidence(case_id)
        e2 = memory_repository.add_evidence(case_id)

        results = await correlation_engine.process_evidence(e1, [candidate("evil.com")])
        await correlation_engine.process_evidence(e2, [candidate("evil.com")])

        assert [event.action for event in memory_repository.audit_log] == [AuditAction.OBSERVABLE_CREATED.value]
        event = memory_repository.audit_log[0]
        assert event.payload == {"id": str(results[0].uuid), "value": "evil.com"}
        assert event.actor == "tester"

    async def test_observable_delete_audited(self, memory_repository, correlation_engine):
        evidence_id = memory_repository.add_evidence(memory_repository.add_case("Case A"))
        results = await correlation_engine.process_evidence(evidence_id, [candidate("evil.com")])

        assert await correlation_engine.delete_observable(results[0].observable_id) is True

        assert memory_repository.audit_log[-1].action == AuditAction.OBSERVABLE_DELETED.value


class TestRemoval:
    """Deletes capture linked observables, delete, then recount"""

    async def test_remove_evidence_recounts(self, memory_repository, correlation_engine):
        case_a = memory_repository.add_case("Case A")
        case_b = memory_repository.add_case("Case B")
        e1 = memory_repository.add_evidence(case_a)
        e2 = memory_repository.add_evidence(case_b)
        results = await correlation_engine.process_evidence(e1, [candidate("evil.com")])
        await correlation_engine.process_evidence(e2, [candidate("evil.com")])
        observable_id = results[0].observable_id

        assert await correlation_engine.remove_evidence(e2) is True
        assert counts(memory_repository, observable_id) == (1, 1)

        assert await correlation_engine.remove_evidence(e1) is True
        assert counts(memory_repository, observable_id) == (0, 0)
        # The canonical observable outlives its evidence
        assert observable_id in memory_repository.observables

    async def test_remove_unknown_evidence(self, memory_repository, correlation_engine):
        assert await correlation_engine.remove_evidence("missing") is False
        assert memory_repository.commits == 0

    async def test_remove_case_recounts(self, memory_repository, correlation_engine):
        case_a = memory_repository.add_case("Case A")
        case_b = memory_repository.add_case("Case B")
        e1 = memory_repository.add_evidence(case_a)
        e2 = memory_repository.add_evidence(case_a)
        e3 = memory_repository.add_evidence(case_b)
        results = await correlation_engine.process_evidence(e1, [candidate("evil.com"), candidate("1.2.3.4", IndicatorType.IP)])
        await correlation_engine.process_evidence(e2, [candidate("evil.com")])
        await correlation_engine.process_evidence(e3, [candidate("evil.com")])
        domain_id, ip_id = results[0].observable_id, results[1].observable_id

        assert await correlation_engine.remove_case(case_a) is True

        assert counts(memory_repository, domain_id) == (1, 1)
        assert counts(memory_repository, ip_id) == (0, 0)

    async def test_delete_observable_removes_links(self, memory_repository, correlation_engine):
        evidence_id = memory_repository.add_evidence(memory_repository.add_case("Case A"))
        results = await correlation_engine.process_evidence(evidence_id, [candidate("evil.com")])

        assert await correlation_engine.delete_observable(results[0].observable_id) is True
        assert memory_repository.links == set()
        assert await correlation_engine.get_observable(results[0].observable_id) is None
        assert await correlation_engine.delete_observable(results[0].observable_id) is False

    async def test_moved_evidence_recounted(self, memory_repository, correlation_engine):
        case_a = memory_repository.add_case("Case A")
        case_b = memory_repository.add_case("Case B")
        e1 = memory_repository.add_evidence(case_a)
        e2 = memory_repository.add_evidence(case_b)
        results = await correlation_engine.process_evidence(e1, [candidate("evil.com")])
        await correlation_engine.process_evidence(e2, [candidate("evil.com")])
        observable_id = results[0].observable_id
        assert counts(memory_repository, observable_id) == (2, 2)

        memory_repository.move_evidence(e1, case_b)
        await correlation_engine.process_evidence(e1, [], recount_linked=True)

        assert counts(memory_repository, observable_id) == (2, 1)

    async def test_refresh_evidence_rederives_counts(self, memory_repository, correlation_engine):
        evidence_id = memory_repository.add_evidence(memory_repository.add_case("Case A"))
        results = await correlation_engine.process_evidence(
            evidence_id, [candidate("evil.com"), candidate("1.2.3.4", IndicatorType.IP)]
        )
        for result in results:
            memory_repository.observables[result.observable_id].evidences_count = 99

        assert await correlation_engine.refresh_evidence(evidence_id) == 2
        assert [counts(memory_repository, r.observable_id) for r in results] == [(1, 1), (1, 1)]


class TestReads:

    async def test_list_ordered_by_last_seen_with_related_cases(self, memory_repository, correlation_engine):
        case_a = memory_repository.add_case("Alpha")
        case_b = memory_repository.add_case("Bravo")
        e1 = memory_repository.add_evidence(case_a)
        e2 = memory_repository.add_evidence(case_b)
        t0 = utc_now()

        await correlation_engine.process_evidence(e1, [candidate("old.com"), candidate("shared.com")], seen_at=t0)
        await correlation_engine.process_evidence(e2, [candidate("shared.com")], seen_at=t0 + timedelta(minutes=5))

        listed = await correlation_engine.list_observables()

        assert [record.value for record, _ in listed] == ["shared.com", "old.com"]
        shared_related = listed[0][1]
        assert [case.title for case in shared_related] == ["Alpha", "Bravo"]
        assert {case.id for case in shared_related} == {case_a, case_b}


class TestRecords:

    def test_observable_record_gets_fresh_uuid(self):
        now = utc_now()
        fields = dict(
            value="evil.com", type=IndicatorType.DOMAIN, threat_level=ThreatLevel.SUSPICIOUS,
            source=None, first_seen=now, last_seen=now, created_at=now, updated_at=now
        )

        first = ObservableRecord(id=1, **fields)
        second = ObservableRecord(id=2, **fields)

        assert isinstance(first.uuid, UUID)
        assert first.uuid != second.uuid
        assert (first.evidences_count, first.cases_count) == (0, 0)


class TestBuildCandidates:
    """Merging submitted and extracted indicators"""

    def test_submitted_entries_win(self):
        explicit = [candidate("Evil.com", level=ThreatLevel.MALICIOUS, source="analyst")]

        result = build_candidates(explicit, content="beacon to evil.com and 8.8.8.8")

        assert result == [
            candidate("Evil.com", level=ThreatLevel.MALICIOUS, source="analyst"),
            candidate("8.8.8.8", IndicatorType.IP),
        ]

    def test_extraction_disabled(self):
        result = build_candidates([candidate("evil.com")], content="8.8.8.8", extract=False)
        assert result == [candidate("evil.com")]

    def test_attachment_hashes_included(self):
        digest = "b" * 64
        result = build_candidates(
            files=[{"mime": "application/pdf", "sha256": digest}],
            threat_level=ThreatLevel.MALICIOUS,
            source="upload"
        )
        assert result == [candidate(digest, IndicatorType.SHA256, ThreatLevel.MALICIOUS, "upload")]

    def test_blank_values_dropped_and_trimmed(self):
        result = build_candidates([candidate(""), candidate("  evil.com  ")], extract=False)
        assert result == [candidate("evil.com")]