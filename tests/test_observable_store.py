"""
SQL observable store tests (SQLite, foreign keys on)
"""
import asyncio
import warnings
from datetime import timedelta

from sqlalchemy import select, func
from sqlalchemy.exc import SAWarning

from app.core.correlation import CorrelationEngine
from app.db.crud import observable as observable_crud
from app.db.models import Observable, EvidenceObservable, AuditLog
from app.db.models.enums import IndicatorType, ThreatLevel
from app.db.records import AuditEvent, IndicatorCandidate
from app.db.repository import SQLAlchemyObservableRepository
from app.utils.helpers import utc_now


def candidate(value, indicator_type=IndicatorType.DOMAIN, level=ThreatLevel.SUSPICIOUS):
    return IndicatorCandidate(value=value, type=indicator_type, threat_level=level)


async def fetch_observable(db_session, observable_id) -> Observable:
    result = await db_session.execute(
        select(Observable).filter(Observable.id == observable_id).execution_options(populate_existing=True)
    )
    return result.scalars().one()


class TestUpsert:
    """INSERT ... ON CONFLICT on the observable value"""

    async def test_insert_then_merge(self, db_session):
        t0 = utc_now()
        first = await observable_crud.upsert_observable(
            db_session, "evil.com", IndicatorType.DOMAIN, ThreatLevel.SUSPICIOUS, "feed", t0
        )
        second = await observable_crud.upsert_observable(
            db_session, "evil.com", IndicatorType.DOMAIN, ThreatLevel.MALICIOUS, "analyst", t0 + timedelta(hours=1)
        )
        await db_session.commit()

        assert first.created is True
        assert second.created is False
        assert first.observable_id == second.observable_id
        assert first.uuid == second.uuid

        observable = await fetch_observable(db_session, first.observable_id)
        assert observable.threat_level == ThreatLevel.MALICIOUS
        # source is set once, on creation
        assert observable.source == "feed"
        assert observable.last_seen > observable.first_seen

    async def test_last_seen_never_moves_backwards(self, db_session):
        t0 = utc_now()
        result = await observable_crud.upsert_observable(
            db_session, "evil.com", IndicatorType.DOMAIN, ThreatLevel.SUSPICIOUS, None, t0
        )
        await observable_crud.upsert_observable(
            db_session, "evil.com", IndicatorType.DOMAIN, ThreatLevel.SUSPICIOUS, None, t0 - timedelta(days=2)
        )
        await db_session.commit()

        observable = await fetch_observable(db_session, result.observable_id)
        assert observable.last_seen == observable.first_seen

    async def test_one_row_per_value(self, db_session):
        for level in (ThreatLevel.BENIGN, ThreatLevel.SUSPICIOUS, ThreatLevel.MALICIOUS):
            await observable_crud.upsert_observable(
                db_session, "1.2.3.4", IndicatorType.IP, level, None, utc_now()
            )
        await db_session.commit()

        total = await db_session.execute(select(func.count()).select_from(Observable))
        assert total.scalar() == 1


class TestLinksAndCounts:

    async def test_link_is_idempotent(self, db_session, make_case, make_evidence):
        case = await make_case("Case A")
        evidence = await make_evidence(case)
        result = await observable_crud.upsert_observable(
            db_session, "evil.com", IndicatorType.DOMAIN, ThreatLevel.SUSPICIOUS, None, utc_now()
        )

        assert await observable_crud.link_evidence_observable(db_session, evidence.id, result.observable_id) is True
        assert await observable_crud.link_evidence_observable(db_session, evidence.id, result.observable_id) is False
        await db_session.commit()

        links = await db_session.execute(select(func.count()).select_from(EvidenceObservable))
        assert links.scalar() == 1

    async def test_recount_counts_distinct_evidence_and_cases(self, db_session, make_case, make_evidence):
        case_a = await make_case("Case A")
        case_b = await make_case("Case B")
        evidence_items = [
            await make_evidence(case_a),
            await make_evidence(case_a),
            await make_evidence(case_b),
        ]
        result = await observable_crud.upsert_observable(
            db_session, "evil.com", IndicatorType.DOMAIN, ThreatLevel.SUSPICIOUS, None, utc_now()
        )
        for evidence in evidence_items:
            await observable_crud.link_evidence_observable(db_session, evidence.id, result.observable_id)

        counts = await observable_crud.recount_observable(db_session, result.observable_id)
        await db_session.commit()

        assert counts == (3, 2)
        observable = await fetch_observable(db_session, result.observable_id)
        assert (observable.evidences_count, observable.cases_count) == (3, 2)

    async def test_recount_missing_observable(self, db_session):
        assert await observable_crud.recount_observable(db_session, 9999) is None

    async def test_case_observable_ids_distinct_without_warnings(self, db_session, make_case, make_evidence):
        case = await make_case("Case A")
        first = await make_evidence(case)
        second = await make_evidence(case)
        result = await observable_crud.upsert_observable(
            db_session, "evil.com", IndicatorType.DOMAIN, ThreatLevel.SUSPICIOUS, None, utc_now()
        )
        for evidence in (first, second):
            await observable_crud.link_evidence_observable(db_session, evidence.id, result.observable_id)
        await db_session.commit()

        with warnings.catch_warnings():
            warnings.simplefilter("error", SAWarning)
            observable_ids = await observable_crud.get_case_observable_ids(db_session, case.id)

        assert observable_ids == [result.observable_id]


class TestConcurrentIngestion:
    """Several sessions ingesting the same new value at once"""

    async def test_one_row_and_full_count(self, db_session, session_factory, make_case, make_evidence):
        case = await make_case("Case A")
        evidence_items = [await make_evidence(case) for _ in range(5)]

        async def ingest(evidence_id):
            async with session_factory() as session:
                engine = CorrelationEngine(SQLAlchemyObservableRepository(session))
                return await engine.process_evidence(evidence_id, [candidate("race.example.com")])

        results = await asyncio.gather(*[ingest(evidence.id) for evidence in evidence_items])

        flat = [result for batch in results for result in batch]
        assert len(flat) == len(evidence_items)
        assert sum(1 for result in flat if result.created) == 1
        assert len({result.observable_id for result in flat}) == 1

        total = await db_session.execute(select(func.count()).select_from(Observable))
        assert total.scalar() == 1
        observable = await fetch_observable(db_session, flat[0].observable_id)
        assert (observable.evidences_count, observable.cases_count) == (len(evidence_items), 1)


class TestRepositoryWithEngine:
    """The correlation engine over the SQL repository"""

    async def test_case_delete_cascades_and_recounts(self, db_session, make_case, make_evidence):
        case_a = await make_case("Case A")
        case_b = await make_case("Case B")
        e1 = await make_evidence(case_a)
        e2 = await make_evidence(case_b)
        engine = CorrelationEngine(SQLAlchemyObservableRepository(db_session))

        results = await engine.process_evidence(e1.id, [candidate("evil.com"), candidate("only-a.com")])
        await engine.process_evidence(e2.id, [candidate("evil.com")])
        shared_id, only_a_id = results[0].observable_id, results[1].observable_id

        assert await engine.remove_case(case_a.id) is True

        shared = await fetch_observable(db_session, shared_id)
        only_a = await fetch_observable(db_session, only_a_id)
        assert (shared.evidences_count, shared.cases_count) == (1, 1)
        assert (only_a.evidences_count, only_a.cases_count) == (0, 0)

        remaining = await db_session.execute(
            select(func.count()).select_from(EvidenceObservable).filter(EvidenceObservable.evidence_id == e1.id)
        )
        assert remaining.scalar() == 0

    async def test_evidence_delete_recounts(self, db_session, make_case, make_evidence):
        case = await make_case("Case A")
        evidence = await make_evidence(case)
        engine = CorrelationEngine(SQLAlchemyObservableRepository(db_session))
        results = await engine.process_evidence(evidence.id, [candidate("evil.com")])

        assert await engine.remove_evidence(evidence.id) is True

        observable = await fetch_observable(db_session, results[0].observable_id)
        assert (observable.evidences_count, observable.cases_count) == (0, 0)

    async def test_observable_delete_cascades_links(self, db_session, make_case, make_evidence):
        case = await make_case("Case A")
        evidence = await make_evidence(case)
        engine = CorrelationEngine(SQLAlchemyObservableRepository(db_session))
        results = await engine.process_evidence(evidence.id, [candidate("evil.com")])

        assert await engine.delete_observable(results[0].observable_id, results[0].uuid) is True

        links = await db_session.execute(select(func.count()).select_from(EvidenceObservable))
        assert links.scalar() == 0

    async def test_related_cases_and_audit(self, db_session, make_case, make_evidence):
        case_a = await make_case("Alpha")
        case_b = await make_case("Bravo")
        e1 = await make_evidence(case_a)
        e2 = await make_evidence(case_b)
        repository = SQLAlchemyObservableRepository(db_session)
        engine = CorrelationEngine(repository)

        await engine.process_evidence(e1.id, [candidate("evil.com")])
        results = await engine.process_evidence(e2.id, [candidate("evil.com")])

        observable, related = await engine.get_observable(results[0].observable_id)
        assert observable.value == "evil.com"
        assert [case.title for case in related] == ["Alpha", "Bravo"]
        assert {case.id for case in related} == {case_a.uuid, case_b.uuid}

        logs = (await db_session.execute(select(AuditLog))).scalars().all()
        assert [log.action for log in logs] == ["create:observable"]
        assert logs[0].payload["value"] == "evil.com"

    async def test_record_audit_event(self, db_session):
        repository = SQLAlchemyObservableRepository(db_session)
        await repository.record_audit_event(
            AuditEvent(action="create:case", payload={"id": "x"}, ts=utc_now(), case_id="x")
        )

        logs = (await db_session.execute(select(AuditLog))).scalars().all()
        assert len(logs) == 1
        assert logs[0].actor == "local"
