"""Tests for the database layer, result persistence and pruning."""

import asyncio
import json
from datetime import datetime, timedelta

import httpx
import pytest
from sqlalchemy import text

from fakes import SAMPLE_ITINERARY, make_request
from tripweaver.db.manager import DatabaseManager
from tripweaver.db.models import GenerationRecord, UsageCounter
from tripweaver.maintenance import UsagePruner, run_pruning
from tripweaver.models import (
    GenerationMetrics,
    GenerationResult,
    ProviderRole,
    ValidationReport,
)
from tripweaver.persistence import RewardNotifier, SqlResultStore


def successful_result(request_id: str) -> GenerationResult:
    return GenerationResult(
        success=True,
        data=SAMPLE_ITINERARY,
        quality_score=88,
        validation_report=ValidationReport(source=ProviderRole.SUPERVISOR, quality_score=88, approved=True),
        metrics=GenerationMetrics(
            total_latency_ms=420.0,
            providers_used=[ProviderRole.CREATIVE, ProviderRole.VALIDATOR, ProviderRole.SUPERVISOR],
        ),
        request_id=request_id,
    )


def add_counter(db_manager: DatabaseManager, user_id: str, period_end: datetime) -> None:
    with db_manager.get_session() as session:
        session.add(
            UsageCounter(
                user_id=user_id,
                usage_type="itineraries_created",
                period_type="monthly",
                period_start=(period_end - timedelta(days=30)).date().isoformat(),
                period_end=period_end,
                count=2,
                usage_limit=3,
            )
        )


class TestDatabaseManager:
    """Tests for DatabaseManager."""

    def test_health_check(self, db_manager: DatabaseManager) -> None:
        assert db_manager.health_check() is True

    def test_session_rollback_on_exception(self, db_manager: DatabaseManager) -> None:
        """Nothing is committed when the block raises."""
        with pytest.raises(ValueError):
            with db_manager.get_session() as session:
                session.add(
                    UsageCounter(
                        user_id="rolled-back",
                        usage_type="itineraries_created",
                        period_type="monthly",
                        period_start="2026-03-01",
                        period_end=datetime(2026, 4, 1),
                        count=1,
                        usage_limit=3,
                    )
                )
                raise ValueError("Simulated error")

        with db_manager.get_session() as session:
            users = {c.user_id for c in session.query(UsageCounter).all()}
        assert users == set()

    def test_counter_window_is_unique(self, db_manager: DatabaseManager) -> None:
        add_counter(db_manager, "user-1", datetime(2026, 4, 1))

        with pytest.raises(Exception):  # SQLAlchemy integrity error
            add_counter(db_manager, "user-1", datetime(2026, 4, 1))

    def test_close_is_idempotent(self, temp_db_path: str) -> None:
        manager = DatabaseManager(database_url=f"sqlite:///{temp_db_path}")
        manager.init_db()

        manager.close()
        manager.close()

    def test_file_database_uses_wal(self, db_manager: DatabaseManager) -> None:
        with db_manager.engine.connect() as conn:
            mode = conn.execute(text("PRAGMA journal_mode")).scalar_one()

        assert mode.lower() == "wal"

    @pytest.mark.asyncio
    async def test_in_memory_database_is_shared_across_threads(self) -> None:
        manager = DatabaseManager(database_url="sqlite://")
        manager.init_db()

        await asyncio.to_thread(add_counter, manager, "user-1", datetime(2026, 4, 1))

        with manager.get_session() as session:
            users = [c.user_id for c in session.query(UsageCounter).all()]
        assert users == ["user-1"]
        manager.close()


class TestSqlResultStore:
    """Tests for SqlResultStore."""

    @pytest.mark.asyncio
    async def test_persist_and_get(self, db_manager: DatabaseManager) -> None:
        store = SqlResultStore(db_manager)
        request = make_request(interests=["food"])

        record_id = await store.persist(successful_result(request.request_id), request)

        stored = store.get(request.request_id)
        assert stored is not None
        assert stored["id"] == int(record_id)
        assert stored["user_id"] == "user-1"
        assert stored["tier"] == "pro"
        assert stored["city"] == "Seoul"
        assert stored["quality_score"] == 88
        assert stored["providers_used"] == ["creative", "validator", "supervisor"]
        assert stored["itinerary"] == SAMPLE_ITINERARY

    @pytest.mark.asyncio
    async def test_params_and_report_are_stored_as_json(self, db_manager: DatabaseManager) -> None:
        store = SqlResultStore(db_manager)
        request = make_request(interests=["food"], pace="relaxed")

        await store.persist(successful_result(request.request_id), request)

        with db_manager.get_session() as session:
            record = session.query(GenerationRecord).one()
            params = json.loads(record.params_json)
            report = json.loads(record.report_json)
        assert params == {"city": "Seoul", "days": 3, "interests": ["food"], "pace": "relaxed"}
        assert report["source"] == "supervisor"

    @pytest.mark.asyncio
    async def test_failed_results_are_refused(self, db_manager: DatabaseManager) -> None:
        store = SqlResultStore(db_manager)

        with pytest.raises(ValueError):
            await store.persist(GenerationResult(success=False, error="boom"), make_request())

    def test_unknown_request(self, db_manager: DatabaseManager) -> None:
        assert SqlResultStore(db_manager).get("missing") is None


class TestRewardNotifier:
    """Tests for RewardNotifier."""

    @pytest.mark.asyncio
    async def test_posts_event(self) -> None:
        seen: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return httpx.Response(202)

        request = make_request()
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            notifier = RewardNotifier("https://rewards.test/events", client=client)
            await notifier.notify(request, successful_result(request.request_id))

        assert seen == [
            {
                "event": "itinerary_created",
                "user_id": "user-1",
                "request_id": request.request_id,
                "city": "Seoul",
                "days": 3,
            }
        ]

    @pytest.mark.asyncio
    async def test_error_status_raises(self) -> None:
        request = make_request()
        transport = httpx.MockTransport(lambda r: httpx.Response(503))
        async with httpx.AsyncClient(transport=transport) as client:
            notifier = RewardNotifier("https://rewards.test/events", client=client)

            with pytest.raises(httpx.HTTPStatusError):
                await notifier.notify(request, successful_result(request.request_id))


class TestUsagePruner:
    """Tests for UsagePruner and the scheduled entry point."""

    def test_prunes_counters_past_retention(self, db_manager: DatabaseManager) -> None:
        now = datetime(2026, 10, 1)
        add_counter(db_manager, "old", now - timedelta(days=120))
        add_counter(db_manager, "recent", now - timedelta(days=10))

        pruned = UsagePruner(db_manager, usage_retention_days=90).prune_usage_counters(now)

        assert pruned == 1
        with db_manager.get_session() as session:
            assert [c.user_id for c in session.query(UsageCounter).all()] == ["recent"]

    @pytest.mark.asyncio
    async def test_prunes_old_records(self, db_manager: DatabaseManager) -> None:
        store = SqlResultStore(db_manager)
        request = make_request()
        await store.persist(successful_result(request.request_id), request)
        pruner = UsagePruner(db_manager, record_retention_days=365)

        assert pruner.prune_generation_records(datetime.utcnow()) == 0
        assert pruner.prune_generation_records(datetime.utcnow() + timedelta(days=366)) == 1

    def test_without_database(self) -> None:
        assert UsagePruner().run_all() == {
            "usage_counters_pruned": 0,
            "generation_records_pruned": 0,
        }

    def test_run_pruning(self, db_manager: DatabaseManager, temp_db_path: str) -> None:
        add_counter(db_manager, "ancient", datetime(2020, 1, 1))

        counts = run_pruning(f"sqlite:///{temp_db_path}", 90, 365)

        assert counts == {"usage_counters_pruned": 1, "generation_records_pruned": 0}
