"""Tests for the SQLAlchemy store against a file-backed SQLite database."""

from datetime import datetime, timedelta
import asyncio
import gc

import pytest
import pytest_asyncio

from conftest import ENTITY_ID, NOW, USER_ID
from caregiver_agent.domain.context.memory.history_store import HistoryStore
from caregiver_agent.domain.models.care_models import ActivityCategory, ActivityRecord, EntityProfile, Measurement
from caregiver_agent.infrastructure.persistence.sql_store import SqlCareStore


@pytest_asyncio.fixture
async def sql_store(tmp_path, profile: EntityProfile):
    store = SqlCareStore.from_url(f"sqlite+aiosqlite:///{tmp_path / 'care.db'}")
    await store.create_schema()
    await store.add_profile(profile)
    yield store
    await store.close()


class TestSqlCareStore:
    """Tests for SqlCareStore care data reads."""

    @pytest.mark.asyncio
    async def test_profile_round_trip(self, sql_store: SqlCareStore, profile: EntityProfile) -> None:
        assert await sql_store.get_profile(ENTITY_ID) == profile
        assert await sql_store.get_profile("missing") is None

    @pytest.mark.asyncio
    async def test_category_settings(self, sql_store: SqlCareStore) -> None:
        assert await sql_store.get_category_settings(ENTITY_ID) is None

        await sql_store.save_category_settings(ENTITY_ID, {"feeding": False})

        assert await sql_store.get_category_settings(ENTITY_ID) == {"feeding": False}

    @pytest.mark.asyncio
    async def test_list_activities_filters_and_orders(self, sql_store: SqlCareStore) -> None:
        for hour, category in [(12, ActivityCategory.FEEDING), (8, ActivityCategory.FEEDING),
                               (9, ActivityCategory.DIAPER)]:
            await sql_store.add_activity(ActivityRecord(
                entity_id=ENTITY_ID, category=category, start_time=datetime(2024, 12, 5, hour, 0)
            ))
        await sql_store.add_activity(ActivityRecord(
            entity_id=ENTITY_ID, category=ActivityCategory.FEEDING, start_time=datetime(2024, 12, 1, 8, 0)
        ))

        records = await sql_store.list_activities(
            ENTITY_ID, [ActivityCategory.FEEDING], since=datetime(2024, 12, 5), until=datetime(2024, 12, 6)
        )

        assert [r.start_time.hour for r in records] == [8, 12]
        assert all(r.category is ActivityCategory.FEEDING for r in records)
        assert await sql_store.list_activities(ENTITY_ID, [], since=datetime(2024, 1, 1)) == []

    @pytest.mark.asyncio
    async def test_measurements_oldest_first(self, sql_store: SqlCareStore) -> None:
        await sql_store.add_measurement(Measurement(entity_id=ENTITY_ID, measured_at=datetime(2024, 12, 1), weight_kg=6.1))
        await sql_store.add_measurement(Measurement(entity_id=ENTITY_ID, measured_at=datetime(2024, 11, 1), weight_kg=5.4))

        measurements = await sql_store.list_measurements(ENTITY_ID)

        assert [m.weight_kg for m in measurements] == [5.4, 6.1]


class TestSqlConversationRepository:
    """Tests for SqlCareStore conversation history."""

    @pytest.mark.asyncio
    async def test_cap_and_ordering(self, sql_store: SqlCareStore) -> None:
        ticks = iter(NOW + timedelta(minutes=i) for i in range(100))
        history = HistoryStore(sql_store, max_history=3, clock=lambda: next(ticks))

        for i in range(5):
            await history.append(ENTITY_ID, USER_ID, f"question {i}", f"answer {i}", {"status": "done"})

        turns = await history.recent(ENTITY_ID, count=10)
        assert [t.message for t in turns] == ["question 2", "question 3", "question 4"]
        assert turns[0].summary == {"status": "done"}

    @pytest.mark.asyncio
    async def test_tied_timestamps_use_insertion_order(self, sql_store: SqlCareStore) -> None:
        history = HistoryStore(sql_store, clock=lambda: NOW)
        for i in range(3):
            await history.append(ENTITY_ID, USER_ID, f"question {i}", "ok", {})

        turns = await history.recent(ENTITY_ID, count=2)

        assert [t.message for t in turns] == ["question 1", "question 2"]

    @pytest.mark.asyncio
    async def test_keyword_search_ignores_case(self, sql_store: SqlCareStore) -> None:
        ticks = iter(NOW + timedelta(minutes=i) for i in range(10))
        history = HistoryStore(sql_store, clock=lambda: next(ticks))
        await history.append(ENTITY_ID, USER_ID, "Her fever is back", "Keep an eye on it", {})
        await history.append(ENTITY_ID, USER_ID, "Nap time?", "Around 1pm", {})

        turns = await history.recent(ENTITY_ID, search_keyword="FEVER")

        assert [t.message for t in turns] == ["Her fever is back"]

    @pytest.mark.asyncio
    async def test_rolled_back_transaction_keeps_rows(self, sql_store: SqlCareStore) -> None:
        history = HistoryStore(sql_store, clock=lambda: NOW)
        await history.append(ENTITY_ID, USER_ID, "keep me", "ok", {})

        with pytest.raises(RuntimeError):
            async with sql_store.transaction(ENTITY_ID) as tx:
                oldest = await tx.find_oldest()
                await tx.delete(oldest.id)
                raise RuntimeError("crash before insert")

        assert [t.message for t in await sql_store.find_recent(ENTITY_ID, 10)] == ["keep me"]

    @pytest.mark.asyncio
    async def test_keyword_wildcards_match_literally(self, sql_store: SqlCareStore) -> None:
        ticks = iter(NOW + timedelta(minutes=i) for i in range(10))
        history = HistoryStore(sql_store, clock=lambda: next(ticks))
        await history.append(ENTITY_ID, USER_ID, "Nap time?", "Around 1pm", {})
        await history.append(ENTITY_ID, USER_ID, "She finished 100% of the bottle", "Great", {})

        percent = await history.recent(ENTITY_ID, search_keyword="%")
        underscore = await history.recent(ENTITY_ID, search_keyword="_")

        assert [t.message for t in percent] == ["She finished 100% of the bottle"]
        assert underscore == []

    @pytest.mark.asyncio
    async def test_concurrent_appends_respect_cap(self, sql_store: SqlCareStore) -> None:
        ticks = iter(NOW + timedelta(seconds=i) for i in range(100))
        history = HistoryStore(sql_store, max_history=5, clock=lambda: next(ticks))

        await asyncio.gather(*(
            history.append(ENTITY_ID, USER_ID, f"question {i}", "ok", {}) for i in range(12)
        ))

        stored = await sql_store.find_recent(ENTITY_ID, 100)
        assert len(stored) == 5

    @pytest.mark.asyncio
    async def test_entity_locks_are_released_after_use(self, sql_store: SqlCareStore) -> None:
        history = HistoryStore(sql_store, clock=lambda: NOW)

        await history.append(ENTITY_ID, USER_ID, "question", "ok", {})
        gc.collect()

        assert len(sql_store._entity_locks) == 0
