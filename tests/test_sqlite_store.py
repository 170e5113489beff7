"""Tests for the aiosqlite storage layer and SqliteDispatchStore."""

from __future__ import annotations

from datetime import timedelta

import pytest
import pytest_asyncio

import storage.calendar as calendar_store
import storage.db_config as db_config
import storage.delivery_log as delivery_log_store
import storage.occurrence as occurrence_store
import storage.push as push_store
import storage.reminder as reminder_store
import storage.user as user_store
from conftest import utc
from datamodel import (
    BusyInterval,
    DeliveryStatus,
    FreeBusyCacheEntry,
    NotificationChannel,
    OccurrenceStatus,
)
from errors import StorageNotReadyError
from storage.store import SqliteDispatchStore
from utils import now_utc

NOW = utc(2026, 1, 10, 12, 0)


@pytest_asyncio.fixture
async def db(tmp_path):
    await db_config.init_db(str(tmp_path / "data" / "dispatch.db"))
    yield db_config.conn
    await db_config.close_db()


@pytest_asyncio.fixture
async def owner(db):
    return await user_store.create_user(email=" owner@example.com ", time_zone="Europe/Bucharest")


@pytest_asyncio.fixture
async def reminder(owner):
    return await reminder_store.create_reminder(
        "Water plants",
        created_by=owner.user_id,
        context_settings={"timeWindow": {"enabled": True}},
    )


class TestInit:
    @pytest.mark.asyncio
    async def test_migrations_applied(self, db):
        async with db.execute("PRAGMA user_version") as cursor:
            assert (await cursor.fetchone())[0] == 2
        async with db.execute("PRAGMA table_info(notification_log)") as cursor:
            columns = [row[1] async for row in cursor]
        assert "error" in columns

    @pytest.mark.asyncio
    async def test_reopening_is_idempotent(self, tmp_path):
        path = str(tmp_path / "dispatch.db")
        await db_config.init_db(path)
        await db_config.close_db()
        await db_config.init_db(path)
        try:
            async with db_config.conn.execute("PRAGMA user_version") as cursor:
                assert (await cursor.fetchone())[0] == 2
        finally:
            await db_config.close_db()

    def test_use_before_init_raises(self):
        assert db_config.conn is None
        with pytest.raises(StorageNotReadyError):
            db_config.ensure_conn()

    @pytest.mark.asyncio
    async def test_storage_functions_require_init(self):
        with pytest.raises(RuntimeError):
            await reminder_store.get_reminder_by_id(1)


class TestOccurrences:
    @pytest.mark.asyncio
    async def test_due_query_filters_and_orders_by_effective_time(self, reminder):
        rid = reminder.reminder_id
        open_due = await occurrence_store.create_occurrence(rid, NOW - timedelta(minutes=10))
        await occurrence_store.create_occurrence(rid, NOW + timedelta(minutes=10))
        snoozed_due = await occurrence_store.create_occurrence(
            rid, NOW - timedelta(hours=1), OccurrenceStatus.SNOOZED, snoozed_until=NOW - timedelta(minutes=20)
        )
        await occurrence_store.create_occurrence(
            rid, NOW - timedelta(hours=1), OccurrenceStatus.SNOOZED, snoozed_until=NOW + timedelta(minutes=5)
        )
        await occurrence_store.create_occurrence(rid, NOW - timedelta(minutes=30), OccurrenceStatus.DONE)

        due = await SqliteDispatchStore().fetch_due_occurrences(NOW)

        assert [o.occurrence_id for o in due] == [snoozed_due.occurrence_id, open_due.occurrence_id]
        assert due[0].effective_at == NOW - timedelta(minutes=20)
        assert due[1].occur_at == NOW - timedelta(minutes=10)

    @pytest.mark.asyncio
    async def test_due_boundary_is_inclusive(self, reminder):
        occurrence = await occurrence_store.create_occurrence(reminder.reminder_id, NOW)
        due = await occurrence_store.get_due_occurrences(NOW)
        assert [o.occurrence_id for o in due] == [occurrence.occurrence_id]

    @pytest.mark.asyncio
    async def test_snooze_update(self, reminder):
        store = SqliteDispatchStore()
        occurrence = await occurrence_store.create_occurrence(reminder.reminder_id, NOW - timedelta(minutes=1))

        await store.update_occurrence_snooze(occurrence.occurrence_id, NOW + timedelta(minutes=15))

        assert await store.fetch_due_occurrences(NOW) == []
        loaded = await store.fetch_occurrence(occurrence.occurrence_id)
        assert loaded.status == OccurrenceStatus.SNOOZED
        assert loaded.snoozed_until == NOW + timedelta(minutes=15)
        assert [o.occurrence_id for o in await store.fetch_due_occurrences(NOW + timedelta(minutes=15))] == [
            occurrence.occurrence_id
        ]

    @pytest.mark.asyncio
    async def test_upcoming_occurrences(self, owner, reminder):
        other = await user_store.create_user(email="other@example.com")
        other_reminder = await reminder_store.create_reminder("Not mine", created_by=other.user_id)
        inactive = await reminder_store.create_reminder("Paused", created_by=owner.user_id, is_active=False)
        first = await occurrence_store.create_occurrence(reminder.reminder_id, NOW + timedelta(hours=2))
        await occurrence_store.create_occurrence(reminder.reminder_id, NOW + timedelta(days=9))
        await occurrence_store.create_occurrence(other_reminder.reminder_id, NOW + timedelta(hours=1))
        await occurrence_store.create_occurrence(inactive.reminder_id, NOW + timedelta(hours=1))

        rows = await SqliteDispatchStore().fetch_upcoming_occurrences(owner.user_id, NOW, NOW + timedelta(days=8))

        assert [(o.occurrence_id, r.title) for o, r in rows] == [(first.occurrence_id, "Water plants")]


class TestRemindersAndUsers:
    @pytest.mark.asyncio
    async def test_reminder_round_trip(self, owner, reminder):
        store = SqliteDispatchStore()
        loaded = await store.fetch_reminder(reminder.reminder_id)
        assert loaded.title == "Water plants"
        assert loaded.created_by == owner.user_id
        assert loaded.is_active is True
        assert loaded.kind == "task"
        raw = await store.fetch_reminder_context_settings(reminder.reminder_id)
        assert raw == '{"timeWindow": {"enabled": true}}'
        assert await store.fetch_reminder(9999) is None

    @pytest.mark.asyncio
    async def test_profile_and_email(self, owner):
        store = SqliteDispatchStore()
        profile = await store.fetch_user_profile(owner.user_id)
        assert profile.time_zone == "Europe/Bucharest"
        assert await store.fetch_recipient_email(owner.user_id) == "owner@example.com"

        no_email = await user_store.create_user(email="   ")
        assert await store.fetch_recipient_email(no_email.user_id) is None
        assert await store.fetch_user_profile(9999) is None


class TestDeliveryLog:
    @pytest.mark.asyncio
    async def test_reserve_finalize_and_duplicate_guard(self, reminder):
        store = SqliteDispatchStore()
        occurrence = await occurrence_store.create_occurrence(reminder.reminder_id, NOW)
        key = "reminder:1:2026-01-10T12:00:00.000Z:email"

        assert not await store.has_delivery_for_job(key)
        log_id = await store.insert_delivery_log(
            occurrence.occurrence_id, NotificationChannel.EMAIL, DeliveryStatus.PENDING, NOW, key
        )
        assert await store.has_delivery_for_job(key)

        await store.update_delivery_log_status(log_id, DeliveryStatus.FAILED, "timeout")
        assert not await store.has_delivery_for_job(key)

        entries = await delivery_log_store.get_delivery_logs(occurrence_id=occurrence.occurrence_id)
        assert len(entries) == 1
        assert entries[0].status == DeliveryStatus.FAILED
        assert entries[0].error == "timeout"
        assert entries[0].sent_at == NOW

        await store.update_delivery_log_status(log_id, DeliveryStatus.SENT)
        assert await store.has_delivery_for_job(key)


class TestEndpoints:
    @pytest.mark.asyncio
    async def test_push_subscriptions(self, owner):
        store = SqliteDispatchStore()
        await push_store.upsert_push_subscription(owner.user_id, "https://push/1", "p1", "a1")
        await push_store.upsert_push_subscription(owner.user_id, "https://push/2", "p2", "a2")
        await push_store.upsert_push_subscription(owner.user_id, "https://push/1", "p1-new", "a1-new")

        subs = await store.fetch_push_subscriptions(owner.user_id)
        assert [(s.endpoint, s.p256dh) for s in subs] == [("https://push/1", "p1-new"), ("https://push/2", "p2")]

        assert await store.delete_stale_push_subscriptions(["https://push/1", "https://push/1"]) == 1
        assert [s.endpoint for s in await store.fetch_push_subscriptions(owner.user_id)] == ["https://push/2"]
        assert await store.delete_stale_push_subscriptions([]) == 0

    @pytest.mark.asyncio
    async def test_fcm_tokens(self, owner):
        store = SqliteDispatchStore()
        await push_store.upsert_fcm_token(owner.user_id, "tok-a", "android")
        await push_store.upsert_fcm_token(owner.user_id, "tok-b", "ios")

        assert [t.token for t in await store.fetch_fcm_tokens(owner.user_id)] == ["tok-a", "tok-b"]
        assert await store.delete_stale_fcm_tokens(["tok-a", "missing"]) == 1
        assert [t.platform for t in await store.fetch_fcm_tokens(owner.user_id)] == ["ios"]


class TestCalendar:
    @pytest.mark.asyncio
    async def test_cache_round_trip(self, owner):
        store = SqliteDispatchStore()
        entry = FreeBusyCacheEntry(
            busy=[BusyInterval(NOW, NOW + timedelta(hours=1))],
            time_min=NOW,
            time_max=NOW + timedelta(hours=24),
            fetched_at=NOW,
        )
        assert await store.load_freebusy_cache(owner.user_id) is None

        await store.store_freebusy_cache(owner.user_id, entry)
        assert await store.load_freebusy_cache(owner.user_id) == entry

    @pytest.mark.asyncio
    async def test_calendar_busy_reads_fresh_cache_only(self, owner):
        store = SqliteDispatchStore()
        now = now_utc().replace(microsecond=0)
        at = now + timedelta(minutes=5)
        busy = [BusyInterval(now, now + timedelta(minutes=30))]

        assert not await store.fetch_user_calendar_busy(owner.user_id, at)

        await store.store_freebusy_cache(
            owner.user_id, FreeBusyCacheEntry(busy, now - timedelta(hours=1), now + timedelta(hours=23), now)
        )
        assert await store.fetch_user_calendar_busy(owner.user_id, at)
        assert not await store.fetch_user_calendar_busy(owner.user_id, now + timedelta(hours=1))

        stale_fetch = now - timedelta(minutes=30)
        await store.store_freebusy_cache(
            owner.user_id, FreeBusyCacheEntry(busy, now - timedelta(hours=1), now + timedelta(hours=23), stale_fetch)
        )
        assert not await store.fetch_user_calendar_busy(owner.user_id, at)

    @pytest.mark.asyncio
    async def test_access_token_expiry(self, owner):
        await calendar_store.upsert_calendar_connection(owner.user_id, "token-1", now_utc() + timedelta(hours=1))
        assert await SqliteDispatchStore().fetch_calendar_access_token(owner.user_id) == "token-1"

        await calendar_store.upsert_calendar_connection(owner.user_id, "token-2", now_utc() - timedelta(minutes=1))
        assert await SqliteDispatchStore().fetch_calendar_access_token(owner.user_id) is None
        assert await SqliteDispatchStore().fetch_calendar_access_token(9999) is None
