"""Shared fixtures: environment defaults, in-memory store and fake transports."""

from __future__ import annotations

import os

# config.settings reads the environment at import time
os.environ.setdefault("DEFAULT_TIMEZONE", "UTC")
os.environ.setdefault("APP_URL", "https://app.example.com")
os.environ.setdefault("ADMIN_AUTH_TOKEN", "test-admin-token")
os.environ.setdefault("CRON_SECRET", "test-cron-secret")
os.environ.setdefault("ENABLE_DISPATCH_LOOP", "false")

from datetime import datetime, timezone
from typing import Any, Iterable

import pytest

from channels.base import EmailTransport, FcmTransport, WebPushTransport
from datamodel import (
    DeliveryStatus,
    EmailResult,
    FcmResult,
    FcmToken,
    FreeBusyCacheEntry,
    NotificationChannel,
    NotificationPayload,
    Occurrence,
    OccurrenceStatus,
    PushResult,
    PushSubscription,
    Reminder,
    UserProfile,
)
from storage.store import DispatchStore


def utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class FakeStore(DispatchStore):
    """In-memory DispatchStore with the same due/duplicate semantics as the SQLite one."""

    def __init__(self) -> None:
        self.occurrences: dict[int, Occurrence] = {}
        self.reminders: dict[int, Reminder] = {}
        self.profiles: dict[int, UserProfile] = {}
        self.calendar_busy: dict[int, bool] = {}
        self.push_subscriptions: dict[int, list[PushSubscription]] = {}
        self.fcm_tokens: dict[int, list[FcmToken]] = {}
        self.logs: list[dict[str, Any]] = []
        self.freebusy_cache: dict[int, FreeBusyCacheEntry] = {}
        self.access_tokens: dict[int, str] = {}
        self.snooze_updates: list[tuple[int, datetime, OccurrenceStatus]] = []
        self.deleted_endpoints: list[str] = []
        self.deleted_tokens: list[str] = []
        self.cache_writes = 0

    # ----- helpers for tests -----
    def add_user(self, user_id: int, email: str | None = "owner@example.com", time_zone: str | None = "UTC",
                 context_defaults: Any = None) -> UserProfile:
        profile = UserProfile(user_id=user_id, email=email, time_zone=time_zone, context_defaults=context_defaults)
        self.profiles[user_id] = profile
        return profile

    def add_reminder(self, reminder_id: int, owner_id: int | None = 1, **kwargs: Any) -> Reminder:
        kwargs.setdefault("title", f"Reminder {reminder_id}")
        reminder = Reminder(reminder_id=reminder_id, created_by=owner_id, **kwargs)
        self.reminders[reminder_id] = reminder
        return reminder

    def add_occurrence(self, occurrence_id: int, reminder_id: int, occur_at: datetime, **kwargs: Any) -> Occurrence:
        occurrence = Occurrence(occurrence_id=occurrence_id, reminder_id=reminder_id, occur_at=occur_at, **kwargs)
        self.occurrences[occurrence_id] = occurrence
        return occurrence

    # ----- DispatchStore -----
    async def fetch_due_occurrences(self, now: datetime) -> list[Occurrence]:
        due = [
            o for o in self.occurrences.values()
            if (o.status == OccurrenceStatus.SNOOZED and o.snoozed_until is not None and o.snoozed_until <= now)
            or (o.status == OccurrenceStatus.OPEN and o.occur_at <= now)
        ]
        return sorted(due, key=lambda o: (o.effective_at, o.occurrence_id))

    async def fetch_occurrence(self, occurrence_id: int) -> Occurrence | None:
        return self.occurrences.get(occurrence_id)

    async def update_occurrence_snooze(self, occurrence_id: int, snoozed_until: datetime,
                                       status: OccurrenceStatus = OccurrenceStatus.SNOOZED) -> None:
        self.snooze_updates.append((occurrence_id, snoozed_until, status))
        occurrence = self.occurrences[occurrence_id]
        occurrence.snoozed_until = snoozed_until
        occurrence.status = status

    async def fetch_reminder(self, reminder_id: int) -> Reminder | None:
        return self.reminders.get(reminder_id)

    async def fetch_reminder_context_settings(self, reminder_id: int) -> Any:
        reminder = self.reminders.get(reminder_id)
        return reminder.context_settings if reminder else None

    async def fetch_upcoming_occurrences(self, user_id: int, start: datetime, end: datetime):
        rows = []
        for occurrence in self.occurrences.values():
            reminder = self.reminders.get(occurrence.reminder_id)
            if reminder is None or reminder.created_by != user_id or not reminder.is_active:
                continue
            if occurrence.status not in (OccurrenceStatus.OPEN, OccurrenceStatus.SNOOZED):
                continue
            if start <= occurrence.effective_at <= end:
                rows.append((occurrence, reminder))
        return sorted(rows, key=lambda row: row[0].effective_at)

    async def fetch_user_profile(self, user_id: int) -> UserProfile | None:
        return self.profiles.get(user_id)

    async def fetch_user_calendar_busy(self, user_id: int, at: datetime) -> bool:
        return self.calendar_busy.get(user_id, False)

    async def fetch_recipient_email(self, user_id: int) -> str | None:
        profile = self.profiles.get(user_id)
        return profile.email if profile else None

    async def fetch_push_subscriptions(self, user_id: int) -> list[PushSubscription]:
        return list(self.push_subscriptions.get(user_id, []))

    async def fetch_fcm_tokens(self, user_id: int) -> list[FcmToken]:
        return list(self.fcm_tokens.get(user_id, []))

    async def delete_stale_push_subscriptions(self, endpoints: Iterable[str]) -> int:
        endpoints = set(endpoints)
        deleted = 0
        for user_id, subs in self.push_subscriptions.items():
            kept = [s for s in subs if s.endpoint not in endpoints]
            deleted += len(subs) - len(kept)
            self.push_subscriptions[user_id] = kept
        self.deleted_endpoints.extend(sorted(endpoints))
        return deleted

    async def delete_stale_fcm_tokens(self, tokens: Iterable[str]) -> int:
        tokens = set(tokens)
        deleted = 0
        for user_id, items in self.fcm_tokens.items():
            kept = [t for t in items if t.token not in tokens]
            deleted += len(items) - len(kept)
            self.fcm_tokens[user_id] = kept
        self.deleted_tokens.extend(sorted(tokens))
        return deleted

    async def insert_delivery_log(self, occurrence_id: int, channel: NotificationChannel, status: DeliveryStatus,
                                  sent_at: datetime, job_key: str | None = None) -> int:
        log_id = len(self.logs) + 1
        self.logs.append({
            "log_id": log_id,
            "occurrence_id": occurrence_id,
            "channel": NotificationChannel(channel),
            "status": DeliveryStatus(status),
            "sent_at": sent_at,
            "job_key": job_key,
            "error": None,
        })
        return log_id

    async def update_delivery_log_status(self, log_id: int, status: DeliveryStatus, error: str | None = None) -> None:
        row = self.logs[log_id - 1]
        row["status"] = DeliveryStatus(status)
        row["error"] = error

    async def has_delivery_for_job(self, job_key: str) -> bool:
        return any(
            row["job_key"] == job_key and row["status"] in (DeliveryStatus.SENT, DeliveryStatus.PENDING)
            for row in self.logs
        )

    async def load_freebusy_cache(self, user_id: int) -> FreeBusyCacheEntry | None:
        return self.freebusy_cache.get(user_id)

    async def store_freebusy_cache(self, user_id: int, entry: FreeBusyCacheEntry) -> None:
        self.cache_writes += 1
        self.freebusy_cache[user_id] = entry

    async def fetch_calendar_access_token(self, user_id: int) -> str | None:
        return self.access_tokens.get(user_id)


def _snapshot_logs(transport: Any) -> None:
    """记录 send 被调用那一刻的投递记录"""
    if transport.store is not None:
        transport.logs_at_send.append([dict(row) for row in transport.store.logs])


class FakeEmail(EmailTransport):
    def __init__(self, status: DeliveryStatus = DeliveryStatus.SENT, error: str | None = None,
                 raises: Exception | None = None, store: FakeStore | None = None) -> None:
        self.store = store
        self.logs_at_send: list[list[dict[str, Any]]] = []
        self.status = status
        self.error = error
        self.raises = raises
        self.calls: list[dict[str, str]] = []

    async def send(self, to: str, subject: str, html: str) -> EmailResult:
        self.calls.append({"to": to, "subject": subject, "html": html})
        _snapshot_logs(self)
        if self.raises is not None:
            raise self.raises
        return EmailResult(status=self.status, error=self.error)


class FakeWebPush(WebPushTransport):
    def __init__(self, status: DeliveryStatus = DeliveryStatus.SENT, stale: list[str] | None = None,
                 raises: Exception | None = None, store: FakeStore | None = None) -> None:
        self.store = store
        self.logs_at_send: list[list[dict[str, Any]]] = []
        self.status = status
        self.stale = stale or []
        self.raises = raises
        self.calls: list[tuple[list[PushSubscription], NotificationPayload]] = []

    async def send(self, subscriptions, payload) -> PushResult:
        self.calls.append((list(subscriptions), payload))
        _snapshot_logs(self)
        if self.raises is not None:
            raise self.raises
        return PushResult(status=self.status, stale_endpoints=list(self.stale))


class FakeFcm(FcmTransport):
    def __init__(self, result: FcmResult | None = None, raises: Exception | None = None,
                 store: FakeStore | None = None) -> None:
        self.store = store
        self.logs_at_send: list[list[dict[str, Any]]] = []
        self.result = result
        self.raises = raises
        self.calls: list[tuple[list[str], NotificationPayload]] = []

    async def send(self, tokens, payload) -> FcmResult:
        self.calls.append((list(tokens), payload))
        _snapshot_logs(self)
        if self.raises is not None:
            raise self.raises
        if self.result is not None:
            return self.result
        return FcmResult(sent=len(tokens))


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def email() -> FakeEmail:
    return FakeEmail()


@pytest.fixture
def web_push() -> FakeWebPush:
    return FakeWebPush()


@pytest.fixture
def fcm() -> FakeFcm:
    return FakeFcm()
