"""调度流程使用的存储接口

DispatchStore 是调度器依赖的抽象, SqliteDispatchStore 基于本目录下的 aiosqlite 函数实现;
测试中可以替换为内存实现。
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Iterable

import storage.calendar as calendar_store
import storage.delivery_log as delivery_log_store
import storage.occurrence as occurrence_store
import storage.push as push_store
import storage.reminder as reminder_store
import storage.user as user_store
from datamodel import *
from gcal.freebusy_cache import (
    FREEBUSY_CACHE_TTL,
    find_busy_interval_at,
    is_cache_fresh,
    merge_busy_intervals,
    normalize_busy_intervals,
)
from logger import logger
from utils import now_utc

__all__ = ["DispatchStore", "SqliteDispatchStore"]


class DispatchStore(ABC):
    # ----------------- occurrence / reminder ----------------
    @abstractmethod
    async def fetch_due_occurrences(self, now: datetime) -> list[Occurrence]:
        ...

    @abstractmethod
    async def fetch_occurrence(self, occurrence_id: int) -> Occurrence | None:
        ...

    @abstractmethod
    async def update_occurrence_snooze(
        self,
        occurrence_id: int,
        snoozed_until: datetime,
        status: OccurrenceStatus = OccurrenceStatus.SNOOZED,
    ) -> None:
        ...

    @abstractmethod
    async def fetch_reminder(self, reminder_id: int) -> Reminder | None:
        ...

    @abstractmethod
    async def fetch_reminder_context_settings(self, reminder_id: int) -> Any:
        ...

    @abstractmethod
    async def fetch_upcoming_occurrences(
        self, user_id: int, start: datetime, end: datetime
    ) -> list[tuple[Occurrence, Reminder]]:
        ...

    # ----------------- 用户 / 接收端 ----------------
    @abstractmethod
    async def fetch_user_profile(self, user_id: int) -> UserProfile | None:
        ...

    @abstractmethod
    async def fetch_user_calendar_busy(self, user_id: int, at: datetime) -> bool:
        ...

    @abstractmethod
    async def fetch_recipient_email(self, user_id: int) -> str | None:
        ...

    @abstractmethod
    async def fetch_push_subscriptions(self, user_id: int) -> list[PushSubscription]:
        ...

    @abstractmethod
    async def fetch_fcm_tokens(self, user_id: int) -> list[FcmToken]:
        ...

    @abstractmethod
    async def delete_stale_push_subscriptions(self, endpoints: Iterable[str]) -> int:
        ...

    @abstractmethod
    async def delete_stale_fcm_tokens(self, tokens: Iterable[str]) -> int:
        ...

    # ----------------- 投递记录 ----------------
    @abstractmethod
    async def insert_delivery_log(
        self,
        occurrence_id: int,
        channel: NotificationChannel,
        status: DeliveryStatus,
        sent_at: datetime,
        job_key: str | None = None,
    ) -> int:
        ...

    @abstractmethod
    async def update_delivery_log_status(self, log_id: int, status: DeliveryStatus, error: str | None = None) -> None:
        ...

    @abstractmethod
    async def has_delivery_for_job(self, job_key: str) -> bool:
        ...

    # ----------------- 日历 ----------------
    @abstractmethod
    async def load_freebusy_cache(self, user_id: int) -> FreeBusyCacheEntry | None:
        ...

    @abstractmethod
    async def store_freebusy_cache(self, user_id: int, entry: FreeBusyCacheEntry) -> None:
        ...

    @abstractmethod
    async def fetch_calendar_access_token(self, user_id: int) -> str | None:
        ...


class SqliteDispatchStore(DispatchStore):
    async def fetch_due_occurrences(self, now: datetime) -> list[Occurrence]:
        return await occurrence_store.get_due_occurrences(now)

    async def fetch_occurrence(self, occurrence_id: int) -> Occurrence | None:
        return await occurrence_store.get_occurrence_by_id(occurrence_id)

    async def update_occurrence_snooze(
        self,
        occurrence_id: int,
        snoozed_until: datetime,
        status: OccurrenceStatus = OccurrenceStatus.SNOOZED,
    ) -> None:
        await occurrence_store.update_occurrence_snooze(occurrence_id, snoozed_until, status)

    async def fetch_reminder(self, reminder_id: int) -> Reminder | None:
        return await reminder_store.get_reminder_by_id(reminder_id)

    async def fetch_reminder_context_settings(self, reminder_id: int) -> Any:
        return await reminder_store.get_reminder_context_settings(reminder_id)

    async def fetch_upcoming_occurrences(
        self, user_id: int, start: datetime, end: datetime
    ) -> list[tuple[Occurrence, Reminder]]:
        return await occurrence_store.get_upcoming_occurrences_by_user_id(user_id, start, end)

    async def fetch_user_profile(self, user_id: int) -> UserProfile | None:
        return await user_store.get_user_profile(user_id)

    async def fetch_user_calendar_busy(self, user_id: int, at: datetime) -> bool:
        """只读缓存判定: 缓存新鲜且覆盖 at 时才可能返回 True, 不触发远程刷新"""
        cache = await calendar_store.load_freebusy_cache(user_id)
        if cache is None:
            return False
        if not is_cache_fresh(cache, at, at, now_utc(), FREEBUSY_CACHE_TTL):
            logger.debug(f"free/busy 缓存不可用, 视为空闲: user_id={user_id}")
            return False
        busy = merge_busy_intervals(normalize_busy_intervals(cache.busy))
        return find_busy_interval_at(busy, at) is not None

    async def fetch_recipient_email(self, user_id: int) -> str | None:
        return await user_store.get_user_email(user_id)

    async def fetch_push_subscriptions(self, user_id: int) -> list[PushSubscription]:
        return await push_store.get_push_subscriptions_by_user_id(user_id)

    async def fetch_fcm_tokens(self, user_id: int) -> list[FcmToken]:
        return await push_store.get_fcm_tokens_by_user_id(user_id)

    async def delete_stale_push_subscriptions(self, endpoints: Iterable[str]) -> int:
        return await push_store.delete_push_subscriptions(endpoints)

    async def delete_stale_fcm_tokens(self, tokens: Iterable[str]) -> int:
        return await push_store.delete_fcm_tokens(tokens)

    async def insert_delivery_log(
        self,
        occurrence_id: int,
        channel: NotificationChannel,
        status: DeliveryStatus,
        sent_at: datetime,
        job_key: str | None = None,
    ) -> int:
        return await delivery_log_store.insert_delivery_log(occurrence_id, channel, status, sent_at, job_key)

    async def update_delivery_log_status(self, log_id: int, status: DeliveryStatus, error: str | None = None) -> None:
        await delivery_log_store.update_delivery_log_status(log_id, status, error)

    async def has_delivery_for_job(self, job_key: str) -> bool:
        return await delivery_log_store.has_delivery_for_job(job_key)

    async def load_freebusy_cache(self, user_id: int) -> FreeBusyCacheEntry | None:
        return await calendar_store.load_freebusy_cache(user_id)

    async def store_freebusy_cache(self, user_id: int, entry: FreeBusyCacheEntry) -> None:
        await calendar_store.store_freebusy_cache(user_id, entry)

    async def fetch_calendar_access_token(self, user_id: int) -> str | None:
        return await calendar_store.get_calendar_access_token(user_id, now_utc())
