"""带缓存的忙碌查询

缓存窗口以本轮的 now 为锚点: [now - lookback, now + FREEBUSY_CACHE_WINDOW], lookback 默认等于 cron 宽限期,
因此同一轮内同一用户的多个 occurrence 共用一次 freeBusy 查询; 具体的忙碌判定仍在各自的 effective_at 上进行。
缓存过期或覆盖范围不足时从 Google 拉取并覆盖写回, 并发刷新不加锁, 后写入者生效。
"""

from datetime import datetime, timedelta

from channels.base import CalendarClient
from config.settings import CRON_GRACE_MINUTES
from datamodel import BusyInterval, FreeBusyCacheEntry
from gcal.freebusy_cache import (
    FREEBUSY_CACHE_TTL,
    FREEBUSY_CACHE_WINDOW,
    find_busy_interval_at,
    is_cache_fresh,
    merge_busy_intervals,
    normalize_busy_intervals,
)
from logger import logger
from storage.store import DispatchStore
from utils import ensure_utc, now_utc

__all__ = ["FreeBusyService"]


class FreeBusyService:
    def __init__(
        self,
        store: DispatchStore,
        client: CalendarClient,
        ttl: timedelta = FREEBUSY_CACHE_TTL,
        window: timedelta = FREEBUSY_CACHE_WINDOW,
        lookback: timedelta = timedelta(minutes=max(0, CRON_GRACE_MINUTES)),
    ) -> None:
        self.store = store
        self.client = client
        self.ttl = ttl
        self.window = window
        self.lookback = lookback

    def _query_window(self, at: datetime, now: datetime) -> tuple[datetime, datetime]:
        return min(at, now - self.lookback), max(at, now) + self.window

    async def get_busy_intervals(self, user_id: int, at: datetime, now: datetime | None = None) -> list[BusyInterval]:
        """返回覆盖 at 与 [now - lookback, now + window] 的忙碌区间 (已排序、已合并); 未连接日历时返回空列表

        刷新失败时抛出 CalendarError, 由调用方决定是否视为空闲。
        """
        now = ensure_utc(now) if now is not None else now_utc()
        at = ensure_utc(at)
        window_start, window_end = self._query_window(at, now)

        cache = await self.store.load_freebusy_cache(user_id)
        if cache is not None and is_cache_fresh(cache, window_start, window_end, now, self.ttl):
            logger.trace(f"free/busy 缓存命中: user_id={user_id}")
            return merge_busy_intervals(normalize_busy_intervals(cache.busy))

        access_token = await self.store.fetch_calendar_access_token(user_id)
        if not access_token:
            logger.debug(f"用户未连接日历, 视为空闲: user_id={user_id}")
            return []

        logger.info(f"刷新 free/busy 缓存: user_id={user_id}, window=[{window_start}, {window_end}]")
        raw = await self.client.fetch_free_busy(access_token, window_start, window_end)
        busy = normalize_busy_intervals(raw)
        await self.store.store_freebusy_cache(
            user_id,
            FreeBusyCacheEntry(busy=busy, time_min=window_start, time_max=window_end, fetched_at=now),
        )
        return merge_busy_intervals(busy)

    async def busy_interval_at(self, user_id: int, at: datetime, now: datetime | None = None) -> BusyInterval | None:
        busy = await self.get_busy_intervals(user_id, at, now)
        return find_busy_interval_at(busy, ensure_utc(at))

    async def aclose(self) -> None:
        await self.client.aclose()
