from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List

from datamodel import EmailResult, FcmResult, NotificationPayload, PushResult, PushSubscription

__all__ = ["EmailTransport", "WebPushTransport", "FcmTransport", "CalendarClient"]


class EmailTransport(ABC):
    @abstractmethod
    async def send(self, to: str, subject: str, html: str) -> EmailResult:
        pass

    async def aclose(self) -> None:
        pass


class WebPushTransport(ABC):
    @abstractmethod
    async def send(self, subscriptions: List[PushSubscription], payload: NotificationPayload) -> PushResult:
        """向全部订阅发送, 404/410 的 endpoint 放入 stale_endpoints 由调用方删除"""
        pass


class FcmTransport(ABC):
    @abstractmethod
    async def send(self, tokens: List[str], payload: NotificationPayload) -> FcmResult:
        pass


class CalendarClient(ABC):
    @abstractmethod
    async def fetch_free_busy(
        self,
        access_token: str,
        time_min: datetime,
        time_max: datetime,
        time_zone: str = "UTC",
    ) -> List[Dict[str, Any]]:
        """返回原始忙碌区间 [{"start": ..., "end": ...}], 清洗交给 gcal.freebusy_cache"""
        pass

    async def aclose(self) -> None:
        pass
