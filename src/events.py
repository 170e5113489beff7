"""事件总线模块，定义了事件总线类 Bus 及事件名集合 E

调度流程中的关键节点都会在总线上广播, 目前主要由 metrics 订阅用于统计;
事件处理器不得影响调度本身, 处理器异常只会被 pyee 上报为 error 事件。
"""

from __future__ import annotations
from pyee.asyncio import AsyncIOEventEmitter
from typing import Any, Awaitable, Callable, Union

from logger import logger

Handler = Callable[..., Union[Awaitable[None], None]]

# 事件名集中定义
class E:
    DISPATCH_STARTED = "dispatch.started"
    DISPATCH_COMPLETED = "dispatch.completed"
    NOTIFICATION_SENT = "notification.sent"
    NOTIFICATION_FAILED = "notification.failed"
    NOTIFICATION_SKIPPED = "notification.skipped"
    OCCURRENCE_AUTO_SNOOZED = "occurrence.auto_snoozed"
    OCCURRENCE_DEFERRED = "occurrence.deferred"
    ENDPOINTS_PRUNED = "endpoints.pruned"


class Bus(AsyncIOEventEmitter):
    def on(self, event: str) -> Callable[[Handler], Handler]:
        """注册事件处理器装饰器"""
        def decorator(handler: Handler) -> Handler:
            logger.debug(f"注册事件处理器: {event} -> {handler.__name__}")
            super(Bus, self).on(event, handler)
            return handler

        return decorator

    def safe_emit(self, event: str, *args: Any, **kwargs: Any) -> None:
        """广播事件, 处理器出错只记录日志"""
        try:
            self.emit(event, *args, **kwargs)
        except Exception as e:
            logger.warning(f"事件处理器执行失败: {event}, error={e}")


bus = Bus()

__all__ = ["bus", "E", "Bus"]
