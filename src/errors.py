"""异常层级

DispatchError (基类)
├── ConfigurationError - 已启用的通道缺少凭据等配置问题, 属于致命错误
├── TransportError     - 单个通道发送失败, 在通道内部被捕获并记为 failed
├── CalendarError      - 日历 freeBusy 查询失败, 视为"不忙"
└── StorageNotReadyError - 数据库未初始化
"""

from __future__ import annotations

__all__ = [
    "DispatchError",
    "ConfigurationError",
    "TransportError",
    "CalendarError",
    "StorageNotReadyError",
]


class DispatchError(Exception):
    pass


class ConfigurationError(DispatchError):
    pass


class TransportError(DispatchError):
    def __init__(self, channel: str, message: str) -> None:
        super().__init__(f"[{channel}] {message}")
        self.channel = channel


class CalendarError(DispatchError):
    pass


class StorageNotReadyError(DispatchError, RuntimeError):
    def __init__(self) -> None:
        super().__init__("数据库未初始化，请先调用 init_db()")
