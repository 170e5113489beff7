"""日志模块

级别支持: TRACE/DEBUG/INFO/WARNING/ERROR/CRITICAL (兼容别名 FATAL -> CRITICAL)

使用：进程入口先调用 setup_logging 配置日志，之后各模块 `from logger import logger` 写日志。
cron 单次运行时可以打开 serialize，让文件日志按 JSON 行输出，方便日志平台采集。
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Literal, Union

from loguru import logger

LogLevel = Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL", "FATAL"]

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level:<8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)

FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | "
    "{name}:{function}:{line} - {message}"
)

_LEVEL_ALIAS = {"FATAL": "CRITICAL"}


def _normalize_level(level: Union[str, LogLevel]) -> str:
    return _LEVEL_ALIAS.get(str(level).upper(), str(level).upper())


def error_log_path(log_file: Union[str, Path]) -> Path:
    """主日志文件对应的错误日志路径, 例如 logs/dispatch.log -> logs/dispatch_error.log"""
    log_file = Path(log_file)
    return log_file.with_name(f"{log_file.stem}_error{log_file.suffix}")


def _file_handler(
    path: Path,
    *,
    level: str,
    retention: str,
    serialize: bool,
) -> dict:
    handler = {
        "sink": path,
        "level": level,
        "rotation": "10 MB",
        "retention": retention,
        "compression": "zip",
        "encoding": "utf-8",
        "serialize": serialize,
    }
    if not serialize:
        handler["format"] = FILE_FORMAT
    return handler


def setup_logging(
    log_level: LogLevel,
    log_file: Union[str, Path],
    console_level: LogLevel = "INFO",
    serialize: bool = False,
) -> None:
    log_file = Path(log_file)
    log_file.parent.mkdir(parents=True, exist_ok=True)

    file_level = _normalize_level(log_level)
    console_lv = _normalize_level(console_level)

    logger.configure(
        handlers=[
            {
                "sink": sys.stderr,
                "level": console_lv,
                "format": CONSOLE_FORMAT,
                "colorize": True,
            },
            _file_handler(log_file, level=file_level, retention="30 days", serialize=serialize),
            _file_handler(error_log_path(log_file), level="ERROR", retention="90 days", serialize=serialize),
        ]
    )


def get_logger():
    """
    返回全局 logger。
    """
    return logger


__all__ = ["setup_logging", "get_logger", "error_log_path", "logger"]
