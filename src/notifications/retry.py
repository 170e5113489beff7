"""通道级重试的退避表

目前调度主循环不依赖这里的逻辑: 投递失败时 occurrence 保持到期状态,
下一轮 cron 自然会重新尝试。这里保留给独立的重试队列使用。
"""

from datetime import datetime, timedelta
from typing import Sequence

__all__ = ["DEFAULT_RETRY_BACKOFF_MINUTES", "DEFAULT_MAX_RETRIES",
           "should_retry", "get_retry_delay_minutes", "get_next_retry_at"]

DEFAULT_RETRY_BACKOFF_MINUTES = (1, 5, 15, 60, 180)
DEFAULT_MAX_RETRIES = 5


def should_retry(retry_count: int, max_retries: int = DEFAULT_MAX_RETRIES) -> bool:
    return retry_count < max_retries


def get_retry_delay_minutes(
    retry_count: int,
    backoffs: Sequence[int] = DEFAULT_RETRY_BACKOFF_MINUTES,
) -> int:
    if retry_count <= 0:
        return backoffs[0]
    index = min(retry_count - 1, len(backoffs) - 1)
    return backoffs[index]


def get_next_retry_at(now: datetime, retry_count: int) -> datetime:
    return now + timedelta(minutes=get_retry_delay_minutes(retry_count))
