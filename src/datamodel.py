from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from enum import Enum
from datetime import datetime

__all__ = [
    "OccurrenceStatus", "Occurrence", "Reminder", "UserProfile",
    "NotificationChannel", "EntityType", "DeliveryStatus", "DeliveryLogEntry",
    "PushSubscription", "FcmToken", "NotificationPayload",
    "EmailResult", "PushResult", "FcmResult",
    "BusyInterval", "FreeBusyCacheEntry",
    "DispatchResult",
]

# ----------------- Occurrence / Reminder 数据模型 ----------------
class OccurrenceStatus(str, Enum):
    OPEN = "open"
    SNOOZED = "snoozed"
    DONE = "done"
    MISSED = "missed"


@dataclass
class Occurrence:
    occurrence_id: int
    reminder_id: int
    occur_at: datetime  # UTC
    snoozed_until: Optional[datetime] = None  # 存在时覆盖 occur_at
    status: OccurrenceStatus = OccurrenceStatus.OPEN
    performed_by: Optional[int] = None

    @property
    def effective_at(self) -> datetime:
        """实际到期时间: snoozed_until 优先, 否则 occur_at"""
        return self.snoozed_until if self.snoozed_until is not None else self.occur_at


@dataclass
class Reminder:
    reminder_id: int
    title: str
    household_id: Optional[int] = None
    is_active: bool = True
    created_by: Optional[int] = None  # 提醒的所有者, 即通知接收人
    context_settings: Any = None  # 原始 JSON, 可能格式错误
    kind: str = "task"  # 'task', 'medication'
    medication_details: Any = None  # 原始 JSON: {"name": ..., "dose": ...}
    tz: Optional[str] = None  # IANA 时区字符串, 优先于用户时区

    @property
    def is_medication(self) -> bool:
        return self.kind == "medication"


@dataclass
class UserProfile:
    user_id: int
    email: Optional[str] = None
    time_zone: Optional[str] = None  # IANA 时区字符串，例如 "Europe/Bucharest"
    context_defaults: Any = None  # 原始 JSON, 作为 ContextSettings 的用户级默认值


# ----------------- 通知 / 投递 数据模型 ----------------
class NotificationChannel(str, Enum):
    EMAIL = "email"
    PUSH = "push"
    FCM = "fcm"


class EntityType(str, Enum):
    REMINDER = "reminder"
    MEDICATION_DOSE = "medication_dose"


class DeliveryStatus(str, Enum):
    PENDING = "pending"  # 发送前预留的记录
    SENT = "sent"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class DeliveryLogEntry:
    log_id: int
    occurrence_id: int
    channel: NotificationChannel
    status: DeliveryStatus
    sent_at: datetime
    job_key: Optional[str] = None
    error: Optional[str] = None


@dataclass
class PushSubscription:
    endpoint: str
    p256dh: str
    auth: str
    user_id: Optional[int] = None


@dataclass
class FcmToken:
    token: str
    user_id: Optional[int] = None
    platform: Optional[str] = None  # 'android', 'ios'


@dataclass
class NotificationPayload:
    title: str
    body: str
    url: str
    job_key: Optional[str] = None
    notification_id: Optional[int] = None  # 由 job_key 推导, 供原生客户端使用
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class EmailResult:
    status: DeliveryStatus
    error: Optional[str] = None


@dataclass
class PushResult:
    status: DeliveryStatus
    stale_endpoints: List[str] = field(default_factory=list)


@dataclass
class FcmResult:
    sent: int = 0
    failed: int = 0
    invalid_tokens: List[str] = field(default_factory=list)

    @property
    def status(self) -> DeliveryStatus:
        if self.sent > 0:
            return DeliveryStatus.SENT
        if self.failed > 0:
            return DeliveryStatus.FAILED
        return DeliveryStatus.SKIPPED


# ----------------- 日历 free/busy 数据模型 ----------------
@dataclass(frozen=True)
class BusyInterval:
    start: datetime  # 包含
    end: datetime  # 不包含


@dataclass
class FreeBusyCacheEntry:
    busy: List[BusyInterval]
    time_min: datetime
    time_max: datetime
    fetched_at: datetime


# ----------------- 调度结果 ----------------
@dataclass
class DispatchResult:
    processed: int = 0  # 本轮考察过的 occurrence 数量, 不是发送数量
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    deduplicated: int = 0
    auto_snoozed: int = 0
    deferred: int = 0
    ignored: int = 0
    pruned: int = 0
    overdue: int = 0

    def as_dict(self) -> Dict[str, int]:
        return dict(self.__dict__)
