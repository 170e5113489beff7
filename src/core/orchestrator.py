"""通知调度器

每一轮 (cron 触发或进程内循环) 依次处理所有已到期的 occurrence, 早于 now - grace 的只计入 overdue, 不再发送:
1. 解析提醒与用户的上下文规则, 必要时查询日历忙碌;
2. 按用户时区判定 SendNow / SkipForNow / AutoSnooze;
3. SendNow 时依次向邮件、Web Push、FCM 发送, 每个通道先写 pending 投递记录再发送, 发送后回写结果。

同一个 job_key 在一轮内只发送一次, 已有 sent/pending 记录的 job_key 也不会重复发送。
调度器不会把 occurrence 标记为完成, 由用户操作或主应用负责。
"""

from datetime import datetime

from channels.base import EmailTransport, FcmTransport, WebPushTransport
from channels.content import NotificationContent, build_notification_content, render_reminder_email
from config.settings import APP_URL, CRON_GRACE_MINUTES, CRON_LOOKAHEAD_MINUTES, DEFAULT_TIMEZONE
from datamodel import *
from errors import TransportError
from events import bus, E
from gcal.freebusy_cache import compute_postpone_until
from gcal.service import FreeBusyService
from logger import logger
from notifications.keys import build_notification_job_key, notification_id_from_key
from notifications.scheduling import CronWindow, build_cron_window, is_job_due
from reminders.context import (
    AutoSnooze,
    ContextSettings,
    SkipForNow,
    evaluate_reminder_context,
    parse_context_settings,
)
from storage.store import DispatchStore
from utils import ensure_utc, now_utc, resolve_timezone, to_user_local

__all__ = ["DispatchOrchestrator"]


class DispatchOrchestrator:
    def __init__(
        self,
        store: DispatchStore,
        email: EmailTransport | None = None,
        web_push: WebPushTransport | None = None,
        fcm: FcmTransport | None = None,
        calendar: FreeBusyService | None = None,
        app_url: str = APP_URL,
        default_timezone: str = DEFAULT_TIMEZONE,
        grace_minutes: int = CRON_GRACE_MINUTES,
        lookahead_minutes: int = CRON_LOOKAHEAD_MINUTES,
    ) -> None:
        self.store = store
        self.email = email
        self.web_push = web_push
        self.fcm = fcm
        self.calendar = calendar
        self.app_url = app_url
        self.default_timezone = default_timezone
        self.grace_minutes = grace_minutes
        self.lookahead_minutes = lookahead_minutes

    async def aclose(self) -> None:
        """关闭持有 HTTP 连接池的邮件通道与日历客户端"""
        if self.email is not None:
            await self.email.aclose()
        if self.calendar is not None:
            await self.calendar.aclose()

    async def run(self, now: datetime | None = None) -> DispatchResult:
        now = ensure_utc(now) if now is not None else now_utc()
        result = DispatchResult()
        seen_keys: set[str] = set()
        window = build_cron_window(now, self.grace_minutes, self.lookahead_minutes)

        bus.safe_emit(E.DISPATCH_STARTED, now=now)
        occurrences = await self.store.fetch_due_occurrences(now)
        logger.info(f"开始调度: now={now.isoformat()}, 到期 occurrence {len(occurrences)} 个")

        for occurrence in occurrences:
            result.processed += 1
            await self._process_occurrence(occurrence, now, window, result, seen_keys)

        logger.info(f"调度完成: {result.as_dict()}")
        bus.safe_emit(E.DISPATCH_COMPLETED, processed=result.processed, result=result)
        return result

    async def _process_occurrence(
        self,
        occurrence: Occurrence,
        now: datetime,
        window: CronWindow,
        result: DispatchResult,
        seen_keys: set[str],
    ) -> None:
        effective_at = occurrence.effective_at
        if not is_job_due(now, window.window_start, effective_at):
            result.overdue += 1
            logger.info(f"occurrence 已超出宽限期, 不再发送: occurrence_id={occurrence.occurrence_id}, effective_at={effective_at.isoformat()}")
            return

        reminder = await self.store.fetch_reminder(occurrence.reminder_id)
        if reminder is None:
            logger.warning(f"occurrence 对应的提醒不存在, 跳过: occurrence_id={occurrence.occurrence_id}, reminder_id={occurrence.reminder_id}")
            result.ignored += 1
            return
        if not reminder.is_active:
            logger.debug(f"提醒已停用, 跳过: reminder_id={reminder.reminder_id}")
            result.ignored += 1
            return
        owner_id = reminder.created_by
        if owner_id is None:
            logger.warning(f"提醒没有所有者, 跳过: reminder_id={reminder.reminder_id}")
            result.ignored += 1
            return

        profile = await self.store.fetch_user_profile(owner_id)
        defaults = parse_context_settings(profile.context_defaults) if profile is not None else None
        raw_settings = await self.store.fetch_reminder_context_settings(reminder.reminder_id)
        settings = parse_context_settings(raw_settings, defaults)

        is_busy = False
        busy_interval = None
        if settings.calendar_busy.enabled:
            is_busy, busy_interval = await self._lookup_calendar_busy(owner_id, effective_at, now)

        tz = resolve_timezone(reminder.tz, profile.time_zone if profile else None, fallback=self.default_timezone)
        decision = evaluate_reminder_context(to_user_local(now, tz), effective_at, settings, is_busy)

        if isinstance(decision, SkipForNow):
            logger.info(f"不在允许的时间窗口内, 本轮跳过: occurrence_id={occurrence.occurrence_id}, reason={decision.reason}, tz={tz}")
            result.deferred += 1
            bus.safe_emit(E.OCCURRENCE_DEFERRED, occurrence_id=occurrence.occurrence_id, reason=decision.reason)
            return

        if isinstance(decision, AutoSnooze):
            await self._auto_snooze(occurrence, now, settings, busy_interval)
            result.auto_snoozed += 1
            return

        entity_type = EntityType.MEDICATION_DOSE if reminder.is_medication else EntityType.REMINDER
        content = build_notification_content(reminder, effective_at, tz, self.app_url)
        await self._send_email(occurrence, owner_id, entity_type, effective_at, content, now, result, seen_keys)
        await self._send_web_push(occurrence, reminder, owner_id, entity_type, effective_at, content, now, result, seen_keys)
        await self._send_fcm(occurrence, reminder, owner_id, entity_type, effective_at, content, now, result, seen_keys)

    async def _lookup_calendar_busy(
        self, user_id: int, at: datetime, now: datetime
    ) -> tuple[bool, BusyInterval | None]:
        """查询失败时视为不忙"""
        try:
            if self.calendar is not None:
                interval = await self.calendar.busy_interval_at(user_id, at, now)
                return interval is not None, interval
            return await self.store.fetch_user_calendar_busy(user_id, at), None
        except Exception as e:
            logger.warning(f"日历忙碌查询失败, 视为空闲: user_id={user_id}, error={e}")
            return False, None

    async def _auto_snooze(
        self,
        occurrence: Occurrence,
        now: datetime,
        settings: ContextSettings,
        busy_interval: BusyInterval | None,
    ) -> None:
        snoozed_until = compute_postpone_until(now, settings.calendar_busy.snooze_minutes, busy_interval)
        await self.store.update_occurrence_snooze(occurrence.occurrence_id, snoozed_until, OccurrenceStatus.SNOOZED)
        logger.info(f"日历忙碌, 自动延后: occurrence_id={occurrence.occurrence_id}, snoozed_until={snoozed_until.isoformat()}")
        bus.safe_emit(
            E.OCCURRENCE_AUTO_SNOOZED,
            occurrence_id=occurrence.occurrence_id,
            snoozed_until=snoozed_until,
        )

    # ----------------- 通道 ----------------
    async def _claim(self, job_key: str, result: DispatchResult, seen_keys: set[str]) -> bool:
        """本轮已出现过或已有 sent/pending 记录的 job_key 不再发送"""
        if job_key in seen_keys:
            result.deduplicated += 1
            logger.debug(f"本轮已处理过该任务: job_key={job_key}")
            return False
        seen_keys.add(job_key)
        if await self.store.has_delivery_for_job(job_key):
            result.deduplicated += 1
            logger.debug(f"该任务已有投递记录, 不再发送: job_key={job_key}")
            return False
        return True

    def _record(self, channel: NotificationChannel, status: DeliveryStatus, job_key: str, result: DispatchResult) -> None:
        if status == DeliveryStatus.SENT:
            result.sent += 1
            bus.safe_emit(E.NOTIFICATION_SENT, channel=channel.value, job_key=job_key)
        elif status == DeliveryStatus.FAILED:
            result.failed += 1
            bus.safe_emit(E.NOTIFICATION_FAILED, channel=channel.value, job_key=job_key)
        else:
            result.skipped += 1
            bus.safe_emit(E.NOTIFICATION_SKIPPED, channel=channel.value, job_key=job_key)

    def _build_payload(
        self, reminder: Reminder, occurrence: Occurrence, entity_type: EntityType, content: NotificationContent, job_key: str
    ) -> NotificationPayload:
        return NotificationPayload(
            title=content.title,
            body=content.body,
            url=content.url,
            job_key=job_key,
            notification_id=notification_id_from_key(job_key),
            data={
                "reminderId": reminder.reminder_id,
                "occurrenceId": occurrence.occurrence_id,
                "entityType": entity_type.value,
            },
        )

    async def _send_email(
        self,
        occurrence: Occurrence,
        owner_id: int,
        entity_type: EntityType,
        effective_at: datetime,
        content: NotificationContent,
        now: datetime,
        result: DispatchResult,
        seen_keys: set[str],
    ) -> None:
        if self.email is None:
            return
        channel = NotificationChannel.EMAIL
        recipient = await self.store.fetch_recipient_email(owner_id)
        if not recipient:
            logger.debug(f"用户没有邮箱, 跳过邮件: user_id={owner_id}")
            return
        job_key = build_notification_job_key(entity_type, occurrence.occurrence_id, effective_at, channel)
        if not await self._claim(job_key, result, seen_keys):
            return

        log_id = await self.store.insert_delivery_log(occurrence.occurrence_id, channel, DeliveryStatus.PENDING, now, job_key)
        try:
            email_result = await self.email.send(recipient, content.subject, render_reminder_email(content))
            status, error = email_result.status, email_result.error
        except TransportError as e:
            logger.error(f"邮件发送失败: job_key={job_key}, error={e}")
            status, error = DeliveryStatus.FAILED, str(e)
        except Exception as e:
            logger.exception(f"邮件发送出现未预期的异常: job_key={job_key}")
            status, error = DeliveryStatus.FAILED, str(e) or type(e).__name__

        await self.store.update_delivery_log_status(log_id, status, error)
        logger.info(f"邮件结果: job_key={job_key}, status={status.value}")
        self._record(channel, status, job_key, result)

    async def _send_web_push(
        self,
        occurrence: Occurrence,
        reminder: Reminder,
        owner_id: int,
        entity_type: EntityType,
        effective_at: datetime,
        content: NotificationContent,
        now: datetime,
        result: DispatchResult,
        seen_keys: set[str],
    ) -> None:
        if self.web_push is None:
            return
        channel = NotificationChannel.PUSH
        subscriptions = await self.store.fetch_push_subscriptions(owner_id)
        if not subscriptions:
            logger.debug(f"用户没有 push 订阅, 跳过: user_id={owner_id}")
            return
        job_key = build_notification_job_key(entity_type, occurrence.occurrence_id, effective_at, channel)
        if not await self._claim(job_key, result, seen_keys):
            return

        payload = self._build_payload(reminder, occurrence, entity_type, content, job_key)
        log_id = await self.store.insert_delivery_log(occurrence.occurrence_id, channel, DeliveryStatus.PENDING, now, job_key)
        stale_endpoints: list[str] = []
        error = None
        try:
            push_result = await self.web_push.send(subscriptions, payload)
            status = push_result.status
            stale_endpoints = push_result.stale_endpoints
            if status == DeliveryStatus.FAILED:
                error = "push_failed"
        except TransportError as e:
            logger.error(f"push 发送失败: job_key={job_key}, error={e}")
            status, error = DeliveryStatus.FAILED, str(e)
        except Exception as e:
            logger.exception(f"push 发送出现未预期的异常: job_key={job_key}")
            status, error = DeliveryStatus.FAILED, str(e) or type(e).__name__

        await self.store.update_delivery_log_status(log_id, status, error)
        logger.info(f"push 结果: job_key={job_key}, status={status.value}, stale={len(stale_endpoints)}")
        self._record(channel, status, job_key, result)

        if stale_endpoints:
            deleted = await self.store.delete_stale_push_subscriptions(stale_endpoints)
            result.pruned += deleted
            bus.safe_emit(E.ENDPOINTS_PRUNED, channel=channel.value, count=deleted)

    async def _send_fcm(
        self,
        occurrence: Occurrence,
        reminder: Reminder,
        owner_id: int,
        entity_type: EntityType,
        effective_at: datetime,
        content: NotificationContent,
        now: datetime,
        result: DispatchResult,
        seen_keys: set[str],
    ) -> None:
        if self.fcm is None:
            return
        channel = NotificationChannel.FCM
        tokens = [t.token for t in await self.store.fetch_fcm_tokens(owner_id)]
        if not tokens:
            logger.debug(f"用户没有 FCM token, 跳过: user_id={owner_id}")
            return
        job_key = build_notification_job_key(entity_type, occurrence.occurrence_id, effective_at, channel)
        if not await self._claim(job_key, result, seen_keys):
            return

        payload = self._build_payload(reminder, occurrence, entity_type, content, job_key)
        log_id = await self.store.insert_delivery_log(occurrence.occurrence_id, channel, DeliveryStatus.PENDING, now, job_key)
        invalid_tokens: list[str] = []
        error = None
        try:
            fcm_result = await self.fcm.send(tokens, payload)
            status = fcm_result.status
            invalid_tokens = fcm_result.invalid_tokens
            if status == DeliveryStatus.FAILED:
                error = f"fcm_failed: {fcm_result.failed}"
        except TransportError as e:
            logger.error(f"FCM 发送失败: job_key={job_key}, error={e}")
            status, error = DeliveryStatus.FAILED, str(e)
        except Exception as e:
            logger.exception(f"FCM 发送出现未预期的异常: job_key={job_key}")
            status, error = DeliveryStatus.FAILED, str(e) or type(e).__name__

        await self.store.update_delivery_log_status(log_id, status, error)
        logger.info(f"FCM 结果: job_key={job_key}, status={status.value}, invalid={len(invalid_tokens)}")
        self._record(channel, status, job_key, result)

        if invalid_tokens:
            deleted = await self.store.delete_stale_fcm_tokens(invalid_tokens)
            result.pruned += deleted
            bus.safe_emit(E.ENDPOINTS_PRUNED, channel=channel.value, count=deleted)
