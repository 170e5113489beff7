from __future__ import annotations

import asyncio
import time
from pathlib import Path
from typing import Any

from config.settings import DEFAULT_TIMEZONE, DISPATCH_LOG_FILE, ENABLE_DISPATCH_LOOP
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import PlainTextResponse
from logger import error_log_path, logger
from metrics import runtime_metrics

import storage.db_config as db_config
import world.dispatch_loop as dispatch_loop
from datamodel import DeliveryStatus, OccurrenceStatus
from notifications.upcoming import DEFAULT_DAYS, build_upcoming_notifications
from reminders.context import parse_context_settings
from reminders.snooze import CUSTOM_TARGET, get_smart_snooze_options, infer_reminder_category
from utils import ensure_utc, now_utc, resolve_timezone, to_user_local, to_utc_iso

from .auth import require_admin_auth, require_cron_auth
from .schemas import RuntimeControl, ShutdownRequest, SnoozeRequest
from .store import fetch_all, fetch_one, filter_logs, tail_lines


def create_app(control: RuntimeControl) -> FastAPI:
    app = FastAPI(title="Reminder Dispatch Admin API", version="1.0.0")

    def health_payload() -> dict[str, Any]:
        return {
            "status": "ok",
            "now_utc": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            "uptime_seconds": max(0.0, time.time() - control.started_at),
            "db_connected": db_config.conn is not None,
            "shutdown_requested": control.shutdown_event.is_set(),
        }

    async def load_snooze_context(occurrence_id: int) -> tuple[Any, str, str | None]:
        """返回 (occurrence, 用户时区, 提醒分类)"""
        occurrence = await control.store.fetch_occurrence(occurrence_id)
        if occurrence is None:
            raise HTTPException(status_code=404, detail="occurrence 不存在")
        reminder = await control.store.fetch_reminder(occurrence.reminder_id)
        if reminder is None:
            raise HTTPException(status_code=404, detail="提醒不存在")

        profile = await control.store.fetch_user_profile(reminder.created_by) if reminder.created_by is not None else None
        tz = resolve_timezone(reminder.tz, profile.time_zone if profile else None, fallback=DEFAULT_TIMEZONE)
        settings = parse_context_settings(
            await control.store.fetch_reminder_context_settings(reminder.reminder_id),
            parse_context_settings(profile.context_defaults) if profile else None,
        )
        category = "meds" if reminder.is_medication else infer_reminder_category(reminder.title, None, settings.category)
        return occurrence, tz, category

    @app.get("/healthz", include_in_schema=False)
    async def healthz() -> PlainTextResponse:
        return PlainTextResponse("ok")

    @app.get("/api/v1/health")
    async def api_health() -> dict[str, Any]:
        return health_payload()

    @app.get("/api/v1/metrics")
    async def get_metrics(request: Request) -> dict[str, Any]:
        await require_admin_auth(request)

        loop_status: dict[str, Any] = {"enabled": ENABLE_DISPATCH_LOOP}
        loop_status.update(dispatch_loop.get_status())

        return {
            "runtime": runtime_metrics.snapshot(),
            "components": {
                "db": {"connected": db_config.conn is not None},
                "dispatch_loop": loop_status,
                "channels": {
                    "email": control.orchestrator.email is not None,
                    "push": control.orchestrator.web_push is not None,
                    "fcm": control.orchestrator.fcm is not None,
                    "calendar": control.orchestrator.calendar is not None,
                },
            },
            "active_tasks": len(asyncio.all_tasks()),
        }

    @app.get("/api/v1/delivery-logs")
    async def get_delivery_logs(
        request: Request,
        occurrence_id: int | None = None,
        channel: str | None = None,
        status: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> dict[str, Any]:
        await require_admin_auth(request)
        limit = max(1, min(limit, 500))
        offset = max(0, offset)

        where_clauses: list[str] = []
        params: list[Any] = []

        if occurrence_id is not None:
            where_clauses.append("occurrence_id = ?")
            params.append(occurrence_id)
        if channel:
            where_clauses.append("channel = ?")
            params.append(channel)
        if status:
            if status not in {s.value for s in DeliveryStatus}:
                raise HTTPException(status_code=400, detail=f"非法 status: {status}")
            where_clauses.append("status = ?")
            params.append(status)

        where_sql = ""
        if where_clauses:
            where_sql = "WHERE " + " AND ".join(where_clauses)

        total_row = await fetch_one(
            f"SELECT COUNT(*) AS total FROM notification_log {where_sql}",
            tuple(params),
        )
        total = int((total_row or {}).get("total", 0))

        query_params = [*params, limit, offset]
        items = await fetch_all(
            (
                "SELECT log_id, occurrence_id, channel, status, sent_at, job_key, error, updated_at_utc "
                f"FROM notification_log {where_sql} "
                "ORDER BY log_id DESC LIMIT ? OFFSET ?"
            ),
            tuple(query_params),
        )

        return {
            "items": items,
            "limit": limit,
            "offset": offset,
            "occurrence_id": occurrence_id,
            "channel": channel,
            "status": status,
            "total": total,
        }

    @app.get("/api/v1/logs")
    async def get_logs(
        request: Request,
        lines: int = 200,
        level: str | None = None,
        levels: str | None = None,
        q: str | None = None,
        stream: str = "main",
    ) -> dict[str, Any]:
        await require_admin_auth(request)
        lines = max(1, min(lines, 5000))

        if stream == "error":
            target_path = error_log_path(DISPATCH_LOG_FILE)
        else:
            target_path = Path(DISPATCH_LOG_FILE)

        raw_lines = tail_lines(target_path, lines)
        level_list: list[str] = []
        if levels:
            level_list.extend([part.strip() for part in levels.split(",") if part.strip()])
        if level:
            level_list.append(level)

        filtered = filter_logs(raw_lines, levels=level_list, keyword=q)
        return {
            "stream": stream,
            "level": level,
            "levels": level_list,
            "q": q,
            "file": str(target_path),
            "lines": filtered,
        }

    @app.get("/api/v1/occurrences/{occurrence_id}/snooze-options")
    async def get_snooze_options(occurrence_id: int, request: Request) -> dict[str, Any]:
        await require_admin_auth(request)
        occurrence, tz, category = await load_snooze_context(occurrence_id)
        local_now = to_user_local(now_utc(), tz)
        options = get_smart_snooze_options(local_now, category, to_user_local(occurrence.occur_at, tz))
        return {
            "occurrence_id": occurrence_id,
            "timezone": tz,
            "category": category,
            "options": [option.as_dict() for option in options],
        }

    @app.post("/api/v1/occurrences/{occurrence_id}/snooze")
    async def snooze_occurrence(occurrence_id: int, payload: SnoozeRequest, request: Request) -> dict[str, Any]:
        auth_info = await require_admin_auth(request)
        occurrence, tz, category = await load_snooze_context(occurrence_id)
        if occurrence.status not in (OccurrenceStatus.OPEN, OccurrenceStatus.SNOOZED):
            raise HTTPException(status_code=409, detail=f"occurrence 状态为 {occurrence.status.value}, 无法延后")

        now = now_utc()
        target = None
        if payload.option_id and payload.option_id != CUSTOM_TARGET:
            options = get_smart_snooze_options(to_user_local(now, tz), category, to_user_local(occurrence.occur_at, tz))
            option = next((o for o in options if o.id == payload.option_id), None)
            if option is None:
                raise HTTPException(status_code=400, detail=f"当前不可用的延后选项: {payload.option_id}")
            target = option.target
        elif payload.until is not None:
            target = payload.until
        else:
            raise HTTPException(status_code=400, detail="需要提供 option_id 或 until")

        target = ensure_utc(target)
        if target <= now:
            raise HTTPException(status_code=400, detail="延后时间必须晚于当前时间")

        await control.store.update_occurrence_snooze(occurrence_id, target, OccurrenceStatus.SNOOZED)
        logger.info(f"手动延后 occurrence: occurrence_id={occurrence_id}, until={to_utc_iso(target)}, by={auth_info['user']}")
        return {"ok": True, "occurrence_id": occurrence_id, "snoozed_until": to_utc_iso(target)}

    @app.get("/api/v1/users/{user_id}/upcoming-notifications")
    async def get_upcoming_notifications(user_id: int, request: Request, days: int = DEFAULT_DAYS) -> dict[str, Any]:
        await require_admin_auth(request)
        items = await build_upcoming_notifications(control.store, user_id, now_utc(), days, DEFAULT_TIMEZONE)
        return {"user_id": user_id, "items": items}

    @app.api_route("/api/cron/dispatch-notifications", methods=["GET", "POST"])
    async def cron_dispatch(request: Request) -> dict[str, Any]:
        await require_cron_auth(request)
        result = await dispatch_loop.run_once(control.orchestrator)
        return {"ok": True, "processed": result.processed, "result": result.as_dict()}

    @app.post("/api/v1/admin/shutdown")
    async def admin_shutdown(payload: ShutdownRequest, request: Request) -> dict[str, Any]:
        auth_info = await require_admin_auth(request)
        logger.warning(f"收到远程关闭请求: by={auth_info['user']}, reason={payload.reason}")
        control.shutdown_event.set()
        return {"ok": True, "action": "shutdown", "reason": payload.reason}

    return app
