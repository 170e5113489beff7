"""通知内容: 标题 / 正文 / 链接 / 邮件 HTML"""

import html
import json
from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache
from pathlib import Path
from string import Template
from typing import Any

from datamodel import Reminder
from utils import format_local_min

__all__ = ["NotificationContent", "parse_medication_details", "build_notification_content", "render_reminder_email"]

_TEMPLATE_DIR = Path(__file__).with_name("templates")


@dataclass
class NotificationContent:
    title: str
    body: str
    url: str
    subject: str
    time_label: str


def parse_medication_details(raw: Any) -> dict:
    """medication_details 可能是 JSON 字符串或 dict, 格式错误时返回空 dict"""
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError:
            return {}
    return raw if isinstance(raw, dict) else {}


def build_notification_content(reminder: Reminder, due_at: datetime, time_zone: str, app_url: str) -> NotificationContent:
    time_label = format_local_min(due_at, time_zone)
    url = f"{app_url.rstrip('/')}/app/reminders/{reminder.reminder_id}"

    if reminder.is_medication:
        details = parse_medication_details(reminder.medication_details)
        name = details.get("name") or reminder.title
        dose = details.get("dose")
        title = f"💊 {name} – {dose}" if dose else f"💊 {name}"
        return NotificationContent(
            title=title,
            body=f"Time for your medication • {time_label}",
            url=url,
            subject=title,
            time_label=time_label,
        )

    return NotificationContent(
        title=reminder.title,
        body=f"Due: {time_label}",
        url=url,
        subject=f"Reminder: {reminder.title}",
        time_label=time_label,
    )


@lru_cache(maxsize=None)
def _load_template(name: str) -> Template:
    return Template((_TEMPLATE_DIR / name).read_text(encoding="utf-8"))


def render_reminder_email(content: NotificationContent) -> str:
    return _load_template("reminder_email.html").substitute(
        title=html.escape(content.title),
        occur_at=html.escape(content.time_label),
        url=html.escape(content.url, quote=True),
    )
