import os
import sys
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv
from logger import logger
load_dotenv()

__all__ = [
    "DB_PATH", "DISPATCH_LOG_FILE", "LOG_JSON",
    "DEFAULT_TIMEZONE", "APP_URL",
    "ADMIN_HTTP_HOST", "ADMIN_HTTP_PORT", "ADMIN_AUTH_TOKEN", "CRON_SECRET",
    "ENABLE_DISPATCH_LOOP", "DISPATCH_INTERVAL_SECONDS",
    "CRON_GRACE_MINUTES", "CRON_LOOKAHEAD_MINUTES",
    "ENABLE_EMAIL", "RESEND_API_KEY", "RESEND_FROM", "RESEND_API_URL",
    "ENABLE_WEB_PUSH", "VAPID_PUBLIC_KEY", "VAPID_PRIVATE_KEY", "VAPID_SUBJECT",
    "ENABLE_FCM", "FIREBASE_PROJECT_ID", "FIREBASE_CLIENT_EMAIL", "FIREBASE_PRIVATE_KEY",
    "ENABLE_GOOGLE_CALENDAR", "GOOGLE_FREEBUSY_URL", "HTTP_TIMEOUT_SECONDS",
]


def _parse_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on", "y")


def _parse_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"{name} 非法: {raw}, 已回退到 {default}")
        return default


# 存储与日志
DB_PATH = os.getenv("DB_PATH", "data/dispatch.db")
DISPATCH_LOG_FILE = os.getenv("DISPATCH_LOG_FILE", "logs/dispatch.log")
LOG_JSON = _parse_bool("LOG_JSON", False)

# 时区: 用户与提醒均未指定时区时, 在该时区内判断静默时段
DEFAULT_TIMEZONE = os.getenv("DEFAULT_TIMEZONE", "UTC")
try:
    ZoneInfo(DEFAULT_TIMEZONE)
except (ZoneInfoNotFoundError, ValueError):
    logger.critical(f"DEFAULT_TIMEZONE 非法: {DEFAULT_TIMEZONE}, 需要 IANA 时区名, 例如 Europe/Bucharest")
    sys.exit(1)

APP_URL = os.getenv("APP_URL", "http://localhost:3000").rstrip("/")


# Admin API / cron 触发
ADMIN_HTTP_HOST = os.getenv("ADMIN_HTTP_HOST", "127.0.0.1")
ADMIN_HTTP_PORT = _parse_int("ADMIN_HTTP_PORT", 18080)
ADMIN_AUTH_TOKEN = os.getenv("ADMIN_AUTH_TOKEN", "")
CRON_SECRET = os.getenv("CRON_SECRET", "")


# 调度
ENABLE_DISPATCH_LOOP = _parse_bool("ENABLE_DISPATCH_LOOP", False)
DISPATCH_INTERVAL_SECONDS = _parse_int("DISPATCH_INTERVAL_SECONDS", 300)
if DISPATCH_INTERVAL_SECONDS < 10:
    logger.warning(f"DISPATCH_INTERVAL_SECONDS 过小: {DISPATCH_INTERVAL_SECONDS}, 已调整为 10 秒")
    DISPATCH_INTERVAL_SECONDS = 10

CRON_GRACE_MINUTES = _parse_int("CRON_GRACE_MINUTES", 120)
CRON_LOOKAHEAD_MINUTES = _parse_int("CRON_LOOKAHEAD_MINUTES", 17)


# 邮件 (Resend)
ENABLE_EMAIL = _parse_bool("ENABLE_EMAIL", True)
RESEND_API_KEY = os.getenv("RESEND_API_KEY", "")
RESEND_FROM = os.getenv("RESEND_FROM", "")
RESEND_API_URL = os.getenv("RESEND_API_URL", "https://api.resend.com/emails")

# Web Push (VAPID)
ENABLE_WEB_PUSH = _parse_bool("ENABLE_WEB_PUSH", True)
VAPID_PUBLIC_KEY = os.getenv("VAPID_PUBLIC_KEY", "")
VAPID_PRIVATE_KEY = os.getenv("VAPID_PRIVATE_KEY", "")
VAPID_SUBJECT = os.getenv("VAPID_SUBJECT", "")

# FCM (firebase-admin)
ENABLE_FCM = _parse_bool("ENABLE_FCM", False)
FIREBASE_PROJECT_ID = os.getenv("FIREBASE_PROJECT_ID", "")
FIREBASE_CLIENT_EMAIL = os.getenv("FIREBASE_CLIENT_EMAIL", "")
FIREBASE_PRIVATE_KEY = os.getenv("FIREBASE_PRIVATE_KEY", "").replace("\\n", "\n")

# Google Calendar freeBusy
ENABLE_GOOGLE_CALENDAR = _parse_bool("ENABLE_GOOGLE_CALENDAR", False)
GOOGLE_FREEBUSY_URL = os.getenv("GOOGLE_FREEBUSY_URL", "https://www.googleapis.com/calendar/v3/freeBusy")

try:
    HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", "15"))
except ValueError:
    HTTP_TIMEOUT_SECONDS = 15.0
    logger.warning("HTTP_TIMEOUT_SECONDS 非法, 已回退到 15 秒")
