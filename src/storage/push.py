import storage.db_config as db_config
from datamodel import *
from logger import logger
from typing import Iterable

__all__ = [
    "upsert_push_subscription",
    "get_push_subscriptions_by_user_id",
    "delete_push_subscriptions",
    "upsert_fcm_token",
    "get_fcm_tokens_by_user_id",
    "delete_fcm_tokens",
]


# ----------------- Web Push 订阅 ----------------
async def upsert_push_subscription(user_id: int, endpoint: str, p256dh: str, auth: str) -> PushSubscription:
    """同一个 endpoint 只保留一条记录, 重复订阅时覆盖密钥与所属用户"""
    conn = db_config.ensure_conn()
    await conn.execute(
        (
            "INSERT INTO push_subscriptions (user_id, endpoint, p256dh, auth) VALUES (?, ?, ?, ?) "
            "ON CONFLICT(endpoint) DO UPDATE SET user_id = excluded.user_id, p256dh = excluded.p256dh, auth = excluded.auth"
        ),
        (user_id, endpoint, p256dh, auth)
    )
    await conn.commit()
    logger.trace(f"保存 push 订阅: user_id={user_id}, endpoint={endpoint[:48]}")
    return PushSubscription(endpoint=endpoint, p256dh=p256dh, auth=auth, user_id=user_id)


async def get_push_subscriptions_by_user_id(user_id: int) -> list[PushSubscription]:
    conn = db_config.ensure_conn()
    async with conn.execute(
        "SELECT endpoint, p256dh, auth, user_id FROM push_subscriptions WHERE user_id = ? ORDER BY subscription_id ASC",
        (user_id,)
    ) as cursor:
        rows = await cursor.fetchall()
    return [PushSubscription(endpoint=row[0], p256dh=row[1], auth=row[2], user_id=row[3]) for row in rows]


async def delete_push_subscriptions(endpoints: Iterable[str]) -> int:
    endpoints = list(dict.fromkeys(endpoints))
    if not endpoints:
        return 0
    conn = db_config.ensure_conn()
    placeholders = ", ".join("?" for _ in endpoints)
    async with conn.execute(
        f"DELETE FROM push_subscriptions WHERE endpoint IN ({placeholders})",
        endpoints
    ) as cursor:
        deleted = cursor.rowcount
    await conn.commit()
    logger.info(f"删除失效 push 订阅: {deleted} 条")
    return deleted


# ----------------- FCM token ----------------
async def upsert_fcm_token(user_id: int, token: str, platform: str | None = None) -> FcmToken:
    conn = db_config.ensure_conn()
    await conn.execute(
        (
            "INSERT INTO fcm_tokens (user_id, token, platform) VALUES (?, ?, ?) "
            "ON CONFLICT(token) DO UPDATE SET user_id = excluded.user_id, platform = excluded.platform"
        ),
        (user_id, token, platform)
    )
    await conn.commit()
    logger.trace(f"保存 FCM token: user_id={user_id}, platform={platform}")
    return FcmToken(token=token, user_id=user_id, platform=platform)


async def get_fcm_tokens_by_user_id(user_id: int) -> list[FcmToken]:
    conn = db_config.ensure_conn()
    async with conn.execute(
        "SELECT token, user_id, platform FROM fcm_tokens WHERE user_id = ? ORDER BY token_id ASC",
        (user_id,)
    ) as cursor:
        rows = await cursor.fetchall()
    return [FcmToken(token=row[0], user_id=row[1], platform=row[2]) for row in rows]


async def delete_fcm_tokens(tokens: Iterable[str]) -> int:
    tokens = list(dict.fromkeys(tokens))
    if not tokens:
        return 0
    conn = db_config.ensure_conn()
    placeholders = ", ".join("?" for _ in tokens)
    async with conn.execute(
        f"DELETE FROM fcm_tokens WHERE token IN ({placeholders})",
        tokens
    ) as cursor:
        deleted = cursor.rowcount
    await conn.commit()
    logger.info(f"删除失效 FCM token: {deleted} 条")
    return deleted
