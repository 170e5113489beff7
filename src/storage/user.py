import json
import storage.db_config as db_config
from datamodel import *
from logger import logger
from typing import Any

__all__ = ["create_user", "get_user_profile", "get_user_email"]


async def create_user(
    email: str | None = None,
    time_zone: str | None = None,
    user_name: str | None = None,
    context_defaults: Any = None,
) -> UserProfile:
    conn = db_config.ensure_conn()
    raw_defaults = context_defaults
    if raw_defaults is not None and not isinstance(raw_defaults, str):
        raw_defaults = json.dumps(raw_defaults, ensure_ascii=False)
    async with conn.execute(
        "INSERT INTO users (user_name, email, time_zone, context_defaults) VALUES (?, ?, ?, ?)",
        (user_name, email, time_zone, raw_defaults)
    ) as cursor:
        user_id = cursor.lastrowid
    await conn.commit()
    logger.info(f"创建新用户: user_id={user_id}")
    return UserProfile(user_id=user_id, email=email, time_zone=time_zone, context_defaults=raw_defaults)


async def get_user_profile(user_id: int) -> UserProfile | None:
    """通过用户 ID 获取用户信息"""
    conn = db_config.ensure_conn()
    async with conn.execute(
        "SELECT user_id, email, time_zone, context_defaults FROM users WHERE user_id = ?",
        (user_id,)
    ) as cursor:
        row = await cursor.fetchone()
    if row:
        return UserProfile(
            user_id=row[0],
            email=row[1],
            time_zone=row[2],
            context_defaults=row[3],
        )
    return None


async def get_user_email(user_id: int) -> str | None:
    profile = await get_user_profile(user_id)
    if profile is None or not profile.email:
        return None
    return profile.email.strip() or None
