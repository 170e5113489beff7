from __future__ import annotations

import hmac

from config.settings import ADMIN_AUTH_TOKEN, CRON_SECRET
from fastapi import HTTPException, Request
from logger import logger

if not ADMIN_AUTH_TOKEN:
    logger.warning("未配置 ADMIN_AUTH_TOKEN，管理 API 将不可访问")
if not CRON_SECRET:
    logger.warning("未配置 CRON_SECRET，cron 触发接口将不可访问")


def extract_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip()
    token_header = request.headers.get("X-Dispatch-Token", "").strip()
    return token_header or None


async def require_admin_auth(request: Request) -> dict[str, str]:
    if not ADMIN_AUTH_TOKEN:
        raise HTTPException(status_code=503, detail="ADMIN_AUTH_TOKEN 未配置")

    token = extract_token(request)
    if token and hmac.compare_digest(token, ADMIN_AUTH_TOKEN):
        return {"auth": "token", "user": "admin-token"}

    raise HTTPException(status_code=401, detail="未授权")


async def require_cron_auth(request: Request) -> dict[str, str]:
    """外部调度器使用 CRON_SECRET 作为 Bearer token 触发调度"""
    if not CRON_SECRET:
        raise HTTPException(status_code=503, detail="CRON_SECRET 未配置")

    token = extract_token(request)
    if token and hmac.compare_digest(token, CRON_SECRET):
        return {"auth": "cron", "user": "cron"}

    logger.warning(f"cron 接口鉴权失败: client={request.client.host if request.client else None}")
    raise HTTPException(status_code=401, detail="未授权")
