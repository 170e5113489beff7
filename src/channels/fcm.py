"""Firebase Cloud Messaging 通道 (原生 Android / iOS 客户端)"""

import asyncio
from typing import Any, Dict, List

import firebase_admin
from firebase_admin import credentials, exceptions, messaging

from channels.base import FcmTransport
from config.settings import FIREBASE_CLIENT_EMAIL, FIREBASE_PRIVATE_KEY, FIREBASE_PROJECT_ID
from datamodel import FcmResult, NotificationPayload
from errors import ConfigurationError, TransportError
from logger import logger

__all__ = ["FirebaseFcmTransport", "coerce_data"]

FCM_APP_NAME = "dispatch"
FCM_TTL_SECONDS = 60 * 60


def coerce_data(data: Dict[str, Any]) -> Dict[str, str]:
    """FCM 的 data 字段只接受字符串值"""
    out: Dict[str, str] = {}
    for key, value in data.items():
        if value is None:
            out[key] = "null"
        elif isinstance(value, bool):
            out[key] = "true" if value else "false"
        else:
            out[key] = str(value)
    return out


def _is_invalid_token_error(error: Exception | None) -> bool:
    return isinstance(error, (messaging.UnregisteredError, exceptions.InvalidArgumentError))


class FirebaseFcmTransport(FcmTransport):
    def __init__(
        self,
        project_id: str = FIREBASE_PROJECT_ID,
        client_email: str = FIREBASE_CLIENT_EMAIL,
        private_key: str = FIREBASE_PRIVATE_KEY,
    ) -> None:
        if not project_id or not client_email or not private_key:
            raise ConfigurationError("FCM 通道已启用, 但 FIREBASE_PROJECT_ID/CLIENT_EMAIL/PRIVATE_KEY 未配置")
        self.project_id = project_id
        self._credentials = {
            "type": "service_account",
            "project_id": project_id,
            "client_email": client_email,
            "private_key": private_key,
            "token_uri": "https://oauth2.googleapis.com/token",
        }
        self._app: firebase_admin.App | None = None

    def _get_app(self) -> firebase_admin.App:
        if self._app is None:
            try:
                self._app = firebase_admin.get_app(FCM_APP_NAME)
            except ValueError:
                cert = credentials.Certificate(self._credentials)
                self._app = firebase_admin.initialize_app(cert, {"projectId": self.project_id}, name=FCM_APP_NAME)
        return self._app

    def _build_message(self, tokens: List[str], payload: NotificationPayload) -> messaging.MulticastMessage:
        data = dict(payload.data)
        data.update({"url": payload.url, "jobKey": payload.job_key, "notificationId": payload.notification_id})
        return messaging.MulticastMessage(
            tokens=tokens,
            notification=messaging.Notification(title=payload.title, body=payload.body),
            data=coerce_data(data),
            android=messaging.AndroidConfig(priority="high", ttl=FCM_TTL_SECONDS),
        )

    def _send_sync(self, tokens: List[str], payload: NotificationPayload) -> FcmResult:
        response = messaging.send_each_for_multicast(self._build_message(tokens, payload), app=self._get_app())
        invalid_tokens = [
            token
            for token, result in zip(tokens, response.responses)
            if not result.success and _is_invalid_token_error(result.exception)
        ]
        return FcmResult(sent=response.success_count, failed=response.failure_count, invalid_tokens=invalid_tokens)

    async def send(self, tokens: List[str], payload: NotificationPayload) -> FcmResult:
        if not tokens:
            return FcmResult()
        logger.info(f"发送 FCM: count={len(tokens)}, job_key={payload.job_key}")
        try:
            result = await asyncio.to_thread(self._send_sync, tokens, payload)
        except exceptions.FirebaseError as e:
            raise TransportError("fcm", f"{e.code}: {e}") from e
        if result.failed:
            logger.warning(f"FCM 部分发送失败: sent={result.sent}, failed={result.failed}, invalid={len(result.invalid_tokens)}")
        return result
