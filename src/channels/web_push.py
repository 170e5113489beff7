"""Web Push (VAPID) 通道, pywebpush 是同步库, 在线程中执行"""

import asyncio
import json
from typing import List

from pywebpush import WebPushException, webpush

from channels.base import WebPushTransport
from config.settings import VAPID_PRIVATE_KEY, VAPID_PUBLIC_KEY, VAPID_SUBJECT
from datamodel import DeliveryStatus, NotificationPayload, PushResult, PushSubscription
from errors import ConfigurationError
from logger import logger

__all__ = ["VapidWebPushTransport", "build_push_message"]

STALE_STATUS_CODES = (404, 410)


def build_push_message(payload: NotificationPayload) -> str:
    message = {
        "title": payload.title,
        "body": payload.body,
        "url": payload.url,
        "jobKey": payload.job_key,
        "notificationId": payload.notification_id,
    }
    if payload.data:
        message["data"] = payload.data
    return json.dumps(message, ensure_ascii=False)


class VapidWebPushTransport(WebPushTransport):
    def __init__(
        self,
        public_key: str = VAPID_PUBLIC_KEY,
        private_key: str = VAPID_PRIVATE_KEY,
        subject: str = VAPID_SUBJECT,
    ) -> None:
        if not public_key or not private_key or not subject:
            raise ConfigurationError("Web Push 通道已启用, 但 VAPID 密钥或 VAPID_SUBJECT 未配置")
        self.public_key = public_key
        self.private_key = private_key
        self.subject = subject if subject.startswith(("mailto:", "https:")) else f"mailto:{subject}"

    def _send_one(self, subscription: PushSubscription, data: str) -> None:
        webpush(
            subscription_info={
                "endpoint": subscription.endpoint,
                "keys": {"p256dh": subscription.p256dh, "auth": subscription.auth},
            },
            data=data,
            vapid_private_key=self.private_key,
            vapid_claims={"sub": self.subject},
            headers={"Urgency": "high", "Topic": "reminder"},
        )

    async def send(self, subscriptions: List[PushSubscription], payload: NotificationPayload) -> PushResult:
        if not subscriptions:
            logger.debug("没有 push 订阅, 跳过")
            return PushResult(status=DeliveryStatus.SKIPPED)

        logger.info(f"发送 push: count={len(subscriptions)}, job_key={payload.job_key}")
        data = build_push_message(payload)
        stale: List[str] = []
        failed = False
        for subscription in subscriptions:
            try:
                await asyncio.to_thread(self._send_one, subscription, data)
            except WebPushException as e:
                status_code = e.response.status_code if e.response is not None else None
                if status_code in STALE_STATUS_CODES:
                    logger.warning(f"push 订阅已失效: endpoint={subscription.endpoint[:48]}, status={status_code}")
                    stale.append(subscription.endpoint)
                else:
                    failed = True
                    logger.error(f"push 发送失败: endpoint={subscription.endpoint[:48]}, error={e}")
            except Exception as e:
                failed = True
                logger.error(f"push 请求异常: endpoint={subscription.endpoint[:48]}, error={type(e).__name__}: {e}")

        return PushResult(status=DeliveryStatus.FAILED if failed else DeliveryStatus.SENT, stale_endpoints=stale)
