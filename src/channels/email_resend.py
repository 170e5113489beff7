"""通过 Resend HTTP API 发送提醒邮件"""

import httpx

from channels.base import EmailTransport
from config.settings import HTTP_TIMEOUT_SECONDS, RESEND_API_KEY, RESEND_API_URL, RESEND_FROM
from datamodel import DeliveryStatus, EmailResult
from errors import ConfigurationError
from logger import logger

__all__ = ["ResendEmailTransport"]


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        message = payload.get("message") or payload.get("error")
        if isinstance(message, str) and message.strip():
            return " ".join(message.split())[:200]
    text = response.text.strip()
    if text:
        return " ".join(text.split())[:200]
    return f"HTTP {response.status_code}"


class ResendEmailTransport(EmailTransport):
    def __init__(
        self,
        api_key: str = RESEND_API_KEY,
        sender: str = RESEND_FROM,
        api_url: str = RESEND_API_URL,
        timeout: float = HTTP_TIMEOUT_SECONDS,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        if not api_key or not sender:
            raise ConfigurationError("邮件通道已启用, 但 RESEND_API_KEY 或 RESEND_FROM 未配置")
        self.api_key = api_key
        self.sender = sender
        self.api_url = api_url
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)

    async def send(self, to: str, subject: str, html: str) -> EmailResult:
        logger.info(f"发送邮件: to={to}, subject={subject}")
        try:
            response = await self._http_client.post(
                self.api_url,
                json={"from": self.sender, "to": [to], "subject": subject, "html": html},
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
        except httpx.HTTPError as e:
            logger.error(f"邮件发送请求失败: to={to}, error={e}")
            return EmailResult(status=DeliveryStatus.FAILED, error=str(e) or type(e).__name__)

        if response.status_code >= 400:
            message = _error_message(response)
            logger.error(f"邮件发送失败: to={to}, status={response.status_code}, error={message}")
            return EmailResult(status=DeliveryStatus.FAILED, error=message)
        return EmailResult(status=DeliveryStatus.SENT)

    async def aclose(self) -> None:
        await self._http_client.aclose()
