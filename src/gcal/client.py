"""Google Calendar freeBusy 查询"""

from datetime import datetime
from typing import Any, Dict, List

import httpx

from channels.base import CalendarClient
from config.settings import GOOGLE_FREEBUSY_URL, HTTP_TIMEOUT_SECONDS
from errors import CalendarError
from logger import logger
from utils import to_utc_iso

__all__ = ["GoogleFreeBusyClient"]

PRIMARY_CALENDAR_ID = "primary"


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            return " ".join(error["message"].split())[:200]
        if isinstance(error, str) and error.strip():
            return " ".join(error.split())[:200]
    text = response.text.strip()
    return " ".join(text.split())[:200] if text else f"HTTP {response.status_code}"


class GoogleFreeBusyClient(CalendarClient):
    def __init__(
        self,
        url: str = GOOGLE_FREEBUSY_URL,
        timeout: float = HTTP_TIMEOUT_SECONDS,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = url
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)

    async def fetch_free_busy(
        self,
        access_token: str,
        time_min: datetime,
        time_max: datetime,
        time_zone: str = "UTC",
    ) -> List[Dict[str, Any]]:
        body = {
            "timeMin": to_utc_iso(time_min),
            "timeMax": to_utc_iso(time_max),
            "timeZone": time_zone,
            "items": [{"id": PRIMARY_CALENDAR_ID}],
        }
        try:
            response = await self._http_client.post(
                self.url,
                json=body,
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.HTTPError as e:
            raise CalendarError(f"freeBusy 请求失败: {e}") from e

        if response.status_code >= 400:
            raise CalendarError(f"freeBusy 请求失败: status={response.status_code}, error={_error_message(response)}")

        try:
            payload = response.json()
        except ValueError as e:
            raise CalendarError("freeBusy 响应不是合法 JSON") from e

        calendars = payload.get("calendars") if isinstance(payload, dict) else None
        if not isinstance(calendars, dict):
            raise CalendarError("freeBusy 响应缺少 calendars 字段")
        calendar = calendars.get(PRIMARY_CALENDAR_ID)
        if not isinstance(calendar, dict) and len(calendars) == 1:
            calendar = next(iter(calendars.values()))
        if not isinstance(calendar, dict):
            raise CalendarError("freeBusy 响应缺少主日历")

        busy = calendar.get("busy") or []
        if not isinstance(busy, list):
            raise CalendarError("freeBusy 响应的 busy 字段不是数组")
        logger.debug(f"freeBusy 返回 {len(busy)} 个忙碌区间")
        return busy

    async def aclose(self) -> None:
        await self._http_client.aclose()
