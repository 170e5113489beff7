from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime

from pydantic import BaseModel, Field

from core.orchestrator import DispatchOrchestrator
from storage.store import DispatchStore


@dataclass
class RuntimeControl:
    shutdown_event: asyncio.Event
    started_at: float
    store: DispatchStore
    orchestrator: DispatchOrchestrator


class ShutdownRequest(BaseModel):
    reason: str = Field(default="manual")


class SnoozeRequest(BaseModel):
    option_id: str | None = None
    until: datetime | None = None  # option_id 为 custom 或为空时必填
