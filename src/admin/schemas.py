from __future__ import annotations

import asyncio
from dataclasses import dataclass

from pydantic import BaseModel, Field


@dataclass
class RuntimeControl:
    shutdown_event: asyncio.Event
    started_at: float


class ShutdownRequest(BaseModel):
    reason: str = Field(default="manual")


class AddReminderRequest(BaseModel):
    text: str
    interval_minutes: float = Field(alias="intervalMinutes")

    model_config = {"populate_by_name": True}


class SnoozeRequest(BaseModel):
    minutes: float = Field(default=5, gt=0)
