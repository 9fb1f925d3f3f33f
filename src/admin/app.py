from __future__ import annotations

import asyncio
import time
from typing import Any

from config.settings import ADMIN_AUTH_TOKEN
from core.manager import ReminderManager
from core.view_provider import reminder_view
from fastapi import Depends, FastAPI, HTTPException
from fastapi.responses import PlainTextResponse
from logger import logger
from metrics import runtime_metrics

from .auth import make_admin_auth
from .schemas import AddReminderRequest, RuntimeControl, ShutdownRequest, SnoozeRequest


def create_app(
    control: RuntimeControl,
    manager: ReminderManager,
    *,
    channels: dict[str, Any] | None = None,
    auth_token: str = ADMIN_AUTH_TOKEN,
) -> FastAPI:
    """channels: 名称 -> 通道对象（需提供 get_status，可选 register_fastapi_routes）"""
    app = FastAPI(title="Chime Admin API", version="1.0.0")
    require_admin_auth = make_admin_auth(auth_token)
    channels = channels or {}

    for name, channel in channels.items():
        register = getattr(channel, "register_fastapi_routes", None)
        if register is not None:
            register(app)
            logger.info(f"已挂载 {name} 通道路由")

    def health_payload() -> dict[str, Any]:
        return {
            "status": "ok",
            "now_utc": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            "uptime_seconds": max(0.0, time.time() - control.started_at),
            "reminders": len(manager.get_all()),
            "shutdown_requested": control.shutdown_event.is_set(),
        }

    def view_of(reminder_id: str) -> dict[str, Any]:
        reminder = manager.get(reminder_id)
        if reminder is None:
            raise HTTPException(status_code=404, detail="Reminder not found.")
        return reminder_view(reminder, manager.now_ms())

    def ensure_found(ok: bool) -> None:
        if not ok:
            raise HTTPException(status_code=404, detail="Reminder not found.")

    @app.get("/healthz", include_in_schema=False)
    async def healthz() -> PlainTextResponse:
        return PlainTextResponse("ok")

    @app.get("/api/v1/health")
    async def api_health() -> dict[str, Any]:
        return health_payload()

    @app.get("/api/v1/metrics", dependencies=[Depends(require_admin_auth)])
    async def get_metrics() -> dict[str, Any]:
        components: dict[str, Any] = {
            "scheduler": {
                "active_timers": manager.scheduler.active_timer_count,
                "inflight_triggers": manager.scheduler.inflight_count,
            },
            "notifier": manager.notifier.name,
        }
        for name, channel in channels.items():
            try:
                components[name] = channel.get_status()
            except Exception as e:
                logger.warning(f"读取 {name} 状态失败: {e}")

        return {
            "runtime": runtime_metrics.snapshot(),
            "components": components,
            "active_tasks": len(asyncio.all_tasks()),
        }

    @app.get("/api/v1/stats", dependencies=[Depends(require_admin_auth)])
    async def get_stats() -> dict[str, int]:
        return manager.get_stats().to_dict()

    @app.get("/api/v1/reminders", dependencies=[Depends(require_admin_auth)])
    async def list_reminders(state: str | None = None) -> dict[str, Any]:
        now = manager.now_ms()
        items = [
            reminder_view(r, now)
            for r in manager.get_all()
            if state is None or r.state.value == state
        ]
        return {"items": items, "total": len(items), "stats": manager.get_stats().to_dict()}

    @app.post("/api/v1/reminders", status_code=201, dependencies=[Depends(require_admin_auth)])
    async def add_reminder(payload: AddReminderRequest) -> dict[str, Any]:
        result = manager.add(payload.text, payload.interval_minutes)
        if not result.success:
            raise HTTPException(status_code=422, detail=result.error)
        return view_of(result.reminder.id)

    @app.get("/api/v1/reminders/{reminder_id}", dependencies=[Depends(require_admin_auth)])
    async def get_reminder(reminder_id: str) -> dict[str, Any]:
        return view_of(reminder_id)

    @app.delete("/api/v1/reminders/{reminder_id}", dependencies=[Depends(require_admin_auth)])
    async def delete_reminder(reminder_id: str) -> dict[str, Any]:
        ensure_found(manager.delete(reminder_id))
        return {"ok": True, "id": reminder_id}

    @app.post("/api/v1/reminders/{reminder_id}/toggle", dependencies=[Depends(require_admin_auth)])
    async def toggle_reminder(reminder_id: str) -> dict[str, Any]:
        ensure_found(manager.toggle(reminder_id))
        return view_of(reminder_id)

    @app.post("/api/v1/reminders/{reminder_id}/pause", dependencies=[Depends(require_admin_auth)])
    async def pause_reminder(reminder_id: str) -> dict[str, Any]:
        ensure_found(manager.pause(reminder_id))
        return view_of(reminder_id)

    @app.post("/api/v1/reminders/{reminder_id}/resume", dependencies=[Depends(require_admin_auth)])
    async def resume_reminder(reminder_id: str) -> dict[str, Any]:
        ensure_found(manager.resume(reminder_id))
        return view_of(reminder_id)

    @app.post("/api/v1/reminders/{reminder_id}/dismiss", dependencies=[Depends(require_admin_auth)])
    async def dismiss_reminder(reminder_id: str) -> dict[str, Any]:
        ensure_found(manager.dismiss(reminder_id))
        return view_of(reminder_id)

    @app.post("/api/v1/reminders/{reminder_id}/snooze", dependencies=[Depends(require_admin_auth)])
    async def snooze_reminder(reminder_id: str, payload: SnoozeRequest | None = None) -> dict[str, Any]:
        minutes = payload.minutes if payload is not None else 5
        ensure_found(manager.snooze(reminder_id, minutes))
        return view_of(reminder_id)

    @app.post("/api/v1/admin/shutdown")
    async def admin_shutdown(payload: ShutdownRequest, auth_info: dict = Depends(require_admin_auth)) -> dict[str, Any]:
        logger.warning(f"收到远程关闭请求: by={auth_info['user']}, reason={payload.reason}")
        control.shutdown_event.set()
        return {"ok": True, "action": "shutdown", "reason": payload.reason}

    return app
