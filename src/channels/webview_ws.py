from __future__ import annotations

import asyncio
import hmac
import json
import uuid
from typing import Any, Sequence

from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from channels.base import Notifier
from config.settings import WEBVIEW_WS_PATH, WEBVIEW_WS_TOKEN
from core.manager import ReminderManager
from core.view_provider import RemindersViewProvider
from logger import logger


class _WebviewSession:
    def __init__(self, websocket: WebSocket):
        self.websocket = websocket
        self.send_lock = asyncio.Lock()
        self.provider: RemindersViewProvider | None = None

    async def send_json(self, payload: dict[str, Any]) -> None:
        async with self.send_lock:
            await self.websocket.send_text(json.dumps(payload, ensure_ascii=False))


def _extract_token(websocket: WebSocket) -> str:
    auth_header = websocket.headers.get("authorization", "").strip()
    if auth_header.lower().startswith("bearer "):
        return auth_header[7:].strip()
    if auth_header != "":
        return auth_header

    qs_token = websocket.query_params.get("access_token") or websocket.query_params.get("token")
    return (qs_token or "").strip()


def _is_authorized(websocket: WebSocket, token: str) -> bool:
    if token == "":
        return True
    incoming = _extract_token(websocket)
    return hmac.compare_digest(incoming, token)


class WebviewChannel(Notifier):
    """
    浏览器侧边栏通道，同时承担两件事:
    - 视图宿主: 转发 addReminder 等消息给 RemindersViewProvider，并推送 updateReminders；
    - 通知通道: 推送 showNotification，等待 notificationResponse。

    同一时间只保留一个会话，新连接会替换旧连接。
    """

    name = "webview"

    def __init__(self, manager: ReminderManager | None = None, *, path: str = WEBVIEW_WS_PATH,
                 token: str = WEBVIEW_WS_TOKEN) -> None:
        self._manager = manager
        self.path = path
        self._token = token
        self._active_session: _WebviewSession | None = None
        self._session_lock = asyncio.Lock()
        self._pending: dict[str, asyncio.Future] = {}
        self._routes_registered = False

    def bind(self, manager: ReminderManager) -> None:
        self._manager = manager

    @property
    def connected(self) -> bool:
        return self._active_session is not None

    def get_status(self) -> dict[str, object]:
        return {
            "connected": self.connected,
            "pending_notifications": len(self._pending),
        }

    # ----------------- 通知 ----------------
    async def present(self, message: str, options: Sequence[str]) -> str | None:
        session = self._active_session
        if session is None:
            logger.info(f"Webview 未连接, 提醒未展示: {message}")
            return None

        request_id = uuid.uuid4().hex
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            await session.send_json({
                "type": "showNotification",
                "requestId": request_id,
                "message": message,
                "options": list(options),
            })
            return await future
        finally:
            self._pending.pop(request_id, None)
            # wait_for 超时会连带取消 future，所以 cancelled 也算未响应
            if future.cancelled() or not future.done():
                # 超时或取消: 让前端收起通知
                await self._safe_send(session, {"type": "hideNotification", "requestId": request_id})

    def _resolve_notification(self, payload: dict[str, Any]) -> None:
        request_id = str(payload.get("requestId", ""))
        future = self._pending.get(request_id)
        if future is None or future.done():
            logger.debug(f"收到过期的通知响应: requestId={request_id}")
            return
        choice = payload.get("choice")
        future.set_result(str(choice) if choice is not None else None)

    def _release_all_pending(self) -> None:
        # 连接断开按“未选择”处理
        for future in list(self._pending.values()):
            if not future.done():
                future.set_result(None)
        self._pending.clear()

    async def _safe_send(self, session: _WebviewSession, payload: dict[str, Any]) -> None:
        try:
            await session.send_json(payload)
        except Exception as e:
            logger.debug(f"Webview 消息发送失败: {e}")

    # ----------------- 会话 ----------------
    async def _replace_active_session(self, session: _WebviewSession) -> None:
        old: _WebviewSession | None = None
        async with self._session_lock:
            old = self._active_session
            self._active_session = session

        if old is not None:
            if old.provider is not None:
                old.provider.detach()
            try:
                await old.websocket.close(code=1012, reason="replaced")
            except Exception:
                pass

    async def _detach_active_session(self, session: _WebviewSession) -> bool:
        if session.provider is not None:
            session.provider.detach()
        async with self._session_lock:
            if self._active_session is session:
                self._active_session = None
                return True
        return False

    async def close(self, reason: str) -> None:
        session: _WebviewSession | None = None
        async with self._session_lock:
            session = self._active_session
            self._active_session = None

        if session is not None:
            if session.provider is not None:
                session.provider.detach()
            try:
                await session.websocket.close(code=1001, reason=reason)
            except Exception:
                pass
        self._release_all_pending()

    async def handle_payload(self, session: _WebviewSession, payload: Any) -> None:
        if not isinstance(payload, dict):
            logger.warning("收到非对象的 Webview 消息, 已忽略")
            return

        if payload.get("type") == "notificationResponse":
            self._resolve_notification(payload)
            return

        if session.provider is None:
            logger.warning("Webview 会话尚未绑定视图, 消息已忽略")
            return
        session.provider.handle_message(payload)

    def register_fastapi_routes(self, app: FastAPI) -> None:
        if self._routes_registered:
            return

        @app.websocket(self.path)
        async def webview_ws(websocket: WebSocket):
            if not _is_authorized(websocket, self._token):
                await websocket.close(code=1008, reason="unauthorized")
                logger.warning("Webview WS 鉴权失败")
                return

            await websocket.accept()
            session = _WebviewSession(websocket)
            await self._replace_active_session(session)
            if self._manager is not None:
                session.provider = RemindersViewProvider(self._manager, session.send_json)
                session.provider.attach()
            logger.info(f"Webview WS 已连接: path={self.path}")

            try:
                while True:
                    raw = await websocket.receive_text()
                    try:
                        payload = json.loads(raw)
                    except json.JSONDecodeError:
                        logger.warning("收到无法解析的 Webview 消息, 已忽略")
                        continue
                    await self.handle_payload(session, payload)
            except WebSocketDisconnect:
                logger.info("Webview WS 已断开")
            except Exception as e:
                logger.opt(exception=e).error(f"Webview WS 处理异常: {e}")
            finally:
                was_active = await self._detach_active_session(session)
                if was_active:
                    self._release_all_pending()

        self._routes_registered = True

    async def main(self, shutdown_event: asyncio.Event) -> None:
        logger.info(f"Webview 通道已启动，等待连接: {self.path}")
        await shutdown_event.wait()
        await self.close("service_shutdown")
        logger.info("Webview 通道已关闭")


__all__ = ["WebviewChannel"]
