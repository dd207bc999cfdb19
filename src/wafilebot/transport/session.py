"""WhatsApp transport session over the bridge websocket.

Wraps one connection to the WhatsApp bridge (a browser-automation WhatsApp
Web client running as a separate process) behind a small async interface:
  - connect / destroy / get_status: lifecycle of a single session.
  - send / reply: delivery with an alternate path on failure; never raises.
  - download_media: fetch attachment bytes for an inbound message.
  - on(event, callback): observer registration for LifecycleEvent.

Transport faults (closed target, protocol error, closed session) are
logged and reported through the ``on_fault`` callback so the
ReconnectionSupervisor can replace the session; they never reach callers.

Frame protocol (JSON text frames):
  bridge → bot   {"type": "qr" | "authenticated" | "ready" | "auth_failure"
                  | "disconnected" | "message", "payload": {...}}
                 {"type": "response", "requestId": ..., "payload": {...},
                  "error": "..."}
  bot → bridge   {"type": "command", "requestId": ..., "command": ...,
                  "args": {...}}

Key class: TransportSession.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import uuid
from collections.abc import Awaitable, Callable
from typing import Any

import aiohttp

from ..utils import with_timeout
from .events import (
    ConnectionStatus,
    InboundMessage,
    LifecycleEvent,
    MediaPayload,
    SessionState,
    map_bridge_state,
)

logger = logging.getLogger(__name__)

# Websocket keepalive
_HEARTBEAT_SECONDS = 30.0

# Default timeout for bridge commands
_REQUEST_TIMEOUT = 30.0

# Media downloads can be slow for large attachments
_DOWNLOAD_TIMEOUT = 120.0

# Error text the browser-automation layer produces when its page is gone
_FAULT_MARKERS = (
    "Target closed",
    "Protocol error",
    "Session closed",
    "Execution context was destroyed",
)

Listener = Callable[[Any], Awaitable[None]]
FaultHandler = Callable[[str], None]


class BridgeError(Exception):
    """Base class for transport errors."""


class BridgeClosedError(BridgeError):
    """The bridge connection is not open (Session closed)."""


class BridgeCommandError(BridgeError):
    """The bridge answered a command with an error."""


def needs_reconnect(exc: BaseException) -> bool:
    """Return True if ``exc`` means the session is broken and must be replaced."""
    if isinstance(
        exc,
        (BridgeClosedError, aiohttp.ClientError, ConnectionError, asyncio.TimeoutError),
    ):
        return True
    text = str(exc)
    return any(marker in text for marker in _FAULT_MARKERS)


class TransportSession:
    """One logical connection to the WhatsApp bridge."""

    def __init__(
        self,
        bridge_url: str,
        *,
        token: str = "",
        client_id: str = "wafilebot",
        status_timeout: float = 10.0,
        request_timeout: float = _REQUEST_TIMEOUT,
        on_fault: FaultHandler | None = None,
    ) -> None:
        self.bridge_url = bridge_url
        self.client_id = client_id
        self._token = token
        self._status_timeout = status_timeout
        self._request_timeout = request_timeout
        self._on_fault = on_fault

        self.state = SessionState.UNINITIALIZED
        self._http: aiohttp.ClientSession | None = None
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._pending: dict[str, asyncio.Future[dict[str, Any]]] = {}
        self._listeners: dict[LifecycleEvent, list[Listener]] = {}
        self._listener_tasks: set[asyncio.Task[None]] = set()
        self._destroying = False

    # --- Observers ---

    def on(self, event: LifecycleEvent, callback: Listener) -> None:
        """Register an async callback for a lifecycle event."""
        self._listeners.setdefault(event, []).append(callback)

    def clear_listeners(self) -> None:
        self._listeners.clear()

    def set_fault_handler(self, handler: FaultHandler | None) -> None:
        self._on_fault = handler

    def _emit(self, event: LifecycleEvent, arg: Any = None) -> None:
        for callback in list(self._listeners.get(event, ())):
            task = asyncio.create_task(self._run_listener(event, callback, arg))
            self._listener_tasks.add(task)
            task.add_done_callback(self._listener_tasks.discard)

    async def _run_listener(
        self, event: LifecycleEvent, callback: Listener, arg: Any
    ) -> None:
        try:
            await callback(arg)
        except Exception:
            logger.exception("Listener for %s failed", event.value)

    # --- Lifecycle ---

    @property
    def is_open(self) -> bool:
        return self._ws is not None and not self._ws.closed

    async def connect(self) -> bool:
        """Open the bridge connection and ask it to initialize WhatsApp Web.

        Results arrive asynchronously as QR / AUTHENTICATED → READY /
        AUTH_FAILURE events. Transport faults are emitted as ERROR and
        reported as False; nothing is raised.
        """
        self.state = SessionState.CONNECTING
        self._destroying = False
        headers = {"Authorization": f"Bearer {self._token}"} if self._token else None
        try:
            self._http = aiohttp.ClientSession()
            self._ws = await self._http.ws_connect(
                self.bridge_url, heartbeat=_HEARTBEAT_SECONDS, headers=headers
            )
            self._reader_task = asyncio.create_task(self._read_loop())
            await self._request("initialize", {"clientId": self.client_id})
        except Exception as e:
            logger.error("Failed to connect to WhatsApp bridge %s: %s", self.bridge_url, e)
            await self._close_surfaces()
            self.state = SessionState.DISCONNECTED
            self._emit(LifecycleEvent.ERROR, str(e))
            return False
        logger.info("Connected to WhatsApp bridge at %s", self.bridge_url)
        return True

    async def destroy(self) -> None:
        """Best-effort teardown. Safe to call any number of times.

        Asks the bridge to shut its browser down, then closes the reader,
        the websocket and the HTTP session. Each step is guarded on its own;
        references are always cleared.
        """
        self._destroying = True
        try:
            if self.is_open:
                try:
                    await asyncio.wait_for(
                        self._request("destroy", {}), timeout=self._status_timeout
                    )
                except Exception as e:
                    logger.debug("Bridge destroy command failed: %s", e)
            await self._close_surfaces()
        finally:
            self._ws = None
            self._http = None
            self._reader_task = None
            self.state = SessionState.DESTROYED

    async def _close_surfaces(self) -> None:
        reader, ws, http = self._reader_task, self._ws, self._http
        if reader is not None and not reader.done():
            try:
                reader.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await reader
            except Exception as e:
                logger.debug("Error stopping bridge reader: %s", e)
        if ws is not None:
            try:
                await ws.close()
            except Exception as e:
                logger.debug("Error closing bridge websocket: %s", e)
        if http is not None:
            try:
                await http.close()
            except Exception as e:
                logger.debug("Error closing HTTP session: %s", e)
        self._fail_pending("Session closed")
        self._reader_task = None
        self._ws = None
        self._http = None

    async def get_status(self) -> ConnectionStatus:
        """Return the coarse connection status. Never raises.

        Bounded by ``status_timeout``; a timeout or fault reports
        DISCONNECTED and asks for a reconnection check.
        """
        if not self.is_open:
            return ConnectionStatus.DISCONNECTED
        try:
            result = await asyncio.wait_for(
                self._request("get_state", {}), timeout=self._status_timeout
            )
        except Exception as e:
            logger.warning("Status check failed: %s", e)
            self._report_fault(f"get_status: {e}")
            return ConnectionStatus.DISCONNECTED
        return map_bridge_state(result.get("state"))

    async def logout(self) -> bool:
        """Unpair the device on the bridge. Returns False on failure."""
        result = await with_timeout(
            self._request("logout", {}), self._status_timeout, None, label="logout"
        )
        return result is not None

    # --- Delivery ---

    async def send(self, target: str, content: str) -> bool:
        """Send a text message. Returns False if every delivery path failed."""
        try:
            await self._request("send_message", {"chatId": target, "text": content})
            return True
        except Exception as e:
            self._handle_delivery_fault("send_message", target, e)
        try:
            # Alternate path: resolve the chat explicitly, then send through it
            await self._request("send_via_chat", {"chatId": target, "text": content})
            return True
        except Exception as e:
            self._handle_delivery_fault("send_via_chat", target, e)
        return False

    async def reply(self, message: InboundMessage, content: str) -> bool:
        """Quote-reply to ``message``, falling back to a plain send."""
        try:
            await self._request(
                "reply",
                {"chatId": message.sender, "messageId": message.id, "text": content},
            )
            return True
        except Exception as e:
            self._handle_delivery_fault("reply", message.sender, e)
        return await self.send(message.sender, content)

    async def download_media(self, message_id: str) -> MediaPayload:
        """Download the attachment of ``message_id``. Raises on failure."""
        result = await self._request(
            "download_media", {"messageId": message_id}, timeout=_DOWNLOAD_TIMEOUT
        )
        return MediaPayload.from_dict(result)

    def _handle_delivery_fault(self, op: str, target: str, exc: Exception) -> None:
        logger.warning("%s to %s failed: %s", op, target, exc)
        if needs_reconnect(exc):
            self._report_fault(f"{op}: {exc}")

    def _report_fault(self, reason: str) -> None:
        if self._on_fault is not None and not self._destroying:
            self._on_fault(reason)

    # --- Bridge protocol ---

    async def _request(
        self, command: str, args: dict[str, Any], timeout: float | None = None
    ) -> dict[str, Any]:
        ws = self._ws
        if ws is None or ws.closed:
            raise BridgeClosedError("Session closed")
        request_id = uuid.uuid4().hex
        future: asyncio.Future[dict[str, Any]] = (
            asyncio.get_running_loop().create_future()
        )
        self._pending[request_id] = future
        try:
            await ws.send_json(
                {
                    "type": "command",
                    "requestId": request_id,
                    "command": command,
                    "args": args,
                }
            )
            return await asyncio.wait_for(
                future, timeout=timeout or self._request_timeout
            )
        finally:
            self._pending.pop(request_id, None)

    def _fail_pending(self, reason: str) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(BridgeClosedError(reason))
        self._pending.clear()

    async def _read_loop(self) -> None:
        ws = self._ws
        if ws is None:
            return
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self._handle_frame(msg.data)
                elif msg.type in (aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
                    break
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("Bridge reader stopped: %s", e)

        self._fail_pending("Session closed")
        if not self._destroying:
            self.state = SessionState.DISCONNECTED
            logger.warning("WhatsApp bridge connection closed")
            self._emit(LifecycleEvent.DISCONNECTED, "bridge connection closed")

    def _handle_frame(self, raw: str) -> None:
        try:
            frame = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Invalid JSON from bridge")
            return
        if not isinstance(frame, dict):
            logger.warning("Invalid bridge frame shape")
            return

        frame_type = frame.get("type")
        payload = frame.get("payload")
        if not isinstance(payload, dict):
            payload = {}

        if frame_type == "response":
            future = self._pending.get(str(frame.get("requestId")))
            if future is None or future.done():
                return
            error = frame.get("error")
            if error:
                future.set_exception(BridgeCommandError(str(error)))
            else:
                future.set_result(payload)
            return

        if frame_type == "qr":
            self.state = SessionState.AWAITING_QR
            self._emit(LifecycleEvent.QR, str(payload.get("qr") or ""))
        elif frame_type == "authenticated":
            self.state = SessionState.AUTHENTICATED
            logger.info("WhatsApp session authenticated")
            self._emit(LifecycleEvent.AUTHENTICATED, payload)
        elif frame_type == "ready":
            self.state = SessionState.READY
            logger.info("WhatsApp client is ready")
            self._emit(LifecycleEvent.READY, payload.get("info"))
        elif frame_type == "auth_failure":
            self.state = SessionState.DISCONNECTED
            reason = str(payload.get("reason") or "unknown")
            logger.warning("WhatsApp authentication failed: %s", reason)
            self._emit(LifecycleEvent.AUTH_FAILURE, reason)
        elif frame_type == "disconnected":
            self.state = SessionState.DISCONNECTED
            reason = str(payload.get("reason") or "unknown")
            logger.warning("WhatsApp client disconnected: %s", reason)
            self._emit(LifecycleEvent.DISCONNECTED, reason)
        elif frame_type == "message":
            message = InboundMessage.from_dict(payload, session=self)
            if not message.sender:
                logger.warning("Dropping malformed inbound message event")
                return
            self._emit(LifecycleEvent.MESSAGE, message)
        else:
            logger.debug("Ignoring bridge frame type %r", frame_type)
