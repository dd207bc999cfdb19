"""HTTP admin surface for the WhatsApp connection.

Thin aiohttp wrapper over the ReconnectionSupervisor. Control requests
answer immediately (202) and the work continues in the background.

Routes:
  GET  /status     — connection status, supervisor phase, QR freshness
  POST /reconnect  — request a reconnect sequence
  POST /reset      — full reset: logout, drop QR artifact, reconnect
  GET  /qr         — latest pairing QR (PNG) while it is fresh

When ``token`` is set every route requires a matching ``X-Admin-Token``
header.

Key class: AdminServer.
"""

from __future__ import annotations

import asyncio
import hmac
import logging
from typing import TYPE_CHECKING, Any

from aiohttp import web

from .qr_throttle import artifact_age

if TYPE_CHECKING:
    from .qr_throttle import QrThrottle
    from .supervisor import ReconnectionSupervisor

logger = logging.getLogger(__name__)

_TOKEN_HEADER = "X-Admin-Token"

QR_NOT_GENERATED_TEXT = "QR code not generated yet. Wait for the bot to request pairing."
QR_EXPIRED_TEXT = "QR code expired. Trigger /reconnect to generate a new one."


class AdminServer:
    """Admin endpoints bound to one supervisor and QR throttle."""

    def __init__(
        self,
        supervisor: ReconnectionSupervisor,
        qr_throttle: QrThrottle,
        *,
        host: str = "127.0.0.1",
        port: int = 8790,
        token: str = "",
        qr_fresh_seconds: float = 300.0,
    ) -> None:
        self._supervisor = supervisor
        self._qr = qr_throttle
        self._host = host
        self._port = port
        self._token = token
        self._qr_fresh_seconds = qr_fresh_seconds
        self._app = web.Application()
        self._runner: web.AppRunner | None = None
        self._tasks: set[asyncio.Task[Any]] = set()
        self._setup_routes()

    @property
    def app(self) -> web.Application:
        return self._app

    def _setup_routes(self) -> None:
        self._app.router.add_get("/status", self._handle_status)
        self._app.router.add_post("/reconnect", self._handle_reconnect)
        self._app.router.add_post("/reset", self._handle_reset)
        self._app.router.add_get("/qr", self._handle_qr)

    def _authorized(self, request: web.Request) -> bool:
        if not self._token:
            return True
        supplied = request.headers.get(_TOKEN_HEADER, "")
        return hmac.compare_digest(supplied.encode(), self._token.encode())

    def _spawn(self, coro: Any) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # -- Handlers --

    async def _handle_status(self, request: web.Request) -> web.StreamResponse:
        if not self._authorized(request):
            raise web.HTTPUnauthorized()
        sup = self._supervisor
        status = await sup.get_status()
        age = artifact_age(self._qr.timestamp_path, self._qr.artifact_path)
        return web.json_response(
            {
                "status": status.value,
                "phase": sup.phase.value,
                "is_reconnecting": sup.state.is_reconnecting,
                "attempt_count": sup.state.attempt_count,
                "cooldown_remaining": round(sup.cooldown_remaining(), 1),
                "qr_available": age is not None,
                "qr_fresh": age is not None and age < self._qr_fresh_seconds,
                "qr_age_seconds": None if age is None else round(age, 1),
                "qr_throttled": self._qr.in_cooldown(),
            }
        )

    async def _handle_reconnect(self, request: web.Request) -> web.StreamResponse:
        if not self._authorized(request):
            raise web.HTTPUnauthorized()
        accepted = self._supervisor.request_reconnect("admin request")
        return web.json_response({"accepted": accepted}, status=202)

    async def _handle_reset(self, request: web.Request) -> web.StreamResponse:
        if not self._authorized(request):
            raise web.HTTPUnauthorized()
        logger.warning("Full session reset requested via admin API")
        self._spawn(self._supervisor.full_reset())
        return web.json_response({"accepted": True}, status=202)

    async def _handle_qr(self, request: web.Request) -> web.StreamResponse:
        if not self._authorized(request):
            raise web.HTTPUnauthorized()
        age = artifact_age(self._qr.timestamp_path, self._qr.artifact_path)
        if age is None:
            return web.Response(text=QR_NOT_GENERATED_TEXT, status=404)
        if age >= self._qr_fresh_seconds:
            return web.Response(text=QR_EXPIRED_TEXT, status=404)
        return web.FileResponse(
            self._qr.artifact_path,
            headers={"Content-Type": "image/png", "Cache-Control": "no-store"},
        )

    # -- Server lifecycle --

    async def start(self) -> None:
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self._host, self._port)
        await site.start()
        logger.info("Admin server listening on http://%s:%d", self._host, self._port)

    async def stop(self) -> None:
        pending = list(self._tasks)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            logger.info("Admin server stopped")
