"""Bot bootstrap — wires the supervisor, dispatcher and admin server together.

Lifecycle:
  - create_bot: build the MessageDispatcher and AdminServer for an AppContext.
  - post_init: open the archive DB, attach the dispatcher, start the
    supervisor (first session + health probe) and the admin server.
  - post_shutdown: stop the admin server, tear down the session, close the DB.
  - run_bot: post_init, wait for SIGINT/SIGTERM, post_shutdown.

Process-level faults (unhandled task exceptions, uncaught exceptions in
threads) are logged; when they look like a transport fault they trigger an
emergency reconnect. The process keeps running.

Key functions: create_bot(), run_bot().
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
import threading
from types import TracebackType
from typing import Any

from .admin_server import AdminServer
from .app_context import AppContext
from .dispatcher import MessageDispatcher
from .supervisor import ReconnectionSupervisor
from .transport import needs_reconnect

logger = logging.getLogger(__name__)


def install_fault_handlers(
    loop: asyncio.AbstractEventLoop, supervisor: ReconnectionSupervisor
) -> None:
    """Route uncaught errors to the log and, for transport faults, a reconnect."""

    def _maybe_reconnect(exc: BaseException | None, where: str) -> None:
        if exc is not None and needs_reconnect(exc):
            logger.warning("Transport fault escaped to %s; requesting reconnect", where)
            supervisor.request_reconnect(f"emergency: {exc}")

    def _loop_handler(loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
        exc = context.get("exception")
        logger.error(
            "Unhandled error in event loop: %s",
            context.get("message", "unknown"),
            exc_info=exc,
        )
        _maybe_reconnect(exc, "event loop")

    def _excepthook(
        exc_type: type[BaseException],
        exc: BaseException,
        tb: TracebackType | None,
    ) -> None:
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc, tb)
            return
        logger.error("Uncaught exception", exc_info=(exc_type, exc, tb))
        if not loop.is_closed():
            loop.call_soon_threadsafe(_maybe_reconnect, exc, "excepthook")

    def _thread_hook(args: threading.ExceptHookArgs) -> None:
        if args.exc_value is None:
            return
        _excepthook(args.exc_type, args.exc_value, args.exc_traceback)

    loop.set_exception_handler(_loop_handler)
    sys.excepthook = _excepthook
    threading.excepthook = _thread_hook


def create_bot(app: AppContext) -> tuple[MessageDispatcher, AdminServer]:
    cfg = app.config
    dispatcher = MessageDispatcher(app)
    admin = AdminServer(
        app.supervisor,
        app.qr_throttle,
        host=cfg.admin_host,
        port=cfg.admin_port,
        token=cfg.admin_token,
        qr_fresh_seconds=cfg.qr_fresh_seconds,
    )
    return dispatcher, admin


async def post_init(
    app: AppContext, dispatcher: MessageDispatcher, admin: AdminServer
) -> None:
    app.db.connect()
    logger.info("Archive DB ready at %s", app.db.db_path)

    install_fault_handlers(asyncio.get_running_loop(), app.supervisor)

    dispatcher.attach()
    await admin.start()
    if await app.supervisor.start():
        logger.info("WhatsApp bridge session started")


async def post_shutdown(app: AppContext, admin: AdminServer) -> None:
    try:
        await admin.stop()
    except Exception as e:
        logger.error("Error stopping admin server: %s", e)
    await app.supervisor.stop()
    app.db.close()


async def run_bot(app: AppContext) -> None:
    """Run until SIGINT/SIGTERM."""
    dispatcher, admin = create_bot(app)
    await post_init(app, dispatcher, admin)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    logger.info("Bot running, waiting for messages...")
    await stop_event.wait()
    logger.info("Shutting down...")
    await post_shutdown(app, admin)
