"""Reconnection supervisor — sole owner of the current TransportSession.

The WhatsApp bridge is a flaky, stateful, resource-heavy dependency.
Disconnect events, failed health probes and admin requests can all ask for a
reconnect at the same time; this module serialises them.

State machine:
  IDLE → RECONNECTING    request_reconnect(); dropped unless IDLE
  RECONNECTING           graceful teardown (bounded) → forced discard →
                         settle delay → QR budget reset → fresh session with
                         retry/backoff → publish as current
  RECONNECTING → COOLING_DOWN  always, after the attempt
  COOLING_DOWN → IDLE    after ``reconnect_cooldown``

Mutual exclusion is a single boolean (ReconnectState.is_reconnecting) set
synchronously before the first await, so two triggers in the same loop tick
cannot both start a sequence. start() holds the same guard while it builds the
first session.

A background health probe calls get_status() every ``health_interval`` and
requests a reconnect when the session has not been confirmed healthy for
``inactivity_threshold`` seconds.

Key class: ReconnectionSupervisor.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from .qr_throttle import QrThrottle
from .transport import ConnectionStatus, LifecycleEvent, TransportSession

logger = logging.getLogger(__name__)

# Delays between connect attempts inside one reconnect sequence
_CONNECT_RETRY_DELAYS = [5, 15, 30]

SessionFactory = Callable[[], TransportSession]
Listener = Callable[[Any], Awaitable[None]]
Sleep = Callable[[float], Awaitable[Any]]


class SupervisorPhase(enum.Enum):
    IDLE = "idle"
    RECONNECTING = "reconnecting"
    COOLING_DOWN = "cooling_down"


@dataclass
class ReconnectState:
    """Reconnect bookkeeping (monotonic seconds)."""

    is_reconnecting: bool = False
    attempt_count: int = 0
    last_attempt_at: float | None = None
    cooldown_until: float | None = None


class ReconnectionSupervisor:
    """Owns session replacement, reconnect serialisation and health probing."""

    def __init__(
        self,
        session_factory: SessionFactory,
        qr_throttle: QrThrottle,
        *,
        settle_delay: float = 15.0,
        cooldown: float = 180.0,
        teardown_timeout: float = 10.0,
        health_interval: float = 120.0,
        inactivity_threshold: float = 900.0,
        fault_debounce: float = 5.0,
        retry_delays: list[float] | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._session_factory = session_factory
        self._qr_throttle = qr_throttle
        self.settle_delay = settle_delay
        self.cooldown = cooldown
        self.teardown_timeout = teardown_timeout
        self.health_interval = health_interval
        self.inactivity_threshold = inactivity_threshold
        self.fault_debounce = fault_debounce
        self._retry_delays = (
            list(_CONNECT_RETRY_DELAYS) if retry_delays is None else retry_delays
        )
        self._clock = clock
        self._sleep = sleep

        self.state = ReconnectState()
        self.phase = SupervisorPhase.IDLE
        self._current: TransportSession | None = None
        self._listeners: list[tuple[LifecycleEvent, Listener]] = []
        self._reconnect_task: asyncio.Task[None] | None = None
        self._fault_task: asyncio.Task[None] | None = None
        self._health_task: asyncio.Task[None] | None = None
        self._stopping = False

        self.last_probe_at: float | None = None
        self.last_healthy_at: float = clock()

    # --- Session access ---

    @property
    def current(self) -> TransportSession | None:
        """The live session. Read it per operation; it may be swapped."""
        return self._current

    def add_session_listener(self, event: LifecycleEvent, callback: Listener) -> None:
        """Register a listener that is attached to every session this creates."""
        self._listeners.append((event, callback))
        if self._current is not None:
            self._current.on(event, callback)

    def _new_session(self) -> TransportSession:
        session = self._session_factory()
        session.set_fault_handler(self.notify_fault)
        session.on(LifecycleEvent.READY, self._on_ready)
        session.on(LifecycleEvent.QR, self._on_qr)
        session.on(
            LifecycleEvent.DISCONNECTED,
            lambda reason: self._on_lost(session, f"disconnected: {reason}"),
        )
        session.on(
            LifecycleEvent.AUTH_FAILURE,
            lambda reason: self._on_lost(session, f"auth failure: {reason}"),
        )
        for event, callback in self._listeners:
            session.on(event, callback)
        return session

    # --- Lifecycle ---

    async def start(self) -> bool:
        """Create and connect the first session, then start health probing."""
        self._stopping = False
        self.state.is_reconnecting = True
        self.phase = SupervisorPhase.RECONNECTING
        try:
            ok = await self._connect_with_retry()
        finally:
            self.state.is_reconnecting = False
            self.phase = SupervisorPhase.IDLE
        if not ok:
            logger.error("Initial WhatsApp connection failed; health probe will retry")
        self._health_task = asyncio.create_task(self._health_loop())
        return ok

    async def stop(self) -> None:
        self._stopping = True
        for task in (self._health_task, self._fault_task, self._reconnect_task):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._health_task = self._fault_task = self._reconnect_task = None
        await self._teardown_current()
        logger.info("Reconnection supervisor stopped")

    # --- Event handlers ---

    async def _on_qr(self, payload: str) -> None:
        self._qr_throttle.handle(payload)

    async def _on_ready(self, _info: Any) -> None:
        self.last_healthy_at = self._clock()
        self.state.attempt_count = 0

    async def _on_lost(self, session: TransportSession, reason: str) -> None:
        # Events from a session that was never published or already replaced
        if session is not self._current:
            logger.debug("Ignoring event from stale session: %s", reason)
            return
        self.request_reconnect(reason)

    # --- Reconnect ---

    def request_reconnect(self, reason: str) -> bool:
        """Start a reconnect sequence in the background.

        Returns False (no-op) if a sequence is running or cooling down.
        """
        if self._stopping:
            return False
        if self.state.is_reconnecting:
            logger.info("Reconnect request ignored (%s): %s", self.phase.value, reason)
            return False
        self.state.is_reconnecting = True
        self.phase = SupervisorPhase.RECONNECTING
        logger.warning("Reconnecting WhatsApp session: %s", reason)
        self._reconnect_task = asyncio.create_task(self._reconnect_sequence())
        return True

    def notify_fault(self, reason: str) -> None:
        """Debounced reconnect request for transport faults seen by a session."""
        if self._stopping or self.state.is_reconnecting:
            return
        if self._fault_task is not None and not self._fault_task.done():
            return
        self._fault_task = asyncio.create_task(self._debounced_reconnect(reason))

    async def _debounced_reconnect(self, reason: str) -> None:
        await self._sleep(self.fault_debounce)
        self.request_reconnect(f"transport fault: {reason}")

    async def _reconnect_sequence(self) -> None:
        st = self.state
        try:
            st.attempt_count += 1
            st.last_attempt_at = self._clock()
            await self._teardown_current()
            await self._sleep(self.settle_delay)
            self._qr_throttle.reset()
            if await self._connect_with_retry():
                logger.info("WhatsApp session re-created (attempt %d)", st.attempt_count)
            else:
                logger.error("Reconnect attempt %d failed", st.attempt_count)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Reconnect sequence crashed")
        finally:
            st.cooldown_until = self._clock() + self.cooldown
            self.phase = SupervisorPhase.COOLING_DOWN

        try:
            await self._sleep(self.cooldown)
        finally:
            st.is_reconnecting = False
            st.cooldown_until = None
            self.phase = SupervisorPhase.IDLE

    async def _teardown_current(self) -> None:
        """Graceful destroy bounded by teardown_timeout, then forced discard."""
        old = self._current
        self._current = None
        if old is None:
            return
        old.set_fault_handler(None)
        try:
            await asyncio.wait_for(old.destroy(), timeout=self.teardown_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Session teardown did not finish within %.0fs; discarding it",
                self.teardown_timeout,
            )
        except Exception as e:
            logger.warning("Session teardown failed (%s); discarding it", e)
        finally:
            old.clear_listeners()

    async def _connect_with_retry(self) -> bool:
        """Build fresh sessions until one connects or retries run out."""
        delays = [0.0, *self._retry_delays]
        for attempt, delay in enumerate(delays, start=1):
            if self._stopping:
                return False
            if delay:
                logger.info(
                    "Retrying WhatsApp connect in %ds (attempt %d/%d)...",
                    delay,
                    attempt,
                    len(delays),
                )
                await self._sleep(delay)
            session = self._new_session()
            try:
                connected = await session.connect()
            except asyncio.CancelledError:
                await self._discard(session)
                raise
            if connected:
                self._current = session
                return True
            await self._discard(session)
        return False

    async def _discard(self, session: TransportSession) -> None:
        """Destroy a session that was never published."""
        session.set_fault_handler(None)
        session.clear_listeners()
        await session.destroy()

    # --- Admin operations ---

    async def full_reset(self) -> bool:
        """Unpair the device, drop the QR artifact, then reconnect."""
        session = self._current
        if session is not None:
            if not await session.logout():
                logger.warning("Logout during full reset failed; continuing")
        self._qr_throttle.clear_artifact()
        self._qr_throttle.reset()
        return self.request_reconnect("full reset")

    async def get_status(self) -> ConnectionStatus:
        session = self._current
        if session is None:
            return ConnectionStatus.DISCONNECTED
        return await session.get_status()

    def cooldown_remaining(self) -> float:
        until = self.state.cooldown_until
        if until is None:
            return 0.0
        return max(0.0, until - self._clock())

    # --- Health probe ---

    async def probe_once(self) -> ConnectionStatus:
        """One health probe; requests a reconnect after prolonged unhealth."""
        now = self._clock()
        self.last_probe_at = now
        status = await self.get_status()
        if status == ConnectionStatus.READY:
            self.last_healthy_at = now
            return status
        unhealthy_for = now - self.last_healthy_at
        if unhealthy_for >= self.inactivity_threshold and not self.state.is_reconnecting:
            self.request_reconnect(
                f"health probe: {status.value} for {unhealthy_for:.0f}s"
            )
        else:
            logger.debug(
                "Health probe: %s (unhealthy for %.0fs)", status.value, unhealthy_for
            )
        return status

    async def _health_loop(self) -> None:
        logger.info("Health probe started (interval: %ss)", self.health_interval)
        while not self._stopping:
            await self._sleep(self.health_interval)
            try:
                await self.probe_once()
            except Exception as e:
                logger.error("Health probe error: %s", e)
