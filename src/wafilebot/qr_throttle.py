"""QR challenge throttle — rate-limits and persists pairing QR codes.

A misbehaving bridge can emit QR challenges in a tight loop. Each raw event
passes through QrThrottle.handle():
  - Within ``window`` seconds of the last accepted QR the event is suppressed
    and counted; more than ``max_regenerations`` suppressed events in a row
    start a cooldown during which every QR is dropped.
  - Otherwise the QR is accepted: rendered to the terminal and written to a
    PNG artifact plus a JSON "last updated" timestamp, polled by the admin
    status page.

Artifact write failures are logged and never stop QR handling.

Key class: QrThrottle.
"""

from __future__ import annotations

import contextlib
import io
import json
import logging
import os
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

import qrcode

logger = logging.getLogger(__name__)


@dataclass
class QrThrottleState:
    """Throttle bookkeeping (monotonic seconds)."""

    last_emitted_at: float | None = None
    regeneration_count: int = 0
    cooldown_until: float = 0.0


class QrThrottle:
    """Throttle, render and persist QR challenges from the transport."""

    def __init__(
        self,
        artifact_path: Path,
        timestamp_path: Path,
        *,
        window: float = 30.0,
        max_regenerations: int = 5,
        cooldown: float = 120.0,
        render_terminal: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.artifact_path = artifact_path
        self.timestamp_path = timestamp_path
        self.window = window
        self.max_regenerations = max_regenerations
        self.cooldown = cooldown
        self.render_terminal = render_terminal
        self._clock = clock
        self.state = QrThrottleState()

    def reset(self) -> None:
        """Forget throttle history (a fresh session gets a fresh QR budget)."""
        self.state = QrThrottleState()

    def in_cooldown(self) -> bool:
        return self._clock() < self.state.cooldown_until

    def handle(self, payload: str) -> bool:
        """Process one raw QR event. Returns True if it was accepted."""
        st = self.state
        now = self._clock()

        if st.cooldown_until:
            if now < st.cooldown_until:
                logger.debug("QR suppressed (cooldown, %.0fs left)", st.cooldown_until - now)
                return False
            st.cooldown_until = 0.0
            st.regeneration_count = 0

        elapsed = None if st.last_emitted_at is None else now - st.last_emitted_at

        if elapsed is not None and elapsed < self.window:
            st.regeneration_count += 1
            if st.regeneration_count > self.max_regenerations:
                st.cooldown_until = now + self.cooldown
                logger.warning(
                    "QR regenerated %d times within %.0fs; pausing QR handling for %.0fs",
                    st.regeneration_count,
                    self.window,
                    self.cooldown,
                )
            else:
                logger.debug(
                    "QR suppressed (%.1fs since last, count=%d)",
                    elapsed,
                    st.regeneration_count,
                )
            return False

        if elapsed is None or elapsed >= 2 * self.window:
            logger.info("New QR cycle started")
        st.regeneration_count = 0
        st.last_emitted_at = now

        if self.render_terminal:
            self._render_terminal(payload)
        self._write_artifact(payload)
        logger.info("QR code generated! Scan it with WhatsApp")
        return True

    def _render_terminal(self, payload: str) -> None:
        try:
            qr = qrcode.QRCode(border=1)
            qr.add_data(payload)
            out = io.StringIO()
            qr.print_ascii(out=out, invert=True)
            print(out.getvalue(), flush=True)
        except Exception as e:
            logger.warning("Failed to render QR to terminal: %s", e)

    def _write_artifact(self, payload: str) -> None:
        """Write the PNG artifact and its timestamp file."""
        tmp_path = self.artifact_path.with_suffix(".png.tmp")
        try:
            self.artifact_path.parent.mkdir(parents=True, exist_ok=True)
            image = qrcode.make(payload)
            with open(tmp_path, "wb") as f:
                image.save(f, format="PNG")
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.artifact_path)
            self.timestamp_path.write_text(
                json.dumps(
                    {
                        "updated_at": datetime.now(timezone.utc).isoformat(),
                        "epoch": time.time(),
                    }
                )
            )
            logger.debug("QR artifact written to %s", self.artifact_path)
        except Exception as e:
            logger.error("Failed to write QR artifact %s: %s", self.artifact_path, e)
            with contextlib.suppress(OSError):
                tmp_path.unlink()

    def clear_artifact(self) -> None:
        for path in (self.artifact_path, self.timestamp_path):
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning("Failed to remove %s: %s", path, e)


def artifact_age(timestamp_path: Path, artifact_path: Path) -> float | None:
    """Seconds since the QR artifact was last written, or None if absent."""
    if not artifact_path.is_file():
        return None
    try:
        epoch = float(json.loads(timestamp_path.read_text())["epoch"])
    except (OSError, ValueError, KeyError, TypeError):
        epoch = artifact_path.stat().st_mtime
    return max(0.0, time.time() - epoch)
