"""Application entry point — CLI dispatcher and bot bootstrap.

Handles three execution modes:
  1. `wafilebot add-user` — interactive prompt that registers an unverified
     user and prints the #verify code for them.
  2. `wafilebot reset-session` — offline reset: delete the QR artifact and
     the bridge's local auth directory so the next start pairs again.
  3. Default — configures logging, enforces a single instance via pidfile,
     and runs the bot until SIGINT/SIGTERM.
"""

import asyncio
import atexit
import logging
import os
import shutil
import signal
import sys
import time
from pathlib import Path

PIDFILE_NAME = "wafilebot.pid"


def _read_pid(config_dir: Path) -> int | None:
    """Read pidfile and return PID or None."""
    pid_path = config_dir / PIDFILE_NAME
    try:
        return int(pid_path.read_text().strip())
    except (FileNotFoundError, ValueError):
        return None


def _is_pid_alive(pid: int) -> bool:
    """Check if a PID is still alive."""
    try:
        os.kill(pid, 0)
        return True
    except OSError:
        return False


def _write_pid(config_dir: Path) -> None:
    (config_dir / PIDFILE_NAME).write_text(str(os.getpid()) + "\n")


def _remove_pid(config_dir: Path) -> None:
    try:
        (config_dir / PIDFILE_NAME).unlink()
    except FileNotFoundError:
        pass


def _kill_existing(config_dir: Path) -> None:
    """If a previous bot instance is running, SIGTERM it (SIGKILL after 10s)."""
    pid = _read_pid(config_dir)
    if pid is None or pid == os.getpid() or not _is_pid_alive(pid):
        return
    print(f"Stopping existing wafilebot (PID {pid})...")
    os.kill(pid, signal.SIGTERM)
    # The old instance tears its bridge session down before exiting
    for _ in range(100):
        time.sleep(0.1)
        if not _is_pid_alive(pid):
            print("Stopped.")
            return
    print(f"Force killing PID {pid}...")
    os.kill(pid, signal.SIGKILL)
    time.sleep(0.5)


def _add_user() -> None:
    """Interactive prompt to register a user who can then #verify."""
    from .services import ArchiveDB
    from .settings import load_settings

    cfg = load_settings(validate=False)

    print("=== Add User ===\n")
    name = input("Name: ").strip()
    email = input("Email: ").strip()
    if not email or "@" not in email:
        print("Error: A valid email is required.")
        sys.exit(1)

    db = ArchiveDB(cfg.db_path)
    try:
        user = asyncio.run(db.create_user(name, email))
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)
    finally:
        db.close()

    print(f"\nUser '{email}' registered.")
    print(f"Ask them to send this to the bot on WhatsApp:\n\n  #verify {user.unique_code}\n")


def _reset_session() -> None:
    """Delete local pairing state so the next start shows a fresh QR."""
    from .settings import load_settings

    cfg = load_settings(validate=False)

    pid = _read_pid(cfg.config_dir)
    if pid is not None and pid != os.getpid() and _is_pid_alive(pid):
        print(f"Warning: wafilebot is running (PID {pid}); restart it afterwards.")

    for path in (cfg.qr_artifact_path, cfg.qr_timestamp_path):
        if path.exists():
            path.unlink()
            print(f"Removed {path}")

    auth_dir = cfg.bridge_auth_dir
    if auth_dir is not None and auth_dir.exists():
        shutil.rmtree(auth_dir)
        print(f"Removed {auth_dir}")
    elif auth_dir is None:
        print("No bridge_auth_dir configured; bridge auth state left untouched.")

    print("\nSession reset. Start wafilebot and scan the new QR code.")


def main() -> None:
    """Main entry point."""
    if len(sys.argv) > 1 and sys.argv[1] == "add-user":
        _add_user()
        return

    if len(sys.argv) > 1 and sys.argv[1] == "reset-session":
        _reset_session()
        return

    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=logging.WARNING,
    )

    from .app_context import create_app_context
    from .bot import run_bot
    from .settings import load_settings

    try:
        cfg = load_settings()
    except ValueError as e:
        print(f"Error: {e}\n")
        print("Check your .env and settings.toml configuration.")
        sys.exit(1)

    logging.getLogger("wafilebot").setLevel(cfg.log_level.upper())
    logger = logging.getLogger(__name__)

    _kill_existing(cfg.config_dir)
    _write_pid(cfg.config_dir)
    atexit.register(_remove_pid, cfg.config_dir)

    cfg.data_dir.mkdir(parents=True, exist_ok=True)
    app = create_app_context(cfg)
    logger.info("Bridge: %s, data dir: %s", cfg.bridge_url, cfg.data_dir)

    try:
        asyncio.run(run_bot(app))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
