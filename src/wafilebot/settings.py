"""Bot settings — reads .env + settings.toml to produce a BotConfig.

Secrets (bridge token, API keys, storage credentials) come from the
environment only; tunables can be overridden in the ``[bot]`` table of
``settings.toml``. The timing constants keep a fixed ordering (settle delay
shorter than the reconnect cooldown, QR throttle window shorter than the QR
cooldown) so reconnects and QR regeneration cannot thrash.

Key entities:
  - BotConfig: frozen dataclass with all resolved config.
  - load_settings(): parse .env + settings.toml → BotConfig.
"""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path

from dotenv import load_dotenv

from .utils import wafilebot_dir

logger = logging.getLogger(__name__)

MB = 1024 * 1024


# ---------------------------------------------------------------------------
# BotConfig
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BotConfig:
    """Resolved configuration for the bot process.

    All path attributes are pre-resolved; no further env lookups needed.
    """

    # Transport bridge
    bridge_url: str = ""
    bridge_token: str = ""
    client_id: str = "wafilebot"
    bridge_auth_dir: Path | None = None

    # Paths
    config_dir: Path = field(default_factory=wafilebot_dir)
    data_dir: Path = field(default_factory=lambda: wafilebot_dir() / "data")

    # Admin surface
    admin_host: str = "127.0.0.1"
    admin_port: int = 8790
    admin_token: str = ""

    # Collaborators
    gemini_api_key: str = ""
    gemini_model: str = "gemini-1.5-flash"
    gcs_bucket: str = ""
    gcs_project: str = ""
    gcs_client_email: str = ""
    gcs_private_key: str = ""
    shortener_url: str = "https://tinyurl.com/api-create.php"

    # QR challenge throttle
    qr_throttle_window: float = 30.0
    qr_max_regenerations: int = 5
    qr_cooldown: float = 120.0
    qr_fresh_seconds: float = 300.0

    # Reconnection supervisor
    settle_delay: float = 15.0
    reconnect_cooldown: float = 180.0
    teardown_timeout: float = 10.0
    status_timeout: float = 10.0
    health_interval: float = 120.0
    inactivity_threshold: float = 900.0
    fault_debounce: float = 5.0

    # Dispatcher / handlers
    dedup_ttl: float = 30.0
    max_media_bytes: int = 15 * MB
    default_retrieval_limit: int = 5

    log_level: str = "INFO"

    # --- Derived path helpers ---

    @property
    def db_path(self) -> Path:
        return self.data_dir / "wafilebot.db"

    @property
    def qr_artifact_path(self) -> Path:
        return self.data_dir / "latest-qr.png"

    @property
    def qr_timestamp_path(self) -> Path:
        return self.data_dir / "latest-qr.json"

    @property
    def pid_file(self) -> Path:
        return self.config_dir / "wafilebot.pid"

    def validate(self) -> None:
        """Raise ValueError if the configuration cannot run."""
        if not self.bridge_url:
            raise ValueError(
                "bridge_url is not set (WAFILEBOT_BRIDGE_URL or [bot].bridge_url)."
            )
        for name in (
            "qr_throttle_window",
            "qr_cooldown",
            "settle_delay",
            "reconnect_cooldown",
            "teardown_timeout",
            "status_timeout",
            "health_interval",
            "dedup_ttl",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be > 0")
        if self.qr_max_regenerations < 1:
            raise ValueError("qr_max_regenerations must be >= 1")
        if self.max_media_bytes < 1 or self.default_retrieval_limit < 1:
            raise ValueError("max_media_bytes and default_retrieval_limit must be >= 1")
        if self.settle_delay >= self.reconnect_cooldown:
            raise ValueError("settle_delay must be shorter than reconnect_cooldown")
        if self.qr_throttle_window >= self.qr_cooldown:
            raise ValueError("qr_throttle_window must be shorter than qr_cooldown")


# ---------------------------------------------------------------------------
# load_settings
# ---------------------------------------------------------------------------

# Secrets: field name -> environment variable
_ENV_SECRETS = {
    "bridge_token": "WAFILEBOT_BRIDGE_TOKEN",
    "admin_token": "WAFILEBOT_ADMIN_TOKEN",
    "gemini_api_key": "GEMINI_API_KEY",
    "gcs_client_email": "GOOGLE_CLOUD_CLIENT_EMAIL",
    "gcs_private_key": "GOOGLE_CLOUD_PRIVATE_KEY",
}

# Non-secret keys that may also come from the environment
_ENV_OVERRIDES = {
    "bridge_url": "WAFILEBOT_BRIDGE_URL",
    "gcs_bucket": "GOOGLE_CLOUD_BUCKET_NAME",
    "gcs_project": "GOOGLE_CLOUD_PROJECT_ID",
    "admin_port": "WAFILEBOT_ADMIN_PORT",
}

_PATH_KEYS = {"data_dir", "bridge_auth_dir"}


def _coerce(name: str, value: object, default: object) -> object:
    """Coerce a raw TOML/env value to the type of the field default."""
    if name in _PATH_KEYS:
        if not value:
            return default
        return Path(os.path.expanduser(str(value)))
    if isinstance(default, bool):
        return bool(value)
    if isinstance(default, int):
        return int(value)  # type: ignore[arg-type]
    if isinstance(default, float):
        return float(value)  # type: ignore[arg-type]
    return str(value)


def load_settings(config_dir: Path | None = None, *, validate: bool = True) -> BotConfig:
    """Read .env + settings.toml and return a BotConfig.

    Args:
        config_dir: Override for the base config directory.
                    Defaults to ``wafilebot_dir()``.
        validate: Run BotConfig.validate() (offline CLI commands skip it).
    """
    if config_dir is None:
        config_dir = wafilebot_dir()
    config_dir.mkdir(parents=True, exist_ok=True)

    # Load .env files (local cwd first, then config_dir)
    local_env = Path(".env")
    global_env = config_dir / ".env"
    if local_env.is_file():
        load_dotenv(local_env)
    if global_env.is_file():
        load_dotenv(global_env)

    raw: dict = {}
    toml_path = config_dir / "settings.toml"
    if toml_path.is_file():
        with open(toml_path, "rb") as f:
            raw = tomllib.load(f).get("bot", {})
    else:
        logger.debug("No settings.toml at %s, using defaults", toml_path)

    defaults = BotConfig(config_dir=config_dir, data_dir=config_dir / "data")
    known = {f.name for f in fields(BotConfig)}
    kwargs: dict[str, object] = {
        "config_dir": config_dir,
        "data_dir": config_dir / "data",
    }

    for key, value in raw.items():
        if key in _ENV_SECRETS:
            raise ValueError(
                f"'{key}' is a secret; set {_ENV_SECRETS[key]} in .env instead."
            )
        if key not in known or key == "config_dir":
            logger.warning("Ignoring unknown setting '%s'", key)
            continue
        kwargs[key] = _coerce(key, value, getattr(defaults, key))

    for key, env_name in {**_ENV_OVERRIDES, **_ENV_SECRETS}.items():
        env_value = os.getenv(env_name, "")
        if env_value:
            kwargs[key] = _coerce(key, env_value, getattr(defaults, key))

    cfg = BotConfig(**kwargs)  # type: ignore[arg-type]
    if validate:
        cfg.validate()
    return cfg
