"""AppContext — bundles the bot config with its service instances.

One AppContext is built per process. It holds the resolved BotConfig plus
the ReconnectionSupervisor (owner of the live TransportSession), the QR
throttle, the archive DB and the external collaborators the command
handlers call.

Used by bot.py, the dispatcher and the admin server.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .qr_throttle import QrThrottle
    from .services import ArchiveDB, GcsStorage, GeminiClassifier, UrlShortener
    from .services.db import UserRecord
    from .settings import BotConfig
    from .supervisor import ReconnectionSupervisor

logger = logging.getLogger(__name__)


@dataclass
class VerifiedUserView:
    """Read-through cache of verified users keyed by WhatsApp sender.

    Fill-on-miss only; misses are not cached so a fresh verification is
    picked up on the next message. The DB stays the system of record.
    """

    db: ArchiveDB
    users: dict[str, UserRecord] = field(default_factory=dict)

    async def get(self, sender: str) -> UserRecord | None:
        user = self.users.get(sender)
        if user is not None:
            return user
        user = await self.db.find_verified_user(sender)
        if user is not None:
            self.users[sender] = user
        return user

    def put(self, sender: str, user: UserRecord) -> None:
        self.users[sender] = user

    def invalidate(self, sender: str) -> None:
        self.users.pop(sender, None)


@dataclass
class AppContext:
    """Runtime context for the bot process."""

    config: BotConfig
    supervisor: ReconnectionSupervisor
    qr_throttle: QrThrottle
    db: ArchiveDB
    shortener: UrlShortener
    classifier: GeminiClassifier | None = None
    storage: GcsStorage | None = None
    user_view: VerifiedUserView = field(init=False)

    def __post_init__(self) -> None:
        self.user_view = VerifiedUserView(self.db)


def create_app_context(config: BotConfig) -> AppContext:
    """Build an AppContext from a BotConfig.

    Creates the QR throttle, the supervisor (with a factory for fresh
    TransportSessions), the archive DB and the collaborators. A missing
    Gemini key disables classification (every upload uses the mimetype
    fallback); a missing bucket leaves uploads failing with a generic reply.
    """
    from .qr_throttle import QrThrottle
    from .services import ArchiveDB, GcsStorage, GeminiClassifier, UrlShortener
    from .supervisor import ReconnectionSupervisor
    from .transport import TransportSession

    qr_throttle = QrThrottle(
        config.qr_artifact_path,
        config.qr_timestamp_path,
        window=config.qr_throttle_window,
        max_regenerations=config.qr_max_regenerations,
        cooldown=config.qr_cooldown,
    )

    def session_factory() -> TransportSession:
        return TransportSession(
            config.bridge_url,
            token=config.bridge_token,
            client_id=config.client_id,
            status_timeout=config.status_timeout,
        )

    supervisor = ReconnectionSupervisor(
        session_factory,
        qr_throttle,
        settle_delay=config.settle_delay,
        cooldown=config.reconnect_cooldown,
        teardown_timeout=config.teardown_timeout,
        health_interval=config.health_interval,
        inactivity_threshold=config.inactivity_threshold,
        fault_debounce=config.fault_debounce,
    )

    classifier = None
    if config.gemini_api_key:
        classifier = GeminiClassifier(config.gemini_api_key, config.gemini_model)
    else:
        logger.warning("GEMINI_API_KEY not set; uploads use mimetype categories")

    storage = None
    if config.gcs_bucket:
        storage = GcsStorage(
            config.gcs_bucket,
            project=config.gcs_project,
            client_email=config.gcs_client_email,
            private_key=config.gcs_private_key,
        )
    else:
        logger.warning("GOOGLE_CLOUD_BUCKET_NAME not set; media uploads will fail")

    return AppContext(
        config=config,
        supervisor=supervisor,
        qr_throttle=qr_throttle,
        db=ArchiveDB(config.db_path),
        shortener=UrlShortener(config.shortener_url),
        classifier=classifier,
        storage=storage,
    )
