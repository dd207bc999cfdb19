"""Shared fixtures: an AppContext with a real SQLite archive and fake collaborators."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from wafilebot.app_context import AppContext
from wafilebot.services import ArchiveDB
from wafilebot.settings import BotConfig
from wafilebot.transport import InboundMessage, MediaPayload

VERIFIED = "94770000001@c.us"
STRANGER = "94770000002@c.us"


@pytest.fixture
def config(tmp_path: Path) -> BotConfig:
    return BotConfig(
        bridge_url="ws://127.0.0.1:3100/ws",
        config_dir=tmp_path,
        data_dir=tmp_path / "data",
    )


@pytest.fixture
def session() -> MagicMock:
    """Stand-in for the live TransportSession."""
    s = MagicMock()
    s.reply = AsyncMock(return_value=True)
    s.send = AsyncMock(return_value=True)
    return s


@pytest.fixture
def db(config: BotConfig):
    archive = ArchiveDB(config.db_path)
    yield archive
    archive.close()


@pytest.fixture
def app(config: BotConfig, session: MagicMock, db: ArchiveDB) -> AppContext:
    supervisor = MagicMock()
    supervisor.current = session
    shortener = MagicMock()
    shortener.shorten = AsyncMock(side_effect=lambda url: f"short:{url}")
    classifier = MagicMock()
    classifier.classify = AsyncMock()
    storage = MagicMock()
    storage.store = AsyncMock(
        side_effect=lambda data, name, mimetype: f"https://storage.example/{name}"
    )
    return AppContext(
        config=config,
        supervisor=supervisor,
        qr_throttle=MagicMock(),
        db=db,
        shortener=shortener,
        classifier=classifier,
        storage=storage,
    )


@pytest.fixture
async def verified_user(db: ArchiveDB):
    user = await db.create_user("Ada", "ada@example.com")
    await db.bind_whatsapp(user.id, VERIFIED)
    return await db.find_verified_user(VERIFIED)


@pytest.fixture
def make_message():
    """Factory for InboundMessage; ``media`` is served by download_media()."""
    return _make_message


def _make_message(
    body: str = "",
    *,
    id: str = "msg-1",
    sender: str = VERIFIED,
    has_media: bool = False,
    is_group: bool = False,
    media: MediaPayload | None = None,
) -> InboundMessage:
    msg = InboundMessage(
        id=id, sender=sender, body=body, has_media=has_media, is_group=is_group
    )
    if media is not None:
        fake_session = MagicMock()
        fake_session.download_media = AsyncMock(return_value=media)
        msg.session = fake_session
    return msg
