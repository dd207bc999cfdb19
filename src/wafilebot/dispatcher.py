"""Message dispatcher — single entry point for inbound WhatsApp messages.

Per message:
  1. Drop duplicates: a message identity seen within ``dedup_ttl`` seconds
     is ignored (the bridge may deliver the same event twice).
  2. Drop group conversations.
  3. Classify into exactly one MessageCategory, by priority:
       verify > help > (verification gate) > media > links > # command
       > unrecognized
  4. Run the matching handler inside error isolation: an exception is
     logged and answered with one generic reply, never propagated.

Unverified senders get the verification hint for commands and content;
for plain chatter the hint is sent only once per process.

Messages are not serialised: each one runs in its own task (see
TransportSession._emit) and may interleave with others at every await.

Key class: MessageDispatcher.
"""

from __future__ import annotations

import enum
import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING

from .handlers.help_handler import handle_help
from .handlers.link_handler import extract_urls, handle_links
from .handlers.media_handler import handle_media
from .handlers.message_sender import safe_reply
from .handlers.retrieval_handler import handle_command
from .handlers.verify_handler import VERIFY_FIRST_TEXT, handle_verify
from .transport import LifecycleEvent

if TYPE_CHECKING:
    from .app_context import AppContext
    from .transport import InboundMessage

logger = logging.getLogger(__name__)

GENERIC_ERROR_TEXT = "Sorry, there was an error processing your message."


class MessageCategory(enum.Enum):
    VERIFY = "verify"
    HELP = "help"
    MEDIA = "media"
    LINKS = "links"
    COMMAND = "command"
    UNRECOGNIZED = "unrecognized"


def classify_message(message: InboundMessage) -> MessageCategory:
    body = message.body.strip()
    token = body.split(maxsplit=1)[0].lower() if body else ""
    if token == "#verify":
        return MessageCategory.VERIFY
    if token == "#help":
        return MessageCategory.HELP
    if message.has_media:
        return MessageCategory.MEDIA
    if extract_urls(body):
        return MessageCategory.LINKS
    if token.startswith("#"):
        return MessageCategory.COMMAND
    return MessageCategory.UNRECOGNIZED


class InFlightMessageSet:
    """Message identities seen recently, each expiring after ``ttl`` seconds.

    Entries expire regardless of whether handling finished, so memory stays
    bounded. Expired entries are purged lazily on insert.
    """

    def __init__(self, ttl: float = 30.0, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._expiry: dict[str, float] = {}

    def __contains__(self, identity: str) -> bool:
        expires = self._expiry.get(identity)
        return expires is not None and expires > self._clock()

    def __len__(self) -> int:
        return len(self._expiry)

    def add(self, identity: str) -> bool:
        """Insert ``identity``. Returns False if it is already tracked."""
        now = self._clock()
        self._purge(now)
        if identity in self._expiry:
            return False
        self._expiry[identity] = now + self.ttl
        return True

    def _purge(self, now: float) -> None:
        expired = [k for k, exp in self._expiry.items() if exp <= now]
        for k in expired:
            del self._expiry[k]


class MessageDispatcher:
    """Deduplicates, gates and routes inbound messages to handlers."""

    def __init__(
        self, app: AppContext, clock: Callable[[], float] = time.monotonic
    ) -> None:
        self.app = app
        self.in_flight = InFlightMessageSet(app.config.dedup_ttl, clock)
        self._hinted: set[str] = set()

    def attach(self) -> None:
        """Subscribe to MESSAGE events of every session the supervisor creates."""
        self.app.supervisor.add_session_listener(
            LifecycleEvent.MESSAGE, self.handle_message
        )

    async def handle_message(self, message: InboundMessage) -> None:
        identity = message.identity
        if identity is not None and not self.in_flight.add(identity):
            logger.debug("Dropping duplicate message %s", identity)
            return
        if message.is_group:
            return

        category = classify_message(message)
        logger.debug(
            "Message %s from %s -> %s", identity, message.sender, category.value
        )
        try:
            await self._dispatch(message, category)
        except Exception:
            logger.exception(
                "Error handling %s message from %s", category.value, message.sender
            )
            await safe_reply(self.app, message, GENERIC_ERROR_TEXT)

    async def _dispatch(self, message: InboundMessage, category: MessageCategory) -> None:
        app = self.app
        body = message.body.strip()

        if category == MessageCategory.VERIFY:
            parts = body.split(maxsplit=1)
            await handle_verify(app, message, parts[1] if len(parts) > 1 else "")
            return
        if category == MessageCategory.HELP:
            await handle_help(app, message)
            return

        user = await app.user_view.get(message.sender)
        if user is None:
            await self._hint_unverified(message, category)
            return

        if category == MessageCategory.MEDIA:
            await handle_media(app, message, user)
        elif category == MessageCategory.LINKS:
            await handle_links(app, message, user, extract_urls(body))
        elif category == MessageCategory.COMMAND:
            await handle_command(app, message, user, body)

    async def _hint_unverified(
        self, message: InboundMessage, category: MessageCategory
    ) -> None:
        if category == MessageCategory.UNRECOGNIZED:
            if message.sender in self._hinted:
                return
            self._hinted.add(message.sender)
        await safe_reply(self.app, message, VERIFY_FIRST_TEXT)
