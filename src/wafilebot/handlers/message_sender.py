"""Reply helper that always goes through the live session.

The supervisor may swap the TransportSession at any time, so replies look
up ``supervisor.current`` per call instead of holding a session reference.
TransportSession.reply() already falls back to a plain send and never
raises; this layer only covers the "no live session" case.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..app_context import AppContext
    from ..transport import InboundMessage

logger = logging.getLogger(__name__)


async def safe_reply(app: AppContext, message: InboundMessage, text: str) -> bool:
    """Reply to ``message``. Returns False if the reply could not be delivered."""
    session = app.supervisor.current
    if session is None:
        logger.warning("No live WhatsApp session; dropping reply to %s", message.sender)
        return False
    ok = await session.reply(message, text)
    if not ok:
        logger.warning("Reply to %s was not delivered", message.sender)
    return ok
