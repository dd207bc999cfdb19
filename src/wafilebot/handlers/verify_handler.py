"""#verify <code> — bind the sender's WhatsApp identity to a registered account.

Re-verifying with a valid code simply re-binds. Any failure (missing code,
unknown code) gets the same invalid-code reply.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import TYPE_CHECKING

from .message_sender import safe_reply

if TYPE_CHECKING:
    from ..app_context import AppContext
    from ..transport import InboundMessage

logger = logging.getLogger(__name__)

VERIFY_OK_TEXT = "Verification successful! Send #help to see available commands."
VERIFY_INVALID_TEXT = "Invalid code. Please check your code and try again."
VERIFY_FIRST_TEXT = "Please verify your account first using #verify YOUR_CODE"


async def handle_verify(app: AppContext, message: InboundMessage, code: str) -> None:
    code = code.strip()
    user = await app.db.find_user_by_code(code) if code else None
    if user is None:
        await safe_reply(app, message, VERIFY_INVALID_TEXT)
        return

    await app.db.bind_whatsapp(user.id, message.sender)
    app.user_view.put(
        message.sender,
        replace(user, whatsapp_number=message.sender, is_verified=True),
    )
    logger.info("Verified user %d for %s", user.id, message.sender)
    await safe_reply(app, message, VERIFY_OK_TEXT)
