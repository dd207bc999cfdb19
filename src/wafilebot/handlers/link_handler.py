"""Link capture — every http(s) URL in a message becomes a ``link`` record."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from ..services.db import MediaRecord
from .message_sender import safe_reply

if TYPE_CHECKING:
    from ..app_context import AppContext
    from ..services.db import UserRecord
    from ..transport import InboundMessage

URL_RE = re.compile(r"https?://\S+")


def extract_urls(text: str) -> list[str]:
    return URL_RE.findall(text or "")


async def handle_links(
    app: AppContext, message: InboundMessage, user: UserRecord, urls: list[str]
) -> None:
    for url in urls:
        await app.db.create_media(
            MediaRecord(
                user_id=user.id,
                category="link",
                media_url=url,
                type="link",
                content_type="link",
            )
        )
    await safe_reply(app, message, f"{len(urls)} link(s) saved successfully!")
