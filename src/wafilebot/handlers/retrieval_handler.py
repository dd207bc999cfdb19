"""Archive retrieval commands for verified users.

  - #files today|yesterday|week   records in a wall-clock time window
  - #<category>s [N]              N most recent records of one category
  - #search <keyword>             keyword / subject / category match
  - #categories                   record count per category

Bad arguments get a usage hint and no query is executed.

Key functions: compute_time_window(), parse_limit(), handle_command().
"""

from __future__ import annotations

import logging
from datetime import datetime, time, timedelta
from typing import TYPE_CHECKING

from .help_handler import UNKNOWN_COMMAND_TEXT
from .message_sender import safe_reply
from .response_builder import (
    build_categories_summary,
    build_category_listing,
    build_search_listing,
    build_window_listing,
)

if TYPE_CHECKING:
    from ..app_context import AppContext
    from ..services.db import UserRecord
    from ..transport import InboundMessage

logger = logging.getLogger(__name__)

WINDOW_HINT_TEXT = "Please specify: today, yesterday, or week"
LIMIT_HINT_TEXT = "Please specify a valid number greater than 0"
SEARCH_HINT_TEXT = "Please provide a search keyword"

# Upper bound on search results in one reply
SEARCH_LIMIT = 20


def compute_time_window(
    keyword: str, now: datetime
) -> tuple[datetime, datetime] | None:
    """Map today/yesterday/week to (start, end). None for unknown keywords."""
    keyword = keyword.lower()
    if keyword == "today":
        day = now.date()
    elif keyword == "yesterday":
        day = now.date() - timedelta(days=1)
    elif keyword == "week":
        return now - timedelta(days=7), now
    else:
        return None
    return datetime.combine(day, time.min), datetime.combine(day, time.max)


def parse_limit(arg: str | None, default: int) -> int | None:
    """Positive int from ``arg``; ``default`` when absent; None when invalid."""
    if arg is None:
        return default
    try:
        limit = int(arg)
    except ValueError:
        return None
    return limit if limit > 0 else None


async def handle_files(
    app: AppContext,
    message: InboundMessage,
    user: UserRecord,
    window: str,
    now: datetime | None = None,
) -> None:
    bounds = compute_time_window(window, now or datetime.now())
    if bounds is None:
        await safe_reply(app, message, WINDOW_HINT_TEXT)
        return
    start, end = bounds
    records = await app.db.query_media(user.id, start=start, end=end)
    reply = await build_window_listing(window.lower(), records, app.shortener)
    await safe_reply(app, message, reply)


async def handle_category(
    app: AppContext,
    message: InboundMessage,
    user: UserRecord,
    token: str,
    arg: str | None,
) -> None:
    """``token`` is the plural without '#', e.g. ``posters``."""
    category = token[:-1].lower()
    limit = parse_limit(arg, app.config.default_retrieval_limit)
    if limit is None:
        await safe_reply(app, message, LIMIT_HINT_TEXT)
        return
    records = await app.db.query_media(user.id, category=category, limit=limit)
    reply = await build_category_listing(category, limit, records, app.shortener)
    await safe_reply(app, message, reply)


async def handle_search(
    app: AppContext, message: InboundMessage, user: UserRecord, keyword: str
) -> None:
    keyword = keyword.strip().lower()
    if not keyword:
        await safe_reply(app, message, SEARCH_HINT_TEXT)
        return
    records = await app.db.query_media(user.id, text=keyword, limit=SEARCH_LIMIT)
    reply = await build_search_listing(keyword, records, app.shortener)
    await safe_reply(app, message, reply)


async def handle_categories(
    app: AppContext, message: InboundMessage, user: UserRecord
) -> None:
    counts = await app.db.count_by_category(user.id)
    await safe_reply(app, message, build_categories_summary(counts))


async def handle_command(
    app: AppContext, message: InboundMessage, user: UserRecord, body: str
) -> None:
    """Route a ``#`` command (other than #verify / #help)."""
    parts = body.strip().split(maxsplit=1)
    token = parts[0][1:].lower()
    rest = parts[1] if len(parts) > 1 else ""

    if token == "files":
        await handle_files(app, message, user, rest.split()[0] if rest else "")
    elif token == "search":
        await handle_search(app, message, user, rest)
    elif token == "categories":
        await handle_categories(app, message, user)
    elif len(token) > 1 and token.endswith("s"):
        args = rest.split()
        await handle_category(app, message, user, token, args[0] if args else None)
    else:
        logger.debug("Unknown command %r from %s", token, message.sender)
        await safe_reply(app, message, UNKNOWN_COMMAND_TEXT)
