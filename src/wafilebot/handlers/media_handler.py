"""Media upload — classify, store and record an attachment.

Flow for one attachment:
  1. Download the bytes; reject anything above ``max_media_bytes``.
  2. Images and PDFs go to the classifier (after an interim reply); other
     types, and every classifier failure, use the mimetype fallback.
  3. Upload to object storage as ``<category>_<epoch-millis><ext>``.
  4. Persist a MediaRecord and reply with the shortened access URL.

Storage failures propagate; the dispatcher answers them with the generic
error reply.
"""

from __future__ import annotations

import logging
import mimetypes
import os
import time
from typing import TYPE_CHECKING

from ..services import (
    StorageError,
    fallback_category,
    fallback_classification,
    parse_date,
    should_classify,
)
from ..services.db import MediaRecord
from .message_sender import safe_reply
from .response_builder import build_upload_reply

if TYPE_CHECKING:
    from ..app_context import AppContext
    from ..services import Classification
    from ..services.db import UserRecord
    from ..transport import InboundMessage, MediaPayload

logger = logging.getLogger(__name__)

ANALYZING_TEXT = "Analyzing your content..."


def too_large_text(max_bytes: int) -> str:
    return f"File is too large. Maximum size is {max_bytes // (1024 * 1024)} MB."


def object_name(
    category: str, filename: str | None, mimetype: str, epoch_ms: int | None = None
) -> str:
    """``<category>_<epoch-millis><ext>``; ext from filename, mimetype, else .file."""
    if epoch_ms is None:
        epoch_ms = int(time.time() * 1000)
    ext = os.path.splitext(filename or "")[1]
    if not ext:
        ext = mimetypes.guess_extension(mimetype.split(";")[0].strip()) or ".file"
    return f"{category}_{epoch_ms}{ext}"


async def analyze(app: AppContext, payload: MediaPayload) -> Classification:
    """Classifier result, or the mimetype fallback on any failure."""
    if app.classifier is None or not should_classify(payload.mimetype):
        return fallback_classification(payload.mimetype)
    try:
        analysis = await app.classifier.classify(payload.data, payload.mimetype)
    except Exception as e:
        logger.warning("Classification failed, using fallback: %s", e)
        return fallback_classification(payload.mimetype)
    if not analysis.category:
        analysis.category = fallback_category(payload.mimetype)
    return analysis


async def handle_media(
    app: AppContext, message: InboundMessage, user: UserRecord
) -> None:
    payload = await message.download_media()
    max_bytes = app.config.max_media_bytes
    if payload.size > max_bytes:
        logger.info(
            "Rejected %d-byte upload from %s (limit %d)",
            payload.size,
            message.sender,
            max_bytes,
        )
        await safe_reply(app, message, too_large_text(max_bytes))
        return

    if should_classify(payload.mimetype):
        await safe_reply(app, message, ANALYZING_TEXT)
    analysis = await analyze(app, payload)
    category = analysis.category.lower()

    if app.storage is None:
        raise StorageError("Object storage is not configured")
    name = object_name(category, payload.filename, payload.mimetype)
    url = await app.storage.store(payload.data, name, payload.mimetype)

    event_date = parse_date(analysis.date)
    await app.db.create_media(
        MediaRecord(
            user_id=user.id,
            category=category,
            media_url=url,
            type=payload.mimetype,
            file_size=payload.size,
            keywords=list(analysis.keywords),
            subject=analysis.subject,
            event_date=event_date.isoformat() if event_date else None,
            content_type=payload.mimetype,
        )
    )

    short_url = await app.shortener.shorten(url)
    await safe_reply(app, message, build_upload_reply(category, analysis, short_url))
