"""Content classification via Google Gemini.

Sends an image or PDF plus a fixed prompt to Gemini and parses the JSON-ish
text reply into a Classification. Callers treat every failure the same
way: fall back to ``fallback_classification(mimetype)``.

Key class: GeminiClassifier.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime

import google.generativeai as genai

logger = logging.getLogger(__name__)

CLASSIFY_PROMPT = (
    "Analyze this content and return a JSON object with these fields: "
    "category (one of: poster, exam, notes, assignment, event), "
    "keywords (array of strings), subject (string or null), "
    "date (string or null)"
)

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)


class ClassificationError(Exception):
    """The classifier failed or returned an unusable reply."""


@dataclass
class Classification:
    category: str
    keywords: list[str] = field(default_factory=list)
    subject: str | None = None
    date: str | None = None


def should_classify(mimetype: str) -> bool:
    """Only images and PDFs go to the classifier."""
    return "image" in mimetype or "pdf" in mimetype


def fallback_category(mimetype: str) -> str:
    if "image" in mimetype:
        return "poster"
    if "pdf" in mimetype:
        return "exam"
    if "video" in mimetype:
        return "video"
    return "others"


def fallback_classification(mimetype: str) -> Classification:
    return Classification(category=fallback_category(mimetype))


def parse_classification(text: str) -> Classification:
    """Parse the model reply, tolerating markdown code fences.

    Raises ClassificationError when the reply is not a JSON object.
    """
    cleaned = _FENCE_RE.sub("", text or "").strip()
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise ClassificationError(f"Reply is not JSON: {e}") from e
    if not isinstance(data, dict):
        raise ClassificationError("Reply is not a JSON object")

    raw_keywords = data.get("keywords") or []
    if isinstance(raw_keywords, str):
        raw_keywords = [raw_keywords]
    keywords = (
        [str(k).strip() for k in raw_keywords if str(k).strip()]
        if isinstance(raw_keywords, list)
        else []
    )
    subject = str(data.get("subject") or "").strip()
    found_date = str(data.get("date") or "").strip()
    return Classification(
        category=str(data.get("category") or "").strip().lower(),
        keywords=keywords,
        subject=subject or None,
        date=found_date or None,
    )


def parse_date(text: str | None) -> date | None:
    """Parse ``dd/mm/yy``, ``dd/mm/yyyy`` or ISO dates. None if unparseable.

    Two-digit years are taken as 20xx.
    """
    if not text:
        return None
    text = text.strip()
    parts = re.split(r"[/.-]", text)
    if len(parts) == 3 and len(parts[0]) <= 2:
        day, month, year = parts
        if len(year) == 2:
            year = "20" + year
        try:
            return date(int(year), int(month), int(day))
        except ValueError:
            return None
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        return None


class GeminiClassifier:
    """Classify archived content with a Gemini model."""

    def __init__(self, api_key: str, model_name: str = "gemini-1.5-flash") -> None:
        if not api_key:
            raise RuntimeError("GEMINI_API_KEY is not set")
        genai.configure(api_key=api_key)
        self.model = genai.GenerativeModel(model_name)
        self.model_name = model_name

    async def classify(self, data: bytes, mimetype: str) -> Classification:
        """Return the model's classification. Raises ClassificationError."""
        parts = [CLASSIFY_PROMPT, {"mime_type": mimetype, "data": data}]
        try:
            resp = await self.model.generate_content_async(parts)
            text = resp.text
        except Exception as e:
            raise ClassificationError(f"Gemini request failed: {e}") from e
        result = parse_classification(text)
        logger.debug(
            "Classified %s (%d bytes) as %s", mimetype, len(data), result.category
        )
        return result
