"""Reply text building for archive listings and uploads.

Every listing shortens stored URLs one at a time through the shortener
(which never raises) and lists the keywords of each record.

Key functions:
  - build_upload_reply: confirmation after a media upload
  - build_window_listing: #files <window>, grouped by category
  - build_category_listing: #<category>s [N]
  - build_search_listing: #search <keyword>
  - build_categories_summary: #categories
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..services import Classification, MediaRecord, UrlShortener


def _keywords_line(record: MediaRecord) -> str:
    if not record.keywords:
        return ""
    return f"   Keywords: {', '.join(record.keywords)}\n"


def build_upload_reply(category: str, analysis: Classification, short_url: str) -> str:
    lines = [f"File analyzed and uploaded as {category}!"]
    if analysis.keywords:
        lines.append(f"Keywords: {', '.join(analysis.keywords)}")
    if analysis.subject:
        lines.append(f"Subject: {analysis.subject}")
    if analysis.date:
        lines.append(f"Date: {analysis.date}")
    lines.append(f"Access it here: {short_url}")
    return "\n".join(lines)


async def build_window_listing(
    window: str, records: list[MediaRecord], shortener: UrlShortener
) -> str:
    """Records arrive newest first; blocks keep that order within a category."""
    if not records:
        return f"No files found for {window}"

    grouped: dict[str, list[MediaRecord]] = {}
    for record in records:
        grouped.setdefault(record.category, []).append(record)

    out = f"Files from {window}:\n\n"
    for category, items in grouped.items():
        out += f"{category.upper()}:\n"
        for i, record in enumerate(items, start=1):
            short = await shortener.shorten(record.media_url)
            out += f"{i}. {short}\n" + _keywords_line(record)
        out += "\n"
    return out.rstrip()


async def build_category_listing(
    category: str, limit: int, records: list[MediaRecord], shortener: UrlShortener
) -> str:
    if not records:
        return f"No {category} files found"
    out = f"Last {limit} {category} files:\n\n"
    for i, record in enumerate(records, start=1):
        short = await shortener.shorten(record.media_url)
        out += f"{i}. {short}\n" + _keywords_line(record)
    return out.rstrip()


async def build_search_listing(
    keyword: str, records: list[MediaRecord], shortener: UrlShortener
) -> str:
    if not records:
        return f'No files found matching "{keyword}"'
    out = f'Search results for "{keyword}":\n\n'
    for i, record in enumerate(records, start=1):
        short = await shortener.shorten(record.media_url)
        out += f"{i}. [{record.category}] {short}\n" + _keywords_line(record) + "\n"
    return out.rstrip()


def build_categories_summary(counts: dict[str, int]) -> str:
    if not counts:
        return "No files found"
    out = "📊 Available Categories:\n\n"
    for category, count in counts.items():
        out += f"{category}: {count} files\n"
    return out.rstrip()
