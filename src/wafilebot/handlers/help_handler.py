"""#help — fixed command reference."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .message_sender import safe_reply

if TYPE_CHECKING:
    from ..app_context import AppContext
    from ..transport import InboundMessage

HELP_TEXT = """Available Commands:

🔐 Verification:
#verify YOUR_CODE - Link this number to your account

📅 Time-based Retrieval:
#files today - Show files uploaded today
#files yesterday - Show yesterday's files
#files week - Show this week's files

📂 Category Retrieval:
#posters 5 - Show last 5 posters
#exams 3 - Show last 3 exams
#links 10 - Show last 10 links
#videos 5 - Show last 5 videos
#categories - Show how many files you have per category

🔍 Search:
#search keyword - Search files by keyword

💡 Note:
- Send any image, PDF or video to archive it
- Send a message with links to save them
- Numbers after categories must be greater than 0
- Use #help anytime to see this menu"""

UNKNOWN_COMMAND_TEXT = "Unknown command. Send #help to see available commands."


async def handle_help(app: AppContext, message: InboundMessage) -> None:
    await safe_reply(app, message, HELP_TEXT)
