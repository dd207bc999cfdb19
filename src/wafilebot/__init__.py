"""wafilebot - WhatsApp bot that archives files and links for verified users.

Users register out of band, verify their WhatsApp number with ``#verify``,
then send media or links to the bot, which classifies, stores, and later
retrieves them via chat commands.

Package entry point. Exports the version string only; all functional
modules are imported lazily by main.py to keep startup fast.
"""

__version__ = "0.1.0"
