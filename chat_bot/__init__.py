"""
Telegram Channel

Telegram front end for the Commeta engine. Text, commands and voice notes are
forwarded to the router; replies are sent back to the originating chat.

Note: Named chat_bot to avoid conflict with the python-telegram-bot package.
"""

__version__ = "0.4.0"
