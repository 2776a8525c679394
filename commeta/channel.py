"""
Outbound messaging channels.

The router only knows how to send text to an identity. Concrete channels
decide where that text goes: the Telegram adapter sends it to a chat, the HTTP
channel collects it into the response body.
"""

from collections import defaultdict
from typing import Dict, List


class Channel:
    async def send_text(self, identity: str, text: str) -> None:
        raise NotImplementedError


class CollectingChannel(Channel):
    """Keeps every outbound message in memory, per identity."""

    def __init__(self):
        self.sent: Dict[str, List[str]] = defaultdict(list)

    async def send_text(self, identity: str, text: str) -> None:
        self.sent[identity].append(text)

    def replies(self, identity: str) -> List[str]:
        return list(self.sent.get(identity, []))
