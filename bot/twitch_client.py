"""
Twitch Chat Client — IRC over WebSocket (aiohttp).

Joins one channel, turns PRIVMSG lines into ChatEvents, and sends
announcements back. Broadcaster and moderator badges mark a user as
privileged.

Message parsing is a pure function (parse_twitch_message) so it can be
tested without a socket.
"""

import re
import asyncio
import logging
from typing import Awaitable, Callable, Optional, Union

import aiohttp

from models.chat import ChatEvent, ChatSource
from tools.rate_limiter import chat_limiter

logger = logging.getLogger("TwitchChat")

TWITCH_IRC_URL = "wss://irc-ws.chat.twitch.tv:443"
TWITCH_BOT_NICK = "audiencemultiplayer"

_BADGES_PATTERN = re.compile(r"badges=([^;]*)")
_PRIVMSG_PATTERN = re.compile(r":(\w+)!.*PRIVMSG #\w+ :(.+)")

ChatHandler = Callable[[ChatEvent], Union[None, Awaitable[None]]]


class TwitchError(Exception):
    """Twitch connection could not be established."""
    pass


def parse_twitch_message(line: str) -> Optional[ChatEvent]:
    """Parse a PRIVMSG line, tagged or untagged. Returns None for anything else.

    Tagged:   @badge-info=;badges=moderator/1;... :user!user@user.tmi.twitch.tv PRIVMSG #chan :text
    Untagged: :user!user@user.tmi.twitch.tv PRIVMSG #chan :text
    """
    is_privileged = False
    if line.startswith("@"):
        badges_match = _BADGES_PATTERN.search(line)
        if badges_match:
            badges = badges_match.group(1).lower()
            is_privileged = "broadcaster" in badges or "moderator" in badges

    match = _PRIVMSG_PATTERN.search(line)
    if not match:
        return None
    return ChatEvent(
        source=ChatSource.TWITCH,
        user=match.group(1),
        text=match.group(2).strip(),
        is_privileged=is_privileged,
    )


class TwitchChatClient:
    """Reads and writes one Twitch channel.

    Usage:
        twitch = TwitchChatClient("mychannel", "oauth:abc", on_event=orchestrator.handle_chat_event)
        asyncio.create_task(twitch.run())
        await twitch.send_message("hello chat")
    """

    def __init__(
        self,
        channel: str,
        oauth_token: str,
        on_event: Optional[ChatHandler] = None,
        limiter=chat_limiter,
    ):
        self.channel = channel.lower()
        self.oauth_token = oauth_token
        self.on_event = on_event
        self.limiter = limiter
        self._session: Optional[aiohttp.ClientSession] = None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None

    @property
    def is_connected(self) -> bool:
        return self._ws is not None and not self._ws.closed

    async def run(self) -> None:
        """Connect, join, and dispatch chat until the socket closes."""
        if not self.channel or not self.oauth_token:
            raise TwitchError("Cannot connect - missing Twitch channel or OAuth token")

        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()

        logger.info(f"Connecting to #{self.channel}...")
        async with self._session.ws_connect(TWITCH_IRC_URL) as ws:
            self._ws = ws
            # tags capability gives us badge info for the moderator check
            await ws.send_str("CAP REQ :twitch.tv/tags")
            await ws.send_str(f"PASS {self.oauth_token}")
            await ws.send_str(f"NICK {TWITCH_BOT_NICK}")
            await ws.send_str(f"JOIN #{self.channel}")
            logger.info(f"Joined #{self.channel}")

            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    for line in msg.data.split("\r\n"):
                        await self._handle_line(line)
                elif msg.type in (aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
                    break
        self._ws = None
        logger.info("Disconnected")

    async def _handle_line(self, line: str) -> None:
        if line.startswith("PING"):
            await self._ws.send_str("PONG :tmi.twitch.tv")
            return
        if "PRIVMSG" not in line:
            return
        event = parse_twitch_message(line)
        if event is None or self.on_event is None:
            return
        result = self.on_event(event)
        if asyncio.iscoroutine(result):
            await result

    async def send_message(self, text: str) -> None:
        """Post to the channel. Dropped with a warning when not connected."""
        if not self.is_connected:
            logger.warning(f"Not connected, dropping chat message: {text[:60]}")
            return
        await self.limiter.acquire()
        await self._ws.send_str(f"PRIVMSG #{self.channel} :{text}")

    async def close(self) -> None:
        if self._ws is not None and not self._ws.closed:
            await self._ws.close()
        self._ws = None
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None
