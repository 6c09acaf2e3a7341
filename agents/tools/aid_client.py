"""
AI Dungeon Client — GraphQL over HTTP + graphql-transport-ws (Async)

Talks to the AI Dungeon API on behalf of the streamer's account.

Requires:
  - AID_FIREBASE_TOKEN: Firebase ID token of the logged-in account
  - AID_SHORT_ID: shortId of the adventure being played
  - AID_ORIGIN: play / beta / alpha host (default: play.aidungeon.com)

All public methods are async. Callers must `await` every call.
"""

import os
import json
import random
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Union
from uuid import uuid4

import aiohttp

from agents.tools.aid_errors import (
    AIDError,
    AIDAuthError,
    AIDConfigError,
    AIDConnectionError,
    AIDNotFoundError,
    AIDRateLimitError,
    AIDRejectedError,
    AIDTimeoutError,
)
from models.merge import GameContext

logger = logging.getLogger("AIDClient")

AID_API_HOSTS = {
    "play.aidungeon.com": "api.aidungeon.com",
    "beta.aidungeon.com": "api-beta.aidungeon.com",
    "alpha.aidungeon.com": "api-alpha.aidungeon.com",
}
DEFAULT_API_HOST = "api.aidungeon.com"
WS_PROTOCOL = "graphql-transport-ws"

# Action types that carry story text worth showing the blender
STORY_ACTION_TYPES = ("do", "say", "story", "start", "continue")
RECENT_ACTION_WINDOW = 5

ContextCallback = Callable[[GameContext], Union[None, Awaitable[None]]]

_ADVENTURE_ID_QUERY = """
query GetAdventure($shortId: String) {
  adventure(shortId: $shortId) {
    id
    thirdPerson
  }
}
"""

_ACTION_COUNT_QUERY = """
query GetActionCount($shortId: String) {
  adventure(shortId: $shortId) {
    actionCount
  }
}
"""

_RECENT_ACTIONS_QUERY = """
query GetRecentActions($shortId: String, $offset: Int) {
  adventure(shortId: $shortId) {
    actionWindow(limit: 5, offset: $offset) {
      type
      text
    }
  }
}
"""

_THIRD_PERSON_MUTATION = """
mutation UpdateAdventurePlot($input: AdventurePlotInput) {
  updateAdventurePlot(input: $input) {
    adventure {
      id
      thirdPerson
    }
    success
  }
}
"""

_ACTION_MUTATION = """
mutation ActionRequest($input: ActionRequestInput!) {
  actionRequest(input: $input) {
    success
    message
    errorContext
  }
}
"""

_PLAYERS_QUERY = """
query GetCurrentUserAndPlayers($shortId: String) {
  user {
    id
  }
  adventure(shortId: $shortId) {
    id
    allPlayers {
      id
      userId
      characterName
    }
  }
}
"""

_UPDATE_PLAYER_MUTATION = """
mutation UpdatePlayer($input: PlayerInput!) {
  updatePlayer(input: $input) {
    success
    message
    player {
      id
      characterName
    }
  }
}
"""

_CONTEXT_SUBSCRIPTION = """
subscription ContextUpdate($shortId: String!) {
  contextUpdate(shortId: $shortId) {
    adventureId
    actionId
    key
    time
    contextSections
  }
}
"""


class AIDungeonClient:
    """Async client for the AI Dungeon GraphQL API.

    Usage:
        client = AIDungeonClient()
        await client.connect()                      # creates aiohttp session
        await client.submit_action("opens the door", "Elara")
        await client.close()
    """

    def __init__(
        self,
        firebase_token: Optional[str] = None,
        short_id: Optional[str] = None,
        origin: Optional[str] = None,
    ):
        self.firebase_token = firebase_token or os.getenv("AID_FIREBASE_TOKEN", "")
        self.short_id = short_id or os.getenv("AID_SHORT_ID", "")
        self.origin = origin or os.getenv("AID_ORIGIN", "play.aidungeon.com")
        self.adventure_id: Optional[str] = None
        self.player_id: Optional[str] = None
        self._session: Optional[aiohttp.ClientSession] = None

        self.max_retries = 3
        self.base_delay = 1.0  # seconds; doubles each retry (1, 2, 4)

        if not self.firebase_token or not self.short_id:
            logger.warning("AID_FIREBASE_TOKEN or AID_SHORT_ID not set; game submission disabled.")

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------

    @property
    def api_host(self) -> str:
        return AID_API_HOSTS.get(self.origin, DEFAULT_API_HOST)

    @property
    def graphql_url(self) -> str:
        return f"https://{self.api_host}/graphql"

    @property
    def ws_url(self) -> str:
        return f"wss://{self.api_host}/graphql"

    @property
    def is_configured(self) -> bool:
        return bool(self.firebase_token) and bool(self.short_id)

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"firebase {self.firebase_token}",
        }

    def _require_config(self) -> None:
        if not self.is_configured:
            raise AIDConfigError("Missing Firebase token or adventure shortId")

    # ------------------------------------------------------------------
    # Internal HTTP layer
    # ------------------------------------------------------------------

    async def _raise_for_status(self, resp: aiohttp.ClientResponse) -> None:
        """Map HTTP status codes to specific AID error types."""
        if resp.status < 400:
            return
        body = await resp.text()
        if resp.status in (401, 403):
            raise AIDAuthError(f"Auth failed ({resp.status}): {body}")
        elif resp.status == 404:
            raise AIDNotFoundError(f"Not found ({resp.status}): {body}")
        elif resp.status == 429:
            raise AIDRateLimitError(f"Rate limited ({resp.status}): {body}")
        elif resp.status >= 500:
            raise AIDConnectionError(f"Server error ({resp.status}): {body}")
        else:
            raise AIDError(f"HTTP {resp.status}: {body}")

    async def _raw_graphql(
        self,
        operation_name: str,
        query: str,
        variables: Dict[str, Any],
        timeout: int = 15,
    ) -> Dict[str, Any]:
        """Execute one GraphQL request (no retry). Returns the `data` object."""
        if self._session is None or self._session.closed:
            raise AIDConnectionError("No active aiohttp session — call connect() first.")

        payload = {"operationName": operation_name, "query": query, "variables": variables}
        try:
            async with self._session.post(
                self.graphql_url,
                headers=self._headers(),
                json=payload,
                timeout=aiohttp.ClientTimeout(total=timeout),
            ) as resp:
                await self._raise_for_status(resp)
                result = await resp.json()
        except aiohttp.ClientError as e:
            raise AIDConnectionError(f"Network error: {e}") from e
        except asyncio.TimeoutError as e:
            raise AIDTimeoutError(f"{operation_name} timed out after {timeout}s") from e

        if result.get("errors"):
            message = result["errors"][0].get("message") or f"GraphQL error in {operation_name}"
            raise AIDRejectedError(message)
        return result.get("data") or {}

    async def _graphql(
        self,
        operation_name: str,
        query: str,
        variables: Dict[str, Any],
        timeout: int = 15,
    ) -> Dict[str, Any]:
        """GraphQL request with retry on connection errors, timeouts and 429s."""
        self._require_config()
        if self._session is None or self._session.closed:
            await self.connect()

        last_error: Optional[Exception] = None
        for attempt in range(self.max_retries):
            try:
                return await self._raw_graphql(operation_name, query, variables, timeout)
            except (AIDConnectionError, AIDTimeoutError, AIDRateLimitError) as e:
                last_error = e
                if attempt < self.max_retries - 1:
                    delay = self.base_delay * (2 ** attempt) + random.uniform(0, 0.5)
                    logger.warning(
                        f"{operation_name} failed (attempt {attempt + 1}/{self.max_retries}), "
                        f"retrying in {delay:.1f}s: {e}"
                    )
                    await asyncio.sleep(delay)
            # Auth / not-found / rejected errors propagate immediately

        raise last_error  # type: ignore[misc]

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        logger.info(f"AID client ready ({self.graphql_url}, adventure {self.short_id or '?'})")

    async def close(self) -> None:
        """Shut down the aiohttp session cleanly."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None
        logger.info("AID client closed.")

    # ------------------------------------------------------------------
    # Adventure queries
    # ------------------------------------------------------------------

    async def fetch_adventure(self) -> Dict[str, Any]:
        data = await self._graphql("GetAdventure", _ADVENTURE_ID_QUERY, {"shortId": self.short_id})
        adventure = data.get("adventure")
        if not adventure or not adventure.get("id"):
            raise AIDNotFoundError("Adventure not found")
        return adventure

    async def fetch_adventure_id(self) -> str:
        adventure = await self.fetch_adventure()
        self.adventure_id = str(adventure["id"])
        logger.info(f"Fetched adventureId: {self.adventure_id}")
        return self.adventure_id

    async def fetch_most_recent_action(self) -> Optional[str]:
        """Text of the latest story-bearing action, or None.

        Best effort: any failure is logged and treated as "no recent action".
        """
        if not self.is_configured:
            logger.info("Cannot fetch recent action - missing token or shortId")
            return None
        try:
            data = await self._graphql("GetActionCount", _ACTION_COUNT_QUERY, {"shortId": self.short_id})
            action_count = (data.get("adventure") or {}).get("actionCount") or 0
            if action_count == 0:
                return None

            offset = max(0, action_count - RECENT_ACTION_WINDOW)
            data = await self._graphql(
                "GetRecentActions", _RECENT_ACTIONS_QUERY,
                {"shortId": self.short_id, "offset": offset},
            )
        except AIDError as e:
            logger.warning(f"Failed to fetch recent action: {e}")
            return None

        actions = (data.get("adventure") or {}).get("actionWindow") or []
        for action in reversed(actions):
            if action.get("type") in STORY_ACTION_TYPES and isinstance(action.get("text"), str):
                text = action["text"].strip()
                logger.info(f"Fetched recent action: {action['type']} - {text[:50]}...")
                return text
        return None

    async def ensure_third_person(self, adventure_id: str) -> bool:
        """Switch the adventure to third person. Returns True if it changed."""
        adventure = await self.fetch_adventure()
        if adventure.get("thirdPerson") is True:
            return False

        logger.info(f"Enabling third person on adventure {adventure_id}...")
        data = await self._graphql(
            "UpdateAdventurePlot", _THIRD_PERSON_MUTATION,
            {"input": {"shortId": self.short_id, "thirdPerson": True}},
        )
        if not (data.get("updateAdventurePlot") or {}).get("success"):
            raise AIDRejectedError("Failed to enable third-person mode")
        return True

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def submit_action(self, text: str, party_name: str) -> None:
        """Submit a `do` action spoken by `party_name`. Raises AIDError on failure.

        The idempotency key is fixed per call, so transport retries cannot
        post the action twice.
        """
        adventure_id = self.adventure_id or await self.fetch_adventure_id()
        await self.ensure_third_person(adventure_id)

        key = str(uuid4())
        logger.info(f"Submitting action as {party_name}: {text[:60]} (key={key[:8]})")
        data = await self._graphql(
            "ActionRequest", _ACTION_MUTATION,
            {
                "input": {
                    "adventureId": str(adventure_id),
                    "type": "do",
                    "text": text,
                    "characterName": party_name,
                    "key": key,
                }
            },
        )
        outcome = data.get("actionRequest") or {}
        if not outcome.get("success"):
            raise AIDRejectedError(outcome.get("message") or "Action rejected by AI Dungeon")
        logger.info("Action submitted successfully")

    # ------------------------------------------------------------------
    # Player identity
    # ------------------------------------------------------------------

    async def fetch_player_id(self) -> Optional[str]:
        """Find this account's player record in the adventure."""
        try:
            data = await self._graphql("GetCurrentUserAndPlayers", _PLAYERS_QUERY, {"shortId": self.short_id})
        except AIDError as e:
            logger.warning(f"Failed to fetch players: {e}")
            return None

        user_id = (data.get("user") or {}).get("id")
        players = (data.get("adventure") or {}).get("allPlayers") or []
        for player in players:
            if user_id and player.get("userId") == user_id:
                self.player_id = player.get("id")
                logger.info(f"Found playerId {self.player_id} ({player.get('characterName')})")
                return self.player_id
        logger.warning(f"No player matches user {user_id}")
        return None

    async def update_player_name(self, character_name: str) -> bool:
        """Rename the streamer's character. Best effort; returns success."""
        if not self.player_id and not await self.fetch_player_id():
            return False
        try:
            data = await self._graphql(
                "UpdatePlayer", _UPDATE_PLAYER_MUTATION,
                {"input": {"id": self.player_id, "characterName": character_name}},
            )
        except AIDError as e:
            logger.warning(f"Player name update failed: {e}")
            return False
        if not (data.get("updatePlayer") or {}).get("success"):
            logger.warning(f"Player name update refused: {(data.get('updatePlayer') or {}).get('message')}")
            return False
        logger.info(f"Player name updated to {character_name}")
        return True

    # ------------------------------------------------------------------
    # Context subscription
    # ------------------------------------------------------------------

    async def subscribe_context(self, on_update: ContextCallback) -> None:
        """Stream contextUpdate events into `on_update` until the socket closes."""
        self._require_config()
        if self._session is None or self._session.closed:
            await self.connect()

        async with self._session.ws_connect(self.ws_url, protocols=(WS_PROTOCOL,)) as ws:
            await ws.send_json({
                "type": "connection_init",
                "payload": {"Authorization": f"firebase {self.firebase_token}"},
            })
            async for msg in ws:
                if msg.type != aiohttp.WSMsgType.TEXT:
                    if msg.type in (aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
                        break
                    continue
                await self._handle_ws_message(ws, json.loads(msg.data), on_update)
        logger.info("AID context socket closed")

    async def _handle_ws_message(self, ws, message: Dict[str, Any], on_update: ContextCallback) -> None:
        msg_type = message.get("type")
        if msg_type == "connection_ack":
            await ws.send_json({
                "id": str(uuid4()),
                "type": "subscribe",
                "payload": {"query": _CONTEXT_SUBSCRIPTION, "variables": {"shortId": self.short_id}},
            })
            logger.info(f"Subscribed to contextUpdate for {self.short_id}")
        elif msg_type == "ping":
            await ws.send_json({"type": "pong"})
        elif msg_type == "next":
            payload = ((message.get("payload") or {}).get("data") or {}).get("contextUpdate")
            if payload:
                context = GameContext.from_payload(payload)
                if context.adventure_id:
                    self.adventure_id = str(context.adventure_id)
                result = on_update(context)
                if asyncio.iscoroutine(result):
                    await result
        elif msg_type == "error":
            logger.error(f"GraphQL subscription error: {message.get('payload')}")
