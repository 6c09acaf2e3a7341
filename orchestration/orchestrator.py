"""
Orchestrator — Wires chat, timers, the blender, and the game client into
the submit-and-vote cycle.

    chat event → phase/permission filter → ledger
    timer expiry or !tally → vote→combine → tally or blend → submit → idle
    idle → (auto-repeat countdown) → next vote

Everything runs on one asyncio loop. Timer expiry and !tally close voting
synchronously, then spawn the combine work as a task. No ledger or timer
state is touched while a blend is waiting on the model, and chat that
arrives meanwhile is dropped by the phase gate.
"""

import json
import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Set

import aiohttp

from agents.action_blender import ActionBlender, BlendError, tally
from agents.tools.aid_errors import AIDError
from models.chat import ChatEvent, ChatSource
from models.config import SessionConfig
from models.merge import GameContext, MergeRequest
from models.session import Phase, SessionSnapshot
from tools.chat_parser import ChatIntent, parse_chat_text
from tools.session_state import SessionStateMachine

logger = logging.getLogger("Orchestrator")

SendChat = Callable[[str], Awaitable[None]]
Observer = Callable[[SessionSnapshot], None]
ContextFeed = Callable[[Callable[[GameContext], None]], Awaitable[None]]

CONTEXT_RETRY_BASE_SECONDS = 2.0
CONTEXT_RETRY_MAX_SECONDS = 60.0


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'' if count == 1 else 's'}"


class Orchestrator:
    """Runs the session on behalf of chat, the operator, and the timers.

    Collaborators:
        blender:    ActionBlender; blend mode is used when it is set and the
                    config carries an LLM key, otherwise votes are tallied.
        game:       anything with async submit_action(text, party_name) and
                    fetch_most_recent_action(); usually AIDungeonClient.
        send_chat:  async callable that posts one line to chat.
    """

    def __init__(
        self,
        session: SessionStateMachine,
        config: SessionConfig,
        blender: Optional[ActionBlender] = None,
        game=None,
        send_chat: Optional[SendChat] = None,
    ):
        self.session = session
        self.config = config
        self.blender = blender
        self.game = game
        self.send_chat = send_chat
        self._observers: List[Observer] = []
        self._tasks: Set[asyncio.Task] = set()
        self.context_retry_base = CONTEXT_RETRY_BASE_SECONDS
        self.context_retry_max = CONTEXT_RETRY_MAX_SECONDS

    @property
    def phase(self) -> Phase:
        return self.session.phase

    @property
    def blend_enabled(self) -> bool:
        return self.blender is not None and self.config.has_llm

    # ------------------------------------------------------------------
    # Observers & outbound chat
    # ------------------------------------------------------------------

    def add_observer(self, observer: Observer) -> None:
        self._observers.append(observer)

    def snapshot(self) -> SessionSnapshot:
        return self.session.snapshot(self.config)

    def broadcast(self) -> None:
        if not self._observers:
            return
        snapshot = self.snapshot()
        for observer in list(self._observers):
            try:
                observer(snapshot)
            except Exception as e:
                logger.error(f"Observer error: {e}", exc_info=True)

    async def announce(self, text: str) -> None:
        if self.send_chat is None:
            logger.info(f"(no chat) {text}")
            return
        try:
            await self.send_chat(text)
        except Exception as e:
            logger.error(f"Chat send failed: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Task bookkeeping
    # ------------------------------------------------------------------

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for every spawned task (including ones they spawn) to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _on_vote_timer(self) -> None:
        if self.close_vote():
            self._spawn(self._finish_vote())

    def _on_auto_repeat(self) -> None:
        self._spawn(self.start_vote())

    # ------------------------------------------------------------------
    # Inbound chat
    # ------------------------------------------------------------------

    async def handle_chat_event(self, event: ChatEvent) -> None:
        if event.source == ChatSource.YOUTUBE and not self.config.youtube_enabled:
            return

        parsed = parse_chat_text(event.text)
        if parsed is None:
            return

        if parsed.intent == ChatIntent.START_VOTE:
            if event.can_use_commands:
                self._spawn(self.start_vote())
            return
        if parsed.intent == ChatIntent.END_VOTE:
            if event.can_use_commands and self.close_vote():
                self._spawn(self._finish_vote())
            return

        if parsed.intent == ChatIntent.VOTE:
            accepted = self.session.vote(event.user, parsed.value, self.config.debug_mode)
        else:
            accepted = self.session.submit(event.user, parsed.value, self.config.debug_mode)
        if accepted:
            self.broadcast()

    # ------------------------------------------------------------------
    # Phase handlers
    # ------------------------------------------------------------------

    async def start_vote(self) -> bool:
        """Open voting and start the countdown. False if not idle."""
        if not self.session.to_vote():
            return False

        timers = self.session.timers
        timers.cancel_auto_repeat()
        self.session.is_paused = False

        duration = timers.start_vote_timer(self.config.effective_vote_duration, self._on_vote_timer)
        logger.info(f"Vote started for {duration:g} seconds")
        await self.announce(
            f"📝 Voting started! Submit with > action, vote with +1 @name ({duration:g}s)"
        )
        self.broadcast()
        return True

    def close_vote(self) -> bool:
        """Move vote -> combine right away. False if not voting.

        Timer expiry and !tally call this before yielding to the loop, so no
        chat line handled afterwards can reach the ledger.
        """
        return self.session.to_combine()

    async def end_vote(self) -> bool:
        """Close voting and run the combine step. False if not voting."""
        if not self.close_vote():
            return False
        await self._finish_vote()
        return True

    async def _finish_vote(self) -> None:
        count = len(self.session.ledger)
        logger.info(f"Vote ended with {count} submissions")
        action = "Blending..." if self.blend_enabled else "Tallying votes..."
        await self.announce(f"⏱️ Voting closed! {_plural(count, 'submission')} received. {action}")
        self.broadcast()
        await self.combine_and_submit()

    async def combine_and_submit(self) -> None:
        """Produce the action and hand it to the game; always ends in idle."""
        try:
            await self._combine()
        except (BlendError, AIDError) as e:
            logger.error(f"Combine failed: {e}")
            await self.announce(f"❌ Error: {e}")
        except Exception as e:
            logger.error(f"Unexpected combine error: {e}", exc_info=True)
            await self.announce(f"❌ Error: {e}")
        finally:
            self.session.to_idle()
            self.schedule_auto_repeat()
            self.broadcast()

    async def _combine(self) -> None:
        submissions = self.session.ledger.submissions
        if not submissions:
            logger.info("No submissions to combine")
            await self.announce("❌ No submissions received.")
            return

        if not self.blend_enabled:
            winner = tally(submissions)
            votes = winner.vote_count
            logger.info(f"Tally winner: {winner.text} with {votes} votes")
            await self.announce(f'🏆 Winner: "{winner.text}" ({_plural(votes, "vote")})')
            await self._submit(winner.text)
            return

        recent_action = None
        if self.game is not None:
            recent_action = await self.game.fetch_most_recent_action()

        request = MergeRequest(
            submissions=submissions,
            story_context=self.session.context,
            last_known_action=recent_action,
            party_name=self.config.party_member_name,
        )
        result = await self.blender.blend(request, self.config)
        if result.trace is not None:
            self.session.last_merge_trace = result.trace
            self.broadcast()

        logger.info(f"Combined result: {result.action_text}")
        label = "Action" if len(submissions) == 1 else "Combined"
        await self.announce(f'✨ {label}: "{self.config.resolved_party_name} {result.action_text}"')
        await self._submit(result.action_text)

    async def _submit(self, text: str) -> None:
        if self.game is None:
            logger.warning("No game client configured; action not submitted")
            return
        await self.game.submit_action(text, self.config.resolved_party_name)
        await self.announce("✅ Action submitted to AI Dungeon!")

    # ------------------------------------------------------------------
    # Auto-repeat & pause
    # ------------------------------------------------------------------

    def schedule_auto_repeat(self) -> bool:
        """Arm the countdown to the next vote, if enabled and not paused."""
        if self.session.is_paused:
            logger.info("Auto-repeat skipped (paused)")
            return False
        cooldown = self.config.effective_auto_repeat_cooldown
        if cooldown is None:
            return False
        self.session.timers.start_auto_repeat(cooldown, self._on_auto_repeat)
        self.broadcast()
        return True

    def toggle_pause(self) -> bool:
        """Freeze or thaw the running countdown. Returns the new paused flag."""
        session = self.session
        session.is_paused = not session.is_paused
        logger.info(f"Paused: {session.is_paused}")
        if session.is_paused:
            session.timers.pause()
        else:
            fresh = self.schedule_auto_repeat if session.phase == Phase.IDLE else None
            session.timers.resume(restart_auto_repeat=fresh)
        self.broadcast()
        return session.is_paused

    # ------------------------------------------------------------------
    # Collaborator updates
    # ------------------------------------------------------------------

    def update_context(self, context: GameContext) -> None:
        self.session.context = context
        logger.info(f"Context updated: {len(context.sections)} sections")
        self.broadcast()

    async def run_context_feed(self, subscribe: ContextFeed) -> None:
        """Keep the game-context subscription alive until cancelled.

        `subscribe` is usually AIDungeonClient.subscribe_context. A failed
        connection or a bad frame is reported in chat once per outage and
        retried with exponential backoff; a clean close reconnects after the
        base delay.
        """
        failures = 0
        while True:
            try:
                await subscribe(self.update_context)
                failures = 0
                logger.info("Context feed closed, reconnecting")
            except (AIDError, aiohttp.ClientError, asyncio.TimeoutError, json.JSONDecodeError) as e:
                failures += 1
                logger.error(f"Context feed failed (attempt {failures}): {e}")
                if failures == 1:
                    await self.announce(f"❌ Error: {e}")
            delay = min(self.context_retry_base * (2 ** max(failures - 1, 0)), self.context_retry_max)
            await asyncio.sleep(delay)

    def update_config(self, **changes) -> SessionConfig:
        """Merge a partial settings update. Pushes a new player name to the game."""
        old_player_name = self.config.player_character_name
        self.config = self.config.updated(**changes)
        logger.info(f"Config updated: {sorted(changes)}")

        renamed = self.config.player_character_name != old_player_name
        if renamed and self.game is not None and hasattr(self.game, "update_player_name"):
            self._spawn(self.game.update_player_name(self.config.resolved_player_name))
        self.broadcast()
        return self.config

    async def shutdown(self) -> None:
        self.session.timers.cancel_all()
        self.session.to_idle()
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)
