"""
Audience Multiplayer — Entry Point

Loads .env, configures logging, builds the collaborators, and runs the
Twitch reader and the AI Dungeon context subscription until interrupted.

To run: python -m orchestration.main
"""

import os
import asyncio
import logging

from dotenv import load_dotenv
from google import genai

from agents.action_blender import ActionBlender
from agents.tools.aid_client import AIDungeonClient
from bot.twitch_client import TwitchChatClient
from models.config import SessionConfig
from orchestration.orchestrator import Orchestrator
from tools.session_state import SessionStateMachine

logger = logging.getLogger("AudienceMultiplayer")


def _configure_logging() -> None:
    if not os.path.exists("logs"):
        os.makedirs("logs")

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.FileHandler("logs/audience_multiplayer.log", encoding="utf-8"),
            logging.StreamHandler(),
        ],
    )


def build_orchestrator(config: SessionConfig):
    """Construct the session and every collaborator from `config`."""
    if config.has_llm:
        gemini_client = genai.Client(api_key=config.llm_api_key)
    else:
        logger.info("GEMINI_API_KEY not set, running in tally mode.")
        gemini_client = None

    game = AIDungeonClient(config.aid_firebase_token, config.aid_short_id, config.aid_origin)
    twitch = TwitchChatClient(config.twitch_channel, config.twitch_oauth_token)
    orchestrator = Orchestrator(
        SessionStateMachine.create_initial(),
        config,
        blender=ActionBlender(gemini_client),
        game=game,
        send_chat=twitch.send_message,
    )
    twitch.on_event = orchestrator.handle_chat_event
    return orchestrator, game, twitch


async def main() -> None:
    config = SessionConfig.from_env()
    orchestrator, game, twitch = build_orchestrator(config)

    background = []
    if game.is_configured:
        await game.connect()
        await game.update_player_name(config.resolved_player_name)
        background.append(asyncio.create_task(orchestrator.run_context_feed(game.subscribe_context)))
    if config.twitch_channel and config.twitch_oauth_token:
        background.append(asyncio.create_task(twitch.run()))

    if not background:
        logger.error("Nothing to run: configure TWITCH_CHANNEL/TWITCH_OAUTH_TOKEN and/or AID credentials.")
        return

    orchestrator.schedule_auto_repeat()
    logger.info("Ready")
    try:
        # the context feed reconnects on its own; stop when a reader ends
        done, _ = await asyncio.wait(background, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                logger.error(f"Reader stopped: {task.exception()}")
    finally:
        for task in background:
            task.cancel()
        await asyncio.gather(*background, return_exceptions=True)
        await orchestrator.shutdown()
        await twitch.close()
        await game.close()


def run() -> None:
    load_dotenv()
    _configure_logging()
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Shutting down.")


if __name__ == "__main__":
    run()
