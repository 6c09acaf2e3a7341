"""
ActionBlender — Turns a cycle's submissions into the one action sent to the game.

Two modes:
  * Tally (no LLM key): the most-voted submission wins, newest first on ties.
  * Blend (LLM key set): submissions are merged by the language model. Large
    ledgers are split into batches that are blended concurrently, then the
    batch results are blended again until one action remains.

Uses the `system_instruction` parameter for the stable formatting rules.
"""

import asyncio
import logging
import time
from typing import Iterable, List, Optional

from google import genai

from models.config import SessionConfig
from models.merge import GameContext, MergeRequest, MergeResult, MergeTrace
from models.session import Submission
from tools.rate_limiter import llm_limiter

logger = logging.getLogger("ActionBlender")

TOKENS_PER_SUBMISSION = 50
TARGET_BATCH_TOKENS = 16000
MIN_BATCH_SIZE = 3

# Context section types that are instructions to the game's own model, not story
SKIP_SECTION_TYPES = {"instructions", "authorsNote"}

FALLBACK_PARTY_NAME = "the party member"


class BlendError(Exception):
    """A language-model call failed; the whole merge is abandoned."""
    pass


def build_system_prompt(party_name: str) -> str:
    return f"""You are helping combine multiple player suggestions into a single action for **{party_name}** in a collaborative interactive fiction story.

Your task is to synthesize the submitted actions into ONE coherent third-person action that:
- Incorporates the best elements from each suggestion when possible
- Fits naturally with the story context and tone
- Maintains narrative consistency with established characters and setting
- Is concise (1-2 sentences maximum)

## Formatting Rules

- Write ONLY the action text, no explanations or commentary
- Do NOT begin with "{party_name}" or any character name - the game engine adds that automatically
- Write in third person (e.g. "leaps forward and grabs the rope" not "{party_name} leaps forward")
- Actions should flow naturally from the current story moment"""


def extract_story_context(context: Optional[GameContext]) -> str:
    """Story text from the game context, minus instructions and author's notes."""
    if context is None or not context.sections:
        return ""
    kept = [
        s.text.strip()
        for s in context.sections
        if s.type not in SKIP_SECTION_TYPES and s.text
    ]
    logger.debug(f"Story context: {len(context.sections)} sections, {len(kept)} kept")
    return "\n\n".join(kept).strip()


def build_combine_prompt(
    story_context: str,
    last_known_action: Optional[str],
    submissions: List[Submission],
    party_name: str,
) -> str:
    submission_list = "\n".join(
        f'{i}. "{s.text}" (by {s.user})' for i, s in enumerate(submissions, start=1)
    )

    full_context = story_context or ""
    if last_known_action:
        full_context += f"\n\nMost Recent:\n{last_known_action}"
    full_context = full_context.strip()

    prompt = f"# Character: {party_name}\n\n"
    if full_context:
        prompt += f"## Story Context\n\n```\n{full_context}\n```\n\n"
    prompt += f"## Player Submissions\n\n{submission_list}\n\n"
    prompt += "## Task\n\n"
    prompt += f"Combine these {len(submissions)} suggestions into a single action for **{party_name}**."
    prompt += " Output ONLY the action text, do not prefix with the character name."
    return prompt


def compute_batch_size(
    tokens_per_submission: int = TOKENS_PER_SUBMISSION,
    target_batch_tokens: int = TARGET_BATCH_TOKENS,
) -> int:
    return max(MIN_BATCH_SIZE, target_batch_tokens // tokens_per_submission)


def split_batches(submissions: List[Submission], batch_size: int) -> List[List[Submission]]:
    return [submissions[i:i + batch_size] for i in range(0, len(submissions), batch_size)]


def tally(submissions: Iterable[Submission]) -> Submission:
    """Most votes wins; ties go to the most recent submission.

    Raises ValueError on an empty ledger.
    """
    ranked = sorted(submissions, key=lambda s: (s.vote_count, s.created_at), reverse=True)
    if not ranked:
        raise ValueError("No submissions to tally")
    return ranked[0]


class ActionBlender:
    """Blends submissions into one action with the language model."""

    def __init__(self, client, limiter=llm_limiter, batch_size: Optional[int] = None):
        self.client = client
        self.limiter = limiter
        self.batch_size = batch_size or compute_batch_size()

    async def generate(self, config: SessionConfig, system_prompt: str, user_prompt: str) -> str:
        """One model call. Raises BlendError on any failure or empty output."""
        if not self.client:
            raise BlendError("Action blender not connected to a model.")

        try:
            await self.limiter.acquire()
            response = await self.client.aio.models.generate_content(
                model=config.model_id,
                contents=user_prompt,
                config=genai.types.GenerateContentConfig(
                    system_instruction=system_prompt,
                    max_output_tokens=config.max_tokens,
                ),
            )
        except Exception as e:
            logger.error(f"Blend generation failed: {e}", exc_info=True)
            raise BlendError(f"LLM call failed: {e}") from e

        text = (response.text or "").strip()
        if not text:
            raise BlendError("LLM returned an empty action")
        return text

    async def recursive_merge(
        self,
        config: SessionConfig,
        context: Optional[GameContext],
        submissions: List[Submission],
        last_known_action: Optional[str] = None,
    ) -> MergeResult:
        """Reduce `submissions` to a single action.

        One submission is returned verbatim without a model call. Up to
        `batch_size` are blended in one call. Beyond that, each batch is
        blended concurrently and the batch results are merged recursively,
        without the most-recent-action block.
        """
        if not submissions:
            raise ValueError("recursive_merge needs at least one submission")

        if len(submissions) == 1:
            return MergeResult(action_text=submissions[0].text)

        story_context = extract_story_context(context)
        party_name = config.party_member_name or FALLBACK_PARTY_NAME
        system_prompt = build_system_prompt(party_name)

        if len(submissions) <= self.batch_size:
            user_prompt = build_combine_prompt(story_context, last_known_action, submissions, party_name)
            result = await self.generate(config, system_prompt, user_prompt)
            return MergeResult(
                action_text=result,
                trace=MergeTrace(
                    system_prompt=system_prompt,
                    user_prompt=user_prompt,
                    response=result,
                    model=config.model_id,
                ),
            )

        batches = split_batches(submissions, self.batch_size)
        logger.info(
            f"Splitting {len(submissions)} submissions into {len(batches)} batches of ~{self.batch_size}"
        )

        async def merge_batch(index: int, batch: List[Submission]) -> Submission:
            user_prompt = build_combine_prompt(story_context, last_known_action, batch, party_name)
            text = await self.generate(config, system_prompt, user_prompt)
            logger.info(f"Batch {index} result: {text[:50]}")
            return Submission.create(f"Batch{index}", text, created_at=time.monotonic())

        intermediate = await asyncio.gather(
            *(merge_batch(i, batch) for i, batch in enumerate(batches, start=1))
        )
        return await self.recursive_merge(config, context, list(intermediate), None)

    async def blend(self, request: MergeRequest, config: SessionConfig) -> MergeResult:
        """Entry point used by the Orchestrator."""
        if request.party_name and request.party_name != config.party_member_name:
            config = config.updated(party_member_name=request.party_name)
        return await self.recursive_merge(
            config, request.story_context, request.submissions, request.last_known_action
        )
