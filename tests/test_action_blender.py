"""
Tests for agents/action_blender.py — tally winner selection, prompt
assembly, and the recursive batch merge.
"""

import asyncio

import pytest

from agents.action_blender import (
    ActionBlender,
    BlendError,
    build_combine_prompt,
    build_system_prompt,
    compute_batch_size,
    extract_story_context,
    split_batches,
    tally,
)
from models.merge import ContextSection, GameContext, MergeRequest
from models.session import Submission
from tests.conftest import MockGeminiClient


def make_submissions(count: int):
    return [Submission.create(f"user{i}", f"action {i}", created_at=float(i)) for i in range(count)]


def with_votes(user: str, text: str, votes: int, created_at: float) -> Submission:
    sub = Submission.create(user, text, created_at=created_at)
    for i in range(votes - 1):
        sub.votes.add(f"fan{i}_{user}")
    return sub


class TestTally:

    def test_most_votes_wins(self):
        subs = [
            with_votes("a", "A", 1, 1.0),
            with_votes("b", "B", 3, 2.0),
            with_votes("c", "C", 2, 3.0),
        ]
        assert tally(subs).text == "B"

    def test_tie_goes_to_most_recent(self):
        subs = [
            with_votes("a", "A", 2, 1.0),
            with_votes("b", "B", 2, 2.0),
            with_votes("c", "C", 1, 3.0),
        ]
        assert tally(subs).text == "B"

    def test_tie_ignores_insertion_order(self):
        subs = [
            with_votes("late", "late", 2, 9.0),
            with_votes("early", "early", 2, 1.0),
        ]
        assert tally(subs).text == "late"

    def test_empty_raises(self):
        with pytest.raises(ValueError):
            tally([])


class TestPrompts:

    def test_story_context_skips_instructions_and_notes(self):
        context = GameContext(sections=[
            ContextSection(type="instructions", text="Write well."),
            ContextSection(type="story", text="  The tavern is loud.  "),
            ContextSection(type="authorsNote", text="Dark tone."),
            ContextSection(type="memory", text=""),
            ContextSection(type="plotEssentials", text="Elara is a ranger."),
        ])
        assert extract_story_context(context) == "The tavern is loud.\n\nElara is a ranger."

    def test_story_context_none(self):
        assert extract_story_context(None) == ""
        assert extract_story_context(GameContext()) == ""

    def test_combine_prompt_layout(self):
        subs = [Submission.create("Alice", "open the door"), Submission.create("Bob", "search the room")]
        prompt = build_combine_prompt("The tavern is loud.", "A stranger enters.", subs, "Elara")
        assert prompt.startswith("# Character: Elara\n\n")
        assert "## Story Context\n\n```\nThe tavern is loud.\n\nMost Recent:\nA stranger enters.\n```" in prompt
        assert '1. "open the door" (by Alice)\n2. "search the room" (by Bob)' in prompt
        assert "Combine these 2 suggestions into a single action for **Elara**." in prompt

    def test_combine_prompt_without_context(self):
        subs = [Submission.create("Alice", "wave")]
        prompt = build_combine_prompt("", None, subs, "Elara")
        assert "## Story Context" not in prompt

    def test_system_prompt_forbids_name_prefix(self):
        assert 'Do NOT begin with "Elara"' in build_system_prompt("Elara")


class TestBatching:

    def test_batch_size_from_token_target(self):
        assert compute_batch_size(50, 16000) == 320

    def test_batch_size_floor(self):
        assert compute_batch_size(50, 100) == 3

    def test_split_700(self):
        batches = split_batches(make_submissions(700), 320)
        assert [len(b) for b in batches] == [320, 320, 60]


class TestRecursiveMerge:

    def test_single_submission_is_verbatim(self, llm_config, mock_llm_limiter):
        client = MockGeminiClient()
        blender = ActionBlender(client, limiter=mock_llm_limiter)
        sub = Submission.create("Alice", "open the door")

        result = asyncio.run(blender.recursive_merge(llm_config, None, [sub], "ignored"))

        assert result.action_text == "open the door"
        assert result.trace is None
        assert client.call_count == 0

    def test_small_ledger_single_call(self, llm_config, mock_llm_limiter):
        client = MockGeminiClient(["slips through the open door"])
        blender = ActionBlender(client, limiter=mock_llm_limiter)
        context = GameContext(sections=[ContextSection(type="story", text="A dark hall.")])

        result = asyncio.run(
            blender.recursive_merge(llm_config, context, make_submissions(12), "The torch flickers.")
        )

        assert client.call_count == 1
        assert result.action_text == "slips through the open door"
        assert result.trace.response == "slips through the open door"
        assert result.trace.model == llm_config.model_id
        assert "A dark hall." in result.trace.user_prompt
        assert "Most Recent:\nThe torch flickers." in result.trace.user_prompt
        assert client.calls[0]["contents"] == result.trace.user_prompt
        assert client.calls[0]["config"].max_output_tokens == llm_config.max_tokens

    def test_700_submissions_fan_out_then_converge(self, llm_config, mock_llm_limiter):
        client = MockGeminiClient(["first", "second", "third", "final"])
        blender = ActionBlender(client, limiter=mock_llm_limiter)

        result = asyncio.run(
            blender.recursive_merge(llm_config, None, make_submissions(700), "Recent text.")
        )

        assert client.call_count == 4
        assert client.max_in_flight == 3
        assert result.action_text == "final"

        final_prompt = client.calls[3]["contents"]
        assert '1. "first" (by Batch1)' in final_prompt
        assert '3. "third" (by Batch3)' in final_prompt
        assert "Most Recent" not in final_prompt
        # leaf calls carry the most recent action
        assert "Most Recent:\nRecent text." in client.calls[0]["contents"]

    def test_small_batch_size_recurses_several_rounds(self, llm_config, mock_llm_limiter):
        client = MockGeminiClient()
        blender = ActionBlender(client, limiter=mock_llm_limiter, batch_size=3)

        result = asyncio.run(blender.recursive_merge(llm_config, None, make_submissions(10)))

        # 10 -> 4 batches -> 2 batches -> 1 call
        assert client.call_count == 4 + 2 + 1
        assert result.trace is not None

    def test_batch_failure_aborts_merge(self, llm_config, mock_llm_limiter):
        client = MockGeminiClient(fail_on={2})
        blender = ActionBlender(client, limiter=mock_llm_limiter)

        with pytest.raises(BlendError):
            asyncio.run(blender.recursive_merge(llm_config, None, make_submissions(700)))

    def test_empty_response_is_an_error(self, llm_config, mock_llm_limiter):
        client = MockGeminiClient(["   "])
        blender = ActionBlender(client, limiter=mock_llm_limiter)

        with pytest.raises(BlendError):
            asyncio.run(blender.recursive_merge(llm_config, None, make_submissions(2)))

    def test_no_client_raises(self, llm_config, mock_llm_limiter):
        blender = ActionBlender(None, limiter=mock_llm_limiter)
        with pytest.raises(BlendError):
            asyncio.run(blender.recursive_merge(llm_config, None, make_submissions(2)))

    def test_empty_list_raises(self, llm_config, mock_llm_limiter):
        blender = ActionBlender(MockGeminiClient(), limiter=mock_llm_limiter)
        with pytest.raises(ValueError):
            asyncio.run(blender.recursive_merge(llm_config, None, []))

    def test_limiter_acquired_per_call(self, llm_config, mock_llm_limiter):
        blender = ActionBlender(MockGeminiClient(), limiter=mock_llm_limiter)
        asyncio.run(blender.recursive_merge(llm_config, None, make_submissions(3)))
        assert mock_llm_limiter.acquire.await_count == 1


class TestBlend:

    def test_request_party_name_reaches_prompts(self, llm_config, mock_llm_limiter):
        client = MockGeminiClient(["waves"])
        blender = ActionBlender(client, limiter=mock_llm_limiter)
        request = MergeRequest(submissions=make_submissions(2), party_name="Kael")

        result = asyncio.run(blender.blend(request, llm_config))

        assert "**Kael**" in result.trace.system_prompt
        assert result.trace.user_prompt.startswith("# Character: Kael")

    def test_fallback_party_name(self, mock_llm_limiter):
        from models.config import SessionConfig

        client = MockGeminiClient(["waves"])
        blender = ActionBlender(client, limiter=mock_llm_limiter)
        config = SessionConfig(llm_api_key="k")
        result = asyncio.run(blender.recursive_merge(config, None, make_submissions(2)))
        assert "the party member" in result.trace.system_prompt
