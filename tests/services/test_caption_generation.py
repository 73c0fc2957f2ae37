"""
Unit tests for caption generation.

Tests focus on:
- Parsing of the bracketed caption format, strict and lenient
- Quota checks and charging
- In-flight duplicate requests
- Recovery: simplified retry, backoff, fatal errors with localized messages
"""
import pytest
from unittest.mock import call

from backend.core.exceptions import (
    DuplicateRequestError,
    GenerationError,
    QuotaExceededError,
    ValidationError,
)
from backend.models.generation import GenerationLog
from backend.services.caption_service import (
    DEFAULT_CAPTION,
    DEFAULT_CTA,
    DEFAULT_HASHTAGS,
    DEFAULT_TITLE,
    CaptionService,
    build_caption_messages,
    in_flight_requests,
    parse_captions,
)
from backend.services.usage_service import UsageService

CAPTION_TEXT = """Caption 1:
[Title] Morning Fuel
[Caption] Start your day with a cup that actually tastes like something.
[Call to Action] Order your first bag today!
[#Tags] #coffee #morning #roastery

Caption 2:
[Title] Ever Wondered?
[Caption] Do you know where your beans come from?
[Call to Action] Tell us your favourite origin below.
[#Tags] #coffee #origin

Caption 3:
[Title] The Tuesday Rescue
[Caption] It was 7am and the grinder broke.
[Call to Action] Share your coffee emergency!
[#Tags] #coffeelife
"""


def _generate(db, user, client, recovery, **kwargs):
    params = dict(tone="friendly", platform="Instagram", niche="coffee", goal="sales")
    params.update(kwargs)
    return CaptionService.generate(db, user, client=client, recovery=recovery, **params)


class TestParseCaptions:
    """Tests for parse_captions"""

    def test_parses_three_captions(self):
        captions = parse_captions(CAPTION_TEXT)

        assert len(captions) == 3
        assert captions[0].title == "Morning Fuel"
        assert captions[0].caption == "Start your day with a cup that actually tastes like something."
        assert captions[0].cta == "Order your first bag today!"
        assert captions[0].hashtags == ["coffee", "morning", "roastery"]
        assert captions[2].hashtags == ["coffeelife"]

    def test_at_most_three(self):
        text = CAPTION_TEXT + "\nCaption 4:\n[Title] Extra\n[Caption] More\n[Call to Action] Go\n[#Tags] #more\n"

        assert len(parse_captions(text)) == 3

    def test_incomplete_block_is_skipped(self):
        text = (
            "Caption 1:\n[Title] No CTA here\n[Caption] Missing a field\n[#Tags] #x\n"
            "Caption 2:\n[Title] Complete\n[Caption] All fields\n[Call to Action] Go\n[#Tags] #y\n"
        )

        captions = parse_captions(text)

        assert [c.title for c in captions] == ["Complete"]

    def test_lenient_parsing_fills_defaults(self):
        captions = parse_captions("[Title] Only a title")

        assert len(captions) == 1
        assert captions[0].title == "Only a title"
        assert captions[0].caption == DEFAULT_CAPTION
        assert captions[0].cta == DEFAULT_CTA
        assert captions[0].hashtags == DEFAULT_HASHTAGS

    def test_unstructured_text(self):
        captions = parse_captions("Sorry, I cannot help with that.")

        assert captions[0].title == DEFAULT_TITLE
        assert captions[0].to_dict()["hashtags"] == ["content", "social"]


class TestBuildCaptionMessages:
    """Tests for build_caption_messages"""

    def test_english_prompt(self):
        messages = build_caption_messages("witty", "LinkedIn", "fintech", "awareness", post_idea="open banking")

        assert messages[0]["role"] == "system"
        assert "LinkedIn" in messages[0]["content"]
        assert "Write all content in English." in messages[1]["content"]
        assert "'open banking'" in messages[1]["content"]

    def test_other_language_and_simplified(self):
        messages = build_caption_messages("witty", "LinkedIn", "fintech", "awareness", lang="fr", simplified=True)

        assert "French" in messages[1]["content"]
        assert "Keep each caption to one sentence." in messages[1]["content"]


class TestCaptionService:
    """Tests for CaptionService.generate"""

    @pytest.mark.asyncio
    async def test_generates_and_charges(self, db, make_user, generation_client, recovery):
        user = make_user(requests_used=0, requests_limit=5)
        generation_client.complete.return_value = CAPTION_TEXT

        result = await _generate(db, user, generation_client, recovery, request_id="req-1")

        assert len(result["captions"]) == 3
        assert result["captions"][1]["title"] == "Ever Wondered?"
        assert result["requests_remaining"] == 4
        assert result["request_id"] == "req-1"
        assert result["attempts"] == 1
        assert user.requests_used == 1

        kwargs = generation_client.complete.call_args.kwargs
        assert kwargs["temperature"] == 0.9
        assert kwargs["max_tokens"] == 1000

        log = db.query(GenerationLog).one()
        assert log.kind == "captions"
        assert log.status == "success"
        assert log.request_id == "req-1"
        assert "req-1" not in in_flight_requests

    @pytest.mark.asyncio
    async def test_missing_fields(self, db, make_user, generation_client, recovery):
        user = make_user()

        with pytest.raises(ValidationError):
            await _generate(db, user, generation_client, recovery, goal=" ")

        generation_client.complete.assert_not_called()

    @pytest.mark.asyncio
    async def test_quota_exhausted(self, db, make_user, generation_client, recovery):
        user = make_user(requests_used=5, requests_limit=5, flexy_requests=0)

        with pytest.raises(QuotaExceededError) as exc_info:
            await _generate(db, user, generation_client, recovery)

        assert exc_info.value.status_code == 429
        generation_client.complete.assert_not_called()

    @pytest.mark.asyncio
    async def test_duplicate_in_flight_request(self, db, make_user, generation_client, recovery):
        user = make_user()

        with in_flight_requests.track("req-dup"):
            with pytest.raises(DuplicateRequestError):
                await _generate(db, user, generation_client, recovery, request_id="req-dup")

        assert "req-dup" not in in_flight_requests
        generation_client.complete.assert_not_called()

    @pytest.mark.asyncio
    async def test_truncated_response_retries_simplified(self, db, make_user, generation_client, recovery):
        user = make_user()
        generation_client.complete.side_effect = [GenerationError("truncated"), CAPTION_TEXT]

        result = await _generate(db, user, generation_client, recovery)

        assert result["attempts"] == 2
        first, second = generation_client.complete.call_args_list
        assert first.kwargs["max_tokens"] == 1000
        assert second.kwargs["max_tokens"] == 1500
        assert "Keep each caption to one sentence." in second.args[0][1]["content"]

    @pytest.mark.asyncio
    async def test_rate_limit_backs_off_then_fails(self, db, make_user, generation_client, recovery):
        user = make_user()
        generation_client.complete.side_effect = GenerationError("rate_limit")

        with pytest.raises(GenerationError) as exc_info:
            await _generate(db, user, generation_client, recovery)

        assert exc_info.value.kind == "rate_limit"
        assert exc_info.value.attempts == 4
        assert exc_info.value.user_message["retry_after"] == 5
        assert generation_client.complete.await_count == 4
        assert recovery.sleep.await_args_list == [call(1.0), call(2.0), call(4.0)]
        assert user.requests_used == 0

    @pytest.mark.asyncio
    async def test_content_filter_is_fatal_and_localized(self, db, make_user, generation_client, recovery):
        user = make_user()
        generation_client.complete.side_effect = GenerationError("content_filter")

        with pytest.raises(GenerationError) as exc_info:
            await _generate(db, user, generation_client, recovery, lang="fr", request_id="req-fr")

        error = exc_info.value
        assert error.kind == "content_filter"
        assert error.user_message["title"] == "Contenu Non Autorisé"
        assert error.to_dict()["message"]["title"] == "Contenu Non Autorisé"
        assert generation_client.complete.await_count == 1
        recovery.sleep.assert_not_awaited()

        log = db.query(GenerationLog).one()
        assert log.status == "failed"
        assert log.error_kind == "content_filter"
        assert log.attempts == 1
        assert user.requests_used == 0
        assert "req-fr" not in in_flight_requests

    @pytest.mark.asyncio
    async def test_overloaded_has_no_template_fallback(self, db, make_user, generation_client, recovery):
        user = make_user()
        generation_client.complete.side_effect = GenerationError("overloaded")

        with pytest.raises(GenerationError) as exc_info:
            await _generate(db, user, generation_client, recovery)

        assert exc_info.value.kind == "overloaded"
        assert exc_info.value.user_message["title"] == "Service Busy"


class TestUsageService:
    """Tests for UsageService quota and charging"""

    def test_plan_requests_first(self, db, make_user):
        user = make_user(requests_used=2, requests_limit=5, flexy_requests=3)

        UsageService.charge(db, user)

        assert user.requests_used == 3
        assert user.flexy_requests == 3

    def test_flexy_after_plan_is_used_up(self, db, make_user):
        user = make_user(requests_used=5, requests_limit=5, flexy_requests=2)

        assert UsageService.has_quota(user)
        UsageService.charge(db, user)

        assert user.requests_used == 5
        assert user.flexy_requests == 1
        assert user.requests_remaining == 1

    def test_flexy_plan_spends_flexy_first(self, db, make_user):
        user = make_user(plan_type="flexy", requests_used=0, requests_limit=5, flexy_requests=3)

        UsageService.charge(db, user)

        assert user.flexy_requests == 2
        assert user.requests_used == 0

    def test_no_quota(self, make_user):
        user = make_user(requests_used=5, requests_limit=5, flexy_requests=0)

        assert not UsageService.has_quota(user)
        with pytest.raises(QuotaExceededError):
            UsageService.check_quota(user)
