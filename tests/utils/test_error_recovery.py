"""
Unit tests for generation error recovery.

Tests focus on:
- Classification of tagged and untagged errors
- One recovery action per kind, with retry caps
- Deterministic backoff
- JSON repair
- Message tables covering every kind in every language
"""
import asyncio
import json

import pytest
from unittest.mock import AsyncMock

from backend.core.exceptions import GenerationError
from backend.utils.error_recovery import (
    MAX_JSON_REPAIR_ATTEMPTS,
    MAX_RETRIES,
    MAX_UNKNOWN_RETRIES,
    USER_MESSAGES,
    ErrorKind,
    ErrorRecoverySystem,
    RecoveryAction,
    classify_error,
    get_user_message,
    repair_json,
)


@pytest.fixture
def system():
    return ErrorRecoverySystem(rand=lambda: 0.0, sleep=AsyncMock())


class TestClassifyError:
    """Tests for classify_error"""

    def test_tagged_error_keeps_its_kind(self):
        assert classify_error(GenerationError("rate_limit", "whatever text")) == ErrorKind.RATE_LIMIT

    def test_unknown_tag(self):
        assert classify_error(GenerationError("strange")) == ErrorKind.UNKNOWN_ERROR

    def test_by_type(self):
        with pytest.raises(json.JSONDecodeError) as exc_info:
            json.loads("{")

        assert classify_error(exc_info.value) == ErrorKind.INVALID_JSON
        assert classify_error(asyncio.TimeoutError()) == ErrorKind.NETWORK_TIMEOUT

    @pytest.mark.parametrize("message,kind", [
        ("Response was cut off", ErrorKind.TRUNCATED),
        ("Could not parse response", ErrorKind.INVALID_JSON),
        ("HTTP 503 from upstream", ErrorKind.OVERLOADED),
        ("Too many requests", ErrorKind.RATE_LIMIT),
        ("Blocked: policy violation", ErrorKind.CONTENT_FILTER),
        ("Connection reset by peer", ErrorKind.NETWORK_TIMEOUT),
        ("Monthly quota reached", ErrorKind.QUOTA_EXCEEDED),
        ("Upload rejected", ErrorKind.MEDIA_PROCESSING_FAILED),
        ("Invalid argument supplied", ErrorKind.VALIDATION_ERROR),
        ("Something odd", ErrorKind.UNKNOWN_ERROR),
    ])
    def test_by_message(self, message, kind):
        assert classify_error(RuntimeError(message)) == kind

    def test_by_code(self):
        error = RuntimeError("denied")
        error.code = "unauthenticated"

        assert classify_error(error) == ErrorKind.AUTHENTICATION_ERROR


class TestDecide:
    """Tests for ErrorRecoverySystem.decide"""

    @pytest.mark.parametrize("kind", [
        "quota_exceeded", "authentication_error", "content_filter",
        "validation_error", "media_processing_failed",
    ])
    def test_non_retryable_kinds_are_fatal(self, system, kind):
        decision = system.decide(GenerationError(kind), retry_count=0)

        assert decision.action == RecoveryAction.FATAL
        assert decision.message is not None

    def test_truncated_retries_simplified_until_cap(self, system):
        assert system.decide(GenerationError("truncated"), 0).action == RecoveryAction.RETRY_SIMPLIFIED
        assert system.decide(GenerationError("truncated"), MAX_RETRIES).action == RecoveryAction.FATAL

    def test_invalid_json_repaired(self, system):
        decision = system.decide(GenerationError("invalid_json"), 0, raw_output="{'a': 1,}")

        assert decision.action == RecoveryAction.RETRY_REPAIRED_INPUT
        assert decision.repaired == {"a": 1}

    def test_invalid_json_uses_raw_output_of_the_error(self, system):
        decision = system.decide(GenerationError("invalid_json", raw_output='{"a": [1, 2'), 0)

        assert decision.repaired == {"a": [1, 2]}

    def test_invalid_json_unrepairable_backs_off(self, system):
        decision = system.decide(GenerationError("invalid_json"), 1, raw_output="nope")

        assert decision.action == RecoveryAction.RETRY_AFTER_BACKOFF
        assert decision.delay_ms == 2000

    def test_invalid_json_falls_back_after_cap(self, system):
        decision = system.decide(GenerationError("invalid_json"), MAX_JSON_REPAIR_ATTEMPTS, raw_output="{}")

        assert decision.action == RecoveryAction.TEMPLATE_FALLBACK

    def test_overloaded_falls_back_immediately(self, system):
        assert system.decide(GenerationError("overloaded"), 0).action == RecoveryAction.TEMPLATE_FALLBACK

    @pytest.mark.parametrize("kind", ["rate_limit", "network_timeout"])
    def test_backoff_kinds(self, system, kind):
        decision = system.decide(GenerationError(kind), 2)

        assert decision.action == RecoveryAction.RETRY_AFTER_BACKOFF
        assert decision.delay_ms == 4000
        assert system.decide(GenerationError(kind), MAX_RETRIES).action == RecoveryAction.FATAL

    def test_unknown_error_retried_once(self, system):
        assert system.decide(RuntimeError("odd"), 0).action == RecoveryAction.RETRY_AFTER_BACKOFF
        assert system.decide(RuntimeError("odd"), MAX_UNKNOWN_RETRIES).action == RecoveryAction.FATAL

    def test_fatal_message_is_localized(self, system):
        decision = system.decide(GenerationError("quota_exceeded"), 0, language="fr")

        assert decision.message.title == "Quota Dépassé"


class TestBackoff:
    """Tests for calculate_backoff_delay"""

    def test_exponential_without_jitter(self, system):
        assert [system.calculate_backoff_delay(n) for n in range(4)] == [1000, 2000, 4000, 8000]

    def test_capped(self, system):
        assert system.calculate_backoff_delay(10) == 30000

    def test_jitter_is_added(self):
        jittery = ErrorRecoverySystem(rand=lambda: 0.5)

        assert jittery.calculate_backoff_delay(0) == 1500


class TestRepairJson:
    """Tests for repair_json"""

    @pytest.mark.parametrize("text,expected", [
        ('```json\n{"a": 1}\n```', {"a": 1}),
        ("{a: 1, b_c: 2}", {"a": 1, "b_c": 2}),
        ("{'a': 'x'}", {"a": "x"}),
        ('{"a": [1, 2,],}', {"a": [1, 2]}),
        ('{"a": {"b": [1', {"a": {"b": [1]}}),
        ('{"a": "unterminated', {"a": "unterminated"}),
    ])
    def test_repairs(self, text, expected):
        assert repair_json(text) == expected

    @pytest.mark.parametrize("text", [None, "", "   ", "plain words"])
    def test_unrepairable(self, text):
        assert repair_json(text) is None


class TestUserMessages:
    """Tests for the message tables"""

    @pytest.mark.parametrize("language", ["en", "fr"])
    def test_every_kind_has_a_message(self, language):
        assert set(USER_MESSAGES[language]) == set(ErrorKind)
        for message in USER_MESSAGES[language].values():
            assert message.title
            assert message.description

    def test_unsupported_language_falls_back_to_english(self):
        assert get_user_message(ErrorKind.RATE_LIMIT, "de").title == "Too Many Requests"


class TestRunWithRecovery:
    """Tests for ErrorRecoverySystem.run_with_recovery"""

    @pytest.mark.asyncio
    async def test_success_first_time(self, system):
        generate = AsyncMock(return_value="ok")

        outcome = await system.run_with_recovery(generate, str.upper)

        assert outcome.result == "OK"
        assert outcome.attempts == 1
        assert outcome.error_kinds == []
        generate.assert_awaited_once_with(False)

    @pytest.mark.asyncio
    async def test_truncated_then_simplified(self, system):
        generate = AsyncMock(side_effect=[GenerationError("truncated"), "short"])

        outcome = await system.run_with_recovery(generate, str.upper)

        assert outcome.result == "SHORT"
        assert outcome.attempts == 2
        assert outcome.error_kinds == ["truncated"]
        assert [c.args for c in generate.await_args_list] == [(False,), (True,)]
        system.sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_fatal_raises_with_user_message(self, system):
        generate = AsyncMock(side_effect=GenerationError("content_filter", "blocked"))

        with pytest.raises(GenerationError) as exc_info:
            await system.run_with_recovery(generate, str.upper, language="fr")

        assert exc_info.value.kind == "content_filter"
        assert exc_info.value.attempts == 1
        assert exc_info.value.user_message["title"] == "Contenu Non Autorisé"

    @pytest.mark.asyncio
    async def test_fallback_result(self, system):
        generate = AsyncMock(side_effect=GenerationError("overloaded"))

        outcome = await system.run_with_recovery(generate, str.upper, fallback=lambda: "TEMPLATE")

        assert outcome.result == "TEMPLATE"
        assert outcome.used_fallback is True

    @pytest.mark.asyncio
    async def test_fallback_without_template_is_fatal(self, system):
        generate = AsyncMock(side_effect=GenerationError("overloaded"))

        with pytest.raises(GenerationError) as exc_info:
            await system.run_with_recovery(generate, str.upper)

        assert exc_info.value.user_message["title"] == "Service Busy"
