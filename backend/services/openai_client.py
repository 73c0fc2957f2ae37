"""
OpenAI chat completion client for the generation endpoints.

Wraps openai.AsyncOpenAI and turns SDK exceptions and unusable responses into
GenerationErrors tagged with an error kind, so error recovery never has to
guess from exception messages.
"""

import time
from typing import Any, Dict, List, Optional

import openai

from backend.core.config import settings
from backend.core.exceptions import ConfigurationError, GenerationError
from backend.core.logging import get_logger
from backend.utils.error_recovery import ErrorKind

logger = get_logger(__name__)


def _error_code(error: openai.APIError) -> str:
    return str(getattr(error, "code", "") or "").lower()


def map_openai_error(error: openai.APIError) -> GenerationError:
    """Tag an OpenAI SDK exception with the matching error kind"""
    code = _error_code(error)

    if isinstance(error, openai.RateLimitError):
        kind = ErrorKind.QUOTA_EXCEEDED if code == "insufficient_quota" else ErrorKind.RATE_LIMIT
    elif isinstance(error, (openai.APITimeoutError, openai.APIConnectionError)):
        kind = ErrorKind.NETWORK_TIMEOUT
    elif isinstance(error, (openai.AuthenticationError, openai.PermissionDeniedError)):
        kind = ErrorKind.AUTHENTICATION_ERROR
    elif isinstance(error, openai.BadRequestError):
        if code in ("content_filter", "content_policy_violation"):
            kind = ErrorKind.CONTENT_FILTER
        else:
            kind = ErrorKind.VALIDATION_ERROR
    elif isinstance(error, openai.InternalServerError):
        kind = ErrorKind.OVERLOADED
    else:
        kind = ErrorKind.UNKNOWN_ERROR

    return GenerationError(kind.value, str(error), cause=error)


class OpenAIGenerationClient:
    """
    Non-streaming chat completion client.

    SDK-level retries are disabled; retries are decided by error recovery.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        api_key = api_key if api_key is not None else settings.OPENAI_API_KEY
        if not api_key:
            raise ConfigurationError("OpenAI API key is not configured")

        self.model = model or settings.OPENAI_MODEL
        self.client = openai.AsyncOpenAI(
            api_key=api_key,
            timeout=timeout or settings.OPENAI_TIMEOUT_SECONDS,
            max_retries=0,
        )
        logger.info(f"[OPENAI-CLIENT] Initialized with model: {self.model}")

    async def complete(
        self,
        messages: List[Dict[str, str]],
        temperature: float = 0.7,
        max_tokens: int = 1000,
        response_format: Optional[Dict[str, Any]] = None,
        **kwargs
    ) -> str:
        """
        Run one chat completion and return the message text.

        Args:
            messages: Conversation messages
            temperature: Sampling temperature
            max_tokens: Maximum tokens in the response
            response_format: e.g. ``{"type": "json_object"}``
            **kwargs: Extra completion parameters (top_p, penalties)

        Returns:
            The assistant message content

        Raises:
            GenerationError: Tagged with the error kind
        """
        params = dict(
            model=self.model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
            **kwargs
        )
        if response_format:
            params["response_format"] = response_format

        start_time = time.time()
        try:
            logger.info("[OPENAI-CLIENT] 📤 Sending completion request")
            completion = await self.client.chat.completions.create(**params)
        except openai.APIError as e:
            mapped = map_openai_error(e)
            logger.error(f"[OPENAI-CLIENT] ❌ {mapped.kind}: {str(e)}")
            raise mapped from e

        choice = completion.choices[0] if completion.choices else None
        content = choice.message.content if choice and choice.message else None
        finish_reason = choice.finish_reason if choice else None

        if finish_reason == "length":
            logger.warning("[OPENAI-CLIENT] ⚠️ Response truncated at max_tokens")
            raise GenerationError(
                ErrorKind.TRUNCATED.value, "Response was truncated", raw_output=content
            )
        if finish_reason == "content_filter":
            raise GenerationError(
                ErrorKind.CONTENT_FILTER.value, "Response blocked by the content filter"
            )
        if not content or not content.strip():
            raise GenerationError(ErrorKind.UNKNOWN_ERROR.value, "No response from OpenAI")

        logger.info(
            f"[OPENAI-CLIENT] ✅ Completion received in {time.time() - start_time:.2f}s "
            f"({len(content)} chars)"
        )
        return content
