"""
Error recovery for the AI generation endpoints.

A failure caught around an OpenAI call is classified into a closed set of
error kinds and turned into one recovery action:

    retry_simplified      ask again with a simpler request
    retry_repaired_input  re-parse a locally repaired JSON response
    retry_after_backoff   wait (exponential backoff with jitter), then retry
    template_fallback     give up on the model and return template content
    fatal                 stop and surface a localized user message

Every kind has exactly one user-facing message per supported language.
"""

import asyncio
import enum
import json
import random
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional

from backend.core.config import settings
from backend.core.exceptions import GenerationError
from backend.core.logging import get_logger

logger = get_logger(__name__)


class ErrorKind(str, enum.Enum):
    TRUNCATED = "truncated"
    INVALID_JSON = "invalid_json"
    OVERLOADED = "overloaded"
    RATE_LIMIT = "rate_limit"
    CONTENT_FILTER = "content_filter"
    NETWORK_TIMEOUT = "network_timeout"
    QUOTA_EXCEEDED = "quota_exceeded"
    MEDIA_PROCESSING_FAILED = "media_processing_failed"
    AUTHENTICATION_ERROR = "authentication_error"
    VALIDATION_ERROR = "validation_error"
    UNKNOWN_ERROR = "unknown_error"


class RecoveryAction(str, enum.Enum):
    RETRY_SIMPLIFIED = "retry_simplified"
    RETRY_REPAIRED_INPUT = "retry_repaired_input"
    RETRY_AFTER_BACKOFF = "retry_after_backoff"
    TEMPLATE_FALLBACK = "template_fallback"
    FATAL = "fatal"


# Retry caps
MAX_RETRIES = 3
MAX_JSON_REPAIR_ATTEMPTS = 2
MAX_UNKNOWN_RETRIES = 1

# Kinds that retrying cannot fix
NON_RETRYABLE_KINDS = {
    ErrorKind.QUOTA_EXCEEDED,
    ErrorKind.AUTHENTICATION_ERROR,
    ErrorKind.CONTENT_FILTER,
    ErrorKind.VALIDATION_ERROR,
    ErrorKind.MEDIA_PROCESSING_FAILED,
}


@dataclass
class UserMessage:
    title: str
    description: str
    action: Optional[str] = None
    retry_after: Optional[int] = None  # seconds

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "action": self.action,
            "retry_after": self.retry_after,
        }


USER_MESSAGES: Dict[str, Dict[ErrorKind, UserMessage]] = {
    "en": {
        ErrorKind.TRUNCATED: UserMessage(
            "Incomplete Content",
            "Content generation was interrupted. We are trying a simpler approach.",
            "Try again with a shorter topic",
        ),
        ErrorKind.INVALID_JSON: UserMessage(
            "Format Error",
            "The response format was not valid. We are using a backup template.",
            "Try generating again",
        ),
        ErrorKind.OVERLOADED: UserMessage(
            "Service Busy",
            "The generation service is temporarily overloaded. Using a backup template.",
            "Try again in a few minutes",
        ),
        ErrorKind.RATE_LIMIT: UserMessage(
            "Too Many Requests",
            "Too many requests were sent. Please wait a moment before trying again.",
            "Wait and try again",
            retry_after=5,
        ),
        ErrorKind.CONTENT_FILTER: UserMessage(
            "Content Not Allowed",
            "The generated content does not meet our guidelines. Please change your request.",
            "Change the settings",
        ),
        ErrorKind.NETWORK_TIMEOUT: UserMessage(
            "Connection Timeout",
            "The connection timed out. Check your internet connection and try again.",
            "Check your connection",
            retry_after=5,
        ),
        ErrorKind.QUOTA_EXCEEDED: UserMessage(
            "Quota Exceeded",
            "You have reached your generation limit. Upgrade your plan to continue.",
            "Upgrade",
        ),
        ErrorKind.MEDIA_PROCESSING_FAILED: UserMessage(
            "Media Error",
            "Your media files could not be processed. Check their format and size.",
            "Check your files",
        ),
        ErrorKind.AUTHENTICATION_ERROR: UserMessage(
            "Authentication Error",
            "Please sign in again to continue.",
            "Sign in",
        ),
        ErrorKind.VALIDATION_ERROR: UserMessage(
            "Invalid Data",
            "Please check and correct the information you entered.",
            "Correct the data",
        ),
        ErrorKind.UNKNOWN_ERROR: UserMessage(
            "Unexpected Error",
            "An unexpected error occurred. Please try again or contact support.",
            "Contact support",
        ),
    },
    "fr": {
        ErrorKind.TRUNCATED: UserMessage(
            "Contenu Incomplet",
            "La génération du contenu a été interrompue. Nous essayons une approche simplifiée.",
            "Réessayer avec un sujet plus court",
        ),
        ErrorKind.INVALID_JSON: UserMessage(
            "Erreur de Format",
            "Le format de réponse n'est pas valide. Nous utilisons un modèle de secours.",
            "Réessayer la génération",
        ),
        ErrorKind.OVERLOADED: UserMessage(
            "Service Occupé",
            "Le service de génération est temporairement surchargé. Utilisation du modèle de secours.",
            "Réessayer dans quelques minutes",
        ),
        ErrorKind.RATE_LIMIT: UserMessage(
            "Limite de Vitesse",
            "Trop de demandes. Veuillez attendre un moment avant de réessayer.",
            "Patienter puis réessayer",
            retry_after=5,
        ),
        ErrorKind.CONTENT_FILTER: UserMessage(
            "Contenu Non Autorisé",
            "Le contenu généré ne respecte pas nos directives. Veuillez modifier votre demande.",
            "Modifier les paramètres",
        ),
        ErrorKind.NETWORK_TIMEOUT: UserMessage(
            "Délai de Connexion",
            "La connexion a expiré. Vérifiez votre connexion internet et réessayez.",
            "Vérifier la connexion",
            retry_after=5,
        ),
        ErrorKind.QUOTA_EXCEEDED: UserMessage(
            "Quota Dépassé",
            "Vous avez atteint votre limite de générations. Mettez à niveau votre plan.",
            "Mettre à niveau",
        ),
        ErrorKind.MEDIA_PROCESSING_FAILED: UserMessage(
            "Erreur de Média",
            "Impossible de traiter vos fichiers média. Vérifiez le format et la taille.",
            "Vérifier les fichiers",
        ),
        ErrorKind.AUTHENTICATION_ERROR: UserMessage(
            "Erreur d'Authentification",
            "Veuillez vous reconnecter pour continuer.",
            "Se reconnecter",
        ),
        ErrorKind.VALIDATION_ERROR: UserMessage(
            "Données Invalides",
            "Veuillez vérifier et corriger les informations saisies.",
            "Corriger les données",
        ),
        ErrorKind.UNKNOWN_ERROR: UserMessage(
            "Erreur Inattendue",
            "Une erreur inattendue s'est produite. Veuillez réessayer ou contacter le support.",
            "Contacter le support",
        ),
    },
}


def get_user_message(kind: ErrorKind, language: Optional[str] = None) -> UserMessage:
    """
    Localized message for an error kind. Unsupported languages fall back to
    the configured default, then to English.
    """
    table = (
        USER_MESSAGES.get((language or "").lower())
        or USER_MESSAGES.get(settings.DEFAULT_LANGUAGE)
        or USER_MESSAGES["en"]
    )
    return table[ErrorKind(kind)]


# Substring rules for untagged exceptions, checked in order
_MESSAGE_RULES = [
    (ErrorKind.TRUNCATED, ("truncated", "incomplete", "cut off")),
    (ErrorKind.INVALID_JSON, ("json", "parse")),
    (ErrorKind.OVERLOADED, ("overloaded", "503")),
    (ErrorKind.RATE_LIMIT, ("rate limit", "429", "too many requests")),
    (ErrorKind.CONTENT_FILTER, ("content filter", "content_filter", "policy violation")),
    (ErrorKind.NETWORK_TIMEOUT, ("timeout", "timed out", "network", "connection", "deadline")),
    (ErrorKind.QUOTA_EXCEEDED, ("quota", "usage", "insufficient credits")),
    (ErrorKind.MEDIA_PROCESSING_FAILED, ("media", "file", "upload")),
    (ErrorKind.AUTHENTICATION_ERROR, ("auth", "login")),
    (ErrorKind.VALIDATION_ERROR, ("validation", "invalid")),
]


def classify_error(error: BaseException) -> ErrorKind:
    """
    Map an exception to an ErrorKind.

    Tagged GenerationErrors carry their kind; everything else is classified by
    type, then by error code, then by message substrings.
    """
    if isinstance(error, GenerationError):
        try:
            return ErrorKind(error.kind)
        except ValueError:
            return ErrorKind.UNKNOWN_ERROR

    if isinstance(error, json.JSONDecodeError):
        return ErrorKind.INVALID_JSON
    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return ErrorKind.NETWORK_TIMEOUT

    message = str(error).lower()
    code = str(getattr(error, "code", "") or "").lower()

    for kind, needles in _MESSAGE_RULES:
        if kind == ErrorKind.AUTHENTICATION_ERROR and code == "unauthenticated":
            return kind
        if kind == ErrorKind.VALIDATION_ERROR and code == "invalid-argument":
            return kind
        if any(needle in message for needle in needles):
            return kind

    return ErrorKind.UNKNOWN_ERROR


def _close_unbalanced(text: str) -> str:
    """Close an unterminated string and any open brackets, innermost first"""
    stack = []
    in_string = False
    escaped = False
    for char in text:
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char in "{[":
            stack.append("}" if char == "{" else "]")
        elif char in "}]" and stack and stack[-1] == char:
            stack.pop()

    if in_string:
        text += '"'
    text = text.rstrip().rstrip(",")
    return text + "".join(reversed(stack))


def repair_json(text: Optional[str]) -> Optional[Any]:
    """
    Best-effort repair of model JSON output.

    Strips code fences, quotes bare and single-quoted keys, converts
    single-quoted values, drops trailing commas and closes unbalanced
    brackets. Returns the parsed value, or None when the text cannot be
    repaired.
    """
    if not text or not text.strip():
        return None

    cleaned = re.sub(r"```(?:json)?\s*|\s*```", "", text.strip())
    try:
        return json.loads(cleaned)
    except ValueError:
        pass

    cleaned = re.sub(r"([{,]\s*)'([^'\\]*)'\s*:", r'\1"\2":', cleaned)
    cleaned = re.sub(r"([{,]\s*)([A-Za-z_][\w-]*)\s*:", r'\1"\2":', cleaned)
    cleaned = re.sub(r":\s*'([^'\\]*)'", r': "\1"', cleaned)
    cleaned = _close_unbalanced(cleaned)
    cleaned = re.sub(r",\s*([}\]])", r"\1", cleaned)

    try:
        return json.loads(cleaned)
    except ValueError:
        return None


@dataclass
class RecoveryDecision:
    action: RecoveryAction
    kind: ErrorKind
    retry_count: int
    delay_ms: float = 0.0
    repaired: Any = None
    message: Optional[UserMessage] = None


@dataclass
class RecoveryOutcome:
    """Result of run_with_recovery"""
    result: Any
    attempts: int
    used_fallback: bool = False
    error_kinds: list = field(default_factory=list)


class ErrorRecoverySystem:
    """
    Classifies generation failures and decides how to recover from them.

    The random source and the sleep function are injectable so delays are
    deterministic under test.
    """

    def __init__(
        self,
        base_delay_ms: int = 1000,
        max_delay_ms: int = 30000,
        rand: Callable[[], float] = random.random,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        language: Optional[str] = None,
    ):
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms
        self.rand = rand
        self.sleep = sleep
        self.language = language

    def calculate_backoff_delay(self, retry_count: int) -> float:
        """``min(base * 2**retry_count + jitter(0..1000ms), max)`` in milliseconds"""
        exponential_delay = self.base_delay_ms * (2 ** retry_count)
        jitter = self.rand() * 1000
        return min(exponential_delay + jitter, self.max_delay_ms)

    def _fatal(self, kind: ErrorKind, retry_count: int, language: Optional[str]) -> RecoveryDecision:
        return RecoveryDecision(
            action=RecoveryAction.FATAL,
            kind=kind,
            retry_count=retry_count,
            message=get_user_message(kind, language or self.language),
        )

    def decide(
        self,
        error: BaseException,
        retry_count: int,
        raw_output: Optional[str] = None,
        language: Optional[str] = None,
    ) -> RecoveryDecision:
        """
        Decide what to do about ``error`` after ``retry_count`` retries.

        Args:
            error: The caught exception
            retry_count: Retries already made for this request
            raw_output: Model text that failed to parse, used for JSON repair
            language: Language of the user-facing message

        Returns:
            RecoveryDecision
        """
        kind = classify_error(error)
        language = language or self.language
        logger.info(f"[ERROR-RECOVERY] Handling {kind.value}, retry {retry_count}")

        if kind in NON_RETRYABLE_KINDS:
            return self._fatal(kind, retry_count, language)

        if kind == ErrorKind.TRUNCATED:
            if retry_count >= MAX_RETRIES:
                return self._fatal(kind, retry_count, language)
            return RecoveryDecision(RecoveryAction.RETRY_SIMPLIFIED, kind, retry_count)

        if kind == ErrorKind.INVALID_JSON:
            if retry_count >= MAX_JSON_REPAIR_ATTEMPTS:
                logger.warning("[ERROR-RECOVERY] ⚠️ JSON parsing failed repeatedly, using fallback")
                return RecoveryDecision(
                    RecoveryAction.TEMPLATE_FALLBACK, kind, retry_count,
                    message=get_user_message(kind, language),
                )
            if raw_output is None and isinstance(error, GenerationError):
                raw_output = error.raw_output
            repaired = repair_json(raw_output)
            if repaired is not None:
                logger.info("[ERROR-RECOVERY] ✅ Repaired JSON response")
                return RecoveryDecision(
                    RecoveryAction.RETRY_REPAIRED_INPUT, kind, retry_count, repaired=repaired
                )
            return RecoveryDecision(
                RecoveryAction.RETRY_AFTER_BACKOFF, kind, retry_count,
                delay_ms=self.calculate_backoff_delay(retry_count),
            )

        if kind == ErrorKind.OVERLOADED:
            logger.warning("[ERROR-RECOVERY] ⚠️ Upstream overloaded, using template fallback")
            return RecoveryDecision(
                RecoveryAction.TEMPLATE_FALLBACK, kind, retry_count,
                message=get_user_message(kind, language),
            )

        if kind in (ErrorKind.RATE_LIMIT, ErrorKind.NETWORK_TIMEOUT):
            if retry_count >= MAX_RETRIES:
                return self._fatal(kind, retry_count, language)
            return RecoveryDecision(
                RecoveryAction.RETRY_AFTER_BACKOFF, kind, retry_count,
                delay_ms=self.calculate_backoff_delay(retry_count),
            )

        # Unknown cause: one retry, then give up
        if retry_count >= MAX_UNKNOWN_RETRIES:
            return self._fatal(kind, retry_count, language)
        return RecoveryDecision(
            RecoveryAction.RETRY_AFTER_BACKOFF, kind, retry_count,
            delay_ms=self.calculate_backoff_delay(retry_count),
        )

    async def run_with_recovery(
        self,
        generate: Callable[[bool], Awaitable[str]],
        parse: Callable[[str], Any],
        fallback: Optional[Callable[[], Any]] = None,
        language: Optional[str] = None,
        operation: str = "generation",
    ) -> RecoveryOutcome:
        """
        Run ``generate`` then ``parse`` until one succeeds or recovery gives up.

        Args:
            generate: Coroutine function taking ``simplified`` and returning model text
            parse: Turns model text into the result; raises on bad output
            fallback: Template result used on template_fallback
            language: Language of the user-facing message
            operation: Name used in logs

        Returns:
            RecoveryOutcome

        Raises:
            GenerationError: With ``user_message`` set, when recovery is fatal
        """
        retry_count = 0
        simplified = False
        pending_text: Optional[str] = None
        error_kinds = []

        while True:
            raw_output = None
            try:
                if pending_text is not None:
                    raw_output, pending_text = pending_text, None
                else:
                    raw_output = await generate(simplified)
                result = parse(raw_output)
                if retry_count:
                    logger.info(f"[ERROR-RECOVERY] ✅ {operation} recovered after {retry_count} retries")
                return RecoveryOutcome(result=result, attempts=retry_count + 1, error_kinds=error_kinds)

            except Exception as e:
                decision = self.decide(e, retry_count, raw_output=raw_output, language=language)
                error_kinds.append(decision.kind.value)

                if decision.action == RecoveryAction.FATAL:
                    logger.error(
                        f"[ERROR-RECOVERY] ❌ {operation} failed ({decision.kind.value}) "
                        f"after {retry_count} retries: {str(e)}"
                    )
                    raise GenerationError(
                        decision.kind.value,
                        str(e),
                        raw_output=raw_output,
                        user_message=decision.message.to_dict(),
                        cause=e,
                        attempts=retry_count + 1,
                    ) from e

                if decision.action == RecoveryAction.TEMPLATE_FALLBACK:
                    if fallback is None:
                        message = decision.message or get_user_message(decision.kind, language)
                        raise GenerationError(
                            decision.kind.value, str(e), raw_output=raw_output,
                            user_message=message.to_dict(), cause=e, attempts=retry_count + 1,
                        ) from e
                    return RecoveryOutcome(
                        result=fallback(),
                        attempts=retry_count + 1,
                        used_fallback=True,
                        error_kinds=error_kinds,
                    )

                if decision.action == RecoveryAction.RETRY_SIMPLIFIED:
                    simplified = True
                elif decision.action == RecoveryAction.RETRY_REPAIRED_INPUT:
                    pending_text = json.dumps(decision.repaired)
                elif decision.action == RecoveryAction.RETRY_AFTER_BACKOFF:
                    logger.info(
                        f"[ERROR-RECOVERY] ⏳ {operation}: waiting {decision.delay_ms:.0f}ms "
                        f"before retry {retry_count + 1}"
                    )
                    await self.sleep(decision.delay_ms / 1000)

                retry_count += 1


error_recovery = ErrorRecoverySystem(
    base_delay_ms=settings.RECOVERY_BASE_DELAY_MS,
    max_delay_ms=settings.RECOVERY_MAX_DELAY_MS,
)
