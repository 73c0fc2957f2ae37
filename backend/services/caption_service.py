# backend/services/caption_service.py
"""
Social media caption generation.

The model is asked for three captions in a fixed bracketed format:

    Caption 1:
    [Title] ...
    [Caption] ...
    [Call to Action] ...
    [#Tags] #one #two

parse_captions() extracts them; the OpenAI call runs under error recovery.
"""

import re
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from sqlalchemy.orm import Session

from backend.core.exceptions import DuplicateRequestError, GenerationError, ValidationError
from backend.core.logging import get_context_logger, get_logger
from backend.models.generation import GenerationLog
from backend.models.user import User
from backend.services.openai_client import OpenAIGenerationClient
from backend.services.usage_service import UsageService
from backend.utils.error_recovery import ErrorRecoverySystem, error_recovery
from backend.utils.helpers import generate_request_id, truncate_string

logger = get_logger(__name__)

MAX_CAPTIONS = 3

DEFAULT_TITLE = "Generated Title"
DEFAULT_CAPTION = "Check out this amazing content!"
DEFAULT_CTA = "Like and share!"
DEFAULT_HASHTAGS = ["content", "social"]

LANGUAGE_NAMES = {"en": "English", "fr": "French (français)", "es": "Spanish (español)"}


@dataclass
class GeneratedCaption:
    title: str
    caption: str
    cta: str
    hashtags: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "caption": self.caption,
            "cta": self.cta,
            "hashtags": self.hashtags,
        }


def _split_tags(text: str) -> List[str]:
    return [tag.lstrip("#") for tag in text.split() if tag.lstrip("#")]


def extract_field(block: str, label: str) -> Optional[str]:
    """Text after ``[label]`` up to the next ``[`` or the end of the block"""
    pattern = r"\[" + re.escape(label) + r"\]\s*([\s\S]*?)(?=\s*\[|$)"
    match = re.search(pattern, block, re.IGNORECASE)
    if not match:
        return None
    return match.group(1).strip() or None


def parse_captions(text: str) -> List[GeneratedCaption]:
    """
    Parse the model's caption text.

    Blocks missing any of the four fields are skipped. When no block parses,
    a single caption is built leniently from whatever fields are present,
    with defaults for the rest. At most three captions are returned.
    """
    captions: List[GeneratedCaption] = []

    for block in re.split(r"Caption \d+:", text or "")[1:]:
        if not block.strip():
            continue
        title = extract_field(block, "Title")
        caption = extract_field(block, "Caption")
        cta = extract_field(block, "Call to Action")
        tags = extract_field(block, "#Tags")
        if title and caption and cta and tags:
            captions.append(GeneratedCaption(title, caption, cta, _split_tags(tags)))

    if not captions:
        logger.warning("⚠️ Regular caption parsing failed, using lenient parsing")
        title = re.search(r"\[Title\]([\s\S]*?)(?=\[Caption\]|$)", text or "", re.IGNORECASE)
        caption = re.search(r"\[Caption\]([\s\S]*?)(?=\[Call to Action\]|$)", text or "", re.IGNORECASE)
        cta = re.search(r"\[Call to Action\]([\s\S]*?)(?=\[#Tags\]|$)", text or "", re.IGNORECASE)
        tags = re.search(r"\[#Tags\]([\s\S]*)$", text or "", re.IGNORECASE)

        captions.append(GeneratedCaption(
            title=(title.group(1).strip() if title else "") or DEFAULT_TITLE,
            caption=(caption.group(1).strip() if caption else "") or DEFAULT_CAPTION,
            cta=(cta.group(1).strip() if cta else "") or DEFAULT_CTA,
            hashtags=(_split_tags(tags.group(1)) if tags else []) or list(DEFAULT_HASHTAGS),
        ))

    return captions[:MAX_CAPTIONS]


class InFlightRequests:
    """
    Request ids currently being generated in this process.

    Not shared between workers and lost on restart; it only stops a client
    from submitting the same request twice while the first is running.
    """

    def __init__(self):
        self._active: Set[str] = set()

    def __contains__(self, request_id: str) -> bool:
        return request_id in self._active

    def __len__(self) -> int:
        return len(self._active)

    @contextmanager
    def track(self, request_id: str):
        if request_id in self._active:
            raise DuplicateRequestError(
                "This request is already being processed",
                {"request_id": request_id},
            )
        self._active.add(request_id)
        try:
            yield
        finally:
            self._active.discard(request_id)


in_flight_requests = InFlightRequests()


def build_caption_messages(
    tone: str,
    platform: str,
    niche: str,
    goal: str,
    post_idea: Optional[str] = None,
    lang: str = "en",
    simplified: bool = False,
) -> List[Dict[str, str]]:
    """Chat messages for a caption request"""
    topic = post_idea or niche
    if lang == "en":
        language_instruction = "Write all content in English."
    else:
        language_name = LANGUAGE_NAMES.get(lang, lang)
        language_instruction = (
            f"IMPORTANT: Write ALL content in {language_name}. "
            f"Every word, phrase and hashtag must be in {language_name}."
        )

    system_prompt = (
        f"You are an expert content creator and digital marketer specializing in {platform} content. "
        "Use fresh, varied and direct opening hooks. Avoid generic phrases and formulaic openings. "
        "Every caption must feel unique and authentic."
    )

    if simplified:
        user_prompt = (
            f"{language_instruction}\n"
            f"Write 3 short {tone} captions for {platform} about '{topic}' ({niche}). Goal: {goal}.\n"
            "Keep each caption to one sentence. Use exactly this format:\n"
            "Caption 1:\n[Title] ...\n[Caption] ...\n[Call to Action] ...\n[#Tags] #tag1 #tag2 #tag3\n"
            "Repeat for Caption 2 and Caption 3. No explanations."
        )
    else:
        user_prompt = (
            f"{language_instruction}\n\n"
            f"Create exactly 3 highly engaging {tone} captions for {platform} about '{topic}' "
            f"in the {niche} industry.\n\n"
            "Each caption MUST have a different opening style:\n"
            "Caption 1: start with a surprising statistic, bold claim or contrarian take\n"
            "Caption 2: open with an engaging question or challenge to the audience\n"
            "Caption 3: begin with a micro-story or relatable scenario\n\n"
            "Use exactly this format with these exact headings:\n\n"
            "Caption 1:\n"
            f"[Title] A catchy title specific to {niche}\n"
            f"[Caption] A 1-3 sentence caption in a {tone} tone without hashtags\n"
            "[Call to Action] A specific, creative call to action\n"
            f"[#Tags] 3-5 relevant hashtags for {niche} on {platform}\n\n"
            "Caption 2:\n[Title] ...\n[Caption] ...\n[Call to Action] ...\n[#Tags] ...\n\n"
            "Caption 3:\n[Title] ...\n[Caption] ...\n[Call to Action] ...\n[#Tags] ...\n\n"
            f"Focus on the goal: \"{goal}\". Follow {platform} best practices and character limits. "
            "No explanations, just the 3 formatted captions."
        )

    return [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": user_prompt},
    ]


class CaptionService:
    """Caption generation for authenticated users"""

    @staticmethod
    def _log_generation(
        db: Session,
        user_id: str,
        request_id: str,
        status: str,
        attempts: int,
        request_data: Dict[str, Any],
        error_kind: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> None:
        db.add(GenerationLog(
            user_id=user_id,
            request_id=request_id,
            kind="captions",
            status=status,
            error_kind=error_kind,
            attempts=attempts,
            request_data=request_data,
            error_message=error_message,
        ))
        db.commit()

    @staticmethod
    async def generate(
        db: Session,
        user: User,
        tone: str,
        platform: str,
        niche: str,
        goal: str,
        post_idea: Optional[str] = None,
        request_id: Optional[str] = None,
        lang: str = "en",
        client: Optional[OpenAIGenerationClient] = None,
        recovery: Optional[ErrorRecoverySystem] = None,
    ) -> Dict[str, Any]:
        """
        Generate three captions and charge the user one request.

        Args:
            db: Database session
            user: Requesting user
            tone: Caption tone
            platform: Target platform (Instagram, LinkedIn, ...)
            niche: Industry or topic area
            goal: What the post should achieve
            post_idea: Optional specific topic
            request_id: Client request id used to reject duplicate submissions
            lang: Output language
            client: OpenAI client, created from settings when omitted
            recovery: Error recovery system, the shared one when omitted

        Returns:
            {"captions", "requests_remaining", "request_id", "attempts"}

        Raises:
            ValidationError: Missing required field
            DuplicateRequestError: Same request already in progress
            QuotaExceededError: No requests left
            GenerationError: Generation failed, with a localized user message
        """
        missing = [
            name for name, value in (
                ("tone", tone), ("platform", platform), ("niche", niche), ("goal", goal)
            )
            if not value or not str(value).strip()
        ]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

        lang = (lang or "en").lower()
        request_id = request_id or generate_request_id(user.id, platform, niche)
        log = get_context_logger(__name__, {"user": user.id, "request": request_id})
        request_data = {
            "tone": tone, "platform": platform, "niche": niche,
            "goal": goal, "post_idea": post_idea, "lang": lang,
        }

        with in_flight_requests.track(request_id):
            UsageService.check_quota(user)

            client = client or OpenAIGenerationClient()
            recovery = recovery or error_recovery

            async def generate_text(simplified: bool) -> str:
                messages = build_caption_messages(
                    tone, platform, niche, goal, post_idea, lang, simplified
                )
                return await client.complete(
                    messages,
                    temperature=0.9,
                    max_tokens=1500 if simplified else 1000,
                    presence_penalty=0.7,
                    frequency_penalty=0.6,
                    top_p=0.95,
                )

            log.info(f"🚀 Generating captions for {platform} / {niche}")
            try:
                outcome = await recovery.run_with_recovery(
                    generate_text, parse_captions, language=lang, operation="captions"
                )
            except GenerationError as e:
                CaptionService._log_generation(
                    db, user.id, request_id, "failed", e.attempts,
                    request_data, error_kind=e.kind,
                    error_message=truncate_string(e.message, 1000),
                )
                log.error(f"❌ Caption generation failed: {e.kind}")
                raise

            UsageService.charge(db, user)
            CaptionService._log_generation(
                db, user.id, request_id, "success", outcome.attempts, request_data,
                error_kind=outcome.error_kinds[-1] if outcome.error_kinds else None,
            )

        captions = outcome.result
        log.info(f"✅ Generated {len(captions)} captions in {outcome.attempts} attempt(s)")
        return {
            "captions": [c.to_dict() for c in captions],
            "requests_remaining": user.requests_remaining,
            "request_id": request_id,
            "attempts": outcome.attempts,
        }
