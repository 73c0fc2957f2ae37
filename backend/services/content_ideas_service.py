# backend/services/content_ideas_service.py
"""
Content idea generation (social posts and blog articles).

The model answers in JSON. When recovery falls back to templates (service
overloaded, JSON unrepairable), built-in ideas for the niche are returned
and the request is not charged.
"""

import copy
import json
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from backend.core.exceptions import GenerationError, ValidationError
from backend.core.logging import get_context_logger
from backend.models.generation import GenerationLog
from backend.models.user import User
from backend.services.openai_client import OpenAIGenerationClient
from backend.services.usage_service import UsageService
from backend.utils.error_recovery import ErrorKind, ErrorRecoverySystem, error_recovery
from backend.utils.helpers import generate_request_id, truncate_string

SOCIAL_POST = "social_post"
BLOG_ARTICLE = "blog_article"
MAX_IDEAS_PER_TYPE = 3

LANGUAGE_PROMPTS = {
    "en": {
        "system": "You are a professional content strategist specializing in creating engaging "
                  "content ideas for social media and blogs.",
        "user": "Generate 6 engaging content ideas for the {niche} industry based on keywords: "
                "{keywords} and trending topics: {trends}.",
    },
    "fr": {
        "system": "Vous êtes un stratège de contenu professionnel spécialisé dans la création "
                  "d'idées de contenu engageantes pour les réseaux sociaux et les blogs.",
        "user": "Générez 6 idées de contenu engageantes pour l'industrie {niche} basées sur les "
                "mots-clés: {keywords} et les sujets tendance: {trends}.",
    },
    "es": {
        "system": "Eres un estratega de contenido profesional especializado en crear ideas de "
                  "contenido atractivo para redes sociales y blogs.",
        "user": "Genera 6 ideas de contenido atractivo para la industria {niche} basadas en "
                "palabras clave: {keywords} y temas de tendencia: {trends}.",
    },
}

RESPONSE_SCHEMA_INSTRUCTION = (
    'Return a JSON object {"social_posts": [...], "blog_articles": [...]} with 3 ideas each. '
    "Every idea has: title, description, target_keywords (list of strings), "
    "difficulty (beginner|intermediate|advanced), estimated_read_time, "
    "engagement_score (0-100), seo_potential (0-100)."
)

FALLBACK_TEMPLATES = {
    SOCIAL_POST: [
        {
            "title": "5 Quick Tips for {niche} Success",
            "description": "Share actionable tips that your audience can implement immediately",
            "target_keywords": ["tips", "success", "{niche}"],
            "difficulty": "beginner",
            "estimated_read_time": "2 min",
            "engagement_score": 85,
            "seo_potential": 70,
        },
        {
            "title": "Behind the Scenes: {niche} Insights",
            "description": "Give your audience a peek into your {niche} process and expertise",
            "target_keywords": ["behind the scenes", "insights", "{niche}"],
            "difficulty": "intermediate",
            "estimated_read_time": "3 min",
            "engagement_score": 90,
            "seo_potential": 65,
        },
        {
            "title": "Common {niche} Mistakes to Avoid",
            "description": "Help your audience learn from common pitfalls in the {niche} industry",
            "target_keywords": ["mistakes", "avoid", "{niche}"],
            "difficulty": "intermediate",
            "estimated_read_time": "4 min",
            "engagement_score": 88,
            "seo_potential": 75,
        },
    ],
    BLOG_ARTICLE: [
        {
            "title": "The Complete Guide to {niche} Best Practices",
            "description": "A comprehensive guide covering essential strategies and techniques "
                           "for {niche} success",
            "target_keywords": ["guide", "best practices", "{niche}"],
            "difficulty": "advanced",
            "estimated_read_time": "8 min",
            "engagement_score": 92,
            "seo_potential": 90,
        },
        {
            "title": "How to Measure Success in {niche}: Key Metrics Explained",
            "description": "Learn the most important metrics to track and optimize your "
                           "{niche} performance",
            "target_keywords": ["metrics", "measure", "success", "{niche}"],
            "difficulty": "intermediate",
            "estimated_read_time": "6 min",
            "engagement_score": 87,
            "seo_potential": 85,
        },
        {
            "title": "The Future of {niche}: Trends and Predictions",
            "description": "Explore emerging trends and future developments in the {niche} industry",
            "target_keywords": ["future", "trends", "predictions", "{niche}"],
            "difficulty": "advanced",
            "estimated_read_time": "10 min",
            "engagement_score": 95,
            "seo_potential": 88,
        },
    ],
}


def fallback_ideas(niche: str) -> Dict[str, List[Dict[str, Any]]]:
    """Template ideas with ``{niche}`` filled in"""
    result = {}
    for content_type, templates in FALLBACK_TEMPLATES.items():
        ideas = []
        for template in templates:
            idea = copy.deepcopy(template)
            idea["title"] = idea["title"].replace("{niche}", niche)
            idea["description"] = idea["description"].replace("{niche}", niche)
            idea["target_keywords"] = [k.replace("{niche}", niche) for k in idea["target_keywords"]]
            idea["content_type"] = content_type
            ideas.append(idea)
        result[content_type] = ideas
    return result


def _normalize_idea(raw: Dict[str, Any], content_type: str) -> Dict[str, Any]:
    keywords = raw.get("target_keywords") or raw.get("targetKeywords") or []
    if isinstance(keywords, str):
        keywords = [k.strip() for k in keywords.split(",") if k.strip()]
    return {
        "title": str(raw.get("title", "")).strip(),
        "description": str(raw.get("description", "")).strip(),
        "target_keywords": list(keywords),
        "difficulty": raw.get("difficulty", "intermediate"),
        "content_type": content_type,
        "estimated_read_time": raw.get("estimated_read_time") or raw.get("estimatedReadTime"),
        "engagement_score": raw.get("engagement_score", raw.get("engagementScore")),
        "seo_potential": raw.get("seo_potential", raw.get("seoPotential")),
    }


def parse_content_ideas(text: str) -> Dict[str, List[Dict[str, Any]]]:
    """
    Parse the model's JSON answer into social post and blog article ideas.

    Raises:
        GenerationError: invalid_json when the text is not JSON or holds no ideas
    """
    try:
        parsed = json.loads(text)
    except ValueError as e:
        raise GenerationError(ErrorKind.INVALID_JSON.value, str(e), raw_output=text) from e

    social: List[Any] = []
    blog: List[Any] = []
    if isinstance(parsed, dict):
        social = parsed.get("social_posts") or parsed.get("socialPosts") or []
        blog = parsed.get("blog_articles") or parsed.get("blogArticles") or []
    elif isinstance(parsed, list):
        social = [i for i in parsed if isinstance(i, dict) and i.get("content_type") == SOCIAL_POST]
        blog = [i for i in parsed if isinstance(i, dict) and i.get("content_type") == BLOG_ARTICLE]

    ideas = {
        SOCIAL_POST: [_normalize_idea(i, SOCIAL_POST) for i in social if isinstance(i, dict)],
        BLOG_ARTICLE: [_normalize_idea(i, BLOG_ARTICLE) for i in blog if isinstance(i, dict)],
    }
    ideas = {k: [i for i in v if i["title"]][:MAX_IDEAS_PER_TYPE] for k, v in ideas.items()}

    if not ideas[SOCIAL_POST] and not ideas[BLOG_ARTICLE]:
        raise GenerationError(ErrorKind.INVALID_JSON.value, "No content ideas in response", raw_output=text)
    return ideas


class ContentIdeasService:
    """Content idea generation for authenticated users"""

    @staticmethod
    async def generate(
        db: Session,
        user: User,
        niche: str,
        keywords: List[str],
        trends: Optional[List[str]] = None,
        language: str = "en",
        client: Optional[OpenAIGenerationClient] = None,
        recovery: Optional[ErrorRecoverySystem] = None,
    ) -> Dict[str, Any]:
        """
        Generate social post and blog article ideas.

        Returns:
            {"social_posts", "blog_articles", "used_fallback", "requests_remaining", "attempts"}

        Raises:
            ValidationError: Missing niche or keywords
            QuotaExceededError: No requests left
            GenerationError: Fatal generation failure
        """
        keywords = [k.strip() for k in (keywords or []) if k and k.strip()]
        if not niche or not niche.strip() or not keywords:
            raise ValidationError("Niche and keywords are required")
        niche = niche.strip()
        language = (language or "en").lower()

        UsageService.check_quota(user)

        request_id = generate_request_id(user.id, "ideas", niche)
        log = get_context_logger(__name__, {"user": user.id, "request": request_id})
        client = client or OpenAIGenerationClient()
        recovery = recovery or error_recovery

        prompts = LANGUAGE_PROMPTS.get(language, LANGUAGE_PROMPTS["en"])
        user_prompt = prompts["user"].format(
            niche=niche,
            keywords=", ".join(keywords),
            trends=", ".join(trends) if trends else "current industry trends",
        )

        async def generate_text(simplified: bool) -> str:
            return await client.complete(
                [
                    {"role": "system", "content": prompts["system"]},
                    {"role": "user", "content": f"{user_prompt}\n{RESPONSE_SCHEMA_INSTRUCTION}"},
                ],
                temperature=0.7,
                max_tokens=2500 if simplified else 2000,
                response_format={"type": "json_object"},
            )

        request_data = {"niche": niche, "keywords": keywords, "trends": trends, "language": language}
        log.info(f"🚀 Generating content ideas for {niche}")
        try:
            outcome = await recovery.run_with_recovery(
                generate_text,
                parse_content_ideas,
                fallback=lambda: fallback_ideas(niche),
                language=language,
                operation="content_ideas",
            )
        except GenerationError as e:
            db.add(GenerationLog(
                user_id=user.id, request_id=request_id, kind="content_ideas", status="failed",
                error_kind=e.kind, attempts=e.attempts, request_data=request_data,
                error_message=truncate_string(e.message, 1000),
            ))
            db.commit()
            raise

        if outcome.used_fallback:
            log.warning("⚠️ Returned template content ideas")
        else:
            UsageService.charge(db, user)

        db.add(GenerationLog(
            user_id=user.id,
            request_id=request_id,
            kind="content_ideas",
            status="fallback" if outcome.used_fallback else "success",
            error_kind=outcome.error_kinds[-1] if outcome.error_kinds else None,
            attempts=outcome.attempts,
            request_data=request_data,
        ))
        db.commit()

        ideas = outcome.result
        log.info(
            f"✅ Content ideas ready: {len(ideas[SOCIAL_POST])} social, {len(ideas[BLOG_ARTICLE])} blog"
        )
        return {
            "social_posts": ideas[SOCIAL_POST],
            "blog_articles": ideas[BLOG_ARTICLE],
            "used_fallback": outcome.used_fallback,
            "requests_remaining": user.requests_remaining,
            "attempts": outcome.attempts,
        }
