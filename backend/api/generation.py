# backend/api/generation.py
"""
AI generation API endpoints for the EngagePerfect backend.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from backend.core.logging import get_logger
from backend.core.dependencies import get_current_user
from backend.db.session import get_db
from backend.models.user import User
from backend.schemas.generation import (
    CaptionRequest, CaptionResponse, ContentIdeasRequest, ContentIdeasResponse
)
from backend.services.caption_service import CaptionService
from backend.services.content_ideas_service import ContentIdeasService
from backend.services.openai_client import OpenAIGenerationClient
from backend.utils.error_handling import handle_exception

# Initialize logger
logger = get_logger(__name__)

# Create router
router = APIRouter()

def get_generation_client() -> OpenAIGenerationClient:
    """OpenAI client built from settings"""
    return OpenAIGenerationClient()

@router.post("/captions", response_model=CaptionResponse)
async def generate_captions(
    data: CaptionRequest,
    current_user: User = Depends(get_current_user),
    client: OpenAIGenerationClient = Depends(get_generation_client),
    db: Session = Depends(get_db)
):
    """
    Generate three social media captions.

    Failures carry a localized ``message`` (title, description, action,
    retry_after) for the client to display.
    """
    try:
        return await CaptionService.generate(
            db,
            current_user,
            tone=data.tone,
            platform=data.platform,
            niche=data.niche,
            goal=data.goal,
            post_idea=data.post_idea,
            request_id=data.request_id,
            lang=data.lang,
            client=client
        )
    except Exception as e:
        raise handle_exception(e, "Failed to generate captions")

@router.post("/content-ideas", response_model=ContentIdeasResponse)
async def generate_content_ideas(
    data: ContentIdeasRequest,
    current_user: User = Depends(get_current_user),
    client: OpenAIGenerationClient = Depends(get_generation_client),
    db: Session = Depends(get_db)
):
    """
    Generate social post and blog article ideas. Falls back to templates when
    the model is unavailable.
    """
    try:
        return await ContentIdeasService.generate(
            db,
            current_user,
            niche=data.niche,
            keywords=data.keywords,
            trends=data.trends,
            language=data.language,
            client=client
        )
    except Exception as e:
        raise handle_exception(e, "Failed to generate content ideas")
