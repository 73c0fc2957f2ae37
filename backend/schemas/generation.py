"""
Generation schemas for the EngagePerfect backend.
"""

from pydantic import BaseModel, Field
from typing import Optional, List

class CaptionRequest(BaseModel):
    """Schema for a caption generation request"""
    tone: str = Field(..., description="Caption tone")
    platform: str = Field(..., description="Target platform")
    niche: str = Field(..., description="Industry or topic area")
    goal: str = Field(..., description="What the post should achieve")
    post_idea: Optional[str] = Field(None, description="Specific topic of the post")
    request_id: Optional[str] = Field(None, description="Client request ID for duplicate protection")
    lang: str = Field("en", description="Output language")

class CaptionItem(BaseModel):
    title: str
    caption: str
    cta: str
    hashtags: List[str] = []

class CaptionResponse(BaseModel):
    """Schema for generated captions"""
    captions: List[CaptionItem]
    requests_remaining: int
    request_id: str
    attempts: int = 1

class ContentIdeasRequest(BaseModel):
    """Schema for a content ideas request"""
    niche: str = Field(..., description="Industry or topic area")
    keywords: List[str] = Field(..., description="Keywords to build ideas around")
    trends: Optional[List[str]] = Field(None, description="Trending topics")
    language: str = Field("en", description="Output language (en, fr, es)")

class ContentIdea(BaseModel):
    title: str
    description: str
    target_keywords: List[str] = []
    difficulty: Optional[str] = None
    content_type: str
    estimated_read_time: Optional[str] = None
    engagement_score: Optional[float] = None
    seo_potential: Optional[float] = None

class ContentIdeasResponse(BaseModel):
    """Schema for generated content ideas"""
    social_posts: List[ContentIdea]
    blog_articles: List[ContentIdea]
    used_fallback: bool = False
    requests_remaining: int
    attempts: int = 1
