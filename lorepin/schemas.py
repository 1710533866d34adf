"""Pydantic models for analysis results and API request/response validation"""
import uuid
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any

from pydantic import BaseModel, Field, field_validator

from .models import ModerationStatus, ContentType, ChallengeStatus, ChallengeDifficulty


# Base schemas
class BaseSchema(BaseModel):
    """Base schema with common configuration"""
    class Config:
        from_attributes = True
        use_enum_values = True


class CamelRequest(BaseModel):
    """Request body accepting both camelCase aliases and field names"""
    class Config:
        populate_by_name = True


# Analysis results
class Likelihood(str, Enum):
    """Safe-search likelihood scale used by image annotation providers"""
    UNKNOWN = "UNKNOWN"
    VERY_UNLIKELY = "VERY_UNLIKELY"
    UNLIKELY = "UNLIKELY"
    POSSIBLE = "POSSIBLE"
    LIKELY = "LIKELY"
    VERY_LIKELY = "VERY_LIKELY"


class VideoJobStatus(str, Enum):
    IN_PROGRESS = "IN_PROGRESS"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


class TextCategory(BaseModel):
    name: str
    flagged: bool = False
    score: float = Field(0.0, ge=0.0, le=1.0)


class TextAnalysisResult(BaseModel):
    """Outcome of text moderation"""
    flagged: bool = False
    categories: List[TextCategory] = Field(default_factory=list)
    toxicity_score: float = Field(0.0, ge=0.0, le=1.0)
    profanity_detected: bool = False
    sensitive_topics: List[str] = Field(default_factory=list)


class SafeSearch(BaseModel):
    adult: Likelihood = Likelihood.UNKNOWN
    spoof: Likelihood = Likelihood.UNKNOWN
    medical: Likelihood = Likelihood.UNKNOWN
    violence: Likelihood = Likelihood.UNKNOWN
    racy: Likelihood = Likelihood.UNKNOWN


class ImageLabel(BaseModel):
    name: str
    score: float = Field(0.0, ge=0.0, le=1.0)


class ImageAnalysisResult(BaseModel):
    """Outcome of image analysis"""
    nsfw_score: float = Field(0.0, ge=0.0, le=1.0)
    violence_score: float = Field(0.0, ge=0.0, le=1.0)
    graphic_content_score: float = Field(0.0, ge=0.0, le=1.0)
    detected_objects: List[str] = Field(default_factory=list)
    safe_search: SafeSearch = Field(default_factory=SafeSearch)
    labels: List[ImageLabel] = Field(default_factory=list)


class ModerationLabel(BaseModel):
    name: str
    confidence: float = Field(0.0, ge=0.0, le=100.0)
    parent_name: Optional[str] = None
    timestamp: Optional[int] = None


class VideoAnalysisResult(BaseModel):
    """State of an asynchronous video moderation job"""
    job_id: str
    status: VideoJobStatus = VideoJobStatus.IN_PROGRESS
    moderation_labels: List[ModerationLabel] = Field(default_factory=list)
    nsfw_detected: bool = False
    violence_detected: bool = False
    highest_nsfw_confidence: float = Field(0.0, ge=0.0, le=100.0)
    highest_violence_confidence: float = Field(0.0, ge=0.0, le=100.0)
    error: Optional[str] = None


class ContentAnalysisResult(BaseModel):
    """Unified risk assessment across text, image and video"""
    text_analysis: Optional[TextAnalysisResult] = None
    image_analysis: Optional[ImageAnalysisResult] = None
    video_analysis: Optional[VideoAnalysisResult] = None
    risk_score: float = Field(0.0, ge=0.0, le=1.0)
    flagged: bool = False
    flagged_categories: List[str] = Field(default_factory=list)
    timestamp: str
    analysis_id: Optional[str] = None
    error: Optional[str] = None


class AnalyzeContentRequest(BaseModel):
    """Ad-hoc analysis request"""
    text: Optional[str] = None
    image_url: Optional[str] = None
    video_url: Optional[str] = None


# Moderation queue schemas
class QueueItemCreate(CamelRequest):
    content_type: ContentType = Field(..., alias="contentType")
    content_id: str = Field(..., alias="contentId", min_length=1, max_length=255)
    content_data: Optional[Dict[str, Any]] = Field(None, alias="contentData")
    media_url: Optional[str] = Field(None, alias="mediaUrl", max_length=2048)


class QueueStatusUpdate(CamelRequest):
    status: ModerationStatus
    rejection_reason: Optional[str] = Field(None, alias="rejectionReason")
    notes: Optional[str] = None


class QueueReopenRequest(BaseModel):
    notes: Optional[str] = None


class QueueItemResponse(BaseSchema):
    id: uuid.UUID
    content_type: ContentType
    content_id: str
    status: ModerationStatus
    firebase_uid: Optional[str] = None
    content_data: Optional[Dict[str, Any]] = None
    media_url: Optional[str] = None
    ai_analysis: Optional[Dict[str, Any]] = None
    risk_score: Optional[float] = None
    flags: Optional[List[str]] = None
    moderator_id: Optional[str] = None
    rejection_reason: Optional[str] = None
    notes: Optional[str] = None
    moderated_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class QueueListResponse(BaseModel):
    items: List[QueueItemResponse]
    total: int
    page: int
    limit: int
    pages: int


class ModerationStatsResponse(BaseModel):
    pending: int = 0
    approved: int = 0
    rejected: int = 0
    flagged: int = 0
    total: int = 0


# Challenge schemas
class ChallengeCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1)
    difficulty: Optional[ChallengeDifficulty] = None
    sponsor_id: Optional[str] = None
    location: Optional[Dict[str, Any]] = None
    rules: Optional[Any] = None
    rewards: Optional[Dict[str, Any]] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_private: bool = False
    media: Optional[Dict[str, Any]] = None
    requirements: Optional[List[str]] = None
    tags: Optional[List[str]] = None
    regional_policies: Optional[List[Dict[str, Any]]] = None


class ChallengeUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, min_length=1)
    difficulty: Optional[ChallengeDifficulty] = None
    sponsor_id: Optional[str] = None
    location: Optional[Dict[str, Any]] = None
    rules: Optional[Any] = None
    rewards: Optional[Dict[str, Any]] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_private: Optional[bool] = None
    media: Optional[Dict[str, Any]] = None
    requirements: Optional[List[str]] = None
    tags: Optional[List[str]] = None
    regional_policies: Optional[List[Dict[str, Any]]] = None

    @field_validator("title", "description", "difficulty", "is_private")
    @classmethod
    def reject_null(cls, value):
        if value is None:
            raise ValueError("may be omitted but not null")
        return value


class ChallengeRejectRequest(BaseModel):
    rejection_reason: str = Field(..., min_length=1)


class ChallengeFeatureRequest(BaseModel):
    is_featured: bool


class ChallengeResponse(BaseSchema):
    id: uuid.UUID
    title: str
    description: str
    status: ChallengeStatus
    difficulty: ChallengeDifficulty
    firebase_uid: Optional[str] = None
    creator_id: Optional[str] = None
    sponsor_id: Optional[str] = None
    location: Optional[Dict[str, Any]] = None
    rules: Optional[Any] = None
    rewards: Optional[Dict[str, Any]] = None
    media: Optional[Dict[str, Any]] = None
    requirements: Optional[List[str]] = None
    tags: Optional[List[str]] = None
    regional_policies: Optional[List[Dict[str, Any]]] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_featured: bool = False
    is_private: bool = False
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    submission_count: int = 0
    view_count: int = 0
    participant_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ChallengeListResponse(BaseModel):
    items: List[ChallengeResponse]
    total: int
    page: int
    limit: int
    pages: int


class ChallengeFilters(BaseModel):
    """Filtering parameters for challenge listings"""
    status: Optional[ChallengeStatus] = None
    difficulty: Optional[ChallengeDifficulty] = None
    firebase_uid: Optional[str] = None
    creator_id: Optional[str] = None
    sponsor_id: Optional[str] = None
    is_featured: Optional[bool] = None
    tags: Optional[List[str]] = None
    start_date_from: Optional[datetime] = None
    start_date_to: Optional[datetime] = None
    end_date_from: Optional[datetime] = None
    end_date_to: Optional[datetime] = None
    search: Optional[str] = None


# Regional policy schemas
class RegionalPolicyCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    region: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    rules: Dict[str, Any]


class RegionalPolicyUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    region: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    rules: Optional[Dict[str, Any]] = None

    @field_validator("name", "region", "rules")
    @classmethod
    def reject_null(cls, value):
        if value is None:
            raise ValueError("may be omitted but not null")
        return value


class RegionalPolicyResponse(BaseSchema):
    id: uuid.UUID
    name: str
    region: str
    description: Optional[str] = None
    rules: Dict[str, Any]
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# Response wrappers
class ErrorResponse(BaseModel):
    """Error response schema"""
    error: str
    message: str
    details: Optional[Dict[str, Any]] = None
    correlation_id: Optional[str] = None


class HealthCheckResponse(BaseModel):
    """Health check response schema"""
    status: str = Field(..., pattern="^(healthy|unhealthy)$")
    service: str
    timestamp: datetime
    version: Optional[str] = None
    dependencies: Optional[Dict[str, str]] = None
