"""SQLAlchemy models for the LorePin CMS"""
import enum
import uuid

from sqlalchemy import (
    Column, Integer, String, Text, DateTime, Boolean, Float, JSON, Enum, Index
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func

from .database import Base


class ModerationStatus(enum.Enum):
    """Status of a moderation queue item"""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    FLAGGED = "flagged"


class ContentType(enum.Enum):
    """Kinds of content that can enter the moderation queue"""
    CHALLENGE = "challenge"
    SUBMISSION = "submission"
    USER_PROFILE = "user_profile"
    COMMENT = "comment"


class ChallengeStatus(enum.Enum):
    """Lifecycle of a challenge"""
    DRAFT = "draft"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    REJECTED = "rejected"
    ACTIVE = "active"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class ChallengeDifficulty(enum.Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"
    EXPERT = "expert"


def _enum_values(enum_class):
    return [e.value for e in enum_class]


class ModerationQueueItem(Base):
    """Content awaiting or having received a moderation decision"""
    __tablename__ = "moderation_queue"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    content_type = Column(Enum(ContentType, name='contenttype', values_callable=_enum_values), nullable=False)
    content_id = Column(String(255), nullable=False)
    status = Column(
        Enum(ModerationStatus, name='moderationstatus', values_callable=_enum_values),
        nullable=False,
        default=ModerationStatus.PENDING
    )

    firebase_uid = Column(String(128))
    content_data = Column(JSON)
    media_url = Column(String(2048))

    # AI analysis (a serialized ContentAnalysisResult)
    ai_analysis = Column(JSON)
    risk_score = Column(Float, default=0.0)
    flags = Column(JSON)

    # Moderator decision
    moderator_id = Column(String(128))
    rejection_reason = Column(Text)
    notes = Column(Text)
    moderated_at = Column(DateTime(timezone=True))

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (
        Index('idx_moderation_queue_status', 'status'),
        Index('idx_moderation_queue_content', 'content_type', 'content_id'),
        Index('idx_moderation_queue_firebase_uid', 'firebase_uid'),
        Index('idx_moderation_queue_created_at', 'created_at'),
    )


class Challenge(Base):
    """Location-based challenge created by a user or sponsor"""
    __tablename__ = "challenges"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    status = Column(
        Enum(ChallengeStatus, name='challengestatus', values_callable=_enum_values),
        nullable=False,
        default=ChallengeStatus.DRAFT
    )
    difficulty = Column(
        Enum(ChallengeDifficulty, name='challengedifficulty', values_callable=_enum_values),
        nullable=False,
        default=ChallengeDifficulty.BEGINNER
    )

    # Ownership
    firebase_uid = Column(String(128))
    creator_id = Column(String(128))
    sponsor_id = Column(String(128))

    # Free-form content
    location = Column(JSON)
    rules = Column(JSON)
    rewards = Column(JSON)
    media = Column(JSON)
    requirements = Column(JSON)
    tags = Column(JSON)
    regional_policies = Column(JSON)

    start_date = Column(DateTime(timezone=True))
    end_date = Column(DateTime(timezone=True))
    is_featured = Column(Boolean, nullable=False, default=False)
    is_private = Column(Boolean, nullable=False, default=False)

    # Approval
    approved_by = Column(String(128))
    approved_at = Column(DateTime(timezone=True))
    rejection_reason = Column(Text)

    # Counters
    submission_count = Column(Integer, nullable=False, default=0)
    view_count = Column(Integer, nullable=False, default=0)
    participant_count = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (
        Index('idx_challenges_status', 'status'),
        Index('idx_challenges_firebase_uid', 'firebase_uid'),
        Index('idx_challenges_is_featured', 'is_featured'),
        Index('idx_challenges_created_at', 'created_at'),
    )


class RegionalPolicy(Base):
    """Region-specific rules attached to challenges"""
    __tablename__ = "regional_policies"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    region = Column(String(100), nullable=False)
    description = Column(Text)
    rules = Column(JSON, nullable=False)
    created_by = Column(String(128))

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (
        Index('idx_regional_policies_region', 'region'),
    )


class AuditLog(Base):
    """Audit logging for moderation decisions and workflow transitions"""
    __tablename__ = "audit_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    action_type = Column(String(50), nullable=False)  # queue_status, challenge_submit, ...
    entity_type = Column(String(50), nullable=False)  # moderation_queue, challenge
    entity_id = Column(String(255), nullable=False)

    user_id = Column(String(128))

    action_data = Column(JSON, nullable=False)
    previous_state = Column(JSON)
    new_state = Column(JSON)

    correlation_id = Column(String(255))

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index('idx_audit_logs_action_type', 'action_type'),
        Index('idx_audit_logs_entity', 'entity_type', 'entity_id'),
        Index('idx_audit_logs_created_at', 'created_at'),
    )
