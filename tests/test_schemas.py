"""Tests for Pydantic schemas"""
import pytest
from datetime import datetime, timezone
from pydantic import ValidationError
import uuid

from lorepin.schemas import (
    ContentAnalysisResult, TextAnalysisResult, ModerationLabel, VideoAnalysisResult, VideoJobStatus,
    QueueItemCreate, QueueStatusUpdate, QueueItemResponse,
    ChallengeCreate, ChallengeUpdate, ChallengeRejectRequest, ChallengeResponse,
    RegionalPolicyCreate, RegionalPolicyUpdate, ErrorResponse, HealthCheckResponse
)
from lorepin.models import ModerationStatus, ContentType, ChallengeStatus, ChallengeDifficulty


class TestAnalysisSchemas:
    """Tests for analysis result schemas"""

    def test_content_analysis_defaults(self):
        """Test that an empty analysis is unflagged with zero risk"""
        result = ContentAnalysisResult(timestamp="2024-01-01T00:00:00+00:00")

        assert result.risk_score == 0.0
        assert result.flagged is False
        assert result.flagged_categories == []
        assert result.text_analysis is None
        assert result.error is None

    def test_content_analysis_requires_timestamp(self):
        """Test that the timestamp is mandatory"""
        with pytest.raises(ValidationError):
            ContentAnalysisResult()

    def test_scores_are_bounded(self):
        """Test score range validation"""
        with pytest.raises(ValidationError):
            TextAnalysisResult(toxicity_score=1.5)

        with pytest.raises(ValidationError):
            ModerationLabel(name="Nudity", confidence=101.0)

        with pytest.raises(ValidationError):
            ContentAnalysisResult(timestamp="now", risk_score=-0.1)

    def test_video_result_defaults_to_in_progress(self):
        """Test video job defaults"""
        video = VideoAnalysisResult(job_id="job-1")

        assert video.status == VideoJobStatus.IN_PROGRESS
        assert video.moderation_labels == []
        assert video.highest_nsfw_confidence == 0.0

    def test_analysis_survives_json_round_trip(self):
        """Test that a stored analysis document validates back into the model"""
        result = ContentAnalysisResult(
            timestamp="2024-01-01T00:00:00+00:00",
            text_analysis=TextAnalysisResult(flagged=True, toxicity_score=0.9),
            video_analysis=VideoAnalysisResult(job_id="job-1", status=VideoJobStatus.SUCCEEDED),
        )

        restored = ContentAnalysisResult.model_validate(result.model_dump(mode="json"))

        assert restored == result


class TestQueueSchemas:
    """Tests for moderation queue request and response schemas"""

    def test_queue_item_create_accepts_camel_case(self):
        """Test camelCase aliases"""
        request = QueueItemCreate(
            contentType="challenge",
            contentId="abc",
            contentData={"title": "Pier"},
            mediaUrl="https://x.com/a.jpg",
        )

        assert request.content_type == ContentType.CHALLENGE
        assert request.content_id == "abc"
        assert request.content_data == {"title": "Pier"}
        assert request.media_url == "https://x.com/a.jpg"

    def test_queue_item_create_accepts_field_names(self):
        """Test population by field name"""
        request = QueueItemCreate(content_type="comment", content_id="c-1")

        assert request.content_type == ContentType.COMMENT

    def test_queue_item_create_validation(self):
        """Test invalid content types and empty ids"""
        with pytest.raises(ValidationError):
            QueueItemCreate(contentType="podcast", contentId="p-1")

        with pytest.raises(ValidationError):
            QueueItemCreate(contentType="comment", contentId="")

    def test_status_update(self):
        """Test status update parsing"""
        update = QueueStatusUpdate(status="rejected", rejectionReason="Spam")

        assert update.status == ModerationStatus.REJECTED
        assert update.rejection_reason == "Spam"

        with pytest.raises(ValidationError):
            QueueStatusUpdate(status="banana")

    def test_queue_item_response_serializes_enum_values(self):
        """Test that enums are rendered as their values"""
        response = QueueItemResponse(
            id=uuid.uuid4(),
            content_type=ContentType.SUBMISSION,
            content_id="s-1",
            status=ModerationStatus.FLAGGED,
            created_at=datetime.now(timezone.utc),
        )

        data = response.model_dump()
        assert data["content_type"] == "submission"
        assert data["status"] == "flagged"


class TestChallengeSchemas:
    """Tests for challenge schemas"""

    def test_challenge_create_valid(self):
        """Test valid challenge creation request"""
        request = ChallengeCreate(
            title="Sunset at the pier",
            description="Photograph the sunset",
            difficulty="expert",
            tags=["outdoors"],
        )

        assert request.difficulty == ChallengeDifficulty.EXPERT
        assert request.is_private is False

    def test_challenge_create_validation(self):
        """Test required fields"""
        with pytest.raises(ValidationError):
            ChallengeCreate(title="", description="x")

        with pytest.raises(ValidationError):
            ChallengeCreate(title="x")

    @pytest.mark.parametrize("field", ["title", "description", "difficulty", "is_private"])
    def test_challenge_update_rejects_null_required_fields(self, field):
        """Test that non-nullable fields may be omitted but not nulled"""
        with pytest.raises(ValidationError):
            ChallengeUpdate(**{field: None})

    def test_challenge_update_partial(self):
        """Test that unset and nullable fields pass"""
        update = ChallengeUpdate(sponsor_id=None, tags=["night"])

        assert update.model_dump(exclude_unset=True) == {"sponsor_id": None, "tags": ["night"]}

    def test_reject_request_requires_reason(self):
        """Test that a rejection needs a reason"""
        with pytest.raises(ValidationError):
            ChallengeRejectRequest(rejection_reason="")

    def test_challenge_response(self):
        """Test challenge response defaults"""
        response = ChallengeResponse(
            id=uuid.uuid4(),
            title="t",
            description="d",
            status=ChallengeStatus.ACTIVE,
            difficulty=ChallengeDifficulty.BEGINNER,
        )

        assert response.status == "active"
        assert response.is_featured is False
        assert response.submission_count == 0


class TestUtilitySchemas:
    """Tests for shared schemas"""

    def test_regional_policy_requires_rules(self):
        """Test regional policy validation"""
        with pytest.raises(ValidationError):
            RegionalPolicyCreate(name="EU", region="EU")

    def test_regional_policy_update_rejects_null_rules(self):
        """Test that policy rules cannot be nulled"""
        with pytest.raises(ValidationError):
            RegionalPolicyUpdate(rules=None)

        assert RegionalPolicyUpdate(description=None).description is None

    def test_error_response_valid(self):
        """Test error response"""
        response = ErrorResponse(error="NotFoundError", message="Challenge not found", correlation_id="abc")

        assert response.error == "NotFoundError"
        assert response.details is None

    def test_health_check_response_validation(self):
        """Test health status validation"""
        HealthCheckResponse(status="healthy", service="lorepin-cms", timestamp=datetime.now(timezone.utc))

        with pytest.raises(ValidationError):
            HealthCheckResponse(status="sleepy", service="lorepin-cms", timestamp=datetime.now(timezone.utc))
