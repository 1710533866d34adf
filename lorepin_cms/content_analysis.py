"""
Aggregation of text, image and video analyses into one risk assessment
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from lorepin.config import Settings
from lorepin.schemas import (
    ContentAnalysisResult,
    ImageAnalysisResult,
    TextAnalysisResult,
    VideoAnalysisResult,
    VideoJobStatus,
)
from .providers import (
    ImageModerator,
    OpenAIModerationProvider,
    RekognitionProvider,
    TextModerator,
    VideoModerator,
    VisionProvider,
)

logger = logging.getLogger(__name__)

MODALITY_WEIGHTS = {"text": 0.3, "image": 0.4, "video": 0.5}

RISK_FLAG_THRESHOLD = 0.7
FLAGGED_TEXT_FLOOR = 0.8
IMAGE_FLAG_THRESHOLD = 0.8
IMAGE_CATEGORY_THRESHOLD = 0.7
VIDEO_LABEL_THRESHOLD = 70.0


def text_risk(text: TextAnalysisResult) -> float:
    if text.flagged:
        return max(text.toxicity_score, FLAGGED_TEXT_FLOOR)
    return text.toxicity_score


def image_risk(image: ImageAnalysisResult) -> float:
    return max(image.nsfw_score, image.violence_score, image.graphic_content_score)


def video_risk(video: VideoAnalysisResult) -> float:
    return max(video.highest_nsfw_confidence, video.highest_violence_confidence) / 100


def video_completed(video: Optional[VideoAnalysisResult]) -> bool:
    return video is not None and video.status == VideoJobStatus.SUCCEEDED


def calculate_risk_score(result: ContentAnalysisResult) -> float:
    """Weighted mean over the modalities present, video only once it succeeded"""
    scores = []
    if result.text_analysis is not None:
        scores.append((MODALITY_WEIGHTS["text"], text_risk(result.text_analysis)))
    if result.image_analysis is not None:
        scores.append((MODALITY_WEIGHTS["image"], image_risk(result.image_analysis)))
    if video_completed(result.video_analysis):
        scores.append((MODALITY_WEIGHTS["video"], video_risk(result.video_analysis)))

    total_weight = sum(weight for weight, _ in scores)
    if total_weight == 0:
        return 0.0

    weighted = sum(weight * score for weight, score in scores) / total_weight
    return min(1.0, max(0.0, weighted))


def determine_flagged(result: ContentAnalysisResult, risk_score: float) -> bool:
    if risk_score >= RISK_FLAG_THRESHOLD:
        return True

    text = result.text_analysis
    if text is not None and text.flagged:
        return True

    image = result.image_analysis
    if image is not None and (
        image.nsfw_score >= IMAGE_FLAG_THRESHOLD or image.violence_score >= IMAGE_FLAG_THRESHOLD
    ):
        return True

    video = result.video_analysis
    return video_completed(video) and (video.nsfw_detected or video.violence_detected)


def collect_flagged_categories(result: ContentAnalysisResult) -> List[str]:
    """Category tags from every modality, deduplicated in first-seen order"""
    categories = []

    text = result.text_analysis
    if text is not None:
        if text.flagged:
            categories.extend(f"text:{c.name}" for c in text.categories if c.flagged)
        if text.profanity_detected:
            categories.append("text:profanity")

    image = result.image_analysis
    if image is not None:
        if image.nsfw_score >= IMAGE_CATEGORY_THRESHOLD:
            categories.append("image:nsfw")
        if image.violence_score >= IMAGE_CATEGORY_THRESHOLD:
            categories.append("image:violence")
        if image.graphic_content_score >= IMAGE_CATEGORY_THRESHOLD:
            categories.append("image:graphic")

    video = result.video_analysis
    if video_completed(video):
        if video.nsfw_detected:
            categories.append("video:nsfw")
        if video.violence_detected:
            categories.append("video:violence")
        categories.extend(
            f"video:{label.name}"
            for label in video.moderation_labels
            if label.confidence >= VIDEO_LABEL_THRESHOLD
        )

    return list(dict.fromkeys(categories))


def apply_scores(result: ContentAnalysisResult) -> ContentAnalysisResult:
    """Copy of ``result`` with risk score, flag and categories recomputed"""
    risk_score = calculate_risk_score(result)
    return result.model_copy(update={
        "risk_score": risk_score,
        "flagged": determine_flagged(result, risk_score),
        "flagged_categories": collect_flagged_categories(result),
    })


class ContentAnalysisService:
    """Runs the provider adapters and combines their results"""

    def __init__(
        self,
        text_moderator: TextModerator,
        image_moderator: ImageModerator,
        video_moderator: VideoModerator
    ):
        self.text_moderator = text_moderator
        self.image_moderator = image_moderator
        self.video_moderator = video_moderator

    @classmethod
    def from_settings(cls, settings: Settings, redis_client=None) -> "ContentAnalysisService":
        return cls(
            OpenAIModerationProvider.from_settings(settings, redis_client),
            VisionProvider.from_settings(settings, redis_client),
            RekognitionProvider.from_settings(settings, redis_client),
        )

    async def analyze_content(
        self,
        text: Optional[str] = None,
        image_url: Optional[str] = None,
        video_url: Optional[str] = None
    ) -> ContentAnalysisResult:
        """Analyse whichever inputs are present

        Text and image are awaited in turn. For video only the job
        submission is awaited and the result stays IN_PROGRESS until
        polled. A text failure abandons the whole analysis; image and
        video failures are contained.
        """
        analysis_id = uuid.uuid4().hex
        timestamp = datetime.now(timezone.utc).isoformat()
        result = ContentAnalysisResult(timestamp=timestamp, analysis_id=analysis_id)

        logger.info(f"Starting content analysis {analysis_id}")

        try:
            if text:
                result.text_analysis = await self.text_moderator.analyze_text(text)
        except Exception as e:
            logger.error(f"Text analysis failed, abandoning analysis {analysis_id}: {e}")
            return ContentAnalysisResult(
                timestamp=timestamp,
                analysis_id=analysis_id,
                error=f"Analysis error: {e}",
            )

        if image_url:
            try:
                result.image_analysis = await self.image_moderator.analyze_image(image_url)
            except Exception as e:
                logger.error(f"Image analysis failed for {analysis_id}: {e}")

        if video_url:
            try:
                job_id = await self.video_moderator.start_job(video_url)
                result.video_analysis = VideoAnalysisResult(job_id=job_id, status=VideoJobStatus.IN_PROGRESS)
                logger.info(f"Video analysis job {job_id} started for {analysis_id}")
            except Exception as e:
                logger.error(f"Error starting video analysis for {analysis_id}: {e}")
                result.video_analysis = VideoAnalysisResult(
                    job_id="error", status=VideoJobStatus.FAILED, error=str(e)
                )

        result = apply_scores(result)
        logger.info(
            f"Content analysis {analysis_id} complete",
            extra={"analysis_id": analysis_id, "risk_score": result.risk_score, "flagged": result.flagged}
        )
        return result

    def update_with_video_results(
        self,
        existing: ContentAnalysisResult,
        video: VideoAnalysisResult
    ) -> ContentAnalysisResult:
        """Merge a polled video result and rescore from scratch; no side effects"""
        return apply_scores(existing.model_copy(update={"video_analysis": video}))

    async def get_video_analysis_results(self, job_id: str) -> VideoAnalysisResult:
        try:
            return await self.video_moderator.poll_job(job_id)
        except Exception as e:
            logger.error(f"Error polling video job {job_id}: {e}")
            return VideoAnalysisResult(job_id=job_id, status=VideoJobStatus.FAILED, error=str(e))
