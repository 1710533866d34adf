"""
Video moderation through AWS Rekognition's asynchronous content moderation jobs
"""

import asyncio
import uuid
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlparse

import aioboto3
from pydantic import ValidationError

from lorepin.cache import ResultCache
from lorepin.config import Settings
from lorepin.rate_limiter import TokenBucket, create_rate_limiter
from lorepin.schemas import ModerationLabel, VideoAnalysisResult, VideoJobStatus
from .base_provider import AnalysisOutcome, BaseModerationProvider, OutcomeReason, is_valid_url

INVALID_URL_JOB_ID = "invalid-url"
RATE_LIMITED_JOB_ID = "rate-limited"
ERROR_JOB_ID = "error-job-id"
MOCK_JOB_PREFIX = "mock-"

SENTINEL_ERRORS = {
    INVALID_URL_JOB_ID: "Invalid video URL",
    RATE_LIMITED_JOB_ID: "Rate limit exceeded when submitting video for moderation",
    ERROR_JOB_ID: "Video moderation job could not be started",
}

NSFW_LABELS = {
    "Explicit Nudity",
    "Nudity",
    "Graphic Male Nudity",
    "Graphic Female Nudity",
    "Sexual Activity",
    "Illustrated Nudity",
    "Adult Toys",
}
VIOLENCE_LABELS = {
    "Violence",
    "Graphic Violence Or Gore",
    "Physical Violence",
    "Weapon Violence",
    "Weapons",
    "Self Injury",
}

MAX_RESULT_PAGES = 10


def is_mock_job(job_id: str) -> bool:
    return job_id.startswith(MOCK_JOB_PREFIX)


def failed_result(job_id: str, error: str) -> VideoAnalysisResult:
    return VideoAnalysisResult(job_id=job_id or "", status=VideoJobStatus.FAILED, error=error)


def summarize_labels(job_id: str, labels: List[ModerationLabel]) -> VideoAnalysisResult:
    """Completed job result with nudity and violence families rolled up"""
    nsfw = [label.confidence for label in labels if label.name in NSFW_LABELS]
    violence = [label.confidence for label in labels if label.name in VIOLENCE_LABELS]
    return VideoAnalysisResult(
        job_id=job_id,
        status=VideoJobStatus.SUCCEEDED,
        moderation_labels=labels,
        nsfw_detected=bool(nsfw),
        violence_detected=bool(violence),
        highest_nsfw_confidence=max(nsfw, default=0.0),
        highest_violence_confidence=max(violence, default=0.0),
    )


def resolve_s3_location(video_url: str, default_bucket: Optional[str] = None) -> Tuple[str, str]:
    """Bucket and key for a video URL

    Accepts s3://bucket/key, virtual-hosted and path-style S3 URLs, and
    any other URL whose path is a key in the default bucket.
    """
    parsed = urlparse(video_url)
    host = parsed.netloc.lower()
    path = parsed.path.lstrip("/")

    if parsed.scheme == "s3":
        bucket, key = parsed.netloc, path
    elif host.endswith(".amazonaws.com") and host.startswith(("s3.", "s3-")):
        bucket, _, key = path.partition("/")
    elif host.endswith(".amazonaws.com") and ".s3" in host:
        bucket, key = host.split(".s3", 1)[0], path
    elif default_bucket:
        bucket, key = default_bucket, path
    else:
        raise ValueError(f"Cannot determine S3 location for {video_url}")

    if not bucket or not key:
        raise ValueError(f"Cannot determine S3 location for {video_url}")
    return bucket, key


class RekognitionProvider(BaseModerationProvider):
    """Video moderation adapter

    ``start_job`` returns a job id immediately; ``poll_job`` may be called
    any number of times for the same id.
    """

    def __init__(
        self,
        session: Optional[aioboto3.Session] = None,
        s3_bucket: Optional[str] = None,
        min_confidence: float = 50.0,
        requests_per_minute: int = 20,
        timeout_seconds: float = 10.0,
        cache: Optional[ResultCache] = None,
        cache_ttl_seconds: int = 604800,
        rate_limiter=None
    ):
        super().__init__(
            "rekognition",
            rate_limiter or TokenBucket(requests_per_minute),
            cache,
            cache_ttl_seconds,
            timeout_seconds,
        )
        self.session = session
        self.s3_bucket = s3_bucket
        self.min_confidence = min_confidence

        if self.session is None:
            self.logger.warning("AWS credentials not configured, video moderation will use mock jobs")
        else:
            self.logger.info("Rekognition provider initialized")

    @classmethod
    def from_settings(cls, settings: Settings, redis_client=None) -> "RekognitionProvider":
        session = None
        if settings.aws_configured:
            session = aioboto3.Session(
                aws_access_key_id=settings.aws_access_key_id,
                aws_secret_access_key=settings.aws_secret_access_key,
                region_name=settings.aws_region,
            )
        return cls(
            session=session,
            s3_bucket=settings.rekognition_s3_bucket,
            min_confidence=settings.rekognition_min_confidence,
            requests_per_minute=settings.rekognition_requests_per_minute,
            timeout_seconds=settings.rekognition_timeout_seconds,
            cache=ResultCache(redis_client, "moderation:video"),
            cache_ttl_seconds=settings.video_cache_ttl_seconds,
            rate_limiter=create_rate_limiter(
                "rekognition", settings.rekognition_requests_per_minute,
                settings.rate_limit_backend, redis_client
            ),
        )

    @property
    def configured(self) -> bool:
        return self.session is not None

    async def start_job(self, video_url: str) -> str:
        outcome = await self.start_job_with_outcome(video_url)
        return outcome.result

    async def start_job_with_outcome(self, video_url: str) -> AnalysisOutcome[str]:
        if not is_valid_url(video_url):
            self.logger.warning(f"Invalid video URL provided: {video_url}")
            return self._outcome(INVALID_URL_JOB_ID, OutcomeReason.INVALID_INPUT)

        if not self.configured:
            return self._outcome(f"{MOCK_JOB_PREFIX}{uuid.uuid4().hex}", OutcomeReason.NOT_CONFIGURED)

        if not await self.rate_limiter.acquire():
            self.logger.warning("Rekognition rate limit exceeded, video job not started")
            return self._outcome(RATE_LIMITED_JOB_ID, OutcomeReason.RATE_LIMITED)

        try:
            job_id = await asyncio.wait_for(self._start_moderation(video_url), timeout=self.timeout_seconds)
        except Exception as e:
            self.logger.error(f"Error starting video moderation job: {e}")
            return self._outcome(ERROR_JOB_ID, OutcomeReason.PROVIDER_ERROR)

        self.logger.info(f"Started video moderation job {job_id}")
        return self._outcome(job_id, OutcomeReason.OK)

    async def poll_job(self, job_id: str) -> VideoAnalysisResult:
        outcome = await self.poll_job_with_outcome(job_id)
        return outcome.result

    async def poll_job_with_outcome(self, job_id: str) -> AnalysisOutcome[VideoAnalysisResult]:
        if not job_id or job_id in SENTINEL_ERRORS:
            error = SENTINEL_ERRORS.get(job_id, "Missing video job id")
            return self._outcome(failed_result(job_id, error), OutcomeReason.INVALID_INPUT)

        if is_mock_job(job_id):
            return self._outcome(summarize_labels(job_id, []), OutcomeReason.NOT_CONFIGURED)

        cached = await self.cache.get_json(job_id)
        if cached is not None:
            try:
                return self._outcome(VideoAnalysisResult.model_validate(cached), OutcomeReason.CACHED)
            except ValidationError:
                self.logger.warning(f"Ignoring cached video result with unexpected shape for {job_id}")

        if not self.configured:
            return self._outcome(
                failed_result(job_id, "Video moderation provider not configured"),
                OutcomeReason.NOT_CONFIGURED,
            )

        if not await self.rate_limiter.acquire():
            # Job keeps running provider-side, report it as still in progress
            self.logger.warning(f"Rekognition rate limit exceeded while polling {job_id}")
            return self._outcome(VideoAnalysisResult(job_id=job_id), OutcomeReason.RATE_LIMITED)

        try:
            result = await asyncio.wait_for(self._get_moderation(job_id), timeout=self.timeout_seconds)
        except Exception as e:
            self.logger.error(f"Error getting video moderation results for {job_id}: {e}")
            return self._outcome(failed_result(job_id, str(e) or type(e).__name__), OutcomeReason.PROVIDER_ERROR)

        if result.status != VideoJobStatus.IN_PROGRESS:
            await self.cache.set_json(job_id, result.model_dump(mode="json"), self.cache_ttl_seconds)
        return self._outcome(result, OutcomeReason.OK)

    async def _start_moderation(self, video_url: str) -> str:
        bucket, key = resolve_s3_location(video_url, self.s3_bucket)
        async with self.session.client("rekognition") as client:
            response = await client.start_content_moderation(
                Video={"S3Object": {"Bucket": bucket, "Name": key}},
                MinConfidence=self.min_confidence,
            )
        return response["JobId"]

    async def _get_moderation(self, job_id: str) -> VideoAnalysisResult:
        labels: List[ModerationLabel] = []
        params: Dict[str, Any] = {"JobId": job_id, "SortBy": "TIMESTAMP"}

        async with self.session.client("rekognition") as client:
            for _ in range(MAX_RESULT_PAGES):
                response = await client.get_content_moderation(**params)
                status = response.get("JobStatus", "IN_PROGRESS")

                if status == "IN_PROGRESS":
                    return VideoAnalysisResult(job_id=job_id)
                if status == "FAILED":
                    return failed_result(job_id, response.get("StatusMessage") or "Video moderation job failed")

                labels.extend(self._parse_label(item) for item in response.get("ModerationLabels", []))

                next_token = response.get("NextToken")
                if not next_token:
                    break
                params["NextToken"] = next_token

        return summarize_labels(job_id, labels)

    @staticmethod
    def _parse_label(item: Dict[str, Any]) -> ModerationLabel:
        label = item.get("ModerationLabel", {})
        return ModerationLabel(
            name=label.get("Name", ""),
            confidence=min(100.0, max(0.0, float(label.get("Confidence", 0.0)))),
            parent_name=label.get("ParentName") or None,
            timestamp=item.get("Timestamp"),
        )
