"""
Base provider class for content moderation services
"""

import asyncio
import logging
from abc import ABC
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Generic, Optional, Protocol, Type, TypeVar
from urllib.parse import urlparse

from prometheus_client import Counter
from pydantic import ValidationError

from lorepin.cache import ResultCache
from lorepin.schemas import TextAnalysisResult, ImageAnalysisResult, VideoAnalysisResult

logger = logging.getLogger(__name__)

PROVIDER_CALLS = Counter(
    'lorepin_cms_provider_calls_total', 'Provider analysis calls', ['provider', 'outcome']
)

VALID_URL_SCHEMES = {"http", "https", "s3", "gs"}

ResultT = TypeVar("ResultT")


class OutcomeReason(str, Enum):
    """Why an adapter returned the result it did"""
    OK = "ok"
    CACHED = "cached"
    INVALID_INPUT = "invalid_input"
    NOT_CONFIGURED = "not_configured"
    RATE_LIMITED = "rate_limited"
    PROVIDER_ERROR = "provider_error"


@dataclass
class AnalysisOutcome(Generic[ResultT]):
    result: ResultT
    reason: OutcomeReason

    @property
    def is_fallback(self) -> bool:
        return self.reason not in (OutcomeReason.OK, OutcomeReason.CACHED)


class TextModerator(Protocol):
    async def analyze_text(self, text: str) -> TextAnalysisResult: ...


class ImageModerator(Protocol):
    async def analyze_image(self, image_url: str) -> ImageAnalysisResult: ...


class VideoModerator(Protocol):
    async def start_job(self, video_url: str) -> str: ...

    async def poll_job(self, job_id: str) -> VideoAnalysisResult: ...


def is_valid_url(url: Optional[str]) -> bool:
    """Syntactic URL check used before any provider work"""
    if not url or not isinstance(url, str):
        return False
    try:
        parsed = urlparse(url.strip())
    except ValueError:
        return False
    return parsed.scheme in VALID_URL_SCHEMES and bool(parsed.netloc)


class BaseModerationProvider(ABC):
    """Shared cache / rate-limit / fallback pipeline for analysis adapters

    Subclasses decide whether they are configured and supply the provider
    call and the heuristic fallback; this class never lets a provider
    failure escape.
    """

    def __init__(
        self,
        name: str,
        rate_limiter,
        cache: Optional[ResultCache],
        cache_ttl_seconds: int,
        timeout_seconds: float
    ):
        self.name = name
        self.logger = logging.getLogger(f"{__name__}.{name}")
        self.rate_limiter = rate_limiter
        self.cache = cache or ResultCache(None, name)
        self.cache_ttl_seconds = cache_ttl_seconds
        self.timeout_seconds = timeout_seconds

    @property
    def configured(self) -> bool:
        return False

    def _outcome(self, result: ResultT, reason: OutcomeReason) -> AnalysisOutcome[ResultT]:
        PROVIDER_CALLS.labels(self.name, reason.value).inc()
        return AnalysisOutcome(result=result, reason=reason)

    async def _run_analysis(
        self,
        raw_input: str,
        result_model: Type[ResultT],
        provider_call: Callable[[], Awaitable[ResultT]],
        fallback: Callable[[], ResultT]
    ) -> AnalysisOutcome[ResultT]:
        cached = await self.cache.get_json(raw_input)
        if cached is not None:
            try:
                return self._outcome(result_model.model_validate(cached), OutcomeReason.CACHED)
            except ValidationError:
                self.logger.warning(f"Ignoring cached {self.name} result with unexpected shape")

        if not self.configured:
            return self._outcome(fallback(), OutcomeReason.NOT_CONFIGURED)

        if not await self.rate_limiter.acquire():
            self.logger.warning(f"{self.name} rate limit exceeded, using fallback analysis")
            return self._outcome(fallback(), OutcomeReason.RATE_LIMITED)

        try:
            result = await asyncio.wait_for(provider_call(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            self.logger.error(f"{self.name} call timed out after {self.timeout_seconds}s")
            return self._outcome(fallback(), OutcomeReason.PROVIDER_ERROR)
        except Exception as e:
            self.logger.error(f"{self.name} call failed: {e}")
            return self._outcome(fallback(), OutcomeReason.PROVIDER_ERROR)

        await self.cache.set_json(raw_input, result.model_dump(mode="json"), self.cache_ttl_seconds)
        return self._outcome(result, OutcomeReason.OK)

    def get_provider_info(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "configured": self.configured,
            "cache_enabled": self.cache.enabled,
            "timeout_seconds": self.timeout_seconds,
        }
