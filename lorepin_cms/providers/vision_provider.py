"""
Image analysis through Google Cloud Vision
"""

from typing import Dict, List, Optional

from google.cloud import vision

from lorepin.cache import ResultCache
from lorepin.config import Settings
from lorepin.rate_limiter import TokenBucket, create_rate_limiter
from lorepin.schemas import ImageAnalysisResult, ImageLabel, Likelihood, SafeSearch
from .base_provider import AnalysisOutcome, BaseModerationProvider, OutcomeReason, is_valid_url

LIKELIHOOD_SCORES = {
    Likelihood.UNKNOWN: 0.0,
    Likelihood.VERY_UNLIKELY: 0.0,
    Likelihood.UNLIKELY: 0.25,
    Likelihood.POSSIBLE: 0.5,
    Likelihood.LIKELY: 0.75,
    Likelihood.VERY_LIKELY: 1.0,
}

SAFE_SEARCH_FIELDS = ("adult", "spoof", "medical", "violence", "racy")

# URL hint -> (detected objects, labels)
MOCK_PROFILES: Dict[str, tuple] = {
    "person": (
        ["person", "face", "clothing"],
        [("person", 0.98), ("face", 0.95), ("portrait", 0.85)],
    ),
    "nature": (
        ["tree", "sky", "mountain", "water"],
        [("nature", 0.97), ("landscape", 0.94), ("outdoor", 0.92), ("sky", 0.9)],
    ),
    "food": (
        ["plate", "food", "table"],
        [("food", 0.96), ("meal", 0.92), ("cuisine", 0.88), ("delicious", 0.85)],
    ),
    "art": (
        ["painting", "art", "frame"],
        [("art", 0.95), ("painting", 0.93), ("creativity", 0.89), ("design", 0.87)],
    ),
    "unknown": (
        ["object"],
        [("object", 0.8), ("thing", 0.7)],
    ),
}


def to_likelihood(value) -> Likelihood:
    """Normalise a Vision likelihood enum, its name, or None"""
    name = getattr(value, "name", value)
    try:
        return Likelihood(name)
    except ValueError:
        return Likelihood.UNKNOWN


def likelihood_score(value) -> float:
    return LIKELIHOOD_SCORES[to_likelihood(value)]


def guess_image_type(image_url: str) -> str:
    url = image_url.lower()
    if "person" in url or "people" in url:
        return "person"
    if "nature" in url or "landscape" in url:
        return "nature"
    if "food" in url:
        return "food"
    if "art" in url:
        return "art"
    return "unknown"


def mock_image_analysis(image_url: str) -> ImageAnalysisResult:
    """Heuristic analysis from hints in the image URL"""
    image_type = guess_image_type(image_url)
    objects, labels = MOCK_PROFILES[image_type]

    safe_search = SafeSearch(
        adult=Likelihood.VERY_UNLIKELY,
        spoof=Likelihood.VERY_UNLIKELY,
        medical=Likelihood.VERY_UNLIKELY,
        violence=Likelihood.VERY_UNLIKELY,
        racy=Likelihood.POSSIBLE if image_type == "person" else Likelihood.VERY_UNLIKELY,
    )

    return ImageAnalysisResult(
        nsfw_score=0.1 if image_type == "person" else 0.05,
        violence_score=0.02,
        graphic_content_score=0.01,
        detected_objects=list(objects),
        safe_search=safe_search,
        labels=[ImageLabel(name=name, score=score) for name, score in labels],
    )


def score_safe_search(safe_search: SafeSearch) -> Dict[str, float]:
    adult = likelihood_score(safe_search.adult)
    racy = likelihood_score(safe_search.racy)
    violence = likelihood_score(safe_search.violence)
    medical = likelihood_score(safe_search.medical)
    return {
        "nsfw_score": round(0.7 * adult + 0.3 * racy, 4),
        "violence_score": violence,
        "graphic_content_score": round(0.8 * medical + 0.2 * violence, 4),
    }


class VisionProvider(BaseModerationProvider):
    """Image moderation adapter"""

    def __init__(
        self,
        client: Optional[vision.ImageAnnotatorAsyncClient] = None,
        requests_per_minute: int = 60,
        timeout_seconds: float = 10.0,
        cache: Optional[ResultCache] = None,
        cache_ttl_seconds: int = 604800,
        rate_limiter=None
    ):
        super().__init__(
            "vision",
            rate_limiter or TokenBucket(requests_per_minute),
            cache,
            cache_ttl_seconds,
            timeout_seconds,
        )
        self.client = client

        if self.client is None:
            self.logger.warning("Google Cloud Vision not configured, image analysis will use URL heuristics")
        else:
            self.logger.info("Vision provider initialized")

    @classmethod
    def from_settings(cls, settings: Settings, redis_client=None) -> "VisionProvider":
        client = None
        if settings.vision_configured:
            client = vision.ImageAnnotatorAsyncClient.from_service_account_file(
                settings.google_application_credentials
            )
        return cls(
            client=client,
            requests_per_minute=settings.vision_requests_per_minute,
            timeout_seconds=settings.vision_timeout_seconds,
            cache=ResultCache(redis_client, "moderation:image"),
            cache_ttl_seconds=settings.image_cache_ttl_seconds,
            rate_limiter=create_rate_limiter(
                "vision", settings.vision_requests_per_minute, settings.rate_limit_backend, redis_client
            ),
        )

    @property
    def configured(self) -> bool:
        return self.client is not None

    async def analyze_image(self, image_url: str) -> ImageAnalysisResult:
        outcome = await self.analyze_image_with_outcome(image_url)
        return outcome.result

    async def analyze_image_with_outcome(self, image_url: str) -> AnalysisOutcome[ImageAnalysisResult]:
        if not is_valid_url(image_url):
            return self._outcome(ImageAnalysisResult(), OutcomeReason.INVALID_INPUT)

        return await self._run_analysis(
            image_url,
            ImageAnalysisResult,
            lambda: self._call_provider(image_url),
            lambda: mock_image_analysis(image_url),
        )

    async def _call_provider(self, image_url: str) -> ImageAnalysisResult:
        request = vision.AnnotateImageRequest(
            image=vision.Image(source=vision.ImageSource(image_uri=image_url)),
            features=[
                vision.Feature(type_=vision.Feature.Type.SAFE_SEARCH_DETECTION),
                vision.Feature(type_=vision.Feature.Type.LABEL_DETECTION),
                vision.Feature(type_=vision.Feature.Type.OBJECT_LOCALIZATION),
            ],
        )
        response = await self.client.batch_annotate_images(requests=[request])
        if not response.responses:
            raise ValueError("Vision response contained no annotations")
        return self._parse_annotation(response.responses[0])

    def _parse_annotation(self, annotation) -> ImageAnalysisResult:
        error = getattr(annotation, "error", None)
        if error is not None and getattr(error, "message", ""):
            raise ValueError(f"Vision annotation error: {error.message}")

        raw = annotation.safe_search_annotation
        safe_search = SafeSearch(**{
            field: to_likelihood(getattr(raw, field, None)) for field in SAFE_SEARCH_FIELDS
        })

        labels = [
            ImageLabel(name=label.description, score=min(1.0, max(0.0, float(label.score))))
            for label in annotation.label_annotations
        ]

        detected_objects: List[str] = []
        for obj in annotation.localized_object_annotations:
            if obj.name not in detected_objects:
                detected_objects.append(obj.name)

        return ImageAnalysisResult(
            detected_objects=detected_objects,
            safe_search=safe_search,
            labels=labels,
            **score_safe_search(safe_search),
        )
