"""
Text moderation through the OpenAI moderation endpoint, with a keyword
heuristic used whenever the endpoint cannot be reached
"""

import re
from typing import Any, Dict, List, Optional

import openai

from lorepin.cache import ResultCache
from lorepin.config import Settings
from lorepin.rate_limiter import TokenBucket, create_rate_limiter
from lorepin.schemas import TextAnalysisResult, TextCategory
from .base_provider import AnalysisOutcome, BaseModerationProvider, OutcomeReason

MIN_TEXT_LENGTH = 3

NEGATIVE_WORDS = {
    "hate", "hateful", "stupid", "idiot", "dumb", "ugly", "loser", "pathetic",
    "worthless", "disgusting", "awful", "terrible", "useless", "moron",
}
AGGRESSIVE_WORDS = {
    "kill", "destroy", "attack", "hurt", "punch", "beat", "fight", "die",
    "smash", "stab", "shoot", "murder",
}
PROFANITY_WORDS = {
    "fuck", "fucking", "shit", "bitch", "asshole", "bastard", "cunt", "dick",
    "motherfucker", "bullshit",
}

# Topic name -> word-prefix triggers
SENSITIVE_KEYWORDS = {
    "politics": ("politic", "election", "democrat", "republican", "government", "president"),
    "religion": ("religio", "god", "church", "mosque", "temple", "faith"),
    "race/ethnicity": ("race", "racial", "ethnic", "minority", "diversity"),
}

# Flagged category fragment -> topic
CATEGORY_TOPICS = (
    ("hate", "hate speech"),
    ("violence", "violence"),
    ("sexual", "sexual content"),
    ("self-harm", "self-harm"),
    ("self_harm", "self-harm"),
)

SELF_HARM_PHRASES = ("kill myself", "hurt myself", "end my life", "suicide")

_WORD_RE = re.compile(r"[a-z']+")


def _tokens(text: str) -> set:
    return set(_WORD_RE.findall(text.lower()))


def _as_dict(value: Any) -> Dict[str, Any]:
    if isinstance(value, dict):
        data = value
    else:
        data = value.model_dump(by_alias=True)
    return {name: item for name, item in data.items() if item is not None}


def detect_sensitive_topics(text: str, categories: List[TextCategory]) -> List[str]:
    """Keyword topics first, then topics implied by flagged categories"""
    lowered = text.lower()
    topics: List[str] = []

    def add(topic):
        if topic not in topics:
            topics.append(topic)

    for topic, triggers in SENSITIVE_KEYWORDS.items():
        pattern = r"\b(" + "|".join(re.escape(t) for t in triggers) + r")"
        if re.search(pattern, lowered):
            add(topic)

    for category in categories:
        if not category.flagged:
            continue
        name = category.name.lower()
        for fragment, topic in CATEGORY_TOPICS:
            if fragment in name:
                add(topic)

    if any(phrase in lowered for phrase in SELF_HARM_PHRASES):
        add("self-harm")

    return topics


def contains_profanity(text: str) -> bool:
    return bool(_tokens(text) & PROFANITY_WORDS)


def keyword_toxicity(text: str) -> float:
    words = _tokens(text)
    score = 0.1 * len(words & NEGATIVE_WORDS) + 0.15 * len(words & AGGRESSIVE_WORDS)
    return round(min(1.0, score), 4)


def fallback_text_analysis(text: str) -> TextAnalysisResult:
    """Local heuristic analysis used when the provider is unavailable"""
    lowered = text.lower()
    profanity = contains_profanity(text)
    toxicity = keyword_toxicity(text)

    categories = []
    if profanity:
        categories.append(TextCategory(name="profanity", flagged=True, score=0.85))
    if "hate" in lowered or "discriminat" in lowered:
        categories.append(TextCategory(name="hate", flagged=toxicity > 0.7, score=toxicity))
    if "threat" in lowered or "harm" in lowered:
        categories.append(TextCategory(
            name="harassment", flagged=toxicity > 0.6, score=round(toxicity * 0.9, 4)
        ))

    return TextAnalysisResult(
        flagged=profanity or any(c.flagged for c in categories),
        categories=categories,
        toxicity_score=toxicity,
        profanity_detected=profanity,
        sensitive_topics=detect_sensitive_topics(text, categories),
    )


class OpenAIModerationProvider(BaseModerationProvider):
    """Text moderation adapter"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "omni-moderation-latest",
        requests_per_minute: int = 60,
        timeout_seconds: float = 5.0,
        cache: Optional[ResultCache] = None,
        cache_ttl_seconds: int = 86400,
        rate_limiter=None,
        client: Optional[openai.AsyncOpenAI] = None
    ):
        super().__init__(
            "openai",
            rate_limiter or TokenBucket(requests_per_minute),
            cache,
            cache_ttl_seconds,
            timeout_seconds,
        )
        self.model = model
        if client is None and api_key:
            client = openai.AsyncOpenAI(api_key=api_key, timeout=timeout_seconds, max_retries=0)
        self.client = client

        if self.client is None:
            self.logger.warning("OpenAI API key not configured, text moderation will use keyword fallback")
        else:
            self.logger.info("OpenAI moderation provider initialized")

    @classmethod
    def from_settings(cls, settings: Settings, redis_client=None) -> "OpenAIModerationProvider":
        return cls(
            api_key=settings.openai_api_key,
            model=settings.openai_moderation_model,
            requests_per_minute=settings.openai_requests_per_minute,
            timeout_seconds=settings.openai_timeout_seconds,
            cache=ResultCache(redis_client, "moderation:text"),
            cache_ttl_seconds=settings.text_cache_ttl_seconds,
            rate_limiter=create_rate_limiter(
                "openai", settings.openai_requests_per_minute, settings.rate_limit_backend, redis_client
            ),
        )

    @property
    def configured(self) -> bool:
        return self.client is not None

    async def analyze_text(self, text: str) -> TextAnalysisResult:
        outcome = await self.analyze_text_with_outcome(text)
        return outcome.result

    async def analyze_text_with_outcome(self, text: str) -> AnalysisOutcome[TextAnalysisResult]:
        if not text or len(text.strip()) < MIN_TEXT_LENGTH:
            return self._outcome(TextAnalysisResult(), OutcomeReason.INVALID_INPUT)

        return await self._run_analysis(
            text,
            TextAnalysisResult,
            lambda: self._call_provider(text),
            lambda: fallback_text_analysis(text),
        )

    async def _call_provider(self, text: str) -> TextAnalysisResult:
        response = await self.client.moderations.create(input=text, model=self.model)
        if not response.results:
            raise ValueError("Moderation response contained no results")
        return self._parse_result(response.results[0], text)

    def _parse_result(self, result, text: str) -> TextAnalysisResult:
        flags = _as_dict(result.categories)
        scores = _as_dict(result.category_scores)

        categories = [
            TextCategory(
                name=name,
                flagged=bool(flags.get(name, False)),
                score=min(1.0, max(0.0, float(scores.get(name, 0.0)))),
            )
            for name in flags
        ]

        score_values = [min(1.0, max(0.0, float(v))) for v in scores.values()]
        toxicity = sum(score_values) / len(score_values) if score_values else 0.0

        profanity = contains_profanity(text) or any(
            c.flagged and "profanity" in c.name.lower() for c in categories
        )

        return TextAnalysisResult(
            flagged=bool(result.flagged),
            categories=categories,
            toxicity_score=round(toxicity, 4),
            profanity_detected=profanity,
            sensitive_topics=detect_sensitive_topics(text, categories),
        )
