"""Tests for the Google Cloud Vision image adapter"""
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from lorepin.cache import ResultCache
from lorepin.schemas import Likelihood, SafeSearch
from lorepin_cms.providers import OutcomeReason, VisionProvider
from lorepin_cms.providers.vision_provider import (
    guess_image_type,
    likelihood_score,
    mock_image_analysis,
    score_safe_search,
    to_likelihood,
)


def annotation(safe_search=None, labels=(), objects=(), error_message=""):
    return SimpleNamespace(
        error=SimpleNamespace(message=error_message),
        safe_search_annotation=SimpleNamespace(**(safe_search or {})),
        label_annotations=[SimpleNamespace(description=name, score=score) for name, score in labels],
        localized_object_annotations=[SimpleNamespace(name=name) for name in objects],
    )


def make_client(*annotations, side_effect=None):
    client = MagicMock()
    client.batch_annotate_images = AsyncMock(
        return_value=SimpleNamespace(responses=list(annotations)), side_effect=side_effect
    )
    return client


class TestLikelihoods:
    """Tests for likelihood normalisation"""

    @pytest.mark.parametrize("value,expected", [
        ("VERY_UNLIKELY", 0.0),
        ("UNLIKELY", 0.25),
        ("POSSIBLE", 0.5),
        ("LIKELY", 0.75),
        ("VERY_LIKELY", 1.0),
        ("UNKNOWN", 0.0),
    ])
    def test_scores(self, value, expected):
        assert likelihood_score(value) == expected

    def test_enum_members_are_read_by_name(self):
        assert to_likelihood(SimpleNamespace(name="LIKELY")) == Likelihood.LIKELY

    def test_unrecognised_values_are_unknown(self):
        assert to_likelihood(None) == Likelihood.UNKNOWN
        assert to_likelihood("SOMETIMES") == Likelihood.UNKNOWN

    def test_safe_search_scoring(self):
        scores = score_safe_search(SafeSearch(
            adult=Likelihood.LIKELY,
            racy=Likelihood.VERY_LIKELY,
            medical=Likelihood.POSSIBLE,
            violence=Likelihood.UNLIKELY,
        ))

        assert scores["nsfw_score"] == pytest.approx(0.825)
        assert scores["violence_score"] == pytest.approx(0.25)
        assert scores["graphic_content_score"] == pytest.approx(0.45)


class TestMockAnalysis:
    """Tests for the URL-hint fallback"""

    def test_person_image(self):
        result = mock_image_analysis("https://cdn.example.com/person-portrait.jpg")

        assert result.nsfw_score == pytest.approx(0.1)
        assert result.violence_score == pytest.approx(0.02)
        assert result.graphic_content_score == pytest.approx(0.01)
        assert result.safe_search.racy == Likelihood.POSSIBLE
        assert "person" in result.detected_objects

    def test_other_images(self):
        result = mock_image_analysis("https://cdn.example.com/nature/lake.png")

        assert result.nsfw_score == pytest.approx(0.05)
        assert result.safe_search.racy == Likelihood.VERY_UNLIKELY
        assert "tree" in result.detected_objects

    @pytest.mark.parametrize("url,expected", [
        ("https://x.com/people.jpg", "person"),
        ("https://x.com/landscape.jpg", "nature"),
        ("https://x.com/food/pizza.jpg", "food"),
        ("https://x.com/gallery/art.jpg", "art"),
        ("https://x.com/img/123.jpg", "unknown"),
    ])
    def test_image_type(self, url, expected):
        assert guess_image_type(url) == expected


class TestVisionProvider:
    """Tests for the adapter pipeline"""

    async def test_unconfigured_uses_url_heuristics(self):
        provider = VisionProvider()

        outcome = await provider.analyze_image_with_outcome("https://cdn.example.com/person.jpg")

        assert outcome.reason == OutcomeReason.NOT_CONFIGURED
        assert outcome.result.nsfw_score == pytest.approx(0.1)

    @pytest.mark.parametrize("url", ["not a url", "", "ftp://example.com/a.jpg", "https://"])
    async def test_invalid_url(self, url):
        client = make_client()
        provider = VisionProvider(client=client)

        outcome = await provider.analyze_image_with_outcome(url)

        assert outcome.reason == OutcomeReason.INVALID_INPUT
        assert outcome.result.nsfw_score == 0.0
        assert outcome.result.safe_search.adult == Likelihood.UNKNOWN
        client.batch_annotate_images.assert_not_awaited()

    async def test_provider_annotation_is_mapped(self, fake_redis):
        client = make_client(annotation(
            safe_search={
                "adult": "LIKELY",
                "spoof": "VERY_UNLIKELY",
                "medical": "POSSIBLE",
                "violence": "UNLIKELY",
                "racy": "VERY_LIKELY",
            },
            labels=[("Beach", 0.93), ("Sky", 0.88)],
            objects=["Person", "Person", "Umbrella"],
        ))
        provider = VisionProvider(client=client, cache=ResultCache(fake_redis, "moderation:image"))

        outcome = await provider.analyze_image_with_outcome("https://cdn.example.com/beach.jpg")

        assert outcome.reason == OutcomeReason.OK
        result = outcome.result
        assert result.nsfw_score == pytest.approx(0.825)
        assert result.violence_score == pytest.approx(0.25)
        assert result.graphic_content_score == pytest.approx(0.45)
        assert result.detected_objects == ["Person", "Umbrella"]
        assert [label.name for label in result.labels] == ["Beach", "Sky"]
        assert result.safe_search.racy == Likelihood.VERY_LIKELY
        assert len(fake_redis.store) == 1

    async def test_cached_result_skips_provider(self, fake_redis):
        client = make_client(annotation(safe_search={"adult": "VERY_UNLIKELY"}))
        provider = VisionProvider(client=client, cache=ResultCache(fake_redis, "moderation:image"))

        await provider.analyze_image("https://cdn.example.com/a.jpg")
        outcome = await provider.analyze_image_with_outcome("https://cdn.example.com/a.jpg")

        assert outcome.reason == OutcomeReason.CACHED
        assert client.batch_annotate_images.await_count == 1

    async def test_annotation_error_uses_fallback(self):
        client = make_client(annotation(error_message="image could not be fetched"))
        provider = VisionProvider(client=client)

        outcome = await provider.analyze_image_with_outcome("https://cdn.example.com/food/cake.jpg")

        assert outcome.reason == OutcomeReason.PROVIDER_ERROR
        assert "plate" in outcome.result.detected_objects

    async def test_provider_exception_uses_fallback(self):
        client = make_client(side_effect=RuntimeError("quota exceeded"))
        provider = VisionProvider(client=client)

        outcome = await provider.analyze_image_with_outcome("https://cdn.example.com/person.jpg")

        assert outcome.reason == OutcomeReason.PROVIDER_ERROR
        assert outcome.result.nsfw_score == pytest.approx(0.1)
