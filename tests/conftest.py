"""Test configuration and fixtures"""
import pytest
import os
import sys

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from lorepin.database import DatabaseManager
from lorepin.models import Challenge, ChallengeStatus
from lorepin_cms.content_analysis import ContentAnalysisService
from lorepin_cms.moderation import ModerationService
from lorepin_cms.challenges import ChallengeService, RegionalPolicyService
from lorepin_cms.providers import OpenAIModerationProvider, RekognitionProvider, VisionProvider
from tests.fakes import FakeRedis

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
def fake_redis():
    """In-memory Redis double"""
    return FakeRedis()


@pytest.fixture
def content_analysis():
    """Analysis service backed by unconfigured providers, so every modality uses its fallback"""
    return ContentAnalysisService(
        OpenAIModerationProvider(),
        VisionProvider(),
        RekognitionProvider(),
    )


@pytest.fixture
async def db_manager():
    """Fresh in-memory database per test"""
    manager = DatabaseManager()
    await manager.initialize(TEST_DATABASE_URL)
    await manager.create_tables()
    yield manager
    await manager.close()


@pytest.fixture
def moderation_service(db_manager, content_analysis):
    return ModerationService(db_manager, content_analysis)


@pytest.fixture
def challenge_service(db_manager, moderation_service):
    return ChallengeService(db_manager, moderation_service)


@pytest.fixture
def regional_policy_service(db_manager):
    return RegionalPolicyService(db_manager)


@pytest.fixture
async def draft_challenge(db_manager):
    """A draft challenge owned by firebase user 'creator-uid'"""
    async with db_manager.get_session() as session:
        challenge = Challenge(
            title="Sunset at the pier",
            description="Photograph the sunset from the end of the pier",
            status=ChallengeStatus.DRAFT,
            firebase_uid="creator-uid",
            creator_id="creator-db-id",
            tags=["photography", "outdoors"],
            media={"cover_image": "https://cdn.example.com/nature/pier.jpg"},
        )
        session.add(challenge)
        await session.flush()
        await session.refresh(challenge)
    return challenge
