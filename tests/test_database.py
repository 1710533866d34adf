"""Tests for database utilities and operations"""
import uuid
import pytest
from unittest.mock import MagicMock, patch
from sqlalchemy.exc import SQLAlchemyError

from lorepin.database import DatabaseManager, BaseRepository, get_db_manager, check_database_health
from lorepin.models import ModerationQueueItem, ModerationStatus, ContentType, RegionalPolicy


class TestDatabaseManager:
    """Tests for DatabaseManager class"""

    async def test_initialize_database_manager(self):
        """Test database manager initialization"""
        manager = DatabaseManager()
        assert manager.engine is None
        assert manager.session_factory is None
        assert manager._initialized is False

        await manager.initialize("sqlite+aiosqlite:///:memory:")

        assert manager.engine is not None
        assert manager.session_factory is not None
        assert manager._initialized is True

        await manager.close()

    async def test_get_session_commits(self, db_manager):
        """Test that work done in a session is committed on exit"""
        async with db_manager.get_session() as session:
            session.add(RegionalPolicy(name="Parks", region="US", rules={}))

        async with db_manager.get_session() as session:
            policies = (await session.execute(RegionalPolicy.__table__.select())).all()
            assert len(policies) == 1

    async def test_get_session_rolls_back_on_error(self, db_manager):
        """Test that an exception inside the session discards its work"""
        with pytest.raises(RuntimeError):
            async with db_manager.get_session() as session:
                session.add(RegionalPolicy(name="Parks", region="US", rules={}))
                await session.flush()
                raise RuntimeError("abort")

        async with db_manager.get_session() as session:
            policies = (await session.execute(RegionalPolicy.__table__.select())).all()
            assert policies == []

    async def test_close_database_manager(self):
        """Test closing database manager"""
        manager = DatabaseManager()
        await manager.initialize("sqlite+aiosqlite:///:memory:")

        assert manager._initialized is True

        await manager.close()

        assert manager._initialized is False


class TestBaseRepository:
    """Tests for BaseRepository class"""

    async def test_create_record(self, db_manager):
        """Test creating a record using repository"""
        async with db_manager.get_session() as session:
            item = await BaseRepository(session, ModerationQueueItem).create(
                content_type=ContentType.COMMENT,
                content_id="comment-1",
            )

        assert item.id is not None
        assert item.status == ModerationStatus.PENDING
        assert item.risk_score == 0.0

    async def test_update_and_delete(self, db_manager):
        """Test updating and deleting a record"""
        async with db_manager.get_session() as session:
            repo = BaseRepository(session, RegionalPolicy)
            policy = await repo.create(name="Parks", region="US", rules={"pets": False})

            updated = await repo.update(policy.id, description="National parks", not_a_column="ignored")
            assert updated.description == "National parks"
            assert updated.rules == {"pets": False}

            assert await repo.delete(policy.id) is True
            assert await repo.get_by_id(policy.id) is None

    async def test_missing_records(self, db_manager):
        """Test update and delete of non-existent records"""
        async with db_manager.get_session() as session:
            repo = BaseRepository(session, RegionalPolicy)

            assert await repo.update(uuid.uuid4(), name="x") is None
            assert await repo.delete(uuid.uuid4()) is False

    async def test_compare_and_set(self, db_manager):
        """Test that compare_and_set only writes while the expected value holds"""
        async with db_manager.get_session() as session:
            repo = BaseRepository(session, ModerationQueueItem)
            item = await repo.create(content_type=ContentType.COMMENT, content_id="comment-1")

            first = await repo.compare_and_set(
                item.id, "status", ModerationStatus.PENDING, status=ModerationStatus.APPROVED
            )
            second = await repo.compare_and_set(
                item.id, "status", ModerationStatus.PENDING, status=ModerationStatus.REJECTED
            )

            assert first.status == ModerationStatus.APPROVED
            assert second is None
            assert (await repo.get_by_id(item.id, refresh=True)).status == ModerationStatus.APPROVED

    async def test_compare_and_set_missing_record(self, db_manager):
        """Test compare_and_set against a record that does not exist"""
        async with db_manager.get_session() as session:
            repo = BaseRepository(session, ModerationQueueItem)

            result = await repo.compare_and_set(
                uuid.uuid4(), "status", ModerationStatus.PENDING, status=ModerationStatus.APPROVED
            )

        assert result is None


class TestDatabaseHealthCheck:
    """Tests for database health check"""

    async def test_database_health_check_success(self, db_manager):
        """Test successful database health check"""
        result = await check_database_health(db_manager)

        assert result["status"] == "healthy"
        assert "successful" in result["message"]

    @patch('lorepin.database.get_db_manager')
    async def test_database_health_check_failure(self, mock_get_db_manager):
        """Test failed database health check"""
        mock_manager = MagicMock()
        mock_manager.get_session.side_effect = SQLAlchemyError("Connection failed")
        mock_get_db_manager.return_value = mock_manager

        result = await check_database_health()

        assert result["status"] == "unhealthy"
        assert "Connection failed" in result["message"]


class TestDatabaseUtilities:
    """Tests for database utility functions"""

    @patch('lorepin.database._db_manager', None)
    def test_get_db_manager_singleton(self):
        """Test that get_db_manager returns singleton instance"""
        manager1 = get_db_manager()
        manager2 = get_db_manager()

        assert manager1 is manager2
        assert isinstance(manager1, DatabaseManager)
