"""
Moderation queue: enqueueing, AI scoring and moderator decisions
"""

import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlparse

from prometheus_client import Counter
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from lorepin.database import BaseRepository, DatabaseManager
from lorepin.errors import DomainError, InvalidTransitionError, NotFoundError
from lorepin.logging import get_logger
from lorepin.models import ContentType, ModerationQueueItem, ModerationStatus
from lorepin.schemas import ContentAnalysisResult, VideoJobStatus
from .audit import create_audit_log
from .content_analysis import ContentAnalysisService

logger = get_logger(__name__)

QUEUE_TRANSITIONS = Counter(
    'lorepin_cms_queue_transitions_total', 'Moderation queue status transitions', ['from_status', 'to_status']
)

ALLOWED_TRANSITIONS = {
    ModerationStatus.PENDING: {ModerationStatus.APPROVED, ModerationStatus.REJECTED, ModerationStatus.FLAGGED},
    ModerationStatus.FLAGGED: {ModerationStatus.APPROVED, ModerationStatus.REJECTED},
    ModerationStatus.APPROVED: set(),
    ModerationStatus.REJECTED: set(),
}
REOPENABLE = {ModerationStatus.APPROVED, ModerationStatus.REJECTED}

VIDEO_EXTENSIONS = (".mp4", ".mov", ".avi", ".webm", ".mkv", ".m4v", ".mpeg", ".mpg")
NON_TEXT_SUFFIXES = ("_id", "_date", "_at", "url", "Url", "Id", "Date")
IMAGE_MEDIA_KEYS = ("cover_image", "coverImage", "image_url", "imageUrl", "image")
VIDEO_MEDIA_KEYS = ("video_url", "videoUrl", "video")


def is_video_url(url: str) -> bool:
    return urlparse(url).path.lower().endswith(VIDEO_EXTENSIONS)


def extract_text(content_data: Optional[Dict[str, Any]]) -> Optional[str]:
    """Concatenate the free-text fields of a content snapshot"""
    if not content_data:
        return None

    parts: List[str] = []
    for key, value in content_data.items():
        if key.endswith(NON_TEXT_SUFFIXES):
            continue
        if isinstance(value, str):
            parts.append(value)
        elif isinstance(value, list):
            parts.extend(item for item in value if isinstance(item, str))

    text = "\n".join(part.strip() for part in parts if part.strip())
    return text or None


def extract_media(
    content_data: Optional[Dict[str, Any]],
    media_url: Optional[str]
) -> Tuple[Optional[str], Optional[str]]:
    """(image_url, video_url) from the explicit media URL or the snapshot's media block"""
    image_url = video_url = None

    if media_url:
        if is_video_url(media_url):
            video_url = media_url
        else:
            image_url = media_url

    media = (content_data or {}).get("media")
    if isinstance(media, dict):
        if image_url is None:
            image_url = next((media[k] for k in IMAGE_MEDIA_KEYS if isinstance(media.get(k), str)), None)
        if video_url is None:
            video_url = next((media[k] for k in VIDEO_MEDIA_KEYS if isinstance(media.get(k), str)), None)

    return image_url, video_url


def _coerce_status(status) -> ModerationStatus:
    if isinstance(status, ModerationStatus):
        return status
    try:
        return ModerationStatus(status)
    except ValueError:
        raise DomainError(f"Invalid moderation status: {status}")


def _parse_id(item_id) -> uuid.UUID:
    if isinstance(item_id, uuid.UUID):
        return item_id
    try:
        return uuid.UUID(str(item_id))
    except ValueError:
        raise NotFoundError("Moderation queue item", item_id)


def _decision_state(item: ModerationQueueItem) -> Dict[str, Any]:
    return {
        "status": item.status.value,
        "moderator_id": item.moderator_id,
        "rejection_reason": item.rejection_reason,
        "notes": item.notes,
    }


class ModerationQueueRepository(BaseRepository):
    """Queries over the moderation queue table"""

    def __init__(self, session: AsyncSession):
        super().__init__(session, ModerationQueueItem)

    async def search(
        self,
        status: Optional[ModerationStatus] = None,
        content_type: Optional[ContentType] = None,
        firebase_uid: Optional[str] = None,
        limit: int = 20,
        offset: int = 0
    ) -> Tuple[List[ModerationQueueItem], int]:
        filters = []
        if status is not None:
            filters.append(ModerationQueueItem.status == status)
        if content_type is not None:
            filters.append(ModerationQueueItem.content_type == content_type)
        if firebase_uid is not None:
            filters.append(ModerationQueueItem.firebase_uid == firebase_uid)

        total = await self.session.scalar(
            select(func.count(ModerationQueueItem.id)).where(*filters)
        )
        stmt = (
            select(ModerationQueueItem)
            .where(*filters)
            .order_by(ModerationQueueItem.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all()), total or 0

    async def count_by_status(self) -> Dict[ModerationStatus, int]:
        stmt = select(ModerationQueueItem.status, func.count(ModerationQueueItem.id)).group_by(
            ModerationQueueItem.status
        )
        result = await self.session.execute(stmt)
        return {status: count for status, count in result.all()}


class ModerationService:
    """Owns the moderation queue lifecycle"""

    def __init__(
        self,
        db_manager: DatabaseManager,
        content_analysis: ContentAnalysisService,
        analyze_on_enqueue: bool = True
    ):
        self.db_manager = db_manager
        self.content_analysis = content_analysis
        self.analyze_on_enqueue = analyze_on_enqueue

    @asynccontextmanager
    async def _session(self, session: Optional[AsyncSession] = None):
        if session is not None:
            yield session
        else:
            async with self.db_manager.get_session() as new_session:
                yield new_session

    async def perform_ai_analysis(
        self,
        content_data: Optional[Dict[str, Any]] = None,
        media_url: Optional[str] = None
    ) -> ContentAnalysisResult:
        """Score a content snapshot and its media"""
        image_url, video_url = extract_media(content_data, media_url)
        return await self.content_analysis.analyze_content(
            text=extract_text(content_data),
            image_url=image_url,
            video_url=video_url,
        )

    async def add_to_queue(
        self,
        content_type: ContentType,
        content_id: str,
        firebase_uid: Optional[str] = None,
        content_data: Optional[Dict[str, Any]] = None,
        media_url: Optional[str] = None,
        session: Optional[AsyncSession] = None,
        analysis: Optional[ContentAnalysisResult] = None
    ) -> ModerationQueueItem:
        """Create a pending queue item, scored first when enqueue-time analysis is on

        Callers holding an open transaction pass ``analysis`` computed
        beforehand so no provider call runs inside it.
        """
        if not isinstance(content_type, ContentType):
            try:
                content_type = ContentType(content_type)
            except ValueError:
                raise DomainError(f"Invalid content type: {content_type}")

        if analysis is None and self.analyze_on_enqueue:
            analysis = await self.perform_ai_analysis(content_data, media_url)

        values: Dict[str, Any] = {"risk_score": 0.0, "flags": []}
        if analysis is not None:
            values = {
                "ai_analysis": analysis.model_dump(mode="json"),
                "risk_score": analysis.risk_score,
                "flags": list(analysis.flagged_categories),
            }

        async with self._session(session) as db:
            repo = ModerationQueueRepository(db)
            item = await repo.create(
                content_type=content_type,
                content_id=str(content_id),
                status=ModerationStatus.PENDING,
                firebase_uid=firebase_uid,
                content_data=content_data,
                media_url=media_url,
                **values
            )

        logger.info(
            f"Added {content_type.value} {content_id} to moderation queue",
            extra={"queue_item_id": str(item.id), "risk_score": item.risk_score}
        )
        return item

    async def get_queue(
        self,
        status: Optional[ModerationStatus] = None,
        content_type: Optional[ContentType] = None,
        firebase_uid: Optional[str] = None,
        limit: int = 20,
        offset: int = 0
    ) -> Tuple[List[ModerationQueueItem], int]:
        async with self.db_manager.get_session() as session:
            return await ModerationQueueRepository(session).search(
                status=status,
                content_type=content_type,
                firebase_uid=firebase_uid,
                limit=limit,
                offset=offset,
            )

    async def get_queue_item(self, item_id) -> ModerationQueueItem:
        async with self.db_manager.get_session() as session:
            item = await ModerationQueueRepository(session).get_by_id(_parse_id(item_id))
        if item is None:
            raise NotFoundError("Moderation queue item", item_id)
        return item

    async def get_stats(self) -> Dict[str, int]:
        async with self.db_manager.get_session() as session:
            counts = await ModerationQueueRepository(session).count_by_status()

        stats = {status.value: counts.get(status, 0) for status in ModerationStatus}
        stats["total"] = sum(stats.values())
        return stats

    async def update_queue_item_status(
        self,
        item_id,
        status,
        moderator_id: Optional[str],
        rejection_reason: Optional[str] = None,
        notes: Optional[str] = None
    ) -> ModerationQueueItem:
        """Record a moderator decision

        Raises NotFoundError for unknown items and InvalidTransitionError
        when the item is not in a state that allows ``status``.
        """
        item_uuid = _parse_id(item_id)
        new_status = _coerce_status(status)

        async with self.db_manager.get_session() as session:
            repo = ModerationQueueRepository(session)
            item = await repo.get_by_id(item_uuid)
            if item is None:
                raise NotFoundError("Moderation queue item", item_id)

            current = item.status
            previous_state = _decision_state(item)
            self._check_transition(current, new_status)

            updated = await repo.compare_and_set(
                item_uuid,
                "status",
                current,
                status=new_status,
                moderator_id=moderator_id,
                moderated_at=datetime.now(timezone.utc),
                rejection_reason=rejection_reason if new_status == ModerationStatus.REJECTED else None,
                notes=notes if notes is not None else item.notes,
            )
            if updated is None:
                await self._raise_lost_race(repo, item_uuid, new_status)

            await create_audit_log(
                session,
                action_type="queue_status_update",
                entity_type="moderation_queue",
                entity_id=str(item_uuid),
                user_id=moderator_id,
                action_data={"status": new_status.value, "rejection_reason": rejection_reason, "notes": notes},
                previous_state=previous_state,
                new_state=_decision_state(updated),
            )

        QUEUE_TRANSITIONS.labels(current.value, new_status.value).inc()
        logger.info(
            f"Moderation queue item {item_uuid} moved {current.value} -> {new_status.value}",
            extra={"moderator_id": moderator_id}
        )
        return updated

    async def reopen_queue_item(
        self,
        item_id,
        moderator_id: Optional[str],
        notes: Optional[str] = None
    ) -> ModerationQueueItem:
        """Send an approved or rejected item back to pending, clearing the decision"""
        item_uuid = _parse_id(item_id)

        async with self.db_manager.get_session() as session:
            repo = ModerationQueueRepository(session)
            item = await repo.get_by_id(item_uuid)
            if item is None:
                raise NotFoundError("Moderation queue item", item_id)

            current = item.status
            if current not in REOPENABLE:
                raise InvalidTransitionError(
                    f"Only approved or rejected items can be reopened (current status: {current.value})",
                    current_status=current.value,
                    requested_status=ModerationStatus.PENDING.value,
                )
            previous_state = _decision_state(item)

            updated = await repo.compare_and_set(
                item_uuid,
                "status",
                current,
                status=ModerationStatus.PENDING,
                moderator_id=None,
                moderated_at=None,
                rejection_reason=None,
                notes=notes if notes is not None else item.notes,
            )
            if updated is None:
                await self._raise_lost_race(repo, item_uuid, ModerationStatus.PENDING)

            await create_audit_log(
                session,
                action_type="queue_reopen",
                entity_type="moderation_queue",
                entity_id=str(item_uuid),
                user_id=moderator_id,
                action_data={"notes": notes},
                previous_state=previous_state,
                new_state=_decision_state(updated),
            )

        QUEUE_TRANSITIONS.labels(current.value, ModerationStatus.PENDING.value).inc()
        logger.info(f"Moderation queue item {item_uuid} reopened", extra={"moderator_id": moderator_id})
        return updated

    async def update_video_analysis(self, item_id) -> Optional[ModerationQueueItem]:
        """Poll the item's pending video job and merge the outcome into its analysis

        Returns None when the item does not exist or has no video analysis
        still in progress.
        """
        try:
            item_uuid = _parse_id(item_id)
        except NotFoundError:
            return None

        async with self.db_manager.get_session() as session:
            item = await ModerationQueueRepository(session).get_by_id(item_uuid)
            if item is None or not item.ai_analysis:
                return None
            existing = ContentAnalysisResult.model_validate(item.ai_analysis)

        video = existing.video_analysis
        if video is None or video.status != VideoJobStatus.IN_PROGRESS or not video.job_id:
            return None

        video_result = await self.content_analysis.get_video_analysis_results(video.job_id)
        merged = self.content_analysis.update_with_video_results(existing, video_result)

        async with self.db_manager.get_session() as session:
            updated = await ModerationQueueRepository(session).update(
                item_uuid,
                ai_analysis=merged.model_dump(mode="json"),
                risk_score=merged.risk_score,
                flags=list(merged.flagged_categories),
            )

        if updated is not None:
            logger.info(
                f"Video analysis for queue item {item_uuid} is {video_result.status.value}",
                extra={"job_id": video.job_id, "risk_score": merged.risk_score}
            )
        return updated

    @staticmethod
    def _check_transition(current: ModerationStatus, requested: ModerationStatus):
        if requested not in ALLOWED_TRANSITIONS[current]:
            if current in REOPENABLE:
                message = f"Queue item is already {current.value}; reopen it before changing its status"
            else:
                message = f"Cannot change queue item status from {current.value} to {requested.value}"
            raise InvalidTransitionError(
                message, current_status=current.value, requested_status=requested.value
            )

    async def _raise_lost_race(self, repo: ModerationQueueRepository, item_uuid, requested: ModerationStatus):
        item = await repo.get_by_id(item_uuid, refresh=True)
        if item is None:
            raise NotFoundError("Moderation queue item", item_uuid)
        raise InvalidTransitionError(
            f"Queue item status changed to {item.status.value} by another moderator",
            current_status=item.status.value,
            requested_status=requested.value,
        )
