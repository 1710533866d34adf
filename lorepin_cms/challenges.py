"""
Challenge approval workflow and regional policy management
"""

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from sqlalchemy import String, cast, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from lorepin.database import BaseRepository, DatabaseManager
from lorepin.errors import DomainError, InvalidTransitionError, NotFoundError, PermissionDeniedError
from lorepin.logging import get_logger
from lorepin.models import Challenge, ChallengeDifficulty, ChallengeStatus, ContentType, RegionalPolicy
from lorepin.schemas import ChallengeFilters
from .audit import create_audit_log
from .moderation import ModerationService

logger = get_logger(__name__)

ADMIN_ROLES = frozenset({"super_admin", "content_admin"})

UPDATABLE_FIELDS = (
    "title", "description", "difficulty", "sponsor_id", "location", "rules", "rewards",
    "start_date", "end_date", "is_private", "media", "requirements", "tags", "regional_policies",
)
# Columns that cannot be cleared; a None update leaves them as they are
REQUIRED_FIELDS = frozenset({"title", "description", "difficulty", "is_private"})
REQUIRED_POLICY_FIELDS = frozenset({"name", "region", "rules"})
SNAPSHOT_FIELDS = (
    "title", "description", "difficulty", "location", "rules", "rewards", "start_date",
    "end_date", "media", "requirements", "tags", "regional_policies",
)


@dataclass(frozen=True)
class Actor:
    """The authenticated caller acting on a challenge"""
    firebase_uid: str
    user_id: Optional[str] = None
    roles: FrozenSet[str] = field(default_factory=frozenset)

    @property
    def is_admin(self) -> bool:
        return bool(self.roles & ADMIN_ROLES)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _parse_id(entity: str, entity_id) -> uuid.UUID:
    if isinstance(entity_id, uuid.UUID):
        return entity_id
    try:
        return uuid.UUID(str(entity_id))
    except ValueError:
        raise NotFoundError(entity, entity_id)


def _json_value(value):
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (ChallengeDifficulty, ChallengeStatus)):
        return value.value
    return value


def challenge_snapshot(challenge: Challenge) -> Dict[str, Any]:
    """Content fields carried into the moderation queue at submission"""
    return {name: _json_value(getattr(challenge, name)) for name in SNAPSHOT_FIELDS}


def escape_like(value: str) -> str:
    """Make % and _ match literally in a LIKE pattern using backslash escapes"""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _coerce_difficulty(value) -> ChallengeDifficulty:
    if value is None:
        return ChallengeDifficulty.BEGINNER
    if isinstance(value, ChallengeDifficulty):
        return value
    try:
        return ChallengeDifficulty(value)
    except ValueError:
        raise DomainError(f"Invalid difficulty: {value}")


class ChallengeRepository(BaseRepository):
    """Queries over the challenges table"""

    def __init__(self, session: AsyncSession):
        super().__init__(session, Challenge)

    async def search(
        self,
        filters: Optional[ChallengeFilters] = None,
        limit: int = 20,
        offset: int = 0
    ) -> Tuple[List[Challenge], int]:
        conditions = []
        if filters is not None:
            equals = {
                "status": filters.status,
                "difficulty": filters.difficulty,
                "firebase_uid": filters.firebase_uid,
                "creator_id": filters.creator_id,
                "sponsor_id": filters.sponsor_id,
                "is_featured": filters.is_featured,
            }
            for column, value in equals.items():
                if value is not None:
                    conditions.append(getattr(Challenge, column) == value)

            # Match tags against the serialized JSON list
            for tag in filters.tags or []:
                pattern = f"%{escape_like(json.dumps(tag))}%"
                conditions.append(cast(Challenge.tags, String).like(pattern, escape="\\"))

            if filters.start_date_from is not None:
                conditions.append(Challenge.start_date >= filters.start_date_from)
            if filters.start_date_to is not None:
                conditions.append(Challenge.start_date <= filters.start_date_to)
            if filters.end_date_from is not None:
                conditions.append(Challenge.end_date >= filters.end_date_from)
            if filters.end_date_to is not None:
                conditions.append(Challenge.end_date <= filters.end_date_to)
            if filters.search:
                pattern = f"%{escape_like(filters.search)}%"
                conditions.append(or_(
                    Challenge.title.ilike(pattern, escape="\\"),
                    Challenge.description.ilike(pattern, escape="\\"),
                ))

        total = await self.session.scalar(select(func.count(Challenge.id)).where(*conditions))
        stmt = (
            select(Challenge)
            .where(*conditions)
            .order_by(Challenge.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all()), total or 0


class ChallengeService:
    """Drives challenges through draft -> pending_approval -> approved/rejected -> active"""

    def __init__(self, db_manager: DatabaseManager, moderation_service: ModerationService):
        self.db_manager = db_manager
        self.moderation_service = moderation_service

    async def create_challenge(self, data: Dict[str, Any], actor: Actor) -> Challenge:
        values = {k: v for k, v in data.items() if k in UPDATABLE_FIELDS and v is not None}
        values["difficulty"] = _coerce_difficulty(values.get("difficulty"))

        async with self.db_manager.get_session() as session:
            challenge = await ChallengeRepository(session).create(
                status=ChallengeStatus.DRAFT,
                firebase_uid=actor.firebase_uid,
                creator_id=actor.user_id,
                **values
            )

        logger.info(f"Challenge {challenge.id} created", extra={"firebase_uid": actor.firebase_uid})
        return challenge

    async def get_challenges(
        self,
        filters: Optional[ChallengeFilters] = None,
        limit: int = 20,
        offset: int = 0
    ) -> Tuple[List[Challenge], int]:
        async with self.db_manager.get_session() as session:
            return await ChallengeRepository(session).search(filters, limit=limit, offset=offset)

    async def get_challenge(self, challenge_id) -> Challenge:
        async with self.db_manager.get_session() as session:
            challenge = await ChallengeRepository(session).get_by_id(_parse_id("Challenge", challenge_id))
        if challenge is None:
            raise NotFoundError("Challenge", challenge_id)
        return challenge

    async def update_challenge(self, challenge_id, data: Dict[str, Any], actor: Actor) -> Challenge:
        """Update content fields; creators may only edit drafts, admins anything"""
        challenge_uuid = _parse_id("Challenge", challenge_id)
        values = {
            k: v for k, v in data.items()
            if k in UPDATABLE_FIELDS and not (v is None and k in REQUIRED_FIELDS)
        }
        if "difficulty" in values:
            values["difficulty"] = _coerce_difficulty(values["difficulty"])

        async with self.db_manager.get_session() as session:
            repo = ChallengeRepository(session)
            challenge = await repo.get_by_id(challenge_uuid)
            if challenge is None:
                raise NotFoundError("Challenge", challenge_id)

            self._check_edit_allowed(challenge, actor, "update")
            updated = await repo.update(challenge_uuid, **values)

        logger.info(f"Challenge {challenge_uuid} updated", extra={"fields": sorted(values)})
        return updated

    async def submit_for_approval(self, challenge_id, firebase_uid: str) -> Challenge:
        """Move a draft to pending_approval and enqueue it for moderation

        The snapshot is scored before the transaction opens; the status
        change, queue item and audit row then commit together.
        """
        challenge_uuid = _parse_id("Challenge", challenge_id)
        message = "Only challenges in draft status can be submitted for approval"

        async with self.db_manager.get_session() as session:
            challenge = await ChallengeRepository(session).get_by_id(challenge_uuid)
            if challenge is None:
                raise NotFoundError("Challenge", challenge_id)

            if challenge.firebase_uid != firebase_uid:
                raise DomainError("Only the creator can submit a challenge for approval")
            if challenge.status != ChallengeStatus.DRAFT:
                raise InvalidTransitionError(
                    message,
                    current_status=challenge.status.value,
                    requested_status=ChallengeStatus.PENDING_APPROVAL.value,
                )
            snapshot = challenge_snapshot(challenge)

        analysis = None
        if self.moderation_service.analyze_on_enqueue:
            analysis = await self.moderation_service.perform_ai_analysis(snapshot)

        async with self.db_manager.get_session() as session:
            repo = ChallengeRepository(session)
            updated = await repo.compare_and_set(
                challenge_uuid, "status", ChallengeStatus.DRAFT, status=ChallengeStatus.PENDING_APPROVAL
            )
            if updated is None:
                await self._raise_lost_race(repo, challenge_uuid, message)

            queue_item = await self.moderation_service.add_to_queue(
                ContentType.CHALLENGE,
                str(challenge_uuid),
                firebase_uid=firebase_uid,
                content_data=snapshot,
                session=session,
                analysis=analysis,
            )

            await create_audit_log(
                session,
                action_type="challenge_submit",
                entity_type="challenge",
                entity_id=str(challenge_uuid),
                user_id=firebase_uid,
                action_data={"queue_item_id": str(queue_item.id)},
                previous_state={"status": ChallengeStatus.DRAFT.value},
                new_state={"status": ChallengeStatus.PENDING_APPROVAL.value},
            )

        logger.info(f"Challenge {challenge_uuid} submitted for approval", extra={"queue_item_id": str(queue_item.id)})
        return updated

    async def approve(self, challenge_id, approver_id: str) -> Challenge:
        """Approve a pending challenge, activating it when its start date has arrived"""
        challenge_uuid = _parse_id("Challenge", challenge_id)
        if not approver_id:
            raise DomainError("Approver ID is required")

        message = "Only challenges pending approval can be approved"
        async with self.db_manager.get_session() as session:
            repo = ChallengeRepository(session)
            challenge = await repo.get_by_id(challenge_uuid)
            if challenge is None:
                raise NotFoundError("Challenge", challenge_id)
            self._require_pending(challenge, message, ChallengeStatus.APPROVED)

            now = datetime.now(timezone.utc)
            start_date = _as_utc(challenge.start_date)
            target = ChallengeStatus.ACTIVE if start_date is None or start_date <= now else ChallengeStatus.APPROVED

            updated = await repo.compare_and_set(
                challenge_uuid,
                "status",
                ChallengeStatus.PENDING_APPROVAL,
                status=target,
                approved_by=approver_id,
                approved_at=now,
                rejection_reason=None,
            )
            if updated is None:
                await self._raise_lost_race(repo, challenge_uuid, message)

            await create_audit_log(
                session,
                action_type="challenge_approve",
                entity_type="challenge",
                entity_id=str(challenge_uuid),
                user_id=approver_id,
                action_data={"approved_by": approver_id},
                previous_state={"status": ChallengeStatus.PENDING_APPROVAL.value},
                new_state={"status": target.value},
            )

        logger.info(f"Challenge {challenge_uuid} approved", extra={"status": target.value, "approved_by": approver_id})
        return updated

    async def reject(self, challenge_id, rejection_reason: str, actor_id: Optional[str] = None) -> Challenge:
        challenge_uuid = _parse_id("Challenge", challenge_id)
        if not rejection_reason or not rejection_reason.strip():
            raise DomainError("Rejection reason is required")

        message = "Only challenges pending approval can be rejected"
        async with self.db_manager.get_session() as session:
            repo = ChallengeRepository(session)
            challenge = await repo.get_by_id(challenge_uuid)
            if challenge is None:
                raise NotFoundError("Challenge", challenge_id)
            self._require_pending(challenge, message, ChallengeStatus.REJECTED)

            updated = await repo.compare_and_set(
                challenge_uuid,
                "status",
                ChallengeStatus.PENDING_APPROVAL,
                status=ChallengeStatus.REJECTED,
                rejection_reason=rejection_reason,
            )
            if updated is None:
                await self._raise_lost_race(repo, challenge_uuid, message)

            await create_audit_log(
                session,
                action_type="challenge_reject",
                entity_type="challenge",
                entity_id=str(challenge_uuid),
                user_id=actor_id,
                action_data={"rejection_reason": rejection_reason},
                previous_state={"status": ChallengeStatus.PENDING_APPROVAL.value},
                new_state={"status": ChallengeStatus.REJECTED.value},
            )

        logger.info(f"Challenge {challenge_uuid} rejected")
        return updated

    async def feature(self, challenge_id, is_featured: bool, actor: Actor) -> Challenge:
        challenge_uuid = _parse_id("Challenge", challenge_id)

        async with self.db_manager.get_session() as session:
            repo = ChallengeRepository(session)
            challenge = await repo.get_by_id(challenge_uuid)
            if challenge is None:
                raise NotFoundError("Challenge", challenge_id)

            self._check_edit_allowed(challenge, actor, "feature")
            previous = challenge.is_featured
            updated = await repo.update(challenge_uuid, is_featured=bool(is_featured))

            await create_audit_log(
                session,
                action_type="challenge_feature",
                entity_type="challenge",
                entity_id=str(challenge_uuid),
                user_id=actor.firebase_uid,
                action_data={"is_featured": bool(is_featured)},
                previous_state={"is_featured": previous},
                new_state={"is_featured": updated.is_featured},
            )

        return updated

    async def delete_challenge(self, challenge_id) -> bool:
        """Hard delete; any queue item the challenge spawned is left in place"""
        challenge_uuid = _parse_id("Challenge", challenge_id)
        async with self.db_manager.get_session() as session:
            deleted = await ChallengeRepository(session).delete(challenge_uuid)
        if not deleted:
            raise NotFoundError("Challenge", challenge_id)

        logger.info(f"Challenge {challenge_uuid} deleted")
        return True

    @staticmethod
    def _check_edit_allowed(challenge: Challenge, actor: Actor, action: str):
        if actor.is_admin:
            return
        if challenge.firebase_uid != actor.firebase_uid:
            raise PermissionDeniedError(f"You do not have permission to {action} this challenge")
        if challenge.status != ChallengeStatus.DRAFT:
            raise DomainError(f"Only challenges in draft status can be {action}d by non-admins")

    @staticmethod
    def _require_pending(challenge: Challenge, message: str, requested: ChallengeStatus):
        if challenge.status != ChallengeStatus.PENDING_APPROVAL:
            raise InvalidTransitionError(
                message, current_status=challenge.status.value, requested_status=requested.value
            )

    async def _raise_lost_race(self, repo: ChallengeRepository, challenge_uuid, message: str):
        challenge = await repo.get_by_id(challenge_uuid, refresh=True)
        if challenge is None:
            raise NotFoundError("Challenge", challenge_uuid)
        raise InvalidTransitionError(message, current_status=challenge.status.value)


class RegionalPolicyService:
    """Plain CRUD over regional policies"""

    def __init__(self, db_manager: DatabaseManager):
        self.db_manager = db_manager

    async def create_regional_policy(self, data: Dict[str, Any], created_by: Optional[str] = None) -> RegionalPolicy:
        async with self.db_manager.get_session() as session:
            return await BaseRepository(session, RegionalPolicy).create(created_by=created_by, **data)

    async def get_regional_policies(self, region: Optional[str] = None) -> List[RegionalPolicy]:
        stmt = select(RegionalPolicy).order_by(RegionalPolicy.name)
        if region:
            stmt = stmt.where(RegionalPolicy.region == region)
        async with self.db_manager.get_session() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def get_regional_policy(self, policy_id) -> RegionalPolicy:
        async with self.db_manager.get_session() as session:
            policy = await BaseRepository(session, RegionalPolicy).get_by_id(_parse_id("Regional policy", policy_id))
        if policy is None:
            raise NotFoundError("Regional policy", policy_id)
        return policy

    async def update_regional_policy(self, policy_id, data: Dict[str, Any]) -> RegionalPolicy:
        values = {k: v for k, v in data.items() if not (v is None and k in REQUIRED_POLICY_FIELDS)}
        async with self.db_manager.get_session() as session:
            policy = await BaseRepository(session, RegionalPolicy).update(
                _parse_id("Regional policy", policy_id), **values
            )
        if policy is None:
            raise NotFoundError("Regional policy", policy_id)
        return policy

    async def delete_regional_policy(self, policy_id) -> bool:
        async with self.db_manager.get_session() as session:
            deleted = await BaseRepository(session, RegionalPolicy).delete(_parse_id("Regional policy", policy_id))
        if not deleted:
            raise NotFoundError("Regional policy", policy_id)
        return True
