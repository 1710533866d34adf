"""
LorePin CMS Service

FastAPI service for the content moderation queue, AI content analysis and
the challenge approval workflow.
"""

import math
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.exceptions import HTTPException as StarletteHTTPException

from lorepin.cache import create_redis_client
from lorepin.config import Settings, get_config
from lorepin.database import DatabaseManager, check_database_health, get_db_manager
from lorepin.errors import LorePinError
from lorepin.logging import get_correlation_id, get_logger, setup_logging
from lorepin.middleware import add_middleware
from lorepin.models import ChallengeDifficulty, ChallengeStatus, ContentType, ModerationStatus
from lorepin.schemas import (
    AnalyzeContentRequest,
    ChallengeCreate,
    ChallengeFeatureRequest,
    ChallengeFilters,
    ChallengeListResponse,
    ChallengeRejectRequest,
    ChallengeResponse,
    ChallengeUpdate,
    ContentAnalysisResult,
    ErrorResponse,
    HealthCheckResponse,
    ModerationStatsResponse,
    QueueItemCreate,
    QueueItemResponse,
    QueueListResponse,
    QueueReopenRequest,
    QueueStatusUpdate,
    RegionalPolicyCreate,
    RegionalPolicyResponse,
    RegionalPolicyUpdate,
)
from .challenges import Actor, ChallengeService, RegionalPolicyService
from .content_analysis import ContentAnalysisService
from .moderation import ModerationService

logger = get_logger(__name__)


def get_actor(
    x_user_id: Optional[str] = Header(None),
    x_db_user_id: Optional[str] = Header(None),
    x_user_roles: Optional[str] = Header(None)
) -> Actor:
    """Caller identity as asserted by the authenticating gateway"""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Authentication required")
    roles = frozenset(role.strip() for role in (x_user_roles or "").split(",") if role.strip())
    return Actor(firebase_uid=x_user_id, user_id=x_db_user_id, roles=roles)


def require_admin(actor: Actor = Depends(get_actor)) -> Actor:
    if not actor.is_admin:
        raise HTTPException(status_code=403, detail="Insufficient permissions")
    return actor


def get_moderation_service(request: Request) -> ModerationService:
    service = getattr(request.app.state, "moderation_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return service


def get_challenge_service(request: Request) -> ChallengeService:
    service = getattr(request.app.state, "challenge_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return service


def get_regional_policy_service(request: Request) -> RegionalPolicyService:
    service = getattr(request.app.state, "regional_policy_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return service


def _pages(total: int, limit: int) -> int:
    return math.ceil(total / limit) if total else 0


def _error_response(status_code: int, error: str, message: str, details=None) -> JSONResponse:
    body = ErrorResponse(
        error=error,
        message=message,
        details=details,
        correlation_id=get_correlation_id()
    )
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(LorePinError)
    async def domain_error_handler(request: Request, exc: LorePinError):
        return _error_response(exc.status_code, type(exc).__name__, exc.message)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return _error_response(400, "ValidationError", "Invalid request", {"errors": jsonable_encoder(exc.errors())})

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return _error_response(exc.status_code, "HTTPError", str(exc.detail))

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return _error_response(500, "InternalServerError", "An unexpected error occurred")


# Moderation queue
moderation_router = APIRouter(prefix="/moderation", tags=["moderation"])


@moderation_router.post("/queue", response_model=QueueItemResponse, status_code=201)
async def add_to_queue(
    body: QueueItemCreate,
    actor: Actor = Depends(get_actor),
    service: ModerationService = Depends(get_moderation_service)
):
    """Submit content for moderation"""
    item = await service.add_to_queue(
        body.content_type,
        body.content_id,
        firebase_uid=actor.firebase_uid,
        content_data=body.content_data,
        media_url=body.media_url,
    )
    return QueueItemResponse.model_validate(item)


@moderation_router.get("/queue", response_model=QueueListResponse)
async def get_queue(
    status: Optional[ModerationStatus] = Query(None),
    content_type: Optional[ContentType] = Query(None),
    firebase_uid: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(require_admin),
    service: ModerationService = Depends(get_moderation_service)
):
    items, total = await service.get_queue(
        status=status,
        content_type=content_type,
        firebase_uid=firebase_uid,
        limit=limit,
        offset=(page - 1) * limit,
    )
    return QueueListResponse(
        items=[QueueItemResponse.model_validate(item) for item in items],
        total=total,
        page=page,
        limit=limit,
        pages=_pages(total, limit),
    )


@moderation_router.get("/stats", response_model=ModerationStatsResponse)
async def get_stats(
    actor: Actor = Depends(require_admin),
    service: ModerationService = Depends(get_moderation_service)
):
    stats = await service.get_stats()
    return ModerationStatsResponse(**stats)


@moderation_router.get("/queue/{item_id}", response_model=QueueItemResponse)
async def get_queue_item(
    item_id: str,
    actor: Actor = Depends(require_admin),
    service: ModerationService = Depends(get_moderation_service)
):
    return QueueItemResponse.model_validate(await service.get_queue_item(item_id))


@moderation_router.put("/queue/{item_id}/status", response_model=QueueItemResponse)
async def update_queue_item_status(
    item_id: str,
    body: QueueStatusUpdate,
    actor: Actor = Depends(require_admin),
    service: ModerationService = Depends(get_moderation_service)
):
    """Record a moderator decision"""
    item = await service.update_queue_item_status(
        item_id,
        body.status,
        moderator_id=actor.user_id or actor.firebase_uid,
        rejection_reason=body.rejection_reason,
        notes=body.notes,
    )
    return QueueItemResponse.model_validate(item)


@moderation_router.post("/queue/{item_id}/reopen", response_model=QueueItemResponse)
async def reopen_queue_item(
    item_id: str,
    body: Optional[QueueReopenRequest] = None,
    actor: Actor = Depends(require_admin),
    service: ModerationService = Depends(get_moderation_service)
):
    item = await service.reopen_queue_item(
        item_id,
        moderator_id=actor.user_id or actor.firebase_uid,
        notes=body.notes if body else None,
    )
    return QueueItemResponse.model_validate(item)


@moderation_router.post("/queue/{item_id}/update-video-analysis", response_model=QueueItemResponse)
async def update_video_analysis(
    item_id: str,
    actor: Actor = Depends(require_admin),
    service: ModerationService = Depends(get_moderation_service)
):
    """Poll the pending video job for a queue item and merge its result"""
    item = await service.update_video_analysis(item_id)
    if item is None:
        raise HTTPException(status_code=404, detail="Queue item not found or has no pending video analysis")
    return QueueItemResponse.model_validate(item)


@moderation_router.post("/analyze", response_model=ContentAnalysisResult)
async def analyze_content(
    body: AnalyzeContentRequest,
    actor: Actor = Depends(require_admin),
    service: ModerationService = Depends(get_moderation_service)
):
    """Run content analysis without enqueueing anything"""
    return await service.content_analysis.analyze_content(
        text=body.text,
        image_url=body.image_url,
        video_url=body.video_url,
    )


# Challenges
challenge_router = APIRouter(prefix="/challenges", tags=["challenges"])


@challenge_router.get("", response_model=ChallengeListResponse)
async def get_challenges(
    status: Optional[ChallengeStatus] = Query(None),
    difficulty: Optional[ChallengeDifficulty] = Query(None),
    firebase_uid: Optional[str] = Query(None),
    creator_id: Optional[str] = Query(None),
    sponsor_id: Optional[str] = Query(None),
    is_featured: Optional[bool] = Query(None),
    tags: Optional[str] = Query(None, description="Comma separated tags"),
    search: Optional[str] = Query(None),
    start_date_from: Optional[datetime] = Query(None),
    start_date_to: Optional[datetime] = Query(None),
    end_date_from: Optional[datetime] = Query(None),
    end_date_to: Optional[datetime] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(get_actor),
    service: ChallengeService = Depends(get_challenge_service)
):
    filters = ChallengeFilters(
        status=status,
        difficulty=difficulty,
        firebase_uid=firebase_uid,
        creator_id=creator_id,
        sponsor_id=sponsor_id,
        is_featured=is_featured,
        tags=[tag.strip() for tag in tags.split(",") if tag.strip()] if tags else None,
        start_date_from=start_date_from,
        start_date_to=start_date_to,
        end_date_from=end_date_from,
        end_date_to=end_date_to,
        search=search,
    )
    items, total = await service.get_challenges(filters, limit=limit, offset=(page - 1) * limit)
    return ChallengeListResponse(
        items=[ChallengeResponse.model_validate(item) for item in items],
        total=total,
        page=page,
        limit=limit,
        pages=_pages(total, limit),
    )


@challenge_router.post("", response_model=ChallengeResponse, status_code=201)
async def create_challenge(
    body: ChallengeCreate,
    actor: Actor = Depends(get_actor),
    service: ChallengeService = Depends(get_challenge_service)
):
    challenge = await service.create_challenge(body.model_dump(), actor)
    return ChallengeResponse.model_validate(challenge)


@challenge_router.get("/{challenge_id}", response_model=ChallengeResponse)
async def get_challenge(
    challenge_id: str,
    actor: Actor = Depends(get_actor),
    service: ChallengeService = Depends(get_challenge_service)
):
    return ChallengeResponse.model_validate(await service.get_challenge(challenge_id))


@challenge_router.put("/{challenge_id}", response_model=ChallengeResponse)
async def update_challenge(
    challenge_id: str,
    body: ChallengeUpdate,
    actor: Actor = Depends(get_actor),
    service: ChallengeService = Depends(get_challenge_service)
):
    challenge = await service.update_challenge(challenge_id, body.model_dump(exclude_unset=True), actor)
    return ChallengeResponse.model_validate(challenge)


@challenge_router.delete("/{challenge_id}")
async def delete_challenge(
    challenge_id: str,
    actor: Actor = Depends(get_actor),
    service: ChallengeService = Depends(get_challenge_service)
):
    challenge = await service.get_challenge(challenge_id)
    if not actor.is_admin and challenge.firebase_uid != actor.firebase_uid:
        raise HTTPException(status_code=403, detail="You do not have permission to delete this challenge")
    await service.delete_challenge(challenge_id)
    return {"message": "Challenge deleted successfully"}


@challenge_router.post("/{challenge_id}/submit", response_model=ChallengeResponse)
async def submit_challenge(
    challenge_id: str,
    actor: Actor = Depends(get_actor),
    service: ChallengeService = Depends(get_challenge_service)
):
    challenge = await service.submit_for_approval(challenge_id, actor.firebase_uid)
    return ChallengeResponse.model_validate(challenge)


@challenge_router.post("/{challenge_id}/approve", response_model=ChallengeResponse)
async def approve_challenge(
    challenge_id: str,
    actor: Actor = Depends(require_admin),
    service: ChallengeService = Depends(get_challenge_service)
):
    challenge = await service.approve(challenge_id, actor.user_id or actor.firebase_uid)
    return ChallengeResponse.model_validate(challenge)


@challenge_router.post("/{challenge_id}/reject", response_model=ChallengeResponse)
async def reject_challenge(
    challenge_id: str,
    body: ChallengeRejectRequest,
    actor: Actor = Depends(require_admin),
    service: ChallengeService = Depends(get_challenge_service)
):
    challenge = await service.reject(challenge_id, body.rejection_reason, actor_id=actor.user_id or actor.firebase_uid)
    return ChallengeResponse.model_validate(challenge)


@challenge_router.post("/{challenge_id}/feature", response_model=ChallengeResponse)
async def feature_challenge(
    challenge_id: str,
    body: ChallengeFeatureRequest,
    actor: Actor = Depends(get_actor),
    service: ChallengeService = Depends(get_challenge_service)
):
    challenge = await service.feature(challenge_id, body.is_featured, actor)
    return ChallengeResponse.model_validate(challenge)


# Regional policies
policy_router = APIRouter(prefix="/regional-policies", tags=["regional-policies"])


@policy_router.get("", response_model=List[RegionalPolicyResponse])
async def get_regional_policies(
    region: Optional[str] = Query(None),
    actor: Actor = Depends(get_actor),
    service: RegionalPolicyService = Depends(get_regional_policy_service)
):
    policies = await service.get_regional_policies(region)
    return [RegionalPolicyResponse.model_validate(policy) for policy in policies]


@policy_router.post("", response_model=RegionalPolicyResponse, status_code=201)
async def create_regional_policy(
    body: RegionalPolicyCreate,
    actor: Actor = Depends(require_admin),
    service: RegionalPolicyService = Depends(get_regional_policy_service)
):
    policy = await service.create_regional_policy(body.model_dump(), created_by=actor.user_id or actor.firebase_uid)
    return RegionalPolicyResponse.model_validate(policy)


@policy_router.get("/{policy_id}", response_model=RegionalPolicyResponse)
async def get_regional_policy(
    policy_id: str,
    actor: Actor = Depends(get_actor),
    service: RegionalPolicyService = Depends(get_regional_policy_service)
):
    return RegionalPolicyResponse.model_validate(await service.get_regional_policy(policy_id))


@policy_router.put("/{policy_id}", response_model=RegionalPolicyResponse)
async def update_regional_policy(
    policy_id: str,
    body: RegionalPolicyUpdate,
    actor: Actor = Depends(require_admin),
    service: RegionalPolicyService = Depends(get_regional_policy_service)
):
    policy = await service.update_regional_policy(policy_id, body.model_dump(exclude_unset=True))
    return RegionalPolicyResponse.model_validate(policy)


@policy_router.delete("/{policy_id}")
async def delete_regional_policy(
    policy_id: str,
    actor: Actor = Depends(require_admin),
    service: RegionalPolicyService = Depends(get_regional_policy_service)
):
    await service.delete_regional_policy(policy_id)
    return {"message": "Regional policy deleted successfully"}


# Service endpoints
system_router = APIRouter()


@system_router.get("/health", response_model=HealthCheckResponse, response_model_exclude_none=True)
async def health_check(request: Request, deep: bool = False):
    """Health check endpoint with optional deep checks"""
    config = request.app.state.settings
    status = "healthy"
    dependencies = None

    if deep:
        dependencies = {}
        database = await check_database_health(request.app.state.db_manager)
        dependencies["database"] = database["status"]
        if database["status"] != "healthy":
            status = "unhealthy"

        redis_client = getattr(request.app.state, "redis", None)
        if redis_client is None:
            dependencies["redis"] = "not configured"
        else:
            try:
                await redis_client.ping()
                dependencies["redis"] = "connected"
            except Exception as e:
                dependencies["redis"] = f"error: {str(e)}"

    return HealthCheckResponse(
        status=status,
        service=config.service_name,
        version=config.service_version,
        timestamp=datetime.now(timezone.utc),
        dependencies=dependencies,
    )


@system_router.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint"""
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


@system_router.get("/")
async def root(request: Request):
    return {"message": "LorePin CMS API", "version": request.app.state.settings.service_version}


def create_app(
    settings: Optional[Settings] = None,
    db_manager: Optional[DatabaseManager] = None,
    content_analysis: Optional[ContentAnalysisService] = None,
    redis_client=None
) -> FastAPI:
    """Build the CMS application; collaborators not given are built from settings at startup"""
    settings = settings or get_config()

    app = FastAPI(title="LorePin CMS", version=settings.service_version)
    app.state.settings = settings
    add_middleware(app)
    register_exception_handlers(app)

    app.include_router(system_router)
    app.include_router(moderation_router)
    app.include_router(challenge_router)
    app.include_router(policy_router)

    @app.on_event("startup")
    async def on_startup():
        setup_logging(settings)

        db = db_manager or get_db_manager()
        await db.initialize(settings.database_url)
        await db.create_tables()

        redis = redis_client
        if redis is None:
            redis = await create_redis_client(settings.redis_url)
        analysis = content_analysis or ContentAnalysisService.from_settings(settings, redis)

        moderation_service = ModerationService(db, analysis, analyze_on_enqueue=settings.analyze_on_enqueue)
        app.state.db_manager = db
        app.state.redis = redis
        app.state.moderation_service = moderation_service
        app.state.challenge_service = ChallengeService(db, moderation_service)
        app.state.regional_policy_service = RegionalPolicyService(db)

        logger.info(f"{settings.service_name} started", extra={"environment": settings.environment})

    @app.on_event("shutdown")
    async def on_shutdown():
        if redis_client is None and getattr(app.state, "redis", None) is not None:
            await app.state.redis.aclose()
        await app.state.db_manager.close()
        logger.info(f"{settings.service_name} shutdown complete")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
