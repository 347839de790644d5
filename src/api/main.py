"""FastAPI application for video ranking and curation.

Exposes the ranking and feedback endpoints used by the dialogue layer and the
batch entry points (curation run, gap analysis) used by schedulers.
"""

import asyncio
import hmac
import os
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Response, Security
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from httpx import AsyncClient
from pydantic import BaseModel

from src.curation.classifier_service import ContentClassifier
from src.curation.config import get_config
from src.curation.errors import ExhaustedSignal
from src.curation.gap_analyzer import GapAnalyzer
from src.curation.liveness import LivenessSweep
from src.curation.pipeline import CurationPipeline
from src.curation.quality_gate import QualityGate
from src.curation.quota import QuotaGovernor
from src.curation.scheduler import CurationScheduler
from src.curation.schemas import CurationResult, CurationTarget
from src.curation.storage_service import KnowledgeStore
from src.curation.transcript_service import TranscriptService
from src.curation.youtube_service import YouTubeService
from src.ranking.instructor_priority import (
    InstructorPriorityService,
    InstructorProfile,
    PriorityBreakdown,
)
from src.ranking.profile_builder import PreferenceUpdate, ProfileBuilder
from src.ranking.schemas import RankingResult
from src.ranking.service import RankingService
from src.utils.clients import get_service_clients
from src.utils.logging import get_logger

logger = get_logger(__name__)

# Check if we're in production
is_production = os.getenv("ENVIRONMENT") == "production"

if not is_production:
    # Development: prioritize .env file
    project_root = Path(__file__).resolve().parent.parent.parent
    dotenv_path = project_root / ".env"
    load_dotenv(dotenv_path, override=True)
else:
    # Production: use cloud platform env vars only
    load_dotenv()

# Global services initialized in lifespan
http_client = None
quota = None
ranking_service = None
profile_builder = None
instructor_priority_service = None
gap_analyzer = None
pipeline = None
scheduler = None
curation_lock = asyncio.Lock()


# ==============================================================================
# Lifespan Management
# ==============================================================================


async def lifespan(app: FastAPI):  # type: ignore[misc]
    """Lifecycle manager for the FastAPI application.

    Builds one quota governor for the whole process so every curation run
    triggered through the API or the scheduler draws on the same daily budget.
    """
    global http_client, quota, ranking_service, gap_analyzer, pipeline
    global profile_builder, instructor_priority_service, scheduler

    logger.info("application_startup_started")

    try:
        config = get_config()
        classifier_client, supabase = get_service_clients()
        http_client = AsyncClient(timeout=config.http_timeout_seconds)

        store = KnowledgeStore(config, client=supabase)
        quota = QuotaGovernor.from_config(config)
        youtube = YouTubeService(config, quota, http_client=http_client)
        gate = QualityGate(
            config,
            store,
            ContentClassifier(config, client=classifier_client),
            transcripts=TranscriptService(config),
        )
        gap_analyzer = GapAnalyzer(config, store)
        ranking_service = RankingService(store)
        profile_builder = ProfileBuilder(store)
        instructor_priority_service = InstructorPriorityService(store, youtube)
        pipeline = CurationPipeline(
            config,
            quota=quota,
            store=store,
            youtube=youtube,
            gate=gate,
            gap_analyzer=gap_analyzer,
        )
        scheduler = CurationScheduler(
            config,
            pipeline,
            gap_analyzer,
            LivenessSweep(config, store, youtube),
            lock=curation_lock,
        )
        scheduler.start()

        logger.info(
            "application_startup_completed",
            services=[
                "http",
                "quota",
                "ranking",
                "gap_analyzer",
                "pipeline",
                "profile_builder",
                "instructor_priority",
                "scheduler",
            ],
        )

    except Exception:
        logger.exception("application_startup_failed")
        raise

    yield  # Application runs here

    logger.info("application_shutdown_started")

    if scheduler:
        scheduler.stop()

    if http_client:
        await http_client.aclose()

    logger.info("application_shutdown_completed")


# ==============================================================================
# FastAPI Application Setup
# ==============================================================================

app = FastAPI(
    title="BJJ Video Curation API",
    description="Personalized video ranking, feedback tracking and quota-bounded curation",
    version="1.0.0",
    lifespan=lifespan,
)

security = HTTPBearer()

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ==============================================================================
# Authentication
# ==============================================================================


async def verify_token(
    credentials: HTTPAuthorizationCredentials = Security(security),
) -> dict[str, Any]:
    """Verify the JWT token from Supabase and return the user information.

    Args:
        credentials: The HTTP Authorization credentials containing the bearer token.

    Returns:
        User information from Supabase.

    Raises:
        HTTPException: If the token is invalid or the user cannot be verified.
    """
    try:
        token = credentials.credentials

        if not http_client:
            logger.error("auth_verification_failed", reason="http_client_not_initialized")
            raise HTTPException(status_code=500, detail="HTTP client not initialized")

        supabase_url = os.getenv("SUPABASE_URL")
        supabase_key = os.getenv("SUPABASE_SERVICE_KEY")

        response = await http_client.get(
            f"{supabase_url}/auth/v1/user",
            headers={"Authorization": f"Bearer {token}", "apikey": supabase_key},
        )

        if response.status_code != 200:
            logger.warning(
                "auth_verification_failed",
                status_code=response.status_code,
                response_text=response.text[:200],
            )
            raise HTTPException(status_code=401, detail="Invalid authentication token")

        user_data = response.json()
        logger.debug("auth_verification_completed", user_id=user_data.get("id"))
        return user_data

    except HTTPException:
        raise
    except Exception as e:
        logger.exception("auth_verification_error")
        raise HTTPException(status_code=401, detail=f"Authentication error: {str(e)}")


async def verify_service_token(
    credentials: HTTPAuthorizationCredentials = Security(security),
) -> None:
    """Allow batch endpoints only for callers holding CURATION_SERVICE_TOKEN.

    Raises:
        HTTPException: If the token is not configured or does not match.
    """
    expected = os.getenv("CURATION_SERVICE_TOKEN")
    if not expected or not hmac.compare_digest(credentials.credentials, expected):
        logger.warning("service_auth_failed")
        raise HTTPException(status_code=401, detail="Invalid service token")


def require_user(request_user_id: str, user: dict[str, Any]) -> None:
    if request_user_id != user.get("id"):
        logger.warning(
            "request_rejected",
            reason="user_id_mismatch",
            request_user_id=request_user_id,
            token_user_id=user.get("id"),
        )
        raise HTTPException(
            status_code=403, detail="User ID in request does not match authenticated user"
        )


# ==============================================================================
# Request/Response Models
# ==============================================================================


class RankRequest(BaseModel):
    """Request model for the rank endpoint."""

    user_id: str
    video_ids: list[int]


class OutcomeRequest(BaseModel):
    """Request model for the outcome endpoint."""

    user_id: str
    video_id: int
    was_helpful: bool


class CurationRunRequest(BaseModel):
    """Request model for an on-demand curation run."""

    targets: list[CurationTarget] | None = None
    budget_units: int | None = None


class ProfileRebuildRequest(BaseModel):
    """Request model for rebuilding a user's derived preferences."""

    user_id: str


# ==============================================================================
# API Endpoints
# ==============================================================================


@app.get("/health")
async def health_check():
    """Health check endpoint.

    Returns:
        Health status, timestamp and which services are initialized.
    """
    return {
        "status": "healthy",
        "timestamp": datetime.now(UTC).isoformat(),
        "services": {
            "http_client": http_client is not None,
            "quota": quota is not None,
            "ranking": ranking_service is not None,
            "gap_analyzer": gap_analyzer is not None,
            "pipeline": pipeline is not None,
            "profile_builder": profile_builder is not None,
            "instructor_priority": instructor_priority_service is not None,
            "scheduler": scheduler is not None and scheduler.is_running(),
        },
    }


@app.post("/api/rank", response_model=RankingResult)
async def rank_endpoint(
    request: RankRequest,
    user: dict[str, Any] = Depends(verify_token),
) -> RankingResult:
    """Rank candidate videos for the authenticated user.

    Never fails because of ranking itself: the unranked order is returned
    when scoring is unavailable.
    """
    require_user(request.user_id, user)

    if ranking_service is None:
        logger.warning("ranking_unavailable", user_id=request.user_id)
        return RankingResult(user_id=request.user_id, ranked=False, video_ids=request.video_ids)

    return await ranking_service.rank(request.user_id, request.video_ids)


@app.post("/api/outcome", status_code=202)
async def outcome_endpoint(
    request: OutcomeRequest,
    background_tasks: BackgroundTasks,
    user: dict[str, Any] = Depends(verify_token),
):
    """Accept user feedback and record it after the response is sent."""
    require_user(request.user_id, user)

    if ranking_service is None:
        raise HTTPException(status_code=503, detail="Ranking service not initialized")

    background_tasks.add_task(
        ranking_service.record_outcome,
        request.user_id,
        request.video_id,
        request.was_helpful,
    )
    return {"accepted": True}


@app.post(
    "/api/curation/run",
    response_model=CurationResult,
    dependencies=[Depends(verify_service_token)],
)
async def curation_run_endpoint(request: CurationRunRequest) -> CurationResult:
    """Run one curation pass and return its summary."""
    if pipeline is None:
        raise HTTPException(status_code=503, detail="Curation pipeline not initialized")
    if curation_lock.locked():
        raise HTTPException(status_code=409, detail="A curation run is already in progress")

    async with curation_lock:
        return await pipeline.run_curation(request.targets, request.budget_units)


@app.post(
    "/api/gap-analysis/run",
    status_code=204,
    dependencies=[Depends(verify_service_token)],
)
async def gap_analysis_endpoint() -> Response:
    """Recompute technique meta status for every known technique."""
    if gap_analyzer is None:
        raise HTTPException(status_code=503, detail="Gap analyzer not initialized")

    await gap_analyzer.run()
    return Response(status_code=204)


@app.get("/api/quota", dependencies=[Depends(verify_service_token)])
async def quota_endpoint():
    """Current quota window usage."""
    if quota is None:
        raise HTTPException(status_code=503, detail="Quota governor not initialized")
    return quota.snapshot()


@app.post("/api/profile/rebuild", response_model=PreferenceUpdate | None)
async def profile_rebuild_endpoint(
    request: ProfileRebuildRequest,
    user: dict[str, Any] = Depends(verify_token),
) -> PreferenceUpdate | None:
    """Derive preferred instructors and video length from the user's feedback.

    Returns null while the user has too little feedback history.
    """
    require_user(request.user_id, user)

    if profile_builder is None:
        raise HTTPException(status_code=503, detail="Profile builder not initialized")

    return await profile_builder.build(request.user_id)


@app.post(
    "/api/instructors/priority",
    dependencies=[Depends(verify_service_token)],
)
async def instructor_priority_endpoint(instructor: InstructorProfile):
    """Recompute and store one instructor's 0-100 credibility score."""
    if instructor_priority_service is None:
        raise HTTPException(status_code=503, detail="Instructor priority service not initialized")

    try:
        breakdown: PriorityBreakdown = await instructor_priority_service.refresh(instructor)
    except ExhaustedSignal as e:
        raise HTTPException(status_code=429, detail=f"YouTube quota exhausted: {e}")
    return {"instructor": instructor.name, "total": breakdown.total, **breakdown.model_dump()}
