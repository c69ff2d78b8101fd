"""Health check endpoints for monitoring and deployment verification."""

import time

from fastapi import APIRouter, Request, Response, status

from src.api.middleware.latency_logging import get_latency_stats
from src.core.config import get_settings
from src.core.openai import get_openai_metrics
from src.core.rate_limiter import get_rate_limiter
from src.core.supabase import check_database_connection
from src.schemas.common import CheckResult, HealthResponse, HealthStatus, ReadinessResponse, StatsResponse

router = APIRouter(tags=["health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Liveness check",
    description="Basic health check to verify the service is running. Used for liveness probes.",
)
async def health_check() -> HealthResponse:
    """Return basic health status.

    This endpoint should always return 200 if the service is running.
    It does not check external dependencies.

    Returns:
        HealthResponse: Current health status with timestamp.
    """
    return HealthResponse(status=HealthStatus.HEALTHY)


@router.get(
    "/health/ready",
    response_model=ReadinessResponse,
    responses={
        200: {"description": "All dependencies healthy"},
        503: {"description": "One or more dependencies unhealthy"},
    },
    summary="Readiness check",
    description="Check if all dependencies are available. Used for readiness probes.",
)
async def readiness_check(response: Response) -> ReadinessResponse:
    """Check readiness of all dependencies.

    Verifies database connectivity (Supabase) when lab storage is backed
    by Supabase. Returns 503 if any dependency is unhealthy.

    Args:
        response: FastAPI response object for setting status code.

    Returns:
        ReadinessResponse: Status of all dependency checks.
    """
    checks: list[CheckResult] = []

    if get_settings().storage_backend == "supabase":
        start_time = time.perf_counter()
        db_result = await check_database_connection()
        latency_ms = (time.perf_counter() - start_time) * 1000

        checks.append(
            CheckResult(
                name="database",
                healthy=db_result["healthy"],
                latency_ms=round(latency_ms, 2),
                error=db_result.get("error"),
            )
        )

    all_healthy = all(check.healthy for check in checks)
    overall_status = HealthStatus.HEALTHY if all_healthy else HealthStatus.UNHEALTHY

    if not all_healthy:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return ReadinessResponse(status=overall_status, checks=checks)


@router.get(
    "/health/stats",
    response_model=StatsResponse,
    summary="Runtime statistics",
    description="In-memory stats of lab sessions, caches, rate limiter, OpenAI calls and request latency.",
)
async def stats(request: Request) -> StatsResponse:
    """Report runtime statistics.

    Args:
        request: FastAPI request, for the lifespan-owned registries.

    Returns:
        StatsResponse: Aggregated stats per component.
    """
    registry = getattr(request.app.state, "lab_sessions", None)
    parse_cache = getattr(request.app.state, "parse_cache", None)
    return StatsResponse(
        lab_sessions=registry.get_stats() if registry else {},
        parse_cache=parse_cache.get_stats() if parse_cache else {},
        rate_limiter=get_rate_limiter().get_stats(),
        openai=get_openai_metrics().get_stats(),
        latency=get_latency_stats().get_stats(),
    )
