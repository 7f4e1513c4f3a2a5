"""Health check endpoints for monitoring and deployment verification."""

import time

from fastapi import APIRouter, Response, status

from evalshop.api.deps import AppSettings, DbClient
from evalshop.core.supabase import check_database_connection
from evalshop.schemas.common import CheckResult, HealthResponse, HealthStatus, ReadinessResponse

router = APIRouter(tags=["health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Liveness check",
    description="Basic health check to verify the service is running. Used for liveness probes.",
)
async def health_check(settings: AppSettings) -> HealthResponse:
    """Return basic health status without touching dependencies."""
    return HealthResponse(status=HealthStatus.HEALTHY, service=settings.app_name)


@router.get(
    "/health/ready",
    response_model=ReadinessResponse,
    responses={
        200: {"description": "Database reachable"},
        503: {"description": "Database unreachable"},
    },
    summary="Readiness check",
    description="Check that the database is reachable. Used for readiness probes.",
)
async def readiness_check(response: Response, db: DbClient) -> ReadinessResponse:
    """Check readiness of the database.

    Args:
        response: FastAPI response object for setting status code.
        db: Supabase client.

    Returns:
        ReadinessResponse: Status of the database check; 503 when unhealthy.
    """
    start_time = time.perf_counter()
    db_result = await check_database_connection(db)
    latency_ms = (time.perf_counter() - start_time) * 1000

    check = CheckResult(
        name="database",
        healthy=db_result["healthy"],
        latency_ms=round(latency_ms, 2),
        error=db_result.get("error"),
    )
    if not check.healthy:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return ReadinessResponse(
        status=HealthStatus.HEALTHY if check.healthy else HealthStatus.UNHEALTHY,
        checks=[check],
    )
