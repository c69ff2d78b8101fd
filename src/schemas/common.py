"""Common schemas used across the application."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class HealthStatus(str, Enum):
    """Health check status values."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class HealthResponse(BaseModel):
    """Liveness probe body."""

    model_config = ConfigDict(from_attributes=True)

    status: HealthStatus = Field(description="Current health status")
    timestamp: datetime = Field(default_factory=_utcnow, description="Check timestamp")
    version: str = Field(default="0.1.0", description="API version")


class CheckResult(BaseModel):
    """Outcome of probing one dependency, e.g. the Supabase database."""

    model_config = ConfigDict(from_attributes=True)

    name: str = Field(description="Name of the dependency being checked")
    healthy: bool = Field(description="Whether the dependency is healthy")
    latency_ms: float | None = Field(default=None, description="Response time in milliseconds")
    error: str | None = Field(default=None, description="Error message if unhealthy")


class ReadinessResponse(BaseModel):
    """Readiness probe body; unhealthy if any check failed."""

    model_config = ConfigDict(from_attributes=True)

    status: HealthStatus = Field(description="Overall readiness status")
    timestamp: datetime = Field(default_factory=_utcnow, description="Check timestamp")
    checks: list[CheckResult] = Field(default_factory=list, description="Individual check results")


class ErrorResponse(BaseModel):
    """Body returned for every error raised as an ``APIError``."""

    model_config = ConfigDict(from_attributes=True)

    error: str = Field(description="Machine-readable error type")
    message: str = Field(description="Human-readable error description")
    details: list[dict[str, Any]] | None = Field(default=None, description="Extra context such as the session phase")
    request_id: str | None = Field(default=None, description="X-Request-ID of the failing request")
    timestamp: datetime = Field(default_factory=_utcnow, description="Error timestamp")


class StatsResponse(BaseModel):
    """In-memory runtime statistics for monitoring."""

    model_config = ConfigDict(from_attributes=True)

    lab_sessions: dict[str, Any] = Field(default_factory=dict, description="Lab session registry stats")
    parse_cache: dict[str, Any] = Field(default_factory=dict, description="Reply parse cache stats")
    rate_limiter: dict[str, Any] = Field(default_factory=dict, description="Rate limiter stats")
    openai: dict[str, Any] = Field(default_factory=dict, description="OpenAI call stats")
    latency: dict[str, Any] = Field(default_factory=dict, description="Request latency stats")
