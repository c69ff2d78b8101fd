"""FastAPI dependency injection functions."""

import uuid
from typing import Annotated

from fastapi import Depends, Request, Response

from src.api.middleware.error_handler import RateLimitError, ServiceUnavailableError
from src.core.config import get_settings
from src.core.rate_limiter import get_rate_limiter
from src.services.lab_session import LabSession, LabSessionRegistry


def get_client_cookie_config() -> dict:
    """Get client id cookie configuration from settings."""
    settings = get_settings()
    # SameSite=None requires Secure=True; local development uses Lax
    samesite = "none" if settings.client_cookie_secure else "lax"
    return {
        "key": settings.client_cookie_name,
        "max_age": settings.client_cookie_max_age,
        "httponly": True,
        "secure": settings.client_cookie_secure,
        "samesite": samesite,
        "path": "/",
    }


def set_client_cookie(response: Response, client_id: str) -> None:
    """Set client id cookie on response.

    Args:
        response: FastAPI response object.
        client_id: The client id to set.
    """
    config = get_client_cookie_config()
    response.set_cookie(
        key=config["key"],
        value=client_id,
        max_age=config["max_age"],
        httponly=config["httponly"],
        secure=config["secure"],
        samesite=config["samesite"],
        path=config["path"],
    )


def _valid_client_id(value: str | None) -> str | None:
    if not value:
        return None
    try:
        return str(uuid.UUID(value))
    except ValueError:
        return None


async def get_client_id(request: Request, response: Response) -> str:
    """Resolve the client id from X-Client-Id header or cookie.

    A missing or malformed id gets a fresh one, set as cookie and echoed in
    the ``X-Client-Id`` response header for clients that block cookies.

    Args:
        request: FastAPI request object.
        response: FastAPI response object.

    Returns:
        str: The client id that namespaces this client's lab storage.
    """
    config = get_client_cookie_config()
    client_id = _valid_client_id(request.headers.get("x-client-id")) or _valid_client_id(
        request.cookies.get(config["key"])
    )
    if client_id:
        return client_id

    client_id = str(uuid.uuid4())
    set_client_cookie(response, client_id)
    response.headers["x-client-id"] = client_id
    return client_id


ClientId = Annotated[str, Depends(get_client_id)]


def get_lab_registry(request: Request) -> LabSessionRegistry:
    """Lab session registry created in the application lifespan."""
    registry = getattr(request.app.state, "lab_sessions", None)
    if registry is None:
        raise ServiceUnavailableError("Lab sessions are not available")
    return registry


async def get_lab_session(
    client_id: ClientId,
    registry: Annotated[LabSessionRegistry, Depends(get_lab_registry)],
) -> LabSession:
    """Live lab session for the requesting client, restored from storage."""
    return registry.get_or_create(client_id)


CurrentLabSession = Annotated[LabSession, Depends(get_lab_session)]


# Rate limiting dependency


async def check_chat_rate_limit(client_id: ClientId) -> None:
    """Check the per-client chat rate limit.

    Args:
        client_id: The requesting client's id.

    Raises:
        RateLimitError: If the client has exceeded the rate limit.
    """
    settings = get_settings()
    limiter = get_rate_limiter()

    allowed, _remaining, retry_after = await limiter.check_and_increment(
        f"client:{client_id}",
        max_requests=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )

    if not allowed:
        raise RateLimitError(
            message="Rate limit exceeded. Please wait before sending more messages.",
            retry_after=retry_after,
            limit=settings.rate_limit_requests,
        )


# Type alias for rate limit dependency
ChatRateLimit = Annotated[None, Depends(check_chat_rate_limit)]
