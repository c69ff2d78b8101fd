"""Request latency logging middleware for performance monitoring."""

import logging
import time
from typing import Callable

from fastapi import Request, Response

logger = logging.getLogger(__name__)

# Thresholds for log levels (in milliseconds)
SLOW_REQUEST_THRESHOLD_MS = 1000
VERY_SLOW_REQUEST_THRESHOLD_MS = 3000

# Chat endpoints include the model call and paced reply parts
SLOW_CHAT_THRESHOLD_MS = 10000

HEALTH_PATHS = ("/health", "/health/ready", "/health/stats")
CHAT_PATH_PREFIXES = ("/api/v1/chat", "/api/v1/lab/session/messages", "/api/v1/lab/session/choices")


class LatencyStats:
    """Recent request latencies, with chat exchanges reported separately.

    Chat requests wait on the model and are much slower than the rest of
    the API, so they would swamp the overall percentiles.
    """

    def __init__(self, max_samples: int = 1000):
        self._samples: list[tuple[str, float]] = []  # (path, latency_ms)
        self._max_samples = max_samples

    def record(self, path: str, latency_ms: float) -> None:
        """Record a latency sample."""
        self._samples.append((path, latency_ms))
        if len(self._samples) > self._max_samples:
            self._samples = self._samples[-self._max_samples:]

    def get_stats(self) -> dict:
        """Get aggregated stats."""
        if not self._samples:
            return {
                "total_requests": 0,
                "avg_latency_ms": 0,
                "p50_latency_ms": 0,
                "p95_latency_ms": 0,
                "p99_latency_ms": 0,
                "chat_requests": 0,
                "chat_p95_latency_ms": 0,
            }

        latencies = sorted(s[1] for s in self._samples)
        total = len(latencies)
        chat = sorted(ms for path, ms in self._samples if path.startswith(CHAT_PATH_PREFIXES))

        return {
            "total_requests": total,
            "avg_latency_ms": round(sum(latencies) / total, 2),
            "p50_latency_ms": round(latencies[int(total * 0.5)], 2),
            "p95_latency_ms": round(latencies[min(int(total * 0.95), total - 1)], 2),
            "p99_latency_ms": round(latencies[min(int(total * 0.99), total - 1)], 2),
            "chat_requests": len(chat),
            "chat_p95_latency_ms": round(chat[min(int(len(chat) * 0.95), len(chat) - 1)], 2) if chat else 0,
        }


# Global stats instance
_latency_stats: LatencyStats | None = None


def get_latency_stats() -> LatencyStats:
    """Get or create the global latency stats instance."""
    global _latency_stats
    if _latency_stats is None:
        _latency_stats = LatencyStats()
    return _latency_stats


def _slow_thresholds(path: str) -> tuple[float, float]:
    if path.startswith(CHAT_PATH_PREFIXES):
        return SLOW_CHAT_THRESHOLD_MS, SLOW_CHAT_THRESHOLD_MS * 2
    return SLOW_REQUEST_THRESHOLD_MS, VERY_SLOW_REQUEST_THRESHOLD_MS


async def latency_logging_with_stats_middleware(request: Request, call_next: Callable) -> Response:
    """Middleware to log request latency and record it for monitoring.

    Logs timing information for every request, with elevated log levels
    for slow or failed requests. Health checks are only logged when slow.

    Args:
        request: The incoming request.
        call_next: The next middleware/handler in the chain.

    Returns:
        Response: The response from the handler.
    """
    start_time = time.perf_counter()

    method = request.method
    path = request.url.path
    is_health_check = path in HEALTH_PATHS

    response = None
    error_occurred = False

    try:
        response = await call_next(request)
        return response
    except Exception:
        error_occurred = True
        raise
    finally:
        latency_ms = (time.perf_counter() - start_time) * 1000

        if not is_health_check:
            get_latency_stats().record(path, latency_ms)

        status_code = response.status_code if response else 500
        slow_ms, very_slow_ms = _slow_thresholds(path)

        if is_health_check:
            if latency_ms > 100:
                logger.debug("%s %s - %s - %.2fms", method, path, status_code, latency_ms)
        elif error_occurred or status_code >= 500:
            logger.error("%s %s - %s - %.2fms", method, path, status_code, latency_ms)
        elif latency_ms > very_slow_ms:
            logger.error("VERY SLOW REQUEST: %s %s - %s - %.2fms", method, path, status_code, latency_ms)
        elif latency_ms > slow_ms:
            logger.warning("SLOW REQUEST: %s %s - %s - %.2fms", method, path, status_code, latency_ms)
        elif status_code >= 400:
            logger.warning("%s %s - %s - %.2fms", method, path, status_code, latency_ms)
        else:
            logger.info("%s %s - %s - %.2fms", method, path, status_code, latency_ms)
