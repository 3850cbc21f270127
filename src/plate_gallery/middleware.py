import logging
import time
from threading import Lock
from typing import Dict, Tuple

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60


class RateLimiter:
    """
    In-memory fixed window rate limiter.
    Tracks requests per client identifier within a one minute window.
    """

    def __init__(self, requests_per_minute: int = 60):
        self.rpm = requests_per_minute
        # identifier -> (count, window_start_time)
        self.requests: Dict[str, Tuple[int, float]] = {}
        self._lock = Lock()

    def is_allowed(self, identifier: str) -> bool:
        now = time.time()
        with self._lock:
            count, start_time = self.requests.get(identifier, (0, now))

            if now - start_time > WINDOW_SECONDS:
                self.requests[identifier] = (1, now)
                return True

            if count >= self.rpm:
                return False

            self.requests[identifier] = (count + 1, start_time)
            return True

    def cleanup(self):
        """Drop identifiers whose window has expired."""
        now = time.time()
        with self._lock:
            expired = [k for k, v in self.requests.items() if now - v[1] > WINDOW_SECONDS]
            for k in expired:
                del self.requests[k]

    def reset(self):
        with self._lock:
            self.requests.clear()


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs method, path, status code and duration of every request."""

    async def dispatch(self, request: Request, call_next):
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            logger.exception(f"{request.method} {request.url.path} failed")
            raise
        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info(f"{request.method} {request.url.path} -> {response.status_code} ({elapsed_ms:.1f} ms)")
        return response
