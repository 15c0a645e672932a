# /backend/wardround/utils/rate_limit.py

import time
import logging
from typing import Dict, List, Tuple
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

logger = logging.getLogger(__name__)


class RateLimiter:
    """Sliding-window request counter per client."""

    def __init__(self, max_requests: int, window_seconds: int):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._requests: Dict[str, List[float]] = {}
        self._last_sweep = 0.0

    @property
    def tracked_clients(self) -> int:
        return len(self._requests)

    def _sweep(self, window_start: float) -> None:
        # Clients whose newest request has left the window
        stale = [client for client, times in self._requests.items() if not times or times[-1] <= window_start]
        for client in stale:
            del self._requests[client]
        if stale:
            logger.debug(f"Rate limiter evicted {len(stale)} idle clients")

    def is_allowed(self, client_id: str, now: float = None) -> Tuple[bool, Dict[str, int]]:
        now = time.time() if now is None else now
        window_start = now - self.window_seconds

        if now - self._last_sweep >= self.window_seconds:
            self._sweep(window_start)
            self._last_sweep = now

        recent = [t for t in self._requests.get(client_id, []) if t > window_start]
        headers = {
            "X-RateLimit-Limit": self.max_requests,
            "X-RateLimit-Remaining": max(0, self.max_requests - len(recent)),
            "X-RateLimit-Reset": int((recent[0] if recent else now) + self.window_seconds),
        }

        if len(recent) >= self.max_requests:
            return False, headers

        recent.append(now)
        self._requests[client_id] = recent
        headers["X-RateLimit-Remaining"] -= 1
        return True, headers


class RateLimitMiddleware(BaseHTTPMiddleware):
    """429 once a client exceeds its request budget on /api/ paths."""

    def __init__(self, app, max_requests: int, window_seconds: int, prefix: str = "/api/"):
        super().__init__(app)
        self._limiter = RateLimiter(max_requests, window_seconds)
        self._prefix = prefix

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        # CORS preflight is never counted
        if request.method == "OPTIONS" or not request.url.path.startswith(self._prefix):
            return await call_next(request)

        client_id = request.client.host if request.client else "unknown"
        allowed, headers = self._limiter.is_allowed(client_id)

        if not allowed:
            logger.warning(f"Rate limit exceeded for {client_id} on {request.url.path}")
            return JSONResponse(
                status_code=429,
                content={"message": "Too many requests from this IP, please try again later."},
                headers={k: str(v) for k, v in headers.items()},
            )

        response = await call_next(request)
        for key, value in headers.items():
            response.headers[key] = str(value)
        return response
