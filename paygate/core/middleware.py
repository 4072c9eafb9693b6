import logging
import time
from typing import Callable, Dict, Hashable, List
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60

class SlidingWindow:
    """Request timestamps per key over the last minute. Keys with no recent hits are dropped."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self.hits: Dict[Hashable, List[float]] = {}
        self._last_sweep = clock()

    def allow(self, key: Hashable, limit: int) -> bool:
        now = self.clock()
        self._sweep(now)
        recent = [t for t in self.hits.get(key, ()) if now - t < WINDOW_SECONDS]
        if len(recent) >= limit:
            self.hits[key] = recent
            return False
        recent.append(now)
        self.hits[key] = recent
        return True

    def _sweep(self, now: float) -> None:
        if now - self._last_sweep < WINDOW_SECONDS:
            return
        self._last_sweep = now
        stale = [k for k, stamps in self.hits.items() if not stamps or now - stamps[-1] >= WINDOW_SECONDS]
        for k in stale:
            del self.hits[k]

    def __len__(self) -> int:
        return len(self.hits)

class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, limit_per_minute: int = 60, paywall_limit_per_minute: int = 30, clock: Callable[[], float] = time.time):
        super().__init__(app)
        self.limit = limit_per_minute
        self.paywall_limit = paywall_limit_per_minute
        # In-memory sliding window keyed by (IP, bucket)
        self.window = SlidingWindow(clock)

    async def dispatch(self, request: Request, call_next):
        client_ip = request.client.host if request.client else "unknown"

        # Every paywall hit can create an intent, so it gets its own stricter window
        path = request.url.path
        bucket, limit = "global", self.limit
        if path.endswith("/paywall"):
            bucket, limit = "paywall", self.paywall_limit

        if not self.window.allow((client_ip, bucket), limit):
            logger.warning(f"[RateLimit] {client_ip} exceeded {limit}/min on {bucket}")
            return JSONResponse(
                status_code=429,
                content={"error": "RateLimited", "message": "Too many requests. Please try again later."}
            )

        return await call_next(request)

class RequestLogMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info(f"{request.method} {request.url.path} -> {response.status_code} ({elapsed_ms:.1f}ms)")
        return response
