import logging
import time
from collections import defaultdict

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

logger = logging.getLogger(__name__)


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, limit_per_minute: int = 60, purchase_limit_per_minute: int = 20):
        super().__init__(app)
        self.limit = limit_per_minute
        self.purchase_limit = purchase_limit_per_minute
        # In-memory sliding window per client: (ip, bucket) -> [timestamps]
        # Per instance only; a shared store is needed for multi-instance limits.
        self.requests = defaultdict(list)

    def _bucket(self, request: Request):
        path = request.url.path
        if request.method == "POST" and path.endswith("/purchase"):
            return "purchase", self.purchase_limit
        if request.method == "POST" and path.endswith("/accounts/login"):
            return "login", self.purchase_limit
        return "global", self.limit

    async def dispatch(self, request: Request, call_next):
        client_ip = request.client.host if request.client else "unknown"
        now = time.time()
        bucket, limit = self._bucket(request)
        key = (client_ip, bucket)

        # Drop timestamps older than 60s
        self.requests[key] = [t for t in self.requests[key] if now - t < 60]

        if len(self.requests[key]) >= limit:
            logger.warning("Rate limit hit: ip=%s bucket=%s path=%s", client_ip, bucket, request.url.path)
            return JSONResponse(
                status_code=429,
                content={"error": {
                    "kind": "rate_limited",
                    "message": "Too many requests. Please try again later.",
                    "retryable": True,
                    "requires_followup": False,
                }},
            )

        self.requests[key].append(now)
        return await call_next(request)
