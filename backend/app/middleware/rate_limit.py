from collections import defaultdict, deque
from time import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

# Money-moving endpoints get a tighter per-IP window than the rest of the API.
_TRANSFER_PREFIX = "/api/transfers"
_TRANSFER_LIMIT = 30  # max transfer requests per minute per IP
_GLOBAL_LIMIT = 120   # general limit for all other endpoints


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Per-client sliding-window rate limiter.

    - Transfer endpoints: 30 req/min per IP
    - Everything else: 120 req/min per IP
    """

    def __init__(self, app, requests_per_minute: int = _GLOBAL_LIMIT, transfer_requests_per_minute: int = _TRANSFER_LIMIT):
        super().__init__(app)
        self.requests_per_minute = requests_per_minute
        self.transfer_requests_per_minute = transfer_requests_per_minute
        self._global_windows: dict[str, deque] = defaultdict(deque)
        self._transfer_windows: dict[str, deque] = defaultdict(deque)

    async def dispatch(self, request: Request, call_next):
        client_ip = request.client.host if request.client else "unknown"
        path = request.url.path
        now = time()

        if path.startswith(_TRANSFER_PREFIX):
            bucket = self._transfer_windows[client_ip]
            self._evict(bucket, now)
            if len(bucket) >= self.transfer_requests_per_minute:
                return JSONResponse(
                    status_code=429,
                    content={"error": "Too many transfer requests"},
                    headers={"Retry-After": "60"},
                )
            bucket.append(now)

        bucket = self._global_windows[client_ip]
        self._evict(bucket, now)
        if len(bucket) >= self.requests_per_minute:
            return JSONResponse(
                status_code=429,
                content={"error": "Too many requests"},
                headers={"Retry-After": "60"},
            )
        bucket.append(now)

        return await call_next(request)

    @staticmethod
    def _evict(bucket: deque, now: float) -> None:
        while bucket and now - bucket[0] > 60:
            bucket.popleft()
