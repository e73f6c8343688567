import math
import time
from typing import Callable, Dict, NamedTuple, Optional, Tuple

from starlette.requests import Request
from starlette.responses import JSONResponse, Response

WINDOW_S = 60.0
DEFAULT_MAX_REQUESTS = 30
PRUNE_THRESHOLD = 10000


class RateLimitResult(NamedTuple):
    allowed: bool
    remaining: int
    reset_in: float  # seconds


class _Window:
    __slots__ = ("count", "reset_at")

    def __init__(self, count: int, reset_at: float) -> None:
        self.count = count
        self.reset_at = reset_at


class RateLimiter:
    """Fixed one-minute window per client key. Process-local."""

    def __init__(self, window_s: float = WINDOW_S, clock: Callable[[], float] = time.monotonic) -> None:
        self.window_s = window_s
        self.clock = clock
        self._windows: Dict[str, _Window] = {}

    def check(self, key: str, max_requests: int = DEFAULT_MAX_REQUESTS) -> RateLimitResult:
        now = self.clock()
        if len(self._windows) > PRUNE_THRESHOLD:
            self._windows = {k: w for k, w in self._windows.items() if w.reset_at > now}

        window = self._windows.get(key)
        if window is None or now > window.reset_at:
            self._windows[key] = _Window(1, now + self.window_s)
            return RateLimitResult(True, max_requests - 1, self.window_s)
        if window.count >= max_requests:
            return RateLimitResult(False, 0, window.reset_at - now)
        window.count += 1
        return RateLimitResult(True, max_requests - window.count, window.reset_at - now)


def client_key(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client:
        return request.client.host
    return "unknown"


def apply_headers(response: Response, result: RateLimitResult) -> Response:
    response.headers["X-RateLimit-Remaining"] = str(result.remaining)
    response.headers["X-RateLimit-Reset"] = str(math.ceil(result.reset_in))
    return response


def enforce(limiter: RateLimiter, request: Request, max_requests: int) -> Tuple[RateLimitResult, Optional[Response]]:
    """
    Counts the request. Returns (result, None) when allowed, or (result, 429 response)
    when the client is over its limit.
    """
    result = limiter.check(client_key(request), max_requests)
    rejection: Optional[Response] = None
    if not result.allowed:
        rejection = apply_headers(
            JSONResponse(
                {"error": "Too many requests. Please try again later.", "retryAfter": math.ceil(result.reset_in)},
                status_code=429,
            ),
            result,
        )
    return result, rejection
