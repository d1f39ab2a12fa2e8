"""Rate limiting middleware — Redis-based fixed window per minute.

Learn: Each client IP (the first X-Forwarded-For hop when
`trust_forwarded_for` is on, so users behind one proxy don't share a
bucket) gets a counter key like "coditime:rl:{ip}:{bucket}:{minute}".
Endpoints that check a password (login, register, CLI approval) get a
stricter limit to slow down brute-force attempts.

Skipped entirely when Redis isn't available (e.g. in tests).
"""

import time

import structlog
from redis.exceptions import RedisError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from coditime.auth.credentials import client_address
from coditime.cache.client import get_redis
from coditime.config import settings

logger = structlog.get_logger()

AUTH_PATH_PREFIXES = (
    "/api/v1/auth/login",
    "/api/v1/auth/register",
    "/api/v1/cli/complete-access",
)


def is_auth_path(path: str) -> bool:
    return path.startswith(AUTH_PATH_PREFIXES)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Redis-based rate limiting per IP per minute."""

    def __init__(self, app, default_rpm: int = 100, auth_rpm: int = 10):
        super().__init__(app)
        self.default_rpm = default_rpm
        self.auth_rpm = auth_rpm

    async def dispatch(self, request: Request, call_next) -> Response:
        redis = get_redis()
        if redis is None:
            return await call_next(request)

        client_ip = (
            client_address(request, trust_forwarded_for=settings.trust_forwarded_for)
            or "unknown"
        )
        auth = is_auth_path(request.url.path)
        rpm = self.auth_rpm if auth else self.default_rpm

        window = int(time.time() // 60)
        bucket = "auth" if auth else "api"
        key = f"coditime:rl:{client_ip}:{bucket}:{window}"

        try:
            count = await redis.incr(key)
            if count == 1:
                await redis.expire(key, 120)
        except RedisError as e:
            logger.warning("rate_limit.redis_error", error=str(e))
            return await call_next(request)

        if count > rpm:
            logger.info("rate_limit.exceeded", ip=client_ip, bucket=bucket)
            return JSONResponse(
                status_code=429,
                content={"detail": "Rate limit exceeded. Try again later."},
                headers={"Retry-After": "60"},
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(rpm)
        response.headers["X-RateLimit-Remaining"] = str(max(0, rpm - count))
        return response
