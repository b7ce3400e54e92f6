"""Redis-backed rate limiter."""
import logging
import time
from typing import Optional, Tuple
import redis
import redis.asyncio as aioredis
from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from errors import AuthenticationError
from monitoring import rate_limit_exceeded_counter, suspicious_activity_counter
from security import decode_access_token

logger = logging.getLogger(__name__)

# (status predicate, key suffix, threshold, activity type) over a 5 minute window
SUSPICIOUS_PATTERNS = (
    (lambda code: code == 401, "401", 5, "credential_stuffing"),
    (lambda code: code == 404, "404", 10, "endpoint_scanning"),
    (lambda code: 400 <= code < 500, "4xx", 20, "abuse"),
)


class RedisRateLimiter(BaseHTTPMiddleware):
    """
    Sliding-window rate limiter shared across service instances.

    Two tiers: a looser limit per client IP (shared NATs, mobile carriers)
    and a tighter one per authenticated user. When Redis is unavailable
    requests are let through.
    """

    def __init__(
        self,
        app,
        redis_client: aioredis.Redis,
        requests_per_minute_ip: int = 600,
        requests_per_minute_user: int = 120,
        window_seconds: int = 60
    ):
        """
        Initialize Redis-backed rate limiter.

        Args:
            app: FastAPI application
            redis_client: Async Redis connection
            requests_per_minute_ip: Max requests per IP per minute
            requests_per_minute_user: Max requests per user per minute
            window_seconds: Sliding window size in seconds
        """
        super().__init__(app)
        self.redis = redis_client
        self.requests_per_minute_ip = requests_per_minute_ip
        self.requests_per_minute_user = requests_per_minute_user
        self.window_seconds = window_seconds

    async def _check_rate_limit(self, key: str, limit: int, window: int) -> Tuple[bool, int]:
        """
        Check rate limit using a Redis sorted set of request timestamps.

        Args:
            key: Redis key for this limit (e.g., "rate:ip:192.168.1.1")
            limit: Maximum requests allowed
            window: Time window in seconds

        Returns:
            Tuple of (is_allowed, current_count)
        """
        try:
            current_time = time.time()

            pipe = self.redis.pipeline()
            pipe.zremrangebyscore(key, 0, current_time - window)
            pipe.zcard(key)
            pipe.zadd(key, {str(current_time): current_time})
            pipe.expire(key, window + 1)
            results = await pipe.execute()

            # Count before the current request was added
            count = results[1]
            return count < limit, count + 1

        except redis.RedisError as e:
            logger.error("Redis rate limit error", extra={"error": str(e)})
            return True, 0

    @staticmethod
    def _user_id(request: Request) -> Optional[str]:
        auth_header = request.headers.get("authorization")
        if not auth_header or not auth_header.startswith("Bearer "):
            return None
        try:
            return decode_access_token(auth_header.split(" ", 1)[1])["id"]
        except AuthenticationError:
            # Rejected later by the route itself
            return None

    def _limited(self, limit_type: str, subject: str, count: int, limit: int) -> JSONResponse:
        rate_limit_exceeded_counter.add(1, {"limit_type": limit_type})
        logger.warning("Rate limit exceeded", extra={
            "limit_type": limit_type,
            "subject": subject,
            "count": count,
            "limit": limit
        })
        return JSONResponse(
            status_code=429,
            content={"detail": f"Rate limit exceeded for {limit_type}. Maximum {limit} requests per minute."},
            headers={"Retry-After": str(self.window_seconds)}
        )

    async def dispatch(self, request: Request, call_next):
        """
        Process request with dual-tier rate limiting.

        Returns:
            Response or 429 if rate limited
        """
        client_ip = request.client.host if request.client else "unknown"
        if "x-forwarded-for" in request.headers:
            client_ip = request.headers["x-forwarded-for"].split(",")[0].strip()

        ip_allowed, ip_count = await self._check_rate_limit(
            f"rate:ip:{client_ip}",
            self.requests_per_minute_ip,
            self.window_seconds
        )
        if not ip_allowed:
            return self._limited("ip", client_ip, ip_count, self.requests_per_minute_ip)

        user_id = self._user_id(request)
        if user_id:
            user_allowed, user_count = await self._check_rate_limit(
                f"rate:user:{user_id}",
                self.requests_per_minute_user,
                self.window_seconds
            )
            if not user_allowed:
                return self._limited("user", user_id, user_count, self.requests_per_minute_user)

        response = await call_next(request)

        await self._detect_suspicious_activity(response.status_code, client_ip)

        return response

    async def _detect_suspicious_activity(self, status_code: int, client_ip: str) -> None:
        """
        Count error responses per IP and flag bursts.

        Patterns:
        - Credential stuffing: 5+ 401s in 5 minutes
        - Endpoint scanning: 10+ 404s in 5 minutes
        - Abuse: 20+ 4xx errors in 5 minutes
        """
        window = 300
        try:
            current_time = time.time()
            for matches, suffix, threshold, activity in SUSPICIOUS_PATTERNS:
                if not matches(status_code):
                    continue
                key = f"suspicious:{suffix}:{client_ip}"
                await self.redis.zadd(key, {str(current_time): current_time})
                await self.redis.expire(key, window + 1)

                count = await self.redis.zcount(key, current_time - window, current_time)
                if count >= threshold:
                    suspicious_activity_counter.add(1, {"type": activity})
                    logger.warning("Suspicious activity", extra={
                        "type": activity,
                        "client_ip": client_ip,
                        "count": count
                    })
        except redis.RedisError as e:
            logger.error("Error detecting suspicious activity", extra={"error": str(e)})
