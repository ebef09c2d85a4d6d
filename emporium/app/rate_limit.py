"""Sliding-window rate limiting.

Each limiter type has a request budget per window (see Config.RATE_LIMITS).
Redis sorted sets hold request timestamps when Redis is reachable; a
per-key deque is used otherwise. Backend errors fail open so a broken
limiter never takes the storefront down.
"""
import ipaddress
import json
import time
import uuid
from collections import Counter, deque
from datetime import datetime, timedelta
from typing import Any, Deque, Dict, List, Optional

import redis
from fastapi import Request

from .config import Config
from .redis_client import get_redis
from ..schemas.io_models import RateLimitResult
from ..utils.logger import get_logger

logger = get_logger()

# Razorpay's published webhook source ranges
DEFAULT_WEBHOOK_RANGES = ["54.251.82.0/24", "54.251.83.0/24"]

VIOLATIONS_KEY = "rate_limit:violations"
MAX_VIOLATIONS = 1000
SWEEP_INTERVAL_SECONDS = 60

_LOCALHOST = {"127.0.0.1", "::1", "localhost", "unknown", "testclient"}


class RateLimiter:
    """Sliding-window limiter with a Redis backend and an in-memory fallback."""

    def __init__(self, redis_client: Optional[redis.Redis] = None, use_redis: bool = True):
        self.redis_client = redis_client if redis_client is not None else (get_redis() if use_redis else None)
        self.memory_windows: Dict[str, Deque[float]] = {}
        self._last_sweep = 0.0
        self.memory_violations: Deque[Dict[str, Any]] = deque(maxlen=MAX_VIOLATIONS)

    @staticmethod
    def _key(limiter_type: str, identifier: str) -> str:
        return f"ratelimit:{limiter_type}:{identifier}"

    def check(self, limiter_type: str, identifier: str) -> RateLimitResult:
        """Record one request and report whether it fits in the window."""
        if limiter_type not in Config.RATE_LIMITS:
            raise ValueError(f"Unknown rate limiter type: {limiter_type}")
        limit, window = Config.RATE_LIMITS[limiter_type]
        now = time.time()
        reset = datetime.fromtimestamp(now + window)

        try:
            if self.redis_client is not None:
                count = self._check_redis(self._key(limiter_type, identifier), now, window, limit)
            else:
                count = self._check_memory(self._key(limiter_type, identifier), now, window, limit)
        except Exception as e:
            logger.error("[RATE_LIMIT] backend error for %s, allowing request: %s", limiter_type, e)
            return RateLimitResult(success=True, remaining=limit, reset=reset, limit=limit)

        allowed = count < limit
        remaining = max(0, limit - count - 1) if allowed else 0
        return RateLimitResult(success=allowed, remaining=remaining, reset=reset, limit=limit,
                               blocked=not allowed)

    def _check_redis(self, key: str, now: float, window: int, limit: int) -> int:
        pipe = self.redis_client.pipeline()
        pipe.zremrangebyscore(key, 0, now - window)
        pipe.zcard(key)
        _, count = pipe.execute()
        if count < limit:
            pipe = self.redis_client.pipeline()
            pipe.zadd(key, {f"{now}:{uuid.uuid4().hex[:8]}": now})
            pipe.expire(key, window)
            pipe.execute()
        return count

    def _check_memory(self, key: str, now: float, window: int, limit: int) -> int:
        self._sweep_memory(now)
        hits = self.memory_windows.setdefault(key, deque())
        while hits and hits[0] <= now - window:
            hits.popleft()
        count = len(hits)
        if count < limit:
            hits.append(now)
        return count

    def _sweep_memory(self, now: float) -> None:
        """Forget identifiers whose newest hit has left every window."""
        if now - self._last_sweep < SWEEP_INTERVAL_SECONDS:
            return
        self._last_sweep = now
        horizon = now - max(window for _, window in Config.RATE_LIMITS.values())
        stale = [key for key, hits in self.memory_windows.items() if not hits or hits[-1] <= horizon]
        for key in stale:
            del self.memory_windows[key]

    def reset(self, limiter_type: str, identifier: str) -> bool:
        key = self._key(limiter_type, identifier)
        try:
            if self.redis_client is not None:
                self.redis_client.delete(key)
            else:
                self.memory_windows.pop(key, None)
            return True
        except Exception as e:
            logger.error("[RATE_LIMIT] reset failed for %s: %s", key, e)
            return False

    def log_violation(self, identifier: str, limiter_type: str, endpoint: str,
                      user_agent: Optional[str] = None) -> None:
        violation = {
            "identifier": identifier,
            "limiter_type": limiter_type,
            "endpoint": endpoint,
            "user_agent": user_agent,
            "timestamp": datetime.now().isoformat(),
        }
        logger.warning("[RATE_LIMIT_VIOLATION] type=%s endpoint=%s identifier=%s",
                       limiter_type, endpoint, identifier)
        try:
            if self.redis_client is not None:
                pipe = self.redis_client.pipeline()
                pipe.lpush(VIOLATIONS_KEY, json.dumps(violation))
                pipe.ltrim(VIOLATIONS_KEY, 0, MAX_VIOLATIONS - 1)
                pipe.execute()
            else:
                self.memory_violations.appendleft(violation)
        except Exception as e:
            logger.error("[RATE_LIMIT] failed to store violation: %s", e)

    def recent_violations(self) -> List[Dict[str, Any]]:
        if self.redis_client is not None:
            try:
                return [json.loads(v) for v in self.redis_client.lrange(VIOLATIONS_KEY, 0, MAX_VIOLATIONS - 1)]
            except Exception as e:
                logger.error("[RATE_LIMIT] failed to read violations: %s", e)
                return []
        return list(self.memory_violations)

    def analytics(self, hours: int = 24) -> Dict[str, Any]:
        cutoff = datetime.now() - timedelta(hours=hours)
        recent = [v for v in self.recent_violations() if datetime.fromisoformat(v["timestamp"]) >= cutoff]
        return {
            "total_violations": len(recent),
            "by_type": dict(Counter(v["limiter_type"] for v in recent)),
            "by_endpoint": dict(Counter(v["endpoint"] for v in recent)),
            "top_identifiers": [
                {"identifier": ident, "count": n}
                for ident, n in Counter(v["identifier"] for v in recent).most_common(10)
            ],
            "recent": recent[:50],
            "limits": {k: {"limit": v[0], "window_seconds": v[1]} for k, v in Config.RATE_LIMITS.items()},
        }


_limiter: Optional[RateLimiter] = None


def get_rate_limiter() -> RateLimiter:
    global _limiter
    if _limiter is None:
        _limiter = RateLimiter()
    return _limiter


def check_rate_limit(limiter_type: str, identifier: str) -> RateLimitResult:
    return get_rate_limiter().check(limiter_type, identifier)


def log_rate_limit_violation(identifier: str, limiter_type: str, endpoint: str,
                             user_agent: Optional[str] = None) -> None:
    get_rate_limiter().log_violation(identifier, limiter_type, endpoint, user_agent)


def get_rate_limit_analytics(hours: int = 24) -> Dict[str, Any]:
    return get_rate_limiter().analytics(hours)


def reset_rate_limit(limiter_type: str, identifier: str) -> bool:
    return get_rate_limiter().reset(limiter_type, identifier)


def rate_limit_headers(result: RateLimitResult) -> Dict[str, str]:
    return {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": result.reset.isoformat(),
    }


def retry_after_seconds(result: RateLimitResult) -> int:
    return max(0, int((result.reset - datetime.now()).total_seconds()))


def get_client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def get_client_identifier(request: Request) -> str:
    """Client IP, or a browser fingerprint when the IP is a loopback address."""
    ip = get_client_ip(request)
    if ip in _LOCALHOST:
        user_agent = request.headers.get("user-agent", "unknown")
        accept_language = request.headers.get("accept-language", "unknown")
        return f"{user_agent}-{accept_language}"[:100]
    return ip


def check_webhook_ip_whitelist(ip: str) -> bool:
    """Return True if the caller may deliver webhooks."""
    if ip in _LOCALHOST or ip.startswith("127."):
        return Config.is_development()

    try:
        address = ipaddress.ip_address(ip)
    except ValueError:
        logger.warning("[WEBHOOK] unparseable source ip %r", ip)
        return False

    for entry in list(Config.RAZORPAY_WEBHOOK_IPS) + DEFAULT_WEBHOOK_RANGES:
        try:
            if "/" in entry:
                if address in ipaddress.ip_network(entry, strict=False):
                    return True
            elif address == ipaddress.ip_address(entry):
                return True
        except ValueError:
            logger.warning("[WEBHOOK] ignoring malformed allow-list entry %r", entry)
    return False
