# qrtrack/ratelimit.py

"""Login brute-force throttling backed by redis. Disabled without REDIS_URL."""

from __future__ import annotations

from typing import Optional

import redis

from qrtrack import config
from qrtrack.errors import RateLimited, UpstreamError


def _login_fail_key(email: str, ip: str) -> str:
    return f"login:fail:{email.lower()}:{ip}"


class LoginThrottle:
    def __init__(
        self,
        client: Optional[redis.Redis] = None,
        max_failures: int = config.LOGIN_MAX_FAILURES,
        lockout_seconds: int = config.LOGIN_LOCKOUT_SECONDS,
    ):
        self.client = client
        self.max_failures = max_failures
        self.lockout_seconds = lockout_seconds

    @classmethod
    def from_url(cls, url: Optional[str]) -> "LoginThrottle":
        if not url:
            return cls(None)
        return cls(redis.Redis.from_url(url, decode_responses=True))

    @property
    def enabled(self) -> bool:
        return self.client is not None

    def check(self, email: str, ip: str) -> None:
        if not self.enabled:
            return
        key = _login_fail_key(email, ip)
        try:
            fail_count = self.client.get(key)
            fail_count = int(fail_count) if fail_count else 0
            if fail_count >= self.max_failures:
                ttl = self.client.ttl(key)
            else:
                return
        except redis.RedisError as exc:
            raise UpstreamError(f"Auth backend unavailable: {exc}") from exc
        raise RateLimited(
            f"Too many failed logins. Try again in {max(int(ttl), 0)} seconds."
        )

    def record_failure(self, email: str, ip: str) -> int:
        if not self.enabled:
            return 0
        key = _login_fail_key(email, ip)
        try:
            count = self.client.incr(key)
            if count == 1:
                self.client.expire(key, self.lockout_seconds)
        except redis.RedisError as exc:
            raise UpstreamError(f"Auth backend unavailable: {exc}") from exc
        return int(count)

    def clear(self, email: str, ip: str) -> None:
        if not self.enabled:
            return
        try:
            self.client.delete(_login_fail_key(email, ip))
        except redis.RedisError as exc:
            raise UpstreamError(f"Auth backend unavailable: {exc}") from exc
