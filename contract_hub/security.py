from __future__ import annotations

import threading
import time
from typing import Dict, Tuple

from flask import current_app, request

from contract_hub.errors import UserActionError


_SECURITY_HEADERS: Dict[str, str] = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Cache-Control": "no-store",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
}
_HSTS_VALUE = "max-age=31536000; includeSubDomains"
_MAX_TRACKED_KEYS = 10_000


class FixedWindowRateLimiter:
    """Counts hits per key inside fixed windows; stale windows are pruned lazily."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._windows: Dict[str, Tuple[float, int]] = {}

    def hit(self, key: str, *, limit: int, window_seconds: int) -> Tuple[bool, int]:
        """Register one hit and return ``(allowed, seconds until the window resets)``."""
        now = time.monotonic()
        with self._lock:
            started, count = self._windows.get(key, (now, 0))
            if now - started >= window_seconds:
                started, count = now, 0
            count += 1
            self._windows[key] = (started, count)
            if len(self._windows) > _MAX_TRACKED_KEYS:
                self._prune(now, window_seconds)
        return count <= limit, max(0, int(window_seconds - (now - started)))

    def _prune(self, now: float, window_seconds: int) -> None:
        self._windows = {
            key: window for key, window in self._windows.items() if now - window[0] < window_seconds
        }

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()


_RATE_LIMITER = FixedWindowRateLimiter()


def _rate_limit_key() -> str:
    # Principal headers are trusted upstream, so the user id is a fair bucket key.
    user_header = current_app.config.get("PRINCIPAL_USER_HEADER", "X-User-Id")
    principal = str(request.headers.get(user_header) or "").strip() or "anonymous"
    route = request.url_rule.rule if request.url_rule else request.path
    return "|".join((request.remote_addr or "unknown", principal, request.method, route))


def enforce_rate_limit() -> None:
    config = current_app.config
    if not config.get("RATE_LIMIT_ENABLED", True) or request.method == "OPTIONS":
        return

    allowed, retry_after = _RATE_LIMITER.hit(
        _rate_limit_key(),
        limit=max(1, int(config.get("RATE_LIMIT_MAX_REQUESTS") or 300)),
        window_seconds=max(1, int(config.get("RATE_LIMIT_WINDOW_SECONDS") or 60)),
    )
    if not allowed:
        raise UserActionError(
            code="rate_limit_exceeded",
            message_key="rate_limit_exceeded",
            http_status=429,
            payload={"retry_after": retry_after},
        )


def apply_security_headers(response):
    if not current_app.config.get("SECURITY_HEADERS_ENABLED", True):
        return response
    for name, value in _SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    if request.is_secure:
        response.headers.setdefault("Strict-Transport-Security", _HSTS_VALUE)
    return response


def reset_rate_limiter_for_tests() -> None:
    _RATE_LIMITER.reset()
