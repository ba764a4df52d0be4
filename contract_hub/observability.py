from __future__ import annotations

import contextvars
import json
import logging
import threading
import time
import uuid
from collections import Counter
from datetime import datetime, timezone
from typing import Dict

from flask import g, has_request_context, request


_LATENCY_BUCKETS_MS = (5.0, 10.0, 25.0, 50.0, 100.0, 250.0, 500.0, 1000.0, 2500.0, 5000.0)

# Carries the request id into log records emitted outside a request (threads, CLI).
_LOG_REQUEST_ID_CTX: contextvars.ContextVar[str] = contextvars.ContextVar("log_request_id", default="")


def set_log_request_id(request_id: str | None) -> None:
    _LOG_REQUEST_ID_CTX.set(str(request_id or "").strip())


class JsonLogFormatter(logging.Formatter):
    """One JSON object per line; ``extra=`` fields are merged at the top level."""

    _reserved = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, object] = {
            "ts": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if has_request_context():
            payload["request_id"] = current_request_id()
            payload["path"] = request.path
            payload["method"] = request.method
            actor = getattr(g, "actor", None)
            if actor is not None:
                payload["principal_id"] = actor.user_id
                payload["principal_role"] = actor.role
        else:
            payload["request_id"] = str(getattr(record, "request_id", "") or "") or current_request_id()

        for key, value in record.__dict__.items():
            if key in self._reserved or key.startswith("_") or key in payload or callable(value):
                continue
            payload[key] = value

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True, separators=(",", ":"), default=str)


def configure_json_logging(app) -> None:
    if not bool(app.config.get("LOG_JSON", True)):
        return
    level_name = str(app.config.get("LOG_LEVEL", "INFO")).strip().upper()

    handler = logging.StreamHandler()
    handler.setFormatter(JsonLogFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(getattr(logging, level_name, logging.INFO))
    app.logger.handlers = []
    app.logger.propagate = True


def ensure_request_id() -> str:
    request_id = str(getattr(g, "request_id", "") or "").strip()
    if not request_id:
        request_id = str(request.headers.get("X-Request-Id") or "").strip() or str(uuid.uuid4())
        g.request_id = request_id
    set_log_request_id(request_id)
    return request_id


def current_request_id() -> str:
    if has_request_context():
        request_id = str(getattr(g, "request_id", "") or "").strip()
        if request_id:
            return request_id
    return _LOG_REQUEST_ID_CTX.get() or "n/a"


class MetricsRegistry:
    """In-process counters exposed on ``/health``. Reset on restart."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.reset()

    def reset(self) -> None:
        with self._lock:
            self._requests_total = 0
            self._errors_total = 0
            self._routes: Dict[str, Dict[str, float]] = {}
            self._latency_buckets: Counter = Counter()
            self._transitions: Counter = Counter()
            self._domain_events: Counter = Counter()

    def observe_http(self, method: str, route: str, status_code: int, duration_ms: float) -> None:
        key = f"{(method or 'GET').upper()} {route or 'unknown'}"
        duration = max(0.0, float(duration_ms))
        bucket = next((f"{limit:g}" for limit in _LATENCY_BUCKETS_MS if duration <= limit), "+Inf")
        with self._lock:
            stats = self._routes.setdefault(key, {"requests": 0, "errors": 0, "latency_sum_ms": 0.0, "latency_max_ms": 0.0})
            stats["requests"] += 1
            stats["latency_sum_ms"] += duration
            stats["latency_max_ms"] = max(stats["latency_max_ms"], duration)
            self._requests_total += 1
            if int(status_code) >= 400:
                stats["errors"] += 1
                self._errors_total += 1
            self._latency_buckets[bucket] += 1

    def observe_workflow_transition(self, action: str, outcome: str) -> None:
        with self._lock:
            self._transitions[(action or "unknown", outcome or "unknown")] += 1

    def observe_domain_event_emitted(self, event_type: str) -> None:
        with self._lock:
            self._domain_events[event_type or "unknown"] += 1

    def snapshot(self) -> dict:
        with self._lock:
            by_route = [
                {
                    "route": route,
                    "requests": int(stats["requests"]),
                    "errors": int(stats["errors"]),
                    "avg_latency_ms": round(stats["latency_sum_ms"] / stats["requests"], 2),
                    "max_latency_ms": round(stats["latency_max_ms"], 2),
                }
                for route, stats in self._routes.items()
            ]
            by_route.sort(key=lambda item: item["requests"], reverse=True)
            transitions: Dict[str, Dict[str, int]] = {}
            for (action, outcome), count in sorted(self._transitions.items()):
                transitions.setdefault(action, {})[outcome] = count
            latency = {f"{limit:g}": self._latency_buckets.get(f"{limit:g}", 0) for limit in _LATENCY_BUCKETS_MS}
            latency["+Inf"] = self._latency_buckets.get("+Inf", 0)
            return {
                "requests_total": self._requests_total,
                "errors_total": self._errors_total,
                "by_route": by_route[:40],
                "latency_ms_buckets": latency,
                "workflow_transitions": transitions,
                "domain_events": {
                    "emitted_total": sum(self._domain_events.values()),
                    "by_type": dict(sorted(self._domain_events.items())),
                },
            }


_METRICS = MetricsRegistry()


def mark_request_start() -> None:
    g._request_started_at = time.perf_counter()


def observe_response(response):
    started = float(getattr(g, "_request_started_at", 0.0) or 0.0)
    elapsed_ms = (time.perf_counter() - started) * 1000.0 if started else 0.0
    route = request.url_rule.rule if request.url_rule is not None else request.path
    _METRICS.observe_http(request.method, route, int(response.status_code), elapsed_ms)
    response.headers["X-Response-Time-Ms"] = f"{elapsed_ms:.2f}"
    return response


def metrics_snapshot() -> dict:
    return _METRICS.snapshot()


def observe_workflow_transition(action: str, outcome: str) -> None:
    _METRICS.observe_workflow_transition(action, outcome)


def observe_domain_event_emitted(event_type: str) -> None:
    _METRICS.observe_domain_event_emitted(event_type)


def reset_metrics_for_tests() -> None:
    _METRICS.reset()
    set_log_request_id(None)
