from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import RLock
from typing import Callable, Dict, List, Type

from contract_hub.observability import observe_domain_event_emitted


EventHandler = Callable[["DomainEvent"], None]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, kw_only=True)
class DomainEvent:
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    occurred_at: datetime = field(default_factory=_utc_now)
    actor_id: int | None = None
    actor_role: str = ""

    def __post_init__(self) -> None:
        normalized_event_id = str(self.event_id or "").strip() or uuid.uuid4().hex
        normalized_occurred_at = self.occurred_at if isinstance(self.occurred_at, datetime) else _utc_now()
        if normalized_occurred_at.tzinfo is None:
            normalized_occurred_at = normalized_occurred_at.replace(tzinfo=timezone.utc)
        object.__setattr__(self, "event_id", normalized_event_id)
        object.__setattr__(self, "occurred_at", normalized_occurred_at.astimezone(timezone.utc))


@dataclass(frozen=True, kw_only=True)
class ContractCreated(DomainEvent):
    contract_id: int
    reference_number: str
    status: str


@dataclass(frozen=True, kw_only=True)
class ContractTransitioned(DomainEvent):
    contract_id: int
    reference_number: str
    action: str
    from_status: str
    to_status: str
    reason: str | None = None


@dataclass(frozen=True, kw_only=True)
class OfferSubmitted(DomainEvent):
    contract_id: int
    offer_id: int
    provider_id: int


@dataclass(frozen=True, kw_only=True)
class OfferSelected(DomainEvent):
    contract_id: int
    offer_id: int
    provider_id: int
    rejected_offer_ids: tuple = ()


@dataclass(frozen=True, kw_only=True)
class OfferWithdrawn(DomainEvent):
    contract_id: int
    offer_id: int
    provider_id: int


@dataclass(frozen=True, kw_only=True)
class EngagementRequestCreated(DomainEvent):
    contract_id: int
    request_id: int
    provider_id: int


@dataclass(frozen=True, kw_only=True)
class EngagementRequestDecided(DomainEvent):
    contract_id: int
    request_id: int
    status: str
    rejected_request_ids: tuple = ()


class EventBus:
    """In-process publish/subscribe. Handlers run synchronously after the unit of work commits."""

    def __init__(self) -> None:
        self._lock = RLock()
        self._handlers: Dict[Type[DomainEvent], List[EventHandler]] = {}
        self._logger = logging.getLogger("contract_hub")

    def subscribe(self, event_type: Type[DomainEvent], handler: EventHandler) -> None:
        with self._lock:
            handlers = self._handlers.setdefault(event_type, [])
            if handler not in handlers:
                handlers.append(handler)

    def publish(self, event: DomainEvent) -> None:
        observe_domain_event_emitted(type(event).__name__)
        with self._lock:
            handlers = list(self._handlers.get(type(event), []))
        for handler in handlers:
            try:
                handler(event)
            except Exception:  # noqa: BLE001
                self._logger.exception("event_handler_failed", extra={"event_type": type(event).__name__})

    def clear(self) -> None:
        with self._lock:
            self._handlers.clear()


_DEFAULT_EVENT_BUS = EventBus()


def get_event_bus() -> EventBus:
    return _DEFAULT_EVENT_BUS


def reset_event_bus_for_tests() -> None:
    _DEFAULT_EVENT_BUS.clear()
