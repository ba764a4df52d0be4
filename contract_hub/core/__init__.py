from contract_hub.core.event_bus import (
    ContractCreated,
    ContractTransitioned,
    DomainEvent,
    EngagementRequestCreated,
    EngagementRequestDecided,
    EventBus,
    OfferSelected,
    OfferSubmitted,
    OfferWithdrawn,
    get_event_bus,
    reset_event_bus_for_tests,
)

__all__ = [
    "DomainEvent",
    "EventBus",
    "ContractCreated",
    "ContractTransitioned",
    "OfferSubmitted",
    "OfferSelected",
    "OfferWithdrawn",
    "EngagementRequestCreated",
    "EngagementRequestDecided",
    "get_event_bus",
    "reset_event_bus_for_tests",
]
