from __future__ import annotations

from typing import FrozenSet, Tuple


DRAFT = "draft"
PENDING_PROCUREMENT = "pending_procurement"
PENDING_LEGAL = "pending_legal"
OPEN_FOR_OFFERS = "open_for_offers"
OFFER_SELECTED = "offer_selected"
PENDING_FINAL_APPROVAL = "pending_final_approval"
FINAL_APPROVED = "final_approved"
REJECTED = "rejected"
CANCELLED = "cancelled"

PIPELINE: Tuple[str, ...] = (
    DRAFT,
    PENDING_PROCUREMENT,
    PENDING_LEGAL,
    OPEN_FOR_OFFERS,
    OFFER_SELECTED,
    PENDING_FINAL_APPROVAL,
    FINAL_APPROVED,
)
TERMINAL_STATUSES: FrozenSet[str] = frozenset({REJECTED, CANCELLED})
LIVE_STATUSES: FrozenSet[str] = frozenset(PIPELINE) | TERMINAL_STATUSES

# Read-only values kept for contracts imported from the earlier approval flow.
# They are listed and displayed but never a source or target of a transition.
LEGACY_STATUSES: FrozenSet[str] = frozenset(
    {
        "pending_approval",
        "published",
        "searching_provider",
        "provider_assigned",
        "in_progress",
        "completed",
    }
)
ALL_CONTRACT_STATUSES: FrozenSet[str] = LIVE_STATUSES | LEGACY_STATUSES

# Statuses from which a contract can still be cancelled or rejected.
PRE_FINAL_STATUSES: FrozenSet[str] = frozenset(PIPELINE[:-1])

OFFER_PENDING = "pending"
OFFER_SELECTED_STATUS = "selected"
OFFER_REJECTED = "rejected"
OFFER_WITHDRAWN = "withdrawn"
OFFER_STATUSES: FrozenSet[str] = frozenset({OFFER_PENDING, OFFER_SELECTED_STATUS, OFFER_REJECTED, OFFER_WITHDRAWN})

REQUEST_PENDING = "pending"
REQUEST_ACCEPTED = "accepted"
REQUEST_REJECTED = "rejected"
REQUEST_WITHDRAWN = "withdrawn"
REQUEST_STATUSES: FrozenSet[str] = frozenset({REQUEST_PENDING, REQUEST_ACCEPTED, REQUEST_REJECTED, REQUEST_WITHDRAWN})

CONTRACT_TYPES: Tuple[str, ...] = (
    "IT Service",
    "Data Server Management",
    "Office Administrator",
    "Software Handling",
)


def is_legacy_status(status: str | None) -> bool:
    return str(status or "") in LEGACY_STATUSES
