from __future__ import annotations

from typing import Iterable, Set

from flask import g

from contract_hub.domain.inputs import Actor
from contract_hub.errors import AuthRequiredError, ForbiddenError


ADMIN = "admin"
CLIENT = "client"
SERVICE_PROVIDER = "service_provider"
PROCUREMENT_MANAGER = "procurement_manager"
LEGAL_COUNSEL = "legal_counsel"
CONTRACT_COORDINATOR = "contract_coordinator"

VALID_ROLES: Set[str] = {
    ADMIN,
    CLIENT,
    SERVICE_PROVIDER,
    PROCUREMENT_MANAGER,
    LEGAL_COUNSEL,
    CONTRACT_COORDINATOR,
}


def normalize_role(role: str | None, default: str = "") -> str:
    normalized = str(role or "").strip().lower()
    if normalized in VALID_ROLES:
        return normalized
    return default if default in VALID_ROLES else ""


def current_actor() -> Actor:
    actor = getattr(g, "actor", None)
    if actor is None:
        raise AuthRequiredError()
    return actor


def current_role() -> str:
    return current_actor().role


def normalize_allowed_roles(roles: Iterable[str]) -> Set[str]:
    allowed: Set[str] = set()
    for role in roles:
        normalized = normalize_role(role)
        if normalized:
            allowed.add(normalized)
    return allowed


def has_any_role(role: str | None, allowed_roles: Iterable[str]) -> bool:
    allowed = normalize_allowed_roles(allowed_roles)
    return not allowed or normalize_role(role) in allowed


def require_roles(*allowed_roles: str, role: str | None = None) -> str:
    normalized_role = normalize_role(role) if role is not None else current_role()
    if has_any_role(normalized_role, allowed_roles):
        return normalized_role
    raise ForbiddenError(payload={"role": normalized_role or None})
