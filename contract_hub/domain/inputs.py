from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict


@dataclass(frozen=True)
class ServiceOutput:
    payload: Dict[str, Any]
    status_code: int = 200


@dataclass(frozen=True)
class Actor:
    """Already-authenticated principal acting on the workflow."""

    user_id: int
    role: str


@dataclass(frozen=True)
class WorkflowRequest:
    contract_id: int | None
    action: str
    actor: Actor
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ContractListQuery:
    status: str | None = None
    contract_type: str | None = None
    search: str | None = None
    start_date_from: str | None = None
    start_date_to: str | None = None
    page: int = 1
    limit: int = 10
    sort: str | None = None


@dataclass(frozen=True)
class UserCreateInput:
    email: str
    role: str
    display_name: str | None = None
    is_active: bool = True
