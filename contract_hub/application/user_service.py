from __future__ import annotations

import logging
from typing import Any, Dict, List

from contract_hub.application.audit import ENTITY_USER, AuditTrail
from contract_hub.application.serializers import pagination_meta, serialize_user
from contract_hub.domain.inputs import Actor, ServiceOutput, UserCreateInput
from contract_hub.domain.validation import validate_email
from contract_hub.errors import NotFoundError, UserActionError, ValidationError
from contract_hub.infrastructure.repositories import ContractRepository, UserRepository
from contract_hub.policies import (
    ADMIN,
    CLIENT,
    PROCUREMENT_MANAGER,
    SERVICE_PROVIDER,
    VALID_ROLES,
    normalize_role,
    require_roles,
)
from contract_hub.ui_strings import success_message


LOGGER = logging.getLogger("contract_hub")

DEMO_USERS: List[Dict[str, str]] = [
    {"email": "admin@contract-hub.local", "role": ADMIN, "display_name": "Administrator"},
    {"email": "client@contract-hub.local", "role": CLIENT, "display_name": "Demo Client"},
    {"email": "provider@contract-hub.local", "role": SERVICE_PROVIDER, "display_name": "Demo Provider"},
    {"email": "procurement@contract-hub.local", "role": PROCUREMENT_MANAGER, "display_name": "Procurement Manager"},
    {"email": "legal@contract-hub.local", "role": "legal_counsel", "display_name": "Legal Counsel"},
    {"email": "coordinator@contract-hub.local", "role": "contract_coordinator", "display_name": "Contract Coordinator"},
]


def _email_taken(email: str) -> UserActionError:
    return UserActionError(
        code="email_already_registered",
        message_key="email_already_registered",
        http_status=409,
        payload={"email": email},
    )


class UserService:
    def __init__(
        self,
        users: UserRepository | None = None,
        audit: AuditTrail | None = None,
        contracts: ContractRepository | None = None,
    ) -> None:
        self.users = users or UserRepository()
        self.audit = audit or AuditTrail()
        self.contracts = contracts or ContractRepository()

    def _load_user(self, db, user_id: int) -> Dict[str, Any]:
        user = self.users.get_by_id(db, user_id)
        if user is None:
            raise NotFoundError(message_key="user_not_found", payload={"user_id": user_id})
        return user

    def create_user(self, db, actor: Actor, create_input: UserCreateInput) -> ServiceOutput:
        require_roles(ADMIN, role=actor.role)
        email = validate_email(create_input.email)
        role = normalize_role(create_input.role)
        if not role:
            raise ValidationError(fields={"role": [f"Role must be one of: {', '.join(sorted(VALID_ROLES))}"]})
        display_name = str(create_input.display_name or "").strip() or None

        with db.transaction():
            if self.users.get_by_email(db, email) is not None:
                raise _email_taken(email)
            user_id = self.users.create(
                db,
                email=email,
                role=role,
                display_name=display_name,
                is_active=create_input.is_active,
            )
            self.audit.record(
                db,
                entity=ENTITY_USER,
                entity_id=user_id,
                action="create_user",
                actor=actor,
                details={"role": role},
            )
            user = self.users.get_by_id(db, user_id)

        LOGGER.info("user_created", extra={"user_id": user_id, "role": role, "actor_id": actor.user_id})
        return ServiceOutput(
            payload={"user": serialize_user(user), "message": success_message("user_created")},
            status_code=201,
        )

    def get_user(self, db, actor: Actor, user_id: int) -> ServiceOutput:
        """One user plus the contracts they own (clients) or are assigned to (providers)."""
        require_roles(ADMIN, role=actor.role)
        user = self._load_user(db, user_id)
        payload: Dict[str, Any] = {"user": serialize_user(user)}
        if user["role"] == CLIENT:
            payload["contracts"] = self.contracts.summaries_for_user(db, user_id)
        elif user["role"] == SERVICE_PROVIDER:
            payload["assigned_contracts"] = self.contracts.summaries_for_user(db, user_id, as_provider=True)
        return ServiceOutput(payload=payload)

    def update_user(self, db, actor: Actor, user_id: int, payload: Dict[str, Any]) -> ServiceOutput:
        """Change role, active flag or display name. Role changes are admin-only by construction."""
        require_roles(ADMIN, role=actor.role)
        changes: Dict[str, Any] = {}
        if "role" in payload:
            role = normalize_role(payload.get("role"))
            if not role:
                raise ValidationError(fields={"role": ["Invalid role"]})
            changes["role"] = role
        if "is_active" in payload:
            if not isinstance(payload.get("is_active"), bool):
                raise ValidationError(fields={"is_active": ["is_active must be a boolean"]})
            changes["is_active"] = 1 if payload["is_active"] else 0
        if "display_name" in payload:
            changes["display_name"] = str(payload.get("display_name") or "").strip() or None

        with db.transaction():
            user = self._load_user(db, user_id)
            changes = {key: value for key, value in changes.items() if user.get(key) != value}
            if not changes:
                raise UserActionError(code="no_changes", message_key="no_changes")
            self.users.update_fields(db, user_id, changes)
            self.audit.record(
                db,
                entity=ENTITY_USER,
                entity_id=user_id,
                action="change_role" if "role" in changes else "update_user",
                actor=actor,
                from_status=user["role"] if "role" in changes else None,
                to_status=changes.get("role"),
                details={"fields": sorted(changes)},
            )
            user = self.users.get_by_id(db, user_id)

        LOGGER.info("user_updated", extra={"user_id": user_id, "fields": sorted(changes), "actor_id": actor.user_id})
        return ServiceOutput(payload={"user": serialize_user(user), "message": success_message("user_updated")})

    def list_users(
        self,
        db,
        actor: Actor,
        *,
        role: str | None = None,
        is_active: bool | None = None,
        search: str | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> ServiceOutput:
        """Admins see everyone; procurement managers only pick from active clients."""
        require_roles(ADMIN, PROCUREMENT_MANAGER, role=actor.role)
        if actor.role == PROCUREMENT_MANAGER:
            role, is_active = CLIENT, True
        elif role and not normalize_role(role):
            raise ValidationError(fields={"role": ["Invalid role"]})
        rows, total = self.users.search(
            db,
            role=role or None,
            is_active=is_active,
            search=search,
            page=page,
            limit=limit,
        )
        return ServiceOutput(
            payload={
                "items": [serialize_user(row) for row in rows],
                "pagination": pagination_meta(page=page, limit=limit, total=total),
            }
        )

    def seed_demo_users(self, db) -> List[str]:
        """Create one user per role; existing emails are left untouched."""
        created: List[str] = []
        with db.transaction():
            for entry in DEMO_USERS:
                if self.users.get_by_email(db, entry["email"]) is not None:
                    continue
                self.users.create(db, email=entry["email"], role=entry["role"], display_name=entry["display_name"])
                created.append(entry["email"])
        return created
