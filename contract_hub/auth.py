"""Principal resolution.

Sessions and credentials are issued upstream; this service only reads the
already-authenticated ``{user_id, role}`` from trusted headers (or a session
populated by the same upstream layer) and stores it on ``g.actor``.
"""

from __future__ import annotations

from flask import current_app, g, request, session

from contract_hub.domain.inputs import Actor
from contract_hub.errors import AuthRequiredError
from contract_hub.policies import normalize_role


def resolve_principal() -> Actor | None:
    user_header = current_app.config.get("PRINCIPAL_USER_HEADER", "X-User-Id")
    role_header = current_app.config.get("PRINCIPAL_ROLE_HEADER", "X-User-Role")
    raw_user_id = request.headers.get(user_header) or session.get("user_id")
    raw_role = request.headers.get(role_header) or session.get("user_role")
    if raw_user_id in (None, "") and raw_role in (None, ""):
        return None

    try:
        user_id = int(str(raw_user_id).strip())
    except (TypeError, ValueError):
        raise AuthRequiredError(payload={"reason": "invalid_user_id"})
    role = normalize_role(raw_role)
    if user_id <= 0 or not role:
        raise AuthRequiredError(payload={"reason": "invalid_principal"})
    return Actor(user_id=user_id, role=role)


def register_auth(app) -> None:
    @app.before_request
    def _require_principal():
        path = request.path or "/"
        if not path.startswith("/api/"):
            return None
        if path.startswith("/api/meta/"):
            return None
        actor = resolve_principal()
        if actor is None:
            raise AuthRequiredError()
        g.actor = actor
        return None
