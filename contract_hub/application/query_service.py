from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List

from contract_hub.application.serializers import pagination_meta, serialize_contract
from contract_hub.domain import statuses as st
from contract_hub.domain.inputs import Actor, ContractListQuery, ServiceOutput
from contract_hub.domain.validation import parse_iso_date
from contract_hub.errors import ForbiddenError, ValidationError
from contract_hub.infrastructure.repositories import (
    AuditEventRepository,
    ContractRepository,
    EngagementRequestRepository,
    OfferRepository,
    UserRepository,
)
from contract_hub.policies import (
    ADMIN,
    CLIENT,
    CONTRACT_COORDINATOR,
    LEGAL_COUNSEL,
    PROCUREMENT_MANAGER,
    SERVICE_PROVIDER,
    require_roles,
)
from contract_hub.workflow import flow_policy


# Status scope of each staff queue; None means unrestricted.
ROLE_STATUS_SCOPE: Dict[str, List[str] | None] = {
    ADMIN: None,
    PROCUREMENT_MANAGER: [st.PENDING_PROCUREMENT],
    LEGAL_COUNSEL: [st.PENDING_LEGAL],
    CONTRACT_COORDINATOR: [st.OPEN_FOR_OFFERS, st.OFFER_SELECTED],
    CLIENT: None,
    SERVICE_PROVIDER: None,
}


REPORT_OVERVIEW = "overview"
REPORT_CONTRACTS = "contracts"
REPORT_USERS = "users"
REPORT_PROVIDERS = "providers"
REPORT_TYPES = (REPORT_OVERVIEW, REPORT_CONTRACTS, REPORT_USERS, REPORT_PROVIDERS)


def _money(value: Any) -> float:
    return round(float(value or 0), 2)


def _start_of_day_iso(now: datetime | None = None) -> str:
    current = now or datetime.now(timezone.utc)
    return current.strftime("%Y-%m-%dT00:00:00.000000Z")


class QueryService:
    """Role-scoped listings and dashboard counters. Read-only; never opens a write transaction."""

    def __init__(
        self,
        contracts: ContractRepository | None = None,
        offers: OfferRepository | None = None,
        requests: EngagementRequestRepository | None = None,
        users: UserRepository | None = None,
        audit_events: AuditEventRepository | None = None,
    ) -> None:
        self.contracts = contracts or ContractRepository()
        self.offers = offers or OfferRepository()
        self.requests = requests or EngagementRequestRepository()
        self.users = users or UserRepository()
        self.audit_events = audit_events or AuditEventRepository()

    def list_contracts(self, db, actor: Actor, query: ContractListQuery) -> ServiceOutput:
        if actor.role not in ROLE_STATUS_SCOPE:
            raise ForbiddenError(payload={"role": actor.role})

        errors: Dict[str, List[str]] = {}
        if query.status and query.status not in st.ALL_CONTRACT_STATUSES:
            errors["status"] = ["Invalid contract status"]
        if query.contract_type and query.contract_type not in st.CONTRACT_TYPES:
            errors["contract_type"] = ["Invalid contract type"]
        date_range: Dict[str, str | None] = {}
        for field in ("start_date_from", "start_date_to"):
            raw = getattr(query, field)
            parsed = parse_iso_date(raw) if raw else None
            if raw and parsed is None:
                errors[field] = ["Date must be in ISO-8601 format"]
            date_range[field] = parsed.isoformat() if parsed else None
        if errors:
            raise ValidationError(fields=errors)

        # An explicit status replaces the queue scope but not the ownership scope.
        statuses = [query.status] if query.status else ROLE_STATUS_SCOPE[actor.role]
        rows, total = self.contracts.search(
            db,
            statuses=statuses,
            client_id=actor.user_id if actor.role == CLIENT else None,
            visible_to_provider=actor.user_id if actor.role == SERVICE_PROVIDER else None,
            contract_type=query.contract_type,
            search=query.search,
            start_date_from=date_range["start_date_from"],
            start_date_to=date_range["start_date_to"],
            sort=query.sort,
            page=query.page,
            limit=query.limit,
        )
        return ServiceOutput(
            payload={
                "items": [serialize_contract(row, actor=actor) for row in rows],
                "pagination": pagination_meta(page=query.page, limit=query.limit, total=total),
            }
        )

    def _stage_counters(self, db, *, pending_status: str, approve: str, reject: str, since: str) -> Dict[str, int]:
        by_status = self.contracts.count_by_status(db)
        decided = self.audit_events.count_actions_since(db, actions=[approve, reject], since=since)
        return {
            "pending": by_status.get(pending_status, 0),
            "approved_today": decided[approve],
            "rejected_today": decided[reject],
        }

    def dashboard_stats(self, db, actor: Actor, *, now: datetime | None = None) -> ServiceOutput:
        since = _start_of_day_iso(now)
        stats: Dict[str, Any]
        if actor.role == PROCUREMENT_MANAGER:
            stats = self._stage_counters(
                db,
                pending_status=st.PENDING_PROCUREMENT,
                approve=flow_policy.PROCUREMENT_APPROVE,
                reject=flow_policy.PROCUREMENT_REJECT,
                since=since,
            )
        elif actor.role == LEGAL_COUNSEL:
            stats = self._stage_counters(
                db,
                pending_status=st.PENDING_LEGAL,
                approve=flow_policy.LEGAL_APPROVE,
                reject=flow_policy.LEGAL_REJECT,
                since=since,
            )
        elif actor.role == CONTRACT_COORDINATOR:
            by_status = self.contracts.count_by_status(db)
            stats = {
                "open_contracts": by_status.get(st.OPEN_FOR_OFFERS, 0),
                "pending_offers": self.offers.count_by_status(db).get(st.OFFER_PENDING, 0),
                "selected_today": self.offers.count_decided_since(db, status=st.OFFER_SELECTED_STATUS, since=since),
            }
        elif actor.role == ADMIN:
            by_status = self.contracts.count_by_status(db)
            stats = {
                "contracts_by_status": by_status,
                "pending_final_approval": by_status.get(st.PENDING_FINAL_APPROVAL, 0),
                "total_contracts": sum(by_status.values()),
                "users_by_role": self.users.count_by_role(db),
            }
        elif actor.role == CLIENT:
            by_status = self.contracts.count_by_status(db, client_id=actor.user_id)
            stats = {"contracts_by_status": by_status, "total_contracts": sum(by_status.values())}
        elif actor.role == SERVICE_PROVIDER:
            stats = {
                "offers_by_status": self.offers.count_by_status(db, provider_id=actor.user_id),
                "requests_by_status": self.requests.count_by_status(db, provider_id=actor.user_id),
                "assigned_contracts": sum(
                    self.contracts.count_by_status(db, assigned_provider_id=actor.user_id).values()
                ),
                "open_for_offers": self.contracts.count_by_status(db).get(st.OPEN_FOR_OFFERS, 0),
            }
        else:
            raise ForbiddenError(payload={"role": actor.role})
        return ServiceOutput(payload={"role": actor.role, "stats": stats})

    def list_audit_events(
        self,
        db,
        *,
        entity: str | None = None,
        action: str | None = None,
        actor_id: int | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> ServiceOutput:
        rows, total = self.audit_events.list_page(
            db,
            entity=entity,
            action=action,
            actor_id=actor_id,
            page=page,
            limit=limit,
        )
        return ServiceOutput(
            payload={"items": rows, "pagination": pagination_meta(page=page, limit=limit, total=total)}
        )

    def _contract_report(self, db, window: Dict[str, str | None]) -> Dict[str, Any]:
        by_status: Dict[str, Dict[str, Any]] = {}
        for row in self.contracts.report_by_status_and_type(db, **window):
            entry = by_status.setdefault(row["status"], {"status": row["status"], "total_count": 0, "by_type": []})
            entry["total_count"] += int(row["total"])
            entry["by_type"].append(
                {
                    "type": row["contract_type"],
                    "count": int(row["total"]),
                    "assigned": int(row["assigned"] or 0),
                    "budget": {
                        "total_min": _money(row["total_min"]),
                        "total_max": _money(row["total_max"]),
                        "avg_min": _money(row["avg_min"]),
                        "avg_max": _money(row["avg_max"]),
                    },
                }
            )
        return {
            "by_status": list(by_status.values()),
            "total_contracts": sum(entry["total_count"] for entry in by_status.values()),
        }

    def _user_report(self, db, window: Dict[str, str | None]) -> Dict[str, Any]:
        by_role = [
            {
                "role": row["role"],
                "active_users": int(row["active"] or 0),
                "inactive_users": int(row["inactive"] or 0),
                "total_users": int(row["total"]),
            }
            for row in self.users.report_by_role(db, **window)
        ]
        return {"by_role": by_role, "total_users": sum(entry["total_users"] for entry in by_role)}

    def _provider_report(self, db, window: Dict[str, str | None]) -> Dict[str, Any]:
        providers = next(
            (entry for entry in self._user_report(db, window)["by_role"] if entry["role"] == SERVICE_PROVIDER),
            {"active_users": 0},
        )
        offers = self.offers.provider_totals(db, **window)
        return {
            "total_providers": providers["active_users"],
            "bidding_providers": int(offers.get("bidding_providers") or 0),
            "total_offers": int(offers.get("total_offers") or 0),
            "selected_offers": int(offers.get("selected_offers") or 0),
            "avg_offer_amount": _money(offers.get("avg_amount")),
        }

    def build_report(
        self,
        db,
        actor: Actor,
        *,
        report_type: str | None = None,
        start_date: str | None = None,
        end_date: str | None = None,
    ) -> ServiceOutput:
        """Admin report over records created between ``start_date`` and ``end_date`` (both inclusive)."""
        require_roles(ADMIN, role=actor.role)
        report_type = report_type or REPORT_OVERVIEW
        errors: Dict[str, List[str]] = {}
        if report_type not in REPORT_TYPES:
            errors["type"] = [f"Report type must be one of: {', '.join(REPORT_TYPES)}"]
        bounds: Dict[str, date | None] = {}
        for field, raw in (("start_date", start_date), ("end_date", end_date)):
            bounds[field] = parse_iso_date(raw) if raw else None
            if raw and bounds[field] is None:
                errors[field] = ["Date must be in ISO-8601 format"]
        if bounds["start_date"] and bounds["end_date"] and bounds["end_date"] < bounds["start_date"]:
            errors["end_date"] = ["End date must not be before start date"]
        if errors:
            raise ValidationError(fields=errors)

        window = {
            "created_from": bounds["start_date"].isoformat() if bounds["start_date"] else None,
            "created_to": (bounds["end_date"] + timedelta(days=1)).isoformat() if bounds["end_date"] else None,
        }
        builders = {
            REPORT_CONTRACTS: self._contract_report,
            REPORT_USERS: self._user_report,
            REPORT_PROVIDERS: self._provider_report,
        }
        if report_type == REPORT_OVERVIEW:
            report = {name: build(db, window) for name, build in builders.items()}
        else:
            report = builders[report_type](db, window)
        return ServiceOutput(
            payload={
                "type": report_type,
                "range": {
                    "start_date": window["created_from"],
                    "end_date": bounds["end_date"].isoformat() if bounds["end_date"] else None,
                },
                "report": report,
            }
        )
