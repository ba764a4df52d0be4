from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterator, Mapping

from contract_hub.errors import StageAlreadyRecordedError


STAGE_PROCUREMENT = "procurement"
STAGE_LEGAL = "legal"
STAGE_COORDINATOR = "coordinator"
STAGE_FINAL_APPROVAL = "final_approval"
STAGES = (STAGE_PROCUREMENT, STAGE_LEGAL, STAGE_COORDINATOR, STAGE_FINAL_APPROVAL)

DECISION_APPROVED = "approved"
DECISION_REJECTED = "rejected"
DECISION_SELECTED = "selected"
DECISIONS = (DECISION_APPROVED, DECISION_REJECTED, DECISION_SELECTED)


@dataclass(frozen=True)
class StageDecision:
    stage: str
    decision: str
    actor_id: int
    actor_role: str
    decided_at: str
    notes: str | None = None
    reason: str | None = None
    selected_offer_id: int | None = None

    def __post_init__(self) -> None:
        if self.stage not in STAGES:
            raise ValueError(f"unknown workflow stage: {self.stage}")
        if self.decision not in DECISIONS:
            raise ValueError(f"unknown workflow decision: {self.decision}")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, stage: str, raw: Mapping[str, Any]) -> "StageDecision":
        selected = raw.get("selected_offer_id")
        return cls(
            stage=stage,
            decision=str(raw.get("decision") or ""),
            actor_id=int(raw.get("actor_id") or 0),
            actor_role=str(raw.get("actor_role") or ""),
            decided_at=str(raw.get("decided_at") or ""),
            notes=raw.get("notes"),
            reason=raw.get("reason"),
            selected_offer_id=int(selected) if selected is not None else None,
        )


class WorkflowLog:
    """Append-only record of stage decisions, keyed by stage.

    Instances are immutable: ``append`` returns a new log and refuses to
    overwrite a stage that already has a decision.
    """

    def __init__(self, entries: Mapping[str, StageDecision] | None = None) -> None:
        self._entries: Dict[str, StageDecision] = dict(entries or {})

    @classmethod
    def from_json(cls, raw: str | Mapping[str, Any] | None) -> "WorkflowLog":
        if raw is None or raw == "":
            return cls()
        data = json.loads(raw) if isinstance(raw, str) else dict(raw)
        entries = {}
        for stage in STAGES:
            value = data.get(stage)
            if isinstance(value, Mapping):
                entries[stage] = StageDecision.from_dict(stage, value)
        return cls(entries)

    def to_dict(self) -> Dict[str, Dict[str, Any]]:
        return {stage: self._entries[stage].to_dict() for stage in STAGES if stage in self._entries}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"), sort_keys=True)

    def get(self, stage: str) -> StageDecision | None:
        return self._entries.get(stage)

    def __contains__(self, stage: object) -> bool:
        return stage in self._entries

    def __iter__(self) -> Iterator[StageDecision]:
        return (self._entries[stage] for stage in STAGES if stage in self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def append(self, entry: StageDecision) -> "WorkflowLog":
        if entry.stage in self._entries:
            raise StageAlreadyRecordedError(payload={"stage": entry.stage})
        entries = dict(self._entries)
        entries[entry.stage] = entry
        return WorkflowLog(entries)

    @property
    def selected_offer_id(self) -> int | None:
        coordinator = self._entries.get(STAGE_COORDINATOR)
        if coordinator is None:
            return None
        return coordinator.selected_offer_id

    def rejection(self) -> Dict[str, Any] | None:
        for entry in self:
            if entry.decision == DECISION_REJECTED:
                return {
                    "stage": entry.stage,
                    "reason": entry.reason,
                    "actor_id": entry.actor_id,
                    "decided_at": entry.decided_at,
                }
        return None
