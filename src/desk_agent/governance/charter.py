"""
Session charter and architectural decision record (ADR) models.
"""

import hashlib
import json
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Literal

ADRStatus = Literal["proposed", "accepted", "rejected", "superseded"]
ADRType = Literal["decision", "charter-change"]


@dataclass
class CharterItem:
    id: str
    content: str


@dataclass
class CharterData:
    """Scope and rules a session is expected to stay within."""

    goal: CharterItem | None = None
    non_goals: list[CharterItem] = field(default_factory=list)
    definition_of_done: list[CharterItem] = field(default_factory=list)
    constraints: list[CharterItem] = field(default_factory=list)
    invariants: list[CharterItem] = field(default_factory=list)
    glossary: dict[str, str] = field(default_factory=dict)
    version: int = 1

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CharterData":
        def items(key: str) -> list[CharterItem]:
            return [CharterItem(**item) for item in data.get(key) or []]

        goal = data.get("goal")
        return cls(
            goal=CharterItem(**goal) if goal else None,
            non_goals=items("non_goals"),
            definition_of_done=items("definition_of_done"),
            constraints=items("constraints"),
            invariants=items("invariants"),
            glossary=dict(data.get("glossary") or {}),
            version=int(data.get("version", 1)),
        )


@dataclass
class ADRItem:
    """An architectural decision taken during a session."""

    id: str
    title: str
    status: ADRStatus = "proposed"
    type: ADRType = "decision"
    context: str = ""
    decision: str = ""
    supersedes: str | None = None
    charter_refs: list[str] = field(default_factory=list)
    charter_hash_after: str | None = None
    created_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ADRItem":
        known = {f for f in cls.__dataclass_fields__}
        return cls(**{k: v for k, v in data.items() if k in known})


def compute_charter_hash(charter: CharterData) -> str:
    """Stable short hash of a charter's content."""
    payload = json.dumps(charter.to_dict(), sort_keys=True, ensure_ascii=False)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]
