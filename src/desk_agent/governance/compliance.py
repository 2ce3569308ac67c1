"""
Compliance checks of tool actions against a session charter.

Invariants phrased as "never ..."/"do not ..."/"must not ..." or naming
paths block an action outright (hard fail). An action that cannot be tied
to any charter item is allowed but flagged (soft fail).
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Literal

from .charter import ADRItem, CharterData, CharterItem

ComplianceStatus = Literal["pass", "soft_fail", "hard_fail"]

DECISION_TOOLS = ("run_command", "write_file", "edit_file")

STOP_WORDS = frozenset("""
the a an is are was were be been being have has had do does did will would could
should may might must shall can need to of in for on with at by from as into through
during before after above below between under and or but if then else when where why
how all each every both few more most other some such no not only own same so than too
very just also now any this that these those
""".split())

_FORBIDDEN_PATTERNS = (
    re.compile(r"never\s+(\w+(?:\s+\w+){0,3})", re.IGNORECASE),
    re.compile(r"do\s+not\s+(\w+(?:\s+\w+){0,3})", re.IGNORECASE),
    re.compile(r"must\s+not\s+(\w+(?:\s+\w+){0,3})", re.IGNORECASE),
)
_QUOTED = re.compile(r"[\"']([^\"']+)[\"']")
_PATH_LIKE = re.compile(r"\b[\w\-./]+/[\w\-./]+\b")
_FILE_IN_COMMAND = re.compile(r"[^\s\"']+\.[a-z]+", re.IGNORECASE)


@dataclass
class ActionIntent:
    """What a tool call is about to do, in charter terms."""

    summary: str
    tool_name: str
    tool_input: Any
    touches: list[str] = field(default_factory=list)
    charter_refs: list[str] | None = None
    requires_decision: bool = False


@dataclass
class ComplianceResult:
    allowed: bool
    status: ComplianceStatus
    reason: str = ""
    violated_invariants: list[CharterItem] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def extract_keywords(text: str) -> list[str]:
    cleaned = re.sub(r"[^a-z0-9\s]", " ", text.lower())
    return [w for w in cleaned.split() if len(w) > 2 and w not in STOP_WORDS]


def _forbidden_patterns(content: str) -> list[str]:
    return [m.group(1) for pattern in _FORBIDDEN_PATTERNS for m in pattern.finditer(content)]


def _path_patterns(content: str) -> list[str]:
    return _QUOTED.findall(content) + _PATH_LIKE.findall(content)


def infer_charter_refs(intent: ActionIntent, charter: CharterData | None) -> list[str]:
    """Charter item ids whose keywords appear in the action summary or touches."""
    if charter is None:
        return []

    summary = intent.summary.lower()
    touches = " ".join(intent.touches).lower()
    candidates = ([charter.goal] if charter.goal else []) + charter.constraints + charter.invariants

    refs: list[str] = []
    for item in candidates:
        keywords = extract_keywords(item.content)
        if any(kw in summary or kw in touches for kw in keywords) and item.id not in refs:
            refs.append(item.id)
    return refs


def _violated_invariants(intent: ActionIntent, invariants: list[CharterItem]) -> list[CharterItem]:
    summary = intent.summary.lower()
    touches = " ".join(intent.touches).lower()
    tool_input = json.dumps(intent.tool_input, default=str).lower()

    violated: list[CharterItem] = []
    for invariant in invariants:
        content = invariant.content.lower()

        if any(marker in content for marker in ("never", "do not", "must not")):
            for pattern in _forbidden_patterns(content):
                if pattern in summary or pattern in touches or pattern in tool_input:
                    if invariant not in violated:
                        violated.append(invariant)
                    break

        if any(marker in content for marker in ("file", "path", "directory")):
            for pattern in _path_patterns(content):
                if any(pattern in touched for touched in intent.touches):
                    if invariant not in violated:
                        violated.append(invariant)
                    break

    return violated


def check_action_compliance(
    intent: ActionIntent,
    charter: CharterData | None,
    adrs: list[ADRItem] | None = None,
) -> ComplianceResult:
    """Evaluate an intended tool action against the session charter."""
    if charter is None:
        return ComplianceResult(allowed=True, status="pass", reason="No charter defined")

    violated = _violated_invariants(intent, charter.invariants)
    if violated:
        return ComplianceResult(
            allowed=False,
            status="hard_fail",
            reason=f"Action violates {len(violated)} invariant(s)",
            violated_invariants=violated,
        )

    refs = intent.charter_refs if intent.charter_refs is not None else infer_charter_refs(intent, charter)
    if not refs:
        return ComplianceResult(
            allowed=True,
            status="soft_fail",
            reason="Action does not reference any charter items",
            warnings=["Action has no clear connection to charter items"],
        )

    warnings: list[str] = []
    if intent.requires_decision:
        has_related_adr = any(
            adr.status == "accepted" and any(ref in refs for ref in adr.charter_refs)
            for adr in adrs or []
        )
        if not has_related_adr:
            warnings.append("Action may require an ADR (architectural decision)")

    return ComplianceResult(
        allowed=True,
        status="pass",
        reason=f"Action references {len(refs)} charter item(s)",
        warnings=warnings,
    )


def create_action_intent(tool_name: str, tool_input: dict[str, Any], summary: str | None = None) -> ActionIntent:
    """Build an ActionIntent from a tool call's parsed arguments."""
    touches: list[str] = []
    if tool_name in ("write_file", "read_file", "edit_file"):
        path = tool_input.get("path") or tool_input.get("file_path")
        if path:
            touches.append(str(path))
    elif tool_name == "run_command":
        command = tool_input.get("command")
        if isinstance(command, str):
            touches.extend(_FILE_IN_COMMAND.findall(command))
    elif tool_name in ("list_files", "search_files"):
        if tool_input.get("pattern"):
            touches.append(f"pattern:{tool_input['pattern']}")
        if tool_input.get("path"):
            touches.append(str(tool_input["path"]))

    return ActionIntent(
        summary=summary or f"Execute {tool_name}",
        tool_name=tool_name,
        tool_input=tool_input,
        touches=touches,
        requires_decision=tool_name in DECISION_TOOLS,
    )


def format_compliance_result(result: ComplianceResult) -> str:
    lines: list[str] = []
    if result.status == "pass":
        lines.append(f"✅ Compliance check passed: {result.reason}")
    elif result.status == "soft_fail":
        lines.append(f"⚠️ Compliance warning: {result.reason}")
    else:
        lines.append(f"❌ Compliance failed: {result.reason}")
        if result.violated_invariants:
            lines.append("Violated invariants:")
            lines.extend(f"  - [{inv.id}] {inv.content}" for inv in result.violated_invariants)

    lines.extend(f"  ⚠️ {warning}" for warning in result.warnings)
    return "\n".join(lines)
