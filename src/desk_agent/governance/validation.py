"""
Charter and ADR integrity checks run at session start.
"""

import time
from dataclasses import dataclass, field

from .charter import ADRItem, CharterData

STALE_PROPOSAL_HOURS = 24


@dataclass
class ValidationIssue:
    code: str
    message: str
    field: str | None = None


@dataclass
class ValidationResult:
    valid: bool = True
    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)


def validate_charter(charter: CharterData | None) -> ValidationResult:
    """A charter needs a goal and at least one definition-of-done item."""
    if charter is None:
        return ValidationResult()

    errors: list[ValidationIssue] = []
    warnings: list[ValidationIssue] = []

    if charter.goal is None or not charter.goal.content.strip():
        errors.append(ValidationIssue("CHARTER_MISSING_GOAL", "Charter must have a goal defined", "goal"))

    if not charter.definition_of_done:
        errors.append(ValidationIssue(
            "CHARTER_MISSING_DOD",
            "Charter must have at least one definition of done criterion",
            "definition_of_done",
        ))
    else:
        empty = [item for item in charter.definition_of_done if not item.content.strip()]
        if empty:
            warnings.append(ValidationIssue(
                "CHARTER_EMPTY_DOD_ITEMS",
                f"{len(empty)} definition of done item(s) are empty",
                "definition_of_done",
            ))

    if not charter.constraints:
        warnings.append(ValidationIssue(
            "CHARTER_NO_CONSTRAINTS",
            "Consider adding constraints to define soft boundaries",
            "constraints",
        ))
    if not charter.invariants:
        warnings.append(ValidationIssue(
            "CHARTER_NO_INVARIANTS",
            "Consider adding invariants for critical rules that must never be violated",
            "invariants",
        ))

    return ValidationResult(valid=not errors, errors=errors, warnings=warnings)


def validate_adr_chain(adrs: list[ADRItem] | None, now: float | None = None) -> ValidationResult:
    """Check supersedes references, stale proposals and charter-change hashes."""
    if not adrs:
        return ValidationResult()

    now = time.time() if now is None else now
    errors: list[ValidationIssue] = []
    warnings: list[ValidationIssue] = []
    by_id = {adr.id: adr for adr in adrs}

    for adr in adrs:
        if adr.supersedes and adr.supersedes not in by_id:
            errors.append(ValidationIssue(
                "ADR_INVALID_SUPERSEDES",
                f"ADR {adr.id} references non-existent ADR: {adr.supersedes}",
                f"adrs[{adr.id}].supersedes",
            ))

        if adr.status == "proposed":
            age_hours = (now - adr.created_at) / 3600
            if age_hours > STALE_PROPOSAL_HOURS:
                warnings.append(ValidationIssue(
                    "ADR_STALE_PROPOSED",
                    f"ADR {adr.id} has been proposed for {int(age_hours)}h - consider accepting or rejecting",
                    f"adrs[{adr.id}].status",
                ))

        if adr.type == "charter-change" and not adr.charter_hash_after:
            warnings.append(ValidationIssue(
                "ADR_MISSING_CHARTER_HASH",
                f"Charter-change ADR {adr.id} missing charter_hash_after",
                f"adrs[{adr.id}].charter_hash_after",
            ))

    visited: set[str] = set()
    for adr in adrs:
        if not adr.supersedes or adr.id in visited:
            continue
        path: list[str] = []
        current: str | None = adr.id
        while current is not None:
            if current in path:
                errors.append(ValidationIssue(
                    "ADR_CIRCULAR_SUPERSEDES",
                    "Circular supersedes chain detected: " + " → ".join(path + [current]),
                    "adrs",
                ))
                break
            if current in visited:
                break
            path.append(current)
            visited.add(current)
            node = by_id.get(current)
            current = node.supersedes if node else None

    return ValidationResult(valid=not errors, errors=errors, warnings=warnings)


def validate_session(
    charter: CharterData | None,
    charter_hash: str | None = None,
    adrs: list[ADRItem] | None = None,
) -> ValidationResult:
    """Charter + ADR validation plus cross-checks between the two."""
    charter_result = validate_charter(charter)
    adr_result = validate_adr_chain(adrs)
    warnings = charter_result.warnings + adr_result.warnings

    if charter is not None and charter_hash and adrs is not None:
        has_change_adr = any(adr.type == "charter-change" for adr in adrs)
        if not has_change_adr and charter.version > 1:
            warnings.append(ValidationIssue(
                "CHARTER_CHANGE_NO_ADR",
                "Charter has been updated but no charter-change ADR exists",
                "charter",
            ))

    return ValidationResult(
        valid=charter_result.valid and adr_result.valid,
        errors=charter_result.errors + adr_result.errors,
        warnings=warnings,
    )


def format_validation_result(result: ValidationResult) -> str:
    if result.valid and not result.warnings:
        return "✅ Session validation passed"

    lines: list[str] = []
    if not result.valid:
        lines.append("❌ Session validation failed:")
        lines.extend(f"  - [{e.code}] {e.message}" for e in result.errors)
    if result.warnings:
        lines.append("⚠️ Warnings:")
        lines.extend(f"  - [{w.code}] {w.message}" for w in result.warnings)
    return "\n".join(lines)
