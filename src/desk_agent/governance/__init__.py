"""
Session governance: charter, ADRs, compliance checks and validation.
"""

from .charter import ADRItem, CharterData, CharterItem, compute_charter_hash
from .compliance import (
    ActionIntent,
    ComplianceResult,
    check_action_compliance,
    create_action_intent,
    format_compliance_result,
    infer_charter_refs,
)
from .validation import (
    ValidationIssue,
    ValidationResult,
    format_validation_result,
    validate_adr_chain,
    validate_charter,
    validate_session,
)

__all__ = [
    "ADRItem",
    "CharterData",
    "CharterItem",
    "compute_charter_hash",
    "ActionIntent",
    "ComplianceResult",
    "check_action_compliance",
    "create_action_intent",
    "format_compliance_result",
    "infer_charter_refs",
    "ValidationIssue",
    "ValidationResult",
    "format_validation_result",
    "validate_adr_chain",
    "validate_charter",
    "validate_session",
]
