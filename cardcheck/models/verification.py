"""
Verification outcome models.

A VerificationResult is built up by the verifier's independent checks,
optionally revised by a confirmation pass, and then handed to the caller.
The overall confidence is always derived from the per-field list by
calculate_overall_confidence(); nothing sets it by hand.
"""

from dataclasses import dataclass, field
from enum import Enum

# Field names used in FieldConfidence entries
FIELD_CARD_NUMBER = "card_number"
FIELD_PLAYER_NAME = "player_name"
FIELD_PARALLEL_NAME = "parallel_name"


class VerificationConfidence(str, Enum):
    """How trustworthy an extracted field is judged to be."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    CONFLICT = "conflict"


@dataclass
class FieldConfidence:
    """Confidence judgement for one extracted field."""

    field_name: str
    value: str | None
    confidence: VerificationConfidence
    reason: str


@dataclass
class VerificationResult:
    """Result of checking one extracted card against its set checklist."""

    overall_confidence: VerificationConfidence = VerificationConfidence.MEDIUM
    field_confidences: list[FieldConfidence] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)
    suggested_variation: str | None = None
    suggested_player_name: str | None = None
    checklist_match: bool = False
    player_verified: bool = False
    variation_verified: bool = False
    card_number_verified: bool = False

    def get_field(self, field_name: str) -> FieldConfidence | None:
        """Return the confidence entry for a field, if it was evaluated."""
        return next((f for f in self.field_confidences if f.field_name == field_name), None)

    def has_conflict(self) -> bool:
        """True if any field is in conflict with the checklist."""
        return any(
            f.confidence == VerificationConfidence.CONFLICT for f in self.field_confidences
        )


def calculate_overall_confidence(result: VerificationResult) -> VerificationConfidence:
    """
    Derive the overall confidence from the per-field confidences.

    - No fields evaluated: MEDIUM if a checklist matched, else LOW
    - Any CONFLICT: CONFLICT
    - More than half LOW: LOW
    - At least half HIGH and a checklist matched: HIGH
    - Otherwise: MEDIUM

    Halves use integer division, so with three fields one HIGH is "half".
    """
    fields = result.field_confidences
    if not fields:
        return VerificationConfidence.MEDIUM if result.checklist_match else VerificationConfidence.LOW

    if result.has_conflict():
        return VerificationConfidence.CONFLICT

    total = len(fields)
    low_count = sum(1 for f in fields if f.confidence == VerificationConfidence.LOW)
    high_count = sum(1 for f in fields if f.confidence == VerificationConfidence.HIGH)

    if low_count > total // 2:
        return VerificationConfidence.LOW

    if high_count >= total // 2 and result.checklist_match:
        return VerificationConfidence.HIGH

    return VerificationConfidence.MEDIUM
