"""Shared result contract for the audit validators.

Every validator returns a ``ValidationResult`` or a subclass of it. The
subclass carries a fixed ``kind`` tag plus its own domain metrics, so callers
can branch on ``result.kind`` and still merge heterogeneous results with
``merge_validation_results``.

Scoring convention: results start at 100 and every recorded issue subtracts
a severity-dependent penalty; the score is clamped to [0, 100].
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class Severity(str, Enum):
    """Issue severity."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


SEVERITY_PENALTIES = {
    Severity.CRITICAL: 50.0,
    Severity.HIGH: 25.0,
    Severity.MEDIUM: 10.0,
    Severity.LOW: 5.0,
}
WARNING_PENALTY = 2.0


@dataclass
class ValidationIssue:
    """An error found by a validator."""

    code: str
    message: str
    severity: Severity
    component: str
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class ValidationWarning:
    """A non-fatal finding."""

    code: str
    message: str
    component: str
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class ValidationResult:
    """Base result shared by all validators."""

    component: str
    is_valid: bool = True
    score: float = 100.0
    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationWarning] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    timestamp: Optional[datetime] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    kind: str = field(default="base", init=False)

    def __post_init__(self):
        self.score = _clamp_score(self.score)

    def add_error(
        self,
        code: str,
        message: str,
        severity: Severity = Severity.MEDIUM,
        details: Optional[dict] = None,
    ) -> None:
        """Record an error, invalidate the result and apply the score penalty."""
        severity = Severity(severity)
        self.errors.append(
            ValidationIssue(code, message, severity, self.component, dict(details or {}))
        )
        self.is_valid = False
        self.score = _clamp_score(self.score - SEVERITY_PENALTIES[severity])

    def add_warning(self, code: str, message: str, details: Optional[dict] = None) -> None:
        self.warnings.append(
            ValidationWarning(code, message, self.component, dict(details or {}))
        )
        self.score = _clamp_score(self.score - WARNING_PENALTY)

    def add_recommendation(self, text: str) -> None:
        if text not in self.recommendations:
            self.recommendations.append(text)

    def set_score(self, score: float) -> None:
        self.score = _clamp_score(score)

    @property
    def has_critical_errors(self) -> bool:
        return any(e.severity == Severity.CRITICAL for e in self.errors)

    def error_codes(self) -> list[str]:
        return [e.code for e in self.errors]

    def warning_codes(self) -> list[str]:
        return [w.code for w in self.warnings]


def _clamp_score(score: float) -> float:
    return float(min(100.0, max(0.0, score)))


def merge_validation_results(
    *results: ValidationResult, component: str = "combined"
) -> ValidationResult:
    """Combine results from several validators into one summary.

    The merged result is valid only if every input is valid; its score is the
    mean input score; errors, warnings and (deduplicated) recommendations are
    concatenated in input order. Per-input kinds and scores are kept in
    ``metadata``.
    """
    merged = ValidationResult(component=component)
    if not results:
        return merged

    merged.is_valid = all(r.is_valid for r in results)
    merged.score = _clamp_score(sum(r.score for r in results) / len(results))
    for result in results:
        merged.errors.extend(result.errors)
        merged.warnings.extend(result.warnings)
        for recommendation in result.recommendations:
            merged.add_recommendation(recommendation)

    timestamps = [r.timestamp for r in results if r.timestamp is not None]
    merged.timestamp = max(timestamps) if timestamps else None
    merged.metadata = {
        "components": [r.component for r in results],
        "kinds": [r.kind for r in results],
        "scores": {r.component: r.score for r in results},
    }
    return merged
