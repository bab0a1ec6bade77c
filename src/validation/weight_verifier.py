"""Independent verification of the stored season weights.

Recomputes the weight vector the latest regression analysis should have
produced and compares it with what was written, checks bounds and the
total, confirms the current vector is usable by the matchup model and
audits the change log.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from config.settings import Settings
from src.data.storage import EngineStorage
from src.models.matchup_model import SUPPORTED_CATEGORIES, category_weight
from src.models.weights import (
    REASON_REGRESSION,
    StatisticalImpactWeights,
    WeightChangeLog,
    WeightManager,
    validate_weights,
)
from src.utils.clock import Clock, utc_now
from src.validation.base import BaseValidator
from src.validation.results import Severity, ValidationResult

logger = logging.getLogger(__name__)

DERIVATION_TOLERANCE = 0.01

# Re-derivation tables, kept apart from the weight manager's own
DERIVATION_SLOTS = (
    "scoring_efficiency",
    "passing_efficiency",
    "rushing_efficiency",
    "turnover_efficiency",
    "special_teams",
)
SLOT_DEFAULT_SHARE = 0.2
SLOT_BOOSTS = {
    "scoring_efficiency": 1.3,
    "turnover_efficiency": 1.3,
    "passing_efficiency": 1.2,
    "rushing_efficiency": 1.2,
}
BOOST_R_SQUARED = 0.6
NON_SIGNIFICANT_SHARE = 0.5
# Weight category -> (slot, fraction of the slot's share)
CATEGORY_SOURCES = {
    "passing_offense": ("passing_efficiency", 1.0),
    "rushing_offense": ("rushing_efficiency", 1.0),
    "scoring_efficiency": ("scoring_efficiency", 1.0),
    "passing_defense": ("passing_efficiency", 0.8),
    "rushing_defense": ("rushing_efficiency", 0.8),
    "turnover_margin": ("turnover_efficiency", 1.0),
    "special_teams": ("special_teams", 1.0),
}
HOME_FIELD_SHARE = 0.10

EXTREME_CHANGE_FRACTION = 0.5
JUSTIFIED_CHANGE_WORDS = ("major", "significant")


def _same_weights(a: StatisticalImpactWeights, b: StatisticalImpactWeights) -> bool:
    left, right = a.to_dict(), b.to_dict()
    return all(abs(left[name] - right[name]) <= DERIVATION_TOLERANCE for name in left)


@dataclass
class WeightDerivationResult:
    is_correct: bool = False
    derivation_method: str = "regression-based"
    expected_weights: Optional[StatisticalImpactWeights] = None
    stored_weights: Optional[StatisticalImpactWeights] = None
    drift: dict[str, float] = field(default_factory=dict)
    input_coefficients: dict[str, float] = field(default_factory=dict)
    statistical_significance_considered: bool = False
    normalization_applied: bool = False
    derivation_steps: list[str] = field(default_factory=list)

    @property
    def max_drift(self) -> float:
        return max(self.drift.values(), default=0.0)


@dataclass
class WeightValue:
    category: str
    weight: float
    within_bounds: bool
    expected_range: tuple[float, float]


@dataclass
class WeightBoundsResult:
    all_within_bounds: bool
    bounds: tuple[float, float]
    weight_values: list[WeightValue] = field(default_factory=list)
    total_sum: float = 0.0
    sum_range: tuple[float, float] = (0.0, 0.0)
    sum_valid: bool = True


@dataclass
class WeightUsage:
    category: str
    weight: float
    is_correct: bool


@dataclass
class WeightApplicationResult:
    correctly_applied: bool
    weight_usage: list[WeightUsage] = field(default_factory=list)
    validation_errors: list[str] = field(default_factory=list)
    calculation_steps: list[str] = field(default_factory=list)


@dataclass
class WeightChangeSummary:
    date: datetime
    reason: str
    actor: str
    previous_weights: Optional[StatisticalImpactWeights]
    new_weights: StatisticalImpactWeights


@dataclass
class WeightHistoryResult:
    has_complete_history: bool
    change_count: int
    audit_trail_complete: bool
    changes: list[WeightChangeSummary] = field(default_factory=list)
    issues: list[str] = field(default_factory=list)
    extreme_changes: list[str] = field(default_factory=list)


@dataclass
class WeightVerificationResult(ValidationResult):
    """Weight verification result."""

    weight_derivation: Optional[WeightDerivationResult] = None
    weight_bounds: Optional[WeightBoundsResult] = None
    weight_application: Optional[WeightApplicationResult] = None
    weight_history: Optional[WeightHistoryResult] = None
    kind: str = field(default="weight_calculation", init=False)


class WeightCalculationVerifier(BaseValidator):
    """Verify derivation, bounds, application and history of season weights."""

    component = "weight_calculation"
    result_class = WeightVerificationResult

    def __init__(
        self,
        storage: EngineStorage,
        settings: Optional[Settings] = None,
        clock: Clock = utc_now,
        weight_manager: Optional[WeightManager] = None,
    ):
        super().__init__(storage, settings, clock)
        self.weight_manager = weight_manager or WeightManager(storage, self.settings, self.clock)

    def _run(self, season: int, result: WeightVerificationResult) -> None:
        current = self.weight_manager.get_current_weights(season)
        history = self.weight_manager.get_weight_history(season)

        result.weight_derivation = self.validate_weight_derivation(season, current, history)
        if not result.weight_derivation.is_correct:
            result.add_error(
                "WEIGHT_DERIVATION_INVALID",
                "Weight derivation from regression coefficients is incorrect",
                Severity.HIGH,
                {"drift": result.weight_derivation.drift},
            )

        result.weight_bounds = self.validate_weight_bounds(current)
        if not result.weight_bounds.all_within_bounds:
            low, high = result.weight_bounds.bounds
            result.add_error(
                "WEIGHT_BOUNDS_INVALID",
                f"One or more weights are outside acceptable bounds ({low:g} to {high:g})",
                Severity.MEDIUM,
            )

        result.weight_application = self.validate_weight_application(current)
        if not result.weight_application.correctly_applied:
            result.add_error(
                "WEIGHT_APPLICATION_INVALID",
                "Weights are not being applied correctly in prediction formulas",
                Severity.HIGH,
                {"errors": result.weight_application.validation_errors},
            )

        result.weight_history = self.validate_weight_history(history)
        if not result.weight_history.has_complete_history:
            result.add_warning(
                "WEIGHT_HISTORY_INCOMPLETE",
                "Weight change history is incomplete or missing audit trail",
            )
        if result.weight_history.extreme_changes:
            changes = result.weight_history.extreme_changes
            result.add_warning(
                "EXTREME_WEIGHT_CHANGE",
                f"{len(changes)} weight change(s) moved a category by more than 50%",
                {"changes": changes},
            )

        self._recommend(result)

    def validate_weight_derivation(
        self,
        season: int,
        current: StatisticalImpactWeights,
        history: list[WeightChangeLog],
    ) -> WeightDerivationResult:
        """Recompute weights from the latest analysis and measure drift.

        The stored vector compared against is the newest regression-driven
        change-log entry, or the current weights when no such entry exists.
        """
        derivation = WeightDerivationResult()
        analysis = self.weight_manager.get_latest_regression_analysis(season)
        if analysis is None:
            derivation.derivation_steps.append(f"No regression analysis stored for season {season}")
            return derivation

        derivation.statistical_significance_considered = True
        derivation.derivation_steps.append(
            f"Analysis: R^2={analysis.overall_model_r_squared:.3f}, n={analysis.sample_size}, "
            f"significant={analysis.significant_metrics}"
        )

        derivation.input_coefficients = {
            row.metric_name: row.coefficient for row in analysis.regression_results
        }
        expected = self._recompute_expected_weights(analysis, derivation)
        if expected is None:
            return derivation
        derivation.derivation_steps.append(f"Expected total {expected.total:.3f}")

        regression_entries = [e for e in history if e.reason == REASON_REGRESSION]
        stored = regression_entries[0].new_weights if regression_entries else current
        derivation.derivation_steps.append(
            "Compared against latest regression-driven change"
            if regression_entries
            else "No regression-driven change logged; compared against current weights"
        )

        expected_values = expected.to_dict()
        stored_values = stored.to_dict()
        derivation.drift = {
            name: abs(expected_values[name] - stored_values[name]) for name in expected_values
        }
        derivation.expected_weights = expected
        derivation.stored_weights = stored
        derivation.is_correct = derivation.max_drift <= DERIVATION_TOLERANCE
        return derivation

    def _recompute_expected_weights(
        self, analysis, derivation: WeightDerivationResult
    ) -> Optional[StatisticalImpactWeights]:
        """Work out the vector an analysis should produce, step by step.

        Significant metrics set their slot's share from the calculated
        weight and other slots keep 0.2. Shares are normalised to one, then
        halved for non-significant metrics or boosted for significant
        metrics whose own R^2 exceeds 0.6. Defensive passing and rushing
        take 0.8 of the offensive share. A total outside the accepted band
        is rescaled to the target, as it would have been when stored.
        """
        shares = dict.fromkeys(DERIVATION_SLOTS, SLOT_DEFAULT_SHARE)
        factors = dict.fromkeys(DERIVATION_SLOTS, 1.0)
        for row in analysis.regression_results:
            if row.metric_name not in SLOT_BOOSTS:
                continue
            if row.is_statistically_significant:
                shares[row.metric_name] = row.calculated_weight
                if row.r_squared > BOOST_R_SQUARED:
                    factors[row.metric_name] *= SLOT_BOOSTS[row.metric_name]
            else:
                factors[row.metric_name] *= NON_SIGNIFICANT_SHARE

        share_total = sum(shares.values())
        if share_total != 0:
            shares = {slot: value / share_total for slot, value in shares.items()}
        derivation.derivation_steps.append(
            "Normalized shares: " + ", ".join(f"{slot}={value:.3f}" for slot, value in shares.items())
        )

        values = {
            category: shares[slot] * fraction * factors[slot]
            for category, (slot, fraction) in CATEGORY_SOURCES.items()
        }
        values["home_field_advantage"] = HOME_FIELD_SHARE

        if any(not math.isfinite(v) or v < 0 for v in values.values()):
            derivation.derivation_steps.append("Re-derived vector has negative or non-finite weights")
            return None
        total = sum(values.values())
        if total == 0:
            derivation.derivation_steps.append("Re-derived vector sums to zero")
            return None

        low, high = self.settings.weight_sum_band
        if total < low or total > high:
            scale = self.settings.weight_sum_target / total
            values = {name: value * scale for name, value in values.items()}
            derivation.normalization_applied = True
            derivation.derivation_steps.append(
                f"Total {total:.3f} outside {low:g}-{high:g}, rescaled to {self.settings.weight_sum_target:g}"
            )
        return StatisticalImpactWeights(**values)

    def validate_weight_bounds(self, weights: StatisticalImpactWeights) -> WeightBoundsResult:
        """Per-weight bounds plus the total against the accepted sum band."""
        low, high = self.settings.weight_min, self.settings.weight_max
        tolerance = self.settings.weight_sum_tolerance
        band_low, band_high = self.settings.weight_sum_band
        result = WeightBoundsResult(
            all_within_bounds=True,
            bounds=(low, high),
            sum_range=(band_low - tolerance, band_high + tolerance),
        )
        for name, value in weights.to_dict().items():
            within = math.isfinite(value) and low <= value <= high
            result.weight_values.append(WeightValue(name, value, within, (low, high)))
            result.all_within_bounds &= within

        result.total_sum = weights.total
        sum_low, sum_high = result.sum_range
        result.sum_valid = sum_low <= result.total_sum <= sum_high
        result.all_within_bounds &= result.sum_valid
        return result

    def validate_weight_application(self, weights: StatisticalImpactWeights) -> WeightApplicationResult:
        """The current vector validates and maps onto every matchup category."""
        check = validate_weights(weights, self.settings)
        result = WeightApplicationResult(
            correctly_applied=check.is_valid, validation_errors=list(check.errors)
        )
        for category in SUPPORTED_CATEGORIES:
            try:
                weight = category_weight(category, weights)
            except ValueError as e:
                result.validation_errors.append(str(e))
                result.weight_usage.append(WeightUsage(category, float("nan"), False))
                result.correctly_applied = False
                continue
            is_correct = math.isfinite(weight) and weight >= 0
            result.weight_usage.append(WeightUsage(category, weight, is_correct))
            result.correctly_applied &= is_correct
            result.calculation_steps.append(f"{category}: weight {weight:.3f}")
        return result

    def validate_weight_history(self, history: list[WeightChangeLog]) -> WeightHistoryResult:
        """Change-log completeness (entries are newest first).

        Beyond per-entry fields, consecutive entries must chain (each entry's
        previous weights equal the older entry's new weights), no two entries
        may share a timestamp, and category moves above 50% are listed in
        ``extreme_changes`` unless the entry is regression-driven or its
        reason names a major or significant change.
        """
        result = WeightHistoryResult(
            has_complete_history=bool(history),
            change_count=len(history),
            audit_trail_complete=True,
        )
        if not history:
            result.issues.append("No weight changes recorded")
            result.audit_trail_complete = False
            return result

        oldest = history[-1]
        for entry in history:
            result.changes.append(
                WeightChangeSummary(
                    date=entry.timestamp,
                    reason=entry.reason,
                    actor=entry.actor,
                    previous_weights=entry.previous_weights,
                    new_weights=entry.new_weights,
                )
            )
            if not entry.reason or not entry.actor:
                result.issues.append(f"Change at {entry.timestamp.isoformat()} has no reason or actor")
            if entry.previous_weights is None and entry is not oldest:
                result.issues.append(f"Change at {entry.timestamp.isoformat()} has no previous weights")
            if entry.reason == REASON_REGRESSION and entry.regression_metrics is None:
                result.issues.append(
                    f"Regression change at {entry.timestamp.isoformat()} has no regression metrics"
                )
            result.extreme_changes.extend(self._extreme_moves(entry))

        for newer, older in zip(history, history[1:]):
            stamp = newer.timestamp.isoformat()
            if newer.previous_weights is not None and not _same_weights(
                newer.previous_weights, older.new_weights
            ):
                result.issues.append(
                    f"Weight sequence break between {older.timestamp.isoformat()} and {stamp}: "
                    "previous weights do not match"
                )
            if newer.timestamp == older.timestamp:
                if newer.reason == older.reason and _same_weights(newer.new_weights, older.new_weights):
                    result.issues.append(f"Duplicate weight change at {stamp}")
                else:
                    result.issues.append(f"Several weight changes share timestamp {stamp}")

        result.audit_trail_complete = not result.issues
        result.has_complete_history = result.audit_trail_complete
        return result

    def _extreme_moves(self, entry: WeightChangeLog) -> list[str]:
        if entry.reason == REASON_REGRESSION or entry.previous_weights is None:
            return []
        explanation = f"{entry.reason} {entry.note or ''}".lower()
        if any(word in explanation for word in JUSTIFIED_CHANGE_WORDS):
            return []

        moves = []
        previous = entry.previous_weights.to_dict()
        for name, new in entry.new_weights.to_dict().items():
            old = previous[name]
            if old == 0:
                extreme = new != 0
            else:
                extreme = abs(new - old) / abs(old) > EXTREME_CHANGE_FRACTION
            if extreme:
                moves.append(
                    f"Extreme weight change for {name}: {old:.3f} -> {new:.3f} "
                    f"at {entry.timestamp.isoformat()}"
                )
        return moves

    def _recommend(self, result: WeightVerificationResult) -> None:
        if not result.weight_derivation.is_correct:
            result.add_recommendation(
                "Review regression analysis results and ensure weight calculation logic is correct"
            )
        if not result.weight_bounds.all_within_bounds:
            result.add_recommendation(
                "Adjust weights to be within acceptable bounds and ensure proper normalization"
            )
        if not result.weight_application.correctly_applied:
            result.add_recommendation(
                "Verify prediction formula implementation and weight application logic"
            )
        if not result.weight_history.has_complete_history:
            result.add_recommendation(
                "Implement comprehensive weight change logging with detailed audit trails"
            )
        if result.weight_history.extreme_changes:
            result.add_recommendation(
                "Document the justification for large manual weight changes in the change reason"
            )
        if result.weight_history.change_count == 0:
            result.add_recommendation(
                "Consider running regression analysis to update weights based on recent data"
            )
