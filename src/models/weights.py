"""Category weights: storage, regression-driven derivation and validation.

Weights express how much each statistical category matters in the final
prediction. They are recalibrated from regression analyses (an external step
writes ``RegressionAnalysisResult`` rows), can be overridden by hand, and
every change is appended to a per-season change log.
"""

import logging
import math
import numbers
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from typing import Optional, Union

from config.settings import Settings, get_settings
from src.data.storage import EngineStorage, StorageError
from src.utils.clock import Clock, utc_now

logger = logging.getLogger(__name__)

REASON_REGRESSION = "regression_analysis"
REASON_MANUAL = "manual_override"
REASON_FALLBACK = "fallback_reset"

# Regression metric -> slot in the recommended-weight set
METRIC_TO_RECOMMENDED = {
    "scoring_efficiency": "scoring",
    "passing_efficiency": "passing_yards",
    "rushing_efficiency": "rushing_yards",
    "turnover_efficiency": "turnovers",
}

# Regression metric -> weight fields it drives
METRIC_TO_WEIGHTS = {
    "scoring_efficiency": ("scoring_efficiency",),
    "passing_efficiency": ("passing_offense", "passing_defense"),
    "rushing_efficiency": ("rushing_offense", "rushing_defense"),
    "turnover_efficiency": ("turnover_margin",),
}

# Multiplier for significant metrics whose own R^2 is strong
STRONG_METRIC_BOOST = {
    "scoring_efficiency": 1.3,
    "passing_efficiency": 1.2,
    "rushing_efficiency": 1.2,
    "turnover_efficiency": 1.3,
}
STRONG_METRIC_R_SQUARED = 0.6
NON_SIGNIFICANT_FACTOR = 0.5
DEFENSIVE_SHARE = 0.8
DEFAULT_RECOMMENDED_WEIGHT = 0.2
HOME_FIELD_WEIGHT = 0.10


@dataclass
class StatisticalImpactWeights:
    """Named non-negative weight per category. Defaults are the fallback vector."""

    passing_offense: float = 0.25
    rushing_offense: float = 0.20
    scoring_efficiency: float = 0.30
    passing_defense: float = 0.25
    rushing_defense: float = 0.20
    turnover_margin: float = 0.35
    special_teams: float = 0.15
    home_field_advantage: float = 0.10

    def to_dict(self) -> dict[str, float]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "StatisticalImpactWeights":
        unknown = set(data) - set(WEIGHT_NAMES)
        if unknown:
            raise ValueError(f"Unknown weight categories: {sorted(unknown)}")
        return cls(**data)

    @property
    def total(self) -> float:
        return sum(self.to_dict().values())


WEIGHT_NAMES = tuple(f.name for f in fields(StatisticalImpactWeights))


def fallback_weights() -> StatisticalImpactWeights:
    """Fixed vector used when no weights have been stored for a season."""
    return StatisticalImpactWeights()


@dataclass
class RegressionMetricResult:
    """Single-metric regression outcome."""

    metric_name: str
    coefficient: float
    r_squared: float
    p_value: float
    confidence_interval: tuple[float, float]
    calculated_weight: float
    is_statistically_significant: bool


@dataclass
class ModelValidationStats:
    """Whole-model fit statistics reported alongside an analysis."""

    residual_standard_error: Optional[float] = None
    f_statistic: Optional[float] = None
    f_p_value: Optional[float] = None
    adjusted_r_squared: Optional[float] = None


@dataclass
class RegressionAnalysisResult:
    """Per-season regression analysis with per-metric rows."""

    season: int
    overall_model_r_squared: float
    sample_size: int
    predictive_accuracy: float
    regression_results: list[RegressionMetricResult] = field(default_factory=list)
    model_validation: ModelValidationStats = field(default_factory=ModelValidationStats)
    analysis_date: Optional[datetime] = None

    @property
    def significant_metrics(self) -> list[str]:
        return [r.metric_name for r in self.regression_results if r.is_statistically_significant]

    def to_dict(self) -> dict:
        data = asdict(self)
        data["analysis_date"] = self.analysis_date.isoformat() if self.analysis_date else None
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "RegressionAnalysisResult":
        values = dict(data)
        values["regression_results"] = [
            RegressionMetricResult(
                **{**row, "confidence_interval": tuple(row["confidence_interval"])}
            )
            for row in values.get("regression_results", [])
        ]
        values["model_validation"] = ModelValidationStats(**(values.get("model_validation") or {}))
        if values.get("analysis_date"):
            values["analysis_date"] = datetime.fromisoformat(values["analysis_date"])
        return cls(**values)


@dataclass
class RegressionMetrics:
    """Regression metadata attached to a regression-driven weight change."""

    r_squared: float
    sample_size: int
    significant_metrics: list[str] = field(default_factory=list)


@dataclass
class WeightChangeLog:
    """One append-only weight change for a season."""

    season: int
    timestamp: datetime
    reason: str
    previous_weights: Optional[StatisticalImpactWeights]
    new_weights: StatisticalImpactWeights
    regression_metrics: Optional[RegressionMetrics] = None
    actor: str = "system"
    note: Optional[str] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "WeightChangeLog":
        values = dict(data)
        values["timestamp"] = datetime.fromisoformat(values["timestamp"])
        if values.get("previous_weights") is not None:
            values["previous_weights"] = StatisticalImpactWeights(**values["previous_weights"])
        values["new_weights"] = StatisticalImpactWeights(**values["new_weights"])
        if values.get("regression_metrics") is not None:
            values["regression_metrics"] = RegressionMetrics(**values["regression_metrics"])
        return cls(**values)


@dataclass
class WeightValidation:
    """Outcome of ``validate_weights``."""

    is_valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    normalized_weights: Optional[StatisticalImpactWeights] = None


WeightsLike = Union[StatisticalImpactWeights, dict]


def validate_weights(
    weights: WeightsLike, settings: Optional[Settings] = None
) -> WeightValidation:
    """Check a weight vector for NaN, negative, oversized and degenerate values.

    Args:
        weights: StatisticalImpactWeights or a name -> value mapping
        settings: Individual weight ceiling and accepted sum band

    Returns:
        WeightValidation. ``normalized_weights`` is set when the total falls
        outside the accepted band and the vector is otherwise valid.
    """
    settings = settings or get_settings()
    values = weights.to_dict() if isinstance(weights, StatisticalImpactWeights) else dict(weights)
    result = WeightValidation(is_valid=True)

    for name, value in values.items():
        if not _is_number(value) or math.isnan(value):
            result.errors.append(f"Invalid {name}: must be a valid number")
    if result.errors:
        result.is_valid = False
        return result

    for name, value in values.items():
        if value < 0:
            result.errors.append(f"Negative weight not allowed: {name} = {value}")
        elif value > settings.max_individual_weight:
            result.warnings.append(f"Unusually high weight: {name} = {value}")

    total = sum(values.values())
    if total == 0:
        result.errors.append("Total weight sum cannot be zero")

    if result.errors:
        result.is_valid = False
        return result

    low, high = settings.weight_sum_band
    if total < low or total > high:
        scale = settings.weight_sum_target / total
        result.warnings.append(
            f"Total weight sum ({total:.3f}) is outside normal range, normalizing"
        )
        normalized = {name: value * scale for name, value in values.items()}
        if set(normalized) == set(WEIGHT_NAMES):
            result.normalized_weights = StatisticalImpactWeights(**normalized)

    return result


def _is_number(value) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, bool)


def derive_weights_from_regression(analysis: RegressionAnalysisResult) -> StatisticalImpactWeights:
    """Turn per-metric regression rows into a weight vector.

    Significant metrics contribute their calculated weight to a recommended
    set (other slots default to 0.2), which is normalized to sum to one and
    mapped onto the weight categories. Non-significant metrics are then
    halved and significant metrics with a strong individual R^2 boosted.
    """
    recommended = {
        slot: DEFAULT_RECOMMENDED_WEIGHT
        for slot in ("scoring", "passing_yards", "rushing_yards", "turnovers", "special_teams")
    }
    for row in analysis.regression_results:
        slot = METRIC_TO_RECOMMENDED.get(row.metric_name)
        if slot is not None and row.is_statistically_significant:
            recommended[slot] = row.calculated_weight

    total = sum(recommended.values())
    if total != 0:
        recommended = {slot: value / total for slot, value in recommended.items()}

    weights = {
        "passing_offense": recommended["passing_yards"],
        "rushing_offense": recommended["rushing_yards"],
        "scoring_efficiency": recommended["scoring"],
        "passing_defense": recommended["passing_yards"] * DEFENSIVE_SHARE,
        "rushing_defense": recommended["rushing_yards"] * DEFENSIVE_SHARE,
        "turnover_margin": recommended["turnovers"],
        "special_teams": recommended["special_teams"],
        "home_field_advantage": HOME_FIELD_WEIGHT,
    }

    for row in analysis.regression_results:
        targets = METRIC_TO_WEIGHTS.get(row.metric_name, ())
        if not row.is_statistically_significant:
            factor = NON_SIGNIFICANT_FACTOR
        elif row.r_squared > STRONG_METRIC_R_SQUARED:
            factor = STRONG_METRIC_BOOST[row.metric_name] if targets else 1.0
        else:
            factor = 1.0
        for name in targets:
            weights[name] *= factor

    return StatisticalImpactWeights(**weights)


class WeightManager:
    """Season weight vectors backed by an append-only change log."""

    def __init__(
        self,
        storage: EngineStorage,
        settings: Optional[Settings] = None,
        clock: Clock = utc_now,
    ):
        """Initialize the manager.

        Args:
            storage: Storage port holding weight history and regression analyses
            settings: Validation thresholds and history limit
            clock: Timestamp source for change-log entries
        """
        self.storage = storage
        self.settings = settings or get_settings()
        self.clock = clock

    def get_current_weights(self, season: int) -> StatisticalImpactWeights:
        """Most recent stored weights for a season, or the fallback vector.

        Never raises: an unreachable store yields the fallback with a warning.
        """
        try:
            history = self.storage.get_weight_history(season)
        except Exception as e:
            logger.warning(f"Weight read failed for season {season}, using fallback: {e}")
            return fallback_weights()

        if not history:
            logger.debug(f"No stored weights for season {season}, using fallback")
            return fallback_weights()

        latest = max(enumerate(history), key=lambda item: (item[1].timestamp, item[0]))[1]
        return latest.new_weights

    def update_weights_from_regression(
        self,
        season: int,
        analysis: RegressionAnalysisResult,
        actor: str = "system",
    ) -> StatisticalImpactWeights:
        """Derive, validate and store weights from a regression analysis.

        Raises:
            ValueError: If the derived vector fails validation (nothing is written)
            StorageError: If the change log cannot be written
        """
        derived = derive_weights_from_regression(analysis)
        validation = validate_weights(derived, self.settings)
        if not validation.is_valid:
            raise ValueError(
                f"Invalid weights from regression analysis: {'; '.join(validation.errors)}"
            )
        for warning in validation.warnings:
            logger.warning(f"Season {season} regression weights: {warning}")

        new_weights = validation.normalized_weights or derived
        entry = WeightChangeLog(
            season=season,
            timestamp=self.clock(),
            reason=REASON_REGRESSION,
            previous_weights=self.get_current_weights(season),
            new_weights=new_weights,
            regression_metrics=RegressionMetrics(
                r_squared=analysis.overall_model_r_squared,
                sample_size=analysis.sample_size,
                significant_metrics=analysis.significant_metrics,
            ),
            actor=actor,
        )
        self._append(entry)
        logger.info(
            f"Updated season {season} weights from regression "
            f"(R^2={analysis.overall_model_r_squared:.3f}, n={analysis.sample_size})"
        )
        return new_weights

    def update_weights_manually(
        self,
        season: int,
        partial_weights: dict[str, float],
        reason: str,
        actor: str = "system",
    ) -> StatisticalImpactWeights:
        """Merge overrides onto the current vector, validate and store.

        Raises:
            ValueError: On unknown categories or an invalid merged vector
            StorageError: If the change log cannot be written
        """
        unknown = sorted(set(partial_weights) - set(WEIGHT_NAMES))
        if unknown:
            raise ValueError(f"Invalid manual weight update: unknown categories {unknown}")

        current = self.get_current_weights(season)
        merged = {**current.to_dict(), **partial_weights}
        validation = validate_weights(merged, self.settings)
        if not validation.is_valid:
            raise ValueError(f"Invalid manual weight update: {'; '.join(validation.errors)}")
        for warning in validation.warnings:
            logger.warning(f"Season {season} manual weights: {warning}")

        new_weights = validation.normalized_weights or StatisticalImpactWeights(**merged)
        self._append(
            WeightChangeLog(
                season=season,
                timestamp=self.clock(),
                reason=f"{REASON_MANUAL}:{reason}",
                previous_weights=current,
                new_weights=new_weights,
                actor=actor,
                note=reason,
            )
        )
        logger.info(f"Manual weight override for season {season} by {actor}: {reason}")
        return new_weights

    def reset_to_fallback_weights(
        self, season: int, reason: str, actor: str = "system"
    ) -> StatisticalImpactWeights:
        """Store the fallback vector as the season's current weights."""
        weights = fallback_weights()
        self._append(
            WeightChangeLog(
                season=season,
                timestamp=self.clock(),
                reason=REASON_FALLBACK,
                previous_weights=self.get_current_weights(season),
                new_weights=weights,
                actor=actor,
                note=reason,
            )
        )
        logger.info(f"Reset season {season} weights to fallback: {reason}")
        return weights

    def get_weight_history(
        self, season: int, limit: Optional[int] = None
    ) -> list[WeightChangeLog]:
        """Change-log entries newest first (empty when none or unreadable)."""
        limit = limit if limit is not None else self.settings.weight_history_limit
        try:
            history = self.storage.get_weight_history(season)
        except Exception as e:
            logger.warning(f"Weight history read failed for season {season}: {e}")
            return []
        ordered = [
            entry
            for _, entry in sorted(
                enumerate(history),
                key=lambda item: (item[1].timestamp, item[0]),
                reverse=True,
            )
        ]
        return ordered[:limit]

    def get_latest_regression_analysis(self, season: int) -> Optional[RegressionAnalysisResult]:
        """Most recent regression analysis for a season, or None (fail-soft)."""
        try:
            analyses = self.storage.get_regression_analyses(season)
        except Exception as e:
            logger.warning(f"Regression analysis read failed for season {season}: {e}")
            return None
        if not analyses:
            return None
        # Undated analyses rank below dated ones; insertion order breaks ties
        return max(
            enumerate(analyses),
            key=lambda item: (item[1].analysis_date is not None, item[1].analysis_date, item[0]),
        )[1]

    def _append(self, entry: WeightChangeLog) -> None:
        try:
            self.storage.append_weight_change(entry)
        except Exception as e:
            raise StorageError(
                f"Failed to store weight change for season {entry.season}"
            ) from e
