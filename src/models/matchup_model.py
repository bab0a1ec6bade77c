"""Additive opponent-relative matchup model.

For each category the prediction is::

    predicted = opponent_baseline + offense_efficiency - defense_efficiency

where the baseline is what the defending team typically allows. The
regression-derived category weight is reported next to every prediction and
drives the weighted contribution; final scores are built mostly from the
scoring category with small turnover and field-goal terms.
"""

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Optional

import numpy as np

from config.settings import Settings, get_settings
from src.models.efficiency_profile import (
    CONFIDENCE_VALUES,
    DEFAULT_TYPICAL_ALLOWED,
    ConfidenceLevel,
    TeamEfficiencyProfile,
)
from src.models.weights import StatisticalImpactWeights, WeightManager

logger = logging.getLogger(__name__)

# category -> (offensive profile field, defensive profile field or None)
CATEGORY_FIELDS = {
    "total_yards": ("total_offense_efficiency", "total_defense_efficiency"),
    "passing_yards": ("passing_offense_efficiency", "passing_defense_efficiency"),
    "rushing_yards": ("rushing_offense_efficiency", "rushing_defense_efficiency"),
    "scoring": ("scoring_offense_efficiency", "scoring_defense_efficiency"),
    "turnovers": ("turnover_offense_efficiency", "turnover_defense_efficiency"),
    "sacks": ("sack_offense_efficiency", "sack_defense_efficiency"),
    "field_goals": ("field_goal_efficiency", None),
}
SUPPORTED_CATEGORIES = tuple(CATEGORY_FIELDS)

SACK_WEIGHT = 0.1

# Final score composition
SCORING_SHARE = 0.95
TURNOVER_SHARE = 0.03
POINTS_PER_TURNOVER = -2.0
FIELD_GOAL_SHARE = 0.02
POINTS_PER_FIELD_GOAL = 3.0

# Bounds checks
NEGATIVE_FLOOR_FRACTION = 0.10
MAX_BASELINE_DEVIATION = 2.0
BASELINE_CAP_MULTIPLE = 3.0
MAX_AVERAGE_DEVIATION = 1.5
AVERAGE_CAP_MULTIPLE = 2.5

# Model R^2 above which the weights are reported as significant
SIGNIFICANT_MODEL_R_SQUARED = 0.5


def category_weight(category: str, weights: StatisticalImpactWeights) -> float:
    """Weight associated with a category (composite for total yards)."""
    if category == "total_yards":
        return weights.passing_offense + weights.rushing_offense
    if category == "passing_yards":
        return weights.passing_offense
    if category == "rushing_yards":
        return weights.rushing_offense
    if category == "scoring":
        return weights.scoring_efficiency
    if category == "turnovers":
        return weights.turnover_margin
    if category == "sacks":
        return SACK_WEIGHT
    if category == "field_goals":
        return weights.special_teams
    raise ValueError(f"Unsupported statistical category: {category}")


@dataclass
class CategoryPrediction:
    """Opponent-relative prediction for one side in one category."""

    category: str
    team_offensive_efficiency: float
    opponent_defensive_efficiency: float
    opponent_baseline: float
    predicted_value: float
    weight_applied: float
    confidence_interval: tuple[float, float] = (0.0, 0.0)
    bounds_adjusted: bool = False

    @property
    def weighted_value(self) -> float:
        return self.predicted_value * self.weight_applied


@dataclass
class ExpectedPerformance:
    """Result of ``calculate_expected_performance``."""

    expected_value: float
    confidence: float
    opponent_baseline: float
    weight_applied: float

    @property
    def weighted_value(self) -> float:
        return self.expected_value * self.weight_applied


@dataclass
class BoundsCheck:
    """Result of ``validate_prediction_bounds``."""

    is_valid: bool
    adjusted_value: float
    reason: Optional[str] = None


@dataclass
class RegressionMetadata:
    """Weights and fit quality behind a matchup prediction."""

    weights_used: StatisticalImpactWeights
    model_r_squared: float = 0.0
    statistically_significant: bool = False
    weights_last_updated: Optional[datetime] = None


@dataclass
class MatchupPrediction:
    """Category-level and final score predictions for one game."""

    home_team_id: int
    away_team_id: int
    season: int
    home_predictions: dict[str, CategoryPrediction] = field(default_factory=dict)
    away_predictions: dict[str, CategoryPrediction] = field(default_factory=dict)
    home_score: float = 0.0
    away_score: float = 0.0
    home_confidence_interval: tuple[float, float] = (0.0, 0.0)
    away_confidence_interval: tuple[float, float] = (0.0, 0.0)
    confidence_level: ConfidenceLevel = ConfidenceLevel.LOW
    confidence: float = 0.0
    regression_metadata: Optional[RegressionMetadata] = None

    @property
    def predicted_margin(self) -> float:
        """Home minus away."""
        return self.home_score - self.away_score

    def to_dict(self) -> dict:
        data = asdict(self)
        data["confidence_level"] = self.confidence_level.value
        data["predicted_margin"] = self.predicted_margin
        return data


class MatchupPredictionModel:
    """Combine two profiles and the season weights into a game prediction."""

    def __init__(self, weight_manager: WeightManager, settings: Optional[Settings] = None):
        """Initialize the model.

        Args:
            weight_manager: Source of current weights and regression fit
            settings: Home-field points and interval widths
        """
        self.weight_manager = weight_manager
        self.settings = settings or get_settings()

    def calculate_expected_performance(
        self,
        offense_profile: TeamEfficiencyProfile,
        defense_profile: TeamEfficiencyProfile,
        category: str,
        weights: Optional[StatisticalImpactWeights] = None,
    ) -> ExpectedPerformance:
        """Expected value for one category, offense vs defense.

        Raises:
            ValueError: For an unsupported category
        """
        if category not in CATEGORY_FIELDS:
            raise ValueError(f"Unsupported statistical category: {category}")
        if weights is None:
            weights = self.weight_manager.get_current_weights(offense_profile.season)

        prediction = self._predict_category(offense_profile, defense_profile, category, weights)
        return ExpectedPerformance(
            expected_value=prediction.predicted_value,
            confidence=self.matchup_confidence(offense_profile, defense_profile),
            opponent_baseline=prediction.opponent_baseline,
            weight_applied=prediction.weight_applied,
        )

    def calculate_matchup_analysis(
        self,
        home_profile: TeamEfficiencyProfile,
        away_profile: TeamEfficiencyProfile,
    ) -> MatchupPrediction:
        """Predict every category for both sides and derive final scores.

        Raises:
            ValueError: If the profiles belong to different seasons
        """
        if home_profile.season != away_profile.season:
            raise ValueError(
                f"Profiles from different seasons: {home_profile.season} vs {away_profile.season}"
            )
        season = home_profile.season
        weights = self.weight_manager.get_current_weights(season)
        analysis = self.weight_manager.get_latest_regression_analysis(season)
        model_r_squared = analysis.overall_model_r_squared if analysis else 0.0

        home_predictions = {
            category: self._bounded(self._predict_category(home_profile, away_profile, category, weights))
            for category in SUPPORTED_CATEGORIES
        }
        away_predictions = {
            category: self._bounded(self._predict_category(away_profile, home_profile, category, weights))
            for category in SUPPORTED_CATEGORIES
        }

        home_score = self._final_score(home_predictions, is_home=True)
        away_score = self._final_score(away_predictions, is_home=False)

        prediction = MatchupPrediction(
            home_team_id=home_profile.team_id,
            away_team_id=away_profile.team_id,
            season=season,
            home_predictions=home_predictions,
            away_predictions=away_predictions,
            home_score=home_score,
            away_score=away_score,
            home_confidence_interval=self._score_interval(home_score, model_r_squared),
            away_confidence_interval=self._score_interval(away_score, model_r_squared),
            confidence_level=ConfidenceLevel.lowest(
                home_profile.confidence_level, away_profile.confidence_level
            ),
            confidence=self.matchup_confidence(home_profile, away_profile),
            regression_metadata=RegressionMetadata(
                weights_used=weights,
                model_r_squared=model_r_squared,
                statistically_significant=model_r_squared > SIGNIFICANT_MODEL_R_SQUARED,
                weights_last_updated=analysis.analysis_date if analysis else None,
            ),
        )
        logger.debug(
            f"Matchup {home_profile.team_id} vs {away_profile.team_id} ({season}): "
            f"{home_score:.1f}-{away_score:.1f}, {prediction.confidence_level.value}"
        )
        return prediction

    def validate_prediction_bounds(
        self,
        predicted_value: float,
        category: str,
        opponent_baseline: float,
        team_season_average: Optional[float] = None,
    ) -> BoundsCheck:
        """Sanity-check a category prediction and propose a clamped value.

        Checks run in order: negative value, deviation from the opponent
        baseline beyond 2x, deviation from the team's season average beyond
        1.5x. The first failing check decides the adjusted value.
        """
        if category not in CATEGORY_FIELDS:
            raise ValueError(f"Unsupported statistical category: {category}")

        if predicted_value < 0:
            return BoundsCheck(
                is_valid=False,
                adjusted_value=opponent_baseline * NEGATIVE_FLOOR_FRACTION,
                reason="Negative prediction not allowed",
            )

        if opponent_baseline > 0:
            deviation = abs(predicted_value - opponent_baseline) / opponent_baseline
            if deviation > MAX_BASELINE_DEVIATION:
                return BoundsCheck(
                    is_valid=False,
                    adjusted_value=opponent_baseline * BASELINE_CAP_MULTIPLE,
                    reason=(
                        f"Prediction exceeded reasonable bounds relative to opponent "
                        f"({deviation:.2f}x opponent baseline)"
                    ),
                )

        if team_season_average is not None and team_season_average > 0:
            deviation = abs(predicted_value - team_season_average) / team_season_average
            if deviation > MAX_AVERAGE_DEVIATION:
                return BoundsCheck(
                    is_valid=False,
                    adjusted_value=team_season_average * AVERAGE_CAP_MULTIPLE,
                    reason=f"Prediction deviated too much from team average ({deviation:.2f}x)",
                )

        return BoundsCheck(is_valid=True, adjusted_value=predicted_value)

    def matchup_confidence(
        self, profile_a: TeamEfficiencyProfile, profile_b: TeamEfficiencyProfile
    ) -> float:
        """Numeric confidence driven by the weaker profile.

        The weaker tier sets the ceiling (High 1.0, Medium 0.7, Low 0.4); the
        weaker convergence score shades it by up to 15%.
        """
        tier = ConfidenceLevel.lowest(profile_a.confidence_level, profile_b.confidence_level)
        convergence = min(profile_a.convergence_score, profile_b.convergence_score)
        return CONFIDENCE_VALUES[tier] * (0.85 + 0.15 * convergence)

    # =========================================================================
    # Internals
    # =========================================================================

    def _predict_category(
        self,
        offense: TeamEfficiencyProfile,
        defense: TeamEfficiencyProfile,
        category: str,
        weights: StatisticalImpactWeights,
    ) -> CategoryPrediction:
        off_field, def_field = CATEGORY_FIELDS[category]
        off_eff = getattr(offense, off_field)
        def_eff = getattr(defense, def_field) if def_field else 0.0
        baseline = defense.typical_allowed.get(category, DEFAULT_TYPICAL_ALLOWED[category])

        predicted = baseline + off_eff - def_eff
        spread = abs(off_eff + def_eff) * 0.2
        return CategoryPrediction(
            category=category,
            team_offensive_efficiency=off_eff,
            opponent_defensive_efficiency=def_eff,
            opponent_baseline=baseline,
            predicted_value=predicted,
            weight_applied=category_weight(category, weights),
            confidence_interval=(predicted - spread, predicted + spread),
        )

    def _bounded(self, prediction: CategoryPrediction) -> CategoryPrediction:
        check = self.validate_prediction_bounds(
            prediction.predicted_value, prediction.category, prediction.opponent_baseline
        )
        if check.is_valid:
            return prediction
        logger.debug(f"Clamped {prediction.category} prediction: {check.reason}")
        prediction.predicted_value = check.adjusted_value
        prediction.bounds_adjusted = True
        return prediction

    def _final_score(self, predictions: dict[str, CategoryPrediction], is_home: bool) -> float:
        score = (
            predictions["scoring"].predicted_value * SCORING_SHARE
            + predictions["turnovers"].predicted_value * POINTS_PER_TURNOVER * TURNOVER_SHARE
            + predictions["field_goals"].predicted_value * POINTS_PER_FIELD_GOAL * FIELD_GOAL_SHARE
        )
        if is_home:
            score += self.settings.home_field_points
        return max(0.0, score)

    def _score_interval(self, score: float, model_r_squared: float) -> tuple[float, float]:
        """Interval whose relative width grows as model R^2 falls."""
        r_squared = float(np.clip(model_r_squared, 0.0, 1.0))
        fraction = (
            self.settings.base_interval_fraction
            + self.settings.r_squared_interval_fraction * (1.0 - r_squared)
        )
        half_width = abs(score) * fraction
        return (max(0.0, score - half_width), score + half_width)
