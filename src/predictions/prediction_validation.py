"""Second-pass sanity checks and corrections for final score predictions.

Independent of the matchup model: predictions are compared with simple
team scoring baselines (mean, spread and range of points over the season's
finished games) and clamped back into plausible territory when they fail.
"""

import logging
import math
from dataclasses import dataclass, field, replace
from typing import Optional

import pandas as pd

from config.settings import Settings, get_settings
from src.data.storage import EngineStorage

logger = logging.getLogger(__name__)

MAX_TEAM_SCORE = 200
MAX_RAW_DIFFERENTIAL = 100
DEVIATION_WARNING_SIGMAS = 4.0
MIN_SCORE_FRACTION = 0.3
MIN_SCORE_FLOOR = 3.0

CORRECTION_LOW_MULTIPLIER = 0.4
CORRECTION_HIGH_MULTIPLIER = 2.5
CORRECTION_HIGH_CAP = 80.0
DEFAULT_SCORE_RANGE = (7.0, 70.0)

FALLBACK_HOME_POINTS = 24.0
FALLBACK_AWAY_POINTS = 21.0
FALLBACK_HOME_BONUS = 3.0
FALLBACK_OPPONENT_FACTOR = 0.3
FALLBACK_HOME_RANGE = (10.0, 60.0)
FALLBACK_AWAY_RANGE = (7.0, 55.0)
FALLBACK_CONFIDENCE = 0.3
FALLBACK_METHOD = "fallback-baseline"


@dataclass
class GamePrediction:
    """Final score prediction for one game."""

    game_id: int
    home_team_id: int
    away_team_id: int
    home_score: float
    away_score: float
    confidence: float
    method: str
    win_probability: Optional[float] = None  # home side, 0-1

    @property
    def point_differential(self) -> float:
        return self.home_score - self.away_score


@dataclass
class TeamPerformanceBaseline:
    """Scoring profile of a team over the season's finished games."""

    team_id: int
    team_name: str
    avg_points_for: float = 0.0
    avg_points_against: float = 0.0
    min_score: float = 0.0
    max_score: float = 0.0
    games_played: int = 0
    standard_deviation: float = 0.0

    @property
    def has_history(self) -> bool:
        return self.games_played > 0


@dataclass
class PredictionBounds:
    """Allowed score ranges for a matchup, with the reasoning behind them."""

    home_team_min: int
    home_team_max: int
    away_team_min: int
    away_team_max: int
    max_point_differential: float
    reasoning: list[str] = field(default_factory=list)


@dataclass
class PredictionValidationResult:
    """Outcome of validating a single prediction."""

    is_valid: bool
    original_prediction: GamePrediction
    corrected_prediction: Optional[GamePrediction] = None
    validation_issues: list[str] = field(default_factory=list)
    validation_warnings: list[str] = field(default_factory=list)
    correction_reason: Optional[str] = None


@dataclass
class BatchSummary:
    total: int = 0
    valid: int = 0
    corrected: int = 0
    failed: int = 0


@dataclass
class BatchValidationResult:
    """Per-item accounting of a batch validation run."""

    valid_predictions: list[GamePrediction] = field(default_factory=list)
    corrected_predictions: list[GamePrediction] = field(default_factory=list)
    failed_predictions: list[tuple[GamePrediction, str]] = field(default_factory=list)
    results: list[PredictionValidationResult] = field(default_factory=list)
    summary: BatchSummary = field(default_factory=BatchSummary)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class PredictionValidationService:
    """Validate, correct and back-fill final score predictions."""

    def __init__(self, storage: EngineStorage, season: int, settings: Optional[Settings] = None):
        """Initialize the service.

        Args:
            storage: Storage port for teams and games
            season: Season whose finished games define the baselines
            settings: Differential limits and league-average points
        """
        self.storage = storage
        self.season = season
        self.settings = settings or get_settings()

    def get_team_performance_baseline(self, team_id: int) -> Optional[TeamPerformanceBaseline]:
        """Scoring baseline for a team.

        Returns None only when the team does not exist (or cannot be read).
        A known team without finished games gets an all-zero baseline.
        """
        try:
            team_name = self.storage.get_team_name(team_id)
            games = self.storage.get_games(self.season)
        except Exception as e:
            logger.warning(f"Baseline read failed for team {team_id}: {e}")
            return None

        if team_name is None:
            return None

        points_for, points_against = self._team_points(games, team_id)
        if points_for.empty:
            return TeamPerformanceBaseline(team_id=team_id, team_name=team_name)

        return TeamPerformanceBaseline(
            team_id=team_id,
            team_name=team_name,
            avg_points_for=float(points_for.mean()),
            avg_points_against=float(points_against.mean()),
            min_score=float(points_for.min()),
            max_score=float(points_for.max()),
            games_played=int(len(points_for)),
            standard_deviation=float(points_for.std(ddof=0)),
        )

    def validate_prediction(self, prediction: GamePrediction) -> PredictionValidationResult:
        """Check a prediction and attach a corrected copy when it fails."""
        issues: list[str] = []
        warnings: list[str] = []
        sides = (
            ("Home", prediction.home_score),
            ("Away", prediction.away_score),
        )

        for label, score in sides:
            if score < 0:
                issues.append(f"{label} team score cannot be negative ({score})")
        for label, score in sides:
            if score > MAX_TEAM_SCORE:
                issues.append(f"{label} team score exceeds maximum ({score} > {MAX_TEAM_SCORE})")

        differential = abs(prediction.point_differential)
        if differential > MAX_RAW_DIFFERENTIAL:
            issues.append(f"Point differential too large ({differential:.1f} > {MAX_RAW_DIFFERENTIAL})")

        home_baseline = self.get_team_performance_baseline(prediction.home_team_id)
        away_baseline = self.get_team_performance_baseline(prediction.away_team_id)

        for label, score, baseline in (
            ("Home", prediction.home_score, home_baseline),
            ("Away", prediction.away_score, away_baseline),
        ):
            if baseline is None or not baseline.has_history:
                continue
            if baseline.standard_deviation > 0:
                sigmas = abs(score - baseline.avg_points_for) / baseline.standard_deviation
                if sigmas > DEVIATION_WARNING_SIGMAS:
                    warnings.append(
                        f"{label} team score {score:.1f} is {sigmas:.1f} standard deviations "
                        f"from season average {baseline.avg_points_for:.1f}"
                    )
            minimum = max(baseline.avg_points_for * MIN_SCORE_FRACTION, MIN_SCORE_FLOOR)
            if score < minimum:
                issues.append(
                    f"{label} team score {score:.1f} is below plausible minimum {minimum:.1f}"
                )

        result = PredictionValidationResult(
            is_valid=not issues,
            original_prediction=prediction,
            validation_issues=issues,
            validation_warnings=warnings,
        )
        if issues:
            result.corrected_prediction = self.correct_prediction(
                prediction, home_baseline, away_baseline
            )
            result.correction_reason = (
                f"Applied corrections due to validation issues: {'; '.join(issues)}"
            )
            logger.info(f"Corrected prediction for game {prediction.game_id}: {'; '.join(issues)}")
        return result

    def correct_prediction(
        self,
        prediction: GamePrediction,
        home_baseline: Optional[TeamPerformanceBaseline] = None,
        away_baseline: Optional[TeamPerformanceBaseline] = None,
    ) -> GamePrediction:
        """Clamp scores into plausible ranges and cap runaway differentials.

        When the differential (before or after clamping) exceeds the maximum,
        both scores move toward their mean so the differential becomes
        exactly the corrected value, split evenly around the mean.
        """
        home = self._clamp_to_baseline(prediction.home_score, home_baseline)
        away = self._clamp_to_baseline(prediction.away_score, away_baseline)

        max_diff = self.settings.max_point_differential
        if abs(home - away) > max_diff or abs(prediction.point_differential) > max_diff:
            target = self.settings.corrected_point_differential
            mean = (home + away) / 2
            low = float(max(_round_half_up(mean - target / 2), 0))
            high = low + target
            home, away = (high, low) if home > away else (low, high)

        return replace(
            prediction,
            home_score=home,
            away_score=away,
            confidence=prediction.confidence * 0.5,
            method=f"{prediction.method}-corrected",
        )

    def calculate_prediction_bounds(self, home_team_id: int, away_team_id: int) -> PredictionBounds:
        """Score ranges for both sides plus the reasoning used."""
        reasoning = []
        ranges = []
        for label, team_id in (("Home", home_team_id), ("Away", away_team_id)):
            baseline = self.get_team_performance_baseline(team_id)
            low, high = self._score_range(baseline)
            ranges.append((_round_half_up(low), _round_half_up(high)))
            if baseline is not None and baseline.has_history:
                reasoning.append(
                    f"{label} team bounds based on {baseline.games_played} games "
                    f"(avg: {baseline.avg_points_for:.1f})"
                )
            else:
                reasoning.append(f"{label} team bounds using default values (no game history)")

        max_diff = self.settings.max_point_differential
        reasoning.append(f"Maximum point differential capped at {max_diff:g}")
        (home_min, home_max), (away_min, away_max) = ranges
        return PredictionBounds(
            home_team_min=home_min,
            home_team_max=home_max,
            away_team_min=away_min,
            away_team_max=away_max,
            max_point_differential=max_diff,
            reasoning=reasoning,
        )

    def generate_fallback_prediction(
        self, home_team_id: int, away_team_id: int, game_id: int
    ) -> GamePrediction:
        """Baseline-only prediction used when the full model cannot run."""
        home_baseline = self.get_team_performance_baseline(home_team_id)
        away_baseline = self.get_team_performance_baseline(away_team_id)
        league_avg = self.settings.league_average_points

        home_score = (
            home_baseline.avg_points_for
            if home_baseline is not None and home_baseline.has_history
            else FALLBACK_HOME_POINTS
        ) + FALLBACK_HOME_BONUS
        away_score = (
            away_baseline.avg_points_for
            if away_baseline is not None and away_baseline.has_history
            else FALLBACK_AWAY_POINTS
        )

        if away_baseline is not None and away_baseline.has_history:
            home_score += FALLBACK_OPPONENT_FACTOR * (away_baseline.avg_points_against - league_avg)
        if home_baseline is not None and home_baseline.has_history:
            away_score += FALLBACK_OPPONENT_FACTOR * (home_baseline.avg_points_against - league_avg)

        home_score = min(max(home_score, FALLBACK_HOME_RANGE[0]), FALLBACK_HOME_RANGE[1])
        away_score = min(max(away_score, FALLBACK_AWAY_RANGE[0]), FALLBACK_AWAY_RANGE[1])

        logger.info(
            f"Fallback prediction for game {game_id}: {home_score:.0f}-{away_score:.0f}"
        )
        return GamePrediction(
            game_id=game_id,
            home_team_id=home_team_id,
            away_team_id=away_team_id,
            home_score=float(_round_half_up(home_score)),
            away_score=float(_round_half_up(away_score)),
            confidence=FALLBACK_CONFIDENCE,
            method=FALLBACK_METHOD,
        )

    def validate_prediction_batch(self, predictions: list[GamePrediction]) -> BatchValidationResult:
        """Validate predictions independently; one failure never aborts the batch."""
        batch = BatchValidationResult()
        batch.summary.total = len(predictions)

        for prediction in predictions:
            try:
                result = self.validate_prediction(prediction)
            except Exception as e:
                logger.warning(f"Validation failed for game {prediction.game_id}: {e}")
                batch.failed_predictions.append((prediction, str(e)))
                continue

            batch.results.append(result)
            if result.is_valid:
                batch.valid_predictions.append(prediction)
            elif result.corrected_prediction is not None:
                batch.corrected_predictions.append(result.corrected_prediction)
            else:
                batch.failed_predictions.append(
                    (prediction, "; ".join(result.validation_issues))
                )

        batch.summary.valid = len(batch.valid_predictions)
        batch.summary.corrected = len(batch.corrected_predictions)
        batch.summary.failed = len(batch.failed_predictions)
        logger.info(
            f"Validated {batch.summary.total} predictions: {batch.summary.valid} valid, "
            f"{batch.summary.corrected} corrected, {batch.summary.failed} failed"
        )
        return batch

    # =========================================================================
    # Internals
    # =========================================================================

    @staticmethod
    def _team_points(games: pd.DataFrame, team_id: int) -> tuple[pd.Series, pd.Series]:
        if games.empty:
            empty = pd.Series(dtype=float)
            return empty, empty
        finished = games[games["completed"].astype(bool)].dropna(
            subset=["home_points", "away_points"]
        )
        home = finished[finished["home_team_id"] == team_id]
        away = finished[finished["away_team_id"] == team_id]
        points_for = pd.concat([home["home_points"], away["away_points"]]).astype(float)
        points_against = pd.concat([home["away_points"], away["home_points"]]).astype(float)
        return points_for, points_against

    @staticmethod
    def _score_range(baseline: Optional[TeamPerformanceBaseline]) -> tuple[float, float]:
        if baseline is None or not baseline.has_history:
            return DEFAULT_SCORE_RANGE
        low = max(baseline.avg_points_for * CORRECTION_LOW_MULTIPLIER, MIN_SCORE_FLOOR)
        high = min(baseline.avg_points_for * CORRECTION_HIGH_MULTIPLIER, CORRECTION_HIGH_CAP)
        return low, max(low, high)

    def _clamp_to_baseline(
        self, score: float, baseline: Optional[TeamPerformanceBaseline]
    ) -> float:
        low, high = self._score_range(baseline)
        return float(min(max(score, low), high))
