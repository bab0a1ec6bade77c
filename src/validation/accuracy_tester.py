"""Back-test of the full prediction chain against finished games.

A representative sample of completed games is re-predicted with the live
chain (profiles -> weights -> matchup -> validation) and compared with the
actual results:

- win-probability accuracy (accuracy, Brier score, log-loss,
  precision/recall/F1, ROC-AUC)
- score accuracy (MAE, RMSE, median absolute error, per-side bias)
- confidence calibration (binned reliability diagram, ECE/MCE)
- systematic biases (home team, score range, game type, strong favourites)
- reliability by confidence bucket and by game type
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import numpy as np
import pandas as pd
from scipy import stats
from sklearn.metrics import (
    accuracy_score,
    brier_score_loss,
    log_loss,
    mean_absolute_error,
    mean_squared_error,
    precision_recall_fscore_support,
    roc_auc_score,
)

from config.settings import Settings
from src.data.storage import EngineStorage
from src.models.weights import WeightManager
from src.predictions.prediction_service import PredictionService
from src.utils.clock import Clock, utc_now
from src.validation.base import BaseValidator
from src.validation.results import Severity, ValidationResult

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_SIZE = 100
MAX_REALISTIC_SCORE = 200
MIN_STRATUM_SHARE = 0.1
MIN_PREDICTION_SUCCESS_RATE = 0.5
PROBABILITY_CLIP = 0.001

CLOSE_MARGIN = 7
BLOWOUT_MARGIN = 21
HIGH_SCORING_TOTAL = 60
LOW_SCORING_TOTAL = 35

BIAS_SIGNIFICANCE = 0.05
HOME_SCORE_BIAS_THRESHOLD = 2.0
HOME_WIN_RATE_BIAS_THRESHOLD = 0.05
SCORE_RANGE_BIAS_THRESHOLD = 3.0
MIN_BUCKET_SAMPLES = 5
GAME_TYPE_MIN_ACCURACY = 0.6
STRONG_FAVORITE_PROBABILITY = 0.75
STRONG_FAVORITE_MIN_ACCURACY = 0.7

SCORE_RANGES = (("Low Scoring", 0, 35), ("Medium Scoring", 36, 60), ("High Scoring", 61, MAX_REALISTIC_SCORE * 2))
CONFIDENCE_RANGES = ((0, 60), (60, 75), (75, 85), (85, 100))
HIGH_RELIABILITY = 75.0
MEDIUM_RELIABILITY = 60.0

# Targets used in the overall score
BASELINE_MAE = 14.0
BASELINE_BRIER = 0.25


@dataclass
class GameOutcomePrediction:
    """One back-tested game: what the chain predicted and what happened."""

    game_id: int
    home_team_id: int
    away_team_id: int
    predicted_home: float
    predicted_away: float
    win_probability: float  # home win, 0-1
    confidence: float  # 0-1
    actual_home: float
    actual_away: float
    week: Optional[int] = None
    home_team_name: Optional[str] = None
    away_team_name: Optional[str] = None

    @property
    def home_won(self) -> bool:
        return self.actual_home > self.actual_away

    @property
    def predicted_home_win(self) -> bool:
        return self.win_probability > 0.5

    @property
    def correct(self) -> bool:
        return self.home_won == self.predicted_home_win

    @property
    def actual_margin(self) -> float:
        return abs(self.actual_home - self.actual_away)


@dataclass
class FailedPrediction:
    game_id: int
    reason: str


@dataclass
class WinAccuracyMetrics:
    accuracy: float  # percent
    brier_score: float
    log_loss: float
    precision: float
    recall: float
    f1_score: float
    roc_auc: float


@dataclass
class SideAccuracy:
    mae: float
    rmse: float
    bias: float


@dataclass
class ScoreAccuracyMetrics:
    mean_absolute_error: float
    root_mean_square_error: float
    median_absolute_error: float
    mean_percentage_error: float
    home_team_accuracy: SideAccuracy
    away_team_accuracy: SideAccuracy

    @property
    def average_side_mae(self) -> float:
        return (self.home_team_accuracy.mae + self.away_team_accuracy.mae) / 2


@dataclass
class CalibrationPoint:
    predicted_probability: float
    actual_probability: float
    sample_size: int


@dataclass
class CalibrationMetrics:
    calibration_score: float
    expected_calibration_error: float
    maximum_calibration_error: float
    overconfidence_rate: float
    underconfidence_rate: float
    bins: int
    calibration_curve: list[CalibrationPoint] = field(default_factory=list)


@dataclass
class BiasAnalysis:
    bias_type: str
    description: str
    magnitude: float
    significance: float  # p-value
    affected_games: int
    examples: list[dict[str, Any]] = field(default_factory=list)

    @property
    def is_significant(self) -> bool:
        return self.significance <= BIAS_SIGNIFICANCE


@dataclass
class ReliabilityBucket:
    label: str
    accuracy: float  # percent
    sample_size: int
    reliability: str
    confidence_range: Optional[tuple[int, int]] = None


@dataclass
class ReliabilityAnalysis:
    overall_reliability: str
    overall_accuracy: float
    by_confidence: list[ReliabilityBucket] = field(default_factory=list)
    by_game_type: list[ReliabilityBucket] = field(default_factory=list)


@dataclass
class AccuracyTestResult(ValidationResult):
    """Back-test result."""

    season: Optional[int] = None
    sample_size: int = 0
    predictions: list[GameOutcomePrediction] = field(default_factory=list)
    failed_games: list[FailedPrediction] = field(default_factory=list)
    win_probability_accuracy: Optional[WinAccuracyMetrics] = None
    score_prediction_accuracy: Optional[ScoreAccuracyMetrics] = None
    confidence_calibration: Optional[CalibrationMetrics] = None
    systematic_biases: list[BiasAnalysis] = field(default_factory=list)
    prediction_reliability: Optional[ReliabilityAnalysis] = None
    kind: str = field(default="prediction_accuracy", init=False)


def reliability_label(accuracy: float) -> str:
    """high / medium / low for an accuracy percentage."""
    if accuracy >= HIGH_RELIABILITY:
        return "high"
    if accuracy >= MEDIUM_RELIABILITY:
        return "medium"
    return "low"


def predictions_frame(predictions: list[GameOutcomePrediction]) -> pd.DataFrame:
    """Tabular view used by all metric calculations."""
    df = pd.DataFrame(
        {
            "game_id": [p.game_id for p in predictions],
            "prob": [p.win_probability for p in predictions],
            "confidence": [p.confidence for p in predictions],
            "pred_home": [p.predicted_home for p in predictions],
            "pred_away": [p.predicted_away for p in predictions],
            "act_home": [p.actual_home for p in predictions],
            "act_away": [p.actual_away for p in predictions],
        }
    )
    df["home_won"] = (df["act_home"] > df["act_away"]).astype(int)
    df["pred_home_win"] = (df["prob"] > 0.5).astype(int)
    df["correct"] = (df["home_won"] == df["pred_home_win"]).astype(int)
    df["margin"] = (df["act_home"] - df["act_away"]).abs()
    df["actual_total"] = df["act_home"] + df["act_away"]
    df["predicted_total"] = df["pred_home"] + df["pred_away"]
    return df


class PredictionAccuracyTester(BaseValidator):
    """Back-test the prediction chain on a season's finished games."""

    component = "prediction_accuracy"
    result_class = AccuracyTestResult

    def __init__(
        self,
        storage: EngineStorage,
        settings: Optional[Settings] = None,
        clock: Clock = utc_now,
        weight_manager: Optional[WeightManager] = None,
        sample_size: int = DEFAULT_SAMPLE_SIZE,
        seed: Optional[int] = None,
    ):
        super().__init__(storage, settings, clock)
        self.weight_manager = weight_manager or WeightManager(storage, self.settings, self.clock)
        self.sample_size = sample_size
        self.rng = np.random.default_rng(seed)

    def _run(self, season: int, result: AccuracyTestResult) -> None:
        result.season = season
        games = self.select_sample_games(season, self.sample_size)
        if games.empty:
            result.add_error(
                "NO_COMPLETED_GAMES",
                f"No completed games with realistic scores found for season {season}",
                Severity.CRITICAL,
            )
            return

        predictions, failures = self.generate_test_predictions(season, games)
        result.predictions = predictions
        result.failed_games = failures
        result.sample_size = len(predictions)
        if not predictions:
            result.add_error(
                "NO_TEST_PREDICTIONS",
                "No test predictions could be generated",
                Severity.CRITICAL,
                {"failed_games": len(failures)},
            )
            return

        win = self.calculate_win_probability_accuracy(predictions)
        score = self.calculate_score_prediction_accuracy(predictions)
        calibration = self.calculate_confidence_calibration(predictions)
        biases = self.detect_systematic_biases(predictions)
        reliability = self.analyze_reliability(predictions)

        result.win_probability_accuracy = win
        result.score_prediction_accuracy = score
        result.confidence_calibration = calibration
        result.systematic_biases = biases
        result.prediction_reliability = reliability

        overall = self.calculate_overall_accuracy_score(win, score, calibration, biases)
        result.set_score(overall)
        result.is_valid = overall >= self.settings.accuracy_minimum

        success_rate = len(predictions) / len(games)
        if success_rate < MIN_PREDICTION_SUCCESS_RATE:
            result.add_warning(
                "LOW_PREDICTION_SUCCESS_RATE",
                f"Only {len(predictions)}/{len(games)} sample games could be predicted",
                {"success_rate": success_rate},
            )
        self._recommend(result)

    # =========================================================================
    # Sample selection and prediction
    # =========================================================================

    def select_sample_games(self, season: int, sample_size: int = DEFAULT_SAMPLE_SIZE) -> pd.DataFrame:
        """Finished games with realistic scores, diversified across game types."""
        games = self.storage.get_games(season)
        if games.empty:
            return games

        games = games[games["completed"].astype(bool)]
        games = games.dropna(subset=["home_points", "away_points"])
        games = games[
            games["home_points"].between(0, MAX_REALISTIC_SCORE)
            & games["away_points"].between(0, MAX_REALISTIC_SCORE)
        ]
        if games.empty:
            return games.reset_index(drop=True)

        known = games.apply(
            lambda g: self.storage.get_team_name(g["home_team_id"]) is not None
            and self.storage.get_team_name(g["away_team_id"]) is not None,
            axis=1,
        )
        return self._diverse_sample(games[known].reset_index(drop=True), sample_size)

    def _diverse_sample(self, games: pd.DataFrame, target: int) -> pd.DataFrame:
        if len(games) <= target:
            return games

        margin = (games["home_points"] - games["away_points"]).abs()
        total = games["home_points"] + games["away_points"]
        strata = {
            "close": margin <= CLOSE_MARGIN,
            "moderate": (margin > CLOSE_MARGIN) & (margin <= BLOWOUT_MARGIN),
            "blowout": margin > BLOWOUT_MARGIN,
            "high_scoring": total > HIGH_SCORING_TOTAL,
            "low_scoring": total < LOW_SCORING_TOTAL,
            "home_wins": games["home_points"] > games["away_points"],
            "away_wins": games["away_points"] > games["home_points"],
        }
        per_stratum = max(1, int(target * MIN_STRATUM_SHARE))

        chosen: list[int] = []
        for mask in strata.values():
            candidates = [i for i in games.index[mask] if i not in chosen]
            take = min(per_stratum, len(candidates))
            if take:
                chosen.extend(self.rng.choice(candidates, size=take, replace=False).tolist())

        remaining = [i for i in games.index if i not in chosen]
        slots = max(0, target - len(chosen))
        if remaining and slots:
            chosen.extend(
                self.rng.choice(remaining, size=min(slots, len(remaining)), replace=False).tolist()
            )
        return games.loc[chosen[:target]].reset_index(drop=True)

    def generate_test_predictions(
        self, season: int, games: pd.DataFrame
    ) -> tuple[list[GameOutcomePrediction], list[FailedPrediction]]:
        """Run the full chain per game; failures are recorded and skipped."""
        service = PredictionService(
            self.storage, season, self.settings, weight_manager=self.weight_manager
        )
        predictions = []
        failures = []
        for _, game in games.iterrows():
            game_id = int(game["game_id"])
            try:
                chain = service.predict_game(
                    int(game["home_team_id"]), int(game["away_team_id"]), game_id
                )
            except Exception as e:
                logger.debug(f"Prediction failed for game {game_id}: {e}")
                failures.append(FailedPrediction(game_id, str(e)))
                continue
            prediction = chain.prediction
            predictions.append(
                GameOutcomePrediction(
                    game_id=game_id,
                    home_team_id=prediction.home_team_id,
                    away_team_id=prediction.away_team_id,
                    predicted_home=prediction.home_score,
                    predicted_away=prediction.away_score,
                    win_probability=prediction.win_probability,
                    confidence=prediction.confidence,
                    actual_home=float(game["home_points"]),
                    actual_away=float(game["away_points"]),
                    week=int(game["week"]) if "week" in game.index and pd.notna(game["week"]) else None,
                    home_team_name=self.storage.get_team_name(prediction.home_team_id),
                    away_team_name=self.storage.get_team_name(prediction.away_team_id),
                )
            )

        if games.shape[0] and len(predictions) < games.shape[0] * MIN_PREDICTION_SUCCESS_RATE:
            logger.warning(
                f"Season {season}: only {len(predictions)}/{games.shape[0]} test predictions succeeded"
            )
        return predictions, failures

    # =========================================================================
    # Metrics
    # =========================================================================

    def calculate_win_probability_accuracy(
        self, predictions: list[GameOutcomePrediction]
    ) -> WinAccuracyMetrics:
        df = predictions_frame(predictions)
        y_true = df["home_won"].to_numpy()
        prob = df["prob"].to_numpy()
        y_pred = df["pred_home_win"].to_numpy()

        precision, recall, f1, _ = precision_recall_fscore_support(
            y_true, y_pred, average="binary", zero_division=0
        )
        roc_auc = roc_auc_score(y_true, prob) if len(np.unique(y_true)) == 2 else 0.5
        return WinAccuracyMetrics(
            accuracy=float(accuracy_score(y_true, y_pred) * 100),
            brier_score=float(brier_score_loss(y_true, prob)),
            log_loss=float(
                log_loss(y_true, np.clip(prob, PROBABILITY_CLIP, 1 - PROBABILITY_CLIP), labels=[0, 1])
            ),
            precision=float(precision),
            recall=float(recall),
            f1_score=float(f1),
            roc_auc=float(roc_auc),
        )

    def calculate_score_prediction_accuracy(
        self, predictions: list[GameOutcomePrediction]
    ) -> ScoreAccuracyMetrics:
        df = predictions_frame(predictions)
        home_err = df["pred_home"] - df["act_home"]
        away_err = df["pred_away"] - df["act_away"]
        total_abs = home_err.abs() + away_err.abs()
        with_points = df["actual_total"] > 0
        pct = (total_abs[with_points] / df.loc[with_points, "actual_total"] * 100)

        both_pred = np.concatenate([df["pred_home"], df["pred_away"]])
        both_act = np.concatenate([df["act_home"], df["act_away"]])
        return ScoreAccuracyMetrics(
            mean_absolute_error=float(total_abs.mean()),
            root_mean_square_error=float(np.sqrt(mean_squared_error(both_act, both_pred))),
            median_absolute_error=float(total_abs.median()),
            mean_percentage_error=float(pct.mean()) if not pct.empty else 0.0,
            home_team_accuracy=SideAccuracy(
                mae=float(mean_absolute_error(df["act_home"], df["pred_home"])),
                rmse=float(np.sqrt(mean_squared_error(df["act_home"], df["pred_home"]))),
                bias=float(home_err.mean()),
            ),
            away_team_accuracy=SideAccuracy(
                mae=float(mean_absolute_error(df["act_away"], df["pred_away"])),
                rmse=float(np.sqrt(mean_squared_error(df["act_away"], df["pred_away"]))),
                bias=float(away_err.mean()),
            ),
        )

    def calculate_confidence_calibration(
        self, predictions: list[GameOutcomePrediction]
    ) -> CalibrationMetrics:
        """Binned reliability diagram over home win probabilities."""
        bins = self.settings.calibration_bins
        df = predictions_frame(predictions)
        df["bin"] = np.minimum(bins - 1, np.floor(df["prob"] * bins)).astype(int)

        total_error = 0.0
        max_error = 0.0
        over = 0
        under = 0
        curve = []
        for _, group in df.groupby("bin", sort=True):
            predicted = group["prob"].mean()
            actual = group["home_won"].mean()
            error = abs(predicted - actual)
            total_error += error * len(group)
            max_error = max(max_error, error)
            if predicted > actual:
                over += len(group)
            elif predicted < actual:
                under += len(group)
            curve.append(CalibrationPoint(float(predicted), float(actual), len(group)))

        ece = total_error / len(df)
        return CalibrationMetrics(
            calibration_score=max(0.0, 100 - ece * 200),
            expected_calibration_error=float(ece),
            maximum_calibration_error=float(max_error),
            overconfidence_rate=over / len(df),
            underconfidence_rate=under / len(df),
            bins=bins,
            calibration_curve=curve,
        )

    # =========================================================================
    # Bias detection
    # =========================================================================

    def detect_systematic_biases(self, predictions: list[GameOutcomePrediction]) -> list[BiasAnalysis]:
        df = predictions_frame(predictions)
        checks = (
            self._home_team_bias,
            self._score_range_bias,
            self._game_type_bias,
            self._team_strength_bias,
        )
        biases = [bias for bias in (check(df) for check in checks) if bias is not None]
        logger.debug(f"Detected {len(biases)} systematic biases")
        return biases

    def _home_team_bias(self, df: pd.DataFrame) -> Optional[BiasAnalysis]:
        errors = df["pred_home"] - df["act_home"]
        avg_bias = errors.mean()
        win_rate_bias = df["pred_home_win"].mean() - df["home_won"].mean()
        if abs(avg_bias) <= HOME_SCORE_BIAS_THRESHOLD and abs(win_rate_bias) <= HOME_WIN_RATE_BIAS_THRESHOLD:
            return None

        p_value = _one_sample_p_value(errors)
        examples = df[(errors.abs() > 10) | ((df["prob"] - df["home_won"]).abs() > 0.3)].head(5)
        return BiasAnalysis(
            bias_type="home_team",
            description=(
                f"Home team scoring bias: {'over' if avg_bias > 0 else 'under'}-predicting by "
                f"{abs(avg_bias):.1f} points on average"
            ),
            magnitude=float(abs(avg_bias)),
            significance=p_value,
            affected_games=len(df),
            examples=[
                {
                    "game_id": int(row.game_id),
                    "predicted_home": row.pred_home,
                    "actual_home": row.act_home,
                    "win_probability": row.prob,
                }
                for row in examples.itertuples()
            ],
        )

    def _score_range_bias(self, df: pd.DataFrame) -> Optional[BiasAnalysis]:
        worst = None
        for name, low, high in SCORE_RANGES:
            bucket = df[df["actual_total"].between(low, high)]
            if len(bucket) <= MIN_BUCKET_SAMPLES:
                continue
            bias = (bucket["predicted_total"] - bucket["actual_total"]).mean()
            if worst is None or abs(bias) > abs(worst[1]):
                worst = (name, bias, bucket)

        if worst is None or abs(worst[1]) <= SCORE_RANGE_BIAS_THRESHOLD:
            return None
        name, bias, bucket = worst
        return BiasAnalysis(
            bias_type="score_range",
            description=(
                f"{name} games: {'over' if bias > 0 else 'under'}-predicting total score by "
                f"{abs(bias):.1f} points on average"
            ),
            magnitude=float(abs(bias)),
            significance=_one_sample_p_value(bucket["predicted_total"] - bucket["actual_total"]),
            affected_games=len(bucket),
            examples=[
                {
                    "game_id": int(row.game_id),
                    "predicted_total": row.predicted_total,
                    "actual_total": row.actual_total,
                }
                for row in bucket.head(3).itertuples()
            ],
        )

    def _game_type_bias(self, df: pd.DataFrame) -> Optional[BiasAnalysis]:
        types = {
            "Close Games": df["margin"] <= CLOSE_MARGIN,
            "Blowouts": df["margin"] > BLOWOUT_MARGIN,
            "Moderate Wins": (df["margin"] > CLOSE_MARGIN) & (df["margin"] <= BLOWOUT_MARGIN),
        }
        worst = None
        for name, mask in types.items():
            bucket = df[mask]
            if len(bucket) <= MIN_BUCKET_SAMPLES:
                continue
            accuracy = bucket["correct"].mean()
            if worst is None or accuracy < worst[1]:
                worst = (name, accuracy, bucket)

        if worst is None or worst[1] >= GAME_TYPE_MIN_ACCURACY:
            return None
        name, accuracy, bucket = worst
        return BiasAnalysis(
            bias_type="game_type",
            description=f"{name}: Poor prediction accuracy ({accuracy * 100:.1f}%)",
            magnitude=float(1 - accuracy),
            significance=_binomial_p_value(bucket["correct"], GAME_TYPE_MIN_ACCURACY),
            affected_games=len(bucket),
            examples=[
                {"game_id": int(row.game_id), "win_probability": row.prob, "home_won": bool(row.home_won)}
                for row in bucket.head(3).itertuples()
            ],
        )

    def _team_strength_bias(self, df: pd.DataFrame) -> Optional[BiasAnalysis]:
        favorites = df[
            (df["prob"] > STRONG_FAVORITE_PROBABILITY) | (df["prob"] < 1 - STRONG_FAVORITE_PROBABILITY)
        ]
        if len(favorites) < MIN_BUCKET_SAMPLES:
            return None
        accuracy = favorites["correct"].mean()
        if accuracy >= STRONG_FAVORITE_MIN_ACCURACY:
            return None
        return BiasAnalysis(
            bias_type="team_strength",
            description=f"Strong favorites: Lower than expected accuracy ({accuracy * 100:.1f}%)",
            magnitude=float(0.8 - accuracy),
            significance=_binomial_p_value(favorites["correct"], STRONG_FAVORITE_MIN_ACCURACY),
            affected_games=len(favorites),
            examples=[
                {"game_id": int(row.game_id), "win_probability": row.prob, "home_won": bool(row.home_won)}
                for row in favorites.head(3).itertuples()
            ],
        )

    # =========================================================================
    # Reliability and scoring
    # =========================================================================

    def analyze_reliability(self, predictions: list[GameOutcomePrediction]) -> ReliabilityAnalysis:
        """Winner accuracy by confidence bucket (percent) and by game type."""
        df = predictions_frame(predictions)
        confidence_pct = df["confidence"] * 100

        by_confidence = []
        for low, high in CONFIDENCE_RANGES:
            if high == CONFIDENCE_RANGES[-1][1]:
                mask = (confidence_pct >= low) & (confidence_pct <= high)
            else:
                mask = (confidence_pct >= low) & (confidence_pct < high)
            by_confidence.append(self._bucket(f"{low}-{high}%", df[mask], (low, high)))

        prob_pct = df["prob"] * 100
        toss_up = prob_pct.between(45, 55)
        clear = ~toss_up & ((prob_pct > 70) | (prob_pct < 30))
        close = ~toss_up & ~clear
        by_game_type = [
            self._bucket("Close Games", df[close]),
            self._bucket("Clear Favorites", df[clear]),
            self._bucket("Toss-ups", df[toss_up]),
        ]

        overall = float(df["correct"].mean() * 100)
        return ReliabilityAnalysis(
            overall_reliability=reliability_label(overall),
            overall_accuracy=overall,
            by_confidence=by_confidence,
            by_game_type=by_game_type,
        )

    @staticmethod
    def _bucket(label: str, bucket: pd.DataFrame, confidence_range=None) -> ReliabilityBucket:
        accuracy = float(bucket["correct"].mean() * 100) if len(bucket) else 0.0
        return ReliabilityBucket(
            label=label,
            accuracy=accuracy,
            sample_size=len(bucket),
            reliability=reliability_label(accuracy),
            confidence_range=confidence_range,
        )

    @staticmethod
    def calculate_overall_accuracy_score(
        win: WinAccuracyMetrics,
        score: ScoreAccuracyMetrics,
        calibration: CalibrationMetrics,
        biases: list[BiasAnalysis],
    ) -> float:
        """0-100 blend of winner accuracy, Brier, AUC, MAE, calibration and biases."""
        value = 50.0
        value += (win.accuracy - 50) * 0.4
        value += (BASELINE_BRIER - win.brier_score) * 100
        value += (win.roc_auc - 0.5) * 40
        value += max(-20.0, (BASELINE_MAE - score.average_side_mae) * 2)
        value += (calibration.calibration_score - 50) * 0.2
        value -= 5 * sum(1 for b in biases if b.is_significant)
        return float(max(0, min(100, round(value))))

    def _recommend(self, result: AccuracyTestResult) -> None:
        win = result.win_probability_accuracy
        score = result.score_prediction_accuracy
        calibration = result.confidence_calibration

        if win.accuracy < self.settings.accuracy_minimum:
            result.add_recommendation(
                f"Win prediction accuracy ({win.accuracy:.1f}%) is below target - review prediction model"
            )
        if win.brier_score > BASELINE_BRIER:
            result.add_recommendation(
                f"Brier score ({win.brier_score:.3f}) indicates poor probability calibration"
            )
        if score.average_side_mae > BASELINE_MAE:
            result.add_recommendation(
                f"Score prediction error ({score.average_side_mae:.1f} points MAE) is high - review scoring model"
            )
        if calibration.calibration_score < self.settings.calibration_threshold * 100:
            result.add_recommendation(
                f"Confidence calibration ({calibration.calibration_score:.1f}) needs improvement"
            )
        significant = [b for b in result.systematic_biases if b.is_significant]
        if significant:
            result.add_recommendation(
                f"{len(significant)} significant biases detected - review prediction methodology"
            )

        if result.score >= 80:
            result.add_recommendation("Prediction accuracy is excellent - maintain current methodology")
        elif result.score >= 70:
            result.add_recommendation("Prediction accuracy is good - minor improvements possible")
        else:
            result.add_recommendation(
                "Prediction accuracy needs significant improvement - review entire prediction pipeline"
            )


def _one_sample_p_value(errors: pd.Series) -> float:
    """Two-sided t-test p-value that the mean error is zero."""
    values = errors.to_numpy(dtype=float)
    if len(values) < 2 or np.allclose(values, values[0]):
        return 0.0 if len(values) and values[0] != 0 else 1.0
    return float(stats.ttest_1samp(values, 0.0).pvalue)


def _binomial_p_value(correct: pd.Series, expected_rate: float) -> float:
    """One-sided p-value that the hit rate is below ``expected_rate``."""
    hits = int(correct.sum())
    return float(stats.binomtest(hits, len(correct), expected_rate, alternative="less").pvalue)
