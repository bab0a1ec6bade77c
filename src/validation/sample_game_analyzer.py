"""Explainability audit on a handful of representative finished games.

Picks close games, blowouts, upsets and ordinary games, runs the prediction
chain on each, and attaches a plain-language explanation, the matchup
factors that drove the number, and a comparison with the final score. Also
builds the operator-facing guide for reading prediction confidence.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Optional

import numpy as np
import pandas as pd

from config.settings import Settings
from src.data.storage import EngineStorage
from src.models.efficiency_profile import ConfidenceLevel, TeamEfficiencyProfile
from src.models.matchup_model import CATEGORY_FIELDS, category_weight
from src.models.weights import WeightManager
from src.predictions.prediction_service import ChainPrediction, PredictionService
from src.utils.clock import Clock, utc_now
from src.validation.accuracy_tester import AccuracyTestResult, ReliabilityBucket
from src.validation.base import BaseValidator
from src.validation.results import Severity, ValidationResult

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_SIZE = 20

# Game categorisation (points)
CLOSE_GAME_MARGIN = 7
BLOWOUT_MARGIN = 28
UPSET_MARGIN = 10

# Share of the sample drawn from each category; the rest is regular games
CATEGORY_SHARES = (("close", 0.30), ("blowout", 0.25), ("upset", 0.20))

MIN_SUCCESS_RATE = 80.0

# Efficiency breakdown
STRENGTH_THRESHOLD = 5.0
MAX_LISTED_TRAITS = 3
ADVANTAGE_THRESHOLD = 2.0
HIGH_IMPACT_MAGNITUDE = 10.0
MEDIUM_IMPACT_MAGNITUDE = 5.0
KEY_FACTOR_MIN_IMPACT = 0.5
MAX_KEY_FACTORS = 5
KEY_ADVANTAGE_MIN_IMPACT = 1.0
MAX_KEY_ADVANTAGES = 3

# Explanation thresholds (confidence in percent)
LOW_CONFIDENCE = 70.0
HIGH_CONFIDENCE_TEXT = 80.0
MODERATE_CONFIDENCE_TEXT = 60.0
WEAK_MODEL_R_SQUARED = 0.3
STRONG_MODEL_R_SQUARED = 0.6

# Outcome comparison
SIDE_ERROR_INTERVAL = 10.0
EXCELLENT_TOTAL_ERROR = 10.0
GOOD_TOTAL_ERROR = 20.0
FAIR_TOTAL_ERROR = 30.0
NOISE_TOTAL_ERROR = 14.0
MODEL_LIMITATION_CONFIDENCE = 60.0
ASYMMETRIC_ERROR = 10.0

BREAKDOWN_FIELDS = {
    "total_offense": "total_offense_efficiency",
    "passing_offense": "passing_offense_efficiency",
    "rushing_offense": "rushing_offense_efficiency",
    "scoring_offense": "scoring_offense_efficiency",
    "total_defense": "total_defense_efficiency",
    "passing_defense": "passing_defense_efficiency",
    "rushing_defense": "rushing_defense_efficiency",
    "scoring_defense": "scoring_defense_efficiency",
    "turnover_margin": "turnover_offense_efficiency",
    "special_teams": "field_goal_efficiency",
}
ADVANTAGE_CATEGORIES = tuple(list(BREAKDOWN_FIELDS)[:8])


def format_category_name(category: str) -> str:
    """``passing_offense`` -> ``Passing Offense``."""
    return category.replace("_", " ").title()


def categorize_game(home_points: float, away_points: float) -> str:
    """close / blowout / upset / regular by final margin."""
    margin = abs(home_points - away_points)
    if margin <= CLOSE_GAME_MARGIN:
        return "close"
    if margin >= BLOWOUT_MARGIN:
        return "blowout"
    if away_points > home_points + UPSET_MARGIN:
        return "upset"
    return "regular"


# =============================================================================
# Result types
# =============================================================================


@dataclass
class TeamEfficiencyBreakdown:
    team_id: int
    team_name: str
    overall_efficiency: float
    category_efficiencies: dict[str, float] = field(default_factory=dict)
    strengths: list[str] = field(default_factory=list)
    weaknesses: list[str] = field(default_factory=list)


@dataclass
class MatchupAdvantage:
    category: str
    home_value: float
    away_value: float
    advantage: str  # home / away / neutral
    magnitude: float
    impact: str  # high / medium / low


@dataclass
class KeyMatchupFactor:
    factor: str
    description: str
    home_rating: float
    away_rating: float
    advantage: str
    impact_on_prediction: float
    weight: float


@dataclass
class PredictionExplanation:
    summary: str
    key_advantages: list[str] = field(default_factory=list)
    risk_factors: list[str] = field(default_factory=list)
    confidence_factors: list[str] = field(default_factory=list)
    model_r_squared: float = 0.0
    significant_predictors: list[str] = field(default_factory=list)
    text: str = ""


@dataclass
class ErrorAnalysis:
    error_type: str  # statistical_noise / model_limitation / data_quality / systematic_bias
    error_magnitude: float
    possible_causes: list[str] = field(default_factory=list)
    lessons: list[str] = field(default_factory=list)


@dataclass
class OutcomeComparison:
    winner_correct: bool
    home_error: float
    away_error: float
    total_error: float
    within_interval: bool
    quality: str  # excellent / good / fair / poor
    error_analysis: Optional[ErrorAnalysis] = None


@dataclass
class GameAnalysis:
    """Everything produced for one analysed game."""

    game_id: int
    season: int
    week: Optional[int]
    category: str
    home_team: str
    away_team: str
    predicted_home: float
    predicted_away: float
    confidence: float  # percent
    home_win_probability: float  # percent
    home_breakdown: TeamEfficiencyBreakdown
    away_breakdown: TeamEfficiencyBreakdown
    matchup_advantages: list[MatchupAdvantage] = field(default_factory=list)
    key_factors: list[KeyMatchupFactor] = field(default_factory=list)
    explanation: Optional[PredictionExplanation] = None
    actual_home: Optional[float] = None
    actual_away: Optional[float] = None
    outcome: Optional[OutcomeComparison] = None


@dataclass
class ConfidenceBand:
    label: str
    range: tuple[int, int]
    description: str
    typical_accuracy: str
    recommended_use: str
    cautionary_notes: list[str] = field(default_factory=list)
    example_scenarios: list[str] = field(default_factory=list)
    observed_accuracy: Optional[float] = None
    observed_sample_size: int = 0


@dataclass
class ConfidenceInterpretationGuide:
    bands: list[ConfidenceBand] = field(default_factory=list)
    interpretation_tips: list[str] = field(default_factory=list)
    common_misconceptions: list[str] = field(default_factory=list)
    best_practices: list[str] = field(default_factory=list)
    contextual_factors: dict[str, str] = field(default_factory=dict)

    def band_for(self, confidence: float) -> ConfidenceBand:
        """Band containing a confidence percentage (bands ordered high to low)."""
        for band in self.bands:
            if confidence >= band.range[0]:
                return band
        return self.bands[-1]


@dataclass
class SampleAnalysisResult(ValidationResult):
    """Explainability audit result."""

    analyzed_games: list[GameAnalysis] = field(default_factory=list)
    selection_criteria: dict[str, int] = field(default_factory=dict)
    confidence_guide: Optional[ConfidenceInterpretationGuide] = None
    kind: str = field(default="sample_game_analyzer", init=False)


# =============================================================================
# Confidence guide
# =============================================================================

_BAND_DEFINITIONS = (
    (
        "very_high",
        (90, 100),
        "Extremely high confidence with strong statistical support",
        "85-95% winner accuracy, ±8 points score accuracy",
        "Suitable for high-stakes decisions and public predictions",
        [
            "Even high-confidence predictions can fail due to unpredictable factors",
            "Overconfidence may still affect some predictions",
        ],
        [
            "Strong team vs weak team with multiple statistical advantages",
            "Clear matchup advantages supported by large samples",
        ],
    ),
    (
        "high",
        (75, 89),
        "High confidence with good statistical indicators",
        "75-85% winner accuracy, ±12 points score accuracy",
        "Reliable for most decision-making purposes",
        [
            "Consider context not captured in the statistics",
            "Monitor for systematic biases in this range",
        ],
        ["Evenly matched teams with clear statistical edges"],
    ),
    (
        "moderate",
        (60, 74),
        "Moderate confidence with some statistical support",
        "65-75% winner accuracy, ±16 points score accuracy",
        "Use with caution and additional analysis",
        [
            "Higher uncertainty requires careful interpretation",
            "Consider additional data sources",
        ],
        [
            "Close matchups with limited statistical differentiation",
            "Teams with inconsistent performance",
        ],
    ),
    (
        "low",
        (45, 59),
        "Low confidence with limited statistical support",
        "55-65% winner accuracy, ±20 points score accuracy",
        "Informational only, not suitable for important decisions",
        [
            "Predictions are only slightly better than chance",
            "High risk of large prediction errors",
        ],
        ["Insufficient data for reliable analysis"],
    ),
    (
        "very_low",
        (0, 44),
        "Very low confidence with minimal statistical support",
        "45-55% winner accuracy, ±25+ points score accuracy",
        "Not recommended for any decision-making",
        [
            "Predictions may be no better than guessing",
            "Indicates problems with data or methodology",
        ],
        ["Severe data quality problems", "Model breakdown"],
    ),
)

INTERPRETATION_TIPS = [
    "Higher confidence generally correlates with better accuracy, but exceptions exist",
    "Consider the number and strength of key matchup factors when reading confidence",
    "Look for risk factors that the confidence number does not capture",
    "Compare predictions with similar confidence for relative strength",
]

COMMON_MISCONCEPTIONS = [
    "High confidence does not guarantee accuracy; upsets still occur",
    "Low confidence does not mean the prediction is wrong, only uncertain",
    "Confidence percentages are not win probabilities",
    "Score predictions have different accuracy patterns than winner predictions",
]

BEST_PRACTICES = [
    "Use confidence as one factor among many",
    "Read the key factors and risk factors, not just the confidence number",
    "Track accuracy over time to calibrate your reading of confidence",
    "Combine sources when confidence is moderate or low",
]

CONTEXTUAL_FACTORS = {
    "Sample Size": "Be more cautious early in the season when few games have been played",
    "Data Quality": "Check data quality scores before relying on confidence",
    "Model Performance": "Low model R² may indicate overconfident predictions",
    "Matchup Complexity": "Unusual matchups may hide factors the model cannot see",
}


def _bucket_for_band(
    band_range: tuple[int, int], buckets: list[ReliabilityBucket]
) -> Optional[ReliabilityBucket]:
    midpoint = sum(band_range) / 2
    for bucket in buckets:
        if bucket.confidence_range is None:
            continue
        low, high = bucket.confidence_range
        if low <= midpoint <= high:
            return bucket
    return None


def build_confidence_interpretation_guide(
    accuracy_result: Optional[AccuracyTestResult] = None,
) -> ConfidenceInterpretationGuide:
    """Five named confidence bands plus reading tips.

    When a back-test result is supplied, each band is annotated with the
    observed winner accuracy of the reliability bucket covering its midpoint.
    """
    buckets: list[ReliabilityBucket] = []
    if accuracy_result is not None and accuracy_result.prediction_reliability is not None:
        buckets = accuracy_result.prediction_reliability.by_confidence

    bands = []
    for label, band_range, description, typical, use, notes, scenarios in _BAND_DEFINITIONS:
        band = ConfidenceBand(
            label=label,
            range=band_range,
            description=description,
            typical_accuracy=typical,
            recommended_use=use,
            cautionary_notes=list(notes),
            example_scenarios=list(scenarios),
        )
        bucket = _bucket_for_band(band_range, buckets)
        if bucket is not None and bucket.sample_size > 0:
            band.observed_accuracy = bucket.accuracy
            band.observed_sample_size = bucket.sample_size
            band.typical_accuracy = (
                f"{typical} (observed {bucket.accuracy:.0f}% over {bucket.sample_size} games)"
            )
        bands.append(band)

    return ConfidenceInterpretationGuide(
        bands=bands,
        interpretation_tips=list(INTERPRETATION_TIPS),
        common_misconceptions=list(COMMON_MISCONCEPTIONS),
        best_practices=list(BEST_PRACTICES),
        contextual_factors=dict(CONTEXTUAL_FACTORS),
    )


# =============================================================================
# Analyzer
# =============================================================================


class SampleGameAnalyzer(BaseValidator):
    """Select representative games and explain their predictions."""

    component = "sample_game_analyzer"
    result_class = SampleAnalysisResult

    def __init__(
        self,
        storage: EngineStorage,
        settings: Optional[Settings] = None,
        clock: Clock = utc_now,
        weight_manager: Optional[WeightManager] = None,
        sample_size: int = DEFAULT_SAMPLE_SIZE,
        seed: Optional[int] = None,
        accuracy_result: Optional[AccuracyTestResult] = None,
    ):
        super().__init__(storage, settings, clock)
        self.weight_manager = weight_manager or WeightManager(storage, self.settings, self.clock)
        self.sample_size = sample_size
        self.rng = np.random.default_rng(seed)
        self.accuracy_result = accuracy_result

    def _run(self, season: int, result: SampleAnalysisResult) -> None:
        result.confidence_guide = build_confidence_interpretation_guide(self.accuracy_result)

        games = self._completed_games(season)
        if games.empty:
            result.add_error(
                "NO_COMPLETED_GAMES",
                f"No completed games found for season {season}",
                Severity.HIGH,
            )
            return

        categories = self.categorize_games(games)
        result.selection_criteria = {
            name: int((categories == name).sum()) for name in ("close", "blowout", "upset", "regular")
        }
        selected = self.select_diverse_sample(games, categories, self.sample_size)

        service = PredictionService(
            self.storage, season, self.settings, weight_manager=self.weight_manager
        )
        for _, game in selected.iterrows():
            game_id = int(game["game_id"])
            try:
                result.analyzed_games.append(self._analyze_row(game, season, service))
            except Exception as e:
                logger.debug(f"Analysis failed for game {game_id}: {e}")
                result.add_warning(
                    "GAME_ANALYSIS_FAILED",
                    f"Failed to analyze game {game_id}: {e}",
                    {"game_id": game_id},
                )

        success_rate = len(result.analyzed_games) / len(selected) * 100
        if success_rate < MIN_SUCCESS_RATE:
            result.add_warning(
                "LOW_SUCCESS_RATE",
                f"Only {success_rate:.1f}% of games were successfully analyzed",
                {"success_rate": success_rate},
            )
        result.set_score(round(success_rate))

        result.add_recommendation(
            f"Successfully analyzed {len(result.analyzed_games)} out of {len(selected)} selected games"
        )
        result.add_recommendation(
            "Game selection included diverse scenarios: close games, blowouts and upsets"
        )

    # =========================================================================
    # Selection
    # =========================================================================

    def _completed_games(self, season: int) -> pd.DataFrame:
        games = self.storage.get_games(season)
        if games.empty:
            return games
        games = games[games["completed"].astype(bool)]
        return games.dropna(subset=["home_points", "away_points"]).reset_index(drop=True)

    @staticmethod
    def categorize_games(games: pd.DataFrame) -> pd.Series:
        """Category label per game row."""
        return pd.Series(
            [categorize_game(h, a) for h, a in zip(games["home_points"], games["away_points"])],
            index=games.index,
            dtype=object,
        )

    def select_diverse_sample(
        self, games: pd.DataFrame, categories: pd.Series, sample_size: int
    ) -> pd.DataFrame:
        """Draw close/blowout/upset quotas, regular games for the rest, then top up."""
        chosen: list[int] = []
        quota_used = 0
        for name, share in CATEGORY_SHARES:
            target = math.ceil(sample_size * share)
            quota_used += target
            chosen.extend(self._draw(games.index[(categories == name).to_numpy()], target))
        regular_target = max(0, sample_size - quota_used)
        chosen.extend(self._draw(games.index[(categories == "regular").to_numpy()], regular_target))

        if len(chosen) < sample_size:
            remaining = [i for i in games.index if i not in chosen]
            chosen.extend(self._draw(pd.Index(remaining), sample_size - len(chosen)))
        return games.loc[chosen[:sample_size]].reset_index(drop=True)

    def _draw(self, candidates: pd.Index, count: int) -> list[int]:
        take = min(count, len(candidates))
        if take <= 0:
            return []
        return self.rng.choice(candidates.to_numpy(), size=take, replace=False).tolist()

    # =========================================================================
    # Per-game analysis
    # =========================================================================

    def analyze_game(self, game_id: int, season: int) -> Optional[GameAnalysis]:
        """Analyse one stored game; None when the game or a team is unknown."""
        games = self.storage.get_games(season)
        match = games[games["game_id"] == game_id] if not games.empty else games
        if match.empty:
            return None
        game = match.iloc[0]
        if (
            self.storage.get_team_name(int(game["home_team_id"])) is None
            or self.storage.get_team_name(int(game["away_team_id"])) is None
        ):
            return None
        service = PredictionService(
            self.storage, season, self.settings, weight_manager=self.weight_manager
        )
        return self._analyze_row(game, season, service)

    def _analyze_row(self, game: pd.Series, season: int, service: PredictionService) -> GameAnalysis:
        game_id = int(game["game_id"])
        home_id, away_id = int(game["home_team_id"]), int(game["away_team_id"])
        chain = service.predict_game(home_id, away_id, game_id)
        prediction = chain.prediction

        home = self.team_breakdown(chain.home_profile)
        away = self.team_breakdown(chain.away_profile)
        key_factors = self.identify_key_factors(chain)

        analysis = GameAnalysis(
            game_id=game_id,
            season=season,
            week=int(game["week"]) if pd.notna(game.get("week")) else None,
            category="regular",
            home_team=home.team_name,
            away_team=away.team_name,
            predicted_home=prediction.home_score,
            predicted_away=prediction.away_score,
            confidence=round(prediction.confidence * 100, 1),
            home_win_probability=round(prediction.win_probability * 100, 1),
            home_breakdown=home,
            away_breakdown=away,
            matchup_advantages=self.calculate_matchup_advantages(home, away),
            key_factors=key_factors,
        )
        analysis.explanation = self.explain_prediction(analysis, chain)

        if pd.notna(game.get("home_points")) and pd.notna(game.get("away_points")):
            analysis.actual_home = float(game["home_points"])
            analysis.actual_away = float(game["away_points"])
            analysis.category = categorize_game(analysis.actual_home, analysis.actual_away)
            analysis.outcome = self.compare_with_actual(
                analysis, analysis.actual_home, analysis.actual_away, self._model_r_squared(chain)
            )
        return analysis

    def team_breakdown(self, profile: TeamEfficiencyProfile) -> TeamEfficiencyBreakdown:
        name = self.storage.get_team_name(profile.team_id) or f"Team {profile.team_id}"
        values = {key: getattr(profile, attr) for key, attr in BREAKDOWN_FIELDS.items()}
        strengths = [format_category_name(k) for k, v in values.items() if v > STRENGTH_THRESHOLD]
        weaknesses = [format_category_name(k) for k, v in values.items() if v < -STRENGTH_THRESHOLD]
        return TeamEfficiencyBreakdown(
            team_id=profile.team_id,
            team_name=name,
            overall_efficiency=(values["total_offense"] + values["total_defense"]) / 2,
            category_efficiencies=values,
            strengths=strengths[:MAX_LISTED_TRAITS],
            weaknesses=weaknesses[:MAX_LISTED_TRAITS],
        )

    @staticmethod
    def calculate_matchup_advantages(
        home: TeamEfficiencyBreakdown, away: TeamEfficiencyBreakdown
    ) -> list[MatchupAdvantage]:
        """Side-by-side comparison over the offensive and defensive categories."""
        advantages = []
        for category in ADVANTAGE_CATEGORIES:
            home_value = home.category_efficiencies.get(category, 0.0)
            away_value = away.category_efficiencies.get(category, 0.0)
            difference = home_value - away_value
            magnitude = abs(difference)
            if magnitude > ADVANTAGE_THRESHOLD:
                side = "home" if difference > 0 else "away"
            else:
                side = "neutral"
            if magnitude > HIGH_IMPACT_MAGNITUDE:
                impact = "high"
            elif magnitude > MEDIUM_IMPACT_MAGNITUDE:
                impact = "medium"
            else:
                impact = "low"
            advantages.append(
                MatchupAdvantage(
                    category=format_category_name(category),
                    home_value=home_value,
                    away_value=away_value,
                    advantage=side,
                    magnitude=magnitude,
                    impact=impact,
                )
            )
        return sorted(advantages, key=lambda a: a.magnitude, reverse=True)

    def identify_key_factors(self, chain: ChainPrediction) -> list[KeyMatchupFactor]:
        """Offensive efficiency gaps weighted by the category weight used in the prediction."""
        metadata = chain.matchup.regression_metadata
        weights = metadata.weights_used if metadata else self.weight_manager.get_current_weights(
            chain.matchup.season
        )
        factors = []
        for category, (offense_field, _) in CATEGORY_FIELDS.items():
            home_value = getattr(chain.home_profile, offense_field)
            away_value = getattr(chain.away_profile, offense_field)
            weight = category_weight(category, weights)
            impact = abs(home_value - away_value) * weight
            if impact <= KEY_FACTOR_MIN_IMPACT:
                continue
            side = "home" if home_value > away_value else "away"
            name = format_category_name(category)
            factors.append(
                KeyMatchupFactor(
                    factor=name,
                    description=(
                        f"{name}: {side} team has {abs(home_value - away_value):.1f} point advantage"
                    ),
                    home_rating=home_value,
                    away_rating=away_value,
                    advantage=side,
                    impact_on_prediction=impact,
                    weight=weight,
                )
            )
        factors.sort(key=lambda f: f.impact_on_prediction, reverse=True)
        return factors[:MAX_KEY_FACTORS]

    def explain_prediction(self, analysis: GameAnalysis, chain: ChainPrediction) -> PredictionExplanation:
        margin = analysis.predicted_home - analysis.predicted_away
        favored, underdog = (
            (analysis.home_team, analysis.away_team)
            if margin > 0
            else (analysis.away_team, analysis.home_team)
        )
        summary = (
            f"{favored} is favored by {abs(margin):.1f} points "
            f"with {analysis.confidence:.0f}% confidence"
        )

        key_advantages = [
            f"{f.factor}: {analysis.home_team if f.advantage == 'home' else analysis.away_team} advantage"
            for f in analysis.key_factors
            if f.impact_on_prediction > KEY_ADVANTAGE_MIN_IMPACT
        ][:MAX_KEY_ADVANTAGES]

        r_squared = self._model_r_squared(chain)
        adequate_sample = ConfidenceLevel.LOW not in (
            chain.home_profile.confidence_level,
            chain.away_profile.confidence_level,
        )

        risk_factors = []
        if analysis.confidence < LOW_CONFIDENCE:
            risk_factors.append("Lower confidence due to limited statistical significance")
        if r_squared < WEAK_MODEL_R_SQUARED:
            risk_factors.append("Model has limited predictive power")
        if not adequate_sample:
            risk_factors.append("Limited game sample for analysis")

        confidence_factors = []
        if r_squared > STRONG_MODEL_R_SQUARED:
            confidence_factors.append(f"Strong statistical model (R² > {STRONG_MODEL_R_SQUARED})")
        if adequate_sample:
            confidence_factors.append("Adequate sample size for analysis")
        if len(analysis.key_factors) > 2:
            confidence_factors.append("Multiple significant matchup advantages identified")

        text = f"Our analysis predicts {favored} will defeat {underdog} by {abs(margin):.1f} points. "
        if key_advantages:
            text += f"This prediction is based on advantages in: {', '.join(key_advantages)}. "
        if analysis.confidence > HIGH_CONFIDENCE_TEXT:
            text += "We have high confidence in this prediction due to strong statistical indicators. "
        elif analysis.confidence > MODERATE_CONFIDENCE_TEXT:
            text += "We have moderate confidence in this prediction. "
        else:
            text += "This prediction has lower confidence due to statistical limitations. "
        if risk_factors:
            text += f"Key uncertainties include: {', '.join(risk_factors)}."

        return PredictionExplanation(
            summary=summary,
            key_advantages=key_advantages,
            risk_factors=risk_factors,
            confidence_factors=confidence_factors,
            model_r_squared=r_squared,
            significant_predictors=[f.factor for f in analysis.key_factors],
            text=text.strip(),
        )

    @staticmethod
    def compare_with_actual(
        analysis: GameAnalysis, actual_home: float, actual_away: float, model_r_squared: float
    ) -> OutcomeComparison:
        """Grade the prediction against the final score and classify the miss."""
        predicted_home_win = analysis.predicted_home > analysis.predicted_away
        winner_correct = predicted_home_win == (actual_home > actual_away)
        home_error = abs(analysis.predicted_home - actual_home)
        away_error = abs(analysis.predicted_away - actual_away)
        total_error = home_error + away_error

        if winner_correct and total_error <= EXCELLENT_TOTAL_ERROR:
            quality = "excellent"
        elif winner_correct and total_error <= GOOD_TOTAL_ERROR:
            quality = "good"
        elif winner_correct or total_error <= FAIR_TOTAL_ERROR:
            quality = "fair"
        else:
            quality = "poor"

        return OutcomeComparison(
            winner_correct=winner_correct,
            home_error=home_error,
            away_error=away_error,
            total_error=total_error,
            within_interval=home_error <= SIDE_ERROR_INTERVAL and away_error <= SIDE_ERROR_INTERVAL,
            quality=quality,
            error_analysis=analyze_error(analysis.confidence, model_r_squared, home_error, away_error),
        )

    @staticmethod
    def _model_r_squared(chain: ChainPrediction) -> float:
        metadata = chain.matchup.regression_metadata
        return metadata.model_r_squared if metadata else 0.0


def analyze_error(
    confidence: float, model_r_squared: float, home_error: float, away_error: float
) -> ErrorAnalysis:
    """Classify a prediction miss (confidence in percent)."""
    total = home_error + away_error
    if total <= NOISE_TOTAL_ERROR:
        analysis = ErrorAnalysis(
            "statistical_noise",
            total,
            ["Normal game-to-game variation", "Unpredictable factors such as injuries or weather"],
            ["Error within expected range for statistical models"],
        )
    elif confidence < MODEL_LIMITATION_CONFIDENCE:
        analysis = ErrorAnalysis(
            "model_limitation",
            total,
            ["Low statistical confidence in prediction", "Insufficient data for reliable prediction"],
            ["Model indicated uncertainty; the error was somewhat expected"],
        )
    elif model_r_squared < WEAK_MODEL_R_SQUARED:
        analysis = ErrorAnalysis(
            "data_quality",
            total,
            ["Poor model fit to historical data", "Data quality issues affecting prediction accuracy"],
            ["Improve data collection or model methodology"],
        )
    else:
        analysis = ErrorAnalysis(
            "systematic_bias",
            total,
            ["Potential bias in prediction methodology", "Unaccounted factors affecting game outcome"],
            ["Review prediction methodology for systematic issues"],
        )

    if abs(home_error - away_error) > ASYMMETRIC_ERROR:
        analysis.possible_causes.append("Asymmetric prediction error between teams")
        analysis.lessons.append("Consider team-specific factors in future predictions")
    return analysis
