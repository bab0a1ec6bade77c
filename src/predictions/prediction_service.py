"""End-to-end game prediction: profiles -> weights -> matchup -> validation."""

import logging
from dataclasses import dataclass, replace
from typing import Optional

import numpy as np
from scipy.special import expit

from config.settings import Settings, get_settings
from src.data.storage import EngineStorage
from src.models.efficiency_profile import TeamEfficiencyProfile
from src.models.matchup_model import MatchupPrediction, MatchupPredictionModel
from src.models.weights import WeightManager
from src.predictions.prediction_validation import (
    GamePrediction,
    PredictionValidationResult,
    PredictionValidationService,
)

logger = logging.getLogger(__name__)

MODEL_METHOD = "efficiency-matchup"


@dataclass
class ChainPrediction:
    """Final prediction plus the intermediate artifacts that produced it."""

    prediction: GamePrediction
    matchup: MatchupPrediction
    validation: PredictionValidationResult
    home_profile: TeamEfficiencyProfile
    away_profile: TeamEfficiencyProfile


class PredictionService:
    """Run the full prediction chain for one game."""

    def __init__(
        self,
        storage: EngineStorage,
        season: int,
        settings: Optional[Settings] = None,
        weight_manager: Optional[WeightManager] = None,
        validation_service: Optional[PredictionValidationService] = None,
    ):
        self.storage = storage
        self.season = season
        self.settings = settings or get_settings()
        self.weight_manager = weight_manager or WeightManager(storage, self.settings)
        self.model = MatchupPredictionModel(self.weight_manager, self.settings)
        self.validation_service = validation_service or PredictionValidationService(
            storage, season, self.settings
        )

    def home_win_probability(self, predicted_margin: float) -> float:
        """Logistic map from predicted home margin to win probability in [0.01, 0.99]."""
        logit = np.clip(self.settings.win_probability_slope * predicted_margin, -20.0, 20.0)
        return float(np.clip(expit(logit), 0.01, 0.99))

    def predict_game(self, home_team_id: int, away_team_id: int, game_id: int) -> ChainPrediction:
        """Predict a game from stored profiles.

        Raises:
            ValueError: If either team has no stored profile for the season
        """
        home_profile = self._require_profile(home_team_id)
        away_profile = self._require_profile(away_team_id)

        matchup = self.model.calculate_matchup_analysis(home_profile, away_profile)
        prediction = GamePrediction(
            game_id=game_id,
            home_team_id=home_team_id,
            away_team_id=away_team_id,
            home_score=matchup.home_score,
            away_score=matchup.away_score,
            confidence=matchup.confidence,
            method=MODEL_METHOD,
            win_probability=self.home_win_probability(matchup.predicted_margin),
        )

        validation = self.validation_service.validate_prediction(prediction)
        final = validation.corrected_prediction or prediction
        if validation.corrected_prediction is not None:
            final = replace(
                final, win_probability=self.home_win_probability(final.point_differential)
            )

        return ChainPrediction(
            prediction=final,
            matchup=matchup,
            validation=validation,
            home_profile=home_profile,
            away_profile=away_profile,
        )

    def predict_or_fallback(
        self, home_team_id: int, away_team_id: int, game_id: int
    ) -> GamePrediction:
        """Full-chain prediction, or the baseline fallback when profiles are missing."""
        try:
            return self.predict_game(home_team_id, away_team_id, game_id).prediction
        except ValueError as e:
            logger.warning(f"Game {game_id}: {e}; using fallback prediction")
            fallback = self.validation_service.generate_fallback_prediction(
                home_team_id, away_team_id, game_id
            )
            return replace(
                fallback,
                win_probability=self.home_win_probability(fallback.point_differential),
            )

    def _require_profile(self, team_id: int) -> TeamEfficiencyProfile:
        try:
            profile = self.storage.get_profile(team_id, self.season)
        except Exception as e:
            logger.warning(f"Profile read failed for team {team_id} season {self.season}: {e}")
            profile = None
        if profile is None:
            raise ValueError(f"No efficiency profile for team {team_id} in season {self.season}")
        return profile
