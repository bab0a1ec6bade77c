"""Predictions package."""

from .prediction_validation import GamePrediction, PredictionValidationService
from .prediction_service import ChainPrediction, PredictionService

__all__ = [
    "GamePrediction",
    "PredictionValidationService",
    "ChainPrediction",
    "PredictionService",
]
