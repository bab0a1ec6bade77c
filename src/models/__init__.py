"""Model components package.

- EfficiencyProfileBuilder: opponent-relative per-team efficiency profiles
- SeasonEfficiencyEngine: season-wide fixed-point recalculation
- WeightManager: regression-derived category weights with an audit log
- MatchupPredictionModel: category and final score predictions for a game
"""

from .efficiency_profile import EfficiencyProfileBuilder, GamePerformanceRecord, TeamEfficiencyProfile
from .season_engine import SeasonEfficiencyEngine
from .weights import StatisticalImpactWeights, WeightManager
from .matchup_model import MatchupPrediction, MatchupPredictionModel

__all__ = [
    "EfficiencyProfileBuilder",
    "GamePerformanceRecord",
    "TeamEfficiencyProfile",
    "SeasonEfficiencyEngine",
    "StatisticalImpactWeights",
    "WeightManager",
    "MatchupPrediction",
    "MatchupPredictionModel",
]
