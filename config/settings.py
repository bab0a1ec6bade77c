"""Engine settings and tunable constants."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


@dataclass
class Settings:
    """Engine configuration settings.

    Tier cutoffs and the season blend ratio were recovered from observed
    behaviour rather than a published definition, so they are exposed here
    (and through environment variables) instead of being hard-coded.
    """

    # Profile confidence tiers (games played)
    medium_confidence_min_games: int = field(
        default_factory=lambda: int(os.getenv("MEDIUM_CONFIDENCE_MIN_GAMES", "4"))
    )
    high_confidence_min_games: int = field(
        default_factory=lambda: int(os.getenv("HIGH_CONFIDENCE_MIN_GAMES", "9"))
    )

    # Prior-season blend for sparse current-season samples
    current_season_blend_weight: float = field(
        default_factory=lambda: float(os.getenv("CURRENT_SEASON_BLEND_WEIGHT", "0.85"))
    )
    prior_season_blend_weight: float = field(
        default_factory=lambda: float(os.getenv("PRIOR_SEASON_BLEND_WEIGHT", "0.15"))
    )

    # Used when a record carries no allowed-side stats
    defensive_mirror_factor: float = 0.7

    # Season fixed-point loop
    convergence_tolerance: float = field(
        default_factory=lambda: float(os.getenv("CONVERGENCE_TOLERANCE", "0.001"))
    )
    max_convergence_iterations: int = field(
        default_factory=lambda: int(os.getenv("MAX_CONVERGENCE_ITERATIONS", "50"))
    )
    converged_team_fraction: float = 0.98
    opponent_adjustment_factor: float = 0.1
    extreme_efficiency_threshold: float = 35.0

    # Weight vector sanity
    max_individual_weight: float = 2.0
    weight_sum_band: tuple = (0.5, 3.0)
    weight_sum_target: float = 1.5
    weight_history_limit: int = 50

    # Matchup model
    home_field_points: float = 2.0
    base_interval_fraction: float = 0.15  # CI half-width at R^2 = 1
    r_squared_interval_fraction: float = 0.35  # extra half-width at R^2 = 0

    # Prediction validation / correction
    max_point_differential: float = 50.0
    corrected_point_differential: float = 35.0
    league_average_points: float = 24.0

    # Logistic slope mapping predicted margin (points) to home win probability
    win_probability_slope: float = field(
        default_factory=lambda: float(os.getenv("WIN_PROBABILITY_SLOPE", "0.15"))
    )

    # Audit thresholds
    data_quality_min_score: float = 70.0
    data_completeness_threshold: float = 80.0
    data_consistency_threshold: float = 85.0
    regression_r_squared_threshold: float = 0.2
    regression_p_value_threshold: float = 0.1
    regression_min_sample_size: int = 30
    weight_min: float = 0.0
    weight_max: float = 2.0
    weight_sum_tolerance: float = 0.1
    accuracy_minimum: float = 60.0
    accuracy_max_bias: float = 0.1
    calibration_threshold: float = 0.8
    calibration_bins: int = 10

    # Paths
    @property
    def project_root(self) -> Path:
        return Path(__file__).parent.parent

    @property
    def data_dir(self) -> Path:
        return Path(os.getenv("ENGINE_DATA_DIR", str(self.project_root / "data")))

    def validate(self) -> list[str]:
        """Validate setting consistency. Returns list of errors."""
        errors = []
        if not 0 < self.medium_confidence_min_games < self.high_confidence_min_games:
            errors.append(
                "Confidence cutoffs must satisfy 0 < medium_confidence_min_games "
                "< high_confidence_min_games"
            )
        blend_total = self.current_season_blend_weight + self.prior_season_blend_weight
        if abs(blend_total - 1.0) > 1e-9:
            errors.append(f"Season blend weights must sum to 1.0 (got {blend_total:.3f})")
        if self.convergence_tolerance <= 0:
            errors.append("convergence_tolerance must be positive")
        if self.max_convergence_iterations < 1:
            errors.append("max_convergence_iterations must be at least 1")
        low, high = self.weight_sum_band
        if not 0 < low < self.weight_sum_target < high:
            errors.append("weight_sum_target must lie inside weight_sum_band")
        if self.calibration_bins < 1:
            errors.append("calibration_bins must be at least 1")
        return errors


# Singleton instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the settings singleton."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
