"""Shared fixtures: a small synthetic season held in InMemoryStorage."""

from datetime import datetime, timezone
from itertools import permutations

import pandas as pd
import pytest

from config.settings import Settings
from src.data.storage import InMemoryStorage
from src.models.weights import ModelValidationStats, RegressionAnalysisResult, RegressionMetricResult
from src.utils.clock import fixed_clock

SEASON = 2024
NOW = datetime(2024, 12, 1, 12, 0, tzinfo=timezone.utc)

TEAMS = {1: "Alpha", 2: "Bravo", 3: "Charlie", 4: "Delta"}
STRENGTH = {1: 3.0, 2: 1.0, 3: 0.0, 4: -2.0}


def build_season(season: int = SEASON, teams: dict = None, strength: dict = None):
    """Double round robin: every ordered pair meets once, home side first.

    Scores and yardage follow a fixed strength gap plus a small home edge so
    every game is deterministic.
    """
    teams = teams or TEAMS
    strength = strength or STRENGTH
    games = []
    stats = []
    for game_id, (home, away) in enumerate(permutations(sorted(teams), 2), start=1):
        gap = strength[home] - strength[away]
        home_points = max(0, round(24 + 4 * gap + 3))
        away_points = max(0, round(24 - 4 * gap))
        games.append({
            "game_id": game_id,
            "season": season,
            "week": (game_id - 1) // 2 + 1,
            "home_team_id": home,
            "away_team_id": away,
            "home_points": home_points,
            "away_points": away_points,
            "completed": True,
        })
        for team, sign in ((home, 1), (away, -1)):
            total = 380 + sign * 25 * gap
            stats.append({
                "game_id": game_id,
                "season": season,
                "team_id": team,
                "total_yards": total,
                "passing_yards": round(total * 0.6),
                "rushing_yards": total - round(total * 0.6),
                "turnovers": 1 if sign * gap >= 0 else 2,
                "sacks": 2,
                "field_goals_made": 1,
                "field_goals_attempted": 2,
            })
    return pd.DataFrame(games), pd.DataFrame(stats)


def make_analysis(season: int = SEASON, **overrides) -> RegressionAnalysisResult:
    """A well-formed analysis with one significant and one non-significant metric."""
    values = dict(
        season=season,
        overall_model_r_squared=0.42,
        sample_size=120,
        predictive_accuracy=0.68,
        regression_results=[
            RegressionMetricResult(
                metric_name="scoring_efficiency",
                coefficient=1.5,
                r_squared=0.35,
                p_value=0.02,
                confidence_interval=(0.8, 2.2),
                calculated_weight=0.4,
                is_statistically_significant=True,
            ),
            RegressionMetricResult(
                metric_name="passing_efficiency",
                coefficient=0.8,
                r_squared=0.15,
                p_value=0.15,
                confidence_interval=(0.2, 1.4),
                calculated_weight=0.2,
                is_statistically_significant=False,
            ),
        ],
        model_validation=ModelValidationStats(
            residual_standard_error=12.5,
            f_statistic=8.2,
            f_p_value=0.001,
            adjusted_r_squared=0.38,
        ),
        analysis_date=NOW,
    )
    values.update(overrides)
    return RegressionAnalysisResult(**values)


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def clock():
    return fixed_clock(NOW)


@pytest.fixture
def season_storage():
    games, stats = build_season()
    return InMemoryStorage(teams=dict(TEAMS), games=games, team_game_stats=stats)


@pytest.fixture
def profiled_storage(season_storage, settings, clock):
    """Season storage with every team profile already computed and saved."""
    from src.models.season_engine import SeasonEfficiencyEngine

    SeasonEfficiencyEngine(season_storage, settings, clock).recalculate_season(SEASON)
    return season_storage
