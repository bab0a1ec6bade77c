"""Tests for prediction sanity checks, corrections and fallbacks."""

import pandas as pd
import pytest

from src.data.storage import InMemoryStorage
from src.predictions.prediction_validation import GamePrediction, PredictionValidationService

SEASON = 2024


def _storage():
    """Team 1 beats team 2 three times; team 3 exists but has not played."""
    games = pd.DataFrame([
        {"game_id": 1, "season": SEASON, "week": 1, "home_team_id": 1, "away_team_id": 2,
         "home_points": 30, "away_points": 10, "completed": True},
        {"game_id": 2, "season": SEASON, "week": 2, "home_team_id": 2, "away_team_id": 1,
         "home_points": 14, "away_points": 20, "completed": True},
        {"game_id": 3, "season": SEASON, "week": 3, "home_team_id": 1, "away_team_id": 2,
         "home_points": 25, "away_points": 17, "completed": True},
        {"game_id": 4, "season": SEASON, "week": 4, "home_team_id": 1, "away_team_id": 3,
         "home_points": None, "away_points": None, "completed": False},
    ])
    return InMemoryStorage(teams={1: "Alpha", 2: "Bravo", 3: "Charlie"}, games=games)


def _prediction(home=28.0, away=14.0, home_team=1, away_team=2, game_id=10, confidence=0.8):
    return GamePrediction(
        game_id=game_id,
        home_team_id=home_team,
        away_team_id=away_team,
        home_score=home,
        away_score=away,
        confidence=confidence,
        method="efficiency-matchup",
    )


@pytest.fixture
def service(settings):
    return PredictionValidationService(_storage(), SEASON, settings)


class TestTeamBaseline:
    """Scoring baselines from finished games."""

    def test_baseline_values(self, service):
        baseline = service.get_team_performance_baseline(1)
        assert baseline.team_name == "Alpha"
        assert baseline.games_played == 3
        assert baseline.avg_points_for == pytest.approx(25.0)
        assert baseline.avg_points_against == pytest.approx(41 / 3)
        assert baseline.min_score == 20.0
        assert baseline.max_score == 30.0

    def test_unknown_team(self, service):
        assert service.get_team_performance_baseline(99) is None

    def test_team_without_games(self, service):
        baseline = service.get_team_performance_baseline(3)
        assert baseline is not None
        assert not baseline.has_history
        assert baseline.avg_points_for == 0.0


class TestValidatePrediction:
    """Hard issues, soft warnings and the corrected copy."""

    def test_plausible_prediction(self, service):
        result = service.validate_prediction(_prediction())
        assert result.is_valid
        assert result.corrected_prediction is None
        assert result.validation_issues == []

    def test_negative_score(self, service):
        result = service.validate_prediction(_prediction(home=-5.0))
        assert not result.is_valid
        assert "cannot be negative" in result.validation_issues[0]
        corrected = result.corrected_prediction
        assert corrected.home_score == pytest.approx(10.0)
        assert corrected.away_score == pytest.approx(14.0)
        assert corrected.confidence == pytest.approx(0.4)
        assert corrected.method == "efficiency-matchup-corrected"
        assert result.correction_reason.startswith("Applied corrections")

    def test_runaway_differential(self, service):
        result = service.validate_prediction(
            _prediction(home=120.0, away=10.0, home_team=3, away_team=99)
        )
        assert not result.is_valid
        assert any("differential too large" in issue for issue in result.validation_issues)
        corrected = result.corrected_prediction
        assert corrected.point_differential == pytest.approx(35.0)

    def test_score_far_from_average_warns(self, service):
        result = service.validate_prediction(_prediction(home=45.0))
        assert result.is_valid
        assert len(result.validation_warnings) == 1
        assert "standard deviations" in result.validation_warnings[0]

    def test_score_below_minimum(self, service):
        result = service.validate_prediction(_prediction(home=5.0))
        assert not result.is_valid
        assert "plausible minimum" in result.validation_issues[0]


class TestCorrectPrediction:
    """Differential capping."""

    def test_differential_becomes_exact(self, service):
        corrected = service.correct_prediction(_prediction(home=80.0, away=10.0))
        # Default range clamps home to 70; the 60-point gap is then re-centred
        assert corrected.home_score == 58.0
        assert corrected.away_score == 23.0
        assert corrected.point_differential == 35.0

    def test_away_side_leading(self, service):
        corrected = service.correct_prediction(_prediction(home=10.0, away=80.0))
        assert corrected.away_score - corrected.home_score == 35.0

    def test_small_gap_untouched(self, service):
        corrected = service.correct_prediction(_prediction(home=30.0, away=20.0))
        assert corrected.home_score == 30.0
        assert corrected.away_score == 20.0
        assert corrected.confidence == pytest.approx(0.4)


class TestPredictionBounds:
    """Per-side ranges."""

    def test_bounds(self, service):
        bounds = service.calculate_prediction_bounds(1, 3)
        assert (bounds.home_team_min, bounds.home_team_max) == (10, 63)
        assert (bounds.away_team_min, bounds.away_team_max) == (7, 70)
        assert bounds.max_point_differential == 50.0
        assert "based on 3 games" in bounds.reasoning[0]
        assert "default values" in bounds.reasoning[1]


class TestFallbackPrediction:
    """Baseline-only predictions."""

    def test_with_history(self, service):
        prediction = service.generate_fallback_prediction(1, 2, game_id=7)
        # 25 + 3 home bonus + 0.3 * (25 - 24) opponent leak
        assert prediction.home_score == 28.0
        # 41/3 + 0.3 * (41/3 - 24)
        assert prediction.away_score == 11.0
        assert prediction.confidence == 0.3
        assert prediction.method == "fallback-baseline"

    def test_without_history(self, service):
        prediction = service.generate_fallback_prediction(3, 99, game_id=8)
        assert prediction.home_score == 27.0
        assert prediction.away_score == 21.0

    def test_within_ranges(self, service):
        prediction = service.generate_fallback_prediction(2, 1, game_id=9)
        assert 10.0 <= prediction.home_score <= 60.0
        assert 7.0 <= prediction.away_score <= 55.0


class TestBatchValidation:
    """Per-item accounting."""

    def test_mixed_batch(self, service):
        broken = _prediction(game_id=3)
        broken.home_score = None
        batch = service.validate_prediction_batch([
            _prediction(game_id=1),
            _prediction(home=-3.0, game_id=2),
            broken,
        ])

        assert batch.summary.total == 3
        assert batch.summary.valid == 1
        assert batch.summary.corrected == 1
        assert batch.summary.failed == 1
        assert batch.corrected_predictions[0].game_id == 2
        assert batch.failed_predictions[0][0].game_id == 3
