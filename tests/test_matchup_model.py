"""Tests for the additive matchup model."""

import pytest

from conftest import SEASON, make_analysis
from src.data.storage import InMemoryStorage
from src.models.efficiency_profile import ConfidenceLevel, TeamEfficiencyProfile
from src.models.matchup_model import MatchupPredictionModel, category_weight
from src.models.weights import WeightManager, fallback_weights


def _profile(team_id, level=ConfidenceLevel.HIGH, convergence=1.0, season=SEASON, **efficiencies):
    return TeamEfficiencyProfile(
        team_id=team_id,
        season=season,
        games_played=10,
        convergence_score=convergence,
        confidence_level=level,
        **efficiencies,
    )


def _model(settings, storage=None):
    storage = storage or InMemoryStorage()
    return MatchupPredictionModel(WeightManager(storage, settings), settings)


class TestCategoryWeight:
    """Category to weight mapping."""

    def test_mapping(self):
        weights = fallback_weights()
        assert category_weight("passing_yards", weights) == 0.25
        assert category_weight("total_yards", weights) == pytest.approx(0.45)
        assert category_weight("scoring", weights) == 0.30
        assert category_weight("sacks", weights) == 0.1
        assert category_weight("field_goals", weights) == 0.15

    def test_unsupported(self):
        with pytest.raises(ValueError, match="Unsupported statistical category"):
            category_weight("punting", fallback_weights())


class TestExpectedPerformance:
    """Single-category predictions."""

    def test_additive_formula(self, settings):
        offense = _profile(1, passing_offense_efficiency=30.0)
        defense = _profile(2, passing_defense_efficiency=10.0)
        defense.typical_allowed["passing_yards"] = 240.0

        result = _model(settings).calculate_expected_performance(offense, defense, "passing_yards")
        assert result.expected_value == pytest.approx(240.0 + 30.0 - 10.0)
        assert result.opponent_baseline == 240.0
        assert result.weight_applied == 0.25
        assert result.weighted_value == pytest.approx(260.0 * 0.25)

    def test_explicit_weights(self, settings):
        weights = fallback_weights()
        weights.scoring_efficiency = 0.9
        result = _model(settings).calculate_expected_performance(
            _profile(1), _profile(2), "scoring", weights
        )
        assert result.weight_applied == 0.9

    def test_unsupported_category(self, settings):
        with pytest.raises(ValueError, match="Unsupported"):
            _model(settings).calculate_expected_performance(_profile(1), _profile(2), "punting")


class TestMatchupConfidence:
    """Weaker profile drives confidence."""

    def test_high_and_converged(self, settings):
        assert _model(settings).matchup_confidence(_profile(1), _profile(2)) == pytest.approx(1.0)

    def test_high_pair_above_threshold(self, settings):
        confidence = _model(settings).matchup_confidence(
            _profile(1, convergence=0.5), _profile(2, convergence=0.9)
        )
        assert confidence == pytest.approx(1.0 * (0.85 + 0.15 * 0.5))
        assert confidence > 0.8

    def test_weaker_tier_wins(self, settings):
        confidence = _model(settings).matchup_confidence(
            _profile(1), _profile(2, level=ConfidenceLevel.LOW)
        )
        assert confidence == pytest.approx(0.4)


class TestPredictionBounds:
    """Clamping of implausible category predictions."""

    def test_valid_value(self, settings):
        check = _model(settings).validate_prediction_bounds(500.0, "total_yards", 400.0, 450.0)
        assert check.is_valid
        assert check.adjusted_value == 500.0

    def test_negative(self, settings):
        check = _model(settings).validate_prediction_bounds(-100.0, "total_yards", 400.0)
        assert not check.is_valid
        assert check.adjusted_value == pytest.approx(40.0)
        assert check.reason == "Negative prediction not allowed"

    def test_far_above_baseline(self, settings):
        check = _model(settings).validate_prediction_bounds(1300.0, "total_yards", 400.0)
        assert not check.is_valid
        assert check.adjusted_value == pytest.approx(1200.0)
        assert "relative to opponent" in check.reason

    def test_far_from_team_average(self, settings):
        check = _model(settings).validate_prediction_bounds(1100.0, "total_yards", 400.0, 400.0)
        assert not check.is_valid
        assert check.adjusted_value == pytest.approx(1000.0)
        assert "team average" in check.reason

    def test_unsupported_category(self, settings):
        with pytest.raises(ValueError):
            _model(settings).validate_prediction_bounds(10.0, "punting", 5.0)


class TestMatchupAnalysis:
    """Full two-sided predictions."""

    def test_neutral_teams(self, settings):
        prediction = _model(settings).calculate_matchup_analysis(_profile(1), _profile(2))

        base = 28.0 * 0.95 + 1.2 * -2.0 * 0.03 + 1.8 * 3.0 * 0.02
        assert prediction.away_score == pytest.approx(base)
        assert prediction.home_score == pytest.approx(base + 2.0)
        assert prediction.predicted_margin == pytest.approx(2.0)
        assert prediction.confidence_level == ConfidenceLevel.HIGH
        assert set(prediction.home_predictions) == set(prediction.away_predictions)
        assert len(prediction.home_predictions) == 7

    def test_stronger_offense_scores_more(self, settings):
        home = _profile(1, scoring_offense_efficiency=7.0)
        away = _profile(2, scoring_defense_efficiency=-3.0)
        prediction = _model(settings).calculate_matchup_analysis(home, away)
        assert prediction.home_predictions["scoring"].predicted_value == pytest.approx(38.0)
        assert prediction.home_score > prediction.away_score + 2.0

    def test_interval_widens_without_regression(self, settings):
        storage = InMemoryStorage()
        no_fit = _model(settings, storage).calculate_matchup_analysis(_profile(1), _profile(2))
        low, high = no_fit.home_confidence_interval
        assert high - low == pytest.approx(no_fit.home_score * 2 * 0.5)

        storage.save_regression_analysis(make_analysis(overall_model_r_squared=0.8))
        fitted = _model(settings, storage).calculate_matchup_analysis(_profile(1), _profile(2))
        low_f, high_f = fitted.home_confidence_interval
        assert high_f - low_f < high - low
        assert fitted.regression_metadata.model_r_squared == 0.8
        assert fitted.regression_metadata.statistically_significant

    def test_uses_current_weights(self, settings):
        storage = InMemoryStorage()
        WeightManager(storage, settings).update_weights_manually(
            SEASON, {"scoring_efficiency": 0.6}, "test"
        )
        prediction = _model(settings, storage).calculate_matchup_analysis(_profile(1), _profile(2))
        assert prediction.regression_metadata.weights_used.scoring_efficiency == 0.6
        assert prediction.home_predictions["scoring"].weight_applied == 0.6

    def test_negative_category_clamped(self, settings):
        home = _profile(1, turnover_offense_efficiency=-5.0)
        prediction = _model(settings).calculate_matchup_analysis(home, _profile(2))
        turnovers = prediction.home_predictions["turnovers"]
        assert turnovers.bounds_adjusted
        assert turnovers.predicted_value == pytest.approx(1.2 * 0.1)

    def test_season_mismatch(self, settings):
        with pytest.raises(ValueError, match="different seasons"):
            _model(settings).calculate_matchup_analysis(_profile(1), _profile(2, season=SEASON - 1))

    def test_to_dict(self, settings):
        data = _model(settings).calculate_matchup_analysis(_profile(1), _profile(2)).to_dict()
        assert data["confidence_level"] == "High"
        assert data["predicted_margin"] == pytest.approx(2.0)
