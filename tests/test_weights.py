"""Tests for category weights and the weight change log."""

import logging
from datetime import timedelta

import pytest

from conftest import NOW, SEASON, make_analysis
from src.data.storage import InMemoryStorage, StorageError
from src.models.weights import (
    REASON_FALLBACK,
    REASON_REGRESSION,
    RegressionMetricResult,
    StatisticalImpactWeights,
    WeightManager,
    derive_weights_from_regression,
    fallback_weights,
    validate_weights,
)


class _Ticker:
    """Clock that advances one minute per call."""

    def __init__(self):
        self.now = NOW

    def __call__(self):
        self.now = self.now + timedelta(minutes=1)
        return self.now


class TestStatisticalImpactWeights:
    """Weight vector basics."""

    def test_fallback_values(self):
        weights = fallback_weights()
        assert weights.passing_offense == 0.25
        assert weights.turnover_margin == 0.35
        assert weights.total == pytest.approx(1.8)

    def test_from_dict_rejects_unknown(self):
        with pytest.raises(ValueError, match="Unknown weight categories"):
            StatisticalImpactWeights.from_dict({"kicking": 0.5})


class TestValidateWeights:
    """NaN, negatives, zero sum and out-of-band totals."""

    def test_fallback_is_valid(self, settings):
        result = validate_weights(fallback_weights(), settings)
        assert result.is_valid
        assert result.errors == []
        assert result.normalized_weights is None

    def test_nan_rejected(self, settings):
        weights = fallback_weights().to_dict()
        weights["special_teams"] = float("nan")
        result = validate_weights(weights, settings)
        assert not result.is_valid
        assert "Invalid special_teams" in result.errors[0]

    def test_negative_rejected(self, settings):
        weights = fallback_weights().to_dict()
        weights["passing_defense"] = -0.1
        result = validate_weights(weights, settings)
        assert not result.is_valid
        assert any("Negative weight" in e for e in result.errors)

    def test_zero_sum_rejected(self, settings):
        weights = {name: 0.0 for name in fallback_weights().to_dict()}
        result = validate_weights(weights, settings)
        assert not result.is_valid
        assert "cannot be zero" in result.errors[0]

    def test_high_weight_warns(self, settings):
        weights = fallback_weights().to_dict()
        weights["scoring_efficiency"] = 2.5
        result = validate_weights(weights, settings)
        assert result.is_valid
        assert any("Unusually high" in w for w in result.warnings)

    def test_out_of_band_total_normalized(self, settings):
        weights = {name: 0.05 for name in fallback_weights().to_dict()}
        result = validate_weights(weights, settings)
        assert result.is_valid
        assert result.normalized_weights.total == pytest.approx(1.5)


class TestDeriveWeights:
    """Regression rows -> weight vector."""

    def test_reference_analysis(self):
        weights = derive_weights_from_regression(make_analysis())
        assert weights.scoring_efficiency == pytest.approx(0.4 / 1.2)
        # Non-significant passing metric is halved on both sides
        assert weights.passing_offense == pytest.approx(0.2 / 1.2 * 0.5)
        assert weights.passing_defense == pytest.approx(0.2 / 1.2 * 0.8 * 0.5)
        assert weights.rushing_offense == pytest.approx(0.2 / 1.2)
        assert weights.rushing_defense == pytest.approx(0.2 / 1.2 * 0.8)
        assert weights.home_field_advantage == pytest.approx(0.10)

    def test_strong_metric_boosted(self):
        analysis = make_analysis(regression_results=[
            RegressionMetricResult("turnover_efficiency", 2.0, 0.7, 0.001, (1.0, 3.0), 0.4, True),
        ])
        weights = derive_weights_from_regression(analysis)
        assert weights.turnover_margin == pytest.approx(0.4 / 1.2 * 1.3)


class TestWeightManager:
    """Current weights, updates and history."""

    def test_fallback_when_empty(self, settings):
        manager = WeightManager(InMemoryStorage(), settings)
        assert manager.get_current_weights(SEASON) == fallback_weights()

    def test_fallback_when_store_unreachable(self, settings, caplog):
        class BrokenStorage(InMemoryStorage):
            def get_weight_history(self, season):
                raise OSError("offline")

        manager = WeightManager(BrokenStorage(), settings)
        with caplog.at_level(logging.WARNING):
            assert manager.get_current_weights(SEASON) == fallback_weights()
        assert "using fallback" in caplog.text

    def test_regression_update(self, settings):
        storage = InMemoryStorage()
        manager = WeightManager(storage, settings, _Ticker())
        weights = manager.update_weights_from_regression(SEASON, make_analysis(), actor="tester")

        assert manager.get_current_weights(SEASON) == weights
        entry = manager.get_weight_history(SEASON)[0]
        assert entry.reason == REASON_REGRESSION
        assert entry.previous_weights == fallback_weights()
        assert entry.regression_metrics.r_squared == 0.42
        assert entry.regression_metrics.sample_size == 120
        assert entry.regression_metrics.significant_metrics == ["scoring_efficiency"]
        assert entry.actor == "tester"

    def test_regression_update_invalid(self, settings):
        storage = InMemoryStorage()
        manager = WeightManager(storage, settings)
        analysis = make_analysis(regression_results=[
            RegressionMetricResult("scoring_efficiency", 1.0, 0.3, 0.01, (0.5, 1.5), -5.0, True),
        ])
        with pytest.raises(ValueError, match="Invalid weights from regression analysis"):
            manager.update_weights_from_regression(SEASON, analysis)
        assert storage.get_weight_history(SEASON) == []

    def test_manual_update(self, settings):
        manager = WeightManager(InMemoryStorage(), settings, _Ticker())
        weights = manager.update_weights_manually(
            SEASON, {"special_teams": 0.3}, "kicker injury", actor="analyst"
        )
        assert weights.special_teams == 0.3
        assert weights.passing_offense == 0.25

        entry = manager.get_weight_history(SEASON)[0]
        assert entry.reason == "manual_override:kicker injury"
        assert entry.note == "kicker injury"
        assert entry.actor == "analyst"

    def test_manual_update_unknown_category(self, settings):
        manager = WeightManager(InMemoryStorage(), settings)
        with pytest.raises(ValueError, match="unknown categories"):
            manager.update_weights_manually(SEASON, {"kicking": 0.3}, "typo")

    def test_manual_update_negative(self, settings):
        manager = WeightManager(InMemoryStorage(), settings)
        with pytest.raises(ValueError, match="Negative weight"):
            manager.update_weights_manually(SEASON, {"special_teams": -1.0}, "bad")

    def test_reset_to_fallback(self, settings):
        manager = WeightManager(InMemoryStorage(), settings, _Ticker())
        manager.update_weights_manually(SEASON, {"special_teams": 0.3}, "test")
        weights = manager.reset_to_fallback_weights(SEASON, "season restart")
        assert weights == fallback_weights()
        assert manager.get_current_weights(SEASON) == fallback_weights()
        assert manager.get_weight_history(SEASON)[0].reason == REASON_FALLBACK

    def test_history_newest_first_and_limit(self, settings):
        manager = WeightManager(InMemoryStorage(), settings, _Ticker())
        for value in (0.1, 0.2, 0.3):
            manager.update_weights_manually(SEASON, {"special_teams": value}, f"set {value}")

        history = manager.get_weight_history(SEASON)
        assert [e.new_weights.special_teams for e in history] == [0.3, 0.2, 0.1]
        assert len(manager.get_weight_history(SEASON, limit=2)) == 2

    def test_seasons_are_independent(self, settings):
        manager = WeightManager(InMemoryStorage(), settings, _Ticker())
        manager.update_weights_manually(SEASON, {"special_teams": 0.3}, "test")
        assert manager.get_current_weights(SEASON + 1) == fallback_weights()

    def test_write_failure_raises_storage_error(self, settings):
        class ReadOnlyStorage(InMemoryStorage):
            def append_weight_change(self, entry):
                raise OSError("read-only")

        manager = WeightManager(ReadOnlyStorage(), settings)
        with pytest.raises(StorageError):
            manager.reset_to_fallback_weights(SEASON, "test")

    def test_latest_regression_analysis(self, settings):
        storage = InMemoryStorage()
        manager = WeightManager(storage, settings)
        assert manager.get_latest_regression_analysis(SEASON) is None
        storage.save_regression_analysis(make_analysis(sample_size=50))
        storage.save_regression_analysis(make_analysis(sample_size=80))
        assert manager.get_latest_regression_analysis(SEASON).sample_size == 80

    def test_latest_regression_analysis_by_date(self, settings):
        storage = InMemoryStorage()
        storage.save_regression_analysis(make_analysis(sample_size=80, analysis_date=NOW))
        # Backfilled later but analysed earlier
        storage.save_regression_analysis(
            make_analysis(sample_size=50, analysis_date=NOW - timedelta(days=3))
        )
        storage.save_regression_analysis(make_analysis(sample_size=20, analysis_date=None))
        manager = WeightManager(storage, settings)
        assert manager.get_latest_regression_analysis(SEASON).sample_size == 80

    def test_manual_update_logs_normalization(self, settings, caplog):
        manager = WeightManager(InMemoryStorage(), settings, _Ticker())
        with caplog.at_level(logging.WARNING):
            weights = manager.update_weights_manually(SEASON, {"special_teams": 1.9}, "kicker")
        assert weights.total == pytest.approx(settings.weight_sum_target)
        assert "manual weights" in caplog.text
        assert "normalizing" in caplog.text
