"""Tests for season weight verification."""

from datetime import timedelta

import pytest

from conftest import NOW, SEASON, make_analysis
from src.data.storage import InMemoryStorage
from src.models.weights import (
    REASON_REGRESSION,
    StatisticalImpactWeights,
    WeightChangeLog,
    WeightManager,
    fallback_weights,
)
from src.validation.weight_verifier import WeightCalculationVerifier


def _verifier(storage, settings, clock):
    return WeightCalculationVerifier(storage, settings, clock)


class TestFullVerification:
    """End-to-end verification runs."""

    def test_regression_weights_verified(self, settings, clock):
        storage = InMemoryStorage()
        analysis = make_analysis()
        storage.save_regression_analysis(analysis)
        WeightManager(storage, settings, clock).update_weights_from_regression(SEASON, analysis)

        result = _verifier(storage, settings, clock).validate(SEASON)

        assert result.is_valid
        assert result.score == 100
        assert result.kind == "weight_calculation"
        assert result.weight_derivation.is_correct
        assert result.weight_derivation.max_drift == pytest.approx(0.0)
        assert not result.weight_derivation.normalization_applied
        assert result.weight_bounds.total_sum == pytest.approx(1.2167, abs=1e-3)
        assert result.weight_history.change_count == 1

    def test_expected_vector(self, settings, clock):
        storage = InMemoryStorage()
        storage.save_regression_analysis(make_analysis())
        derivation = _verifier(storage, settings, clock).validate_weight_derivation(
            SEASON, fallback_weights(), []
        )
        expected = derivation.expected_weights
        assert expected.passing_offense == pytest.approx(0.0833, abs=1e-4)
        assert expected.rushing_offense == pytest.approx(0.1667, abs=1e-4)
        assert expected.scoring_efficiency == pytest.approx(0.3333, abs=1e-4)
        assert expected.passing_defense == pytest.approx(0.0667, abs=1e-4)
        assert expected.rushing_defense == pytest.approx(0.1333, abs=1e-4)
        assert expected.turnover_margin == pytest.approx(0.1667, abs=1e-4)
        assert expected.special_teams == pytest.approx(0.1667, abs=1e-4)
        assert expected.home_field_advantage == pytest.approx(0.1)

    def test_manual_override_after_regression(self, settings):
        storage = InMemoryStorage()
        analysis = make_analysis()
        storage.save_regression_analysis(analysis)
        WeightManager(storage, settings, lambda: NOW).update_weights_from_regression(SEASON, analysis)
        later = NOW + timedelta(hours=1)
        WeightManager(storage, settings, lambda: later).update_weights_manually(
            SEASON, {"special_teams": 0.4}, "kicker"
        )

        result = _verifier(storage, settings, lambda: later).validate(SEASON)
        assert result.weight_derivation.is_correct
        assert result.is_valid
        assert result.warning_codes() == ["EXTREME_WEIGHT_CHANGE"]
        assert "special_teams" in result.weight_history.extreme_changes[0]
        assert any("justification" in r for r in result.recommendations)

    def test_derivation_bug_detected(self, settings, clock, monkeypatch):
        monkeypatch.setattr(
            "src.models.weights.derive_weights_from_regression", lambda analysis: fallback_weights()
        )
        storage = InMemoryStorage()
        analysis = make_analysis()
        storage.save_regression_analysis(analysis)
        WeightManager(storage, settings, clock).update_weights_from_regression(SEASON, analysis)

        result = _verifier(storage, settings, clock).validate(SEASON)
        assert "WEIGHT_DERIVATION_INVALID" in result.error_codes()
        assert result.weight_derivation.drift["passing_offense"] == pytest.approx(0.25 - 0.0833, abs=1e-3)

    def test_no_analysis_and_no_history(self, settings, clock):
        result = _verifier(InMemoryStorage(), settings, clock).validate(SEASON)

        assert not result.is_valid
        assert result.error_codes() == ["WEIGHT_DERIVATION_INVALID"]
        assert result.warning_codes() == ["WEIGHT_HISTORY_INCOMPLETE"]
        assert result.score == 100 - 25 - 2
        assert any("running regression analysis" in r for r in result.recommendations)

    def test_analysis_never_applied(self, settings, clock):
        storage = InMemoryStorage()
        storage.save_regression_analysis(make_analysis())
        result = _verifier(storage, settings, clock).validate(SEASON)

        assert "WEIGHT_DERIVATION_INVALID" in result.error_codes()
        assert result.weight_derivation.max_drift > 0.01
        assert result.weight_derivation.stored_weights == fallback_weights()


class TestWeightBounds:
    """Per-weight and total checks."""

    def test_fallback_within_bounds(self, settings, clock):
        bounds = _verifier(InMemoryStorage(), settings, clock).validate_weight_bounds(fallback_weights())
        assert bounds.all_within_bounds
        assert bounds.sum_range == pytest.approx((0.4, 3.1))
        assert len(bounds.weight_values) == 8

    def test_oversized_weight(self, settings, clock):
        weights = StatisticalImpactWeights(scoring_efficiency=2.5)
        bounds = _verifier(InMemoryStorage(), settings, clock).validate_weight_bounds(weights)
        assert not bounds.all_within_bounds
        flagged = [w.category for w in bounds.weight_values if not w.within_bounds]
        assert flagged == ["scoring_efficiency"]

    def test_total_too_small(self, settings, clock):
        weights = StatisticalImpactWeights(**{name: 0.04 for name in fallback_weights().to_dict()})
        bounds = _verifier(InMemoryStorage(), settings, clock).validate_weight_bounds(weights)
        assert not bounds.sum_valid
        assert not bounds.all_within_bounds


class TestWeightApplication:
    """Current vector must map onto every matchup category."""

    def test_fallback_applies(self, settings, clock):
        application = _verifier(InMemoryStorage(), settings, clock).validate_weight_application(
            fallback_weights()
        )
        assert application.correctly_applied
        assert len(application.weight_usage) == 7

    def test_negative_weight(self, settings, clock):
        weights = StatisticalImpactWeights(turnover_margin=-0.2)
        application = _verifier(InMemoryStorage(), settings, clock).validate_weight_application(weights)
        assert not application.correctly_applied
        assert any("Negative weight" in e for e in application.validation_errors)


class TestWeightHistory:
    """Change-log completeness."""

    def _entry(self, **overrides):
        values = dict(
            season=SEASON,
            timestamp=NOW,
            reason="manual_override:test",
            previous_weights=fallback_weights(),
            new_weights=fallback_weights(),
            actor="analyst",
        )
        values.update(overrides)
        return WeightChangeLog(**values)

    def test_empty_history(self, settings, clock):
        history = _verifier(InMemoryStorage(), settings, clock).validate_weight_history([])
        assert not history.has_complete_history
        assert history.issues == ["No weight changes recorded"]

    def test_missing_actor(self, settings, clock):
        history = _verifier(InMemoryStorage(), settings, clock).validate_weight_history(
            [self._entry(actor="")]
        )
        assert not history.audit_trail_complete
        assert "no reason or actor" in history.issues[0]

    def test_regression_entry_without_metrics(self, settings, clock):
        history = _verifier(InMemoryStorage(), settings, clock).validate_weight_history(
            [self._entry(reason=REASON_REGRESSION)]
        )
        assert "no regression metrics" in history.issues[0]

    def test_first_entry_may_lack_previous(self, settings, clock):
        history = _verifier(InMemoryStorage(), settings, clock).validate_weight_history(
            [self._entry(), self._entry(previous_weights=None, timestamp=NOW - timedelta(hours=1))]
        )
        assert history.has_complete_history
        assert history.change_count == 2

    def test_sequence_break(self, settings, clock):
        older = self._entry(timestamp=NOW - timedelta(hours=1), previous_weights=None)
        newer = self._entry(previous_weights=StatisticalImpactWeights(special_teams=0.3))
        history = _verifier(InMemoryStorage(), settings, clock).validate_weight_history([newer, older])
        assert not history.has_complete_history
        assert any("sequence break" in issue for issue in history.issues)

    def test_duplicate_entry(self, settings, clock):
        entry = self._entry()
        history = _verifier(InMemoryStorage(), settings, clock).validate_weight_history(
            [entry, self._entry(previous_weights=None)]
        )
        assert not history.audit_trail_complete
        assert any("Duplicate weight change" in issue for issue in history.issues)

    def test_shared_timestamp(self, settings, clock):
        history = _verifier(InMemoryStorage(), settings, clock).validate_weight_history(
            [self._entry(reason="manual_override:b"), self._entry(reason="manual_override:a")]
        )
        assert any("share timestamp" in issue for issue in history.issues)
        assert not any("Duplicate" in issue for issue in history.issues)

    def test_extreme_manual_change(self, settings, clock):
        jump = self._entry(new_weights=StatisticalImpactWeights(special_teams=0.4))
        history = _verifier(InMemoryStorage(), settings, clock).validate_weight_history([jump])
        assert history.has_complete_history
        assert history.extreme_changes == [
            f"Extreme weight change for special_teams: 0.150 -> 0.400 at {NOW.isoformat()}"
        ]

    @pytest.mark.parametrize(
        "overrides",
        [
            {"note": "major kicker change"},
            {"reason": "manual_override:Significant roster turnover"},
            {"reason": REASON_REGRESSION},
        ],
    )
    def test_justified_change_not_flagged(self, settings, clock, overrides):
        jump = self._entry(new_weights=StatisticalImpactWeights(special_teams=0.4), **overrides)
        history = _verifier(InMemoryStorage(), settings, clock).validate_weight_history([jump])
        assert history.extreme_changes == []

    def test_change_from_zero_is_extreme(self, settings, clock):
        jump = self._entry(
            previous_weights=StatisticalImpactWeights(turnover_margin=0.0),
            new_weights=StatisticalImpactWeights(turnover_margin=0.1),
        )
        history = _verifier(InMemoryStorage(), settings, clock).validate_weight_history([jump])
        assert len(history.extreme_changes) == 1
        assert "turnover_margin" in history.extreme_changes[0]
