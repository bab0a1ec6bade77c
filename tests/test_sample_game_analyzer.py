"""Tests for the sample game explainability audit."""

import pandas as pd
import pytest

from conftest import SEASON
from src.data.storage import InMemoryStorage
from src.validation.accuracy_tester import (
    AccuracyTestResult,
    ReliabilityAnalysis,
    ReliabilityBucket,
)
from src.validation.results import Severity
from src.validation.sample_game_analyzer import (
    SampleGameAnalyzer,
    TeamEfficiencyBreakdown,
    analyze_error,
    build_confidence_interpretation_guide,
    categorize_game,
    format_category_name,
)


def _games(scores):
    return pd.DataFrame([
        {"game_id": i, "season": SEASON, "week": 1, "home_team_id": 1, "away_team_id": 2,
         "home_points": home, "away_points": away, "completed": True}
        for i, (home, away) in enumerate(scores, start=1)
    ])


def _breakdown(team_id, **values):
    return TeamEfficiencyBreakdown(
        team_id=team_id,
        team_name=f"Team {team_id}",
        overall_efficiency=0.0,
        category_efficiencies=values,
    )


class TestCategorize:
    @pytest.mark.parametrize(
        "home,away,expected",
        [
            (24, 21, "close"),
            (21, 28, "close"),
            (49, 21, "blowout"),
            (10, 45, "blowout"),
            (14, 27, "upset"),
            (31, 17, "regular"),
            (17, 26, "regular"),
        ],
    )
    def test_categories(self, home, away, expected):
        assert categorize_game(home, away) == expected

    def test_format_category_name(self):
        assert format_category_name("passing_offense") == "Passing Offense"


class TestSelection:
    """Category quotas with a top-up from whatever is left."""

    SCORES = (
        [(21, 20)] * 4      # close
        + [(56, 14)] * 3    # blowout
        + [(10, 24)] * 2    # upset
        + [(31, 17)] * 5    # regular
    )

    def test_quotas(self, settings, clock):
        games = _games(self.SCORES)
        analyzer = SampleGameAnalyzer(InMemoryStorage(), settings, clock, seed=4)
        categories = analyzer.categorize_games(games)
        sample = analyzer.select_diverse_sample(games, categories, 10)

        assert len(sample) == 10
        assert sample["game_id"].is_unique
        counts = analyzer.categorize_games(sample).value_counts().to_dict()
        assert counts == {"close": 3, "blowout": 3, "upset": 2, "regular": 2}

    def test_sample_larger_than_season(self, settings, clock):
        games = _games(self.SCORES)
        analyzer = SampleGameAnalyzer(InMemoryStorage(), settings, clock, seed=4)
        sample = analyzer.select_diverse_sample(games, analyzer.categorize_games(games), 20)
        assert sorted(sample["game_id"]) == list(range(1, 15))

    def test_seeded_selection_repeats(self, settings, clock):
        games = _games(self.SCORES)
        picks = []
        for _ in range(2):
            analyzer = SampleGameAnalyzer(InMemoryStorage(), settings, clock, seed=9)
            sample = analyzer.select_diverse_sample(games, analyzer.categorize_games(games), 6)
            picks.append(list(sample["game_id"]))
        assert picks[0] == picks[1]


class TestConfidenceGuide:
    """Five bands, optionally annotated with back-test accuracy."""

    def test_bands(self):
        guide = build_confidence_interpretation_guide()
        assert [b.label for b in guide.bands] == ["very_high", "high", "moderate", "low", "very_low"]
        assert all(b.observed_accuracy is None for b in guide.bands)
        assert guide.interpretation_tips
        assert "Sample Size" in guide.contextual_factors

    @pytest.mark.parametrize(
        "confidence,label",
        [(95, "very_high"), (80, "high"), (74.5, "moderate"), (50, "low"), (10, "very_low")],
    )
    def test_band_for(self, confidence, label):
        assert build_confidence_interpretation_guide().band_for(confidence).label == label

    def test_observed_accuracy(self):
        accuracy = AccuracyTestResult(
            component="prediction_accuracy",
            prediction_reliability=ReliabilityAnalysis(
                overall_reliability="high",
                overall_accuracy=80.0,
                by_confidence=[
                    ReliabilityBucket("85-100%", 92.0, 25, "high", (85, 100)),
                    ReliabilityBucket("75-85%", 0.0, 0, "low", (75, 85)),
                ],
            ),
        )
        guide = build_confidence_interpretation_guide(accuracy)
        very_high = guide.band_for(95)
        assert very_high.observed_accuracy == pytest.approx(92.0)
        assert very_high.observed_sample_size == 25
        assert "observed 92% over 25 games" in very_high.typical_accuracy
        # Empty bucket leaves the band untouched
        assert guide.band_for(80).observed_accuracy is None


class TestErrorAnalysis:
    def test_noise(self):
        assert analyze_error(90, 0.5, 5, 4).error_type == "statistical_noise"

    def test_model_limitation(self):
        assert analyze_error(50, 0.5, 10, 10).error_type == "model_limitation"

    def test_data_quality(self):
        assert analyze_error(85, 0.1, 10, 10).error_type == "data_quality"

    def test_systematic_bias(self):
        assert analyze_error(85, 0.5, 10, 10).error_type == "systematic_bias"

    def test_asymmetric_error(self):
        analysis = analyze_error(85, 0.5, 20, 2)
        assert "Asymmetric prediction error between teams" in analysis.possible_causes
        assert analysis.error_magnitude == 22


class TestMatchupAdvantages:
    def test_sorted_by_magnitude(self):
        home = _breakdown(1, total_offense=15.0, passing_offense=3.0, rushing_offense=1.0)
        away = _breakdown(2, total_offense=0.0, passing_offense=10.0, rushing_offense=0.0)
        advantages = SampleGameAnalyzer.calculate_matchup_advantages(home, away)

        assert len(advantages) == 8
        first, second = advantages[0], advantages[1]
        assert (first.category, first.advantage, first.impact) == ("Total Offense", "home", "high")
        assert (second.category, second.advantage, second.impact) == ("Passing Offense", "away", "medium")
        rushing = next(a for a in advantages if a.category == "Rushing Offense")
        assert rushing.advantage == "neutral"
        assert rushing.impact == "low"


class TestAnalyzeGame:
    """Single-game analysis against stored profiles."""

    def test_blowout_game(self, profiled_storage, settings, clock):
        analyzer = SampleGameAnalyzer(profiled_storage, settings, clock)
        # Game 3 is Alpha hosting Delta, the widest strength gap
        analysis = analyzer.analyze_game(3, SEASON)

        assert analysis.home_team == "Alpha"
        assert analysis.away_team == "Delta"
        assert analysis.category == "blowout"
        assert analysis.predicted_home > analysis.predicted_away
        assert analysis.outcome.winner_correct
        assert analysis.explanation.summary.startswith("Alpha is favored by")
        assert analysis.explanation.text.startswith("Our analysis predicts Alpha will defeat Delta")
        impacts = [f.impact_on_prediction for f in analysis.key_factors]
        assert impacts == sorted(impacts, reverse=True)
        assert len(impacts) <= 5
        assert len(analysis.matchup_advantages) == 8

    def test_unknown_game(self, profiled_storage, settings, clock):
        assert SampleGameAnalyzer(profiled_storage, settings, clock).analyze_game(999, SEASON) is None


class TestValidate:
    """Full sample runs."""

    def test_synthetic_season(self, profiled_storage, settings, clock):
        analyzer = SampleGameAnalyzer(profiled_storage, settings, clock, sample_size=6, seed=5)
        result = analyzer.validate(SEASON)

        assert result.kind == "sample_game_analyzer"
        assert result.is_valid
        assert result.score == 100
        assert len(result.analyzed_games) == 6
        assert sum(result.selection_criteria.values()) == 12
        assert len(result.confidence_guide.bands) == 5
        assert all(a.outcome is not None for a in result.analyzed_games)
        assert "Successfully analyzed 6 out of 6 selected games" in result.recommendations

    def test_missing_profiles(self, season_storage, settings, clock):
        result = SampleGameAnalyzer(season_storage, settings, clock, sample_size=4, seed=1).validate(SEASON)

        assert result.analyzed_games == []
        assert result.warning_codes().count("GAME_ANALYSIS_FAILED") == 4
        assert "LOW_SUCCESS_RATE" in result.warning_codes()
        assert result.score == 0

    def test_no_completed_games(self, settings, clock):
        result = SampleGameAnalyzer(InMemoryStorage(), settings, clock).validate(SEASON)
        assert result.error_codes() == ["NO_COMPLETED_GAMES"]
        assert result.errors[0].severity == Severity.HIGH
        assert result.confidence_guide is not None
