"""Tests for the season-wide convergence loop."""

import logging

import pytest

from conftest import SEASON, TEAMS, build_season
from src.data.storage import InMemoryStorage
from src.models.efficiency_profile import ConfidenceLevel, TeamEfficiencyProfile
from src.models.season_engine import SeasonEfficiencyEngine


class TestPerformanceFrame:
    """Games and box scores are paired per (game, team)."""

    def test_two_rows_per_game(self, season_storage, settings):
        frame = SeasonEfficiencyEngine(season_storage, settings).build_performance_frame(SEASON)
        assert len(frame) == 24
        row = frame[(frame["game_id"] == 1) & (frame["team_id"] == 1)].iloc[0]
        assert row["opponent_id"] == 2
        assert row["points"] > row["points_allowed"]
        assert row["yards_allowed"] < row["total_yards"]

    def test_net_passing_alias(self, settings):
        games, stats = build_season()
        stats = stats.rename(columns={"passing_yards": "net_passing_yards"})
        storage = InMemoryStorage(teams=TEAMS, games=games, team_game_stats=stats)
        frame = SeasonEfficiencyEngine(storage, settings).build_performance_frame(SEASON)
        assert "passing_yards" in frame.columns

    def test_missing_stat_column_raises(self, settings):
        games, stats = build_season()
        storage = InMemoryStorage(
            teams=TEAMS, games=games, team_game_stats=stats.drop(columns=["sacks"])
        )
        with pytest.raises(ValueError, match="missing columns"):
            SeasonEfficiencyEngine(storage, settings).build_performance_frame(SEASON)

    def test_incomplete_games_skipped(self, settings):
        games, stats = build_season()
        games.loc[games["game_id"] == 1, "completed"] = False
        storage = InMemoryStorage(teams=TEAMS, games=games, team_game_stats=stats)
        frame = SeasonEfficiencyEngine(storage, settings).build_performance_frame(SEASON)
        assert 1 not in set(frame["game_id"])


class TestCalculateSeason:
    """Fixed-point loop behaviour."""

    def test_converges(self, season_storage, settings, clock):
        result = SeasonEfficiencyEngine(season_storage, settings, clock).calculate_season(SEASON)

        assert result.converged
        assert result.iterations <= settings.max_convergence_iterations
        assert result.max_change < settings.convergence_tolerance
        assert set(result.profiles) == set(TEAMS)

    def test_stronger_team_rates_higher(self, season_storage, settings):
        profiles = SeasonEfficiencyEngine(season_storage, settings).calculate_season(SEASON).profiles
        assert profiles[1].scoring_offense_efficiency > profiles[4].scoring_offense_efficiency
        assert profiles[1].total_offense_efficiency > profiles[4].total_offense_efficiency
        assert profiles[1].total_defense_efficiency > profiles[4].total_defense_efficiency

    def test_six_games_is_medium(self, season_storage, settings):
        profiles = SeasonEfficiencyEngine(season_storage, settings).calculate_season(SEASON).profiles
        for profile in profiles.values():
            assert profile.games_played == 6
            assert profile.confidence_level == ConfidenceLevel.MEDIUM

    def test_does_not_write(self, season_storage, settings):
        SeasonEfficiencyEngine(season_storage, settings).calculate_season(SEASON)
        assert season_storage.get_profile(1, SEASON) is None

    def test_empty_season(self, settings, caplog):
        storage = InMemoryStorage(teams=TEAMS)
        with caplog.at_level(logging.WARNING):
            result = SeasonEfficiencyEngine(storage, settings).calculate_season(SEASON)
        assert result.converged
        assert result.profiles == {}
        assert "No completed games" in caplog.text

    def test_iteration_cap(self, season_storage, settings, caplog):
        settings.max_convergence_iterations = 1
        settings.convergence_tolerance = 1e-12
        with caplog.at_level(logging.WARNING):
            result = SeasonEfficiencyEngine(season_storage, settings).calculate_season(SEASON)
        assert result.iterations == 1
        assert not result.converged
        assert "did not converge" in caplog.text
        assert len(result.profiles) == 4


class TestPriorSeason:
    """Sparse teams pick up the stored prior-season profile."""

    def test_sparse_team_blended(self, settings):
        games, stats = build_season()
        # Keep only the first two games (Alpha plays both)
        games = games[games["game_id"] <= 2]
        storage = InMemoryStorage(teams=TEAMS, games=games, team_game_stats=stats)
        storage.save_profile(
            TeamEfficiencyProfile(
                team_id=1,
                season=SEASON - 1,
                games_played=12,
                confidence_level=ConfidenceLevel.HIGH,
            )
        )

        profiles = SeasonEfficiencyEngine(storage, settings).calculate_season(SEASON).profiles
        assert profiles[1].blended_with_prior
        assert profiles[1].confidence_level == ConfidenceLevel.MEDIUM
        assert not profiles[2].blended_with_prior

    def test_use_prior_false(self, settings):
        games, stats = build_season()
        games = games[games["game_id"] <= 2]
        storage = InMemoryStorage(teams=TEAMS, games=games, team_game_stats=stats)
        storage.save_profile(TeamEfficiencyProfile(team_id=1, season=SEASON - 1))
        engine = SeasonEfficiencyEngine(storage, settings)
        profiles = engine.calculate_season(SEASON, use_prior=False).profiles
        assert not profiles[1].blended_with_prior


class TestRecalculate:
    """Persisting profiles."""

    def test_recalculate_season_saves_all(self, season_storage, settings):
        SeasonEfficiencyEngine(season_storage, settings).recalculate_season(SEASON)
        for team_id in TEAMS:
            stored = season_storage.get_profile(team_id, SEASON)
            assert stored is not None
            assert stored.games_played == 6

    def test_recalculate_team(self, season_storage, settings):
        engine = SeasonEfficiencyEngine(season_storage, settings)
        profile = engine.recalculate_team(3, SEASON)
        assert profile.team_id == 3
        assert season_storage.get_profile(3, SEASON) is not None
        assert season_storage.get_profile(1, SEASON) is None

    def test_recalculating_twice_gives_identical_profiles(self, season_storage, settings, clock):
        engine = SeasonEfficiencyEngine(season_storage, settings, clock)
        engine.recalculate_season(SEASON)
        first = {team_id: season_storage.get_profile(team_id, SEASON) for team_id in TEAMS}

        engine.recalculate_season(SEASON)
        second = {team_id: season_storage.get_profile(team_id, SEASON) for team_id in TEAMS}
        assert second == first

        assert engine.recalculate_team(2, SEASON) == first[2]

    def test_recalculate_unknown_team(self, season_storage, settings):
        engine = SeasonEfficiencyEngine(season_storage, settings)
        with pytest.raises(ValueError, match="no completed games"):
            engine.recalculate_team(99, SEASON)

    def test_load_profile_fail_soft(self, settings, caplog):
        class BrokenStorage(InMemoryStorage):
            def get_profile(self, team_id, season):
                raise OSError("disk gone")

        engine = SeasonEfficiencyEngine(BrokenStorage(), settings)
        with caplog.at_level(logging.WARNING):
            assert engine.load_profile(1, SEASON) is None
        assert "disk gone" in caplog.text
