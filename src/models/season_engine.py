"""Season-wide opponent-baseline convergence.

A team's efficiency depends on its opponents' baselines, and each baseline
depends on the quality of the teams that opponent faced. The engine
resolves that circularity as an explicit fixed-point loop:

1. Baselines per team and category:
   - typical allowed = mean allowed - k * mean offensive efficiency of the
     offenses that team faced
   - typical gained  = mean gained  + k * mean defensive efficiency of the
     defenses that team faced
2. Rebuild every team's GamePerformanceRecords against its opponents'
   baselines and rebuild profiles with EfficiencyProfileBuilder.
3. Stop when the largest efficiency change is below tolerance for (almost)
   every team, when it is an order of magnitude below tolerance, or when
   the iteration cap is hit.

With k < 1 each pass is a contraction, so the loop settles in a handful of
iterations on a connected schedule.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

import numpy as np
import pandas as pd

from config.settings import Settings, get_settings
from src.data.storage import EngineStorage
from src.models.efficiency_profile import (
    EfficiencyProfileBuilder,
    GamePerformanceRecord,
    TeamEfficiencyProfile,
)
from src.utils.clock import Clock, utc_now

logger = logging.getLogger(__name__)

# matchup category -> (team-game stat column, offensive profile field, defensive profile field)
ITERATED_CATEGORIES = {
    "total_yards": ("total_yards", "total_offense_efficiency", "total_defense_efficiency"),
    "passing_yards": ("passing_yards", "passing_offense_efficiency", "passing_defense_efficiency"),
    "rushing_yards": ("rushing_yards", "rushing_offense_efficiency", "rushing_defense_efficiency"),
    "scoring": ("points", "scoring_offense_efficiency", "scoring_defense_efficiency"),
}

# Box-score column aliases accepted from the stats feed
STAT_ALIASES = {
    "net_passing_yards": "passing_yards",
}


@dataclass
class SeasonRecalculationResult:
    """Outcome of a season-wide recalculation."""

    season: int
    profiles: dict[int, TeamEfficiencyProfile] = field(default_factory=dict)
    records: dict[int, list[GamePerformanceRecord]] = field(default_factory=dict)
    iterations: int = 0
    converged: bool = False
    max_change: float = float("inf")

    def __repr__(self) -> str:
        return (
            f"SeasonRecalculationResult(season={self.season}, teams={len(self.profiles)}, "
            f"iterations={self.iterations}, converged={self.converged}, "
            f"max_change={self.max_change:.5f})"
        )


class SeasonEfficiencyEngine:
    """Fixed-point recalculation of every team profile in a season."""

    def __init__(
        self,
        storage: EngineStorage,
        settings: Optional[Settings] = None,
        clock: Clock = utc_now,
        builder: Optional[EfficiencyProfileBuilder] = None,
    ):
        """Initialize the engine.

        Args:
            storage: Storage port for games, box scores and profiles
            settings: Loop tolerance, iteration cap and adjustment factor
            clock: Timestamp source passed to the profile builder
            builder: Profile builder (default: one sharing settings and clock)
        """
        self.storage = storage
        self.settings = settings or get_settings()
        self.builder = builder or EfficiencyProfileBuilder(self.settings, clock)

    # =========================================================================
    # Public API
    # =========================================================================

    def calculate_season(self, season: int, use_prior: bool = True) -> SeasonRecalculationResult:
        """Run the convergence loop for a season without writing anything.

        Args:
            season: Season year
            use_prior: Blend sparse teams with last season's stored profiles

        Returns:
            SeasonRecalculationResult with final profiles and records
        """
        frame = self.build_performance_frame(season)
        result = SeasonRecalculationResult(season=season)
        if frame.empty:
            logger.warning(f"No completed games with box scores for season {season}")
            result.converged = True
            result.max_change = 0.0
            return result

        teams = sorted(frame["team_id"].unique())
        offense = pd.DataFrame(0.0, index=teams, columns=list(ITERATED_CATEGORIES))
        defense = pd.DataFrame(0.0, index=teams, columns=list(ITERATED_CATEGORIES))

        tolerance = self.settings.convergence_tolerance
        records: dict[int, list[GamePerformanceRecord]] = {}
        profiles: dict[int, TeamEfficiencyProfile] = {}

        for iteration in range(1, self.settings.max_convergence_iterations + 1):
            allowed_base, gained_base = self._baselines(frame, offense, defense)
            records = self._build_records(frame, allowed_base, gained_base)
            profiles = {
                team_id: self.builder.build_profile(team_records)
                for team_id, team_records in records.items()
            }

            new_offense, new_defense = self._efficiency_tables(profiles, teams)
            per_team_change = np.maximum(
                (new_offense - offense).abs().max(axis=1),
                (new_defense - defense).abs().max(axis=1),
            )
            max_change = float(per_team_change.max())
            settled_fraction = float((per_team_change < tolerance).mean())
            offense, defense = new_offense, new_defense

            logger.debug(
                f"Season {season} iteration {iteration}: max_change={max_change:.6f}, "
                f"settled={settled_fraction:.1%}"
            )

            result.iterations = iteration
            result.max_change = max_change
            if (
                max_change < tolerance
                and settled_fraction >= self.settings.converged_team_fraction
            ) or max_change < tolerance * 0.1:
                result.converged = True
                break

        if not result.converged:
            logger.warning(
                f"Season {season} did not converge after {result.iterations} iterations "
                f"(max_change={result.max_change:.6f}); using last iterate"
            )
        else:
            logger.info(
                f"Season {season} converged in {result.iterations} iterations "
                f"({len(teams)} teams)"
            )

        if use_prior:
            profiles = {
                team_id: self._with_prior(team_id, season, team_records)
                for team_id, team_records in records.items()
            }

        result.records = records
        result.profiles = profiles
        return result

    def recalculate_season(self, season: int, use_prior: bool = True) -> SeasonRecalculationResult:
        """Recalculate and persist every team profile in a season.

        Each profile is written on its own, so an interruption leaves
        previously written teams intact. Write failures propagate.
        """
        result = self.calculate_season(season, use_prior=use_prior)
        for team_id in sorted(result.profiles):
            self.storage.save_profile(result.profiles[team_id])
        logger.info(f"Saved {len(result.profiles)} efficiency profiles for season {season}")
        return result

    def recalculate_team(
        self, team_id: int, season: int, use_prior: bool = True
    ) -> TeamEfficiencyProfile:
        """Recalculate and persist a single team's profile.

        Baselines need the whole season, so the full loop runs; only the
        requested team is written.

        Raises:
            ValueError: If the team has no completed games in the season
        """
        result = self.calculate_season(season, use_prior=use_prior)
        profile = result.profiles.get(team_id)
        if profile is None:
            raise ValueError(f"Team {team_id} has no completed games in season {season}")
        self.storage.save_profile(profile)
        return profile

    def load_profile(self, team_id: int, season: int) -> Optional[TeamEfficiencyProfile]:
        """Stored profile, or None when missing or unreadable."""
        try:
            return self.storage.get_profile(team_id, season)
        except Exception as e:
            logger.warning(f"Profile read failed for team {team_id} season {season}: {e}")
            return None

    # =========================================================================
    # Frame construction
    # =========================================================================

    def build_performance_frame(self, season: int) -> pd.DataFrame:
        """One row per (game, team) with gained and allowed stats side by side."""
        games = self.storage.get_games(season)
        stats = self.storage.get_team_game_stats(season).rename(columns=STAT_ALIASES)
        if games.empty or stats.empty:
            return pd.DataFrame()

        games = games[games["completed"].astype(bool)]
        games = games.dropna(subset=["home_points", "away_points"])

        home = games.rename(columns={
            "home_team_id": "team_id", "away_team_id": "opponent_id",
            "home_points": "points", "away_points": "points_allowed",
        })
        away = games.rename(columns={
            "away_team_id": "team_id", "home_team_id": "opponent_id",
            "away_points": "points", "home_points": "points_allowed",
        })
        sides = pd.concat([home, away], ignore_index=True)[
            ["game_id", "season", "week", "team_id", "opponent_id", "points", "points_allowed"]
        ]

        stat_columns = [
            "game_id", "team_id", "total_yards", "passing_yards", "rushing_yards",
            "turnovers", "sacks", "field_goals_made", "field_goals_attempted",
        ]
        missing = [c for c in stat_columns if c not in stats.columns]
        if missing:
            raise ValueError(f"Team game stats missing columns: {missing}")
        team_stats = stats[stat_columns]

        frame = sides.merge(team_stats, on=["game_id", "team_id"], how="inner")
        opponent_stats = team_stats.rename(columns={
            "team_id": "opponent_id",
            "total_yards": "yards_allowed",
            "passing_yards": "passing_yards_allowed",
            "rushing_yards": "rushing_yards_allowed",
            "turnovers": "turnovers_forced",
            "sacks": "sacks_allowed",
        })[[
            "game_id", "opponent_id", "yards_allowed", "passing_yards_allowed",
            "rushing_yards_allowed", "turnovers_forced", "sacks_allowed",
        ]]
        frame = frame.merge(opponent_stats, on=["game_id", "opponent_id"], how="inner")

        numeric = frame.columns.difference(["game_id", "season", "week", "team_id", "opponent_id"])
        frame[numeric] = frame[numeric].apply(pd.to_numeric, errors="coerce").fillna(0.0)
        return frame.sort_values(["team_id", "week", "game_id"]).reset_index(drop=True)

    # =========================================================================
    # Loop internals
    # =========================================================================

    def _baselines(
        self, frame: pd.DataFrame, offense: pd.DataFrame, defense: pd.DataFrame
    ) -> tuple[pd.DataFrame, pd.DataFrame]:
        """Per-team typical allowed and typical gained, schedule-corrected."""
        k = self.settings.opponent_adjustment_factor
        allowed_cols = {
            "total_yards": "yards_allowed",
            "passing_yards": "passing_yards_allowed",
            "rushing_yards": "rushing_yards_allowed",
            "scoring": "points_allowed",
        }
        grouped = frame.groupby("team_id")
        allowed = pd.DataFrame(index=offense.index)
        gained = pd.DataFrame(index=offense.index)
        for category, (gained_col, _, _) in ITERATED_CATEGORIES.items():
            faced_offense = frame["opponent_id"].map(offense[category])
            faced_defense = frame["opponent_id"].map(defense[category])
            allowed[category] = (
                grouped[allowed_cols[category]].mean()
                - k * faced_offense.groupby(frame["team_id"]).mean()
            )
            gained[category] = (
                grouped[gained_col].mean()
                + k * faced_defense.groupby(frame["team_id"]).mean()
            )
        return allowed, gained

    def _build_records(
        self, frame: pd.DataFrame, allowed: pd.DataFrame, gained: pd.DataFrame
    ) -> dict[int, list[GamePerformanceRecord]]:
        records: dict[int, list[GamePerformanceRecord]] = {}
        for row in frame.itertuples(index=False):
            opp = row.opponent_id
            record = GamePerformanceRecord.create(
                game_id=int(row.game_id),
                team_id=int(row.team_id),
                opponent_id=int(opp),
                season=int(row.season),
                week=int(row.week) if pd.notna(row.week) else None,
                total_yards=float(row.total_yards),
                passing_yards=float(row.passing_yards),
                rushing_yards=float(row.rushing_yards),
                points_scored=float(row.points),
                turnovers=float(row.turnovers),
                sacks=float(row.sacks),
                field_goals_made=float(row.field_goals_made),
                field_goals_attempted=float(row.field_goals_attempted),
                opponent_typical_yards_allowed=float(allowed.at[opp, "total_yards"]),
                opponent_typical_passing_yards_allowed=float(allowed.at[opp, "passing_yards"]),
                opponent_typical_rushing_yards_allowed=float(allowed.at[opp, "rushing_yards"]),
                opponent_typical_points_allowed=float(allowed.at[opp, "scoring"]),
                yards_allowed=float(row.yards_allowed),
                passing_yards_allowed=float(row.passing_yards_allowed),
                rushing_yards_allowed=float(row.rushing_yards_allowed),
                points_allowed=float(row.points_allowed),
                turnovers_forced=float(row.turnovers_forced),
                sacks_allowed=float(row.sacks_allowed),
                opponent_typical_yards_gained=float(gained.at[opp, "total_yards"]),
                opponent_typical_passing_yards_gained=float(gained.at[opp, "passing_yards"]),
                opponent_typical_rushing_yards_gained=float(gained.at[opp, "rushing_yards"]),
                opponent_typical_points_scored=float(gained.at[opp, "scoring"]),
            )
            records.setdefault(record.team_id, []).append(record)
        return records

    @staticmethod
    def _efficiency_tables(
        profiles: dict[int, TeamEfficiencyProfile], teams: list[int]
    ) -> tuple[pd.DataFrame, pd.DataFrame]:
        offense = pd.DataFrame(0.0, index=teams, columns=list(ITERATED_CATEGORIES))
        defense = pd.DataFrame(0.0, index=teams, columns=list(ITERATED_CATEGORIES))
        for team_id, profile in profiles.items():
            for category, (_, off_field, def_field) in ITERATED_CATEGORIES.items():
                offense.at[team_id, category] = getattr(profile, off_field)
                defense.at[team_id, category] = getattr(profile, def_field)
        return offense, defense

    def _with_prior(
        self, team_id: int, season: int, records: list[GamePerformanceRecord]
    ) -> TeamEfficiencyProfile:
        prior = None
        if len(records) < self.settings.medium_confidence_min_games:
            prior = self.load_profile(team_id, season - 1)
        return self.builder.build_profile(records, prior_profile=prior)
