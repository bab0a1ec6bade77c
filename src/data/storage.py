"""Storage port for the efficiency engine and an in-memory implementation.

The engine never talks to a database directly. Every manager and validator
receives an ``EngineStorage`` instance; production code plugs in a real
adapter (see ``disk_storage.DiskStorage``), tests use ``InMemoryStorage``.

Tabular reads return pandas DataFrames:

- games: ``game_id, season, week, home_team_id, away_team_id, home_points,
  away_points, completed`` (plus optional ``start_date``)
- team game stats: one row per (``game_id``, ``team_id``) with box-score
  columns such as ``total_yards``, ``net_passing_yards``, ``rushing_yards``,
  ``turnovers``, ``sacks``, ``field_goals_made``, ``field_goals_attempted``
  and the advanced ``off_*``/``def_*`` metrics

Profiles, weight-change logs and regression analyses are passed through as
the dataclasses defined in ``src.models``.
"""

import copy
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

import pandas as pd

logger = logging.getLogger(__name__)

GAME_COLUMNS = [
    "game_id",
    "season",
    "week",
    "home_team_id",
    "away_team_id",
    "home_points",
    "away_points",
    "completed",
]


class StorageError(Exception):
    """Raised when the storage layer cannot complete a read or write."""


class EngineStorage(ABC):
    """Read/write contract the engine depends on."""

    # Raw data (read-only for the engine)

    @abstractmethod
    def get_team_name(self, team_id: int) -> Optional[str]:
        """Team display name, or None if the team does not exist."""

    @abstractmethod
    def get_games(self, season: int) -> pd.DataFrame:
        """All scheduled/finished games of a season."""

    @abstractmethod
    def get_team_game_stats(self, season: int) -> pd.DataFrame:
        """Per-team box-score rows for a season."""

    # Efficiency profiles, keyed by (team_id, season), full overwrite

    @abstractmethod
    def get_profile(self, team_id: int, season: int) -> Optional[Any]:
        """Stored TeamEfficiencyProfile, or None."""

    @abstractmethod
    def save_profile(self, profile: Any) -> None:
        """Overwrite the TeamEfficiencyProfile for its (team_id, season)."""

    # Weight history, keyed by season, append-only

    @abstractmethod
    def get_weight_history(self, season: int) -> list:
        """WeightChangeLog entries in insertion order (oldest first)."""

    @abstractmethod
    def append_weight_change(self, entry: Any) -> None:
        """Append a WeightChangeLog entry."""

    # Regression analyses, keyed by season, append-only

    @abstractmethod
    def get_regression_analyses(self, season: int) -> list:
        """RegressionAnalysisResult rows in insertion order (oldest first)."""

    @abstractmethod
    def save_regression_analysis(self, analysis: Any) -> None:
        """Append a RegressionAnalysisResult (written by the external regression step)."""


class InMemoryStorage(EngineStorage):
    """Dictionary-backed storage for tests and ad-hoc runs.

    Stored objects are deep-copied on the way in and out so callers can
    never mutate persisted state by accident.
    """

    def __init__(
        self,
        teams: Optional[dict[int, str]] = None,
        games: Optional[pd.DataFrame] = None,
        team_game_stats: Optional[pd.DataFrame] = None,
    ):
        self.teams = dict(teams or {})
        self.games = games if games is not None else pd.DataFrame(columns=GAME_COLUMNS)
        self.team_game_stats = (
            team_game_stats if team_game_stats is not None else pd.DataFrame()
        )
        self._profiles: dict[tuple[int, int], Any] = {}
        self._weight_history: dict[int, list] = {}
        self._regression: dict[int, list] = {}

    def get_team_name(self, team_id: int) -> Optional[str]:
        return self.teams.get(team_id)

    def get_games(self, season: int) -> pd.DataFrame:
        if self.games.empty:
            return self.games.copy()
        return self.games[self.games["season"] == season].reset_index(drop=True)

    def get_team_game_stats(self, season: int) -> pd.DataFrame:
        if self.team_game_stats.empty or "season" not in self.team_game_stats:
            return self.team_game_stats.copy()
        stats = self.team_game_stats
        return stats[stats["season"] == season].reset_index(drop=True)

    def get_profile(self, team_id: int, season: int) -> Optional[Any]:
        profile = self._profiles.get((team_id, season))
        return copy.deepcopy(profile)

    def save_profile(self, profile: Any) -> None:
        self._profiles[(profile.team_id, profile.season)] = copy.deepcopy(profile)

    def get_weight_history(self, season: int) -> list:
        return copy.deepcopy(self._weight_history.get(season, []))

    def append_weight_change(self, entry: Any) -> None:
        self._weight_history.setdefault(entry.season, []).append(copy.deepcopy(entry))

    def get_regression_analyses(self, season: int) -> list:
        return copy.deepcopy(self._regression.get(season, []))

    def save_regression_analysis(self, analysis: Any) -> None:
        self._regression.setdefault(analysis.season, []).append(copy.deepcopy(analysis))
