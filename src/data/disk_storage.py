"""File-backed implementation of the engine storage port.

Layout under the root directory::

    teams.json                      {team_id: name}
    games.parquet                   all seasons, GAME_COLUMNS
    team_game_stats.parquet         per-team box-score rows
    profiles/<season>/<team>.json   one TeamEfficiencyProfile per file
    weights/<season>.json           WeightChangeLog entries, oldest first
    regression/<season>.json        RegressionAnalysisResult rows, oldest first

Tabular data goes through Polars/parquet, everything else is JSON. Read
failures are logged and treated as missing data; write failures raise
StorageError. Appending to a log file that no longer parses also raises,
leaving the file as it was.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Optional

import pandas as pd
import polars as pl

from src.data.storage import GAME_COLUMNS, EngineStorage, StorageError
from src.models.efficiency_profile import TeamEfficiencyProfile
from src.models.weights import RegressionAnalysisResult, WeightChangeLog

logger = logging.getLogger(__name__)


class DiskStorage(EngineStorage):
    """Parquet + JSON storage rooted at a directory."""

    def __init__(self, root_dir: str = "data/engine"):
        """Initialize the storage.

        Args:
            root_dir: Directory holding all files (created if missing)
        """
        self.root = Path(root_dir)
        self.root.mkdir(parents=True, exist_ok=True)
        self._teams: Optional[dict[int, str]] = None
        logger.debug(f"Initialized disk storage at {self.root.absolute()}")

    # =========================================================================
    # Raw data
    # =========================================================================

    def get_team_name(self, team_id: int) -> Optional[str]:
        if self._teams is None:
            raw = self._read_json(self.root / "teams.json") or {}
            self._teams = {int(k): v for k, v in raw.items()}
        return self._teams.get(int(team_id))

    def save_teams(self, teams: dict[int, str]) -> None:
        self._write_json(self.root / "teams.json", {str(k): v for k, v in teams.items()})
        self._teams = {int(k): v for k, v in teams.items()}

    def get_games(self, season: int) -> pd.DataFrame:
        games = self._read_table(self.root / "games.parquet")
        if games is None or games.empty:
            return pd.DataFrame(columns=GAME_COLUMNS)
        return games[games["season"] == season].reset_index(drop=True)

    def save_games(self, games: pd.DataFrame) -> None:
        self._write_table(self.root / "games.parquet", games)

    def get_team_game_stats(self, season: int) -> pd.DataFrame:
        stats = self._read_table(self.root / "team_game_stats.parquet")
        if stats is None or stats.empty:
            return pd.DataFrame()
        if "season" not in stats.columns:
            return stats
        return stats[stats["season"] == season].reset_index(drop=True)

    def save_team_game_stats(self, stats: pd.DataFrame) -> None:
        self._write_table(self.root / "team_game_stats.parquet", stats)

    # =========================================================================
    # Profiles
    # =========================================================================

    def _profile_path(self, team_id: int, season: int) -> Path:
        return self.root / "profiles" / str(season) / f"{team_id}.json"

    def get_profile(self, team_id: int, season: int) -> Optional[TeamEfficiencyProfile]:
        data = self._read_json(self._profile_path(team_id, season))
        if data is None:
            return None
        try:
            return TeamEfficiencyProfile.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Malformed profile for team {team_id} season {season}: {e}")
            return None

    def save_profile(self, profile: TeamEfficiencyProfile) -> None:
        self._write_json(self._profile_path(profile.team_id, profile.season), profile.to_dict())

    # =========================================================================
    # Weight history and regression analyses (append-only)
    # =========================================================================

    def get_weight_history(self, season: int) -> list[WeightChangeLog]:
        rows = self._read_json(self.root / "weights" / f"{season}.json") or []
        return [WeightChangeLog.from_dict(row) for row in rows]

    def append_weight_change(self, entry: WeightChangeLog) -> None:
        self._append_json(self.root / "weights" / f"{entry.season}.json", entry.to_dict())

    def get_regression_analyses(self, season: int) -> list[RegressionAnalysisResult]:
        rows = self._read_json(self.root / "regression" / f"{season}.json") or []
        return [RegressionAnalysisResult.from_dict(row) for row in rows]

    def save_regression_analysis(self, analysis: RegressionAnalysisResult) -> None:
        self._append_json(self.root / "regression" / f"{analysis.season}.json", analysis.to_dict())

    # =========================================================================
    # File helpers
    # =========================================================================

    def _append_json(self, path: Path, row: dict) -> None:
        """Append one row to a JSON list file.

        An existing file that cannot be parsed is left untouched and the
        append fails, so earlier rows are never overwritten.
        """
        rows: list = []
        if path.exists():
            try:
                with open(path, "r") as f:
                    rows = json.load(f)
            except (OSError, ValueError) as e:
                raise StorageError(f"Refusing to append to unreadable log {path}: {e}") from e
            if not isinstance(rows, list):
                raise StorageError(f"Refusing to append to {path}: expected a JSON list")
        rows.append(row)
        self._write_json(path, rows)

    def _read_json(self, path: Path) -> Optional[Any]:
        if not path.exists():
            return None
        try:
            with open(path, "r") as f:
                return json.load(f)
        except Exception as e:
            logger.warning(f"Storage read failed for {path}: {e}")
            return None

    def _write_json(self, path: Path, data: Any) -> None:
        # Readers never see a partially written file
        tmp = path.with_suffix(path.suffix + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp, "w") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp, path)
        except (OSError, TypeError, ValueError) as e:
            raise StorageError(f"Storage write failed for {path}: {e}") from e
        logger.debug(f"Storage SAVE: {path}")

    def _read_table(self, path: Path) -> Optional[pd.DataFrame]:
        if not path.exists():
            return None
        try:
            return pl.read_parquet(path).to_pandas()
        except Exception as e:
            logger.warning(f"Storage read failed for {path}: {e}")
            return None

    def _write_table(self, path: Path, df: pd.DataFrame) -> None:
        tmp = path.with_suffix(path.suffix + ".tmp")
        try:
            pl.from_pandas(df).write_parquet(tmp)
            os.replace(tmp, path)
        except Exception as e:
            raise StorageError(f"Storage write failed for {path}: {e}") from e
        logger.debug(f"Storage SAVE: {path} ({len(df)} rows)")
