"""Raw game data quality checks.

Each sampled game is checked for basic schedule sanity, box-score
completeness across three field tiers, and cross-field consistency of the
box-score values. A season passes when at least 70% of the sampled games
pass individually.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

import pandas as pd

from src.validation.base import BaseValidator
from src.validation.results import Severity, ValidationResult

logger = logging.getLogger(__name__)

# Missing -> error
CRITICAL_FIELDS = (
    "net_passing_yards",
    "rushing_yards",
    "total_yards",
    "first_downs",
    "turnovers",
    "possession_time",
    "third_down_eff",
)
# Missing -> warning
IMPORTANT_FIELDS = (
    "completion_attempts",
    "passing_tds",
    "rushing_attempts",
    "rushing_tds",
    "fumbles_lost",
    "interceptions_thrown",
    "sacks",
    "tackles_for_loss",
)
# Missing -> warning, not counted against the game
ADVANCED_FIELDS = (
    "off_ppa",
    "off_success_rate",
    "off_explosiveness",
    "def_ppa",
    "def_success_rate",
    "def_explosiveness",
)

# Alternate column names accepted for a field
FIELD_ALIASES = {"net_passing_yards": ("net_passing_yards", "passing_yards")}

# (field, low, high, error code, severity or None for warning)
RANGE_CHECKS = (
    ("net_passing_yards", -50, 800, "INVALID_PASSING_YARDS", Severity.MEDIUM),
    ("rushing_yards", -50, 600, "INVALID_RUSHING_YARDS", Severity.MEDIUM),
    ("turnovers", 0, 10, "INVALID_TURNOVERS", Severity.MEDIUM),
    ("first_downs", 0, 50, "INVALID_FIRST_DOWNS", Severity.MEDIUM),
    ("off_ppa", -2.0, 2.0, "INVALID_PPA", None),
    ("def_ppa", -2.0, 2.0, "INVALID_PPA", None),
    ("off_success_rate", 0.0, 1.0, "INVALID_SUCCESS_RATE", None),
    ("def_success_rate", 0.0, 1.0, "INVALID_SUCCESS_RATE", None),
)

TOTAL_YARDS_TOLERANCE = 50
MIN_SEASON = 2000
WEEK_RANGE = (1, 20)
SAMPLE_SIZE = 10
MIN_VALID_GAME_RATE = 70.0
CONSISTENCY_RECOMMENDATION_THRESHOLD = 90.0

COMPLETENESS_SHARE = 0.3
VALIDITY_SHARE = 0.5
CONSISTENCY_SHARE = 0.2


@dataclass
class InvalidValue:
    """A field whose value failed a range or consistency check."""

    field: str
    value: Any
    reason: str


@dataclass
class DataQualityMetrics:
    completeness_score: float = 0.0
    consistency_score: float = 0.0
    validity_score: float = 0.0
    overall_score: float = 0.0
    games_analyzed: int = 0
    fields_checked: int = 0
    issues_found: int = 0


@dataclass
class DataValidationResult(ValidationResult):
    """Data-quality result for one game or a sampled season."""

    data_completeness: float = 0.0
    data_consistency: float = 0.0
    missing_fields: list[str] = field(default_factory=list)
    invalid_values: list[InvalidValue] = field(default_factory=list)
    quality_metrics: DataQualityMetrics = field(default_factory=DataQualityMetrics)
    game_results: list["DataValidationResult"] = field(default_factory=list)
    kind: str = field(default="data_pipeline", init=False)


def calculate_quality_score(completeness: float, validity: float, consistency: float) -> float:
    """Weighted blend of the three data-quality sub-scores."""
    return round(
        completeness * COMPLETENESS_SHARE
        + validity * VALIDITY_SHARE
        + consistency * CONSISTENCY_SHARE
    )


def _is_missing(value) -> bool:
    return value is None or (not isinstance(value, str) and bool(pd.isna(value)))


def _field_value(row: pd.Series, name: str):
    for column in FIELD_ALIASES.get(name, (name,)):
        if column in row.index and not _is_missing(row[column]):
            return row[column]
    return None


class DataPipelineValidator(BaseValidator):
    """Validate raw game and box-score data for a season."""

    component = "data_pipeline"
    result_class = DataValidationResult

    def validate_game(self, game_id: int, season: int) -> DataValidationResult:
        """Validate a single game and both teams' box scores."""
        result = self.create_result()
        games = self.storage.get_games(season)
        match = games[games["game_id"] == game_id] if not games.empty else games
        if match.empty:
            result.add_error("GAME_NOT_FOUND", f"Game with ID {game_id} not found", Severity.CRITICAL)
            return result
        stats = self.storage.get_team_game_stats(season)
        self._check_game(match.iloc[0], stats, result)
        return result

    def _run(self, season: int, result: DataValidationResult) -> None:
        games = self.storage.get_games(season)
        if games.empty:
            result.add_error("NO_SEASON_DATA", f"No games found for season {season}", Severity.CRITICAL)
            return

        if "completed" in games.columns:
            games = games[games["completed"].fillna(False).astype(bool)]
        if games.empty:
            result.add_error(
                "NO_COMPLETED_GAMES",
                f"No completed games found for season {season}",
                Severity.CRITICAL,
            )
            return

        stats = self.storage.get_team_game_stats(season)
        sort_cols = [c for c in ("week", "game_id") if c in games.columns]
        sample = games.sort_values(sort_cols).head(SAMPLE_SIZE)
        logger.info(f"Validating {len(sample)} of {len(games)} games for season {season}")

        valid_games = 0
        total_quality = 0.0
        for _, game in sample.iterrows():
            game_result = self.create_result()
            try:
                self._check_game(game, stats, game_result)
            except Exception as e:
                logger.warning(f"Failed to validate game {game.get('game_id')}: {e}")
                game_result.add_error(
                    "GAME_VALIDATION_ERROR", f"Failed to validate game data: {e}", Severity.CRITICAL
                )
            result.game_results.append(game_result)
            if game_result.is_valid:
                valid_games += 1
            total_quality += game_result.score

        sample_size = len(sample)
        validation_rate = valid_games / sample_size * 100
        avg_quality = total_quality / sample_size

        result.data_completeness = validation_rate
        result.data_consistency = avg_quality
        result.quality_metrics = DataQualityMetrics(
            completeness_score=validation_rate,
            consistency_score=avg_quality,
            validity_score=avg_quality,
            overall_score=avg_quality,
            games_analyzed=sample_size,
            fields_checked=sum(g.quality_metrics.fields_checked for g in result.game_results),
            issues_found=sample_size - valid_games,
        )
        result.set_score(round(avg_quality))

        if validation_rate >= MIN_VALID_GAME_RATE:
            result.add_recommendation(
                f"Data quality validation passed for {valid_games}/{sample_size} sample games"
            )
        else:
            result.add_error(
                "LOW_DATA_QUALITY",
                f"Only {valid_games}/{sample_size} games passed validation",
                Severity.HIGH,
                {"validation_rate": validation_rate},
            )
        logger.info(
            f"Season {season} data check: {validation_rate:.0f}% valid games, "
            f"{avg_quality:.1f} avg quality"
        )

    # =========================================================================
    # Per-game checks
    # =========================================================================

    def _check_game(self, game: pd.Series, stats: pd.DataFrame, result: DataValidationResult) -> None:
        self._check_basic_info(game, result)
        game_stats = (
            stats[stats["game_id"] == game["game_id"]]
            if not stats.empty and "game_id" in stats.columns
            else pd.DataFrame()
        )
        self._check_completeness(game_stats, game, result)
        self._check_consistency(game_stats, game, result)

        metrics = result.quality_metrics
        metrics.games_analyzed = 1
        metrics.validity_score = max(0, 100 - len(result.errors) * 10 - len(result.warnings) * 2)
        metrics.overall_score = calculate_quality_score(
            metrics.completeness_score, metrics.validity_score, metrics.consistency_score
        )
        result.set_score(metrics.overall_score)

    def _check_basic_info(self, game: pd.Series, result: DataValidationResult) -> None:
        for name in ("season", "week", "home_team_id", "away_team_id"):
            if name not in game.index or _is_missing(game[name]):
                result.missing_fields.append(name)
                result.add_error(
                    "MISSING_FIELD", f"Required field '{name}' is missing from game data", Severity.HIGH
                )

        season = _field_value(game, "season")
        max_season = self.clock().year + 1
        if season is not None and not MIN_SEASON <= season <= max_season:
            result.invalid_values.append(
                InvalidValue(
                    "season",
                    season,
                    f"Season {season} is outside reasonable range ({MIN_SEASON}-{max_season})",
                )
            )
            result.add_error("INVALID_SEASON", f"Season {season} is outside reasonable range", Severity.MEDIUM)

        week = _field_value(game, "week")
        low, high = WEEK_RANGE
        if week is not None and not low <= week <= high:
            reason = f"week ({week}) is outside {low}-{high}"
            result.invalid_values.append(InvalidValue("week", week, reason))
            result.add_error("INVALID_WEEK", reason, Severity.MEDIUM)

        home = _field_value(game, "home_team_id")
        away = _field_value(game, "away_team_id")
        if home is not None and home == away:
            result.invalid_values.append(
                InvalidValue("team_ids", {"home": home, "away": away}, "Home and away team IDs are the same")
            )
            result.add_error("DUPLICATE_TEAMS", "Home and away team cannot be the same", Severity.CRITICAL)

    def _check_completeness(
        self, game_stats: pd.DataFrame, game: pd.Series, result: DataValidationResult
    ) -> None:
        if len(game_stats) != 2:
            result.add_error(
                "INCOMPLETE_BOX_SCORE",
                f"Expected box score stats for 2 teams, found {len(game_stats)}",
                Severity.CRITICAL,
            )
            return

        team_ids = set(game_stats["team_id"])
        if game["home_team_id"] not in team_ids:
            result.add_error("MISSING_HOME_STATS", "Box score statistics missing for home team", Severity.CRITICAL)
        if game["away_team_id"] not in team_ids:
            result.add_error("MISSING_AWAY_STATS", "Box score statistics missing for away team", Severity.CRITICAL)

        total_fields = 0
        present_fields = 0
        critical_missing = 0
        for _, row in game_stats.iterrows():
            side = "home" if row["team_id"] == game["home_team_id"] else "away"
            for name in CRITICAL_FIELDS + IMPORTANT_FIELDS + ADVANCED_FIELDS:
                total_fields += 1
                if _field_value(row, name) is not None:
                    present_fields += 1
                    continue
                if name in CRITICAL_FIELDS:
                    critical_missing += 1
                    result.missing_fields.append(f"{side}_{name}")
                    result.add_error(
                        "MISSING_CRITICAL_STAT",
                        f"Critical statistic '{name}' missing for {side} team",
                        Severity.HIGH,
                    )
                elif name in IMPORTANT_FIELDS:
                    result.missing_fields.append(f"{side}_{name}")
                    result.add_warning(
                        "MISSING_IMPORTANT_STAT", f"Important statistic '{name}' missing for {side} team"
                    )
                else:
                    result.add_warning(
                        "MISSING_ADVANCED_STAT", f"Advanced statistic '{name}' missing for {side} team"
                    )

        result.data_completeness = round(present_fields / total_fields * 100) if total_fields else 0
        result.quality_metrics.fields_checked = total_fields
        result.quality_metrics.completeness_score = result.data_completeness

        if result.data_completeness < self.settings.data_completeness_threshold:
            result.add_recommendation(
                f"Data completeness is below {self.settings.data_completeness_threshold:.0f}%. "
                "Consider improving data collection processes."
            )
        if critical_missing:
            result.add_recommendation(
                f"{critical_missing} critical statistics are missing. "
                "These are required for accurate predictions."
            )

    def _check_consistency(
        self, game_stats: pd.DataFrame, game: pd.Series, result: DataValidationResult
    ) -> None:
        total_checks = 0
        issues = 0
        for _, row in game_stats.iterrows():
            side = "home" if row["team_id"] == game["home_team_id"] else "away"

            for name, low, high, code, severity in RANGE_CHECKS:
                value = _field_value(row, name)
                if value is None:
                    continue
                total_checks += 1
                if low <= value <= high:
                    continue
                issues += 1
                reason = f"{name} ({value}) is outside {low}-{high}"
                result.invalid_values.append(InvalidValue(name, value, reason))
                if severity is None:
                    result.add_warning(code, f"{side} {reason}")
                else:
                    result.add_error(code, f"{side} {name} ({value}) is unreasonable", severity)

            total = _field_value(row, "total_yards")
            passing = _field_value(row, "net_passing_yards")
            rushing = _field_value(row, "rushing_yards")
            if total is not None and passing is not None and rushing is not None:
                total_checks += 1
                if abs(total - (passing + rushing)) > TOTAL_YARDS_TOLERANCE:
                    issues += 1
                    result.invalid_values.append(
                        InvalidValue(
                            "total_yards",
                            total,
                            f"Total yards ({total}) doesn't match sum of passing ({passing}) "
                            f"and rushing ({rushing})",
                        )
                    )
                    result.add_warning(
                        "INCONSISTENT_TOTAL_YARDS",
                        f"{side} total yards may be inconsistent with passing + rushing yards",
                    )

        result.data_consistency = (
            round((total_checks - issues) / total_checks * 100) if total_checks else 100
        )
        result.quality_metrics.consistency_score = result.data_consistency
        result.quality_metrics.issues_found += issues

        if result.data_consistency < CONSISTENCY_RECOMMENDATION_THRESHOLD:
            result.add_recommendation(
                "Statistical consistency is below 90%. Review data collection and validation processes."
            )

