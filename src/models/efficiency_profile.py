"""Opponent-relative team efficiency profiles.

A profile summarises one team's season as per-category efficiency deltas.
Every delta is measured against the specific opponent faced in that game
(what that opponent typically allows, or typically produces), never against
a league-wide average:

- offensive efficiency: how much more of a stat the team produced than its
  opponents typically allow
- defensive efficiency: how much less of a stat the team allowed than its
  opponents typically produce

Values stay in each category's own units (yards, points, turnovers, sacks,
field goals per game) so they can be added straight onto an opponent
baseline by the matchup model. Turnovers and sacks are oriented from the
offense's side (turnovers committed, sacks taken), so a positive offensive
value in those two categories is unfavourable.

Box scores carry no per-opponent baseline for turnovers, sacks or field
goals; those three use league constants instead.
"""

import logging
from dataclasses import asdict, dataclass, field, fields, replace
from datetime import datetime
from enum import Enum
from typing import Optional

import numpy as np
import pandas as pd

from config.settings import Settings, get_settings
from src.utils.clock import Clock, utc_now

logger = logging.getLogger(__name__)


class ConfidenceLevel(str, Enum):
    """Coarse reliability label for a profile or prediction."""

    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"

    @property
    def rank(self) -> int:
        return _CONFIDENCE_ORDER.index(self)

    def raised(self) -> "ConfidenceLevel":
        """One tier up, saturating at High."""
        return _CONFIDENCE_ORDER[min(self.rank + 1, len(_CONFIDENCE_ORDER) - 1)]

    @classmethod
    def lowest(cls, *levels: "ConfidenceLevel") -> "ConfidenceLevel":
        return min(levels, key=lambda level: level.rank)


_CONFIDENCE_ORDER = [ConfidenceLevel.LOW, ConfidenceLevel.MEDIUM, ConfidenceLevel.HIGH]

# Numeric value of each tier when combined with convergence scores
CONFIDENCE_VALUES = {
    ConfidenceLevel.HIGH: 1.0,
    ConfidenceLevel.MEDIUM: 0.7,
    ConfidenceLevel.LOW: 0.4,
}

# League constants for categories without a per-opponent baseline
LEAGUE_AVG_TURNOVERS = 1.2
LEAGUE_AVG_SACKS = 2.5
LEAGUE_AVG_FIELD_GOALS = 1.8

# What an unseen opponent is assumed to allow per game, keyed by matchup category
DEFAULT_TYPICAL_ALLOWED = {
    "total_yards": 400.0,
    "passing_yards": 250.0,
    "rushing_yards": 150.0,
    "scoring": 28.0,
    "turnovers": LEAGUE_AVG_TURNOVERS,
    "sacks": LEAGUE_AVG_SACKS,
    "field_goals": LEAGUE_AVG_FIELD_GOALS,
}

# (gained column, allowed column, opponent typical allowed, opponent typical gained)
_YARDAGE_COLUMNS = {
    "total_yards": (
        "total_yards", "yards_allowed",
        "opponent_typical_yards_allowed", "opponent_typical_yards_gained",
    ),
    "passing_yards": (
        "passing_yards", "passing_yards_allowed",
        "opponent_typical_passing_yards_allowed", "opponent_typical_passing_yards_gained",
    ),
    "rushing_yards": (
        "rushing_yards", "rushing_yards_allowed",
        "opponent_typical_rushing_yards_allowed", "opponent_typical_rushing_yards_gained",
    ),
    "scoring": (
        "points_scored", "points_allowed",
        "opponent_typical_points_allowed", "opponent_typical_points_scored",
    ),
}


@dataclass(frozen=True)
class GamePerformanceRecord:
    """One team's performance in one finished game.

    ``sacks`` are sacks made by this team's defense. The allowed-side fields
    hold the opponent's output in the same game; they are optional because
    not every data source pairs both box scores.
    """

    game_id: int
    team_id: int
    opponent_id: int
    season: int
    total_yards: float
    passing_yards: float
    rushing_yards: float
    points_scored: float
    turnovers: float
    sacks: float
    field_goals_made: float
    field_goals_attempted: float
    opponent_typical_yards_allowed: float
    opponent_typical_passing_yards_allowed: float
    opponent_typical_rushing_yards_allowed: float
    opponent_typical_points_allowed: float
    total_yards_efficiency: float = 0.0
    passing_yards_efficiency: float = 0.0
    rushing_yards_efficiency: float = 0.0
    scoring_efficiency: float = 0.0
    week: Optional[int] = None
    yards_allowed: Optional[float] = None
    passing_yards_allowed: Optional[float] = None
    rushing_yards_allowed: Optional[float] = None
    points_allowed: Optional[float] = None
    turnovers_forced: Optional[float] = None
    sacks_allowed: Optional[float] = None
    opponent_typical_yards_gained: Optional[float] = None
    opponent_typical_passing_yards_gained: Optional[float] = None
    opponent_typical_rushing_yards_gained: Optional[float] = None
    opponent_typical_points_scored: Optional[float] = None

    @classmethod
    def create(cls, **values) -> "GamePerformanceRecord":
        """Build a record and pre-compute its opponent-relative deltas."""
        record = cls(**values)
        return replace(
            record,
            total_yards_efficiency=record.total_yards - record.opponent_typical_yards_allowed,
            passing_yards_efficiency=(
                record.passing_yards - record.opponent_typical_passing_yards_allowed
            ),
            rushing_yards_efficiency=(
                record.rushing_yards - record.opponent_typical_rushing_yards_allowed
            ),
            scoring_efficiency=record.points_scored - record.opponent_typical_points_allowed,
        )

    @property
    def quality_score(self) -> float:
        """Total-yards delta relative to the opponent's baseline (0 if no baseline)."""
        baseline = self.opponent_typical_yards_allowed
        if baseline <= 0:
            return 0.0
        return (self.total_yards - baseline) / baseline


@dataclass
class TeamEfficiencyProfile:
    """Season efficiency profile for one team."""

    team_id: int
    season: int
    total_offense_efficiency: float = 0.0
    passing_offense_efficiency: float = 0.0
    rushing_offense_efficiency: float = 0.0
    scoring_offense_efficiency: float = 0.0
    total_defense_efficiency: float = 0.0
    passing_defense_efficiency: float = 0.0
    rushing_defense_efficiency: float = 0.0
    scoring_defense_efficiency: float = 0.0
    turnover_offense_efficiency: float = 0.0
    turnover_defense_efficiency: float = 0.0
    sack_offense_efficiency: float = 0.0
    sack_defense_efficiency: float = 0.0
    field_goal_efficiency: float = 0.0
    games_played: int = 0
    convergence_score: float = 0.5
    confidence_level: ConfidenceLevel = ConfidenceLevel.LOW
    last_calculated: Optional[datetime] = None
    typical_allowed: dict[str, float] = field(
        default_factory=lambda: dict(DEFAULT_TYPICAL_ALLOWED)
    )
    blended_with_prior: bool = False

    def efficiencies(self) -> dict[str, float]:
        return {name: getattr(self, name) for name in EFFICIENCY_FIELDS}

    def to_dict(self) -> dict:
        """Convert to a JSON-friendly dictionary."""
        data = asdict(self)
        data["confidence_level"] = self.confidence_level.value
        data["last_calculated"] = (
            self.last_calculated.isoformat() if self.last_calculated else None
        )
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "TeamEfficiencyProfile":
        values = dict(data)
        values["confidence_level"] = ConfidenceLevel(values["confidence_level"])
        if values.get("last_calculated"):
            values["last_calculated"] = datetime.fromisoformat(values["last_calculated"])
        return cls(**values)


EFFICIENCY_FIELDS = tuple(
    f.name for f in fields(TeamEfficiencyProfile) if f.name.endswith("_efficiency")
)


class EfficiencyProfileBuilder:
    """Turn a team's per-game records into a season efficiency profile."""

    MIN_GAMES_FOR_CONVERGENCE = 2
    NEUTRAL_CONVERGENCE = 0.5
    CONVERGENCE_FLOOR = 0.1
    CONVERGENCE_CEILING = 1.0

    def __init__(self, settings: Optional[Settings] = None, clock: Clock = utc_now):
        """Initialize the builder.

        Args:
            settings: Tier cutoffs, blend ratio and mirror factor (default: global settings)
            clock: Source of ``last_calculated`` timestamps
        """
        self.settings = settings or get_settings()
        self.clock = clock

    def confidence_for_games(self, games_played: int) -> ConfidenceLevel:
        """Map games played to a confidence tier."""
        if games_played >= self.settings.high_confidence_min_games:
            return ConfidenceLevel.HIGH
        if games_played >= self.settings.medium_confidence_min_games:
            return ConfidenceLevel.MEDIUM
        return ConfidenceLevel.LOW

    def build_profile(
        self,
        records: list[GamePerformanceRecord],
        prior_profile: Optional[TeamEfficiencyProfile] = None,
    ) -> TeamEfficiencyProfile:
        """Build a season profile from finished-game records.

        Args:
            records: Records for a single team and season
            prior_profile: Same team's previous-season profile, used only when
                the current sample is below the Medium cutoff

        Returns:
            Freshly computed TeamEfficiencyProfile

        Raises:
            ValueError: If records are empty or span several teams/seasons
        """
        if not records:
            raise ValueError("Cannot build an efficiency profile without game records")

        team_ids = {r.team_id for r in records}
        seasons = {r.season for r in records}
        if len(team_ids) > 1 or len(seasons) > 1:
            raise ValueError(
                f"Records must belong to one team and season "
                f"(teams={sorted(team_ids)}, seasons={sorted(seasons)})"
            )
        team_id, season = team_ids.pop(), seasons.pop()

        df = pd.DataFrame([asdict(r) for r in records])
        games_played = len(df)

        offense = {
            "total_yards": float(df["total_yards_efficiency"].mean()),
            "passing_yards": float(df["passing_yards_efficiency"].mean()),
            "rushing_yards": float(df["rushing_yards_efficiency"].mean()),
            "scoring": float(df["scoring_efficiency"].mean()),
        }
        defense = {
            category: self._defensive_efficiency(df, category, offense[category])
            for category in _YARDAGE_COLUMNS
        }

        profile = TeamEfficiencyProfile(
            team_id=team_id,
            season=season,
            total_offense_efficiency=offense["total_yards"],
            passing_offense_efficiency=offense["passing_yards"],
            rushing_offense_efficiency=offense["rushing_yards"],
            scoring_offense_efficiency=offense["scoring"],
            total_defense_efficiency=defense["total_yards"],
            passing_defense_efficiency=defense["passing_yards"],
            rushing_defense_efficiency=defense["rushing_yards"],
            scoring_defense_efficiency=defense["scoring"],
            turnover_offense_efficiency=float(df["turnovers"].mean()) - LEAGUE_AVG_TURNOVERS,
            turnover_defense_efficiency=LEAGUE_AVG_TURNOVERS
            - _mean_or(df["turnovers_forced"], LEAGUE_AVG_TURNOVERS),
            sack_offense_efficiency=_mean_or(df["sacks_allowed"], LEAGUE_AVG_SACKS)
            - LEAGUE_AVG_SACKS,
            sack_defense_efficiency=LEAGUE_AVG_SACKS - float(df["sacks"].mean()),
            field_goal_efficiency=float(df["field_goals_made"].mean()) - LEAGUE_AVG_FIELD_GOALS,
            games_played=games_played,
            convergence_score=self.calculate_convergence_score(records),
            confidence_level=self.confidence_for_games(games_played),
            last_calculated=self.clock(),
            typical_allowed=self._typical_allowed(df),
        )

        self._warn_on_extremes(profile)

        if games_played < self.settings.medium_confidence_min_games and prior_profile is not None:
            profile = self.blend_with_prior(profile, prior_profile)

        logger.debug(
            f"Built profile team={team_id} season={season}: {games_played} games, "
            f"{profile.confidence_level.value} confidence, "
            f"convergence={profile.convergence_score:.3f}"
        )
        return profile

    def blend_with_prior(
        self, current: TeamEfficiencyProfile, prior: TeamEfficiencyProfile
    ) -> TeamEfficiencyProfile:
        """Blend a sparse current-season profile with last season's profile.

        Every efficiency and typical-allowed value becomes
        ``current_weight * current + prior_weight * prior``. The tier moves up
        one step when the prior profile is more reliable than the current one.
        """
        if prior.team_id != current.team_id:
            raise ValueError(
                f"Prior profile belongs to team {prior.team_id}, not {current.team_id}"
            )

        w_cur = self.settings.current_season_blend_weight
        w_prior = self.settings.prior_season_blend_weight

        blended = {
            name: w_cur * getattr(current, name) + w_prior * getattr(prior, name)
            for name in EFFICIENCY_FIELDS
        }
        typical_allowed = {
            category: w_cur * value + w_prior * prior.typical_allowed.get(category, value)
            for category, value in current.typical_allowed.items()
        }

        level = current.confidence_level
        if prior.confidence_level.rank > level.rank:
            level = level.raised()

        logger.debug(
            f"Blended team {current.team_id} season {current.season} with prior "
            f"season {prior.season} ({w_cur:.2f}/{w_prior:.2f}), tier {level.value}"
        )
        return replace(
            current,
            **blended,
            typical_allowed=typical_allowed,
            confidence_level=level,
            blended_with_prior=True,
        )

    def calculate_convergence_score(self, records: list[GamePerformanceRecord]) -> float:
        """Consistency of per-game quality scores, clamped to [0.1, 1.0]."""
        if len(records) < self.MIN_GAMES_FOR_CONVERGENCE:
            return self.NEUTRAL_CONVERGENCE
        quality = np.array([r.quality_score for r in records], dtype=float)
        score = 1.0 - 2.0 * float(np.std(quality))
        return float(np.clip(score, self.CONVERGENCE_FLOOR, self.CONVERGENCE_CEILING))

    # =========================================================================
    # Internals
    # =========================================================================

    def _defensive_efficiency(self, df: pd.DataFrame, category: str, offense: float) -> float:
        _, allowed_col, _, typical_gained_col = _YARDAGE_COLUMNS[category]
        paired = df[[allowed_col, typical_gained_col]].dropna()
        if paired.empty:
            # No allowed-side stats: mirror the offensive delta
            return -offense * self.settings.defensive_mirror_factor
        return float((paired[typical_gained_col] - paired[allowed_col]).mean())

    @staticmethod
    def _typical_allowed(df: pd.DataFrame) -> dict[str, float]:
        allowed = dict(DEFAULT_TYPICAL_ALLOWED)
        for category, (_, allowed_col, _, _) in _YARDAGE_COLUMNS.items():
            allowed[category] = _mean_or(df[allowed_col], allowed[category])
        allowed["turnovers"] = _mean_or(df["turnovers_forced"], LEAGUE_AVG_TURNOVERS)
        allowed["sacks"] = _mean_or(df["sacks"], LEAGUE_AVG_SACKS)
        return allowed

    def _warn_on_extremes(self, profile: TeamEfficiencyProfile) -> None:
        threshold = self.settings.extreme_efficiency_threshold
        for name in ("scoring_offense_efficiency", "scoring_defense_efficiency"):
            value = getattr(profile, name)
            if abs(value) > threshold:
                logger.warning(
                    f"Extreme {name} for team {profile.team_id} season "
                    f"{profile.season}: {value:+.1f} points per game"
                )


def _mean_or(series: pd.Series, default: float) -> float:
    values = series.dropna()
    if values.empty:
        return float(default)
    return float(values.mean())
