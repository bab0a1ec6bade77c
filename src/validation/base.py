"""Common plumbing for the audit validators."""

import logging
from abc import ABC, abstractmethod
from typing import Optional, TypeVar

from config.settings import Settings, get_settings
from src.data.storage import EngineStorage
from src.utils.clock import Clock, utc_now
from src.validation.results import Severity, ValidationResult

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=ValidationResult)


class BaseValidator(ABC):
    """Validator with injected storage, settings and clock.

    Subclasses implement ``_run(season, result)`` and fill in the result they
    are handed. ``validate(season)`` never raises: anything unexpected
    escaping ``_run`` is recorded as a critical error on the result.
    """

    component = "validator"
    result_class: type = ValidationResult

    def __init__(
        self,
        storage: EngineStorage,
        settings: Optional[Settings] = None,
        clock: Clock = utc_now,
    ):
        self.storage = storage
        self.settings = settings or get_settings()
        self.clock = clock

    def create_result(self, **values) -> ValidationResult:
        """Fresh result of this validator's variant, stamped with the clock."""
        return self.result_class(component=self.component, timestamp=self.clock(), **values)

    def validate(self, season: int) -> ValidationResult:
        result = self.create_result()
        result.metadata["season"] = season
        try:
            self._run(season, result)
        except Exception as e:
            logger.exception(f"{self.component} validation failed for season {season}")
            result.add_error(
                f"{self.component.upper()}_FAILED",
                f"{self.component} validation failed: {e}",
                Severity.CRITICAL,
                {"exception": type(e).__name__},
            )
        self.log_result(result)
        return result

    @abstractmethod
    def _run(self, season: int, result: ValidationResult) -> None:
        """Populate ``result`` for ``season``."""

    def log_result(self, result: ValidationResult) -> None:
        status = "passed" if result.is_valid else "failed"
        message = (
            f"{self.component} {status}: score {result.score:.1f}, "
            f"{len(result.errors)} errors, {len(result.warnings)} warnings"
        )
        if result.is_valid:
            logger.info(message)
        else:
            logger.warning(message)
