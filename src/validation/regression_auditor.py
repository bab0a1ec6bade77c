"""Audit of the stored regression analysis behind the season weights.

The analysis itself is produced by an external step; this module re-checks
what was published: overall fit, per-metric significance flags against the
configured thresholds, internal consistency of p-values, R^2 and confidence
intervals, approximate regression assumptions and overfitting risk.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from config.settings import Settings
from src.data.storage import EngineStorage
from src.models.weights import RegressionAnalysisResult, RegressionMetricResult, WeightManager
from src.utils.clock import Clock, utc_now
from src.validation.base import BaseValidator
from src.validation.results import Severity, ValidationResult

logger = logging.getLogger(__name__)

F_TEST_ALPHA = 0.05
CI_SIGNIFICANCE_ALPHA = 0.05
LINEARITY_MIN_R_SQUARED = 0.1
MAX_RESIDUAL_STANDARD_ERROR = 20.0
NORMALITY_MAX_RSE = 25.0
PREDICTORS_PER_OBSERVATION = 15
MAX_SINGLE_R_SQUARED = 0.95
MAX_MODEL_R_SQUARED = 0.99
NON_SIGNIFICANT_MAX_WEIGHT = 0.5
VIF_THRESHOLD = 5.0
VIF_CAP = 50.0
CROSS_VALIDATION_PENALTY = 0.05
MAX_REASONABLE_COEFFICIENT = 100.0

EXPECTED_COEFFICIENT_RANGES = {
    "scoring_efficiency": (-2.0, 2.0),
    "passing_efficiency": (-1.0, 1.0),
    "rushing_efficiency": (-1.0, 1.0),
    "turnover_efficiency": (-3.0, 3.0),
}
DEFAULT_COEFFICIENT_RANGE = (-5.0, 5.0)


@dataclass
class ModelFitMetrics:
    r_squared: float
    adjusted_r_squared: float
    residual_standard_error: float
    f_statistic: float
    f_p_value: float
    sample_size: int
    degrees_of_freedom: int
    is_significant: bool
    meets_thresholds: bool


@dataclass
class SignificanceSummary:
    overall_significant: bool
    r_squared_threshold: float
    p_value_threshold: float
    significant_predictors: list[str] = field(default_factory=list)
    non_significant_predictors: list[str] = field(default_factory=list)


@dataclass
class AssumptionTest:
    test_name: str
    test_statistic: float
    p_value: float
    passed: bool
    details: str = ""


@dataclass
class MulticollinearityTest:
    vif_values: dict[str, float]
    max_vif: float
    vif_threshold: float
    passed: bool


@dataclass
class SampleSizeTest:
    sample_size: int
    minimum_required: int
    adequate: bool
    power: float


@dataclass
class ModelAssumptionResults:
    linearity: AssumptionTest
    homoscedasticity: AssumptionTest
    normality: AssumptionTest
    multicollinearity: MulticollinearityTest
    sample_size_adequacy: SampleSizeTest

    @property
    def overall_valid(self) -> bool:
        return (
            self.linearity.passed
            and self.homoscedasticity.passed
            and self.normality.passed
            and self.multicollinearity.passed
            and self.sample_size_adequacy.adequate
        )


@dataclass
class PredictivePowerMetrics:
    cross_validation_r_squared: float
    mean_absolute_error: float
    root_mean_square_error: float
    prediction_accuracy: float
    overfitting_risk: str


@dataclass
class CoefficientCheck:
    predictor: str
    coefficient: float
    p_value: float
    confidence_interval: tuple[float, float]
    is_significant: bool
    is_reasonable: bool
    expected_range: tuple[float, float]

    @property
    def within_expected_range(self) -> bool:
        low, high = self.expected_range
        return low <= self.coefficient <= high


@dataclass
class RegressionValidationResult(ValidationResult):
    """Regression audit result."""

    model_fit: Optional[ModelFitMetrics] = None
    statistical_significance: Optional[SignificanceSummary] = None
    assumptions: Optional[ModelAssumptionResults] = None
    predictive_power: Optional[PredictivePowerMetrics] = None
    coefficients: list[CoefficientCheck] = field(default_factory=list)
    kind: str = field(default="regression_analysis", init=False)


@dataclass
class _Finding:
    code: str
    message: str
    severity: Optional[Severity]  # None -> warning
    details: dict = field(default_factory=dict)


def _check_unit_interval(value, label: str) -> None:
    if value is None or not math.isfinite(value) or not 0.0 <= value <= 1.0:
        raise ValueError(f"Invalid {label} value: {value} (must be between 0 and 1)")


def _check_non_negative(value, label: str) -> None:
    if value is None or not math.isfinite(value) or value < 0:
        raise ValueError(f"Invalid {label}: {value}")


class RegressionAnalysisAuditor(BaseValidator):
    """Check the latest stored regression analysis for a season."""

    component = "regression_analysis"
    result_class = RegressionValidationResult

    def __init__(
        self,
        storage: EngineStorage,
        settings: Optional[Settings] = None,
        clock: Clock = utc_now,
        weight_manager: Optional[WeightManager] = None,
    ):
        super().__init__(storage, settings, clock)
        self.weight_manager = weight_manager or WeightManager(storage, self.settings, self.clock)

    def _run(self, season: int, result: RegressionValidationResult) -> None:
        analysis = self.weight_manager.get_latest_regression_analysis(season)
        if analysis is None:
            result.add_error(
                "NO_REGRESSION_ANALYSIS",
                f"No regression analysis found for season {season}",
                Severity.CRITICAL,
            )
            return

        try:
            result.model_fit = self.validate_model_fit(analysis)
        except ValueError as e:
            result.add_error(
                "REGRESSION_VALIDATION_FAILED",
                f"Failed to validate regression analysis: {e}",
                Severity.CRITICAL,
            )
            return

        findings: list[_Finding] = []
        result.statistical_significance = self.validate_statistical_significance(analysis, findings)
        result.assumptions = self.validate_model_assumptions(analysis)
        result.predictive_power = self.validate_predictive_power(analysis)
        result.coefficients = [self._check_coefficient(row) for row in analysis.regression_results]

        if analysis.overall_model_r_squared > MAX_MODEL_R_SQUARED:
            findings.append(
                _Finding(
                    "SUSPICIOUS_MODEL_R_SQUARED",
                    f"Model R-squared ({analysis.overall_model_r_squared}) is suspiciously high (>0.99)",
                    Severity.HIGH,
                )
            )

        self._score(result)
        for finding in findings:
            if finding.severity is None:
                result.add_warning(finding.code, finding.message, finding.details)
            else:
                result.add_error(finding.code, finding.message, finding.severity, finding.details)
        self._recommend(result)

    # =========================================================================
    # Model fit and significance
    # =========================================================================

    def validate_model_fit(self, analysis: RegressionAnalysisResult) -> ModelFitMetrics:
        """Whole-model fit statistics.

        Raises:
            ValueError: If any reported statistic is missing or out of range
        """
        stats = analysis.model_validation
        _check_unit_interval(analysis.overall_model_r_squared, "R-squared")
        _check_unit_interval(stats.adjusted_r_squared, "adjusted R-squared")
        _check_non_negative(stats.f_statistic, "F-statistic")
        _check_unit_interval(stats.f_p_value, "F p-value")
        _check_non_negative(stats.residual_standard_error, "residual standard error")

        is_significant = (
            analysis.overall_model_r_squared >= self.settings.regression_r_squared_threshold
            and stats.f_p_value < F_TEST_ALPHA
        )
        return ModelFitMetrics(
            r_squared=analysis.overall_model_r_squared,
            adjusted_r_squared=stats.adjusted_r_squared,
            residual_standard_error=stats.residual_standard_error,
            f_statistic=stats.f_statistic,
            f_p_value=stats.f_p_value,
            sample_size=analysis.sample_size,
            degrees_of_freedom=analysis.sample_size - len(analysis.regression_results) - 1,
            is_significant=is_significant,
            meets_thresholds=is_significant,
        )

    def validate_statistical_significance(
        self, analysis: RegressionAnalysisResult, findings: list
    ) -> SignificanceSummary:
        r2_threshold = self.settings.regression_r_squared_threshold
        p_threshold = self.settings.regression_p_value_threshold
        summary = SignificanceSummary(
            overall_significant=analysis.overall_model_r_squared >= r2_threshold,
            r_squared_threshold=r2_threshold,
            p_value_threshold=p_threshold,
        )

        for row in analysis.regression_results:
            expected = row.r_squared >= r2_threshold and row.p_value <= p_threshold
            if expected:
                summary.significant_predictors.append(row.metric_name)
            else:
                summary.non_significant_predictors.append(row.metric_name)

            if row.is_statistically_significant != expected:
                findings.append(
                    _Finding(
                        "SIGNIFICANCE_FLAG_MISMATCH",
                        f"Statistical significance flag mismatch for {row.metric_name}: "
                        f"expected {expected}, got {row.is_statistically_significant}",
                        Severity.HIGH,
                        {"r_squared": row.r_squared, "p_value": row.p_value},
                    )
                )
            findings.extend(self._metric_consistency(row))

            if not expected and row.calculated_weight > NON_SIGNIFICANT_MAX_WEIGHT:
                findings.append(
                    _Finding(
                        "NON_SIGNIFICANT_WEIGHT",
                        f"Non-significant metric {row.metric_name} retains a large weight "
                        f"({row.calculated_weight})",
                        None,
                        {"weight": row.calculated_weight},
                    )
                )
        return summary

    def _metric_consistency(self, row: RegressionMetricResult) -> list:
        findings = []
        name = row.metric_name
        low, high = row.confidence_interval

        if not 0.0 <= row.p_value <= 1.0:
            findings.append(_Finding("INVALID_P_VALUE", f"Invalid p-value for {name}: {row.p_value}", Severity.HIGH))
        elif row.p_value in (0.0, 1.0):
            findings.append(
                _Finding(
                    "SUSPICIOUS_P_VALUE",
                    f"P-value of exactly {row.p_value:g} for {name} is suspicious - "
                    "may indicate calculation error",
                    Severity.HIGH,
                )
            )
        elif low <= 0 <= high and row.p_value <= CI_SIGNIFICANCE_ALPHA:
            findings.append(
                _Finding(
                    "CONFIDENCE_INTERVAL_CONFLICT",
                    f"P-value ({row.p_value}) for {name} suggests significance but confidence "
                    f"interval [{low}, {high}] contains zero",
                    Severity.HIGH,
                )
            )

        if row.r_squared > MAX_SINGLE_R_SQUARED:
            findings.append(
                _Finding(
                    "SUSPICIOUS_R_SQUARED",
                    f"R-squared ({row.r_squared}) for {name} is suspiciously high (>0.95) "
                    "for single predictor - possible overfitting or calculation error",
                    Severity.HIGH,
                )
            )

        if not (math.isfinite(low) and math.isfinite(high)) or low > high:
            findings.append(
                _Finding(
                    "INVALID_CONFIDENCE_INTERVAL",
                    f"Invalid confidence interval for {name}: [{low}, {high}]",
                    Severity.HIGH,
                )
            )
        elif not low <= row.coefficient <= high:
            findings.append(
                _Finding(
                    "COEFFICIENT_OUTSIDE_INTERVAL",
                    f"Coefficient ({row.coefficient}) for {name} is outside its confidence "
                    f"interval [{low}, {high}]",
                    Severity.HIGH,
                )
            )
        return findings

    # =========================================================================
    # Assumptions and predictive power
    # =========================================================================

    def validate_model_assumptions(self, analysis: RegressionAnalysisResult) -> ModelAssumptionResults:
        return ModelAssumptionResults(
            linearity=self._linearity(analysis),
            homoscedasticity=self._homoscedasticity(analysis),
            normality=self._normality(analysis),
            multicollinearity=self._multicollinearity(analysis.regression_results),
            sample_size_adequacy=self._sample_size(analysis),
        )

    def _linearity(self, analysis: RegressionAnalysisResult) -> AssumptionTest:
        r2 = analysis.overall_model_r_squared
        stats = analysis.model_validation
        significant = [r for r in analysis.regression_results if r.is_statistically_significant]
        checks = [
            r2 >= LINEARITY_MIN_R_SQUARED,
            stats.f_p_value < F_TEST_ALPHA,
            bool(significant)
            and all(r.r_squared > LINEARITY_MIN_R_SQUARED and abs(r.coefficient) < 10 for r in significant),
            r2 > self.settings.regression_r_squared_threshold
            and stats.residual_standard_error < NORMALITY_MAX_RSE
            and r2 - stats.adjusted_r_squared < 0.1,
        ]
        return AssumptionTest(
            test_name="Linearity",
            test_statistic=r2,
            p_value=stats.f_p_value,
            passed=sum(checks) / len(checks) >= 0.75,
            details=f"R^2={r2:.3f}, F-test p={stats.f_p_value:.4f}",
        )

    def _homoscedasticity(self, analysis: RegressionAnalysisResult) -> AssumptionTest:
        stats = analysis.model_validation
        rse = stats.residual_standard_error
        r2_gap = analysis.overall_model_r_squared - stats.adjusted_r_squared
        stable = all(
            not (abs(r.coefficient) > 0.1 and (r.confidence_interval[1] - r.confidence_interval[0]) > abs(r.coefficient) * 5)
            for r in analysis.regression_results
        )
        checks = [
            rse <= MAX_RESIDUAL_STANDARD_ERROR,
            stable,
            r2_gap < 0.1,
            stats.f_p_value < F_TEST_ALPHA and abs(r2_gap) < 0.05,
        ]
        return AssumptionTest(
            test_name="Homoscedasticity",
            test_statistic=rse,
            p_value=0.01 if rse > MAX_RESIDUAL_STANDARD_ERROR else 0.5,
            passed=sum(checks) / len(checks) >= 0.75,
            details=f"RSE={rse:.2f}, R^2 gap={r2_gap:.3f}",
        )

    def _normality(self, analysis: RegressionAnalysisResult) -> AssumptionTest:
        n = analysis.sample_size
        r2 = analysis.overall_model_r_squared
        rse = analysis.model_validation.residual_standard_error
        rows = analysis.regression_results
        ratio = (sum(r.is_statistically_significant for r in rows) / len(rows)) if rows else 0.0
        large_sample = n >= self.settings.regression_min_sample_size
        good_fit = r2 > self.settings.regression_r_squared_threshold
        checks = [
            large_sample,
            good_fit,
            rse < NORMALITY_MAX_RSE,
            0.1 < ratio < 0.9,
            sum([n >= 50, r2 > 0.3, rse < MAX_RESIDUAL_STANDARD_ERROR]) >= 2,
        ]
        if not large_sample and not good_fit:
            p_value = 0.01
        elif not large_sample or not good_fit:
            p_value = 0.1
        else:
            p_value = 0.5
        return AssumptionTest(
            test_name="Normality",
            test_statistic=float(n),
            p_value=p_value,
            passed=sum(checks) / len(checks) >= 0.6,
            details=f"n={n}, R^2={r2:.3f}, RSE={rse:.2f}",
        )

    def _multicollinearity(self, rows: list[RegressionMetricResult]) -> MulticollinearityTest:
        vif_values = {}
        for row in rows:
            vif = 1.0 / (1.0 - float(np.clip(row.r_squared, 0.01, 0.99)))
            low, high = row.confidence_interval
            if abs(row.coefficient) > 0.01 and (high - low) / abs(row.coefficient) > 3:
                vif *= 1.5
            if not row.is_statistically_significant and row.r_squared > 0.3:
                vif *= 1.3
            vif_values[row.metric_name] = min(vif, VIF_CAP)
        max_vif = max(vif_values.values(), default=0.0)
        return MulticollinearityTest(
            vif_values=vif_values,
            max_vif=max_vif,
            vif_threshold=VIF_THRESHOLD,
            passed=max_vif <= VIF_THRESHOLD,
        )

    def _sample_size(self, analysis: RegressionAnalysisResult) -> SampleSizeTest:
        minimum = max(
            self.settings.regression_min_sample_size,
            len(analysis.regression_results) * PREDICTORS_PER_OBSERVATION,
        )
        adequate = analysis.sample_size >= minimum
        return SampleSizeTest(
            sample_size=analysis.sample_size,
            minimum_required=minimum,
            adequate=adequate,
            power=0.8 if adequate else min(0.8, analysis.sample_size / minimum * 0.8),
        )

    def validate_predictive_power(self, analysis: RegressionAnalysisResult) -> PredictivePowerMetrics:
        stats = analysis.model_validation
        gap = analysis.overall_model_r_squared - stats.adjusted_r_squared
        if gap < 0.05:
            risk = "low"
        elif gap < 0.15:
            risk = "medium"
        else:
            risk = "high"
        return PredictivePowerMetrics(
            cross_validation_r_squared=max(0.0, analysis.overall_model_r_squared - CROSS_VALIDATION_PENALTY),
            mean_absolute_error=stats.residual_standard_error * 0.8,
            root_mean_square_error=stats.residual_standard_error,
            prediction_accuracy=analysis.predictive_accuracy,
            overfitting_risk=risk,
        )

    @staticmethod
    def _check_coefficient(row: RegressionMetricResult) -> CoefficientCheck:
        return CoefficientCheck(
            predictor=row.metric_name,
            coefficient=row.coefficient,
            p_value=row.p_value,
            confidence_interval=tuple(row.confidence_interval),
            is_significant=row.is_statistically_significant,
            is_reasonable=math.isfinite(row.coefficient) and abs(row.coefficient) < MAX_REASONABLE_COEFFICIENT,
            expected_range=EXPECTED_COEFFICIENT_RANGES.get(row.metric_name, DEFAULT_COEFFICIENT_RANGE),
        )

    # =========================================================================
    # Scoring
    # =========================================================================

    def _score(self, result: RegressionValidationResult) -> None:
        fit = result.model_fit
        significance = result.statistical_significance
        assumptions = result.assumptions

        if fit.meets_thresholds:
            fit_score = 30
        elif fit.r_squared > LINEARITY_MIN_R_SQUARED:
            fit_score = 20
        else:
            fit_score = 10

        if significance.overall_significant:
            significance_score = 25
        elif significance.significant_predictors:
            significance_score = 15
        else:
            significance_score = 5

        if assumptions.overall_valid:
            assumption_score = 25
        else:
            assumption_score = 8 * sum(
                [
                    assumptions.linearity.passed,
                    assumptions.homoscedasticity.passed,
                    assumptions.normality.passed,
                ]
            )

        predictive_score = {"low": 20, "medium": 15}.get(result.predictive_power.overfitting_risk, 10)

        result.set_score(fit_score + significance_score + assumption_score + predictive_score)
        result.is_valid = (
            fit.meets_thresholds
            and bool(significance.significant_predictors)
            and assumptions.sample_size_adequacy.adequate
        )

    def _recommend(self, result: RegressionValidationResult) -> None:
        if not result.model_fit.meets_thresholds:
            result.add_recommendation(
                "Consider adding more predictive variables or transforming existing ones to improve model fit"
            )
        if not result.statistical_significance.significant_predictors:
            result.add_recommendation(
                "No statistically significant predictors found - review data quality and variable selection"
            )
        sample = result.assumptions.sample_size_adequacy
        if not sample.adequate:
            result.add_recommendation(
                f"Increase sample size to at least {sample.minimum_required} observations for reliable results"
            )
        if not result.assumptions.multicollinearity.passed:
            result.add_recommendation(
                "Address multicollinearity by removing or combining highly correlated predictors"
            )
        if result.predictive_power.overfitting_risk == "high":
            result.add_recommendation(
                "High overfitting risk detected - consider regularization techniques or cross-validation"
            )
