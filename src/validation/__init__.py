"""Audit validators for the efficiency/prediction pipeline.

- DataPipelineValidator: box-score completeness and consistency
- RegressionAnalysisAuditor: fit, significance and assumption checks on the stored analysis
- WeightCalculationVerifier: derivation, bounds, application and history of season weights
- PredictionAccuracyTester: back-test of the prediction chain on finished games
- SampleGameAnalyzer: per-game explanations and the confidence interpretation guide
"""

from .results import Severity, ValidationResult, merge_validation_results
from .data_pipeline import DataPipelineValidator, DataValidationResult
from .regression_auditor import RegressionAnalysisAuditor, RegressionValidationResult
from .weight_verifier import WeightCalculationVerifier, WeightVerificationResult
from .accuracy_tester import AccuracyTestResult, PredictionAccuracyTester
from .sample_game_analyzer import (
    SampleAnalysisResult,
    SampleGameAnalyzer,
    build_confidence_interpretation_guide,
)

__all__ = [
    "Severity",
    "ValidationResult",
    "merge_validation_results",
    "DataPipelineValidator",
    "DataValidationResult",
    "RegressionAnalysisAuditor",
    "RegressionValidationResult",
    "WeightCalculationVerifier",
    "WeightVerificationResult",
    "PredictionAccuracyTester",
    "AccuracyTestResult",
    "SampleGameAnalyzer",
    "SampleAnalysisResult",
    "build_confidence_interpretation_guide",
]
