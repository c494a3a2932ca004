"""Complexity and structure detectors."""

from codestruct.services.detectors.base import (
    CODE_LANGUAGES,
    Detector,
    FileContext,
    FunctionInfo,
    iter_classes,
    iter_functions,
)
from codestruct.services.detectors.complexity import (
    CognitiveComplexityDetector,
    DeepNestingDetector,
    HighComplexityDetector,
    LongMethodDetector,
    LongParameterListDetector,
)
from codestruct.services.detectors.structure import (
    DeadCodeDetector,
    FeatureEnvyDetector,
    GodClassDetector,
    MagicNumberDetector,
)

STRUCTURAL_DETECTORS: list[type[Detector]] = [
    LongMethodDetector,
    GodClassDetector,
    DeepNestingDetector,
    LongParameterListDetector,
    HighComplexityDetector,
    CognitiveComplexityDetector,
    MagicNumberDetector,
    DeadCodeDetector,
    FeatureEnvyDetector,
]

__all__ = [
    "CODE_LANGUAGES",
    "STRUCTURAL_DETECTORS",
    "CognitiveComplexityDetector",
    "DeadCodeDetector",
    "DeepNestingDetector",
    "Detector",
    "FeatureEnvyDetector",
    "FileContext",
    "FunctionInfo",
    "GodClassDetector",
    "HighComplexityDetector",
    "LongMethodDetector",
    "LongParameterListDetector",
    "MagicNumberDetector",
    "iter_classes",
    "iter_functions",
]
