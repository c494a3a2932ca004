"""Analysis configuration settings."""

import logging
from collections.abc import Mapping
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


def _find_env_file() -> str | None:
    """Find .env file in common locations.

    Checks (in order):
    1. .env (running from the project root)
    2. ../.env (running from a subdirectory)
    3. None (rely on environment variables)
    """
    candidates = [
        Path(".env"),
        Path("../.env"),
    ]
    for path in candidates:
        if path.exists():
            return str(path)
    return None


class Settings(BaseSettings):
    """Analysis settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="CODESTRUCT_",
        env_file=_find_env_file(),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Complexity / structure thresholds
    max_method_lines: int = 40
    max_class_lines: int = 300
    max_class_methods: int = 20
    max_nesting_depth: int = 3
    max_parameters: int = 4
    max_cyclomatic_complexity: int = 8
    max_cognitive_complexity: int = 10
    feature_envy_min_accesses: int = 4

    # Duplicate detection
    duplicate_min_lines: int = 6
    duplicate_min_tokens: int = 20
    structural_similarity_threshold: float = Field(default=0.9, ge=0.0, le=1.0)
    semantic_similarity_threshold: float = Field(default=0.75, ge=0.0, le=1.0)
    max_duplicate_comparisons: int = 250_000

    # Security
    scan_test_files_for_secrets: bool = False
    security_confidence_overrides: dict[str, int] = Field(default_factory=dict)

    # Resource budgets
    max_ast_nodes: int = 500_000
    max_diff_units: int = 20_000
    file_workers: int = 4
    detector_workers: int = 1

    # Quality score weights
    severity_weight_critical: int = 10
    severity_weight_high: int = 5
    severity_weight_medium: int = 2
    severity_weight_low: int = 1

    # Refactoring
    refactoring_excluded_types: list[str] = Field(default_factory=lambda: ["long_method"])

    @model_validator(mode="after")
    def validate_analysis_settings(self) -> "Settings":
        """Warn about settings that make the analysis behave oddly."""
        warnings = []

        if self.semantic_similarity_threshold > self.structural_similarity_threshold:
            warnings.append(
                "CODESTRUCT_SEMANTIC_SIMILARITY_THRESHOLD is above the structural threshold; "
                "the semantic pass will rarely add new duplicate groups."
            )
        if self.file_workers < 1:
            warnings.append("CODESTRUCT_FILE_WORKERS < 1, falling back to a single worker.")
        if self.max_ast_nodes < 1000:
            warnings.append("CODESTRUCT_MAX_AST_NODES is very low; most files will parse as truncated.")

        for warning in warnings:
            logger.warning(f"CONFIG WARNING: {warning}")

        return self


class AnalysisOptions(BaseModel):
    """Immutable options record consumed by one analysis run.

    Built once at run start (usually from :class:`Settings`) and shared read-only
    by every worker thread.
    """

    model_config = ConfigDict(frozen=True)

    max_method_lines: int = 40
    max_class_lines: int = 300
    max_class_methods: int = 20
    max_nesting_depth: int = 3
    max_parameters: int = 4
    max_cyclomatic_complexity: int = 8
    max_cognitive_complexity: int = 10
    feature_envy_min_accesses: int = 4

    duplicate_min_lines: int = 6
    duplicate_min_tokens: int = 20
    structural_similarity_threshold: float = 0.9
    semantic_similarity_threshold: float = 0.75
    max_duplicate_comparisons: int = 250_000

    scan_test_files_for_secrets: bool = False
    security_confidence_overrides: Mapping[str, int] = Field(default_factory=dict, validate_default=True)

    max_ast_nodes: int = 500_000
    max_diff_units: int = 20_000
    file_workers: int = 4
    detector_workers: int = 1

    severity_weights: Mapping[str, int] = Field(
        default_factory=lambda: {"critical": 10, "high": 5, "medium": 2, "low": 1},
        validate_default=True,
    )
    refactoring_excluded_types: tuple[str, ...] = ("long_method",)

    @field_validator("security_confidence_overrides", "severity_weights", mode="after")
    @classmethod
    def freeze_mapping(cls, value: Mapping[str, int]) -> Mapping[str, int]:
        """Hand out read-only views so workers cannot edit a shared record."""
        return MappingProxyType(dict(value))

    @field_serializer("security_confidence_overrides", "severity_weights")
    def serialize_mapping(self, value: Mapping[str, int]) -> dict[str, int]:
        return dict(value)

    @classmethod
    def from_settings(cls, source: Settings | None = None) -> "AnalysisOptions":
        """Build an options record from environment-backed settings."""
        source = source or get_settings()
        return cls(
            max_method_lines=source.max_method_lines,
            max_class_lines=source.max_class_lines,
            max_class_methods=source.max_class_methods,
            max_nesting_depth=source.max_nesting_depth,
            max_parameters=source.max_parameters,
            max_cyclomatic_complexity=source.max_cyclomatic_complexity,
            max_cognitive_complexity=source.max_cognitive_complexity,
            feature_envy_min_accesses=source.feature_envy_min_accesses,
            duplicate_min_lines=source.duplicate_min_lines,
            duplicate_min_tokens=source.duplicate_min_tokens,
            structural_similarity_threshold=source.structural_similarity_threshold,
            semantic_similarity_threshold=source.semantic_similarity_threshold,
            max_duplicate_comparisons=source.max_duplicate_comparisons,
            scan_test_files_for_secrets=source.scan_test_files_for_secrets,
            security_confidence_overrides=dict(source.security_confidence_overrides),
            max_ast_nodes=source.max_ast_nodes,
            max_diff_units=source.max_diff_units,
            file_workers=max(1, source.file_workers),
            detector_workers=max(1, source.detector_workers),
            severity_weights={
                "critical": source.severity_weight_critical,
                "high": source.severity_weight_high,
                "medium": source.severity_weight_medium,
                "low": source.severity_weight_low,
            },
            refactoring_excluded_types=tuple(source.refactoring_excluded_types),
        )

    def confidence_for(self, rule_family: str, default: int) -> int:
        """Return the configured confidence for a security rule family."""
        value = self.security_confidence_overrides.get(rule_family, default)
        return max(0, min(100, int(value)))


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
