"""Tests for settings and the analysis options record."""

import logging

import pytest
from pydantic import ValidationError

from codestruct.core.config import AnalysisOptions, Settings
from codestruct.core.logging_config import configure_logging


class TestSettings:

    def test_defaults(self):
        settings = Settings(_env_file=None)
        assert settings.max_method_lines == 40
        assert settings.duplicate_min_lines == 6
        assert settings.refactoring_excluded_types == ["long_method"]

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("CODESTRUCT_MAX_PARAMETERS", "7")
        monkeypatch.setenv("CODESTRUCT_SEVERITY_WEIGHT_CRITICAL", "20")
        settings = Settings(_env_file=None)

        options = AnalysisOptions.from_settings(settings)
        assert options.max_parameters == 7
        assert options.severity_weights["critical"] == 20

    def test_threshold_bounds(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, structural_similarity_threshold=1.5)

    def test_odd_settings_log_warnings(self, caplog):
        with caplog.at_level(logging.WARNING, logger="codestruct.core.config"):
            Settings(
                _env_file=None,
                structural_similarity_threshold=0.5,
                semantic_similarity_threshold=0.8,
                file_workers=0,
            )
        messages = [record.getMessage() for record in caplog.records]
        assert any("SEMANTIC_SIMILARITY_THRESHOLD" in m for m in messages)
        assert any("FILE_WORKERS" in m for m in messages)

    def test_worker_counts_are_clamped(self):
        options = AnalysisOptions.from_settings(Settings(_env_file=None, file_workers=0, detector_workers=-3))
        assert options.file_workers == 1
        assert options.detector_workers == 1


class TestAnalysisOptions:

    def test_options_are_immutable(self):
        options = AnalysisOptions()
        with pytest.raises(ValidationError):
            options.max_parameters = 10

    def test_mappings_are_read_only(self):
        options = AnalysisOptions(security_confidence_overrides={"credentials": 80})
        with pytest.raises(TypeError):
            options.severity_weights["critical"] = 0
        with pytest.raises(TypeError):
            options.security_confidence_overrides["credentials"] = 10
        assert options.severity_weights["critical"] == 10
        assert options.model_dump()["severity_weights"] == {"critical": 10, "high": 5, "medium": 2, "low": 1}

    def test_caller_dict_is_copied(self):
        weights = {"critical": 20}
        options = AnalysisOptions(severity_weights=weights)
        weights["critical"] = 0
        assert options.severity_weights["critical"] == 20

    def test_confidence_override_is_clamped(self):
        options = AnalysisOptions(security_confidence_overrides={"credentials": 150, "secrets": 80})
        assert options.confidence_for("credentials", 92) == 100
        assert options.confidence_for("secrets", 95) == 80
        assert options.confidence_for("unsafe_logging", 90) == 90

    def test_excluded_types_default(self):
        assert AnalysisOptions().refactoring_excluded_types == ("long_method",)


class TestLoggingConfig:

    def test_configure_logging_sets_level(self):
        configure_logging("DEBUG")
        assert logging.getLogger().level == logging.DEBUG
        configure_logging("WARNING")
        assert logging.getLogger().level == logging.WARNING
