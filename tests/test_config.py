"""Tests for configuration loading and validation."""

import json

import pytest

from issue_dispatch.config.settings import DispatchConfig, ScoringConfig, SourceConfig, SystemConfig
from issue_dispatch.exceptions import ConfigurationError
from issue_dispatch.main import load_config


def test_defaults_are_valid():
    config = SystemConfig()
    assert config.validate() == []
    assert config.dispatch.max_concurrent_jobs == 3
    assert config.dispatch.approval_timeout_ms == 3_600_000
    assert config.sources.max_consecutive_errors == 5


def test_from_dict_converts_lists_and_ignores_unknown_keys():
    config = SystemConfig.from_dict({
        "sources": {"github_repositories": ["acme/widgets", "acme/gadgets"], "bogus": 1},
        "dispatch": {"max_concurrent_jobs": 2, "step_commands": {"fix": "make fix"}},
    })
    assert config.sources.github_repositories == ("acme/widgets", "acme/gadgets")
    assert config.dispatch.max_concurrent_jobs == 2
    assert config.dispatch.step_commands["fix"] == "make fix"


def test_config_sections_are_immutable():
    config = DispatchConfig(step_commands={"fix": "make fix"})
    with pytest.raises(Exception):
        config.max_concurrent_jobs = 10
    with pytest.raises(TypeError):
        config.step_commands["fix"] = "rm -rf /"


def test_validate_reports_bad_values():
    config = SystemConfig(
        dispatch=DispatchConfig(max_concurrent_jobs=0, approval_timeout_ms=0),
        sources=SourceConfig(github_repositories=("acme/widgets",)),
        scoring=ScoringConfig(risk_weights={"severityKeywords": 0.5, "sensitiveLabels": 0.3,
                                            "testAbsence": 0.3, "priority": 0.1}),
    )
    errors = config.validate()
    assert "max_concurrent_jobs must be at least 1" in errors
    assert "approval_timeout_ms must be positive" in errors
    assert "GitHub token is required to poll GitHub repositories" in errors
    assert any(error.startswith("scoring.risk_weights") for error in errors)


def test_validate_rejects_misnamed_weights():
    scoring = ScoringConfig(complexity_weights={"textcomplexity": 0.2, "technicalDepth": 0.4,
                                                "scopeSize": 0.3, "dependencies": 0.1})
    errors = SystemConfig(scoring=scoring).validate()

    assert len(errors) == 1
    assert errors[0].startswith("scoring.complexity_weights must define exactly")
    assert "'textComplexity'" in errors[0] and "'textcomplexity'" in errors[0]


@pytest.mark.parametrize("thresholds", [(0.7, 0.3), (0.4, 0.4), (-0.1, 0.5), (0.3, 1.5), (0.5,)])
def test_validate_rejects_bad_thresholds(thresholds):
    errors = SystemConfig(scoring=ScoringConfig(confidence_thresholds=thresholds)).validate()
    assert errors == ["scoring.confidence_thresholds must be (low, medium) with 0 <= low < medium <= 1"]


def test_from_env(monkeypatch):
    monkeypatch.setenv("MAX_CONCURRENT_JOBS", "5")
    monkeypatch.setenv("APPROVAL_TIMEOUT_MS", "1000")
    monkeypatch.setenv("GITHUB_REPOSITORIES", "acme/widgets, acme/gadgets")
    monkeypatch.setenv("GITHUB_TOKEN", "token")
    monkeypatch.setenv("STEP_CMD_RUN_FULL_TEST_SUITE", "pytest -q")

    config = SystemConfig.from_env()
    assert config.dispatch.max_concurrent_jobs == 5
    assert config.dispatch.approval_timeout_ms == 1000
    assert config.sources.github_repositories == ("acme/widgets", "acme/gadgets")
    assert dict(config.dispatch.step_commands) == {"run-full-test-suite": "pytest -q"}


def test_load_config_raises_on_invalid_file(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"dispatch": {"max_concurrent_jobs": 0}}))
    with pytest.raises(ConfigurationError):
        load_config(str(path))


def test_load_config_from_file(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"dispatch": {"max_concurrent_jobs": 4}}))
    assert load_config(str(path)).dispatch.max_concurrent_jobs == 4


def test_as_dict_masks_secrets():
    config = SystemConfig.from_dict({"api": {"github_token": "ghp_secret", "jira_url": "https://jira.example"}})
    data = config.as_dict()
    assert data["api"]["github_token"] == "***"
    assert data["api"]["jira_url"] == "https://jira.example"
    assert data["api"]["sentry_token"] == ""
