import pytest
from pydantic import ValidationError

from adaptive_research.config import Settings, get_settings, load_config, reset_settings
from adaptive_research.config.settings import DEFAULT_CONFIG_PATH, WorkflowConfig


def test_packaged_config_matches_the_defaults():
    settings = load_config(DEFAULT_CONFIG_PATH)

    assert settings.workflow == WorkflowConfig()
    assert settings.workflow.max_total_iterations == 15
    assert settings.workflow.max_retries == 3
    assert settings.execution.step_timeout_s == 120.0
    assert settings.quality.relevance_weight == 0.5


def test_yaml_values_are_loaded(tmp_path):
    config_file = tmp_path / "config.yaml"
    config_file.write_text(
        "workflow:\n  max_total_iterations: 8\nexecution:\n  step_timeout_s: null\n",
        encoding="utf-8",
    )

    settings = load_config(config_file)

    assert settings.workflow.max_total_iterations == 8
    assert settings.workflow.max_retries == 3
    assert settings.execution.step_timeout_s is None


def test_missing_file_means_defaults(tmp_path):
    settings = load_config(tmp_path / "absent.yaml")
    assert settings.workflow == WorkflowConfig()


def test_environment_overrides_yaml(tmp_path, monkeypatch):
    config_file = tmp_path / "config.yaml"
    config_file.write_text("workflow:\n  max_retries: 5\n", encoding="utf-8")
    monkeypatch.setenv("ADAPTIVE_RESEARCH_WORKFLOW__MAX_RETRIES", "2")

    assert load_config(config_file).workflow.max_retries == 2


def test_invalid_values_are_rejected():
    with pytest.raises(ValidationError):
        Settings(workflow={"max_total_iterations": 0})


def test_global_settings_are_cached_until_reset():
    first = get_settings()
    assert get_settings() is first

    reset_settings()
    assert get_settings() is not first
