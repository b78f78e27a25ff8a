"""Tests for run-level settings."""

import pytest

from tssc.e2e_orchestrator.config import HarnessSettings, Timeouts, load_from_env
from tssc.e2e_orchestrator.errors import ErrorKind, InvalidConfigError


def test_load_from_env_returns_value() -> None:
    """A set variable is returned as is."""
    assert load_from_env("GITHUB_ORGANIZATION", {"GITHUB_ORGANIZATION": "org"}) == "org"


@pytest.mark.parametrize("environ", [{}, {"IMAGE_REGISTRY_ORG": ""}])
def test_load_from_env_missing_is_invalid_config(environ: dict[str, str]) -> None:
    """Missing or empty variables are non-retryable configuration errors."""
    with pytest.raises(InvalidConfigError) as exc_info:
        load_from_env("IMAGE_REGISTRY_ORG", environ)

    assert exc_info.value.kind == ErrorKind.INVALID_CONFIG
    assert not exc_info.value.retryable
    assert "IMAGE_REGISTRY_ORG" in str(exc_info.value)


def test_settings_defaults() -> None:
    """Settings fall back to documented defaults."""
    settings = HarnessSettings.from_env({})

    assert settings.testplan_path == "./testplan.json"
    assert settings.testplan_names == []
    assert settings.ui_test is False
    assert settings.tmp_dir == "./tmp"
    assert settings.workers == 6
    assert settings.ci_test_runner_image is None


def test_settings_from_env() -> None:
    """Settings are read from the environment."""
    settings = HarnessSettings.from_env(
        {
            "TESTPLAN_PATH": "/plans/nightly.json",
            "TESTPLAN_NAME": "backend, ui ,",
            "UI_TEST": "TRUE",
            "IMAGE_REGISTRY_ORG": "tssc",
            "GITHUB_ORGANIZATION": "tssc-org",
            "CI_TEST_RUNNER_IMAGE": "quay.io/test/runner:1",
            "WORKERS": "3",
        }
    )

    assert settings.testplan_path == "/plans/nightly.json"
    assert settings.testplan_names == ["backend", "ui"]
    assert settings.ui_test is True
    assert settings.image_registry_org == "tssc"
    assert settings.ci_test_runner_image == "quay.io/test/runner:1"
    assert settings.workers == 3


@pytest.mark.parametrize("workers", ["many", "2.5", "0", "-1"])
def test_settings_invalid_workers(workers: str) -> None:
    """A WORKERS value that is not a positive integer is a configuration error."""
    with pytest.raises(InvalidConfigError, match="WORKERS"):
        HarnessSettings.from_env({"WORKERS": workers})


def test_settings_custom_root_ca() -> None:
    """The custom root CA is read from the environment when set."""
    pem = "-----BEGIN CERTIFICATE-----\nMIIB\n-----END CERTIFICATE-----"

    assert HarnessSettings.from_env({}).custom_root_ca is None
    assert HarnessSettings.from_env({"CUSTOM_ROOT_CA": pem}).custom_root_ca == pem


def test_canonical_timeouts() -> None:
    """Every wait has a single canonical default."""
    timeouts = Timeouts()

    assert timeouts.component_creation == 600
    assert timeouts.sync_retries * timeouts.sync_interval == 120
    assert timeouts.pipeline_completion == 1800
    assert timeouts.per_test == 2100
