"""Run-level settings and canonical timeouts."""

import os
from collections.abc import Mapping

from pydantic import BaseModel, Field

from tssc.e2e_orchestrator.errors import InvalidConfigError


def load_from_env(name: str, environ: Mapping[str, str] | None = None) -> str:
    """Return a required environment variable.

    Raises:
        InvalidConfigError: If the variable is missing or empty

    """
    env = os.environ if environ is None else environ
    value = env.get(name, "")
    if not value:
        raise InvalidConfigError(f"Missing env var: {name} is not set or empty")
    return value


class Timeouts(BaseModel):
    """Every wait in the workflow, in seconds."""

    component_creation: float = Field(default=600, description="Hub task deadline")
    component_poll_interval: float = Field(default=5)
    sync_retries: int = Field(default=12, description="ArgoCD sync checks")
    sync_interval: float = Field(default=10)
    pipeline_completion: float = Field(default=1800)
    pipeline_poll_interval: float = Field(default=10)
    all_pipelines: float = Field(default=300)
    all_pipelines_poll_interval: float = Field(default=5)
    per_test: float = Field(default=35 * 60, description="Whole workflow deadline")


def _parse_workers(value: str) -> int:
    try:
        workers = int(value)
    except ValueError as e:
        raise InvalidConfigError(f"WORKERS must be an integer, got {value!r}") from e
    if workers < 1:
        raise InvalidConfigError(f"WORKERS must be at least 1, got {workers}")
    return workers


class HarnessSettings(BaseModel):
    """Settings read from the environment at startup."""

    testplan_path: str = Field(default="./testplan.json")
    testplan_names: list[str] = Field(default_factory=list)
    ui_test: bool = Field(default=False, description="Reuse existing test items")
    image_registry_org: str = Field(default="")
    github_organization: str = Field(default="")
    ci_test_runner_image: str | None = Field(default=None)
    custom_root_ca: str | None = Field(
        default=None, description="PEM root CA of a self-signed cluster"
    )
    bitbucket_workspace: str = Field(default="")
    bitbucket_project: str = Field(default="")
    azure_project: str = Field(default="")
    developer_hub_url: str | None = Field(
        default=None, description="Hub URL, read from the cluster route when unset"
    )
    tmp_dir: str = Field(default="./tmp")
    workers: int = Field(default=6, ge=1)
    timeouts: Timeouts = Field(default_factory=Timeouts)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "HarnessSettings":
        """Build settings from environment variables."""
        env = os.environ if environ is None else environ
        names = env.get("TESTPLAN_NAME", "")
        workers = env.get("WORKERS", "")
        return cls(
            testplan_path=env.get("TESTPLAN_PATH") or "./testplan.json",
            testplan_names=[n.strip() for n in names.split(",") if n.strip()],
            ui_test=env.get("UI_TEST", "").lower() == "true",
            image_registry_org=env.get("IMAGE_REGISTRY_ORG", ""),
            github_organization=env.get("GITHUB_ORGANIZATION", ""),
            ci_test_runner_image=env.get("CI_TEST_RUNNER_IMAGE") or None,
            custom_root_ca=env.get("CUSTOM_ROOT_CA") or None,
            bitbucket_workspace=env.get("BITBUCKET_WORKSPACE", ""),
            bitbucket_project=env.get("BITBUCKET_PROJECT", ""),
            azure_project=env.get("AZURE_PROJECT", ""),
            developer_hub_url=env.get("DEVELOPER_HUB_URL") or None,
            tmp_dir=env.get("TMP_DIR") or "./tmp",
            workers=_parse_workers(workers) if workers else 6,
        )
