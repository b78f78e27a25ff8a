"""Configuration models for git, CI, CD and supporting providers."""

from pydantic import BaseModel, Field


class GitHubConfig(BaseModel):
    """Configuration for the GitHub git provider and GitHub Actions."""

    token: str = Field(..., description="GitHub personal access token")
    owner: str = Field(..., description="Organization owning the component repos")
    host: str = Field(default="github.com", description="GitHub host name")
    base_url: str = Field(
        default="https://api.github.com", description="GitHub API base URL"
    )


class GitLabConfig(BaseModel):
    """Configuration for the GitLab git provider and GitLab CI."""

    token: str = Field(..., description="GitLab personal access token")
    group: str = Field(..., description="Group owning the component projects")
    host: str = Field(default="gitlab.com", description="GitLab host name")
    base_url: str = Field(
        default="https://gitlab.com/api/v4", description="GitLab API base URL"
    )


class BitbucketConfig(BaseModel):
    """Configuration for the Bitbucket git provider."""

    username: str = Field(..., description="Bitbucket username")
    app_password: str = Field(..., description="Bitbucket app password")
    workspace: str = Field(..., description="Bitbucket workspace slug")
    project: str = Field(default="", description="Bitbucket project key")
    host: str = Field(default="bitbucket.org", description="Bitbucket host name")
    base_url: str = Field(
        default="https://api.bitbucket.org/2.0", description="Bitbucket API base URL"
    )


class JenkinsConfig(BaseModel):
    """Configuration for Jenkins."""

    url: str = Field(..., description="Jenkins base URL")
    username: str = Field(..., description="Jenkins user")
    token: str = Field(..., description="Jenkins API token")


class AzureDevOpsConfig(BaseModel):
    """Configuration for Azure Pipelines."""

    token: str = Field(..., description="Azure DevOps personal access token")
    organization: str = Field(..., description="Azure DevOps organization")
    project: str = Field(..., description="Azure DevOps project name")
    host: str = Field(default="dev.azure.com", description="Azure DevOps host")
    agent_pool: str = Field(
        default="rhtap-testing", description="Agent queue running the pipelines"
    )
    variable_group: str = Field(
        default="", description="Variable group holding component secrets"
    )


class DeveloperHubConfig(BaseModel):
    """Configuration for the developer hub scaffolder API."""

    url: str = Field(..., description="Developer hub base URL")
    token: str | None = Field(default=None, description="Bearer token, if required")
    namespace: str = Field(
        default="tssc-app", description="Namespace components are deployed into"
    )


class TpaConfig(BaseModel):
    """Configuration for the SBOM store (trusted profile analyzer)."""

    bombastic_api_url: str = Field(..., description="SBOM API base URL")
    oidc_issuer_url: str = Field(..., description="OIDC issuer URL")
    oidc_client_id: str = Field(..., description="OIDC client ID")
    oidc_client_secret: str = Field(..., description="OIDC client secret")
    supported_cyclonedx_version: str = Field(default="", description="CycloneDX version")


class TasConfig(BaseModel):
    """Signing transparency service endpoints."""

    tuf_url: str = Field(..., description="TUF mirror URL")
    rekor_url: str = Field(..., description="Rekor server URL")


class AcsConfig(BaseModel):
    """Policy enforcement (ACS) endpoint."""

    endpoint: str = Field(..., description="Central endpoint host:port")
    token: str = Field(..., description="API token")
