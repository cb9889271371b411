"""Configuration models for CI artifact sources."""

from pydantic import BaseModel, Field

from nixbit.reliability_engine.models.test_record import ParsedArtifact


class GitHubConfig(BaseModel):
    """Configuration for downloading GitHub Actions artifacts."""

    token: str = Field(..., description="GitHub personal access token or GITHUB_TOKEN")
    owner: str = Field(..., description="Repository owner")
    repo: str = Field(..., description="Repository name")
    base_url: str = Field(
        default="https://api.github.com", description="GitHub API base URL"
    )


class GitLabConfig(BaseModel):
    """Configuration for downloading GitLab CI job artifacts."""

    token: str = Field(..., description="GitLab personal access token")
    project_id: str = Field(..., description="GitLab project ID or path")
    base_url: str = Field(
        default="https://gitlab.com/api/v4", description="GitLab API base URL"
    )


class ArtifactRef(BaseModel):
    """A downloadable artifact of a CI run."""

    id: str = Field(..., description="Provider artifact or job identifier")
    name: str = Field(..., description="Artifact name")
    download_url: str = Field(..., description="URL returning the artifact bytes")
    size_bytes: int | None = Field(default=None, ge=0)
    expired: bool = Field(default=False, description="Artifact can no longer be read")


class ArtifactFetchResult(BaseModel):
    """Normalized artifacts of one CI run plus per-artifact failures."""

    run_id: str
    artifacts: list[ParsedArtifact] = Field(default_factory=list)
    errors: list[str] = Field(
        default_factory=list, description="One message per artifact that failed"
    )
