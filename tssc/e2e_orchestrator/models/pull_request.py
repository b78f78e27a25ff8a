"""Pull request reference."""

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


class PullRequest(BaseModel):
    """A pull request, or a direct commit when ``pull_number`` is 0."""

    model_config = ConfigDict(frozen=True)

    pull_number: int = Field(..., ge=0, description="PR number, 0 for a direct commit")
    sha: str = Field(..., description="Head commit SHA, or merge SHA once merged")
    repository: str = Field(..., description="Repository name")
    is_merged: bool = Field(default=False)
    merged_at: datetime | None = Field(default=None)
    url: str | None = Field(default=None)

    @classmethod
    def for_commit(cls, sha: str, repository: str) -> "PullRequest":
        """Reference a direct commit that has no pull request."""
        return cls(pull_number=0, sha=sha, repository=repository)

    @property
    def is_direct_commit(self) -> bool:
        """Whether this reference stands for a commit without a PR."""
        return self.pull_number == 0

    def with_merge_info(
        self, merge_sha: str, merged_at: datetime | None = None
    ) -> "PullRequest":
        """Return a merged copy pointing at the merge commit."""
        return self.model_copy(
            update={
                "sha": merge_sha,
                "is_merged": True,
                "merged_at": merged_at or datetime.now(timezone.utc),
            }
        )

    def __str__(self) -> str:
        """Render as ``PR #n (sha7) [MERGED] [url]``."""
        text = f"PR #{self.pull_number} ({self.sha[:7]})"
        if self.is_merged:
            text += " [MERGED]"
        if self.url:
            text += f" [{self.url}]"
        return text
