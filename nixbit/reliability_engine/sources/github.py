"""GitHub Actions artifact source."""

from collections.abc import Mapping

import aiohttp

from nixbit.reliability_engine.artifact_normalizer import ArtifactNormalizer
from nixbit.reliability_engine.models.source_config import ArtifactRef, GitHubConfig
from nixbit.reliability_engine.sources.base import ArtifactSource


class GitHubArtifactSource(ArtifactSource):
    """Download workflow run artifacts from GitHub Actions."""

    def __init__(
        self, config: GitHubConfig, normalizer: ArtifactNormalizer | None = None
    ) -> None:
        """Initialize GitHub source with configuration."""
        super().__init__(normalizer)
        self.config = config
        self.base_url = config.base_url.rstrip("/")

    @property
    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.token}",
            "Accept": "application/vnd.github+json",
        }

    async def list_artifacts(self, run_id: str) -> list[ArtifactRef]:
        """List the artifacts of a workflow run."""
        async with aiohttp.ClientSession() as session:
            url = (
                f"{self.base_url}/repos/{self.config.owner}/{self.config.repo}/"
                f"actions/runs/{run_id}/artifacts"
            )
            params = {"per_page": "100"}

            async with session.get(
                url, headers=self._headers, params=params
            ) as response:
                if response.status != 200:
                    text = await response.text()
                    raise RuntimeError(
                        f"Failed to list workflow artifacts: {response.status} {text}"
                    )

                data: Mapping[str, object] = await response.json()

        artifacts = data.get("artifacts", [])
        if not isinstance(artifacts, list):
            return []
        return [self._to_ref(a) for a in artifacts if isinstance(a, dict)]

    async def download(self, artifact: ArtifactRef) -> bytes:
        """Download an artifact ZIP archive."""
        async with aiohttp.ClientSession() as session:
            async with session.get(
                artifact.download_url, headers=self._headers
            ) as response:
                if response.status != 200:
                    text = await response.text()
                    raise RuntimeError(
                        f"Failed to download artifact {artifact.name}: "
                        f"{response.status} {text}"
                    )

                return await response.read()

    def _to_ref(self, artifact: Mapping[str, object]) -> ArtifactRef:
        """Map a GitHub artifact object to an artifact reference."""
        size = artifact.get("size_in_bytes")
        return ArtifactRef(
            id=str(artifact.get("id", "")),
            name=str(artifact.get("name", "")),
            download_url=str(artifact.get("archive_download_url", "")),
            size_bytes=size if isinstance(size, int) else None,
            expired=bool(artifact.get("expired", False)),
        )
