"""GitLab CI artifact source."""

from collections.abc import Mapping
from urllib.parse import quote

import aiohttp

from nixbit.reliability_engine.artifact_normalizer import ArtifactNormalizer
from nixbit.reliability_engine.models.source_config import ArtifactRef, GitLabConfig
from nixbit.reliability_engine.sources.base import ArtifactSource


class GitLabArtifactSource(ArtifactSource):
    """Download job artifacts of a GitLab pipeline."""

    def __init__(
        self, config: GitLabConfig, normalizer: ArtifactNormalizer | None = None
    ) -> None:
        """Initialize GitLab source with configuration."""
        super().__init__(normalizer)
        self.config = config
        self.base_url = config.base_url.rstrip("/")
        # URL-encode project_id to support both numeric IDs and paths
        self._encoded_project_id = quote(str(config.project_id), safe="")

    async def list_artifacts(self, run_id: str) -> list[ArtifactRef]:
        """List pipeline jobs that kept an artifacts archive."""
        async with aiohttp.ClientSession() as session:
            url = (
                f"{self.base_url}/projects/{self._encoded_project_id}/"
                f"pipelines/{run_id}/jobs"
            )
            headers = {
                "PRIVATE-TOKEN": self.config.token,
            }
            params = {"per_page": "100"}

            async with session.get(url, headers=headers, params=params) as response:
                if response.status != 200:
                    text = await response.text()
                    raise RuntimeError(
                        f"Failed to list pipeline jobs: {response.status} {text}"
                    )

                jobs: list[object] = await response.json()

        return [
            self._to_ref(job)
            for job in jobs
            if isinstance(job, dict) and self._has_archive(job)
        ]

    async def download(self, artifact: ArtifactRef) -> bytes:
        """Download the artifacts archive of a job."""
        async with aiohttp.ClientSession() as session:
            headers = {
                "PRIVATE-TOKEN": self.config.token,
            }

            async with session.get(artifact.download_url, headers=headers) as response:
                if response.status != 200:
                    text = await response.text()
                    raise RuntimeError(
                        f"Failed to download job artifacts {artifact.name}: "
                        f"{response.status} {text}"
                    )

                return await response.read()

    def _has_archive(self, job: Mapping[str, object]) -> bool:
        """Check whether a job uploaded an artifacts archive."""
        if isinstance(job.get("artifacts_file"), dict):
            return True
        artifacts = job.get("artifacts")
        if not isinstance(artifacts, list):
            return False
        return any(
            isinstance(a, dict) and a.get("file_type") == "archive" for a in artifacts
        )

    def _to_ref(self, job: Mapping[str, object]) -> ArtifactRef:
        """Map a GitLab job object to an artifact reference."""
        job_id = job.get("id")
        artifacts_file = job.get("artifacts_file")
        size = (
            artifacts_file.get("size") if isinstance(artifacts_file, dict) else None
        )
        return ArtifactRef(
            id=str(job_id),
            name=str(job.get("name", f"job-{job_id}")),
            download_url=(
                f"{self.base_url}/projects/{self._encoded_project_id}/"
                f"jobs/{job_id}/artifacts"
            ),
            size_bytes=size if isinstance(size, int) else None,
        )
