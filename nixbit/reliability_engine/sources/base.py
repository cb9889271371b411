"""Abstract base class for CI artifact sources."""

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from datetime import datetime

from nixbit.reliability_engine.artifact_normalizer import ArtifactNormalizer
from nixbit.reliability_engine.models.source_config import (
    ArtifactFetchResult,
    ArtifactRef,
)
from nixbit.reliability_engine.models.test_record import ParsedArtifact

logger = logging.getLogger(__name__)


class ArtifactSource(ABC):
    """Abstract base for downloading test report artifacts of a CI run."""

    def __init__(self, normalizer: ArtifactNormalizer | None = None) -> None:
        """Initialize source with the normalizer applied to downloads."""
        self.normalizer = normalizer or ArtifactNormalizer()

    @abstractmethod
    async def list_artifacts(self, run_id: str) -> list[ArtifactRef]:
        """List the artifacts produced by a CI run.

        Args:
            run_id: Workflow run or pipeline identifier

        Returns:
            Artifacts of the run

        """

    @abstractmethod
    async def download(self, artifact: ArtifactRef) -> bytes:
        """Download the raw bytes of an artifact.

        Args:
            artifact: Artifact returned by list_artifacts

        Returns:
            Archive or report bytes

        """

    async def fetch_run_artifacts(
        self,
        run_id: str,
        name_filters: list[str] | None = None,
        *,
        project_id: str | None = None,
        run_timestamp: datetime | None = None,
        branch: str | None = None,
    ) -> ArtifactFetchResult:
        """Download and normalize the test report artifacts of a run.

        Artifacts are narrowed to names containing one of name_filters, then
        to names matching the configured test artifact patterns. When no
        name matches those patterns, every remaining artifact is tried. A
        failing artifact is reported in ``errors`` and never aborts the run.

        Args:
            run_id: Workflow run or pipeline identifier
            name_filters: Substrings an artifact name must contain
            project_id: Project stamped onto every record
            run_timestamp: Run time used when a report carries none
            branch: Branch stamped onto every record

        Returns:
            Parsed artifacts and per-artifact error messages

        """
        artifacts = [a for a in await self.list_artifacts(run_id) if not a.expired]
        if name_filters:
            artifacts = [
                a for a in artifacts if any(name in a.name for name in name_filters)
            ]
        artifacts = self._select_test_artifacts(artifacts)

        if not artifacts:
            logger.info(f"No artifacts found for run {run_id}")
            return ArtifactFetchResult(run_id=run_id)

        logger.info(f"Processing {len(artifacts)} artifacts for run {run_id}")
        tasks = [
            self._fetch_artifact(a, project_id, run_timestamp, branch)
            for a in artifacts
        ]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        fetch_result = ArtifactFetchResult(run_id=run_id)
        for artifact, result in zip(artifacts, results):
            if isinstance(result, ParsedArtifact):
                logger.info(
                    f"Parsed {result.total_tests} tests from artifact {artifact.name}"
                )
                fetch_result.artifacts.append(result)
            elif isinstance(result, Exception):
                message = f"Failed to process artifact {artifact.name}: {result}"
                logger.error(message, exc_info=result)
                fetch_result.errors.append(message)
            else:
                raise result
        return fetch_result

    def _select_test_artifacts(
        self, artifacts: list[ArtifactRef]
    ) -> list[ArtifactRef]:
        """Keep artifacts named like test reports, or all when none is."""
        patterns = [
            re.compile(p, re.IGNORECASE)
            for p in self.normalizer.config.artifact_name_patterns
        ]
        selected = [a for a in artifacts if any(p.search(a.name) for p in patterns)]
        return selected or artifacts

    async def _fetch_artifact(
        self,
        artifact: ArtifactRef,
        project_id: str | None,
        run_timestamp: datetime | None,
        branch: str | None,
    ) -> ParsedArtifact:
        data = await self.download(artifact)
        return self.normalizer.parse(
            artifact.name,
            data,
            project_id=project_id,
            run_timestamp=run_timestamp,
            branch=branch,
        )
