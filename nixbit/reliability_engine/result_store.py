"""Read path over organization membership and historical test results."""

from abc import ABC, abstractmethod
from collections import defaultdict
from collections.abc import Iterable
from datetime import datetime

from nixbit.reliability_engine.errors import NotFoundError
from nixbit.reliability_engine.models.patterns import ProjectRef
from nixbit.reliability_engine.models.test_record import TestResultRecord


class ResultStore(ABC):
    """Abstract source of projects and their test history."""

    @abstractmethod
    async def get_organization_projects(self, organization_id: str) -> list[ProjectRef]:
        """List the projects of an organization.

        Args:
            organization_id: Organization identifier

        Returns:
            Projects belonging to the organization

        Raises:
            NotFoundError: If the organization does not exist

        """

    @abstractmethod
    async def get_test_results(
        self, project_id: str, since: datetime
    ) -> list[TestResultRecord]:
        """Fetch the test results of a project recorded at or after since.

        Args:
            project_id: Project identifier
            since: Start of the time range (UTC)

        Returns:
            Test results, in any order

        Raises:
            NotFoundError: If the project does not exist

        """


class InMemoryResultStore(ResultStore):
    """Result store backed by in-process lists."""

    def __init__(
        self,
        projects: Iterable[ProjectRef] = (),
        results: Iterable[TestResultRecord] = (),
    ) -> None:
        """Initialize store with known projects and results."""
        self._projects: dict[str, ProjectRef] = {}
        self._results: dict[str, list[TestResultRecord]] = defaultdict(list)
        for project in projects:
            self.add_project(project)
        self.add_results(results)

    def add_project(self, project: ProjectRef) -> None:
        """Register a project under its organization."""
        self._projects[project.id] = project

    def add_results(self, results: Iterable[TestResultRecord]) -> None:
        """Append results; records without a project are ignored."""
        for record in results:
            if record.project_id is not None:
                self._results[record.project_id].append(record)

    async def get_organization_projects(self, organization_id: str) -> list[ProjectRef]:
        """List the projects registered for an organization."""
        projects = [
            p for p in self._projects.values() if p.organization_id == organization_id
        ]
        if not projects:
            raise NotFoundError(f"Organization not found: {organization_id}")
        return projects

    async def get_test_results(
        self, project_id: str, since: datetime
    ) -> list[TestResultRecord]:
        """Return dated results of a project since the given time."""
        if project_id not in self._projects:
            raise NotFoundError(f"Project not found: {project_id}")
        return [
            r
            for r in self._results.get(project_id, [])
            if r.timestamp is not None and r.timestamp >= since
        ]
