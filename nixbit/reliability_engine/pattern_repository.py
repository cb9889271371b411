"""In-memory persistence of pattern analyses and their resolution state."""

import logging
import threading
from datetime import datetime

from nixbit.reliability_engine.errors import NotFoundError
from nixbit.reliability_engine.models.patterns import DetectedPattern, PatternAnalysis

logger = logging.getLogger(__name__)


class PatternRepository:
    """Keep the latest analysis per organization and resolved pattern ids.

    Resolution state outlives analyses: a pattern id resolved once stays
    resolved when a later analysis detects it again.
    """

    def __init__(self) -> None:
        """Initialize an empty repository."""
        self._analyses: dict[str, PatternAnalysis] = {}
        self._patterns: dict[str, DetectedPattern] = {}
        self._resolutions: dict[str, tuple[str | None, datetime]] = {}
        self._lock = threading.Lock()

    def save_analysis(self, analysis: PatternAnalysis) -> PatternAnalysis:
        """Store an analysis, applying known resolutions to its patterns.

        Args:
            analysis: Freshly computed analysis

        Returns:
            The stored analysis, with resolved patterns marked as such

        """
        with self._lock:
            patterns = [self._apply_resolution(p) for p in analysis.patterns]
            stored = analysis.model_copy(update={"patterns": patterns})
            self._analyses[analysis.organization_id] = stored
            for pattern in patterns:
                self._patterns[pattern.id] = pattern
        return stored

    def with_resolutions(
        self, patterns: list[DetectedPattern]
    ) -> list[DetectedPattern]:
        """Return patterns with stored resolution state applied."""
        with self._lock:
            return [self._apply_resolution(p) for p in patterns]

    def latest_analysis(self, organization_id: str) -> PatternAnalysis | None:
        """Return the most recently stored analysis of an organization."""
        return self._analyses.get(organization_id)

    def get_pattern(self, pattern_id: str) -> DetectedPattern:
        """Return a stored pattern.

        Raises:
            NotFoundError: If no stored analysis contains the pattern

        """
        try:
            return self._patterns[pattern_id]
        except KeyError:
            raise NotFoundError(f"Pattern not found: {pattern_id}") from None

    def resolve(
        self, pattern_id: str, resolution_notes: str | None, now: datetime
    ) -> DetectedPattern:
        """Mark a pattern resolved; resolving it again changes nothing.

        Args:
            pattern_id: Identifier of a stored pattern
            resolution_notes: Free-form notes recorded with the resolution
            now: Resolution time

        Returns:
            The resolved pattern

        Raises:
            NotFoundError: If the pattern is unknown

        """
        with self._lock:
            pattern = self._patterns.get(pattern_id)
            if pattern is None:
                raise NotFoundError(f"Pattern not found: {pattern_id}")
            if pattern.status == "resolved":
                logger.info(f"Pattern {pattern_id} is already resolved")
                return pattern

            self._resolutions[pattern_id] = (resolution_notes, now)
            resolved = self._apply_resolution(pattern)
            self._patterns[pattern_id] = resolved
            self._replace_in_analysis(resolved)

        logger.info(
            f"Resolved pattern {pattern_id}",
            extra={
                "pattern_id": pattern_id,
                "organization_id": pattern.organization_id,
            },
        )
        return resolved

    def _apply_resolution(self, pattern: DetectedPattern) -> DetectedPattern:
        resolution = self._resolutions.get(pattern.id)
        if resolution is None:
            return pattern
        notes, resolved_at = resolution
        return pattern.model_copy(
            update={
                "status": "resolved",
                "resolution_notes": notes,
                "resolved_at": resolved_at,
            }
        )

    def _replace_in_analysis(self, pattern: DetectedPattern) -> None:
        analysis = self._analyses.get(pattern.organization_id)
        if analysis is None:
            return
        patterns = [pattern if p.id == pattern.id else p for p in analysis.patterns]
        self._analyses[pattern.organization_id] = analysis.model_copy(
            update={"patterns": patterns}
        )
