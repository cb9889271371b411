"""Normalize CI test report artifacts into test result records."""

import gzip
import io
import json
import logging
import re
import tarfile
import tempfile
import zipfile
from datetime import datetime
from pathlib import Path

from pydantic import ValidationError

from nixbit.reliability_engine.errors import (
    CorruptArchiveError,
    UnsupportedFormatError,
)
from nixbit.reliability_engine.models.engine_config import NormalizerConfig
from nixbit.reliability_engine.models.test_record import (
    CoverageSummary,
    ParsedArtifact,
    ReportFormat,
    TestResultRecord,
)
from nixbit.reliability_engine.parsers import (
    GenericJsonParser,
    GitLabJsonParser,
    JenkinsJsonParser,
    JUnitParser,
    ParseContext,
    ReportParser,
    ReportText,
    StructuredJsonParser,
    TapParser,
)

logger = logging.getLogger(__name__)

ZIP_MAGIC = b"PK\x03\x04"
GZIP_MAGIC = b"\x1f\x8b"
TAR_MAGIC_OFFSET = 257

# Parser names preferred for a hint, tried before the default order.
HINT_PREFERENCES: dict[str, tuple[str, ...]] = {
    "junit": ("junit",),
    "xml": ("junit",),
    "json": ("structured-json", "jenkins-json", "gitlab-json", "generic-json"),
    "jest": ("structured-json",),
    "tap": ("tap",),
    "jenkins": ("jenkins-json", "junit"),
    "gitlab": ("gitlab-json", "junit"),
    "github": ("junit", "structured-json"),
}


def default_parsers() -> list[ReportParser]:
    """Return the parsers in their default probe order."""
    return [
        JUnitParser(),
        StructuredJsonParser(),
        JenkinsJsonParser(),
        GitLabJsonParser(),
        GenericJsonParser(),
        TapParser(),
    ]


class ArtifactNormalizer:
    """Convert raw CI report bytes or text into normalized test records."""

    def __init__(
        self,
        config: NormalizerConfig | None = None,
        parsers: list[ReportParser] | None = None,
    ) -> None:
        """Initialize normalizer with settings and the parsers to probe."""
        self.config = config or NormalizerConfig()
        self.parsers = parsers if parsers is not None else default_parsers()
        self._report_patterns = [
            re.compile(pattern, re.IGNORECASE)
            for pattern in self.config.report_file_patterns
        ]

    def parse(
        self,
        format_hint: str | None,
        raw_content: bytes | str,
        *,
        project_id: str | None = None,
        run_timestamp: datetime | None = None,
        branch: str | None = None,
    ) -> ParsedArtifact:
        """Parse one artifact into normalized records.

        Args:
            format_hint: Format name, file name, or CI system name. It only
                changes the order in which parsers are tried.
            raw_content: Report bytes, archive bytes, or decoded text
            project_id: Project stamped onto every record
            run_timestamp: Run time used when the report carries none
            branch: Branch stamped onto every record

        Returns:
            Parsed artifact with at least one record

        Raises:
            UnsupportedFormatError: If no parser produced any record
            CorruptArchiveError: If archive bytes cannot be opened

        """
        context = ParseContext(
            project_id=project_id, run_timestamp=run_timestamp, branch=branch
        )

        if isinstance(raw_content, bytes):
            if is_archive(raw_content):
                return self._parse_archive(raw_content, context)
            content = raw_content.decode("utf-8-sig", errors="replace")
        else:
            content = raw_content.lstrip("\ufeff")

        return self._parse_text(format_hint, content, context)

    def parse_archive(
        self,
        data: bytes,
        *,
        project_id: str | None = None,
        run_timestamp: datetime | None = None,
        branch: str | None = None,
    ) -> ParsedArtifact:
        """Extract a ZIP or tar archive and parse every report file in it.

        The extraction directory is removed before returning, also on errors.

        Raises:
            CorruptArchiveError: If the archive cannot be opened
            UnsupportedFormatError: If no report file yields any record

        """
        context = ParseContext(
            project_id=project_id, run_timestamp=run_timestamp, branch=branch
        )
        return self._parse_archive(data, context)

    def parse_file(
        self,
        path: Path,
        *,
        project_id: str | None = None,
        run_timestamp: datetime | None = None,
        branch: str | None = None,
    ) -> ParsedArtifact:
        """Parse a report or archive file, using its name as the format hint."""
        if not path.exists():
            raise FileNotFoundError(f"Artifact file not found: {path}")

        return self.parse(
            path.name,
            path.read_bytes(),
            project_id=project_id,
            run_timestamp=run_timestamp,
            branch=branch,
        )

    def is_report_file(self, name: str) -> bool:
        """Check whether a file name looks like a test report."""
        return any(pattern.match(name) for pattern in self._report_patterns)

    def _ordered_parsers(self, format_hint: str | None) -> list[ReportParser]:
        """Move the parsers preferred by the hint to the front."""
        preferred = _hint_preferences(format_hint)
        if not preferred:
            return list(self.parsers)

        def rank(parser: ReportParser) -> int:
            if parser.name in preferred:
                return preferred.index(parser.name)
            return len(preferred)

        return sorted(self.parsers, key=rank)

    def _parse_text(
        self, format_hint: str | None, content: str, context: ParseContext
    ) -> ParsedArtifact:
        attempted: list[str] = []
        report = ReportText(content)

        for parser in self._ordered_parsers(format_hint):
            attempted.append(parser.name)
            document = parser.load(report)
            if document is None:
                continue

            artifact = parser.parse(document, context)
            if artifact.tests:
                logger.info(
                    f"Parsed {artifact.total_tests} tests with {parser.name} parser",
                    extra={
                        "parser": parser.name,
                        "malformed_cases": artifact.malformed_cases,
                    },
                )
                return artifact

            logger.debug(f"{parser.name} parser recognized content but found no tests")

        raise UnsupportedFormatError(
            f"No parser produced any test record (tried: {', '.join(attempted)})"
        )

    def _parse_archive(self, data: bytes, context: ParseContext) -> ParsedArtifact:
        with tempfile.TemporaryDirectory(prefix="nixbit-artifact-") as work_dir:
            root = Path(work_dir)
            single_report = _extract(data, root)
            if single_report is not None:
                return self.parse(
                    None,
                    single_report,
                    project_id=context.project_id,
                    run_timestamp=context.run_timestamp,
                    branch=context.branch,
                )
            return self._parse_tree(root, context)

    def _parse_tree(self, root: Path, context: ParseContext) -> ParsedArtifact:
        """Parse every report file below root in sorted order."""
        files = sorted(p for p in root.rglob("*") if p.is_file())
        report_files = [
            p
            for p in files
            if self.is_report_file(p.name) and p.name != self.config.coverage_file_name
        ]

        tests: list[TestResultRecord] = []
        formats: list[ReportFormat] = []
        duration_ms = 0
        malformed = 0

        for path in report_files:
            relative = path.relative_to(root)
            try:
                artifact = self._parse_text(
                    path.name,
                    path.read_bytes().decode("utf-8-sig", errors="replace"),
                    context,
                )
            except UnsupportedFormatError:
                logger.debug(f"No test records in archive member {relative}")
                continue

            logger.debug(f"Archive member {relative}: {artifact.total_tests} tests")
            tests.extend(artifact.tests)
            formats.append(artifact.format)
            duration_ms += artifact.duration_ms or 0
            malformed += artifact.malformed_cases

        if not tests:
            raise UnsupportedFormatError(
                f"No test records in archive ({len(report_files)} candidate files)"
            )

        coverage = None
        coverage_files = [p for p in files if p.name == self.config.coverage_file_name]
        if coverage_files:
            coverage = read_coverage_summary(coverage_files[0])

        return ParsedArtifact.from_tests(
            formats[0],
            tests,
            duration_ms=duration_ms or None,
            coverage=coverage,
            malformed_cases=malformed,
        )


def is_archive(data: bytes) -> bool:
    """Check for ZIP, gzip, or tar signatures."""
    return (
        data.startswith(ZIP_MAGIC)
        or data.startswith(GZIP_MAGIC)
        or data[TAR_MAGIC_OFFSET : TAR_MAGIC_OFFSET + 5] == b"ustar"
    )


def _extract(data: bytes, destination: Path) -> bytes | None:
    """Extract archive bytes into destination.

    Returns:
        Decompressed content when the data is a gzip-compressed single
        file rather than an archive, otherwise None

    Raises:
        CorruptArchiveError: If the archive cannot be opened

    """
    try:
        if data.startswith(ZIP_MAGIC):
            with zipfile.ZipFile(io.BytesIO(data)) as archive:
                archive.extractall(destination)
            return None

        try:
            with tarfile.open(fileobj=io.BytesIO(data), mode="r:*") as archive:
                archive.extractall(destination, filter="data")
            return None
        except tarfile.ReadError:
            if not data.startswith(GZIP_MAGIC):
                raise
            return gzip.decompress(data)
    except (zipfile.BadZipFile, tarfile.TarError, OSError, EOFError) as e:
        raise CorruptArchiveError(f"Cannot open artifact archive: {e}") from e


def read_coverage_summary(path: Path) -> CoverageSummary | None:
    """Read an Istanbul json-summary coverage file."""
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError, RecursionError) as e:
        logger.warning(f"Ignoring unreadable coverage summary {path.name}: {e}")
        return None

    total = data.get("total") if isinstance(data, dict) else None
    if not isinstance(total, dict):
        return None

    try:
        return CoverageSummary(
            lines=_pct(total.get("lines")),
            functions=_pct(total.get("functions")),
            branches=_pct(total.get("branches")),
            statements=_pct(total.get("statements")),
        )
    except ValidationError as e:
        logger.warning(f"Ignoring invalid coverage summary {path.name}: {e}")
        return None


def _pct(entry: object) -> float:
    """Istanbul reports "Unknown" when nothing was instrumented."""
    if isinstance(entry, dict):
        value = entry.get("pct")
        if isinstance(value, int | float) and not isinstance(value, bool):
            return float(value)
    return 0.0


def _hint_preferences(format_hint: str | None) -> tuple[str, ...]:
    if not format_hint:
        return ()

    hint = format_hint.strip().lower()
    if hint in HINT_PREFERENCES:
        return HINT_PREFERENCES[hint]

    suffix = Path(hint).suffix.lstrip(".")
    if suffix in HINT_PREFERENCES:
        return HINT_PREFERENCES[suffix]

    for key, preferred in HINT_PREFERENCES.items():
        if key in hint:
            return preferred
    return ()
