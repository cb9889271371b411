"""Tests for artifact normalization."""

import gzip
import io
import json
import tarfile
import tempfile
import zipfile
from datetime import datetime, timezone
from pathlib import Path

import pytest

from nixbit.reliability_engine.artifact_normalizer import (
    ArtifactNormalizer,
    is_archive,
)
from nixbit.reliability_engine.errors import (
    CorruptArchiveError,
    UnsupportedFormatError,
)

JUNIT = (
    '<testsuite name="App" time="1.5">'
    '<testcase name="renders" time="0.5"/>'
    '<testcase name="submits"><failure message="timeout"/></testcase>'
    "</testsuite>"
)
DEEPLY_NESTED = "[" * 100_000 + "]" * 100_000
COVERAGE = {
    "total": {
        "lines": {"pct": 81.5},
        "functions": {"pct": 70},
        "branches": {"pct": "Unknown"},
        "statements": {"pct": 80.25},
    }
}


def _zip(files: dict[str, str]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, content in files.items():
            archive.writestr(name, content)
    return buffer.getvalue()


def _tar_gz(files: dict[str, str]) -> bytes:
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as archive:
        for name, content in files.items():
            data = content.encode()
            info = tarfile.TarInfo(name)
            info.size = len(data)
            archive.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


@pytest.fixture
def isolated_tmp(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Route temporary directories into tmp_path."""
    monkeypatch.setattr(tempfile, "tempdir", str(tmp_path))
    return tmp_path


def test_parse_text_report_stamps_context() -> None:
    """parse stamps project, branch and run timestamp onto records."""
    run_time = datetime(2024, 5, 1, tzinfo=timezone.utc)

    artifact = ArtifactNormalizer().parse(
        "junit", JUNIT, project_id="web", run_timestamp=run_time, branch="main"
    )

    assert artifact.total_tests == 2
    assert artifact.failed_tests == 1
    assert {t.project_id for t in artifact.tests} == {"web"}
    assert {t.branch for t in artifact.tests} == {"main"}
    assert {t.timestamp for t in artifact.tests} == {run_time}


def test_parse_without_hint_probes_all_parsers() -> None:
    """Content is recognized without any hint."""
    artifact = ArtifactNormalizer().parse(None, "1..1\nok 1 boots\n")

    assert artifact.format == "tap"
    assert artifact.tests[0].test_name == "boots"


def test_parse_bytes_with_bom() -> None:
    """Byte content is decoded with a leading BOM removed."""
    artifact = ArtifactNormalizer().parse(
        "results.xml", b"\xef\xbb\xbf" + JUNIT.encode()
    )

    assert artifact.format == "junit"


def test_parse_zip_with_coverage(isolated_tmp: Path) -> None:
    """ZIP bundles yield their reports and the coverage summary."""
    data = _zip(
        {
            "reports/junit.xml": JUNIT,
            "coverage/coverage-summary.json": json.dumps(COVERAGE),
            "README.md": "not a report",
        }
    )

    artifact = ArtifactNormalizer().parse("github", data, project_id="web")

    assert artifact.total_tests == 2
    assert artifact.duration_ms == 1500
    assert artifact.coverage is not None
    assert artifact.coverage.lines == 81.5
    assert artifact.coverage.functions == 70.0
    assert artifact.coverage.branches == 0.0
    assert artifact.coverage.statements == 80.25
    assert list(isolated_tmp.iterdir()) == []


def test_parse_zip_combines_members() -> None:
    """Records of every report member are combined."""
    data = _zip(
        {
            "a/junit.xml": JUNIT,
            "b/test-results.json": json.dumps(
                [{"name": "api ok", "status": "passed"}]
            ),
        }
    )

    artifact = ArtifactNormalizer().parse_archive(data, branch="main")

    assert artifact.total_tests == 3
    assert artifact.format == "junit"
    assert {t.branch for t in artifact.tests} == {"main"}


def test_deeply_nested_json_is_unsupported() -> None:
    """JSON nested beyond the decoder's recursion limit is not a report."""
    with pytest.raises(UnsupportedFormatError):
        ArtifactNormalizer().parse(None, DEEPLY_NESTED)


def test_parse_zip_skips_deeply_nested_member() -> None:
    """An undecodable member is skipped and the other reports still parse."""
    data = _zip({"a/test-results.json": DEEPLY_NESTED, "b/junit.xml": JUNIT})

    artifact = ArtifactNormalizer().parse(None, data)

    assert artifact.format == "junit"
    assert [t.test_name for t in artifact.tests] == ["renders", "submits"]


def test_parse_is_deterministic() -> None:
    """Parsing the same bytes twice yields identical records."""
    data = _zip(
        {
            "z/report.xml": JUNIT,
            "a/junit.xml": JUNIT.replace("renders", "loads"),
        }
    )
    normalizer = ArtifactNormalizer()

    first = normalizer.parse(None, data)
    second = normalizer.parse(None, data)

    assert first.tests == second.tests
    assert [t.test_name for t in first.tests] == [
        "loads",
        "submits",
        "renders",
        "submits",
    ]


def test_parse_tar_gz() -> None:
    """Gzipped tarballs are extracted like ZIP bundles."""
    data = _tar_gz({"out/report.xml": JUNIT})

    artifact = ArtifactNormalizer().parse(None, data)

    assert artifact.total_tests == 2


def test_parse_gzip_single_file() -> None:
    """A gzip-compressed single report is decompressed and parsed."""
    artifact = ArtifactNormalizer().parse(None, gzip.compress(JUNIT.encode()))

    assert artifact.total_tests == 2


def test_corrupt_zip_raises_and_cleans_up(isolated_tmp: Path) -> None:
    """A broken archive raises CorruptArchiveError and leaves no files."""
    with pytest.raises(CorruptArchiveError):
        ArtifactNormalizer().parse(None, b"PK\x03\x04definitely not a zip")

    assert list(isolated_tmp.iterdir()) == []


def test_archive_without_reports_is_unsupported(isolated_tmp: Path) -> None:
    """An archive with no parseable report is unsupported."""
    data = _zip({"notes.txt": "hello", "empty.xml": "<root/>"})

    with pytest.raises(UnsupportedFormatError):
        ArtifactNormalizer().parse(None, data)

    assert list(isolated_tmp.iterdir()) == []


@pytest.mark.parametrize(
    "content", ["", "hello world", "<html/>", '{"unrelated": true}', "[]"]
)
def test_unrecognized_content_is_unsupported(content: str) -> None:
    """Content no parser understands raises UnsupportedFormatError."""
    with pytest.raises(UnsupportedFormatError):
        ArtifactNormalizer().parse(None, content)


def test_recognized_report_without_tests_is_unsupported() -> None:
    """A well-formed report with zero test cases carries no signal."""
    with pytest.raises(UnsupportedFormatError):
        ArtifactNormalizer().parse("junit", '<testsuite name="empty"/>')


def test_parse_file(tmp_path: Path) -> None:
    """parse_file reads the file and hints with its name."""
    path = tmp_path / "results.tap"
    path.write_text("1..1\nnot ok 1 flaky\n")

    artifact = ArtifactNormalizer().parse_file(path, project_id="cli")

    assert artifact.tests[0].status == "failed"
    assert artifact.tests[0].project_id == "cli"


def test_parse_file_missing(tmp_path: Path) -> None:
    """parse_file raises FileNotFoundError for missing paths."""
    with pytest.raises(FileNotFoundError):
        ArtifactNormalizer().parse_file(tmp_path / "missing.xml")


def test_is_report_file() -> None:
    """Report file names are matched case-insensitively."""
    normalizer = ArtifactNormalizer()

    assert normalizer.is_report_file("TEST-com.acme.AppTest.xml")
    assert normalizer.is_report_file("jest-test-results.json")
    assert normalizer.is_report_file("suite.tap")
    assert not normalizer.is_report_file("package.json")
    assert not normalizer.is_report_file("app.log")


def test_is_archive() -> None:
    """is_archive recognizes ZIP and gzip signatures."""
    assert is_archive(_zip({"a.xml": JUNIT}))
    assert is_archive(gzip.compress(b"x"))
    assert not is_archive(JUNIT.encode())
