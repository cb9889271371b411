"""CLI entry point for the test reliability engine."""

import asyncio
import json
import logging
import os
import sys
from datetime import datetime
from pathlib import Path

import typer

from nixbit.reliability_engine.artifact_normalizer import ArtifactNormalizer
from nixbit.reliability_engine.config_loader import (
    dump_history,
    load_engine_config,
    load_history,
    load_organization,
)
from nixbit.reliability_engine.errors import (
    CorruptArchiveError,
    NotFoundError,
    UnsupportedFormatError,
)
from nixbit.reliability_engine.feature_cache import InMemoryFeatureCache
from nixbit.reliability_engine.models.engine_config import EngineConfig
from nixbit.reliability_engine.models.source_config import GitHubConfig, GitLabConfig
from nixbit.reliability_engine.models.test_record import TestResultRecord
from nixbit.reliability_engine.pattern_detector import PatternDetector
from nixbit.reliability_engine.result_store import InMemoryResultStore
from nixbit.reliability_engine.sources.base import ArtifactSource
from nixbit.reliability_engine.sources.github import GitHubArtifactSource
from nixbit.reliability_engine.sources.gitlab import GitLabArtifactSource
from nixbit.reliability_engine.stability_scoring import (
    StabilityScoringEngine,
    group_by_test,
)
from nixbit.reliability_engine.static_risk_analyzer import StaticRiskAnalyzer

# Configure logging - force reconfiguration
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stderr,
    force=True,
)
logger = logging.getLogger(__name__)

app = typer.Typer()

CONFIG_HELP = "YAML engine configuration file"
NOW_HELP = "Reference time in ISO 8601 (default: now)"


def _echo_json(data: object) -> None:
    typer.echo(json.dumps(data, indent=2))


def _fail(message: str) -> typer.Exit:
    logger.error(message)
    typer.echo(f"Error: {message}", err=True)
    return typer.Exit(code=1)


def _load_config(path: Path | None) -> EngineConfig:
    try:
        return load_engine_config(path)
    except (FileNotFoundError, ValueError) as e:
        raise _fail(str(e))


def _parse_time(value: str | None) -> datetime | None:
    if value is None:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as e:
        raise _fail(f"Invalid timestamp {value!r}: {e}")


@app.command()
def parse(
    artifact: Path = typer.Argument(..., help="Report file or archive to parse"),  # noqa: B008
    format_hint: str | None = typer.Option(
        None, help="Format or CI system hint (junit, json, tap, github, ...)"
    ),
    project_id: str | None = typer.Option(None, help="Project stamped on records"),
    branch: str | None = typer.Option(None, help="Branch stamped on records"),
    run_timestamp: str | None = typer.Option(
        None, help="Run time used when the report carries none"
    ),
    append_to: Path | None = typer.Option(  # noqa: B008
        None, help="JSON Lines history file the records are appended to"
    ),
    config: Path | None = typer.Option(None, help=CONFIG_HELP),  # noqa: B008
) -> None:
    """Normalize a CI test report into test result records."""
    normalizer = ArtifactNormalizer(_load_config(config).normalizer)
    timestamp = _parse_time(run_timestamp)

    if not artifact.exists():
        raise _fail(f"Artifact file not found: {artifact}")

    try:
        parsed = normalizer.parse(
            format_hint or artifact.name,
            artifact.read_bytes(),
            project_id=project_id,
            run_timestamp=timestamp,
            branch=branch,
        )
    except UnsupportedFormatError as e:
        logger.warning(f"No test results found in {artifact}: {e}")
        typer.echo("No test results found")
        return
    except CorruptArchiveError as e:
        raise _fail(str(e))

    if append_to is not None:
        dump_history(parsed.tests, append_to)
        logger.info(f"Appended {parsed.total_tests} records to {append_to}")

    _echo_json(parsed.model_dump(mode="json"))


@app.command()
def score(
    history: Path = typer.Argument(..., help="JSON Lines history file"),  # noqa: B008
    test_name: str = typer.Option(..., help="Test to score"),
    test_suite: str | None = typer.Option(None, help="Suite qualifier of the test"),
    project_id: str | None = typer.Option(None, help="Project of the test"),
    window_days: int | None = typer.Option(None, help="Trailing window in days"),
    now: str | None = typer.Option(None, help=NOW_HELP),
    config: Path | None = typer.Option(None, help=CONFIG_HELP),  # noqa: B008
) -> None:
    """Compute the stability score of one test."""
    engine = StabilityScoringEngine(_load_config(config).scoring)
    records = [
        r
        for r in _load_records(history)
        if r.test_name == test_name
        and (test_suite is None or r.test_suite == test_suite)
        and (project_id is None or r.project_id == project_id)
    ]

    result = engine.score(
        records,
        window_days,
        test_name=test_name,
        test_suite=test_suite,
        now=_parse_time(now),
    )
    _echo_json(result.model_dump(mode="json"))


@app.command()
def report(
    history: Path = typer.Argument(..., help="JSON Lines history file"),  # noqa: B008
    project_id: str = typer.Option(..., help="Project to report on"),
    window_days: int | None = typer.Option(None, help="Trailing window in days"),
    now: str | None = typer.Option(None, help=NOW_HELP),
    config: Path | None = typer.Option(None, help=CONFIG_HELP),  # noqa: B008
) -> None:
    """Build the stability report of a project."""
    engine = StabilityScoringEngine(_load_config(config).scoring)
    records = [r for r in _load_records(history) if r.project_id == project_id]

    result = engine.report(
        group_by_test(records),
        window_days,
        project_id=project_id,
        now=_parse_time(now),
    )
    _echo_json(result.model_dump(mode="json"))


@app.command("analyze-source")
def analyze_source(
    paths: list[Path] = typer.Argument(..., help="Test source files"),  # noqa: B008
    config: Path | None = typer.Option(None, help=CONFIG_HELP),  # noqa: B008
) -> None:
    """Extract static flakiness risk features from test sources."""
    cache_size = _load_config(config).static_analysis.cache_size
    analyzer = StaticRiskAnalyzer(
        InMemoryFeatureCache(cache_size) if cache_size > 0 else None
    )

    results = []
    for path in paths:
        try:
            content = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise _fail(f"Cannot read {path}: {e}")

        results.append(
            {
                "path": str(path),
                "is_test_file": analyzer.is_test_file(str(path), content),
                "features": analyzer.analyze_file(str(path), content).model_dump(
                    mode="json"
                ),
            }
        )
    _echo_json(results)


@app.command()
def patterns(
    organization: Path = typer.Option(..., help="YAML organization membership file"),  # noqa: B008
    history: Path = typer.Option(..., help="JSON Lines history file"),  # noqa: B008
    window_days: int | None = typer.Option(None, help="Trailing window in days"),
    critical_only: bool = typer.Option(
        False, help="Only print active critical and high severity patterns"
    ),
    now: str | None = typer.Option(None, help=NOW_HELP),
    config: Path | None = typer.Option(None, help=CONFIG_HELP),  # noqa: B008
) -> None:
    """Detect failure patterns shared across an organization's repositories."""
    engine_config = _load_config(config)
    try:
        organization_id, projects = load_organization(organization)
    except (FileNotFoundError, ValueError) as e:
        raise _fail(str(e))

    detector = PatternDetector(
        InMemoryResultStore(projects, _load_records(history)),
        config=engine_config.patterns,
        scoring_engine=StabilityScoringEngine(engine_config.scoring),
    )

    reference_time = _parse_time(now)
    try:
        analysis = asyncio.run(
            detector.analyze(organization_id, window_days, now=reference_time)
        )
    except NotFoundError as e:
        raise _fail(str(e))

    if critical_only:
        critical = asyncio.run(
            detector.critical_patterns(organization_id, now=reference_time)
        )
        _echo_json([p.model_dump(mode="json") for p in critical])
        return

    _echo_json(analysis.model_dump(mode="json"))


@app.command("fetch-artifacts")
def fetch_artifacts(
    provider: str = typer.Option(..., help="Provider type (github, gitlab)"),
    provider_config: str = typer.Option(
        ..., help="JSON configuration for the provider"
    ),
    run_id: str = typer.Option(..., help="Workflow run or pipeline ID"),
    artifact_name: list[str] | None = typer.Option(  # noqa: B008
        None, help="Only artifacts whose name contains this text"
    ),
    project_id: str | None = typer.Option(None, help="Project stamped on records"),
    branch: str | None = typer.Option(None, help="Branch stamped on records"),
    config: Path | None = typer.Option(None, help=CONFIG_HELP),  # noqa: B008
) -> None:
    """Download and normalize the test report artifacts of a CI run."""
    normalizer = ArtifactNormalizer(_load_config(config).normalizer)
    try:
        source = _create_source(provider, provider_config, normalizer)
    except ValueError as e:
        raise _fail(f"Failed to create provider: {e}")

    logger.info(f"Fetching artifacts of run {run_id} from {provider}")
    try:
        result = asyncio.run(
            source.fetch_run_artifacts(
                run_id, artifact_name or None, project_id=project_id, branch=branch
            )
        )
    except Exception as e:
        logger.exception("Artifact download failed")
        raise _fail(f"Error fetching artifacts: {e}")

    _echo_json(result.model_dump(mode="json"))

    if result.errors and not result.artifacts:
        logger.error(f"All {len(result.errors)} artifacts failed")
        raise typer.Exit(code=1)


def _load_records(history: Path) -> list[TestResultRecord]:
    try:
        return load_history(history)
    except (FileNotFoundError, ValueError) as e:
        raise _fail(str(e))


def _create_source(
    provider_type: str, config_json: str, normalizer: ArtifactNormalizer
) -> ArtifactSource:
    """Create artifact source based on type and JSON configuration."""
    provider_type = provider_type.lower()

    try:
        config_dict = json.loads(config_json)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in provider-config: {e}")

    if provider_type == "github":
        config = GitHubConfig(**config_dict)
        if "GITHUB_API_URL" in os.environ:
            config.base_url = os.environ["GITHUB_API_URL"]
        return GitHubArtifactSource(config, normalizer)
    elif provider_type == "gitlab":
        return GitLabArtifactSource(GitLabConfig(**config_dict), normalizer)
    else:
        raise ValueError(
            f"Unknown provider type: {provider_type}. Must be one of: github, gitlab"
        )


if __name__ == "__main__":  # pragma: no cover
    app()
