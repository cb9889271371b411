"""Load engine settings, organization membership, and result history files."""

import json
from pathlib import Path

import yaml
from pydantic import ValidationError

from nixbit.reliability_engine.models.engine_config import EngineConfig
from nixbit.reliability_engine.models.patterns import ProjectRef
from nixbit.reliability_engine.models.test_record import TestResultRecord


def _read_yaml(path: Path) -> object:
    """Read a YAML document, wrapping parse errors."""
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    try:
        with path.open() as f:
            return yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {path}: {e}") from e


def load_engine_config(path: Path | None = None) -> EngineConfig:
    """Load engine configuration.

    Args:
        path: YAML file with ``normalizer``, ``scoring``, ``patterns`` and
            ``static_analysis`` sections; defaults apply when omitted

    Returns:
        Engine configuration

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If YAML is invalid or doesn't match schema

    """
    if path is None:
        return EngineConfig()

    data = _read_yaml(path)
    if data is None:
        return EngineConfig()

    try:
        return EngineConfig.model_validate(data)
    except ValidationError as e:
        raise ValueError(f"Invalid engine configuration in {path}: {e}") from e


def load_organization(path: Path) -> tuple[str, list[ProjectRef]]:
    """Load the project membership of an organization.

    The file holds an ``organization_id`` and a ``projects`` list whose
    entries carry ``id``, ``name`` and ``repository``.

    Args:
        path: YAML membership file

    Returns:
        Organization identifier and its projects

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If YAML is invalid or doesn't match schema

    """
    data = _read_yaml(path)
    if not isinstance(data, dict):
        raise ValueError(f"Empty or invalid organization file: {path}")

    organization_id = data.get("organization_id")
    projects = data.get("projects", [])
    if not isinstance(organization_id, str) or not isinstance(projects, list):
        raise ValueError(
            f"Organization file {path} needs an organization_id and a projects list"
        )

    try:
        return organization_id, [
            ProjectRef.model_validate({**project, "organization_id": organization_id})
            for project in projects
        ]
    except (TypeError, ValidationError) as e:
        raise ValueError(f"Invalid project entry in {path}: {e}") from e


def load_history(path: Path) -> list[TestResultRecord]:
    """Load test result records from a JSON Lines file.

    Args:
        path: File with one serialized record per line; blank lines are skipped

    Returns:
        Records in file order

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If a line is not a valid record

    """
    if not path.exists():
        raise FileNotFoundError(f"History file not found: {path}")

    records: list[TestResultRecord] = []
    with path.open(encoding="utf-8") as f:
        for line_number, line in enumerate(f, start=1):
            if not line.strip():
                continue
            try:
                records.append(TestResultRecord.model_validate(json.loads(line)))
            except (json.JSONDecodeError, ValidationError) as e:
                raise ValueError(f"Invalid record at {path}:{line_number}: {e}") from e
    return records


def dump_history(records: list[TestResultRecord], path: Path) -> None:
    """Append records to a JSON Lines history file."""
    with path.open("a", encoding="utf-8") as f:
        for record in records:
            f.write(record.model_dump_json() + "\n")
