"""Test report parsers, one per supported format variant."""

from nixbit.reliability_engine.parsers.base import (
    ParseContext,
    ReportParser,
    ReportText,
)
from nixbit.reliability_engine.parsers.json_report import (
    GenericJsonParser,
    GitLabJsonParser,
    JenkinsJsonParser,
    StructuredJsonParser,
)
from nixbit.reliability_engine.parsers.junit import JUnitParser
from nixbit.reliability_engine.parsers.tap import TapParser

__all__ = [
    "GenericJsonParser",
    "GitLabJsonParser",
    "JUnitParser",
    "JenkinsJsonParser",
    "ParseContext",
    "ReportParser",
    "ReportText",
    "StructuredJsonParser",
    "TapParser",
]
