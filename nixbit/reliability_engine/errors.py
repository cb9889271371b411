"""Exceptions raised by the reliability engine."""


class ReliabilityEngineError(Exception):
    """Base class for engine errors."""


class UnsupportedFormatError(ReliabilityEngineError):
    """No parser produced a single record from an artifact.

    Callers should read this as "no signal" rather than a pipeline failure.
    """


class MalformedRecordError(ReliabilityEngineError):
    """A single test case could not be normalized.

    Parsers raise it per test case and recover by skipping the case.
    """


class CorruptArchiveError(ReliabilityEngineError):
    """An artifact bundle could not be opened at all."""


class NotFoundError(ReliabilityEngineError):
    """A referenced organization, project, or pattern does not exist."""


class AnalysisUnavailableError(ReliabilityEngineError):
    """Too little history to compute a judgment.

    Analytical entry points catch it and return a degraded, low-confidence
    result instead.
    """
