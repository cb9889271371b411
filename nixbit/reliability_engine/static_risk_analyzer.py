"""Static flakiness risk analysis of test source files."""

import ast
import hashlib
import logging
from pathlib import PurePosixPath

import esprima
from esprima.error_handler import Error as EsprimaError

from nixbit.reliability_engine.complexity import (
    ComplexityMetrics,
    javascript_complexity,
    python_complexity,
)
from nixbit.reliability_engine.feature_cache import FeatureCache, NullFeatureCache
from nixbit.reliability_engine.models.static_risk import (
    SourceLanguage,
    StaticRiskFeatures,
)
from nixbit.reliability_engine.risk_patterns import (
    BATTERIES,
    TEST_FILE_PATH_PATTERNS,
    PatternBattery,
    count_matches,
)

logger = logging.getLogger(__name__)

EXTENSION_LANGUAGES: dict[str, SourceLanguage] = {
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".mts": "typescript",
    ".cts": "typescript",
    ".py": "python",
}


def content_hash(text: str) -> str:
    """Return the SHA-256 hex digest of text encoded as UTF-8."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def language_for_path(path: str) -> SourceLanguage:
    """Pick the source language from a file extension.

    Unknown extensions are treated as JavaScript.
    """
    return EXTENSION_LANGUAGES.get(PurePosixPath(path).suffix.lower(), "javascript")


class StaticRiskAnalyzer:
    """Derive flakiness risk features from test source text."""

    def __init__(self, cache: FeatureCache | None = None) -> None:
        """Initialize analyzer with an optional feature cache."""
        self.cache = cache if cache is not None else NullFeatureCache()

    def analyze(
        self, source_text: str, language: SourceLanguage = "javascript"
    ) -> StaticRiskFeatures:
        """Compute the risk feature vector of a source file.

        Never raises on malformed source: a file that cannot be parsed yields
        the default feature vector.

        Args:
            source_text: Test source code
            language: Source language of the text

        Returns:
            Feature vector, identical for identical input

        """
        key = f"{language}:{content_hash(source_text)}"
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        try:
            metrics = self._measure(source_text, language)
        except (EsprimaError, SyntaxError, ValueError, RecursionError) as e:
            logger.warning(
                f"Could not parse {language} source, using default features: {e}",
                extra={"language": language},
            )
            features = StaticRiskFeatures()
        else:
            features = self._extract(source_text, metrics, BATTERIES[language])

        self.cache.set(key, features)
        return features

    def analyze_file(self, path: str, content: str) -> StaticRiskFeatures:
        """Analyze a file, picking the language from its extension."""
        return self.analyze(content, language_for_path(path))

    def is_test_file(self, path: str, content: str) -> bool:
        """Recognize test files by path conventions or framework idioms."""
        normalized = path.replace("\\", "/")
        if any(pattern.search(normalized) for pattern in TEST_FILE_PATH_PATTERNS):
            return True

        battery = BATTERIES[language_for_path(path)]
        return any(pattern.search(content) for pattern in battery.test_framework)

    def _measure(self, source_text: str, language: SourceLanguage) -> ComplexityMetrics:
        if language == "python":
            return python_complexity(ast.parse(source_text))

        try:
            tree = esprima.parseScript(source_text, {"tolerant": True})
        except EsprimaError:
            tree = esprima.parseModule(source_text)
        return javascript_complexity(tree)

    def _extract(
        self, code: str, metrics: ComplexityMetrics, battery: PatternBattery
    ) -> StaticRiskFeatures:
        lines_of_code = len(code.split("\n"))

        http_calls = count_matches(code, battery.external_service)
        database_queries = count_matches(code, battery.database)
        timing = count_matches(code, battery.timing_dependency)
        delays = count_matches(code, battery.hardcoded_delay)

        violations = count_matches(code, battery.isolation_violation)
        test_count = count_matches(code, battery.test_case)
        isolation = 1.0 if test_count == 0 else max(0.0, 1 - violations / test_count)

        return StaticRiskFeatures(
            cyclomatic_complexity=metrics.cyclomatic,
            cognitive_complexity=metrics.cognitive,
            nesting_depth=metrics.nesting_depth,
            lines_of_code=lines_of_code,
            async_await_count=count_matches(code, battery.async_await),
            promise_chain_count=count_matches(code, battery.promise_chain),
            timeout_count=timing,
            set_interval_count=count_matches(code, battery.set_interval),
            http_call_count=http_calls,
            file_system_count=count_matches(code, battery.file_system),
            database_query_count=database_queries,
            external_service_count=http_calls + database_queries,
            setup_teardown_complexity=count_matches(code, battery.setup_teardown),
            shared_state_usage=count_matches(code, battery.shared_state),
            test_isolation_score=isolation,
            hardcoded_delays=delays,
            race_condition_patterns=count_matches(code, battery.async_race_condition),
            timing_sensitivity=(timing + delays) / max(lines_of_code, 1),
            resource_leak_risk=count_matches(code, battery.resource_leak)
            / lines_of_code,
        )
