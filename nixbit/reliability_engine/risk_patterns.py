"""Regular-expression batteries for flakiness-prone source idioms."""

import re
from collections.abc import Iterable
from dataclasses import dataclass

from nixbit.reliability_engine.models.static_risk import RiskCategory, SourceLanguage


def _compile(*patterns: str) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(p) for p in patterns)


@dataclass(frozen=True)
class PatternBattery:
    """Pattern lists for one source language.

    The eight risk categories share their names with pattern types, so a
    failure grouped under a category can be traced back to the idioms that
    produce it.
    """

    timing_dependency: tuple[re.Pattern[str], ...]
    external_service: tuple[re.Pattern[str], ...]
    file_system: tuple[re.Pattern[str], ...]
    async_race_condition: tuple[re.Pattern[str], ...]
    shared_state: tuple[re.Pattern[str], ...]
    hardcoded_delay: tuple[re.Pattern[str], ...]
    database: tuple[re.Pattern[str], ...]
    resource_leak: tuple[re.Pattern[str], ...]

    async_await: tuple[re.Pattern[str], ...]
    promise_chain: tuple[re.Pattern[str], ...]
    set_interval: tuple[re.Pattern[str], ...]
    setup_teardown: tuple[re.Pattern[str], ...]
    isolation_violation: tuple[re.Pattern[str], ...]
    test_case: tuple[re.Pattern[str], ...]
    test_framework: tuple[re.Pattern[str], ...]


JAVASCRIPT = PatternBattery(
    timing_dependency=_compile(
        r"setTimeout\s*\(",
        r"setInterval\s*\(",
        r"Date\.now\s*\(",
        r"new Date\(\)",
        r"performance\.now\(\)",
        r"process\.hrtime",
    ),
    external_service=_compile(
        r"fetch\s*\(",
        r"axios\.",
        r"http\.",
        r"https\.",
        r"request\s*\(",
        r"supertest",
        r"got\s*\(",
    ),
    file_system=_compile(
        r"fs\.",
        r"readFile",
        r"writeFile",
        r"createReadStream",
        r"createWriteStream",
        r"existsSync",
        r"mkdirSync",
    ),
    async_race_condition=_compile(
        r"Promise\.all\s*\(",
        r"Promise\.race\s*\(",
        r"Promise\.allSettled",
        r"await.*await",
    ),
    shared_state=_compile(
        r"global\.",
        r"window\.",
        r"process\.env",
        r"module\.exports",
        r"require\.cache",
    ),
    hardcoded_delay=_compile(
        r"sleep\s*\(",
        r"delay\s*\(",
        r"wait\s*\(",
        r"setTimeout\s*\(\s*.*,\s*\d+",
    ),
    database=_compile(
        r"\.query\s*\(",
        r"\.execute\s*\(",
        r"\.findOne",
        r"\.save\s*\(",
        r"\.create\s*\(",
        r"\.update\s*\(",
        r"\.delete\s*\(",
        r"prisma\.",
        r"mongoose\.",
    ),
    resource_leak=_compile(
        r"new.*Stream\(",
        r"\.createConnection",
        r"\.listen\s*\(",
        r"\.connect\s*\(",
        r"child_process",
    ),
    async_await=_compile(r"async\s+", r"await\s+"),
    promise_chain=_compile(r"\.then\s*\(", r"\.catch\s*\("),
    set_interval=_compile(r"setInterval\s*\("),
    setup_teardown=_compile(
        r"beforeEach\s*\(",
        r"beforeAll\s*\(",
        r"before\s*\(",
        r"setup\s*\(",
        r"afterEach\s*\(",
        r"afterAll\s*\(",
        r"after\s*\(",
        r"teardown\s*\(",
        r"cleanup\s*\(",
    ),
    isolation_violation=_compile(
        r"global\.",
        r"window\.",
        r"process\.env",
        r"require\.cache",
        r"module\.exports",
    ),
    test_case=_compile(r"it\s*\(", r"test\s*\(", r"spec\s*\("),
    test_framework=_compile(
        # jest / mocha
        r"describe\s*\(",
        r"it\s*\(",
        r"test\s*\(",
        r"beforeEach",
        r"afterEach",
        r"before\s*\(",
        r"after\s*\(",
        # cypress
        r"cy\.",
        r"Cypress\.",
        # playwright
        r"page\.",
        r"browser\.",
        r"context\.",
    ),
)

PYTHON = PatternBattery(
    timing_dependency=_compile(
        r"time\.time\s*\(",
        r"time\.monotonic\s*\(",
        r"time\.perf_counter\s*\(",
        r"datetime\.now\s*\(",
        r"datetime\.utcnow\s*\(",
        r"threading\.Timer\s*\(",
        r"\.call_later\s*\(",
    ),
    external_service=_compile(
        r"requests\.",
        r"httpx\.",
        r"aiohttp\.",
        r"urllib\.request",
        r"urlopen\s*\(",
        r"boto3\.",
        r"grpc\.",
    ),
    file_system=_compile(
        r"\bopen\s*\(",
        r"os\.path\.",
        r"shutil\.",
        r"os\.remove\s*\(",
        r"os\.makedirs\s*\(",
        r"\.read_text\s*\(",
        r"\.write_text\s*\(",
        r"tempfile\.",
    ),
    async_race_condition=_compile(
        r"asyncio\.gather\s*\(",
        r"asyncio\.wait\s*\(",
        r"asyncio\.as_completed",
        r"await.*await",
        r"ThreadPoolExecutor",
        r"threading\.Thread\s*\(",
    ),
    shared_state=_compile(
        r"\bglobal\s+\w+",
        r"os\.environ",
        r"sys\.modules",
        r"builtins\.",
        r"importlib\.reload",
    ),
    hardcoded_delay=_compile(
        r"time\.sleep\s*\(",
        r"asyncio\.sleep\s*\(",
        r"\bwait\s*\(",
        r"sleep\s*\(\s*\d",
    ),
    database=_compile(
        r"\.execute\s*\(",
        r"\.executemany\s*\(",
        r"\.commit\s*\(",
        r"\.query\s*\(",
        r"\.objects\.",
        r"session\.add\s*\(",
        r"\.cursor\s*\(",
    ),
    resource_leak=_compile(
        r"socket\.socket\s*\(",
        r"subprocess\.",
        r"Popen\s*\(",
        r"\.connect\s*\(",
        r"create_engine\s*\(",
        r"\.listen\s*\(",
    ),
    async_await=_compile(r"async\s+", r"await\s+"),
    promise_chain=_compile(
        r"\.add_done_callback\s*\(",
        r"create_task\s*\(",
        r"ensure_future\s*\(",
    ),
    set_interval=_compile(r"schedule\.every", r"\.call_later\s*\("),
    setup_teardown=_compile(
        r"def setUp\w*\s*\(",
        r"def tearDown\w*\s*\(",
        r"def setup_\w+\s*\(",
        r"def teardown_\w+\s*\(",
        r"@pytest\.fixture",
        r"addCleanup\s*\(",
    ),
    isolation_violation=_compile(
        r"\bglobal\s+\w+",
        r"os\.environ\[",
        r"sys\.modules",
        r"importlib\.reload",
        r"builtins\.",
    ),
    test_case=_compile(r"def test_?\w*\s*\("),
    test_framework=_compile(
        r"import pytest",
        r"from pytest",
        r"unittest\.TestCase",
        r"def test_\w*\s*\(",
    ),
)

BATTERIES: dict[SourceLanguage, PatternBattery] = {
    "javascript": JAVASCRIPT,
    "typescript": JAVASCRIPT,
    "python": PYTHON,
}

TEST_FILE_PATH_PATTERNS = _compile(
    r"\.test\.",
    r"\.spec\.",
    r"__tests__",
    r"(^|/)tests?/",
    r"(^|/)spec/",
    r"(^|/)test_[^/]*\.py$",
    r"_test\.py$",
)


def count_matches(text: str, patterns: Iterable[re.Pattern[str]]) -> int:
    """Count non-overlapping matches of each pattern, summed independently."""
    return sum(1 for pattern in patterns for _ in pattern.finditer(text))


def _signatures(*patterns: str) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(p, re.IGNORECASE) for p in patterns)


# Checked in order, the first matching category wins.
FAILURE_SIGNATURES: dict[RiskCategory, tuple[re.Pattern[str], ...]] = {
    "resource_leak": _signatures(
        r"memory.*(out of|insufficient|allocation)",
        r"heap out of memory",
        r"too many open files|EMFILE",
        r"address already in use|EADDRINUSE",
        r"open handles?",
        r"\bleak",
    ),
    "database": _signatures(
        r"deadlock",
        r"lock wait timeout",
        r"\bdatabase\b",
        r"\bsql\w*",
        r"unique constraint|duplicate key",
        r"connection pool",
    ),
    "external_service": _signatures(
        r"connection.*(timeout|refused|reset)",
        r"network.*(error|timeout|unreachable)",
        r"dns.*(resolution|lookup|timeout)",
        r"certificate.*(expired|invalid|verification)",
        r"ECONNREFUSED|ECONNRESET|ENOTFOUND|ETIMEDOUT",
        r"socket hang up",
        r"service unavailable|bad gateway|gateway timeout",
        r"(npm|yarn|pip|maven|gradle|docker).*(install|package|module|dependency|pull)",
    ),
    "file_system": _signatures(
        r"ENOENT|EACCES|EEXIST|EBUSY",
        r"no such file or directory",
        r"permission denied",
        r"disk.*(space|full|io)",
        r"FileNotFoundError|IsADirectoryError",
    ),
    "async_race_condition": _signatures(
        r"race condition",
        r"unhandled promise rejection",
        r"cannot log after tests are done",
        r"not wrapped in act",
        r"was never awaited",
        r"detached from the DOM|stale element",
    ),
    "shared_state": _signatures(
        r"already (been )?(registered|declared|defined|exists)",
        r"global state",
        r"environment variable",
        r"mock.*(not restored|already)",
        r"polluted|leaked state",
    ),
    "hardcoded_delay": _signatures(
        r"\bsleep\b",
        r"setTimeout",
        r"waitForTimeout",
        r"\bdelay\b",
    ),
    "timing_dependency": _signatures(
        r"timed? ?out",
        r"exceeded.*time",
        r"deadline exceeded",
        r"took longer than",
        r"clock|\bdate\b|timezone",
    ),
}


def categorize_failure(
    error_message: str | None, stack_trace: str | None = None
) -> RiskCategory | None:
    """Return the first risk category whose signature matches a failure."""
    text = "\n".join(part for part in (error_message, stack_trace) if part)
    if not text:
        return None

    for category, signatures in FAILURE_SIGNATURES.items():
        if any(signature.search(text) for signature in signatures):
            return category
    return None
