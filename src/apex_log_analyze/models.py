"""Data model for Apex execution log analysis.

Everything the analyzer produces and everything the extractor returns is a
pydantic model, so callers can serialize results with ``model_dump_json``.
"""

from __future__ import annotations

from enum import Enum
from typing import Literal, TypeAlias

from pydantic import BaseModel, ConfigDict, Field

# ============================================================
# TYPE ALIASES
# ============================================================

Milliseconds: TypeAlias = int
SectionKind: TypeAlias = Literal["setup", "test"]

# ============================================================
# EVENT KINDS
# ============================================================


class EventKind(str, Enum):
    """Closed set of event tags the analyzer reacts to.

    Members are declared in dispatch priority order. Several tags are
    substrings of others (METHOD_ENTRY inside SYSTEM_METHOD_ENTRY), so the
    parser's dispatch table must keep this order.
    """

    EXECUTION_STARTED = "EXECUTION_STARTED"
    EXECUTION_FINISHED = "EXECUTION_FINISHED"
    SOQL_BEGIN = "SOQL_EXECUTE_BEGIN"
    DML_BEGIN = "DML_BEGIN"
    USER_DEBUG = "USER_DEBUG"
    HEAP_ALLOCATE = "HEAP_ALLOCATE"
    EXCEPTION = "EXCEPTION_THROWN"
    SYSTEM_METHOD_ENTRY = "SYSTEM_METHOD_ENTRY"
    SYSTEM_METHOD_EXIT = "SYSTEM_METHOD_EXIT"
    LIMIT_USAGE_FOR_NS = "LIMIT_USAGE_FOR_NS"
    CUMULATIVE_LIMIT_USAGE = "CUMULATIVE_LIMIT_USAGE"
    CUMULATIVE_PROFILING = "CUMULATIVE_PROFILING"
    CODE_COVERAGE = "CODE_COVERAGE"
    SYSTEM_MODE = "SYSTEM_MODE_ENTER"
    CONSTRUCTOR = "CONSTRUCTOR_ENTRY"
    METHOD = "METHOD_ENTRY"
    SOQL_END = "SOQL_EXECUTE_END"
    DML_END = "DML_END"
    UNRECOGNIZED = "UNRECOGNIZED"

    @property
    def markers(self) -> tuple[str, ...]:
        """Substrings of the event-type field that select this kind."""
        return _EVENT_MARKERS.get(self, (self.value,))


_EVENT_MARKERS: dict[EventKind, tuple[str, ...]] = {
    EventKind.EXCEPTION: ("EXCEPTION_THROWN", "FATAL_ERROR"),
    EventKind.SYSTEM_MODE: ("SYSTEM_MODE_ENTER", "SYSTEM_MODE_EXIT"),
    EventKind.CONSTRUCTOR: ("CONSTRUCTOR_ENTRY", "CONSTRUCTOR_EXIT"),
    EventKind.METHOD: ("METHOD_ENTRY", "METHOD_EXIT"),
    EventKind.UNRECOGNIZED: (),
}


# ============================================================
# CONFIGURATION
# ============================================================


class AnalyzerSettings(BaseModel):
    """Tunable constants for the full-log analyzer."""

    model_config = ConfigDict(frozen=True)

    stack_trace_lookahead: int = Field(default=30, ge=0)
    high_usage_ratio: float = Field(default=0.5, ge=0.0)


class ExtractionLimits(BaseModel):
    """Hard caps applied before a log is scanned for method sections."""

    model_config = ConfigDict(frozen=True)

    max_log_size: int = Field(default=1024 * 1024, gt=0)  # characters
    max_lines: int = Field(default=50_000, gt=0)


# ============================================================
# ANALYSIS RECORDS
# ============================================================


class Summary(BaseModel):
    """Headline counters for one execution."""

    total_time_ms: Milliseconds = 0
    db_time_ms: Milliseconds = 0
    heap_size: int = 0
    num_dml_statements: int = 0
    num_soql_queries: int = 0
    num_database_calls: int = 0


class TimelineEvent(BaseModel):
    event: str
    time_ms: Milliseconds
    details: str | None = None


class DebugStatement(BaseModel):
    """One USER_DEBUG payload, including any continuation lines."""

    line_number: int
    message: str
    timestamp: str


class ErrorRecord(BaseModel):
    message: str
    line_number: int | None = None
    column_number: int | None = None
    stack_trace: str | None = None


class LimitUsage(BaseModel):
    """Finalized governor limit, one per limit name."""

    model_config = ConfigDict(frozen=True)

    name: str
    used: int
    total: int
    percentage: int


class LimitSample(BaseModel):
    """Raw cumulative limit sample, kept in arrival order without dedup."""

    model_config = ConfigDict(frozen=True)

    name: str
    usage: int
    total: int

    @property
    def ratio(self) -> float:
        return self.usage / self.total if self.total > 0 else 0.0


class MethodCall(BaseModel):
    """Profiled method timing (reserved for cumulative profiling data)."""

    name: str
    total_time_ms: Milliseconds
    self_time_ms: Milliseconds
    calls: int
    parent: str | None = None
    children: list[str] = Field(default_factory=list)


class CodeCoverageSummary(BaseModel):
    coverage_percentage: int = 0
    lines_covered: int = 0
    lines_total: int = 0
    uncovered_lines: list[int] = Field(default_factory=list)


class LogAnalysis(BaseModel):
    """Complete structured analysis of one execution log."""

    summary: Summary = Field(default_factory=Summary)
    timeline: list[TimelineEvent] = Field(default_factory=list)
    debug_lines: list[DebugStatement] = Field(default_factory=list)
    errors: list[ErrorRecord] = Field(default_factory=list)
    limits: list[LimitUsage] = Field(default_factory=list)
    governor_limits: list[LimitSample] = Field(default_factory=list)
    method_calls: list[MethodCall] = Field(default_factory=list)
    code_coverage: CodeCoverageSummary | None = None
    has_coverage_info: bool = False
    total_execution_time_ms: Milliseconds = 0


# ============================================================
# EXTRACTION RECORDS
# ============================================================


class Section(BaseModel):
    """Raw log lines captured for one code unit."""

    kind: SectionKind
    qualified_name: str
    lines: list[str] = Field(default_factory=list)
