"""Apex execution log analyzer.

Turns the raw text of one execution log into a ``LogAnalysis`` in a single
forward pass:

- blank lines are dropped at the top level,
- each remaining line is either a continuation of the open USER_DEBUG
  payload or a new ``<seconds>|<EVENT_TAG>|...`` event,
- events are routed through an ordered dispatch table (first match wins),
- limit samples go into a last-write-wins map that is finalized at the end.

The pass never raises for malformed content: a line that fails to parse is
logged and skipped.
"""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Callable, Iterator, Sequence
from typing import Literal, TypeAlias

from pydantic import BaseModel, ConfigDict, Field

from apex_log_analyze.models import (
    AnalyzerSettings,
    CodeCoverageSummary,
    DebugStatement,
    ErrorRecord,
    EventKind,
    LimitSample,
    LimitUsage,
    LogAnalysis,
    TimelineEvent,
)

logger = logging.getLogger(__name__)

LineKind: TypeAlias = Literal["blank", "continuation", "event"]

FIELD_DELIMITER = "|"

# ============================================================
# PATTERNS
# ============================================================

TIMESTAMP_PREFIX: re.Pattern[str] = re.compile(r"^\d+:\d+:\d+")
EVENT_HEADER: re.Pattern[str] = re.compile(r"^\d+:\d+:\d+\|[A-Z_]+\|")
LEADING_NUMBER: re.Pattern[str] = re.compile(
    r"^\s*[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?"
)
LEADING_INT: re.Pattern[str] = re.compile(r"^\s*[+-]?\d+")
DEBUG_PREFIX: re.Pattern[str] = re.compile(r"^DEBUG\|")
DEBUG_LINE_NUMBER: re.Pattern[str] = re.compile(r"\[(\d+)\]")
LINE_COLUMN: re.Pattern[str] = re.compile(r"line\s+(\d+)(?:,\s*column\s+(\d+))?", re.IGNORECASE)
LIMIT_ENTRY: re.Pattern[str] = re.compile(r"([^:]+):\s*(\d+)\s*of\s*(\d+)")
HEAP_BYTES: re.Pattern[str] = re.compile(r"Bytes:(\d+)")
DURATION: re.Pattern[str] = re.compile(r"Duration=(\d+)")
COVERAGE_PERCENT: re.Pattern[str] = re.compile(r"(\d+)%")
COVERAGE_RATIO: re.Pattern[str] = re.compile(r"(\d+)/(\d+)")
COVERAGE_UNCOVERED: re.Pattern[str] = re.compile(r"Lines not covered: ([^|]+)")

# ============================================================
# NUMERIC HELPERS
# ============================================================


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves toward positive infinity."""
    return math.floor(value + 0.5)


def parse_timestamp(field: str) -> float:
    """Parse the leading number of a timestamp field as seconds.

    ``"12:00:01.5 (123)"`` yields ``12.0``; a field with no leading number
    raises ``ValueError``.
    """
    match = LEADING_NUMBER.match(field)
    if not match:
        raise ValueError(f"Unparseable timestamp: {field!r}")
    return float(match.group(0))


def parse_leading_int(text: str) -> int | None:
    """Parse the leading integer of ``text``, or None when there is none."""
    match = LEADING_INT.match(text)
    return int(match.group(0)) if match else None


def percentage_of(used: int, total: int) -> int:
    return round_half_up(used / total * 100) if total > 0 else 0


# ============================================================
# LINE CLASSIFIER
# ============================================================


def split_log_lines(log_text: str) -> list[str]:
    """Split raw log text on newlines, keeping blank lines in place."""
    return log_text.split("\n")


def non_blank_lines(log_text: str) -> list[str]:
    """Ordered non-blank lines of a log."""
    return [line for line in split_log_lines(log_text) if line.strip()]


def has_timestamp_prefix(line: str) -> bool:
    return TIMESTAMP_PREFIX.match(line) is not None


def classify_line(line: str, debug_open: bool) -> LineKind:
    """Decide how the top-level loop treats one raw line."""
    if not line.strip():
        return "blank"
    if debug_open and not has_timestamp_prefix(line):
        return "continuation"
    return "event"


# ============================================================
# PASS STATE
# ============================================================


class LogEvent(BaseModel):
    """One timestamped line, split into fields."""

    model_config = ConfigDict(frozen=True)

    index: int
    event_type: str
    fields: tuple[str, ...]
    timestamp: str
    seconds: float
    relative_ms: int

    def remainder(self, start: int) -> str:
        """Fields from ``start`` onward, re-joined with the delimiter."""
        return FIELD_DELIMITER.join(self.fields[start:])

    def field(self, position: int) -> str:
        return self.fields[position] if position < len(self.fields) else ""


class PassState(BaseModel):
    """Mutable per-call accumulator; never shared between calls."""

    analysis: LogAnalysis = Field(default_factory=LogAnalysis)
    lines: list[str] = Field(default_factory=list)
    limit_map: dict[str, tuple[int, int]] = Field(default_factory=dict)
    start_seconds: float = 0.0


EventHandler: TypeAlias = Callable[[PassState, LogEvent], int]

# ============================================================
# CONTINUATION AGGREGATOR
# ============================================================


def collect_continuation(lines: Sequence[str], start: int) -> list[str]:
    """Lines from ``start`` up to the next timestamp-prefixed line.

    Blank lines inside the run are kept.
    """
    end = start
    while end < len(lines) and not has_timestamp_prefix(lines[end]):
        end += 1
    return list(lines[start:end])


def clean_debug_message(message: str) -> str:
    """Expand literal ``\\n`` escapes and drop a leading ``DEBUG|``."""
    return DEBUG_PREFIX.sub("", message.replace("\\n", "\n"), count=1)


def debug_timeline_details(line_number: int, message: str, *, force_ellipsis: bool = False) -> str:
    first_line = message.split("\n")[0]
    suffix = "..." if force_ellipsis or "\n" in message else ""
    return f"Line {line_number}: {first_line}{suffix}"


def append_continuation(analysis: LogAnalysis, line: str) -> None:
    """Fold a stray continuation line into the most recent debug statement."""
    if not analysis.debug_lines:
        return
    last_debug = analysis.debug_lines[-1]
    last_debug.message += "\n" + DEBUG_PREFIX.sub("", line, count=1)

    for event in reversed(analysis.timeline):
        if event.event == "Debug Log":
            event.details = debug_timeline_details(
                last_debug.line_number, last_debug.message, force_ellipsis=True
            )
            break


# ============================================================
# STACK TRACE LOOKAHEAD
# ============================================================


def collect_stack_trace(lines: Sequence[str], start: int, lookahead: int) -> str | None:
    """Trimmed non-blank lines after an exception, up to the next event header."""
    trace_lines: list[str] = []
    for line in lines[start : start + lookahead]:
        if EVENT_HEADER.match(line):
            break
        if line.strip():
            trace_lines.append(line.strip())
    return "\n".join(trace_lines) if trace_lines else None


# ============================================================
# ANALYZER
# ============================================================


class ApexLogParser:
    """Single-pass analyzer for Apex execution logs."""

    def __init__(self, settings: AnalyzerSettings | None = None) -> None:
        self.settings = settings or AnalyzerSettings()
        # Priority order; later rules never fire once an earlier one matches.
        self.dispatch_table: tuple[tuple[EventKind, EventHandler], ...] = (
            (EventKind.EXECUTION_STARTED, self._handle_execution_started),
            (EventKind.EXECUTION_FINISHED, self._handle_execution_finished),
            (EventKind.SOQL_BEGIN, self._handle_soql_begin),
            (EventKind.DML_BEGIN, self._handle_dml_begin),
            (EventKind.USER_DEBUG, self._handle_user_debug),
            (EventKind.HEAP_ALLOCATE, self._handle_heap_allocate),
            (EventKind.EXCEPTION, self._handle_exception),
            (EventKind.SYSTEM_METHOD_ENTRY, self._handle_system_method_entry),
            (EventKind.SYSTEM_METHOD_EXIT, self._handle_system_method_exit),
            (EventKind.LIMIT_USAGE_FOR_NS, self._handle_limit_usage),
            (EventKind.CUMULATIVE_LIMIT_USAGE, self._handle_cumulative_limits),
            (EventKind.CUMULATIVE_PROFILING, self._handle_profiling),
            (EventKind.CODE_COVERAGE, self._handle_code_coverage),
            (EventKind.SYSTEM_MODE, self._handle_system_mode),
            (EventKind.CONSTRUCTOR, self._handle_constructor),
            (EventKind.METHOD, self._handle_method),
            (EventKind.SOQL_END, self._handle_soql_end),
            (EventKind.DML_END, self._handle_dml_end),
        )

    def classify(self, event_type: str) -> EventKind:
        """Kind of the first dispatch rule whose marker occurs in ``event_type``."""
        return self._match_rule(event_type)[0]

    def _match_rule(self, event_type: str) -> tuple[EventKind, EventHandler | None]:
        for kind, handler in self.dispatch_table:
            if any(marker in event_type for marker in kind.markers):
                return kind, handler
        return EventKind.UNRECOGNIZED, None

    def parse(self, log_text: str) -> LogAnalysis:
        """Analyze a complete log. Never raises for malformed content."""
        state = PassState(lines=split_log_lines(log_text or ""))
        lines = state.lines
        debug_open = False

        index = 0
        while index < len(lines):
            line = lines[index]
            try:
                line_kind = classify_line(line, debug_open)
                if line_kind == "continuation":
                    append_continuation(state.analysis, line)
                elif line_kind == "event":
                    consumed, debug_open = self._process_event(state, index, line, debug_open)
                    index += consumed
            except Exception as e:
                logger.warning("Skipping log line %d: %s", index, e)
            index += 1

        return self.finalize(state)

    def _process_event(
        self, state: PassState, index: int, line: str, debug_open: bool
    ) -> tuple[int, bool]:
        """Dispatch one event line; returns (extra lines consumed, debug open)."""
        fields = line.split(FIELD_DELIMITER)
        if len(fields) < 2:
            return 0, debug_open

        seconds = parse_timestamp(fields[0])
        event_type = fields[1]
        kind, handler = self._match_rule(event_type)
        if handler is None:
            logger.debug("Unrecognized event type at line %d: %s", index, event_type)
            return 0, debug_open

        event = LogEvent(
            index=index,
            event_type=event_type,
            fields=tuple(fields),
            timestamp=fields[0],
            seconds=seconds,
            relative_ms=round_half_up((seconds - state.start_seconds) * 1000),
        )
        consumed = handler(state, event)
        return consumed, kind is EventKind.USER_DEBUG

    # ------------------------------------------------------------
    # Execution boundaries
    # ------------------------------------------------------------

    def _handle_execution_started(self, state: PassState, event: LogEvent) -> int:
        state.start_seconds = event.seconds
        state.analysis.timeline.append(TimelineEvent(event="Execution Started", time_ms=0))
        return 0

    def _handle_execution_finished(self, state: PassState, event: LogEvent) -> int:
        analysis = state.analysis
        total_ms = round_half_up((event.seconds - state.start_seconds) * 1000)
        analysis.total_execution_time_ms = total_ms
        analysis.summary.total_time_ms = total_ms
        analysis.timeline.append(TimelineEvent(event="Execution Finished", time_ms=total_ms))
        return 0

    # ------------------------------------------------------------
    # Database
    # ------------------------------------------------------------

    def _handle_soql_begin(self, state: PassState, event: LogEvent) -> int:
        state.analysis.summary.num_soql_queries += 1
        state.analysis.timeline.append(
            TimelineEvent(event="SOQL Query", time_ms=event.relative_ms, details=event.remainder(2).strip())
        )
        return 0

    def _handle_dml_begin(self, state: PassState, event: LogEvent) -> int:
        state.analysis.summary.num_dml_statements += 1
        state.analysis.timeline.append(
            TimelineEvent(
                event="DML Operation", time_ms=event.relative_ms, details=event.remainder(2).strip()
            )
        )
        return 0

    def _handle_soql_end(self, state: PassState, event: LogEvent) -> int:
        self._record_db_duration(state, event, "SOQL Query Completed")
        return 0

    def _handle_dml_end(self, state: PassState, event: LogEvent) -> int:
        self._record_db_duration(state, event, "DML Operation Completed")
        return 0

    def _record_db_duration(self, state: PassState, event: LogEvent, label: str) -> None:
        if match := DURATION.search(event.remainder(2)):
            duration_ms = int(match.group(1))
            state.analysis.summary.db_time_ms += duration_ms
            state.analysis.timeline.append(
                TimelineEvent(event=label, time_ms=event.relative_ms, details=f"Duration: {duration_ms}ms")
            )

    # ------------------------------------------------------------
    # Debug output
    # ------------------------------------------------------------

    def _handle_user_debug(self, state: PassState, event: LogEvent) -> int:
        """Record a USER_DEBUG statement, absorbing its continuation lines.

        Returns the number of raw lines consumed after the event line so the
        driver can skip past them.
        """
        line_match = DEBUG_LINE_NUMBER.search(event.fields[2])
        line_number = int(line_match.group(1)) if line_match else 0

        message = clean_debug_message(event.remainder(3).strip())
        continuation = collect_continuation(state.lines, event.index + 1)
        if continuation:
            message = "\n".join([message, *continuation])

        state.analysis.debug_lines.append(
            DebugStatement(line_number=line_number, message=message, timestamp=event.timestamp)
        )
        state.analysis.timeline.append(
            TimelineEvent(
                event="Debug Log",
                time_ms=event.relative_ms,
                details=debug_timeline_details(line_number, message),
            )
        )
        return len(continuation)

    # ------------------------------------------------------------
    # Heap and errors
    # ------------------------------------------------------------

    def _handle_heap_allocate(self, state: PassState, event: LogEvent) -> int:
        if match := HEAP_BYTES.search(state.lines[event.index]):
            summary = state.analysis.summary
            summary.heap_size = max(summary.heap_size, int(match.group(1)))
        return 0

    def _handle_exception(self, state: PassState, event: LogEvent) -> int:
        message = event.remainder(2).strip()

        line_number: int | None = None
        column_number: int | None = None
        if match := LINE_COLUMN.search(message):
            line_number = int(match.group(1))
            if match.group(2):
                column_number = int(match.group(2))

        stack_trace = collect_stack_trace(
            state.lines, event.index + 1, self.settings.stack_trace_lookahead
        )
        state.analysis.errors.append(
            ErrorRecord(
                message=message,
                line_number=line_number,
                column_number=column_number,
                stack_trace=stack_trace,
            )
        )
        state.analysis.timeline.append(
            TimelineEvent(event="Error", time_ms=event.relative_ms, details=message)
        )
        return 0

    # ------------------------------------------------------------
    # Method, constructor and system mode boundaries
    # ------------------------------------------------------------

    def _handle_system_method_entry(self, state: PassState, event: LogEvent) -> int:
        self._append_named(state, event, "Method Entry", "Unknown Method")
        return 0

    def _handle_system_method_exit(self, state: PassState, event: LogEvent) -> int:
        self._append_named(state, event, "Method Exit", "Unknown Method")
        return 0

    def _handle_method(self, state: PassState, event: LogEvent) -> int:
        label = "Method Entry" if "METHOD_ENTRY" in event.event_type else "Method Exit"
        self._append_named(state, event, label, "Unknown Method")
        return 0

    def _handle_constructor(self, state: PassState, event: LogEvent) -> int:
        label = "Constructor Entry" if "CONSTRUCTOR_ENTRY" in event.event_type else "Constructor Exit"
        self._append_named(state, event, label, "Unknown Class")
        return 0

    def _handle_system_mode(self, state: PassState, event: LogEvent) -> int:
        label = "System Mode Enter" if "SYSTEM_MODE_ENTER" in event.event_type else "System Mode Exit"
        state.analysis.timeline.append(TimelineEvent(event=label, time_ms=event.relative_ms))
        return 0

    def _append_named(self, state: PassState, event: LogEvent, label: str, fallback: str) -> None:
        state.analysis.timeline.append(
            TimelineEvent(event=label, time_ms=event.relative_ms, details=event.field(2) or fallback)
        )

    # ------------------------------------------------------------
    # Governor limits
    # ------------------------------------------------------------

    def _handle_limit_usage(self, state: PassState, event: LogEvent) -> int:
        for name, used, total in iter_limit_entries(event.fields[2:]):
            state.limit_map[name] = (used, total)
        return 0

    def _handle_cumulative_limits(self, state: PassState, event: LogEvent) -> int:
        analysis = state.analysis
        for name, used, total in iter_limit_entries(event.fields[3:]):
            state.limit_map[name] = (used, total)
            analysis.governor_limits.append(LimitSample(name=name, usage=used, total=total))

            if used > 0 and total > 0 and used / total > self.settings.high_usage_ratio:
                analysis.timeline.append(
                    TimelineEvent(
                        event="High Limit Usage",
                        time_ms=event.relative_ms,
                        details=f"{name}: {used} of {total} ({percentage_of(used, total)}%)",
                    )
                )
        return 0

    def _handle_profiling(self, state: PassState, event: LogEvent) -> int:
        # Cumulative profiling is recognized so it does not fall through to
        # later rules; method timings are not extracted yet.
        return 0

    # ------------------------------------------------------------
    # Code coverage
    # ------------------------------------------------------------

    def _handle_code_coverage(self, state: PassState, event: LogEvent) -> int:
        analysis = state.analysis
        analysis.has_coverage_info = True
        text = event.remainder(2)

        if match := COVERAGE_PERCENT.search(text):
            coverage = _ensure_coverage(analysis)
            coverage.coverage_percentage = int(match.group(1))

        if match := COVERAGE_RATIO.search(text):
            covered, total = int(match.group(1)), int(match.group(2))
            if analysis.code_coverage is None:
                analysis.code_coverage = CodeCoverageSummary(
                    coverage_percentage=percentage_of(covered, total)
                )
            analysis.code_coverage.lines_covered = covered
            analysis.code_coverage.lines_total = total

        if match := COVERAGE_UNCOVERED.search(text):
            uncovered = [parse_leading_int(token) for token in match.group(1).split(",")]
            coverage = _ensure_coverage(analysis)
            coverage.uncovered_lines = [number for number in uncovered if number is not None]
        return 0

    # ------------------------------------------------------------
    # Finalize
    # ------------------------------------------------------------

    def finalize(self, state: PassState) -> LogAnalysis:
        """Turn the limit map into the sorted report and derive DB call count."""
        analysis = state.analysis
        analysis.limits = sorted(
            (
                LimitUsage(name=name, used=used, total=total, percentage=percentage_of(used, total))
                for name, (used, total) in state.limit_map.items()
            ),
            key=lambda limit: limit.percentage,
            reverse=True,
        )
        summary = analysis.summary
        summary.num_database_calls = summary.num_soql_queries + summary.num_dml_statements
        return analysis


def _ensure_coverage(analysis: LogAnalysis) -> CodeCoverageSummary:
    if analysis.code_coverage is None:
        analysis.code_coverage = CodeCoverageSummary()
    return analysis.code_coverage


def iter_limit_entries(fields: Sequence[str]) -> Iterator[tuple[str, int, int]]:
    """Yield ``(name, used, total)`` for each ``<name>: <used> of <total>`` field."""
    for raw_field in fields:
        part = raw_field.strip()
        if not part:
            continue
        if match := LIMIT_ENTRY.search(part):
            yield match.group(1).strip(), int(match.group(2)), int(match.group(3))


def analyze_log(log_text: str, settings: AnalyzerSettings | None = None) -> LogAnalysis:
    """Analyze an Apex execution log into a fresh ``LogAnalysis``."""
    return ApexLogParser(settings).parse(log_text)
