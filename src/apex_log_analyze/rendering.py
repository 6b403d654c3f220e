"""Rich terminal rendering of a LogAnalysis.

Row builders are plain functions returning strings so the layout can be
checked without a terminal; the ``create_*`` functions wrap them in Rich
renderables. Nothing here mutates the analysis.
"""

from __future__ import annotations

from rich.console import Console, Group
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from rich.theme import Theme

from apex_log_analyze.models import ErrorRecord, LogAnalysis
from apex_log_analyze.parser import percentage_of

APEX_LOG_THEME = Theme(
    {
        "critical": "bold red",
        "warning": "bold yellow",
        "success": "bold green",
        "info": "cyan",
        "metric": "white",
        "label": "dim white",
        "header": "bold magenta",
        "soql": "blue",
        "dml": "magenta",
        "debug": "green",
        "error": "red",
    }
)

console = Console(theme=APEX_LOG_THEME)

# ============================================================
# ROW BUILDERS
# ============================================================


def format_number(value: int) -> str:
    return f"{value:,}"


def build_header_metrics(analysis: LogAnalysis) -> list[tuple[str, str]]:
    """Compact metrics shown in the header panel."""
    metrics = [
        ("Time", f"{format_number(analysis.total_execution_time_ms)} ms"),
        ("SOQL", format_number(analysis.summary.num_soql_queries)),
        ("DML", format_number(analysis.summary.num_dml_statements)),
    ]
    if analysis.errors:
        metrics.append(("Errors", str(len(analysis.errors))))
    return metrics


def build_summary_rows(analysis: LogAnalysis) -> list[tuple[str, str]]:
    summary = analysis.summary
    rows = [
        ("Total Time", f"{format_number(analysis.total_execution_time_ms)} ms"),
        ("Database Time", f"{format_number(summary.db_time_ms)} ms"),
        ("SOQL Queries", format_number(summary.num_soql_queries)),
        ("DML Statements", format_number(summary.num_dml_statements)),
        ("Database Calls", format_number(summary.num_database_calls)),
        ("Peak Heap Size", f"{format_number(summary.heap_size)} bytes"),
    ]
    if analysis.has_coverage_info and analysis.code_coverage:
        rows.append(("Code Coverage", f"{analysis.code_coverage.coverage_percentage}%"))
    return rows


def limit_style(percentage: int) -> str:
    if percentage > 75:
        return "critical"
    if percentage > 50:
        return "warning"
    return "success"


def build_governor_limit_rows(analysis: LogAnalysis) -> list[dict[str, str]]:
    """Raw cumulative samples, most utilized first."""
    samples = sorted(analysis.governor_limits, key=lambda sample: sample.ratio, reverse=True)
    rows: list[dict[str, str]] = []
    for sample in samples:
        percentage = percentage_of(sample.usage, sample.total)
        rows.append(
            {
                "name": sample.name,
                "usage": f"{sample.usage} / {sample.total}",
                "percentage": f"{percentage}%",
                "style": limit_style(percentage),
            }
        )
    return rows


def format_error_location(error: ErrorRecord) -> str | None:
    if not error.line_number:
        return None
    if error.column_number:
        return f"Line: {error.line_number}, Column: {error.column_number}"
    return f"Line: {error.line_number}"


def timeline_style(event: str) -> str:
    """Color class for a timeline label; the last matching keyword wins."""
    style = "metric"
    for keyword, candidate in (("SOQL", "soql"), ("DML", "dml"), ("Debug", "debug"), ("Error", "error")):
        if keyword in event:
            style = candidate
    return style


def build_timeline_rows(analysis: LogAnalysis) -> list[tuple[str, str, str]]:
    return [
        (f"{event.time_ms}ms", event.event, event.details or "") for event in analysis.timeline
    ]


# ============================================================
# RICH COMPONENTS
# ============================================================


def create_key_value_table(title: str, rows: list[tuple[str, str]]) -> Table:
    """Create a simple two-column key/value table."""
    table = Table(title=title, show_header=False, box=None, padding=(0, 2))
    table.add_column("Metric", style="label")
    table.add_column("Value", style="metric")
    for label, value in rows:
        table.add_row(label, value)
    return table


def create_header_panel(analysis: LogAnalysis) -> Panel:
    text = Text()
    for index, (label, value) in enumerate(build_header_metrics(analysis)):
        if index:
            text.append("   ")
        style = "critical" if label == "Errors" else "metric"
        text.append(f"{label}: ", style="label")
        text.append(value, style=style)
    border = "red" if analysis.errors else "info"
    return Panel(text, title="Apex Log Analysis", border_style=border, expand=True)


def create_governor_limits_table(analysis: LogAnalysis) -> Table:
    table = Table(title="Governor Limits", show_header=True, header_style="header")
    table.add_column("Limit", style="info")
    table.add_column("Usage", justify="right", style="metric")
    table.add_column("Percent", justify="right")
    for row in build_governor_limit_rows(analysis):
        table.add_row(escape(row["name"]), row["usage"], Text(row["percentage"], style=row["style"]))
    return table


def create_errors_panel(analysis: LogAnalysis) -> Panel:
    blocks: list[Text] = []
    for error in analysis.errors:
        block = Text(error.message, style="critical")
        if location := format_error_location(error):
            block.append(f"\n{location}", style="label")
        if error.stack_trace:
            block.append("\nStack Trace:", style="warning")
            for trace_line in error.stack_trace.split("\n"):
                block.append(f"\n  {trace_line.strip()}", style="metric")
        blocks.append(block)
    return Panel(Group(*blocks), title="[critical]Errors[/critical]", border_style="red")


def create_debug_panel(analysis: LogAnalysis) -> Panel:
    text = Text()
    for index, debug in enumerate(analysis.debug_lines):
        if index:
            text.append("\n\n")
        text.append(f"Line {debug.line_number}:", style="info")
        text.append(f"\n{debug.message}", style="metric")
    return Panel(text, title="Debug Statements", border_style="green")


def create_timeline_table(analysis: LogAnalysis) -> Table:
    table = Table(title="Execution Timeline", show_header=True, header_style="header")
    table.add_column("Offset", justify="right", style="label")
    table.add_column("Event")
    table.add_column("Details", style="metric", overflow="fold")
    for offset, event, details in build_timeline_rows(analysis):
        table.add_row(offset, Text(event, style=timeline_style(event)), escape(details))
    return table


def render_analysis(analysis: LogAnalysis, target: Console | None = None) -> None:
    """Print every non-empty section of the analysis."""
    out = target or console
    out.print()
    out.print(create_header_panel(analysis))
    out.print()
    out.print(create_key_value_table("Summary", build_summary_rows(analysis)))
    out.print()

    if analysis.governor_limits:
        out.print(create_governor_limits_table(analysis))
        out.print()

    if analysis.errors:
        out.print(create_errors_panel(analysis))
        out.print()

    if analysis.debug_lines:
        out.print(create_debug_panel(analysis))
        out.print()

    if analysis.timeline:
        out.print(create_timeline_table(analysis))
