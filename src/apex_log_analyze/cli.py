#!/usr/bin/env python3
"""Apex Log Analyzer - command line entry point.

Commands:
- analyze: structured analysis of an execution log (timing, timeline, debug
  output, errors, governor limits, coverage)
- extract: the slice of a log belonging to one test method and its setup
- methods: per-method slices for every test in a test-run JSON result
"""

from __future__ import annotations

import cProfile
import logging
import pstats
import sys
from io import StringIO
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler

from apex_log_analyze.extractor import filter_log_for_method
from apex_log_analyze.models import AnalyzerSettings, ExtractionLimits
from apex_log_analyze.parser import analyze_log
from apex_log_analyze.rendering import console, render_analysis
from apex_log_analyze.results import (
    attach_setup_methods,
    load_test_results,
    parse_test_result_records,
)

__version__ = "1.0.0"

# ============================================================
# LOGGING
# ============================================================


def configure_logging(verbose: bool) -> None:
    """Route package logs through Rich on stderr."""
    logger = logging.getLogger("apex_log_analyze")
    logger.handlers.clear()
    logger.addHandler(
        RichHandler(console=Console(stderr=True), show_path=False, markup=False)
    )
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)


def read_log_file(log_file: Path) -> str:
    return log_file.read_text(encoding="utf-8", errors="replace")


def print_plain(text: str) -> None:
    console.print(text, markup=False, highlight=False, soft_wrap=True)


# ============================================================
# TYPER CLI INTERFACE
# ============================================================

app = typer.Typer(
    name="apex-log-analyze",
    help="Analyze Apex execution logs and extract per-test-method log slices",
    add_completion=False,
    rich_markup_mode="rich",
)

LogFileArgument = Annotated[
    Path,
    typer.Argument(
        help="Path to the Apex execution log",
        exists=True,
        file_okay=True,
        dir_okay=False,
        readable=True,
    ),
]

VerboseOption = Annotated[
    bool,
    typer.Option("--verbose", "-v", help="Log skipped lines and other parsing details"),
]


@app.command()
def analyze(
    log_file: LogFileArgument,
    as_json: Annotated[
        bool,
        typer.Option("--json", help="Print the analysis as JSON instead of tables"),
    ] = False,
    stack_lookahead: Annotated[
        int,
        typer.Option(
            "--stack-lookahead",
            help="Lines scanned after an exception for its stack trace (default: 30)",
            min=0,
        ),
    ] = 30,
    high_usage: Annotated[
        float,
        typer.Option(
            "--high-usage",
            help="Limit usage ratio above which a timeline alert is added (default: 0.5)",
            min=0.0,
        ),
    ] = 0.5,
    verbose: VerboseOption = False,
    profile: Annotated[
        bool,
        typer.Option("--profile", help="Enable performance profiling and display timing statistics"),
    ] = False,
    profile_output: Annotated[
        Path | None,
        typer.Option(
            "--profile-output",
            help="Save detailed profiling data to file (e.g., profile.prof)",
            file_okay=True,
            dir_okay=False,
        ),
    ] = None,
) -> None:
    """Analyze an Apex execution log.

    Exit codes: 0 = no errors recorded, 1 = the log contains exceptions or
    fatal errors, or the file could not be read.
    """
    configure_logging(verbose)

    profiler = None
    if profile:
        profiler = cProfile.Profile()
        profiler.enable()

    try:
        log_text = read_log_file(log_file)
        if verbose:
            console.print(f"[info]Read {len(log_text)} characters from {log_file}[/info]")

        settings = AnalyzerSettings(
            stack_trace_lookahead=stack_lookahead, high_usage_ratio=high_usage
        )
        analysis = analyze_log(log_text, settings)

        if as_json:
            console.print_json(analysis.model_dump_json())
        else:
            render_analysis(analysis)

        if profiler:
            profiler.disable()
            if profile_output:
                profiler.dump_stats(str(profile_output))
                console.print(f"\n[info]Profiling data saved to {profile_output}[/info]")

            console.print("\n[bold cyan]Performance Profile (Top 20 Functions)[/bold cyan]\n")
            stats_stream = StringIO()
            stats = pstats.Stats(profiler, stream=stats_stream)
            stats.strip_dirs()
            stats.sort_stats("cumulative")
            stats.print_stats(20)
            console.print(stats_stream.getvalue(), markup=False)

        if analysis.errors:
            sys.exit(1)

    except Exception as e:
        console.print(f"[critical]ERROR: {e}[/critical]")
        if verbose:
            console.print_exception()
        sys.exit(1)


@app.command()
def extract(
    log_file: LogFileArgument,
    class_name: Annotated[str, typer.Option("--class", "-c", help="Apex test class name")],
    method_name: Annotated[str, typer.Option("--method", "-m", help="Test method name")],
    setup_method: Annotated[
        str | None,
        typer.Option("--setup", "-s", help="@testSetup method name of the class"),
    ] = None,
    max_size: Annotated[
        int,
        typer.Option("--max-size", help="Largest log, in characters, that will be scanned", min=1),
    ] = ExtractionLimits().max_log_size,
    max_lines: Annotated[
        int,
        typer.Option("--max-lines", help="Largest log, in lines, that will be scanned", min=1),
    ] = ExtractionLimits().max_lines,
    verbose: VerboseOption = False,
) -> None:
    """Print the part of a log that belongs to one test method and its setup."""
    configure_logging(verbose)
    try:
        log_text = read_log_file(log_file)
    except OSError as e:
        console.print(f"[critical]ERROR: {e}[/critical]")
        sys.exit(1)

    limits = ExtractionLimits(max_log_size=max_size, max_lines=max_lines)
    print_plain(filter_log_for_method(log_text, class_name, method_name, setup_method, limits))


@app.command()
def methods(
    log_file: LogFileArgument,
    results_file: Annotated[
        Path,
        typer.Argument(
            help="Test-run JSON from 'sf apex run test --json'",
            exists=True,
            dir_okay=False,
            readable=True,
        ),
    ],
    records_file: Annotated[
        Path | None,
        typer.Option(
            "--records",
            help="ApexTestResult query JSON used to find each class's @testSetup method",
            exists=True,
            dir_okay=False,
            readable=True,
        ),
    ] = None,
    verbose: VerboseOption = False,
) -> None:
    """Print the log slice of every test method in a test run."""
    configure_logging(verbose)
    try:
        log_text = read_log_file(log_file)
        results = load_test_results(results_file)
        if records_file:
            records = parse_test_result_records(records_file.read_bytes())
            results = attach_setup_methods(results, records)
    except (OSError, ValueError) as e:
        console.print(f"[critical]ERROR: {e}[/critical]")
        sys.exit(1)

    if not results.tests:
        console.print("[warning]No test methods found in results[/warning]")
        return

    for test in results.tests:
        style = "success" if test.passed else "critical"
        runtime = f" ({test.run_time_ms}ms)" if test.run_time_ms is not None else ""
        console.rule(f"[{style}]{test.qualified_name}() {test.outcome}{runtime}[/{style}]")
        if test.failure_message:
            console.print(test.failure_message, style="critical", markup=False)
        if test.setup_method:
            console.print(f"Setup Method: {test.setup_method}", style="label", markup=False)
        print_plain(
            filter_log_for_method(log_text, test.class_name, test.method_name, test.setup_method)
        )


@app.command()
def version() -> None:
    """Display version."""
    console.print(f"apex-log-analyze {__version__}")


if __name__ == "__main__":
    app()
