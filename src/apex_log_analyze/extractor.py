"""Bounded extraction of one test method's slice of an execution log.

A test run writes every method into the same log. Each method is wrapped in
``CODE_UNIT_STARTED`` / ``CODE_UNIT_FINISHED`` lines that carry the
``<Class>.<method>`` name, which is what the scan keys on.
"""

from __future__ import annotations

import logging
import re

from apex_log_analyze.models import ExtractionLimits, Section, SectionKind
from apex_log_analyze.parser import split_log_lines

logger = logging.getLogger(__name__)

UNIT_STARTED = "CODE_UNIT_STARTED"
UNIT_FINISHED = "CODE_UNIT_FINISHED"

NO_LOGS_PLACEHOLDER = "No logs found"
NO_LOGS_MESSAGE = "No logs available for this method."
INVALID_INPUT_MESSAGE = "Invalid inputs for log filtering."
LOG_TOO_LARGE_MESSAGE = "Log is too large to display. Please check the raw logs on Salesforce."

SETUP_HEADER = "==== TEST SETUP METHOD ===="
TEST_HEADER = "==== TEST METHOD ===="

UNSAFE_IDENTIFIER_CHARS: re.Pattern[str] = re.compile(r"[^a-zA-Z0-9_.]")


class LogTooLargeError(ValueError):
    """Raised when a log exceeds the configured extraction caps."""


def sanitize_identifier(value: str) -> str:
    """Keep only letters, digits, underscore and dot."""
    return UNSAFE_IDENTIFIER_CHARS.sub("", value)


def qualified_names_for(
    class_name: str, method_name: str, setup_method_name: str | None = None
) -> dict[SectionKind, str]:
    """Sanitized ``<Class>.<method>`` names keyed by section kind.

    Setup comes first so it wins when a start marker matches both names.
    A setup name that sanitizes to nothing is left out.
    """
    safe_class = sanitize_identifier(class_name)
    safe_setup = sanitize_identifier(setup_method_name) if setup_method_name else ""

    names: dict[SectionKind, str] = {}
    if safe_setup:
        names["setup"] = f"{safe_class}.{safe_setup}"
    names["test"] = f"{safe_class}.{sanitize_identifier(method_name)}"
    return names


def check_log_limits(log_text: str, limits: ExtractionLimits) -> list[str]:
    """Split the log, rejecting it before any scan when it is too large."""
    if len(log_text) > limits.max_log_size:
        raise LogTooLargeError(
            f"Log has {len(log_text)} characters, limit is {limits.max_log_size}"
        )
    lines = split_log_lines(log_text)
    if len(lines) > limits.max_lines:
        raise LogTooLargeError(f"Log has {len(lines)} lines, limit is {limits.max_lines}")
    return lines


def scan_sections(
    lines: list[str], qualified_names: dict[SectionKind, str]
) -> dict[SectionKind, list[str]]:
    """Collect lines between matching unit start/finish markers.

    At most one section is open at a time; a start marker for the other
    section flushes the open one first. Lines outside both sections are
    dropped and a section still open at end of input keeps what it buffered.
    """
    captured: dict[SectionKind, list[str]] = {"setup": [], "test": []}
    active: SectionKind | None = None
    buffered: list[str] = []

    for line in lines:
        if UNIT_STARTED in line:
            opened = next(
                (kind for kind, name in qualified_names.items() if name in line), None
            )
            if opened is not None:
                if active is not None:
                    captured[active].extend(buffered)
                active = opened
                buffered = [line]
                continue

        if active is not None and UNIT_FINISHED in line and qualified_names[active] in line:
            buffered.append(line)
            captured[active].extend(buffered)
            active = None
            buffered = []
            continue

        if active is not None:
            buffered.append(line)

    if active is not None:
        captured[active].extend(buffered)
    return captured


def extract_sections(
    log_text: str,
    class_name: str,
    method_name: str,
    setup_method_name: str | None = None,
    limits: ExtractionLimits | None = None,
) -> list[Section]:
    """Setup and test sections of ``log_text`` that captured any lines.

    Raises ``LogTooLargeError`` when the log exceeds ``limits``.
    """
    limits = limits or ExtractionLimits()
    lines = check_log_limits(log_text, limits)

    qualified_names = qualified_names_for(class_name, method_name, setup_method_name)
    captured = scan_sections(lines, qualified_names)
    return [
        Section(kind=kind, qualified_name=name, lines=captured[kind])
        for kind, name in qualified_names.items()
        if captured[kind]
    ]


def render_sections(sections: list[Section]) -> list[str]:
    """Header block plus captured lines for each section, setup first."""
    output: list[str] = []
    for section in sections:
        if section.kind == "setup":
            output.extend([SETUP_HEADER, section.qualified_name, "", *section.lines, ""])
        else:
            output.extend([TEST_HEADER, section.qualified_name, "", *section.lines])
    return output


def _reference_fallback(log_text: str, test_name: str, setup_name: str | None) -> list[str]:
    """Every line mentioning either qualified name, for logs without unit markers."""
    relevant = [
        line
        for line in split_log_lines(log_text)
        if test_name in line or (setup_name is not None and setup_name in line)
    ]
    if not relevant:
        return [f"No references to {test_name} found in the logs."]
    return [
        f"No specific method boundaries found for {test_name}",
        "Showing any log entries containing references to this method:",
        "",
        *relevant,
    ]


def filter_log_for_method(
    log_text: str,
    class_name: str,
    method_name: str,
    setup_method_name: str | None = None,
    limits: ExtractionLimits | None = None,
) -> str:
    """Plain-text excerpt of the log for one test method and its setup.

    Always returns text: missing logs, invalid names and oversized logs
    produce fixed advisory messages instead of raising.
    """
    if not log_text or log_text == NO_LOGS_PLACEHOLDER:
        return NO_LOGS_MESSAGE

    if (
        not isinstance(log_text, str)
        or not isinstance(class_name, str)
        or not isinstance(method_name, str)
        or (setup_method_name is not None and not isinstance(setup_method_name, str))
    ):
        logger.info("Rejecting log filter request with non-string inputs")
        return INVALID_INPUT_MESSAGE

    try:
        sections = extract_sections(log_text, class_name, method_name, setup_method_name, limits)
    except LogTooLargeError as e:
        logger.info("Skipping section extraction: %s", e)
        return LOG_TOO_LARGE_MESSAGE

    if sections:
        return "\n".join(render_sections(sections))

    names = qualified_names_for(class_name, method_name, setup_method_name)
    return "\n".join(_reference_fallback(log_text, names["test"], names.get("setup")))
