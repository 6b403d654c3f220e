"""Tests for the typer CLI commands."""

import json

import pytest
from typer.testing import CliRunner

from apex_log_analyze.cli import __version__, app

runner = CliRunner()

CLEAN_LOG = "\n".join(
    [
        "59.0 APEX_CODE,FINEST;APEX_PROFILING,INFO",
        "12:00:00 (1)|EXECUTION_STARTED",
        "12:00:00 (2)|CODE_UNIT_STARTED|[EXTERNAL]|01p000000000001|AccountServiceTest.createsAccount()",
        "12:00:00 (3)|SOQL_EXECUTE_BEGIN|[12]|Aggregations:0|SELECT Id FROM Account",
        "12:00:00 (4)|SOQL_EXECUTE_END|[12]|Rows:1",
        "12:00:00 (5)|USER_DEBUG|[14]|DEBUG|account created",
        "12:00:00 (6)|CODE_UNIT_FINISHED|AccountServiceTest.createsAccount()",
        "12:00:01 (7)|EXECUTION_FINISHED",
    ]
)

FAILING_LOG = "\n".join(
    [
        "12:00:00 (1)|EXECUTION_STARTED",
        "12:00:00 (2)|EXCEPTION_THROWN|[42]|System.NullPointerException: line 42, column 5",
        "12:00:01 (3)|EXECUTION_FINISHED",
    ]
)

RUN_PAYLOAD = {
    "result": {
        "summary": {"outcome": "Failed", "testsRan": 2},
        "tests": [
            {
                "ApexClass": {"Name": "AccountServiceTest"},
                "MethodName": "createsAccount",
                "Outcome": "Pass",
                "RunTime": 120,
            },
            {
                "ApexClass": {"Name": "AccountServiceTest"},
                "MethodName": "rejectsDuplicate",
                "Outcome": "Fail",
                "Message": "System.AssertException: Assertion Failed: duplicate allowed",
            },
        ],
    }
}


@pytest.fixture
def clean_log(tmp_path):
    path = tmp_path / "clean.log"
    path.write_text(CLEAN_LOG, encoding="utf-8")
    return path


@pytest.fixture
def failing_log(tmp_path):
    path = tmp_path / "failing.log"
    path.write_text(FAILING_LOG, encoding="utf-8")
    return path


# ─── analyze ─────────────────────────────────────────────────────────────────


def test_analyze_clean_log(clean_log):
    result = runner.invoke(app, ["analyze", str(clean_log)])
    assert result.exit_code == 0
    assert "Apex Log Analysis" in result.output
    assert "Execution Timeline" in result.output


def test_analyze_exits_nonzero_on_errors(failing_log):
    result = runner.invoke(app, ["analyze", str(failing_log)])
    assert result.exit_code == 1
    assert "NullPointerException" in result.output


def test_analyze_json(clean_log):
    result = runner.invoke(app, ["analyze", "--json", str(clean_log)])
    assert result.exit_code == 0
    assert "num_soql_queries" in result.output
    assert "account created" in result.output


def test_analyze_missing_file(tmp_path):
    result = runner.invoke(app, ["analyze", str(tmp_path / "missing.log")])
    assert result.exit_code != 0


# ─── extract ─────────────────────────────────────────────────────────────────


def test_extract_method_section(clean_log):
    result = runner.invoke(
        app, ["extract", str(clean_log), "--class", "AccountServiceTest", "--method", "createsAccount"]
    )
    assert result.exit_code == 0
    assert "==== TEST METHOD ====" in result.output
    assert "account created" in result.output
    assert "EXECUTION_STARTED" not in result.output


def test_extract_reports_oversized_log(clean_log):
    result = runner.invoke(
        app,
        ["extract", str(clean_log), "-c", "AccountServiceTest", "-m", "createsAccount", "--max-lines", "2"],
    )
    assert result.exit_code == 0
    assert "Log is too large to display" in result.output


# ─── methods ─────────────────────────────────────────────────────────────────


def test_methods_prints_each_test(clean_log, tmp_path):
    results_file = tmp_path / "run.json"
    results_file.write_text(json.dumps(RUN_PAYLOAD), encoding="utf-8")

    result = runner.invoke(app, ["methods", str(clean_log), str(results_file)])
    assert result.exit_code == 0
    assert "AccountServiceTest.createsAccount()" in result.output
    assert "Assertion Failed: duplicate allowed" in result.output
    assert "No references to AccountServiceTest.rejectsDuplicate found in the logs." in result.output


def test_methods_with_setup_records(clean_log, tmp_path):
    results_file = tmp_path / "run.json"
    results_file.write_text(json.dumps(RUN_PAYLOAD), encoding="utf-8")
    records_file = tmp_path / "records.json"
    records_file.write_text(
        json.dumps(
            {
                "result": {
                    "records": [
                        {
                            "ApexClass": {"Name": "AccountServiceTest"},
                            "MethodName": "makeData",
                            "IsTestSetup": True,
                        }
                    ]
                }
            }
        ),
        encoding="utf-8",
    )

    result = runner.invoke(
        app, ["methods", str(clean_log), str(results_file), "--records", str(records_file)]
    )
    assert result.exit_code == 0
    assert "Setup Method: makeData" in result.output


def test_methods_rejects_invalid_results(clean_log, tmp_path):
    results_file = tmp_path / "run.json"
    results_file.write_text("{}", encoding="utf-8")
    result = runner.invoke(app, ["methods", str(clean_log), str(results_file)])
    assert result.exit_code == 1


def test_methods_without_tests(clean_log, tmp_path):
    results_file = tmp_path / "run.json"
    results_file.write_text('{"result": {"tests": []}}', encoding="utf-8")
    result = runner.invoke(app, ["methods", str(clean_log), str(results_file)])
    assert result.exit_code == 0
    assert "No test methods found in results" in result.output


# ─── version ─────────────────────────────────────────────────────────────────


def test_version():
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert __version__ in result.output
