"""Unit tests for results.py - test-run metadata from CLI JSON output."""

import json

import pytest
from pydantic import ValidationError

from apex_log_analyze.results import (
    attach_setup_methods,
    first_log_id,
    load_test_results,
    parse_test_result_records,
    parse_test_results,
)

RUN_PAYLOAD = {
    "status": 0,
    "result": {
        "summary": {
            "outcome": "Failed",
            "testsRan": 3,
            "passing": 2,
            "failing": 1,
            "passRate": "67%",
            "testExecutionTime": "412 ms",
            "orgId": "00D000000000001",
        },
        "tests": [
            {
                "Id": "07M000000000001",
                "ApexClass": {"Id": "01p000000000001", "Name": "AccountServiceTest"},
                "MethodName": "createsAccount",
                "Outcome": "Pass",
                "RunTime": 120,
                "Message": None,
                "StackTrace": None,
            },
            {
                "ApexClass": {"Name": "AccountServiceTest"},
                "MethodName": "rejectsDuplicate",
                "Outcome": "Fail",
                "RunTime": 95,
                "Message": "System.AssertException: Assertion Failed: expected 1, actual 2",
                "StackTrace": "Class.AccountServiceTest.rejectsDuplicate: line 42, column 1",
            },
            {
                "ApexClass": {"Name": "ContactServiceTest"},
                "MethodName": "linksContact",
                "Outcome": "Pass",
            },
        ],
    },
}

RECORDS_PAYLOAD = {
    "status": 0,
    "result": {
        "totalSize": 4,
        "records": [
            {
                "ApexClass": {"Name": "AccountServiceTest"},
                "MethodName": "createsAccount",
                "ApexLogId": None,
                "IsTestSetup": False,
            },
            {
                "ApexClass": {"Name": "AccountServiceTest"},
                "MethodName": "makeData",
                "ApexLogId": "07L000000000001",
                "IsTestSetup": True,
            },
            {
                "ApexClass": {"Name": "AccountServiceTest"},
                "MethodName": "makeMoreData",
                "ApexLogId": "07L000000000002",
                "IsTestSetup": True,
            },
            {
                "ApexClass": {"Name": "OtherTest"},
                "MethodName": "setup",
                "IsTestSetup": True,
            },
        ],
    },
}


@pytest.fixture
def results():
    return parse_test_results(json.dumps(RUN_PAYLOAD))


@pytest.fixture
def records():
    return parse_test_result_records(json.dumps(RECORDS_PAYLOAD))


# ─── Parsing ─────────────────────────────────────────────────────────────────


def test_parses_summary(results):
    assert results.summary.outcome == "Failed"
    assert results.summary.tests_ran == 3
    assert results.summary.pass_rate == "67%"


def test_parses_tests_in_order(results):
    assert [test.qualified_name for test in results.tests] == [
        "AccountServiceTest.createsAccount",
        "AccountServiceTest.rejectsDuplicate",
        "ContactServiceTest.linksContact",
    ]
    assert results.tests[0].run_time_ms == 120
    assert results.tests[2].run_time_ms is None


def test_load_from_file(tmp_path):
    path = tmp_path / "run.json"
    path.write_text(json.dumps(RUN_PAYLOAD), encoding="utf-8")
    assert len(load_test_results(path).tests) == 3


def test_missing_tests_defaults_to_empty():
    assert parse_test_results('{"result": {}}').tests == []


@pytest.mark.parametrize("payload", ["not json", "{}", '{"result": {"tests": [{"Outcome": "Pass"}]}}'])
def test_invalid_payload_raises(payload):
    with pytest.raises(ValidationError):
        parse_test_results(payload)


# ─── Outcomes ────────────────────────────────────────────────────────────────


def test_passed_test_has_no_failure_message(results):
    assert results.tests[0].passed
    assert results.tests[0].failure_message is None


def test_failure_message_drops_assert_prefix(results):
    failed = results.tests[1]
    assert not failed.passed
    assert failed.failure_message == "Assertion Failed: expected 1, actual 2"


def test_failure_without_message():
    result = parse_test_results(
        json.dumps(
            {"result": {"tests": [{"ApexClass": {"Name": "A"}, "MethodName": "b", "Outcome": "Fail"}]}}
        )
    )
    assert result.tests[0].failure_message == "Test failed without specific message"


# ─── Setup methods ───────────────────────────────────────────────────────────


def test_attach_setup_methods_last_row_wins(results, records):
    attached = attach_setup_methods(results, records)
    assert [test.setup_method for test in attached.tests] == [
        "makeMoreData",
        "makeMoreData",
        None,
    ]


def test_attach_setup_methods_leaves_input_untouched(results, records):
    attach_setup_methods(results, records)
    assert all(test.setup_method is None for test in results.tests)


def test_first_log_id_skips_records_without_log(records):
    assert first_log_id(records) == "07L000000000001"


def test_first_log_id_none_when_absent():
    assert first_log_id([]) is None
