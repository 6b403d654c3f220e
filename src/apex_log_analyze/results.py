"""Test-run metadata in the JSON shape produced by ``sf apex run test --json``.

Only the fields the log tools need are modeled; everything else in the
payload is ignored.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field


class ApexClassRef(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = Field(alias="Name")


class TestMethodResult(BaseModel):
    """Outcome of one test method."""

    __test__ = False  # keep pytest from collecting this as a test class

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    apex_class: ApexClassRef = Field(alias="ApexClass")
    method_name: str = Field(alias="MethodName")
    outcome: str = Field(alias="Outcome")
    run_time_ms: int | None = Field(default=None, alias="RunTime")
    message: str | None = Field(default=None, alias="Message")
    stack_trace: str | None = Field(default=None, alias="StackTrace")
    setup_method: str | None = Field(default=None, alias="SetupMethod")

    @property
    def class_name(self) -> str:
        return self.apex_class.name

    @property
    def qualified_name(self) -> str:
        return f"{self.class_name}.{self.method_name}"

    @property
    def passed(self) -> bool:
        return self.outcome == "Pass"

    @property
    def failure_message(self) -> str | None:
        """Failure text with the assert-exception prefix removed."""
        if self.passed:
            return None
        if not self.message:
            return "Test failed without specific message"
        return self.message.replace("System.AssertException: ", "").strip()


class TestRunSummary(BaseModel):
    __test__ = False

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    outcome: str = "Unknown"
    tests_ran: int = Field(default=0, alias="testsRan")
    passing: int = 0
    failing: int = 0
    pass_rate: str | None = Field(default=None, alias="passRate")
    test_execution_time: str | None = Field(default=None, alias="testExecutionTime")


class TestRunResult(BaseModel):
    """The ``result`` object of a test-run payload."""

    __test__ = False

    model_config = ConfigDict(extra="ignore")

    summary: TestRunSummary = Field(default_factory=TestRunSummary)
    tests: list[TestMethodResult] = Field(default_factory=list)


class TestRunPayload(BaseModel):
    __test__ = False

    model_config = ConfigDict(extra="ignore")

    result: TestRunResult


class ApexTestResultRecord(BaseModel):
    """One ``ApexTestResult`` row from a data query."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    apex_class: ApexClassRef = Field(alias="ApexClass")
    method_name: str = Field(alias="MethodName")
    apex_log_id: str | None = Field(default=None, alias="ApexLogId")
    is_test_setup: bool = Field(default=False, alias="IsTestSetup")


class _QueryResult(BaseModel):
    model_config = ConfigDict(extra="ignore")

    records: list[ApexTestResultRecord] = Field(default_factory=list)


class _QueryPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    result: _QueryResult


def parse_test_results(payload: str | bytes) -> TestRunResult:
    """Validate a test-run JSON document. Raises pydantic's ValidationError."""
    return TestRunPayload.model_validate_json(payload).result


def load_test_results(path: Path) -> TestRunResult:
    return parse_test_results(path.read_bytes())


def parse_test_result_records(payload: str | bytes) -> list[ApexTestResultRecord]:
    """Records of an ``ApexTestResult`` query in ``sf data query --json`` form."""
    return _QueryPayload.model_validate_json(payload).result.records


def attach_setup_methods(
    results: TestRunResult, records: list[ApexTestResultRecord]
) -> TestRunResult:
    """Fill ``setup_method`` from the ``@testSetup`` rows of each class.

    When a class has several setup rows the last one wins. Tests of classes
    without a setup row keep their current value.
    """
    setup_by_class = {
        record.apex_class.name: record.method_name for record in records if record.is_test_setup
    }
    tests = [
        test.model_copy(update={"setup_method": setup_by_class[test.class_name]})
        if test.class_name in setup_by_class
        else test
        for test in results.tests
    ]
    return results.model_copy(update={"tests": tests})


def first_log_id(records: list[ApexTestResultRecord]) -> str | None:
    """Id of the first record that carries a debug log."""
    return next((record.apex_log_id for record in records if record.apex_log_id), None)
