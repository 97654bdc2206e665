import pytest
from pydantic import ValidationError

from codementor.pipeline.verification.aggregator import aggregate
from codementor.pipeline.verification.runner import no_tests_found
from codementor.pipeline.verification.verification_types import TestOutcome, VerificationReport


def outcome(name, passed, hint=None):
    return TestOutcome(name=name, passed=passed, failure_message=None if passed else "AssertionError", hint=hint)


class TestAggregate:
    """Folding outcomes into a report"""

    def test_mixed_outcomes(self):
        outcomes = [outcome("a", True), outcome("b", False, hint="Check the loop."), outcome("c", True)]
        report = aggregate(outcomes, exercise_id="ex-1")

        assert report.exercise_id == "ex-1"
        assert (report.total_tests, report.passed_tests, report.failed_tests) == (3, 2, 1)
        assert not report.all_tests_passed
        assert [o.name for o in report.outcomes] == ["a", "b", "c"]
        assert report.compilation_error is None

    def test_all_passed(self):
        report = aggregate([outcome("a", True), outcome("b", True)])
        assert report.all_tests_passed
        assert report.failed_tests == 0

    def test_compilation_error_drops_outcomes(self):
        """
        Test: Compilation error together with outcomes
        How: Aggregate with both supplied
        Ensures: The error wins; the report carries no outcomes and zero totals
        """
        report = aggregate([outcome("a", True)], compilation_error="Compilation errors:\nline 1: SyntaxError")

        assert report.compilation_error.startswith("Compilation errors")
        assert report.outcomes == []
        assert (report.total_tests, report.passed_tests, report.failed_tests) == (0, 0, 0)
        assert not report.all_tests_passed

    def test_synthetic_outcome_counts_as_one_failure(self):
        report = aggregate([no_tests_found()])
        assert (report.total_tests, report.failed_tests) == (1, 1)
        assert not report.all_tests_passed

    def test_is_pure(self):
        outcomes = [outcome("a", True), outcome("b", False)]
        assert aggregate(outcomes) == aggregate(outcomes)

    def test_serializes_with_camel_case_keys(self):
        report = aggregate([outcome("a", False, hint="Look again.")], exercise_id="ex")
        data = report.model_dump(by_alias=True)

        assert set(data) >= {"exerciseId", "allTestsPassed", "totalTests", "passedTests", "failedTests", "outcomes", "compilationError"}
        assert data["outcomes"][0]["failureMessage"] == "AssertionError"


class TestReportInvariants:
    def test_inconsistent_totals_rejected(self):
        with pytest.raises(ValidationError):
            VerificationReport(all_tests_passed=True, total_tests=2, passed_tests=1, failed_tests=0, outcomes=[])

    def test_hint_on_passing_outcome_rejected(self):
        with pytest.raises(ValidationError):
            TestOutcome(name="a", passed=True, hint="nope")
