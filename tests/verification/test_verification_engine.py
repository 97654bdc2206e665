"""
End-to-end tests for the verification engine: real compilation and test runs
in a child interpreter, with a scripted stand-in for the hint model.
"""

import pytest
from unittest.mock import patch

from codementor.models.manager import DEFAULT_PROMPTS_DIR
from codementor.models.prompts import PromptManager
from codementor.pipeline.verification.runner import EXECUTION_ERROR, NO_TESTS_FOUND
from codementor.pipeline.verification.verification import VerificationEngine
from codementor.pipeline.verification.verification_types import (
    ErrorType, ExerciseDefinition, Submission, VerificationRequest,
)
from codementor.pipeline.verification.workspace import WorkspaceError

from conftest import (
    AVERAGE_SUBMISSION, AVERAGE_TESTS, EVEN_SUM_CONSTANT, EVEN_SUM_CORRECT, EVEN_SUM_SYNTAX_ERROR,
    EVEN_SUM_TESTS, ScriptedGenerator,
)


@pytest.fixture
def generator():
    return ScriptedGenerator()


@pytest.fixture
def engine(settings, generator):
    return VerificationEngine(settings=settings, generator=generator, prompts=PromptManager(DEFAULT_PROMPTS_DIR))


class TestVerificationEngine:
    """Compile, run and explain, end to end"""

    def test_correct_submission(self, engine, generator, even_sum_request):
        report = engine.verify(even_sum_request(EVEN_SUM_CORRECT))

        assert report.all_tests_passed
        assert (report.total_tests, report.passed_tests, report.failed_tests) == (3, 3, 0)
        assert report.compilation_error is None
        assert all(o.hint is None for o in report.outcomes)
        assert generator.prompts == []

    def test_constant_submission_gets_hints(self, engine, generator, even_sum_request):
        """
        Test: Submission that always returns 0
        How: Verify it against the even-sum tests
        Ensures: The empty-list test passes, the other two fail, and each failure carries a hint
        """
        report = engine.verify(even_sum_request(EVEN_SUM_CONSTANT))

        assert not report.all_tests_passed
        assert (report.total_tests, report.passed_tests, report.failed_tests) == (3, 1, 2)
        assert report.exercise_id == "even-sum"

        outcomes = {o.name: o for o in report.outcomes}
        assert outcomes["TestEvenSum.test_edge_empty"].passed
        for name in ("TestEvenSum.test_basic", "TestEvenSum.test_complex"):
            assert not outcomes[name].passed
            assert outcomes[name].hint == "Your method ignores its input. Loop over the numbers and keep the even ones."
        assert len(generator.prompts) == 2

    def test_syntax_error(self, engine, generator, even_sum_request):
        report = engine.verify(even_sum_request(EVEN_SUM_SYNTAX_ERROR))

        assert report.compilation_error is not None
        assert "SyntaxError" in report.compilation_error
        assert report.total_tests == 0
        assert report.outcomes == []
        assert not report.all_tests_passed
        assert generator.prompts == []

    def test_exception_in_one_test(self, engine, even_sum_request):
        """
        Test: One test raises a division by zero, two others pass
        How: Verify an averaging submission that divides by the list length
        Ensures: Only the raising test fails; the others are unaffected
        """
        report = engine.verify(even_sum_request(AVERAGE_SUBMISSION, AVERAGE_TESTS))

        assert (report.passed_tests, report.failed_tests) == (2, 1)
        failed = [o for o in report.outcomes if not o.passed]
        assert failed[0].name == "TestStats.test_average_empty"
        assert failed[0].failure_message.startswith("ZeroDivisionError")
        assert failed[0].hint

    def test_no_tests_found(self, engine, generator, even_sum_request):
        report = engine.verify(even_sum_request(EVEN_SUM_CORRECT, "import unittest\n"))

        assert report.total_tests == 1
        assert report.failed_tests == 1
        outcome = report.outcomes[0]
        assert outcome.name == NO_TESTS_FOUND
        assert outcome.synthetic
        assert outcome.hint
        assert generator.prompts == []

    def test_failing_model_falls_back(self, settings, even_sum_request):
        """
        Test: Hint model that always raises
        How: Script only exceptions
        Ensures: Failures still get a canned hint and the report is produced
        """
        generator = ScriptedGenerator(default=ConnectionError("model down"))
        engine = VerificationEngine(settings=settings, generator=generator, prompts=PromptManager(DEFAULT_PROMPTS_DIR))

        report = engine.verify(even_sum_request(EVEN_SUM_CONSTANT))

        assert report.failed_tests == 2
        assert all(o.hint for o in report.outcomes if not o.passed)

    def test_without_generator_uses_fallbacks(self, settings, even_sum_request):
        engine = VerificationEngine(settings=settings)
        report = engine.verify(even_sum_request(EVEN_SUM_CONSTANT))

        assert all(o.hint for o in report.outcomes if not o.passed)

    def test_repeat_runs_are_identical(self, engine, even_sum_request):
        request = even_sum_request(EVEN_SUM_CONSTANT)
        assert engine.verify(request) == engine.verify(request)

    def test_workspaces_are_removed(self, engine, settings, even_sum_request):
        engine.verify(even_sum_request(EVEN_SUM_CONSTANT))
        engine.verify(even_sum_request(EVEN_SUM_SYNTAX_ERROR))

        assert list(settings.workspace_root.iterdir()) == []

    def test_workspace_allocation_failure_propagates(self, settings, tmp_path, even_sum_request):
        """
        Test: Workspace root that cannot hold directories
        How: Point the workspace root at a regular file
        Ensures: WorkspaceError escapes; nothing else is attempted
        """
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        engine = VerificationEngine(settings=settings.model_copy(update={"workspace_root": blocker}))

        with pytest.raises(WorkspaceError):
            engine.verify(even_sum_request(EVEN_SUM_CORRECT))

    def test_unexpected_compiler_error_becomes_execution_error(self, engine, settings, even_sum_request):
        with patch.object(engine.compiler, "compile", side_effect=RuntimeError("kaboom")):
            report = engine.verify(even_sum_request(EVEN_SUM_CORRECT))

        assert report.total_tests == 1
        outcome = report.outcomes[0]
        assert outcome.name == EXECUTION_ERROR
        assert outcome.error_type is ErrorType.HARNESS_FAULT
        assert "kaboom" in outcome.failure_message
        assert outcome.hint
        assert list(settings.workspace_root.iterdir()) == []

    def test_verify_submission(self, engine):
        exercise = ExerciseDefinition(reference_test_source=EVEN_SUM_TESTS, problem_statement="Sum the even numbers.")
        report = engine.verify_submission(exercise, Submission(code=EVEN_SUM_CORRECT), exercise_id="ex-7")

        assert report.all_tests_passed
        assert report.exercise_id == "ex-7"

    def test_prompt_is_focused_on_failing_test(self, engine, generator, even_sum_request):
        engine.verify(even_sum_request(EVEN_SUM_CONSTANT))

        prompt = next(p for p in generator.prompts if "test_basic" in p)
        assert "def sum(self, numbers):" in prompt
        assert "AssertionError: 0 != 12" in prompt
        assert "should equal 12" in prompt
        assert "always returns 0" in prompt
        assert "Return the sum of the even numbers in a list." in prompt

    def test_concurrent_runs_are_isolated(self, engine, even_sum_request):
        from concurrent.futures import ThreadPoolExecutor

        requests = [even_sum_request(EVEN_SUM_CORRECT), even_sum_request(EVEN_SUM_CONSTANT)] * 2
        with ThreadPoolExecutor(max_workers=4) as pool:
            reports = list(pool.map(engine.verify, requests))

        assert [r.passed_tests for r in reports] == [3, 1, 3, 1]


class TestVerificationRequest:
    def test_from_exercise(self):
        exercise = ExerciseDefinition(referenceTestSource="tests", problemStatement="p", concepts=["loops"])
        request = VerificationRequest.from_exercise(exercise, Submission(code="code"), "ex")

        assert request.submission_source == "code"
        assert request.reference_test_source == "tests"
        assert request.concepts == ["loops"]

    def test_request_is_immutable(self):
        request = VerificationRequest(submission_source="a", reference_test_source="b")
        with pytest.raises(Exception):
            request.submission_source = "c"
