"""
Test runner: executes the compiled reference tests against the submission in
a fresh child interpreter and returns one outcome per discovered test.
"""

import ast
import logging
import subprocess
from dataclasses import dataclass
from typing import Optional, List, Dict

from .environment import HARNESS_PATH, ToolchainUnavailable, child_environment, resolve_interpreter
from .parser import HarnessOutputParser, HarnessTranscript
from .verification_types import CompilationOutcome, ErrorType, RunState, TestOutcome, TestRunResult
from .workspace import Workspace

logger = logging.getLogger(__name__)

NO_TESTS_FOUND = "No tests found"
EXECUTION_ERROR = "Execution error"
LOG_NAME = "harness.log"
LOG_TAIL_CHARS = 2000


def no_tests_found() -> TestOutcome:
    return TestOutcome(
        name=NO_TESTS_FOUND,
        passed=False,
        failure_message="No tests were found in the reference test suite.",
        synthetic=True,
        error_type=ErrorType.TEST_DISCOVERY_EMPTY,
    )


def execution_error(message: str) -> TestOutcome:
    return TestOutcome(
        name=EXECUTION_ERROR,
        passed=False,
        failure_message=message,
        synthetic=True,
        error_type=ErrorType.HARNESS_FAULT,
    )


def count_tests(test_source: str) -> int:
    """Static count of test functions, used to size the wall-clock backstop."""
    try:
        tree = ast.parse(test_source)
    except (SyntaxError, ValueError):
        return 1
    count = 0
    for node in tree.body:
        bodies = node.body if isinstance(node, ast.ClassDef) else [node]
        count += sum(
            1 for item in bodies
            if isinstance(item, (ast.FunctionDef, ast.AsyncFunctionDef)) and item.name.startswith("test")
        )
    return max(count, 1)


@dataclass
class Launch:
    transcript: HarnessTranscript
    returncode: Optional[int]
    timed_out: bool
    log_tail: str

    def termination_reason(self, test_timeout: float) -> str:
        if self.timed_out:
            return f"TimeoutError: test timed out after {test_timeout:g} seconds"
        return f"Test process terminated abnormally (exit code {self.returncode})"


class TestRunner:
    """
    Runs tests sequentially in one child interpreter per launch.

    If the child dies while a test is running (crash, memory kill, wall-clock
    backstop), that test is failed and a new child is launched for the tests
    that have not run yet.
    """
    __test__ = False

    def __init__(self, interpreter: Optional[str] = None, test_timeout: float = 5.0, memory_limit_mb: int = 512,
                 startup_grace: float = 10.0, module_alias: str = "solution"):
        self.interpreter = interpreter
        self.test_timeout = test_timeout
        self.memory_limit_mb = memory_limit_mb
        self.startup_grace = startup_grace
        self.module_alias = module_alias
        self.parser = HarnessOutputParser()

    def run(self, workspace: Workspace, compilation: CompilationOutcome) -> TestRunResult:
        try:
            interpreter = resolve_interpreter(self.interpreter)
            return self._run(interpreter, workspace, compilation)
        except ToolchainUnavailable as e:
            logger.error(str(e))
            return TestRunResult(state=RunState.ABORTED, outcomes=[execution_error(str(e))])
        except Exception as e:
            logger.exception(f"Unexpected error while running tests in workspace {workspace.run_id}")
            return TestRunResult(state=RunState.ABORTED, outcomes=[execution_error(f"{type(e).__name__}: {e}")])

    def _run(self, interpreter: str, workspace: Workspace, compilation: CompilationOutcome) -> TestRunResult:
        test_unit = workspace.file(f"{compilation.test_module_name}.py")
        expected = count_tests(test_unit.read_text(encoding="utf-8"))

        order: List[str] = []
        results: Dict[str, TestOutcome] = {}
        skipped: set = set()
        remaining: Optional[List[str]] = None
        launches = 0

        while True:
            launch = self._launch(interpreter, workspace, compilation, remaining, len(remaining) if remaining else expected)
            launches += 1
            transcript = launch.transcript

            if transcript.discovered is None:
                reason = self._fault_reason(launch)
                if remaining is None:
                    logger.warning(f"Test harness aborted before discovery in workspace {workspace.run_id}: {reason}")
                    return TestRunResult(state=RunState.ABORTED, outcomes=[execution_error(reason)])
                for name in remaining:
                    results[name] = self._failed(name, reason, ErrorType.HARNESS_FAULT)
                break

            if remaining is None:
                order = list(transcript.discovered)
            results.update(transcript.results)
            skipped.update(transcript.skipped)
            if transcript.completed:
                break

            if transcript.in_flight is not None:
                reason = transcript.fault["message"] if transcript.fault else launch.termination_reason(self.test_timeout)
                error_type = ErrorType.TIMEOUT if launch.timed_out else ErrorType.TEST_EXECUTION_FAILURE
                results[transcript.in_flight] = self._failed(transcript.in_flight, reason, error_type)
                logger.info(f"Test {transcript.in_flight} killed the harness: {reason}")
            elif not transcript.results:
                # No progress was made; fail what is left rather than relaunching forever.
                reason = self._fault_reason(launch)
                for name in (remaining or order):
                    if name not in results and name not in skipped:
                        results[name] = self._failed(name, reason, ErrorType.HARNESS_FAULT)
                break

            remaining = [name for name in order if name not in results and name not in skipped]
            if not remaining:
                break

        outcomes = [results[name] for name in order if name in results]
        if not outcomes:
            logger.info(f"No runnable tests discovered in workspace {workspace.run_id}")
            return TestRunResult(state=RunState.COMPLETED, outcomes=[no_tests_found()])

        passed = sum(1 for o in outcomes if o.passed)
        logger.info(f"Ran {len(outcomes)} tests in {launches} launch(es): {passed} passed, {len(outcomes) - passed} failed")
        return TestRunResult(state=RunState.COMPLETED, outcomes=outcomes)

    def _launch(self, interpreter: str, workspace: Workspace, compilation: CompilationOutcome,
                only: Optional[List[str]], expected: int) -> Launch:
        cmd = [
            interpreter, "-I", str(HARNESS_PATH), "run", str(workspace.path),
            "--submission", f"{compilation.module_name}.py",
            "--tests", f"{compilation.test_module_name}.py",
            "--alias", self.module_alias,
            "--timeout", str(self.test_timeout),
            "--memory-mb", str(self.memory_limit_mb),
        ]
        if only:
            cmd += ["--only", *only]
        wall_timeout = self.startup_grace + self.test_timeout * max(expected, 1)

        log_path = workspace.file(LOG_NAME)
        with open(log_path, "ab") as log:
            try:
                result = subprocess.run(
                    cmd,
                    cwd=workspace.path,
                    stdout=subprocess.PIPE,
                    stderr=log,
                    timeout=wall_timeout,
                    env=child_environment(workspace.path),
                )
                stdout, returncode, timed_out = result.stdout, result.returncode, False
            except subprocess.TimeoutExpired as e:
                logger.warning(f"Test harness exceeded the {wall_timeout:g}s wall-clock limit in workspace {workspace.run_id}")
                stdout, returncode, timed_out = e.stdout, None, True

        if isinstance(stdout, bytes):
            stdout = stdout.decode("utf-8", "replace")
        return Launch(
            transcript=self.parser.parse(stdout or ""),
            returncode=returncode,
            timed_out=timed_out,
            log_tail=self._read_tail(log_path),
        )

    def _fault_reason(self, launch: Launch) -> str:
        if launch.transcript.fault:
            fault = launch.transcript.fault
            if fault["stage"] == "load":
                return f"Loading the submission failed: {fault['message']}"
            return fault["message"]
        if launch.timed_out:
            return "The test process did not respond before the time limit."
        detail = launch.log_tail.strip().splitlines()[-1:] if launch.log_tail.strip() else []
        suffix = f": {detail[0]}" if detail else ""
        return f"The test process terminated abnormally (exit code {launch.returncode}){suffix}"

    @staticmethod
    def _failed(name: str, message: str, error_type: ErrorType) -> TestOutcome:
        return TestOutcome(name=name, passed=False, failure_message=message, error_type=error_type)

    @staticmethod
    def _read_tail(path) -> str:
        try:
            with open(path, "rb") as f:
                data = f.read()
        except OSError:
            return ""
        return data[-LOG_TAIL_CHARS:].decode("utf-8", "replace")
