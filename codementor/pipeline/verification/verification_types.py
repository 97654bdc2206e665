from typing import Optional, Dict, Any, List
from pathlib import Path
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class ErrorType(Enum):
    TOOLCHAIN_UNAVAILABLE = "toolchain_unavailable"
    COMPILATION_ERROR = "compilation_error"
    TEST_DISCOVERY_EMPTY = "test_discovery_empty"
    TEST_EXECUTION_FAILURE = "test_execution_failure"
    HARNESS_FAULT = "harness_fault"
    TIMEOUT = "timeout"
    HINT_GENERATION_FAILURE = "hint_generation_failure"

class Severity(Enum):
    ERROR = "error"
    WARNING = "warning"

class TestStatus(Enum):
    __test__ = False

    DISCOVERED = "discovered"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"

class RunState(Enum):
    NOT_STARTED = "not_started"
    EXECUTING = "executing"
    COMPLETED = "completed"
    ABORTED = "aborted"


class _Model(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Collaborator-supplied shapes
class ExerciseDefinition(_Model):
    starter_code: str = ""
    reference_test_source: str
    problem_statement: str = ""
    concepts: List[str] = Field(default_factory=list)

class Submission(_Model):
    code: str


class VerificationRequest(_Model):
    """One submission against one exercise's reference tests. Immutable."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    submission_source: str
    reference_test_source: str
    exercise_id: str = ""
    problem_statement: str = ""
    concepts: List[str] = Field(default_factory=list)

    @classmethod
    def from_exercise(cls, exercise: ExerciseDefinition, submission: Submission, exercise_id: str = "") -> "VerificationRequest":
        return cls(
            submission_source=submission.code,
            reference_test_source=exercise.reference_test_source,
            exercise_id=exercise_id,
            problem_statement=exercise.problem_statement,
            concepts=list(exercise.concepts),
        )


class Diagnostic(_Model):
    message: str
    line: int = 0
    severity: Severity = Severity.ERROR
    unit: str = ""

class CompilationOutcome(_Model):
    success: bool
    diagnostics: List[Diagnostic] = Field(default_factory=list)
    module_name: str = "solution"
    test_module_name: str = "test_solution"
    error_type: Optional[ErrorType] = None

    @property
    def errors(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.severity is Severity.ERROR]

    def format_error(self) -> Optional[str]:
        """Renders the error diagnostics as the report's compilation error text."""
        if self.success:
            return None
        errors = self.errors or self.diagnostics
        if self.error_type is ErrorType.TOOLCHAIN_UNAVAILABLE:
            return errors[0].message if errors else "Toolchain unavailable."
        lines = ["Compilation errors:"]
        for diagnostic in errors:
            location = f"{diagnostic.unit} line {diagnostic.line}" if diagnostic.unit else f"line {diagnostic.line}"
            lines.append(f"{location}: {diagnostic.message}")
        return "\n".join(lines)


class TestCase(_Model):
    __test__ = False

    name: str

class TestOutcome(_Model):
    __test__ = False

    name: str
    passed: bool
    failure_message: Optional[str] = None
    hint: Optional[str] = None
    synthetic: bool = False
    error_type: Optional[ErrorType] = None

    @model_validator(mode="after")
    def _hint_only_on_failure(self) -> "TestOutcome":
        if self.passed and self.hint is not None:
            raise ValueError("hint is only allowed on failing outcomes")
        return self

class TestRunResult(_Model):
    __test__ = False

    state: RunState
    outcomes: List[TestOutcome] = Field(default_factory=list)


class VerificationReport(_Model):
    """The complete, final outcome of one verification run."""
    exercise_id: Optional[str] = None
    all_tests_passed: bool
    total_tests: int
    passed_tests: int
    failed_tests: int
    outcomes: List[TestOutcome] = Field(default_factory=list)
    compilation_error: Optional[str] = None

    @model_validator(mode="after")
    def _check_totals(self) -> "VerificationReport":
        if self.total_tests != self.passed_tests + self.failed_tests:
            raise ValueError("total_tests must equal passed_tests + failed_tests")
        if self.total_tests != len(self.outcomes):
            raise ValueError("total_tests must match the number of outcomes")
        if self.compilation_error is not None and self.outcomes:
            raise ValueError("a report with a compilation error cannot carry outcomes")
        if self.all_tests_passed != (self.failed_tests == 0 and self.compilation_error is None):
            raise ValueError("all_tests_passed is inconsistent with the totals")
        return self


class VerificationSettings(BaseModel):
    """Engine settings, read from the `verification` section of the config."""
    interpreter: Optional[str] = None
    compile_timeout: float = 10.0
    test_timeout: float = 5.0
    memory_limit_mb: int = 512
    workspace_root: Optional[Path] = None
    module_alias: str = "solution"
    fallback_test_module: str = "test_solution"
    excerpt_char_limit: int = 2000
    test_excerpt_char_limit: int = 600
    hint_budget_s: float = 60.0

    @classmethod
    def from_config(cls, config: Optional[Dict[str, Any]]) -> "VerificationSettings":
        section = (config or {}).get("verification") or {}
        return cls.model_validate(section)
