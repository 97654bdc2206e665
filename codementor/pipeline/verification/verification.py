import logging
from typing import Optional

from codementor.models.manager import ModelManager
from codementor.models.prompts import PromptManager
from ..hints.hint_types import HintSettings
from ..hints.hints import HintPipeline, TextGenerator
from .aggregator import aggregate
from .compiler import CompilerAdapter
from .runner import TestRunner, execution_error
from .verification_types import (
    ExerciseDefinition, RunState, Submission, TestRunResult, VerificationReport,
    VerificationRequest, VerificationSettings,
)
from .workspace import WorkspaceError, WorkspaceManager

logger = logging.getLogger(__name__)


class _ManagerGenerator:
    """Adapts ModelManager.generate to the hint collaborator protocol for one task."""
    def __init__(self, model_manager: ModelManager, task: str = "hints"):
        self.model_manager = model_manager
        self.task = task

    def generate(self, prompt: str, max_tokens: int) -> str:
        return self.model_manager.generate(prompt, max_tokens, task=self.task)


class VerificationEngine:
    """
    Compiles a submission against an exercise's reference tests, runs every
    test in isolation, and attaches a hint to every failing test.

    Flow: workspace -> compile -> run tests -> release workspace -> hints ->
    report. Only WorkspaceError escapes; every other failure ends up in the
    report.
    """
    def __init__(self, model_manager: Optional[ModelManager] = None, settings: Optional[VerificationSettings] = None,
                 generator: Optional[TextGenerator] = None, prompts: Optional[PromptManager] = None,
                 hint_settings: Optional[HintSettings] = None):
        config = model_manager.config if model_manager else None
        self.settings = settings or VerificationSettings.from_config(config)

        if generator is None and model_manager is not None and "hints" in model_manager.config["tasks"]:
            generator = _ManagerGenerator(model_manager)
        if prompts is None and model_manager is not None:
            prompts = model_manager.prompts
        if hint_settings is None:
            hint_settings = HintSettings.from_config(config).model_copy(update={
                "excerpt_char_limit": self.settings.excerpt_char_limit,
                "test_excerpt_char_limit": self.settings.test_excerpt_char_limit,
                "hint_budget_s": self.settings.hint_budget_s,
            })

        self.workspaces = WorkspaceManager(root=self.settings.workspace_root)
        self.compiler = CompilerAdapter(
            interpreter=self.settings.interpreter,
            timeout=self.settings.compile_timeout,
            fallback_module=self.settings.module_alias,
            fallback_test_module=self.settings.fallback_test_module,
        )
        self.runner = TestRunner(
            interpreter=self.settings.interpreter,
            test_timeout=self.settings.test_timeout,
            memory_limit_mb=self.settings.memory_limit_mb,
            module_alias=self.settings.module_alias,
        )
        self.hints = HintPipeline(generator, prompts, hint_settings)

    def verify(self, request: VerificationRequest) -> VerificationReport:
        exercise_id = request.exercise_id or None

        # --- 1. COMPILE AND RUN IN A PRIVATE WORKSPACE ---
        with self.workspaces.session() as workspace:
            try:
                compilation = self.compiler.compile(workspace, request.submission_source, request.reference_test_source)
                if not compilation.success:
                    logger.info(f"Compilation failed for exercise {exercise_id!r}")
                    return aggregate([], compilation_error=compilation.format_error(), exercise_id=exercise_id)
                result = self.runner.run(workspace, compilation)
            except Exception as e:
                logger.exception(f"Unexpected error while verifying exercise {exercise_id!r}")
                result = TestRunResult(state=RunState.ABORTED, outcomes=[execution_error(f"{type(e).__name__}: {e}")])

        # --- 2. HINTS FOR FAILING TESTS (workspace already released) ---
        outcomes = result.outcomes
        if any(not outcome.passed for outcome in outcomes):
            outcomes = self.hints.annotate(outcomes, request)

        # --- 3. REPORT ---
        report = aggregate(outcomes, exercise_id=exercise_id)
        logger.info(f"Verified exercise {exercise_id!r}: {report.passed_tests}/{report.total_tests} passed (run {result.state.value})")
        return report

    def verify_submission(self, exercise: ExerciseDefinition, submission: Submission, exercise_id: str = "") -> VerificationReport:
        return self.verify(VerificationRequest.from_exercise(exercise, submission, exercise_id))

    def hint_for_failure(self, test_name: str, test_source: str, submission_source: str,
                         failure_message: Optional[str], problem_statement: str = "") -> str:
        return self.hints.hint_for_failure(test_name, test_source, submission_source, failure_message, problem_statement)
