import logging
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Optional, List, Dict, Protocol

from codementor.models.prompts import PromptManager
from ..verification.verification_types import TestOutcome, VerificationRequest
from .envelope import EnvelopeError, parse_envelope
from .fallback import fallback_hint, synthetic_hint
from .focus import build_hint_context
from .hint_types import HintContext, HintEnvelope, HintSettings
from .normalize import normalize

logger = logging.getLogger(__name__)


class TextGenerator(Protocol):
    def generate(self, prompt: str, max_tokens: int) -> str: ...


def render_envelope(envelope: HintEnvelope, max_lines: int = 3) -> str:
    """`problem fix`, then the snippet on its own line(s); never more than `max_lines` lines."""
    lines = [line for line in f"{envelope.problem} {envelope.fix}".splitlines() if line.strip()]
    lines += [line for line in envelope.snippet.splitlines() if line.strip()]
    return "\n".join(lines[:max_lines])


class HintPipeline:
    """
    Turns failing test outcomes into short, code-free hints.

    Each hint is: focus the context, render the prompt, ask the collaborator,
    normalise, extract, validate; retried up to `max_attempts` times with the
    same prompt, then replaced by a canned explanation. Nothing here raises.
    """
    def __init__(self, generator: Optional[TextGenerator], prompts: Optional[PromptManager] = None,
                 settings: Optional[HintSettings] = None):
        self.generator = generator
        self.prompts = prompts
        self.settings = settings or HintSettings()

    def build_prompt(self, context: HintContext) -> str:
        if self.prompts is None:
            raise ValueError("No prompt manager configured")
        return self.prompts.render_text(self.settings.prompt_ref, {
            "exercise_context": context.exercise_context,
            "concepts": list(context.concepts),
            "test_name": context.test_name,
            "failure_message": context.failure_message,
            "expectation": context.expectation,
            "detected_issue": context.detected_issue,
            "submission_excerpt": context.focused_submission_excerpt,
            "test_excerpt": context.truncated_reference_test,
        })

    def hint_for(self, context: HintContext) -> str:
        if self.generator is None:
            return fallback_hint(context.failure_message)
        try:
            prompt = self.build_prompt(context)
        except (ValueError, FileNotFoundError) as e:
            logger.warning(f"Could not build hint prompt for {context.test_name}: {e}")
            return fallback_hint(context.failure_message)

        for attempt in range(1, self.settings.max_attempts + 1):
            try:
                raw = self.generator.generate(prompt, self.settings.max_tokens)
            except Exception as e:
                logger.warning(f"Hint attempt {attempt} for {context.test_name} failed: {type(e).__name__}: {e}")
                continue
            try:
                envelope = parse_envelope(normalize(raw))
            except EnvelopeError as e:
                logger.warning(f"Hint attempt {attempt} for {context.test_name} rejected: {e}")
                continue
            return render_envelope(envelope, self.settings.max_hint_lines)

        logger.info(f"Using fallback hint for {context.test_name}")
        return fallback_hint(context.failure_message)

    def _context_for(self, outcome: TestOutcome, request: VerificationRequest) -> HintContext:
        return build_hint_context(
            test_name=outcome.name,
            failure_message=outcome.failure_message,
            submission_source=request.submission_source,
            test_source=request.reference_test_source,
            problem_statement=request.problem_statement,
            concepts=request.concepts,
            excerpt_limit=self.settings.excerpt_char_limit,
            test_excerpt_limit=self.settings.test_excerpt_char_limit,
        )

    def _safe_hint(self, outcome: TestOutcome, request: VerificationRequest) -> str:
        try:
            return self.hint_for(self._context_for(outcome, request))
        except Exception:
            logger.exception(f"Hint generation crashed for {outcome.name}")
            return fallback_hint(outcome.failure_message)

    def annotate(self, outcomes: List[TestOutcome], request: VerificationRequest) -> List[TestOutcome]:
        """Returns `outcomes` in the same order, with a hint on every failing one."""
        hints: Dict[int, str] = {}
        pending = []
        for index, outcome in enumerate(outcomes):
            if outcome.passed:
                continue
            if outcome.synthetic:
                hints[index] = synthetic_hint(outcome)
            else:
                pending.append(index)

        if pending:
            pool = ThreadPoolExecutor(max_workers=min(self.settings.max_workers, len(pending)), thread_name_prefix="hint")
            try:
                futures = {pool.submit(self._safe_hint, outcomes[i], request): i for i in pending}
                done, not_done = wait(futures, timeout=self.settings.hint_budget_s)
                for future in done:
                    hints[futures[future]] = future.result()
                if not_done:
                    logger.warning(f"Hint budget of {self.settings.hint_budget_s:g}s exhausted; {len(not_done)} hint(s) fall back")
                for future in not_done:
                    future.cancel()
                    index = futures[future]
                    hints[index] = fallback_hint(outcomes[index].failure_message)
            finally:
                pool.shutdown(wait=False, cancel_futures=True)

        return [
            outcome.model_copy(update={"hint": hints[index]}) if index in hints else outcome
            for index, outcome in enumerate(outcomes)
        ]

    def hint_for_failure(self, test_name: str, test_source: str, submission_source: str,
                         failure_message: Optional[str], problem_statement: str = "") -> str:
        """Standalone hint for one failing test, outside a verification run."""
        try:
            context = build_hint_context(
                test_name=test_name,
                failure_message=failure_message,
                submission_source=submission_source,
                test_source=test_source,
                problem_statement=problem_statement,
                excerpt_limit=self.settings.excerpt_char_limit,
                test_excerpt_limit=self.settings.test_excerpt_char_limit,
            )
            return self.hint_for(context)
        except Exception:
            logger.exception(f"Hint generation crashed for {test_name}")
            return fallback_hint(failure_message)
