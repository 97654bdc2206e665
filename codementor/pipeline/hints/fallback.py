"""
Canned explanations used when no valid envelope could be obtained.

Rules are matched in order against the failure message; the first match wins
and the default explanation is last.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

from ..verification.verification_types import ErrorType, TestOutcome


@dataclass(frozen=True)
class FallbackRule:
    needles: Tuple[str, ...]
    explanation: str

    def matches(self, message: str) -> bool:
        return any(needle in message for needle in self.needles)


FALLBACK_RULES = (
    FallbackRule(
        ("NoneType",),
        "A value is None where your code expects a real object. Check that every variable is assigned "
        "before it is used and that your functions return a value on every path.",
    ),
    FallbackRule(
        ("IndexError", "index out of range"),
        "An index goes past the end of a sequence. Valid positions run from 0 to the length minus one, "
        "so check your loop bounds and any index arithmetic.",
    ),
    FallbackRule(
        ("KeyError",),
        "Your code looks up a key that the dictionary does not contain. Check that the key exists "
        "before reading it, or decide what should happen when it is missing.",
    ),
    FallbackRule(
        ("ZeroDivisionError",),
        "Your code divides by zero for some input. Find which value can become zero and handle that "
        "case before dividing.",
    ),
    FallbackRule(
        ("RecursionError",),
        "The recursion never stops. Make sure there is a base case and that every recursive call "
        "moves closer to it.",
    ),
    FallbackRule(
        ("TimeoutError", "time limit", "timed out"),
        "The code did not finish in time. Look for a loop whose condition never becomes false or "
        "work that is repeated far more often than needed.",
    ),
    FallbackRule(
        ("TypeError",),
        "A value has a different type than the operation expects. Check the types of the arguments "
        "you pass and of the values you return.",
    ),
    FallbackRule(
        ("NameError",),
        "Your code uses a name that is not defined at that point. Check spelling and make sure the "
        "variable or function is defined before it is used.",
    ),
)

DEFAULT_EXPLANATION = (
    "Your code runs but does not produce the result the test expects. Compare your return value "
    "with the expected value for this input and trace your logic step by step."
)

SYNTHETIC_EXPLANATIONS = {
    ErrorType.TEST_DISCOVERY_EMPTY: (
        "No runnable tests were found for this exercise, so your code could not be checked. "
        "This is a problem with the exercise, not with your solution."
    ),
    ErrorType.HARNESS_FAULT: (
        "Your code could not be loaded or run. Make sure it runs on its own without errors, "
        "does not read input, and does not stop the program."
    ),
}


def fallback_hint(failure_message: Optional[str]) -> str:
    message = failure_message or ""
    for rule in FALLBACK_RULES:
        if rule.matches(message):
            return rule.explanation
    return DEFAULT_EXPLANATION


def synthetic_hint(outcome: TestOutcome) -> str:
    """Fixed explanation for a synthetic outcome; the collaborator is never asked about these."""
    explanation = SYNTHETIC_EXPLANATIONS.get(outcome.error_type)
    return explanation or fallback_hint(outcome.failure_message)
