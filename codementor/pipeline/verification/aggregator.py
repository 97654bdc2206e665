from typing import Iterable, Optional

from .verification_types import TestOutcome, VerificationReport


def aggregate(outcomes: Iterable[TestOutcome], compilation_error: Optional[str] = None,
              exercise_id: Optional[str] = None) -> VerificationReport:
    """
    Folds test outcomes into a report. Pure: no I/O, no logging.

    A compilation error wins over any outcomes: they are dropped and every
    total is zero.
    """
    if compilation_error is not None:
        return VerificationReport(
            exercise_id=exercise_id,
            all_tests_passed=False,
            total_tests=0,
            passed_tests=0,
            failed_tests=0,
            outcomes=[],
            compilation_error=compilation_error,
        )

    outcomes = list(outcomes)
    passed = sum(1 for outcome in outcomes if outcome.passed)
    failed = len(outcomes) - passed
    return VerificationReport(
        exercise_id=exercise_id,
        all_tests_passed=failed == 0,
        total_tests=len(outcomes),
        passed_tests=passed,
        failed_tests=failed,
        outcomes=outcomes,
    )
