"""
Verification and hint endpoints.
"""

import logging
import time
from fastapi import APIRouter, Depends, HTTPException

from ..models.common import APIError
from ..models.verification import VerifyRequest, VerificationResponse, HintRequest, HintResponse
from ..dependencies.engine import get_engine
from codementor.pipeline.verification.verification import VerificationEngine
from codementor.pipeline.verification.verification_types import Submission
from codementor.pipeline.verification.workspace import WorkspaceError

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/verify", response_model=VerificationResponse)
def verify_submission(
    request: VerifyRequest,
    engine: VerificationEngine = Depends(get_engine)
):
    """
    Compiles the submission against the exercise's reference tests, runs
    every test in isolation, and returns the report with a hint on each
    failing test.

    Returns 503 when no workspace can be allocated for the run.
    """
    start_time = time.time()

    try:
        report = engine.verify_submission(request.exercise, Submission(code=request.code), request.exercise_id or "")
    except WorkspaceError as e:
        logger.error(f"Verification unavailable: {e}")
        raise HTTPException(
            status_code=503,
            detail=APIError(error=str(e), error_code="workspace_unavailable").model_dump(mode="json"),
        ) from e
    except Exception as e:
        logger.exception("Verification failed unexpectedly")
        return VerificationResponse(success=False, message=f"Verification failed: {e}", data=None)

    processing_time = time.time() - start_time
    logger.info(f"Verification completed in {processing_time:.2f}s")

    if report.compilation_error is not None:
        message = "Compilation failed"
    else:
        message = f"{report.passed_tests}/{report.total_tests} tests passed"
    return VerificationResponse(success=True, message=message, data=report)


@router.post("/hint", response_model=HintResponse)
def get_hint(
    request: HintRequest,
    engine: VerificationEngine = Depends(get_engine)
):
    """Hint for one failing test, outside a verification run. Never fails: degrades to a canned hint."""
    hint = engine.hint_for_failure(
        test_name=request.test_name,
        test_source=request.test_code,
        submission_source=request.student_code,
        failure_message=request.error_message,
        problem_statement=request.problem_statement or "",
    )
    return HintResponse(hint=hint)
