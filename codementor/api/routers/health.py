"""
Health check endpoints for monitoring and diagnostics.
"""

import time
from fastapi import APIRouter, Depends

from codementor import __version__
from ..models.common import HealthStatus
from ..dependencies.engine import get_model_manager, get_engine
from codementor.models.manager import ModelManager
from codementor.pipeline.verification.environment import validate_execution_environment
from codementor.pipeline.verification.verification import VerificationEngine

router = APIRouter()

# Track server start time for uptime calculation
_server_start_time = time.time()

@router.get("/", response_model=HealthStatus)
def health_check(
    model_manager: ModelManager = Depends(get_model_manager),
    engine: VerificationEngine = Depends(get_engine)
):
    """
    Basic health check endpoint.

    Returns the status of the API, the hint provider, and the checks the
    execution environment needs for isolated test runs.
    """
    uptime = time.time() - _server_start_time

    dependencies = {}
    try:
        if model_manager.health_check("hints"):
            dependencies["hint_provider"] = "✅ Available"
        else:
            dependencies["hint_provider"] = "⚠️ Unreachable (fallback hints in use)"
    except Exception as e:
        dependencies["hint_provider"] = f"❌ Error: {str(e)}"

    environment = validate_execution_environment(engine.settings.interpreter)
    dependencies["execution_environment"] = "✅ Ready" if environment["overall_status"]["status"] else "❌ Degraded"

    return HealthStatus(
        status="healthy" if environment["overall_status"]["status"] else "degraded",
        version=__version__,
        uptime=uptime,
        dependencies=dependencies,
        environment=environment,
    )

@router.get("/ready")
def readiness_check(engine: VerificationEngine = Depends(get_engine)):
    """
    Readiness probe for container deployments.

    Ready only when submissions can actually be compiled and run.
    """
    environment = validate_execution_environment(engine.settings.interpreter)
    for name in ("interpreter", "harness", "workspace"):
        if not environment[name]["status"]:
            return {"ready": False, "reason": environment[name]["message"]}
    return {"ready": True, "message": "Service ready to handle requests"}
