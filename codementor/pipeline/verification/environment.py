import logging
import os
import shutil
import signal
import sys
import tempfile
from pathlib import Path
from typing import Dict, Any, Optional, Union

logger = logging.getLogger(__name__)

HARNESS_PATH = Path(__file__).with_name("harness.py")

# Only these variables reach the child; secrets in the service environment never do.
PASSTHROUGH_ENV_KEYS = ("PATH", "LANG", "LC_ALL", "LC_CTYPE", "TZ", "SYSTEMROOT")


class ToolchainUnavailable(RuntimeError):
    """Raised when no usable Python interpreter is available for the child process."""


def resolve_interpreter(interpreter: Optional[str] = None) -> str:
    """Returns the absolute path of the interpreter used to compile and run submissions."""
    candidate = interpreter or sys.executable
    if not candidate:
        raise ToolchainUnavailable("Toolchain unavailable: no Python interpreter is configured.")
    path = shutil.which(candidate) or candidate
    if not os.path.isfile(path) or not os.access(path, os.X_OK):
        raise ToolchainUnavailable(f"Toolchain unavailable: {candidate} is not an executable Python interpreter.")
    return path


def child_environment(workspace: Union[Path, str]) -> Dict[str, str]:
    """Minimal environment for a child interpreter; HOME and TMPDIR point into the workspace."""
    env = {key: os.environ[key] for key in PASSTHROUGH_ENV_KEYS if key in os.environ}
    env.update({
        "HOME": str(workspace),
        "TMPDIR": str(workspace),
        "PYTHONIOENCODING": "utf-8",
        "PYTHONHASHSEED": "0",
    })
    return env


def validate_execution_environment(interpreter: Optional[str] = None) -> Dict[str, Any]:
    """
    Runs a series of checks to validate that the environment supports
    the isolation and functionality requirements of the test harness.

    Returns:
        A dictionary summarizing the status of each check.
    """
    logger.info("Running environment validation for the verification pipeline")
    checks = {
        "interpreter": _check_interpreter(interpreter),
        "harness": _check_harness(),
        "signal_support": _check_signal_support(),
        "resource_limits": _check_resource_limits(),
        "audit_hooks": _check_audit_hooks(),
        "workspace": _check_workspace(),
    }

    overall_status = all(check["status"] for check in checks.values())
    checks["overall_status"] = {
        "status": overall_status,
        "message": "Environment is fully configured for isolated execution." if overall_status else "Environment has configuration issues."
    }
    logger.info(f"Environment validation complete. Overall status: {'OK' if overall_status else 'FAIL'}")
    return checks

def _check_interpreter(interpreter: Optional[str]) -> Dict[str, Any]:
    """Checks that the child interpreter can be located and executed."""
    try:
        path = resolve_interpreter(interpreter)
        return {"status": True, "message": "Python interpreter is available.", "details": path}
    except ToolchainUnavailable as e:
        return {"status": False, "message": str(e)}

def _check_harness() -> Dict[str, Any]:
    if HARNESS_PATH.is_file():
        return {"status": True, "message": "Test harness script is present.", "details": str(HARNESS_PATH)}
    return {"status": False, "message": f"Test harness script is missing: {HARNESS_PATH}"}

def _check_signal_support() -> Dict[str, Any]:
    """Checks if SIGALRM is available for enforcing per-test timeouts."""
    if hasattr(signal, "SIGALRM") and hasattr(signal, "setitimer"):
        return {"status": True, "message": "SIGALRM support is available for timeouts."}
    return {"status": False, "message": "SIGALRM not available. Per-test timeouts fall back to the wall-clock backstop."}

def _check_resource_limits() -> Dict[str, Any]:
    """Checks if the 'resource' module is available for memory limiting."""
    try:
        import resource
        soft, hard = resource.getrlimit(resource.RLIMIT_AS)
        return {"status": True, "message": "Resource module is available for memory limits.", "details": f"Current limit (soft/hard): {soft}/{hard}"}
    except ImportError:
        return {"status": False, "message": "Resource module not available. Memory limits will not be enforced."}

def _check_audit_hooks() -> Dict[str, Any]:
    if hasattr(sys, "addaudithook"):
        return {"status": True, "message": "Audit hooks are available for sandboxing."}
    return {"status": False, "message": "Audit hooks not available. Network and process restrictions will not be enforced."}

def _check_workspace() -> Dict[str, Any]:
    """Ensures a temporary workspace can be created and removed."""
    try:
        path = tempfile.mkdtemp(prefix="codementor-check-")
        shutil.rmtree(path)
        return {"status": True, "message": "Temporary workspaces can be allocated."}
    except OSError as e:
        return {"status": False, "message": f"Temporary workspaces cannot be allocated: {e}"}

if __name__ == '__main__':
    # Allows running this file directly to check the current environment.
    results = validate_execution_environment()
    import json
    print(json.dumps(results, indent=2))
