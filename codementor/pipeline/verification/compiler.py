"""
Compiler adapter: names the compilation units, writes them into the workspace
and byte-compiles both in a child interpreter, collecting every diagnostic.
"""

import keyword
import logging
import re
import subprocess
import sys
from typing import Optional, Tuple, List

from .environment import HARNESS_PATH, ToolchainUnavailable, child_environment, resolve_interpreter
from .parser import HarnessOutputParser
from .verification_types import CompilationOutcome, Diagnostic, ErrorType, Severity
from .workspace import Workspace

logger = logging.getLogger(__name__)

_CLASS_RE = re.compile(r"^class\s+([A-Za-z_]\w*)", re.MULTILINE)
_DEF_RE = re.compile(r"^(?:async\s+)?def\s+([A-Za-z_]\w*)", re.MULTILINE)
_TEST_CLASS_RE = re.compile(r"^class\s+(\w*Test\w*)", re.MULTILINE)
_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")

STDERR_TAIL_CHARS = 4000


def snake_case(name: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def stderr_tail(text: Optional[str], limit: int = STDERR_TAIL_CHARS) -> str:
    text = (text or "").strip()
    return text[-limit:]


class CompilerAdapter:
    def __init__(self, interpreter: Optional[str] = None, timeout: float = 10.0,
                 fallback_module: str = "solution", fallback_test_module: str = "test_solution"):
        self.interpreter = interpreter
        self.timeout = timeout
        self.fallback_module = fallback_module
        self.fallback_test_module = fallback_test_module
        self.parser = HarnessOutputParser()

    def module_names(self, submission_source: str, test_source: str) -> Tuple[str, str]:
        """
        Derives the module names the two units are compiled and loaded under.

        The submission is named after its first class (EvenSum -> even_sum), else
        its first top-level function; the test module after its first class
        containing "Test". Names that would be unusable fall back to defaults.
        """
        match = _CLASS_RE.search(submission_source) or _DEF_RE.search(submission_source)
        module_name = self._usable(snake_case(match.group(1)) if match else None, self.fallback_module)

        match = _TEST_CLASS_RE.search(test_source)
        test_module_name = self._usable(snake_case(match.group(1)) if match else None, self.fallback_test_module)
        if test_module_name == module_name:
            test_module_name = self.fallback_test_module if module_name != self.fallback_test_module else f"{module_name}_tests"
        return module_name, test_module_name

    @staticmethod
    def _usable(name: Optional[str], fallback: str) -> str:
        if not name or not name.isidentifier() or keyword.iskeyword(name):
            return fallback
        if name in sys.stdlib_module_names or name in sys.builtin_module_names:
            return fallback
        return name

    def compile(self, workspace: Workspace, submission_source: str, test_source: str) -> CompilationOutcome:
        module_name, test_module_name = self.module_names(submission_source, test_source)
        units = [f"{module_name}.py", f"{test_module_name}.py"]
        workspace.write(units[0], submission_source)
        workspace.write(units[1], test_source)

        def outcome(success: bool, diagnostics: List[Diagnostic], error_type: Optional[ErrorType] = None) -> CompilationOutcome:
            return CompilationOutcome(success=success, diagnostics=diagnostics, module_name=module_name,
                                      test_module_name=test_module_name, error_type=error_type)

        try:
            interpreter = resolve_interpreter(self.interpreter)
        except ToolchainUnavailable as e:
            logger.error(str(e))
            return outcome(False, [Diagnostic(message=str(e))], ErrorType.TOOLCHAIN_UNAVAILABLE)

        cmd = [interpreter, "-I", str(HARNESS_PATH), "compile", str(workspace.path), *units]
        try:
            result = subprocess.run(
                cmd,
                cwd=workspace.path,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=self.timeout,
                env=child_environment(workspace.path),
            )
        except subprocess.TimeoutExpired:
            logger.warning(f"Compilation timed out after {self.timeout:g}s in workspace {workspace.run_id}")
            return outcome(False, [Diagnostic(message=f"Compilation timed out after {self.timeout:g}s")], ErrorType.TIMEOUT)
        except OSError as e:
            logger.error(f"Could not launch interpreter {interpreter}: {e}")
            return outcome(False, [Diagnostic(message=f"Toolchain unavailable: {e}")], ErrorType.TOOLCHAIN_UNAVAILABLE)

        transcript = self.parser.parse(result.stdout)
        diagnostics = transcript.diagnostics
        accounted = set(transcript.compiled) | {d.unit for d in diagnostics if d.severity is Severity.ERROR}
        if not set(units) <= accounted:
            tail = stderr_tail(result.stderr) or f"exit code {result.returncode}"
            diagnostics = diagnostics + [Diagnostic(message=f"The compiler produced no usable output: {tail}")]

        success = not any(d.severity is Severity.ERROR for d in diagnostics)
        logger.info(f"Compiled {', '.join(units)}: {'ok' if success else 'failed'} ({len(diagnostics)} diagnostics)")
        return outcome(success, diagnostics, None if success else ErrorType.COMPILATION_ERROR)
