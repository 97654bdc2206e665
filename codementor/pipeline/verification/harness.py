"""
Child-side harness for one verification run.

This file is executed as a standalone script in a fresh interpreter
(``python -I harness.py ...``), so it may only import the standard library.
It reports back to the parent through newline-delimited JSON records written
to a private copy of stdout; anything the learner's code prints ends up on
stderr, which the parent points at a log file inside the workspace.

    compile <workspace> <unit> [<unit> ...]
        Byte-compiles each unit and reports every diagnostic.

    run <workspace> --submission FILE --tests FILE [--alias NAME]
        [--timeout SECONDS] [--memory-mb N] [--only NAME ...]
        Loads the submission and the test module, discovers the tests and
        runs them one at a time under a time limit.

Records: diagnostic, compiled, discovered, started, finished, fault, completed.
"""

import argparse
import asyncio
import importlib.util
import inspect
import json
import os
import py_compile
import signal
import socket
import sys
import time
import traceback
import unittest
import warnings
from contextlib import contextmanager

FILE_SIZE_LIMIT = 8 * 1024 * 1024
MAX_MESSAGE_CHARS = 2000

DENIED_EVENTS = (
    "socket.",
    "subprocess.Popen",
    "os.system",
    "os.exec",
    "os.posix_spawn",
    "os.spawn",
    "os.fork",
    "os.forkpty",
    "os.kill",
    "os.killpg",
    "ctypes.dlopen",
    "pty.spawn",
    "webbrowser.open",
)
PATH_EVENTS = ("os.remove", "os.rmdir", "os.rename", "os.chmod", "os.chown", "os.truncate", "shutil.rmtree", "os.mkdir")
WRITE_FLAGS = os.O_WRONLY | os.O_RDWR | os.O_CREAT | os.O_APPEND | os.O_TRUNC
LOCAL_FAMILY = getattr(socket, "AF_UNIX", None)


class TimeLimitExceeded(BaseException):
    """Raised by SIGALRM. A BaseException so `except Exception` in learner code cannot swallow it."""


class Channel:
    """Result channel: a private duplicate of the original stdout."""

    def __init__(self):
        sys.stdout.flush()
        fd = os.dup(1)
        os.dup2(2, 1)
        self._stream = os.fdopen(fd, "w", encoding="utf-8", buffering=1)

    def emit(self, event, **fields):
        fields["event"] = event
        self._stream.write(json.dumps(fields) + "\n")
        self._stream.flush()

    def close(self):
        self._stream.close()


@contextmanager
def time_limit(seconds):
    """Enforces a wall-clock limit on a block of code using SIGALRM."""
    if not seconds or not hasattr(signal, "SIGALRM"):
        yield
        return

    def _handler(signum, frame):
        raise TimeLimitExceeded(f"exceeded the time limit of {seconds:g} seconds")

    previous = signal.signal(signal.SIGALRM, _handler)
    signal.setitimer(signal.ITIMER_REAL, seconds)
    try:
        yield
    finally:
        signal.setitimer(signal.ITIMER_REAL, 0)
        signal.signal(signal.SIGALRM, previous)


def describe(exc, tb=None, test_path=None):
    """Formats an exception as "<Type>: <message>" for the report."""
    kind = type(exc).__name__
    if isinstance(exc, TimeLimitExceeded):
        kind = "TimeoutError"
    text = str(exc).strip()
    if not text and isinstance(exc, AssertionError) and tb is not None and test_path:
        text = _failing_line(tb, test_path)
    message = f"{kind}: {text}" if text else kind
    return message[:MAX_MESSAGE_CHARS]


def _failing_line(tb, test_path):
    for frame in reversed(traceback.extract_tb(tb)):
        if os.path.realpath(frame.filename) == test_path and frame.line:
            return frame.line.strip()
    return ""


# --- compile mode -----------------------------------------------------------

def compile_units(workspace, units, channel):
    for unit in units:
        path = os.path.join(workspace, unit)
        try:
            with open(path, "rb") as f:
                source = f.read()
        except OSError as e:
            channel.emit("diagnostic", unit=unit, line=0, message=f"{type(e).__name__}: {e}", severity="error")
            continue

        ok = True
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            try:
                compile(source, path, "exec", dont_inherit=True)
            except SyntaxError as e:
                ok = False
                channel.emit("diagnostic", unit=unit, line=e.lineno or 0, message=f"{type(e).__name__}: {e.msg}", severity="error")
            except ValueError as e:
                ok = False
                channel.emit("diagnostic", unit=unit, line=0, message=f"ValueError: {e}", severity="error")
        for w in caught:
            channel.emit("diagnostic", unit=unit, line=w.lineno or 0, message=f"{w.category.__name__}: {w.message}", severity="warning")

        if not ok:
            continue
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            try:
                py_compile.compile(path, doraise=True)
            except py_compile.PyCompileError as e:
                channel.emit("diagnostic", unit=unit, line=0, message=e.msg.strip(), severity="error")
                continue
        channel.emit("compiled", unit=unit)


# --- run mode ---------------------------------------------------------------

def _apply_resource_limits(memory_mb):
    """Applies memory and file-size ceilings using the resource module (POSIX-only)."""
    try:
        import resource
    except ImportError:
        print("warning: resource module not available, limits not enforced", file=sys.stderr)
        return

    limits = [(resource.RLIMIT_FSIZE, FILE_SIZE_LIMIT)]
    if memory_mb:
        limits.append((resource.RLIMIT_AS, memory_mb * 1024 * 1024))
    for which, value in limits:
        try:
            _, hard = resource.getrlimit(which)
            if hard != resource.RLIM_INFINITY:
                value = min(value, hard)
            resource.setrlimit(which, (value, hard))
        except (ValueError, OSError) as e:
            print(f"warning: could not apply resource limit {which}: {e}", file=sys.stderr)
    if hasattr(signal, "SIGXFSZ"):
        signal.signal(signal.SIGXFSZ, signal.SIG_IGN)


def _make_guard(workspace):
    def inside(path):
        try:
            resolved = os.path.realpath(os.fsdecode(path))
        except (TypeError, ValueError):
            return True
        return resolved == workspace or resolved.startswith(workspace + os.sep)

    def guard(event, args):
        # Event loops need a local socketpair; connect/bind/send stay denied.
        if event == "socket.__new__" and LOCAL_FAMILY is not None and len(args) > 1 and args[1] == LOCAL_FAMILY:
            return
        if event.startswith(DENIED_EVENTS):
            raise PermissionError(f"{event} is not permitted during verification")
        if event == "open":
            path, mode, flags = (tuple(args) + (None, None, None))[:3]
            if isinstance(path, int):
                return
            writing = bool(mode and any(c in mode for c in "wax+")) or bool((flags or 0) & WRITE_FLAGS)
            if writing and not inside(path):
                raise PermissionError(f"writing to {path!r} is not permitted during verification")
        elif event in PATH_EVENTS:
            for path in args[:2]:
                if isinstance(path, (str, bytes, os.PathLike)) and not inside(path):
                    raise PermissionError(f"{event} on {path!r} is not permitted during verification")

    return guard


def _load_module(name, path, seed=None):
    spec = importlib.util.spec_from_file_location(name, path)
    module = importlib.util.module_from_spec(spec)
    if seed:
        module.__dict__.update(seed)
    sys.modules[name] = module
    spec.loader.exec_module(module)
    return module


def _public_names(module):
    return {k: v for k, v in vars(module).items() if not k.startswith("_")}


def _first_line(obj):
    code = getattr(inspect.unwrap(obj), "__code__", None)
    return code.co_firstlineno if code is not None else 0


class _CaptureResult(unittest.TestResult):
    """Keeps the first failure's exc_info instead of a formatted traceback."""

    def __init__(self):
        super().__init__()
        self.exc_info = None
        self.skip_reason = None

    def _keep(self, err):
        if self.exc_info is None:
            self.exc_info = err

    def addFailure(self, test, err):
        self._keep(err)

    def addError(self, test, err):
        self._keep(err)

    def addSubTest(self, test, subtest, err):
        if err is not None:
            self._keep(err)

    def addSkip(self, test, reason):
        self.skip_reason = reason

    def addUnexpectedSuccess(self, test):
        try:
            raise AssertionError("test marked as an expected failure passed unexpectedly")
        except AssertionError:
            self._keep(sys.exc_info())


class ClassFixtures:
    """Runs setUpClass lazily, once per TestCase class, and tears down at the end."""

    def __init__(self, timeout):
        self.timeout = timeout
        self._prepared = {}

    def prepare(self, cls):
        if cls not in self._prepared:
            try:
                with time_limit(self.timeout):
                    cls.setUpClass()
                self._prepared[cls] = None
            except (Exception, SystemExit, TimeLimitExceeded):
                self._prepared[cls] = sys.exc_info()
        return self._prepared[cls]

    def teardown(self):
        for cls, failure in self._prepared.items():
            if failure is not None:
                continue
            try:
                with time_limit(self.timeout):
                    cls.tearDownClass()
                    cls.doClassCleanups()
            except (Exception, SystemExit, TimeLimitExceeded):
                traceback.print_exc()


class Case:
    def __init__(self, name, func=None, owner=None, method=None):
        self.name = name
        self.func = func
        self.owner = owner
        self.method = method

    def run(self, timeout, fixtures, test_path):
        started = time.perf_counter()
        exc_info = None
        skip_reason = None
        try:
            if self.owner is not None:
                setup_failure = fixtures.prepare(self.owner)
                if setup_failure is not None:
                    exc_type, exc, tb = setup_failure
                    return self._record(False, f"setUpClass failed: {describe(exc, tb, test_path)}", "harness_fault", started)
                if not issubclass(self.owner, unittest.IsolatedAsyncioTestCase) and \
                        inspect.iscoroutinefunction(getattr(self.owner, self.method)):
                    message = f"TypeError: async test {self.method} needs a unittest.IsolatedAsyncioTestCase class"
                    return self._record(False, message, "test_execution_failure", started)
                result = _CaptureResult()
                with time_limit(timeout):
                    self.owner(self.method).run(result)
                exc_info = result.exc_info
                skip_reason = result.skip_reason
            elif inspect.iscoroutinefunction(self.func):
                with time_limit(timeout):
                    asyncio.run(self.func())
            else:
                with time_limit(timeout):
                    self.func()
        except unittest.SkipTest as e:
            skip_reason = str(e)
        except (Exception, SystemExit, TimeLimitExceeded):
            exc_info = sys.exc_info()

        if exc_info is None and skip_reason is not None:
            return {"name": self.name, "skipped": True, "message": skip_reason}
        if exc_info is None:
            return self._record(True, None, None, started)
        exc_type, exc, tb = exc_info
        error_type = "timeout" if issubclass(exc_type, TimeLimitExceeded) else "test_execution_failure"
        return self._record(False, describe(exc, tb, test_path), error_type, started)

    def _record(self, passed, message, error_type, started):
        return {
            "name": self.name,
            "passed": passed,
            "message": message,
            "error_type": error_type,
            "duration": round(time.perf_counter() - started, 6),
        }


def discover(module):
    """Returns the tests defined in `module`, in definition order."""
    cases = []
    loader = unittest.TestLoader()
    for attr, obj in list(vars(module).items()):
        if isinstance(obj, type) and issubclass(obj, unittest.TestCase) and obj.__module__ == module.__name__:
            names = loader.getTestCaseNames(obj)
            for method in sorted(names, key=lambda n: _first_line(getattr(obj, n))):
                cases.append(Case(f"{obj.__name__}.{method}", owner=obj, method=method))
        elif inspect.isfunction(obj) and attr.startswith("test") and obj.__module__ == module.__name__:
            cases.append(Case(attr, func=obj))
    return cases


def run_tests(args, channel):
    workspace = os.path.realpath(args.workspace)
    submission_path = os.path.join(workspace, args.submission)
    test_path = os.path.join(workspace, args.tests)
    module_name = os.path.splitext(args.submission)[0]
    test_module_name = os.path.splitext(args.tests)[0]

    os.chdir(workspace)
    sys.path.insert(0, workspace)
    sys.dont_write_bytecode = True
    _apply_resource_limits(args.memory_mb)
    sys.addaudithook(_make_guard(workspace))

    try:
        with time_limit(args.timeout):
            submission = _load_module(module_name, submission_path)
            if args.alias and args.alias != module_name:
                sys.modules[args.alias] = submission
            test_module = _load_module(test_module_name, test_path, seed=_public_names(submission))
    except (Exception, SystemExit, TimeLimitExceeded):
        exc_type, exc, tb = sys.exc_info()
        traceback.print_exc()
        channel.emit("fault", stage="load", message=describe(exc, tb, test_path))
        return

    cases = discover(test_module)
    if args.only:
        wanted = set(args.only)
        cases = [case for case in cases if case.name in wanted]
    channel.emit("discovered", tests=[case.name for case in cases])

    fixtures = ClassFixtures(args.timeout)
    for case in cases:
        channel.emit("started", name=case.name)
        channel.emit("finished", **case.run(args.timeout, fixtures, test_path))
    fixtures.teardown()
    channel.emit("completed")


def main(argv=None):
    parser = argparse.ArgumentParser(prog="harness")
    modes = parser.add_subparsers(dest="mode", required=True)

    compile_parser = modes.add_parser("compile")
    compile_parser.add_argument("workspace")
    compile_parser.add_argument("units", nargs="+")

    run_parser = modes.add_parser("run")
    run_parser.add_argument("workspace")
    run_parser.add_argument("--submission", required=True)
    run_parser.add_argument("--tests", required=True)
    run_parser.add_argument("--alias", default="")
    run_parser.add_argument("--timeout", type=float, default=5.0)
    run_parser.add_argument("--memory-mb", type=int, default=0)
    run_parser.add_argument("--only", nargs="*", default=[])

    args = parser.parse_args(argv)
    channel = Channel()
    try:
        if args.mode == "compile":
            compile_units(args.workspace, args.units, channel)
        else:
            run_tests(args, channel)
    except Exception as e:
        traceback.print_exc()
        channel.emit("fault", stage="harness", message=describe(e))
        return 1
    finally:
        sys.stderr.flush()
    channel.close()
    return 0


if __name__ == "__main__":
    code = main()
    sys.stdout.flush()
    sys.stderr.flush()
    # Skip interpreter shutdown: learner threads must not keep the process alive.
    os._exit(code)
