import json
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Dict, Any

from .verification_types import Diagnostic, ErrorType, Severity, TestOutcome, TestStatus

logger = logging.getLogger(__name__)


@dataclass
class HarnessTranscript:
    """Everything one child launch reported, in the order it reported it."""
    diagnostics: List[Diagnostic] = field(default_factory=list)
    compiled: List[str] = field(default_factory=list)
    discovered: Optional[List[str]] = None
    statuses: Dict[str, TestStatus] = field(default_factory=dict)
    results: Dict[str, TestOutcome] = field(default_factory=dict)
    skipped: List[str] = field(default_factory=list)
    in_flight: Optional[str] = None
    fault: Optional[Dict[str, Any]] = None
    completed: bool = False
    noise: List[str] = field(default_factory=list)


class HarnessOutputParser:
    """
    Parses the stdout of the harness child, which adheres to a strict
    newline-delimited JSON contract.

    Lines that are not JSON records are kept as noise rather than treated as
    a contract violation; the per-test state machine only moves forward
    (discovered -> running -> passed | failed).
    """
    def parse(self, stdout: str) -> HarnessTranscript:
        transcript = HarnessTranscript()

        for line in stdout.splitlines():
            line = line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError:
                transcript.noise.append(line)
                continue
            if not isinstance(record, dict) or "event" not in record:
                transcript.noise.append(line)
                continue

            handler = getattr(self, f"_on_{record['event']}", None)
            if handler is None:
                transcript.noise.append(line)
                continue
            try:
                handler(transcript, record)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed harness record {line[:200]!r}: {e}")
                transcript.noise.append(line)

        if transcript.noise:
            logger.debug(f"Ignored {len(transcript.noise)} non-record lines from the harness")
        return transcript

    def _on_diagnostic(self, transcript: HarnessTranscript, record: Dict[str, Any]) -> None:
        transcript.diagnostics.append(Diagnostic(
            message=str(record["message"]),
            line=int(record.get("line") or 0),
            severity=Severity(record.get("severity", "error")),
            unit=str(record.get("unit", "")),
        ))

    def _on_compiled(self, transcript: HarnessTranscript, record: Dict[str, Any]) -> None:
        transcript.compiled.append(str(record["unit"]))

    def _on_discovered(self, transcript: HarnessTranscript, record: Dict[str, Any]) -> None:
        names = [str(name) for name in record["tests"]]
        transcript.discovered = names
        for name in names:
            transcript.statuses.setdefault(name, TestStatus.DISCOVERED)

    def _on_started(self, transcript: HarnessTranscript, record: Dict[str, Any]) -> None:
        name = str(record["name"])
        if transcript.statuses.get(name) is not TestStatus.DISCOVERED:
            raise ValueError(f"test {name} started without being discovered")
        if transcript.in_flight is not None:
            raise ValueError(f"test {name} started while {transcript.in_flight} is still running")
        transcript.statuses[name] = TestStatus.RUNNING
        transcript.in_flight = name

    def _on_finished(self, transcript: HarnessTranscript, record: Dict[str, Any]) -> None:
        name = str(record["name"])
        if transcript.in_flight != name or transcript.statuses.get(name) is not TestStatus.RUNNING:
            raise ValueError(f"test {name} finished but {transcript.in_flight} was the one started")
        transcript.in_flight = None

        if record.get("skipped"):
            transcript.statuses.pop(name)
            transcript.skipped.append(name)
            return

        passed = bool(record["passed"])
        transcript.statuses[name] = TestStatus.PASSED if passed else TestStatus.FAILED
        transcript.results[name] = TestOutcome(
            name=name,
            passed=passed,
            failure_message=None if passed else (record.get("message") or "Test failed"),
            error_type=None if passed else self._error_type(record.get("error_type")),
        )
        if "duration" in record:
            logger.debug(f"Test {name} finished in {record['duration']}s")

    def _on_fault(self, transcript: HarnessTranscript, record: Dict[str, Any]) -> None:
        transcript.fault = {"stage": record.get("stage", "harness"), "message": str(record.get("message", ""))}

    def _on_completed(self, transcript: HarnessTranscript, record: Dict[str, Any]) -> None:
        unfinished = [name for name, status in transcript.statuses.items()
                      if status in (TestStatus.DISCOVERED, TestStatus.RUNNING)]
        if transcript.discovered is not None and unfinished:
            raise ValueError(f"run reported completed with {len(unfinished)} tests unfinished")
        transcript.completed = True

    @staticmethod
    def _error_type(value: Optional[str]) -> ErrorType:
        try:
            return ErrorType(value)
        except ValueError:
            return ErrorType.TEST_EXECUTION_FAILURE
