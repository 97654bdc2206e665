"""
Structured extraction and validation of the hint envelope.

The collaborator's text is untrusted: the first balanced JSON object is cut
out of it, parsed, validated, and rejected when it leaks code or
framework/harness vocabulary.
"""

import json
import re
from typing import List, Optional

from pydantic import ValidationError

from .hint_types import HintEnvelope

MAX_FIELD_LINES = 3

LEAK_PATTERNS = (
    ("import statement", re.compile(r"import ")),
    ("from-import line", re.compile(r"^\s*from\s+[\w.]+\s+import\b", re.MULTILINE)),
    ("package line", re.compile(r"^\s*package\s+[\w.]+", re.MULTILINE)),
    ("annotation line", re.compile(r"^\s*@\w+", re.MULTILINE)),
    ("test framework", re.compile(r"\b(?:unittest|pytest|TestCase|setUpClass|tearDownClass)\b")),
    ("assertion helper", re.compile(r"\bself\.assert\w*|\bassert[A-Z]\w*")),
    ("harness internals", re.compile(r"codementor|sys\.modules|importlib|__import__")),
)


class EnvelopeError(ValueError):
    """Raised when a response does not yield a valid, leak-free envelope."""


def extract_json_object(text: str) -> Optional[str]:
    """
    Returns the first balanced `{...}` substring of `text`, or None.

    Braces inside JSON string literals do not count towards the depth.
    """
    start = text.find("{")
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start:i + 1]
    return None


def find_leaks(envelope: HintEnvelope, max_lines: int = MAX_FIELD_LINES) -> List[str]:
    """Names every leak rule the envelope violates; empty when it is clean."""
    leaks = []
    for field_name in ("problem", "fix", "snippet"):
        value = getattr(envelope, field_name)
        for label, pattern in LEAK_PATTERNS:
            if pattern.search(value):
                leaks.append(f"{field_name}: {label}")
        if sum(1 for line in value.splitlines() if line.strip()) > max_lines:
            leaks.append(f"{field_name}: more than {max_lines} lines")
    return leaks


def parse_envelope(text: str) -> HintEnvelope:
    candidate = extract_json_object(text)
    if candidate is None:
        raise EnvelopeError("no JSON object in response")
    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as e:
        raise EnvelopeError(f"malformed JSON object: {e}") from e
    if not isinstance(data, dict):
        raise EnvelopeError("JSON value is not an object")
    try:
        envelope = HintEnvelope.model_validate(data)
    except ValidationError as e:
        raise EnvelopeError(f"invalid envelope: {e.error_count()} validation error(s)") from e

    leaks = find_leaks(envelope)
    if leaks:
        raise EnvelopeError(f"envelope rejected for leakage ({', '.join(leaks)})")
    return envelope
