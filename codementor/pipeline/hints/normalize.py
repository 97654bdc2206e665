"""
One deterministic normalisation pipeline for raw collaborator output.

Every response goes through the same steps, once, before any extraction or
validation looks at it.
"""

import re
from typing import Callable, Tuple

_FENCE = re.compile(r"```[A-Za-z0-9_+-]*")
_LABEL = re.compile(r"^\s*(?:hint|answer|response|solution|example|model|output|json)\s*:\s*", re.IGNORECASE)
_QUOTES = ("\"", "'", "`")


def normalize_newlines(text: str) -> str:
    return text.replace("\r\n", "\n").replace("\r", "\n")


def strip_fences(text: str) -> str:
    return _FENCE.sub("", text)


def strip_labels(text: str) -> str:
    text = text.strip()
    while True:
        stripped = _LABEL.sub("", text, count=1)
        if stripped == text:
            return text
        text = stripped.strip()


def strip_wrapping_quotes(text: str) -> str:
    text = text.strip()
    while len(text) > 2 and text[0] == text[-1] and text[0] in _QUOTES and text[0] not in text[1:-1]:
        text = text[1:-1].strip()
    return text


def collapse_duplicate_lines(text: str) -> str:
    kept = []
    for line in text.split("\n"):
        if kept and line.strip() == kept[-1].strip():
            continue
        kept.append(line)
    return "\n".join(kept)


NORMALIZERS: Tuple[Callable[[str], str], ...] = (
    normalize_newlines,
    strip_fences,
    strip_labels,
    strip_wrapping_quotes,
    collapse_duplicate_lines,
    str.strip,
)


def normalize(raw: str) -> str:
    text = raw or ""
    for step in NORMALIZERS:
        text = step(text)
    return text
