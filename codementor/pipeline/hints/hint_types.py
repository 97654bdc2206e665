from dataclasses import dataclass, field
from typing import Optional, Dict, Any, Tuple

from pydantic import BaseModel, Field, field_validator


class HintEnvelope(BaseModel):
    """The structured object the hint collaborator is asked to emit."""
    problem: str = Field(min_length=1)
    fix: str = Field(min_length=1)
    snippet: str = ""

    @field_validator("problem", "fix", mode="before")
    @classmethod
    def _strip(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("snippet", mode="before")
    @classmethod
    def _empty_snippet(cls, value):
        if value is None:
            return ""
        return value.strip("\n") if isinstance(value, str) else value


@dataclass(frozen=True)
class HintContext:
    """Everything the prompt for one failing test is built from."""
    test_name: str
    failure_message: str
    focused_submission_excerpt: str
    truncated_reference_test: str
    exercise_context: str
    expectation: str = ""
    detected_issue: str = ""
    concepts: Tuple[str, ...] = field(default_factory=tuple)


class HintSettings(BaseModel):
    """Hint pipeline settings, read from `tasks.hints` and the `verification` section."""
    prompt_ref: str = "hints/failing_test@v1"
    max_tokens: int = 300
    max_attempts: int = Field(default=2, ge=1)
    max_workers: int = Field(default=4, ge=1)
    max_hint_lines: int = 3
    excerpt_char_limit: int = 2000
    test_excerpt_char_limit: int = 600
    hint_budget_s: float = 60.0

    @classmethod
    def from_config(cls, config: Optional[Dict[str, Any]]) -> "HintSettings":
        config = config or {}
        task = (config.get("tasks") or {}).get("hints") or {}
        verification = config.get("verification") or {}
        values = {key: task[key] for key in ("prompt_ref", "max_tokens", "max_attempts", "max_workers", "max_hint_lines") if task.get(key) is not None}
        values.update({key: verification[key] for key in ("excerpt_char_limit", "test_excerpt_char_limit", "hint_budget_s") if verification.get(key) is not None})
        return cls.model_validate(values)
