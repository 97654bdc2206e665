from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Any, Optional, List

#unified model errors
class ModelError(RuntimeError): ...
class ModelTimeout(ModelError): ...
class ModelRetryable(ModelError): ...

RETRYABLE_STATUS = {408, 409, 429, 500, 502, 503, 504}

@dataclass(frozen=True)
class ChatRequest:
    model: str
    messages: List[Dict[str, Any]]
    params: Dict[str, Any] | None = None
    extra_body: Optional[Dict[str, Any]] = None #extra body for openai-compatible servers only

    @property
    def prompt(self) -> str:
        """Flattens the messages into one completion prompt, for raw-completion backends."""
        return "\n\n".join(str(m.get("content", "")) for m in self.messages if m.get("content"))

@dataclass(frozen=True)
class ModelResponse:
    content: str
    raw: Any #provider-native response obj/dict
    meta: Dict[str, Any] #timings, token  counts, model, created_at, etc.

class ModelProvider(ABC):
    @abstractmethod
    def chat(self, req: ChatRequest) -> ModelResponse:
        raise NotImplementedError

    @abstractmethod
    def health_check(self) -> bool:
        raise NotImplementedError

    def cleanup(self) -> None:
        pass
