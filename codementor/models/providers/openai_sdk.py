from __future__ import annotations
from typing import Dict, Any, Optional
import time
from os import getenv

from openai import OpenAI
from openai import APIError, APITimeoutError, APIConnectionError
from tenacity import retry, stop_after_attempt, wait_exponential_jitter, retry_if_exception

from .base import ModelProvider, ChatRequest, ModelResponse, ModelError, ModelRetryable, ModelTimeout, RETRYABLE_STATUS

def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, (APITimeoutError, APIConnectionError)):
        return True
    if isinstance(exc, APIError):
        if getattr(exc, 'status_code', None) in RETRYABLE_STATUS:
            return True
    if isinstance(exc, ModelRetryable):
        return True
    return False

class OpenAIProvider(ModelProvider):
    """OpenAI chat completions; also serves OpenAI-compatible servers through base_url."""
    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None, default_headers: Optional[Dict[str, str]] = None, timeout: float = 60.0, **kwargs):
        self.client = OpenAI(
            base_url=base_url,
            api_key=api_key or getenv("OPENAI_API_KEY"),
            default_headers=default_headers or {},
            timeout=timeout,
            **kwargs
        )
        self.base_url = base_url
        self.timeout = timeout

    @retry(reraise=True, wait=wait_exponential_jitter(initial=0.5, max=4), stop=stop_after_attempt(3), retry=retry_if_exception(_is_retryable))
    def chat(self, req: ChatRequest) -> ModelResponse:
        params = dict(req.params or {})
        # sampling knobs the chat completions API does not accept go through extra_body
        extra_body = {key: params.pop(key) for key in ("top_k", "repeat_penalty") if key in params}
        extra_body.update(req.extra_body or {})

        completion_params = {
            "model": req.model,
            "messages": req.messages,
            **params
        }
        if extra_body:
            completion_params["extra_body"] = extra_body

        t0 = time.perf_counter()
        try:
            response = self.client.chat.completions.create(**completion_params)
        except APITimeoutError as e:
            raise ModelTimeout(f"OpenAI timeout: {e}") from e
        except APIError as e:
            msg = f"OpenAI API error: {e}"
            if _is_retryable(e):
                raise ModelRetryable(msg) from e
            raise ModelError(msg) from e
        except Exception as e:
            raise ModelError(f"OpenAI provider error: {e}") from e

        dt = time.perf_counter() - t0

        try:
            content = response.choices[0].message.content or ""
        except (IndexError, AttributeError) as e:
            raise ModelError(f"Invalid response structure from OpenAI API: {e}") from e

        meta = {
            "provider": "openai",
            "model": getattr(response, 'model', req.model),
            "latency": dt,
            "base_url": self.base_url or "https://api.openai.com/v1",
            "timeout": self.timeout
        }

        if getattr(response, 'usage', None):
            meta["usage"] = response.usage.model_dump()
        meta["finish_reason"] = getattr(response.choices[0], 'finish_reason', None)
        if hasattr(response, 'id'):
            meta["id"] = response.id

        return ModelResponse(content=content, raw=response, meta=meta)

    def health_check(self) -> bool:
        """SYNCHRONOUS health check - blocks until complete"""
        try:
            _ = self.client.models.list()
            return True
        except Exception:
            return False

    def cleanup(self) -> None:
        self.client.close()
