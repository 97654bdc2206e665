from __future__ import annotations
from typing import Any, Dict, List, Optional
import time
import httpx
from tenacity import retry, stop_after_attempt, wait_exponential_jitter, retry_if_exception
from ollama import Client, ResponseError
from .base import ModelProvider, ChatRequest, ModelResponse, ModelError, ModelRetryable, ModelTimeout, RETRYABLE_STATUS

def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, (httpx.ReadTimeout, httpx.ConnectTimeout, httpx.ConnectError, httpx.RemoteProtocolError)):
        return True
    if isinstance(exc, ResponseError):
        try:
            return int(getattr(exc, "status_code", 0)) in RETRYABLE_STATUS
        except (TypeError, ValueError):
            return False
    return isinstance(exc, ModelRetryable)

class OllamaProvider(ModelProvider):
    def __init__(self, host: str = "http://localhost:11434", request_timeout_s: float = 300, keep_alive: str = "5m"):
        self.client = Client(host=host, timeout=request_timeout_s)
        self.keep_alive = keep_alive
        self.host = host
        self.request_timeout_s = request_timeout_s

    def _build_options(self, params: Dict[str, Any]) -> Dict[str, Any]:
        options = dict(params)
        # ollama calls the completion budget num_predict
        max_tokens = options.pop("max_tokens", None)
        if max_tokens is not None:
            options.setdefault("num_predict", max_tokens)
        return options

    @retry(reraise=True, wait=wait_exponential_jitter(initial=0.5, max=4), stop=stop_after_attempt(3), retry=retry_if_exception(_is_retryable))
    def chat(self, req: ChatRequest) -> ModelResponse:
        options = self._build_options(req.params or {})
        keep_alive = options.pop('keep_alive', self.keep_alive)

        custom_timeout = options.pop('timeout', self.request_timeout_s)
        client = Client(host=self.host, timeout=custom_timeout) if custom_timeout != self.request_timeout_s else self.client
        json_format = options.pop('format', None)

        t0 = time.perf_counter()

        try:
            response = client.chat(
                model=req.model,
                messages=req.messages,
                options=options,
                format=json_format,
                keep_alive=keep_alive
            )
        except httpx.ReadTimeout as e:
            raise ModelTimeout(f"Ollama timeout after {custom_timeout}s: {e}") from e
        except ResponseError as e:
            msg = str(e)
            if _is_retryable(e): raise ModelRetryable(msg) from e
            raise ModelError(msg) from e
        except Exception as e:
            raise ModelError(f"Ollama request failed: {e}") from e

        dt = time.perf_counter() - t0

        # The ollama client returns either a dict or a response object depending on version.
        content = ""
        model_name = req.model
        raw_response_dict: Dict[str, Any] = {}

        if isinstance(response, dict):
            raw_response_dict = response
            if 'message' in response and isinstance(response.get('message'), dict):
                content = response['message'].get('content', '')
            model_name = response.get('model', req.model)
        elif hasattr(response, 'message') and hasattr(response.message, 'content'):
            content = response.message.content or ""
            model_name = getattr(response, 'model', req.model)
            raw_response_dict = getattr(response, '__dict__', {})
        else:
            raise ModelError(f"Received unexpected response structure from Ollama: {response}")

        meta = {"provider": "ollama", "model": model_name, "latency": dt}
        for key in ['total_duration', 'load_duration', 'prompt_eval_count', 'prompt_eval_duration', 'eval_count', 'eval_duration']:
            if key in raw_response_dict:
                meta[key] = raw_response_dict[key]

        return ModelResponse(content=content, raw=response, meta=meta)

    def health_check(self) -> bool:
        try:
            self.client.list()
            return True
        except Exception:
            return False
