from __future__ import annotations
from typing import Any, Dict, Optional
import time
import httpx
from tenacity import retry, stop_after_attempt, wait_exponential_jitter, retry_if_exception
from .base import ModelProvider, ChatRequest, ModelResponse, ModelError, ModelRetryable, ModelTimeout, RETRYABLE_STATUS

META_KEYS = ("tokens_predicted", "tokens_evaluated", "stopped_eos", "stopped_limit", "stopped_word", "stopping_word", "timings")

def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, (httpx.ConnectTimeout, httpx.ConnectError, httpx.RemoteProtocolError)):
        return True
    return isinstance(exc, ModelRetryable)

class LlamaCppProvider(ModelProvider):
    """
    Raw text completion against a llama.cpp server (`POST /completion`).

    Chat messages are flattened into one prompt; `max_tokens` maps onto the
    server's `n_predict`.
    """
    def __init__(self, base_url: str = "http://localhost:11435", request_timeout_s: float = 120.0, transport: Optional[httpx.BaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.request_timeout_s = request_timeout_s
        self.client = httpx.Client(base_url=self.base_url, timeout=request_timeout_s, transport=transport)

    def _build_body(self, req: ChatRequest) -> Dict[str, Any]:
        params = dict(req.params or {})
        params.pop("timeout", None)
        max_tokens = params.pop("max_tokens", None)
        body = {"prompt": req.prompt, **params}
        if max_tokens is not None:
            body.setdefault("n_predict", max_tokens)
        if req.extra_body:
            body.update(req.extra_body)
        return body

    @retry(reraise=True, wait=wait_exponential_jitter(initial=0.5, max=4), stop=stop_after_attempt(3), retry=retry_if_exception(_is_retryable))
    def chat(self, req: ChatRequest) -> ModelResponse:
        timeout = (req.params or {}).get("timeout", self.request_timeout_s)
        body = self._build_body(req)

        t0 = time.perf_counter()
        try:
            response = self.client.post("/completion", json=body, timeout=timeout)
            response.raise_for_status()
        except httpx.TimeoutException as e:
            if isinstance(e, httpx.ConnectTimeout):
                raise ModelRetryable(f"llama.cpp connect timeout: {e}") from e
            raise ModelTimeout(f"llama.cpp timeout after {timeout}s: {e}") from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            msg = f"llama.cpp server returned {status}: {e.response.text[:200]}"
            if status in RETRYABLE_STATUS:
                raise ModelRetryable(msg) from e
            raise ModelError(msg) from e
        except httpx.HTTPError as e:
            if _is_retryable(e):
                raise ModelRetryable(f"llama.cpp connection failed: {e}") from e
            raise ModelError(f"llama.cpp request failed: {e}") from e

        dt = time.perf_counter() - t0

        try:
            data = response.json()
        except ValueError as e:
            raise ModelError(f"llama.cpp returned a non-JSON body: {response.text[:200]}") from e
        if not isinstance(data, dict) or "content" not in data:
            raise ModelError(f"Received unexpected response structure from llama.cpp: {str(data)[:200]}")

        meta = {"provider": "llamacpp", "model": data.get("model", req.model), "latency": dt}
        for key in META_KEYS:
            if key in data:
                meta[key] = data[key]

        return ModelResponse(content=data.get("content") or "", raw=data, meta=meta)

    def health_check(self) -> bool:
        try:
            response = self.client.get("/health", timeout=5.0)
            return response.status_code == 200
        except httpx.HTTPError:
            return False

    def cleanup(self) -> None:
        self.client.close()
