from __future__ import annotations
from typing import Optional, Dict, Any, List, Union
from pathlib import Path
from dataclasses import dataclass, field
from enum import Enum
import os
import yaml
import time
import logging
import threading
from contextlib import contextmanager

from .prompts import PromptManager
from .providers.base import ChatRequest, ModelResponse, ModelError, ModelProvider
from .providers.llamacpp import LlamaCppProvider
from .providers.ollama import OllamaProvider
from .providers.openai_sdk import OpenAIProvider

logger = logging.getLogger(__name__)

PACKAGE_ROOT = Path(__file__).parents[1]
DEFAULT_CONFIG_PATH = PACKAGE_ROOT / "config" / "config.yaml"
DEFAULT_PROMPTS_DIR = PACKAGE_ROOT / "prompts"
CONFIG_ENV_VAR = "CODEMENTOR_CONFIG"


class Provider(Enum):
    LLAMACPP = "llamacpp"
    OLLAMA = "ollama"
    OPENAI = "openai"

@dataclass(frozen=True)
class TaskConfig:
    provider: str
    model: str
    params: Dict[str, Any] = field(default_factory=dict)
    prompt_ref: Optional[str] = None #e.g. "hints/failing_test@v1"


def default_config_path() -> Path:
    return Path(os.environ.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH)


class ModelManager:
    """
    Routes task calls to configured providers.

    One instance may serve concurrent verification runs: the provider cache
    and the stats are guarded by a lock.
    """
    def __init__(self, config_path: Optional[Union[Path, str]] = None, prompts_dir: Optional[Path] = None):
        self.config_path = Path(config_path) if config_path else default_config_path()
        self.config = self._load_config()
        self._providers: Dict[str, ModelProvider] = {}
        self._stats: Dict[str, Dict[str, Any]] = {} #performance tracking
        self._lock = threading.Lock()

        self.prompts = PromptManager(prompts_dir or DEFAULT_PROMPTS_DIR)

    def _load_config(self) -> Dict:
        if not self.config_path.exists():
            raise FileNotFoundError(f"Config not found: {self.config_path}")
        with open(self.config_path, encoding="utf-8") as f:
            config = yaml.safe_load(f) or {}

        if 'providers' not in config:
            raise ValueError("Config missing 'providers'")
        if 'tasks' not in config:
            raise ValueError("Config missing 'tasks'")

        for task_name, task_cfg in config['tasks'].items():
            if 'provider' not in task_cfg:
                raise ValueError(f"Task '{task_name}' missing provider")
            if 'model' not in task_cfg:
                raise ValueError(f"Task '{task_name}' missing model")

            provider_name = task_cfg['provider']
            if provider_name not in config['providers']:
                raise ValueError(f"Task '{task_name}' references unknown provider '{provider_name}'")

        return config

    def task_config(self, task: str) -> TaskConfig:
        if task not in self.config["tasks"]:
            raise ValueError(f"Unknown task: {task}")
        task_cfg = self.config["tasks"][task]
        return TaskConfig(
            provider=task_cfg["provider"],
            model=task_cfg["model"],
            params=dict(task_cfg.get("params") or {}),
            prompt_ref=task_cfg.get("prompt_ref"),
        )

    def _get_provider(self, provider_name: str) -> ModelProvider:
        with self._lock:
            if provider_name in self._providers:
                return self._providers[provider_name]
            if provider_name not in self.config['providers']:
                raise ValueError(f"Unknown provider: {provider_name}")

            provider_cfg = self.config["providers"][provider_name]
            provider_type = provider_cfg["type"]
            settings = provider_cfg.get("settings") or {}

            if provider_type == Provider.LLAMACPP.value:
                provider = LlamaCppProvider(**settings)
            elif provider_type == Provider.OLLAMA.value:
                provider = OllamaProvider(**settings)
            elif provider_type == Provider.OPENAI.value:
                provider = OpenAIProvider(**settings)
            else:
                raise ValueError(f"Unknown provider type: {provider_type}")
            self._providers[provider_name] = provider
        logger.info(f"initialized provider: {provider_name}")
        return provider

    def call(self, task: str, prompt_ref: Optional[str] = None, variables: Optional[Dict[str, Any]] = None, messages_override: Optional[List[Dict[str, str]]] = None, **params_override) -> ModelResponse:
        start_time = time.perf_counter()
        task_cfg = self.task_config(task)

        if messages_override:
            rendered = messages_override
        else:
            prompt_ref = prompt_ref or task_cfg.prompt_ref
            if not prompt_ref:
                raise ValueError(f"Task '{task}' has no prompt_ref and no messages were given")
            rendered = self.prompts.render(prompt_ref, variables or {})

        params = {**task_cfg.params, **params_override}

        task_timeout = self.config["tasks"][task].get("timeout")
        if task_timeout:
            params.setdefault("timeout", task_timeout)

        # stop sequences declared by the task's prompt apply unless the task overrides them
        if task_cfg.prompt_ref and "stop" not in params:
            stop = self.prompts.load_prompt(task_cfg.prompt_ref).stop_sequences
            if stop:
                params["stop"] = list(stop)

        request = ChatRequest(
            model=task_cfg.model,
            messages=rendered,
            params=params,
        )

        provider = self._get_provider(task_cfg.provider)
        try:
            response = provider.chat(request)
            elapsed_ms = (time.perf_counter() - start_time) * 1000
            self._track_stats(task, elapsed_ms, success=True)
            return response
        except ModelError:
            elapsed_ms = (time.perf_counter() - start_time) * 1000
            self._track_stats(task, elapsed_ms, success=False)
            raise

    def generate(self, prompt: str, max_tokens: int, task: str = "hints") -> str:
        """Text-in, text-out completion for `task`; the prompt is sent as a single user message."""
        response = self.call(
            task,
            messages_override=[{"role": "user", "content": prompt}],
            max_tokens=max_tokens,
        )
        return response.content

    def _track_stats(self, task: str, latency_ms: float, success: bool):
        with self._lock:
            if task not in self._stats:
                self._stats[task] = {
                    'total_calls': 0,
                    'successful_calls': 0,
                    'total_latency_ms': 0
                }

            stats = self._stats[task]
            stats['total_calls'] += 1
            if success:
                stats['successful_calls'] += 1
                stats['total_latency_ms'] += latency_ms

    def get_stats(self, task: Optional[str] = None) -> Dict:
        with self._lock:
            if task:
                return dict(self._stats.get(task, {}))
            return {name: dict(stats) for name, stats in self._stats.items()}

    def health_check(self, task: str = "hints") -> bool:
        try:
            return self._get_provider(self.task_config(task).provider).health_check()
        except ValueError as e:
            logger.warning(f"Health check for task '{task}' failed: {e}")
            return False

    def cleanup(self):
        with self._lock:
            providers = list(self._providers.items())
            self._providers.clear()
        for name, provider in providers:
            try:
                provider.cleanup()
                logger.info(f"Cleaned up provider: {name}")
            except Exception as e:
                logger.error(f"Cleanup failed for {name}: {e}")

    @contextmanager
    def session(self):
        try:
            yield self
        finally:
            self.cleanup()
