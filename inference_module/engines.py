"""Inference Engine backends.

An engine owns the model math: loading weights for a :class:`ModelIdentity`,
and producing text for a list of ``{"role", "content"}`` messages either in
one piece or as an iterator of fragments. Engines are synchronous and may
block for a long time; callers run them off the event loop and serialize
access through :class:`~inference_module.dispatcher.ModelDispatcher`.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, List, Protocol

from common.errors import TokenizationError

from .config import EngineConfig
from .llm_client import RemoteChatEngine
from .models import GenerationConfig, GenerationResult, ModelIdentity
from .prompts import END_OF_TURN, format_llama3_chat

logger = logging.getLogger(__name__)

Messages = List[Dict[str, str]]


class InferenceEngine(Protocol):
    def load(self, model: ModelIdentity) -> Any:
        ...

    def unload(self, handle: Any) -> None:
        ...

    def generate(self, handle: Any, messages: Messages, config: GenerationConfig) -> GenerationResult:
        ...

    def stream(self, handle: Any, messages: Messages, config: GenerationConfig) -> Iterator[str]:
        ...


def _raise_for_context_overflow(exc: ValueError) -> None:
    # llama.cpp reports prompts longer than n_ctx as a ValueError
    if "context window" in str(exc):
        raise TokenizationError(str(exc)) from exc


class LlamaCppEngine:
    """Runs GGUF weights in-process through llama-cpp-python."""

    def __init__(self, config: EngineConfig) -> None:
        self.config = config

    def load(self, model: ModelIdentity) -> Any:
        from llama_cpp import Llama  # type: ignore

        variant = model.value
        path = Path(self.config.model_dir) / variant.gguf_file
        start_time = time.perf_counter()
        if path.exists():
            logger.info("Loading %s from %s", model, path)
            llama = Llama(
                model_path=str(path),
                n_ctx=model.max_seq_len,
                n_threads=self.config.n_threads,
                verbose=False,
            )
        else:
            logger.info(
                "Weights for %s not found at %s; fetching %s/%s (first load may take minutes)",
                model,
                path,
                variant.gguf_repo,
                variant.gguf_file,
            )
            llama = Llama.from_pretrained(
                repo_id=variant.gguf_repo,
                filename=variant.gguf_file,
                local_dir=self.config.model_dir,
                n_ctx=model.max_seq_len,
                n_threads=self.config.n_threads,
                verbose=False,
            )
        logger.info("Loaded %s in %.2f seconds", model, time.perf_counter() - start_time)
        return llama

    def unload(self, handle: Any) -> None:
        close = getattr(handle, "close", None)
        if callable(close):
            close()

    def _completion_kwargs(self, messages: Messages, config: GenerationConfig, stream: bool) -> Dict[str, Any]:
        return dict(
            prompt=format_llama3_chat(messages),
            max_tokens=config.max_new_tokens,
            temperature=config.temperature,
            top_p=config.top_p,
            seed=config.seed,
            stop=[END_OF_TURN],
            stream=stream,
        )

    def generate(self, handle: Any, messages: Messages, config: GenerationConfig) -> GenerationResult:
        start_time = time.perf_counter()
        try:
            output = handle.create_completion(**self._completion_kwargs(messages, config, stream=False))
        except ValueError as exc:
            _raise_for_context_overflow(exc)
            raise
        text = (output.get("choices") or [{}])[0].get("text", "") or ""
        usage = output.get("usage") or {}
        return GenerationResult(
            text=text,
            tokens_generated=int(usage.get("completion_tokens", 0)),
            generation_time_secs=time.perf_counter() - start_time,
            model_used=str(getattr(handle, "model_path", "")),
            usage=usage,
        )

    def stream(self, handle: Any, messages: Messages, config: GenerationConfig) -> Iterator[str]:
        try:
            events = handle.create_completion(**self._completion_kwargs(messages, config, stream=True))
            for event in events:
                delta = (event.get("choices") or [{}])[0].get("text", "")
                if delta:
                    yield delta
        except ValueError as exc:
            _raise_for_context_overflow(exc)
            raise


@dataclass(frozen=True)
class DemoHandle:
    model: ModelIdentity


class DemoEngine:
    """Echoes the last user message word by word; no weights involved."""

    def __init__(self, token_delay: float = 0.0) -> None:
        self.token_delay = token_delay

    def load(self, model: ModelIdentity) -> DemoHandle:
        logger.info("Demo engine serving %s", model)
        return DemoHandle(model)

    def unload(self, handle: Any) -> None:
        return None

    @staticmethod
    def _last_user(messages: Messages) -> str:
        for m in reversed(messages):
            if m.get("role") == "user":
                return m.get("content", "")
        return ""

    def generate(self, handle: DemoHandle, messages: Messages, config: GenerationConfig) -> GenerationResult:
        start_time = time.perf_counter()
        prompt = self._last_user(messages)
        words = f"[Demo - {handle.model}] Response to: '{prompt[:50]}'".split()
        words = words[: config.max_new_tokens]
        if self.token_delay:
            time.sleep(self.token_delay * 2)
        return GenerationResult(
            text=" ".join(words),
            tokens_generated=len(words),
            generation_time_secs=time.perf_counter() - start_time,
            model_used=str(handle.model),
        )

    def stream(self, handle: DemoHandle, messages: Messages, config: GenerationConfig) -> Iterator[str]:
        prompt = self._last_user(messages)
        words = f"[Demo - {handle.model}] Streaming response for: '{prompt[:30]}'".split()
        for idx, word in enumerate(words[: config.max_new_tokens]):
            if self.token_delay:
                time.sleep(self.token_delay)
            yield word if idx == 0 else f" {word}"


def build_engine(config: EngineConfig) -> InferenceEngine:
    backend = config.backend.lower().replace("-", "_")
    if backend == "llama_cpp":
        return LlamaCppEngine(config)
    if backend == "remote":
        return RemoteChatEngine(config)
    if backend == "demo":
        return DemoEngine(token_delay=config.demo_token_delay)
    raise ValueError(f"Unknown engine backend: {config.backend}")
