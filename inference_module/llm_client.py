"""Inference backend that forwards to an OpenAI-compatible chat-completions server."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Dict, Iterator, List

import requests

from common.errors import TokenizationError

from .config import EngineConfig
from .models import GenerationConfig, GenerationResult, ModelIdentity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RemoteModelHandle:
    model: ModelIdentity

    @property
    def model_name(self) -> str:
        return self.model.canonical_name


class RemoteChatEngine:
    """Thin wrapper around a chat-completions endpoint with streaming support.

    The remote server owns the weights; ``load`` only checks, when a models
    endpoint is configured, that the server actually serves the variant.
    """

    def __init__(self, config: EngineConfig) -> None:
        self.config = config

    def load(self, model: ModelIdentity) -> RemoteModelHandle:
        if self.config.models_endpoint:
            logger.info("Checking %s for model %s", self.config.models_endpoint, model.canonical_name)
            response = requests.get(self.config.models_endpoint, timeout=self.config.request_timeout)
            response.raise_for_status()
            served = {str(item.get("id", "")).lower() for item in response.json().get("data", [])}
            if model.canonical_name not in served:
                raise RuntimeError(f"{model.canonical_name} is not served by {self.config.models_endpoint}")
        return RemoteModelHandle(model)

    def unload(self, handle: RemoteModelHandle) -> None:
        return None

    def _payload(
        self,
        handle: RemoteModelHandle,
        messages: List[Dict[str, str]],
        config: GenerationConfig,
        stream: bool,
    ) -> Dict[str, object]:
        return {
            "model": handle.model_name,
            "messages": messages,
            "max_tokens": config.max_new_tokens,
            "temperature": config.temperature,
            "top_p": config.top_p,
            "seed": config.seed,
            "stream": stream,
        }

    def _post(self, payload: Dict[str, object], stream: bool) -> requests.Response:
        response = requests.post(
            self.config.endpoint,
            json=payload,
            stream=stream,
            timeout=self.config.request_timeout,
        )
        if response.status_code == 400:
            raise TokenizationError(f"Remote server rejected the prompt: {response.text[:200]}")
        response.raise_for_status()
        return response

    def stream(
        self,
        handle: RemoteModelHandle,
        messages: List[Dict[str, str]],
        config: GenerationConfig,
    ) -> Iterator[str]:
        """Yield tokens from the model as they arrive."""
        logger.info("Streaming chat completion to %s using model %s", self.config.endpoint, handle.model_name)
        response = self._post(self._payload(handle, messages, config, stream=True), stream=True)

        with response:
            for raw_line in response.iter_lines():
                if not raw_line:
                    continue
                line = raw_line.decode("utf-8").strip()
                if line.startswith("data:"):
                    line = line[5:].strip()
                if not line or line == "[DONE]":
                    continue

                try:
                    payload = json.loads(line)
                except json.JSONDecodeError:
                    logger.debug("Skipping non-JSON stream line: %s", line)
                    continue

                token = self._extract_delta(payload)
                if token:
                    yield token

    def generate(
        self,
        handle: RemoteModelHandle,
        messages: List[Dict[str, str]],
        config: GenerationConfig,
    ) -> GenerationResult:
        """Return a full completion (no streaming)."""
        logger.debug("Requesting non-streaming completion for %d message(s)", len(messages))
        start_time = time.perf_counter()
        response = self._post(self._payload(handle, messages, config, stream=False), stream=False)
        data = response.json()
        choice = (data.get("choices") or [{}])[0]
        message = choice.get("message") or {}
        usage = data.get("usage") or {}
        return GenerationResult(
            text=message.get("content", "") or "",
            tokens_generated=int(usage.get("completion_tokens", 0)),
            generation_time_secs=time.perf_counter() - start_time,
            model_used=str(handle.model),
            usage=usage,
        )

    @staticmethod
    def _extract_delta(payload: Dict[str, object]) -> str:
        choices = payload.get("choices") or []
        if not isinstance(choices, list) or not choices:
            return ""
        delta = choices[0].get("delta") or {}
        return str(delta.get("content") or "")
