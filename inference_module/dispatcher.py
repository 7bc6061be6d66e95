"""Single owner of the Inference Engine: one loaded model, one call at a time."""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Dict, Iterator, List, Optional, Sequence, Union

from common.errors import GatewayError, GenerationFailedError, ModelNotLoadedError

from .engines import InferenceEngine
from .models import GenerationConfig, GenerationResult, ModelIdentity, ModelInfo, StreamChunk

logger = logging.getLogger(__name__)

MessagesLike = Union[str, Sequence[Any]]


def _as_messages(messages: MessagesLike) -> List[Dict[str, str]]:
    """Accept a bare prompt, dicts, or objects exposing ``to_dict()``."""
    if isinstance(messages, str):
        return [{"role": "user", "content": messages}]
    result: List[Dict[str, str]] = []
    for message in messages:
        if hasattr(message, "to_dict"):
            result.append(message.to_dict())
        else:
            result.append({"role": str(message["role"]), "content": str(message.get("content", ""))})
    return result


class ModelDispatcher:
    """Tracks the active model and serializes every engine call.

    ``switch_model``, ``generate`` and ``stream`` all hold one exclusive lock,
    so a request arriving during a switch or a long generation waits for it.
    A switch releases the current weights before loading the next ones; a
    failed load leaves no model loaded.
    """

    def __init__(
        self,
        engine: InferenceEngine,
        *,
        default_generation: Optional[GenerationConfig] = None,
        initial_model: Optional[ModelIdentity] = None,
    ) -> None:
        self._engine = engine
        self._lock = threading.Lock()
        self._handle: Any = None
        self._current = initial_model or ModelIdentity.default()
        self.default_generation = default_generation or GenerationConfig()

    def current_model(self) -> ModelIdentity:
        return self._current

    @property
    def is_loaded(self) -> bool:
        return self._handle is not None

    def list_models(self) -> List[ModelInfo]:
        current, loaded = self._current, self._handle is not None
        return [
            ModelInfo(
                name=model.canonical_name,
                loaded=loaded and model is current,
                description=model.description,
            )
            for model in ModelIdentity
        ]

    def switch_model(self, target: ModelIdentity) -> None:
        with self._lock:
            self._switch_locked(target)

    def ensure_model(self, requested_name: str) -> ModelIdentity:
        """Resolve ``requested_name`` and make it the active model."""
        target = ModelIdentity.parse(requested_name)
        if target is self._current and self._handle is not None:
            return target
        with self._lock:
            self._switch_locked(target)
        return target

    def _switch_locked(self, target: ModelIdentity) -> None:
        if target is self._current and self._handle is not None:
            logger.info("Model %s is already loaded", target)
            return

        logger.info("Switching model from %s to %s", self._current, target)
        self._release_locked()
        start_time = time.perf_counter()
        try:
            handle = self._engine.load(target)
        except Exception as exc:
            logger.exception("Failed to load %s; no model is loaded", target)
            raise ModelNotLoadedError(f"Failed to load {target}: {exc}", model_name=target.canonical_name) from exc

        self._handle = handle
        self._current = target
        logger.info("Model switched to %s in %.2f seconds", target, time.perf_counter() - start_time)

    def _release_locked(self) -> None:
        handle, self._handle = self._handle, None
        if handle is None:
            return
        try:
            self._engine.unload(handle)
        except Exception:
            logger.exception("Error while releasing %s; continuing", self._current)

    def _require_handle_locked(self) -> Any:
        if self._handle is None:
            raise ModelNotLoadedError("No model loaded", model_name=self._current.canonical_name)
        return self._handle

    def generate(
        self,
        messages: MessagesLike,
        config: Optional[GenerationConfig] = None,
        model: Optional[ModelIdentity] = None,
    ) -> GenerationResult:
        """Generate a full reply; ``model`` is made active under the same lock hold."""
        cfg = (config or self.default_generation).validate()
        payload = _as_messages(messages)
        with self._lock:
            if model is not None:
                self._switch_locked(model)
            handle = self._require_handle_locked()
            active = self._current
            try:
                result = self._engine.generate(handle, payload, cfg)
            except GatewayError:
                raise
            except Exception as exc:
                logger.exception("Generation failed on %s", active)
                raise GenerationFailedError(f"Generation failed: {exc}") from exc
        result.model_used = str(active)
        logger.info(
            "Generated %d token(s) with %s in %.2f seconds",
            result.tokens_generated,
            active,
            result.generation_time_secs,
        )
        return result

    def stream(
        self,
        messages: MessagesLike,
        config: Optional[GenerationConfig] = None,
        model: Optional[ModelIdentity] = None,
    ) -> Iterator[StreamChunk]:
        """Yield chunks while holding the engine lock.

        When ``model`` is given it is made active under the same lock hold, so
        no switch can slip in between selecting the model and generating.
        The lock is released when the iterator is exhausted or closed, so
        consumers that stop early must call ``close()``. Each fragment is
        yielded as soon as the engine produces it; a closing chunk with an
        empty ``token_text`` carries ``is_finished`` and a ``finish_reason``
        of ``"stop"`` or ``"length"``.
        """
        cfg = (config or self.default_generation).validate()
        payload = _as_messages(messages)
        with self._lock:
            if model is not None:
                self._switch_locked(model)
            handle = self._require_handle_locked()
            active = self._current
            logger.info("Streaming with %s (max_new_tokens=%d)", active, cfg.max_new_tokens)
            fragments = self._engine.stream(handle, payload, cfg)
            generated = ""
            count = 0
            try:
                for fragment in fragments:
                    count += 1
                    generated += fragment
                    yield StreamChunk(token_text=fragment, generated_text=generated)
            except GatewayError:
                raise
            except Exception as exc:
                logger.exception("Streaming generation failed on %s after %d token(s)", active, count)
                raise GenerationFailedError(f"Generation failed: {exc}") from exc
            finally:
                close = getattr(fragments, "close", None)
                if callable(close):
                    close()

            reason = "length" if count >= cfg.max_new_tokens else "stop"
            logger.debug("Stream on %s finished after %d token(s) (%s)", active, count, reason)
            yield StreamChunk(
                token_text="",
                generated_text=generated,
                is_finished=True,
                finish_reason=reason,
            )
