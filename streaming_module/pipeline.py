"""Request orchestration: model, session, documents, generation, SSE."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from functools import partial
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

from fastapi.concurrency import run_in_threadpool

from common.errors import GatewayError, GenerationFailedError
from document_module.cache import DocumentCache
from inference_module.dispatcher import ModelDispatcher
from inference_module.models import GenerationConfig, GenerationResult, ModelIdentity
from session_module.store import ChatMessage, SessionConfig, SessionStore

from . import sse
from .channel import TokenChannel
from .config import StreamingConfig

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    INIT = "init"
    MODEL_READY = "model_ready"
    SESSION_PREPARED = "session_prepared"
    GENERATING = "generating"
    FINALIZING = "finalizing"
    DONE = "done"
    ERROR = "error"


@dataclass
class StreamRun:
    """One request travelling through the pipeline."""

    session_id: str
    messages: List[ChatMessage] = field(default_factory=list)
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    model: Optional[ModelIdentity] = None
    state: PipelineState = PipelineState.INIT
    history: List[PipelineState] = field(default_factory=lambda: [PipelineState.INIT])
    reply: str = ""

    def advance(self, state: PipelineState) -> None:
        logger.debug("Session %s: %s -> %s", self.session_id or "<pending>", self.state.value, state.value)
        self.state = state
        self.history.append(state)

    def message_dicts(self) -> List[Dict[str, str]]:
        return [m.to_dict() for m in self.messages]


@dataclass(frozen=True)
class _StreamFailure:
    payload: Dict[str, Any]


class StreamingPipeline:
    """Drives a generation request from model selection to the final frame.

    Blocking engine work runs on a dedicated thread pool. The only thing the
    worker shares with the event loop while generating is a bounded
    :class:`TokenChannel`; a closed channel tells it the client went away.
    """

    def __init__(
        self,
        sessions: SessionStore,
        documents: DocumentCache,
        dispatcher: ModelDispatcher,
        *,
        session_config: Optional[SessionConfig] = None,
        streaming_config: Optional[StreamingConfig] = None,
    ) -> None:
        self.sessions = sessions
        self.documents = documents
        self.dispatcher = dispatcher
        self.session_config = session_config or SessionConfig()
        self.streaming_config = streaming_config or StreamingConfig()
        self._executor = ThreadPoolExecutor(
            max_workers=self.streaming_config.worker_threads,
            thread_name_prefix="generation",
        )

    async def prepare(
        self,
        model_name: str,
        prompt: str,
        session_id: Optional[str] = None,
        generation: Optional[GenerationConfig] = None,
    ) -> StreamRun:
        """Make the model ready and record the user's turn.

        Nothing is written to the session store or taken from the document
        cache unless the model resolves and loads.
        """
        run = StreamRun(
            session_id=session_id or "",
            generation=(generation or self.dispatcher.default_generation).validate(),
        )
        try:
            run.model = await run_in_threadpool(self.dispatcher.ensure_model, model_name)
        except GatewayError as exc:
            run.advance(PipelineState.DONE)
            logger.warning("Rejected request for model %r: %s", model_name, exc)
            raise
        run.advance(PipelineState.MODEL_READY)

        run.session_id = session_id or str(uuid.uuid4())
        session = self.sessions.get_or_create(run.session_id, self.session_config)
        context = self.documents.drain_as_context()
        if context:
            session.add_user_message(context)
        session.add_user_message(prompt)
        self.sessions.update(session)
        run.messages = list(session.messages)
        run.advance(PipelineState.SESSION_PREPARED)
        logger.info(
            "Prepared session %s for %s (%d message(s)%s)",
            run.session_id,
            run.model,
            len(run.messages),
            ", with document context" if context else "",
        )
        return run

    async def stream(self, run: StreamRun) -> AsyncIterator[str]:
        """Yield SSE frames for a prepared run."""
        loop = asyncio.get_running_loop()
        channel = TokenChannel(self.streaming_config.channel_capacity, loop)
        run.advance(PipelineState.GENERATING)
        worker = loop.run_in_executor(
            self._executor,
            self._produce,
            run.session_id,
            run.message_dicts(),
            run.generation,
            run.model,
            channel,
        )
        keepalive = self.streaming_config.keepalive_seconds
        started = time.perf_counter()
        try:
            while True:
                try:
                    item = await asyncio.wait_for(channel.recv(), timeout=keepalive)
                except asyncio.TimeoutError:
                    yield sse.keep_alive_frame()
                    continue
                if item is None:
                    break
                if isinstance(item, _StreamFailure):
                    yield sse.error_frame(item.payload)
                elif item.token_text:
                    yield sse.content_frame(item.token_text)

            run.advance(PipelineState.FINALIZING)
            run.reply = await worker
            yield sse.session_frame(run.session_id)
            yield sse.done_frame()
            run.advance(PipelineState.DONE)
            logger.info(
                "Stream for session %s finished in %.2f seconds (%d chars)",
                run.session_id,
                time.perf_counter() - started,
                len(run.reply),
            )
        finally:
            if run.state is not PipelineState.DONE:
                logger.info("Client for session %s went away during %s", run.session_id, run.state.value)
            channel.close()

    def _produce(
        self,
        session_id: str,
        messages: List[Dict[str, str]],
        generation: GenerationConfig,
        model: Optional[ModelIdentity],
        channel: TokenChannel,
    ) -> str:
        """Worker body: generate, forward, then persist whatever was produced."""
        reply = ""
        chunks = self.dispatcher.stream(messages, generation, model)
        try:
            for chunk in chunks:
                reply = chunk.generated_text
                if not channel.send(chunk):
                    logger.info("Receiver for session %s closed; stopping generation", session_id)
                    break
        except GatewayError as exc:
            logger.warning("Generation for session %s failed after %d chars: %s", session_id, len(reply), exc)
            channel.send(_StreamFailure(exc.to_payload()))
        except Exception as exc:
            logger.exception("Unexpected error while generating for session %s", session_id)
            channel.send(_StreamFailure(GenerationFailedError(f"Generation failed: {exc}").to_payload()))
        finally:
            chunks.close()
            try:
                if reply:
                    self._record_reply(session_id, reply)
            finally:
                channel.finish()
        return reply

    def _record_reply(self, session_id: str, reply: str) -> None:
        session = self.sessions.get_or_create(session_id, self.session_config)
        session.add_assistant_message(reply)
        self.sessions.update(session)
        logger.debug("Stored %d-char reply for session %s", len(reply), session_id)

    async def generate(
        self,
        model_name: str,
        prompt: str,
        session_id: Optional[str] = None,
        generation: Optional[GenerationConfig] = None,
    ) -> Tuple[StreamRun, GenerationResult]:
        """Non-streaming variant: prepare, generate in one call, persist."""
        run = await self.prepare(model_name, prompt, session_id, generation)
        run.advance(PipelineState.GENERATING)
        loop = asyncio.get_running_loop()
        try:
            result = await loop.run_in_executor(
                self._executor,
                partial(self.dispatcher.generate, run.message_dicts(), run.generation, run.model),
            )
        except GatewayError:
            run.advance(PipelineState.ERROR)
            raise
        run.advance(PipelineState.FINALIZING)
        run.reply = result.text
        if result.text:
            self._record_reply(run.session_id, result.text)
        run.advance(PipelineState.DONE)
        return run, result

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


__all__ = ["PipelineState", "StreamRun", "StreamingPipeline"]
