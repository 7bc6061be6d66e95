import threading
import time

import pytest

from document_module import DocumentCache
from inference_module import GenerationResult, ModelDispatcher, ModelIdentity
from session_module import SessionConfig, SessionStore
from streaming_module import StreamingConfig, StreamingPipeline


class DummyHandle:
    def __init__(self, model):
        self.model = model
        self.closed = False


class DummyEngine:
    """Engine double that replays a fixed token list.

    ``fail_after`` raises once that many tokens were produced, ``fail_load``
    lists models whose load raises, and ``token_delay`` slows each token.
    """

    def __init__(self, tokens=None, fail_after=None, fail_load=(), token_delay=0.0):
        self.tokens = list(tokens if tokens is not None else ["Hello", " there", "!"])
        self.fail_after = fail_after
        self.fail_load = set(fail_load)
        self.token_delay = token_delay
        self.loaded = []
        self.unloaded = []
        self.calls = []
        self.served_by = []
        self.produced = 0
        self.active = 0
        self.max_active = 0
        self._guard = threading.Lock()

    def load(self, model):
        if model in self.fail_load:
            raise RuntimeError(f"cannot load {model}")
        handle = DummyHandle(model)
        self.loaded.append(model)
        return handle

    def unload(self, handle):
        handle.closed = True
        self.unloaded.append(handle.model)

    def _enter(self):
        with self._guard:
            self.active += 1
            self.max_active = max(self.max_active, self.active)

    def _leave(self):
        with self._guard:
            self.active -= 1

    def generate(self, handle, messages, config):
        self.calls.append(list(messages))
        self.served_by.append(handle.model)
        self._enter()
        try:
            if self.fail_after is not None:
                raise RuntimeError("engine exploded")
            if self.token_delay:
                time.sleep(self.token_delay)
            words = self.tokens[: config.max_new_tokens]
            return GenerationResult(
                text="".join(words),
                tokens_generated=len(words),
                generation_time_secs=0.0,
                model_used="",
            )
        finally:
            self._leave()

    def stream(self, handle, messages, config):
        self.calls.append(list(messages))
        self.served_by.append(handle.model)
        self._enter()
        try:
            for idx, token in enumerate(self.tokens[: config.max_new_tokens]):
                if self.fail_after is not None and idx >= self.fail_after:
                    raise RuntimeError("engine exploded")
                if self.token_delay:
                    time.sleep(self.token_delay)
                self.produced += 1
                yield token
        finally:
            self._leave()


@pytest.fixture
def engine():
    return DummyEngine()


@pytest.fixture
def dispatcher(engine):
    dispatcher = ModelDispatcher(engine)
    dispatcher.switch_model(ModelIdentity.default())
    return dispatcher


@pytest.fixture
def store():
    return SessionStore()


@pytest.fixture
def documents():
    return DocumentCache()


@pytest.fixture
def streaming_config():
    return StreamingConfig(channel_capacity=4, keepalive_seconds=5.0, worker_threads=2)


@pytest.fixture
def pipeline(store, documents, dispatcher, streaming_config):
    pipeline = StreamingPipeline(
        store,
        documents,
        dispatcher,
        session_config=SessionConfig(max_turns=5),
        streaming_config=streaming_config,
    )
    yield pipeline
    pipeline.shutdown(wait=True)
