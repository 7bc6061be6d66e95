"""Model variants, Inference Engine backends, and the model dispatcher.

The dispatcher is the only caller of an engine: it keeps at most one model
loaded, swaps models by unloading before loading, and lets one switch or
generation run at a time. Backends cover in-process GGUF weights
(llama-cpp-python), a remote OpenAI-compatible server, and a demo echo.
"""

from .config import EngineConfig
from .dispatcher import ModelDispatcher
from .engines import DemoEngine, InferenceEngine, LlamaCppEngine, build_engine
from .llm_client import RemoteChatEngine
from .models import GenerationConfig, GenerationResult, ModelIdentity, ModelInfo, StreamChunk

__all__ = [
    "DemoEngine",
    "EngineConfig",
    "GenerationConfig",
    "GenerationResult",
    "InferenceEngine",
    "LlamaCppEngine",
    "ModelDispatcher",
    "ModelIdentity",
    "ModelInfo",
    "RemoteChatEngine",
    "StreamChunk",
    "build_engine",
]
