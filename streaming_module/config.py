"""Configuration objects for the gateway."""

from __future__ import annotations

from dataclasses import dataclass, field

from inference_module.config import EngineConfig
from inference_module.models import GenerationConfig
from session_module.store import SessionConfig


@dataclass
class StreamingConfig:
    """Controls for the worker pool and the SSE writer."""

    channel_capacity: int = 32
    keepalive_seconds: float = 15.0
    worker_threads: int = 2

    def __post_init__(self) -> None:
        if self.channel_capacity < 1:
            raise ValueError("channel_capacity must be at least 1")
        if self.keepalive_seconds <= 0:
            raise ValueError("keepalive_seconds must be positive")
        if self.worker_threads < 1:
            raise ValueError("worker_threads must be at least 1")


@dataclass
class GatewayConfig:
    """Everything ``create_app`` needs to assemble the service."""

    engine: EngineConfig = field(default_factory=EngineConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    streaming: StreamingConfig = field(default_factory=StreamingConfig)
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    default_model: str = "llama-3.2-1b-instruct"
    preload_model: bool = True
