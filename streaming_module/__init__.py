"""Streaming generation pipeline and gateway configuration."""

from .channel import TokenChannel
from .config import GatewayConfig, StreamingConfig
from .pipeline import PipelineState, StreamingPipeline, StreamRun

__all__ = [
    "GatewayConfig",
    "PipelineState",
    "StreamRun",
    "StreamingConfig",
    "StreamingPipeline",
    "TokenChannel",
]
