"""Configuration objects for the inference backends."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass
class EngineConfig:
    """Which backend runs the models and how to reach it."""

    backend: str = "llama_cpp"
    # llama_cpp: directory holding (or receiving) the GGUF weights
    model_dir: str = "./models"
    n_threads: int = 4
    # remote: OpenAI-compatible chat-completions server
    endpoint: str = "http://localhost:8000/v1/chat/completions"
    models_endpoint: Optional[str] = None
    request_timeout: int = 60
    # demo: pause between echoed words
    demo_token_delay: float = 0.05
