"""Model identities, generation settings, and generation results."""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from common.errors import InvalidRequestError, UnknownModelError


@dataclass(frozen=True)
class ModelVariant:
    canonical_name: str
    display_name: str
    max_seq_len: int
    description: str
    gguf_repo: str
    gguf_file: str
    aliases: Tuple[str, ...] = ()


class ModelIdentity(Enum):
    """The supported model variants. At most one is loaded at a time."""

    LLAMA31_8B = ModelVariant(
        canonical_name="llama-3.1-8b-instruct",
        display_name="Llama-3.1-8B-Instruct",
        max_seq_len=8192,
        description="Llama 3.1 8B Instruct - highest quality, needs the most memory (~16GB)",
        gguf_repo="bartowski/Meta-Llama-3.1-8B-Instruct-GGUF",
        gguf_file="Meta-Llama-3.1-8B-Instruct-Q4_K_M.gguf",
        aliases=("llama3.1-8b", "llama31-8b", "llama8b"),
    )
    LLAMA32_1B = ModelVariant(
        canonical_name="llama-3.2-1b-instruct",
        display_name="Llama-3.2-1B-Instruct",
        max_seq_len=4096,
        description="Llama 3.2 1B Instruct - lightweight, suited to constrained hosts (~4GB)",
        gguf_repo="bartowski/Llama-3.2-1B-Instruct-GGUF",
        gguf_file="Llama-3.2-1B-Instruct-Q4_K_M.gguf",
        aliases=("llama3.2-1b", "llama32-1b"),
    )
    LLAMA32_3B = ModelVariant(
        canonical_name="llama-3.2-3b-instruct",
        display_name="Llama-3.2-3B-Instruct",
        max_seq_len=4096,
        description="Llama 3.2 3B Instruct - balances quality and memory (~8GB)",
        gguf_repo="bartowski/Llama-3.2-3B-Instruct-GGUF",
        gguf_file="Llama-3.2-3B-Instruct-Q4_K_M.gguf",
        aliases=("llama3.2-3b", "llama32-3b"),
    )

    @property
    def canonical_name(self) -> str:
        return self.value.canonical_name

    @property
    def max_seq_len(self) -> int:
        return self.value.max_seq_len

    @property
    def description(self) -> str:
        return self.value.description

    def __str__(self) -> str:
        return self.value.display_name

    @classmethod
    def default(cls) -> "ModelIdentity":
        return cls.LLAMA32_1B

    @classmethod
    def available_models(cls) -> List[str]:
        return [member.canonical_name for member in cls]

    @classmethod
    def resolve(cls, name: Optional[str]) -> Optional["ModelIdentity"]:
        """Map free-form text to a variant, or ``None`` when unrecognized.

        Matching ignores case, surrounding whitespace, and the difference
        between ``_``, ``-`` and spaces.
        """
        if not isinstance(name, str):
            return None
        return _LOOKUP.get(_normalize(name))

    @classmethod
    def parse(cls, name: Optional[str]) -> "ModelIdentity":
        model = cls.resolve(name)
        if model is None:
            raise UnknownModelError(str(name))
        return model


def _normalize(name: str) -> str:
    return re.sub(r"[\s_\-]+", "-", name.strip().lower())


def _build_lookup() -> Dict[str, ModelIdentity]:
    lookup: Dict[str, ModelIdentity] = {}
    for member in ModelIdentity:
        names = (member.name, member.canonical_name, member.value.display_name) + member.value.aliases
        for alias in names:
            key = _normalize(alias)
            existing = lookup.get(key)
            if existing is not None and existing is not member:
                raise RuntimeError(f"Model alias {alias!r} is ambiguous")
            lookup[key] = member
    return lookup


_LOOKUP = _build_lookup()


@dataclass
class GenerationConfig:
    max_new_tokens: int = 256
    temperature: float = 0.6
    top_p: float = 0.9
    seed: int = 42

    def validate(self) -> "GenerationConfig":
        if self.max_new_tokens <= 0:
            raise InvalidRequestError("max_new_tokens must be greater than 0")
        if self.temperature < 0:
            raise InvalidRequestError("temperature must be non-negative")
        if not 0 < self.top_p <= 1:
            raise InvalidRequestError("top_p must be in (0, 1]")
        return self

    def with_overrides(self, **values: Any) -> "GenerationConfig":
        """Copy with the non-``None`` values applied, validated."""
        changes = {key: value for key, value in values.items() if value is not None}
        return replace(self, **changes).validate()


@dataclass(frozen=True)
class StreamChunk:
    token_text: str
    generated_text: str
    is_finished: bool = False
    finish_reason: Optional[str] = None


@dataclass
class GenerationResult:
    text: str
    tokens_generated: int
    generation_time_secs: float
    model_used: str
    usage: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ModelInfo:
    name: str
    loaded: bool
    description: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
