"""
Token counting types and model/encoding tables.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Literal

# =============================================================================
# MODEL → ENCODING
# =============================================================================

# Claude models have their own tokenizer; cl100k_base is a close approximation
MODEL_TO_ENCODING: Dict[str, str] = {
    "gpt-4": "cl100k_base",
    "gpt-4-turbo": "cl100k_base",
    "gpt-4o": "o200k_base",
    "gpt-3.5-turbo": "cl100k_base",
    "claude-3-opus": "cl100k_base",
    "claude-3-sonnet": "cl100k_base",
    "claude-3-haiku": "cl100k_base",
    "text-embedding-ada-002": "cl100k_base",
    "text-embedding-3-small": "cl100k_base",
    "text-embedding-3-large": "cl100k_base",
}

DEFAULT_MODEL = "gpt-4"

# Encoding label used for estimated counts (also the estimation cache namespace)
ESTIMATION_ENCODING = "char-ratio"

CountMethod = Literal["exact", "estimation"]


def encoding_for_model(model: str) -> str:
    """Resolve a model name to its encoding. Unknown models use the default model's encoding."""
    return MODEL_TO_ENCODING.get(model, MODEL_TO_ENCODING[DEFAULT_MODEL])


@dataclass(frozen=True)
class TokenCountOptions:
    model: str = DEFAULT_MODEL
    use_cache: bool = True
    force_estimation: bool = False


@dataclass(frozen=True)
class TokenCountResult:
    count: int
    method: CountMethod
    encoding: str
    cached: bool
    processing_ms: float


@dataclass(frozen=True)
class TruncationResult:
    text: str
    tokens: int
    truncated: bool


@dataclass
class BatchTokenCountResult:
    results: List[TokenCountResult] = field(default_factory=list)
    total_tokens: int = 0
    average_tokens: int = 0
    total_processing_ms: float = 0.0
