"""
Utility modules for the voice agent usage service.
"""

from .cache import TTLCache
from .tokenizer_provider import TokenizerProvider, TiktokenProvider
from .token_counter import (
    TokenCounter,
    create_token_counter,
    detect_language,
    estimate_tokens,
    estimate_message_tokens,
    estimate_conversation_tokens,
    FORCED_CHUNK_CHARS,
)
from .usage_logger import (
    UsageLogBatcher,
    BatcherState,
    StructuredLogger,
    create_usage_batcher,
)

__all__ = [
    "TTLCache",
    "TokenizerProvider",
    "TiktokenProvider",
    "TokenCounter",
    "create_token_counter",
    "detect_language",
    "estimate_tokens",
    "estimate_message_tokens",
    "estimate_conversation_tokens",
    "FORCED_CHUNK_CHARS",
    "UsageLogBatcher",
    "BatcherState",
    "StructuredLogger",
    "create_usage_batcher",
]
