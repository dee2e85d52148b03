"""
Data models for the voice agent usage service.
"""

from .tokens import (
    MODEL_TO_ENCODING,
    DEFAULT_MODEL,
    ESTIMATION_ENCODING,
    TokenCountOptions,
    TokenCountResult,
    TruncationResult,
    BatchTokenCountResult,
    encoding_for_model,
)
from .usage import (
    ApiKeyUsageEntry,
    UsageStats,
    EndpointUsage,
    StatusGroupUsage,
)

__all__ = [
    "MODEL_TO_ENCODING",
    "DEFAULT_MODEL",
    "ESTIMATION_ENCODING",
    "TokenCountOptions",
    "TokenCountResult",
    "TruncationResult",
    "BatchTokenCountResult",
    "encoding_for_model",
    "ApiKeyUsageEntry",
    "UsageStats",
    "EndpointUsage",
    "StatusGroupUsage",
]
