"""
Exact tokenizer providers for the token counter.

A provider hands out encoder objects by encoding name. The token counter
only needs `encoder.encode(text)` to return a sequence of tokens.
"""

from __future__ import annotations

from typing import Any, Protocol, Sequence

import tiktoken


class Encoder(Protocol):
    def encode(self, text: str) -> Sequence[int]: ...


class TokenizerProvider(Protocol):
    """
    Capability injected into TokenCounter.

    load() is called once per counter and may raise; a failed load puts the
    counter in estimation mode for its lifetime.
    """

    def load(self) -> None: ...

    def get_encoding(self, encoding_name: str) -> Encoder: ...


class _TiktokenEncoder:
    """Counts special-token text (e.g. "<|endoftext|>") as plain text instead of raising."""

    def __init__(self, encoding: Any):
        self._encoding = encoding

    def encode(self, text: str) -> Sequence[int]:
        return self._encoding.encode(text, disallowed_special=())


class TiktokenProvider:
    """
    tiktoken-backed provider.

    tiktoken downloads BPE ranks on first use of an encoding, so load()
    warms the default encoding: an offline host fails here once instead
    of on every count.
    """

    def __init__(self, warm_encoding: str = "cl100k_base"):
        self.warm_encoding = warm_encoding

    def load(self) -> None:
        tiktoken.get_encoding(self.warm_encoding)

    def get_encoding(self, encoding_name: str) -> Any:
        return _TiktokenEncoder(tiktoken.get_encoding(encoding_name))
