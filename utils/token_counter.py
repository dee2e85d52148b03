"""
Token counting for LLM prompt budgeting.

Counts tokens exactly through an injected tokenizer provider (tiktoken in
production) and falls back to a character-ratio estimate whenever exact
counting is unavailable. Every counter owns a bounded TTL cache.

Usage:
    counter = create_token_counter()
    result = await counter.count_tokens_detailed("Hola, ¿cómo estás?")
    result.count, result.method   # -> 6, "exact"

    chunks = await counter.split_by_token_limit(long_text, 512)
"""

from __future__ import annotations

import re
import math
import time
import asyncio
from dataclasses import replace
from typing import Callable, Dict, List, Optional, Any

from config import logger, TOKEN_CACHE_MAX_SIZE, TOKEN_CACHE_TTL, TOKEN_COUNTER_EXACT
from models.tokens import (
    BatchTokenCountResult,
    ESTIMATION_ENCODING,
    TokenCountOptions,
    TokenCountResult,
    TruncationResult,
    encoding_for_model,
)
from utils.cache import TTLCache
from utils.tokenizer_provider import TokenizerProvider, TiktokenProvider

# =============================================================================
# ESTIMATION CONSTANTS
# =============================================================================

# Empirical chars/token. Spanish is denser (accents, shorter words).
CHARS_PER_TOKEN_BY_LANGUAGE: Dict[str, float] = {
    "en": 4.0,
    "es": 3.5,
    "mixed": 3.8,
    "default": 3.5,
}

MESSAGE_OVERHEAD_TOKENS = 4       # role + separators per chat message
CONVERSATION_OVERHEAD_TOKENS = 3  # reply priming
URL_EMAIL_SURCHARGE = 5
CODE_DENSITY_THRESHOLD = 0.05
CODE_INFLATION = 1.2

# split_by_token_limit advances by this many chars when nothing fits a chunk
FORCED_CHUNK_CHARS = 100

BATCH_CONCURRENCY = 100

_SPANISH_CHARS = re.compile(r"[áéíóúüñ¿¡]", re.IGNORECASE)
_SPANISH_WORDS = re.compile(
    r"\b(el|la|los|las|de|que|y|en|un|una|es|por|con|para|no|si|se|su|al|lo|como|"
    r"más|pero|sus|le|ya|o|este|sí|porque|esta|entre|cuando|muy|sin|sobre|también|"
    r"me|hasta|hay|donde|quien|desde|todo|nos|durante|todos|uno|les|ni|contra|otros|"
    r"ese|eso|ante|ellos|e|esto|mí|antes|algunos|qué|unos|yo|otro|otras|otra|él|"
    r"tanto|esa|estos|mucho|quienes|nada|muchos|cual|poco|ella|estar|estas|algunas|"
    r"algo|nosotros)\b",
    re.IGNORECASE,
)
_DIGIT_RUN = re.compile(r"\d+")
_URL = re.compile(r"https?://\S+")
_EMAIL = re.compile(r"[\w.-]+@[\w.-]+\.\w+")
_CODE_CHARS = re.compile(r"[{}\[\]()=><;:]")


# =============================================================================
# ESTIMATION
# =============================================================================

def detect_language(text: str) -> str:
    """
    Rough language guess: "es", "en" or "mixed".
    Spanish wins on diacritics (>1% of chars) or more than 5 stopwords.
    """
    if not text:
        return "en"

    if len(_SPANISH_CHARS.findall(text)) > len(text) * 0.01:
        return "es"

    if len(_SPANISH_WORDS.findall(text)) > 5:
        return "es"

    ascii_chars = sum(1 for ch in text if ord(ch) < 128)
    if ascii_chars / len(text) > 0.95:
        return "en"

    return "mixed"


def estimate_tokens(text: str, language: Optional[str] = None) -> int:
    """
    Heuristic token estimate. Approximate by nature: it is not expected to
    match any vendor tokenizer exactly.

    Base ceil(len / chars_per_token), then:
    - digit runs longer than 3 add ceil(n/3) - 1
    - each URL and e-mail adds a flat surcharge
    - code-heavy text (>5% of {}[]()=><;:) is inflated by 20%
    """
    if not text:
        return 0

    lang = language or detect_language(text)
    chars_per_token = CHARS_PER_TOKEN_BY_LANGUAGE.get(lang, CHARS_PER_TOKEN_BY_LANGUAGE["default"])

    estimate = math.ceil(len(text) / chars_per_token)

    for number in _DIGIT_RUN.findall(text):
        if len(number) > 3:
            estimate += math.ceil(len(number) / 3) - 1

    url_count = len(_URL.findall(text))
    email_count = len(_EMAIL.findall(text))
    estimate += (url_count + email_count) * URL_EMAIL_SURCHARGE

    if len(_CODE_CHARS.findall(text)) > len(text) * CODE_DENSITY_THRESHOLD:
        estimate = math.ceil(estimate * CODE_INFLATION)

    return estimate


def estimate_message_tokens(content: str, role: str = "user") -> int:
    """Estimate for one chat message including role/metadata overhead."""
    return estimate_tokens(content) + MESSAGE_OVERHEAD_TOKENS


def estimate_conversation_tokens(messages: List[Dict[str, Any]]) -> int:
    """Estimate for a list of {"role", "content"} messages."""
    total = sum(
        estimate_message_tokens(msg.get("content") or "", msg.get("role", "user"))
        for msg in messages
    )
    return total + CONVERSATION_OVERHEAD_TOKENS


def _as_text(value) -> str:
    """Callers sometimes pass None or non-string payloads; count their str() form."""
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def _cache_key(text: str, encoding: str) -> str:
    # Approximate identity: same-length texts sharing prefix and suffix collide
    return f"{encoding}:{len(text)}:{text[:100]}:{text[-50:]}"


# =============================================================================
# TOKEN COUNTER
# =============================================================================

class TokenCounter:
    """
    Token counter with exact/estimation strategies and a bounded TTL cache.

    The provider is loaded lazily on the first exact count, at most once per
    counter; a failed load is remembered and the counter estimates from then on.
    Nothing here raises for string input.
    """

    def __init__(
        self,
        provider: Optional[TokenizerProvider] = None,
        cache_max_size: int = 10000,
        cache_ttl: float = 300,
        clock: Callable[[], float] = time.time,
    ):
        self._provider = provider
        self._cache = TTLCache(ttl_seconds=cache_ttl, max_size=cache_max_size, clock=clock)
        self._encoders: Dict[str, Any] = {}
        self._load_task: Optional[asyncio.Task] = None
        self._exact_available = False

    # =========================================================================
    # PROVIDER LOADING
    # =========================================================================

    async def _load_provider(self) -> bool:
        try:
            await asyncio.to_thread(self._provider.load)
        except Exception as e:
            logger.warning(f"[TOKENS] Exact tokenizer unavailable, using estimation mode: {e}")
            self._exact_available = False
            return False
        logger.info(f"[TOKENS] Exact tokenizer loaded ({type(self._provider).__name__})")
        self._exact_available = True
        return True

    async def _ensure_provider(self) -> bool:
        if self._provider is None:
            return False
        # The task is created before the first await, so concurrent first callers share it
        if self._load_task is None:
            self._load_task = asyncio.ensure_future(self._load_provider())
        return await asyncio.shield(self._load_task)

    async def _get_encoder(self, encoding: str) -> Optional[Any]:
        if not await self._ensure_provider():
            return None

        encoder = self._encoders.get(encoding)
        if encoder is not None:
            return encoder

        try:
            encoder = await asyncio.to_thread(self._provider.get_encoding, encoding)
        except Exception as e:
            logger.error(f"[TOKENS] Failed to create encoder for {encoding}: {e}")
            return None

        self._encoders[encoding] = encoder
        return encoder

    @staticmethod
    def _encode_count(encoder: Any, text: str) -> Optional[int]:
        try:
            return len(encoder.encode(text))
        except Exception as e:
            logger.error(f"[TOKENS] Encoding error, falling back to estimation: {e}")
            return None

    # =========================================================================
    # COUNTING
    # =========================================================================

    async def count_tokens_detailed(
        self,
        text: str,
        options: Optional[TokenCountOptions] = None,
    ) -> TokenCountResult:
        """
        Count tokens in text and report how the number was obtained.

        method="exact" comes from the provider's encoder, method="estimation"
        from estimate_tokens(). Both are cached per strategy when use_cache is on.
        """
        start = time.perf_counter()
        options = options or TokenCountOptions()

        def _result(count: int, method: str, encoding: str, cached: bool) -> TokenCountResult:
            return TokenCountResult(
                count=count,
                method=method,
                encoding=encoding,
                cached=cached,
                processing_ms=(time.perf_counter() - start) * 1000,
            )

        text = _as_text(text)
        if not text:
            return _result(0, "estimation", ESTIMATION_ENCODING, False)

        encoding = encoding_for_model(options.model)

        if not options.force_estimation:
            encoder = await self._get_encoder(encoding)
            if encoder is not None:
                key = _cache_key(text, encoding)
                if options.use_cache:
                    cached_count = self._cache.get(key)
                    if cached_count is not None:
                        return _result(cached_count, "exact", encoding, True)

                count = self._encode_count(encoder, text)
                if count is not None:
                    if options.use_cache:
                        self._cache.set(key, count)
                    return _result(count, "exact", encoding, False)

        key = _cache_key(text, ESTIMATION_ENCODING)
        if options.use_cache:
            cached_count = self._cache.get(key)
            if cached_count is not None:
                return _result(cached_count, "estimation", ESTIMATION_ENCODING, True)

        count = estimate_tokens(text)
        if options.use_cache:
            self._cache.set(key, count)
        return _result(count, "estimation", ESTIMATION_ENCODING, False)

    async def count_tokens(self, text: str, options: Optional[TokenCountOptions] = None) -> int:
        result = await self.count_tokens_detailed(text, options)
        return result.count

    def count_tokens_sync(self, text: str) -> int:
        """Estimation-only count for callers without an event loop."""
        text = _as_text(text)
        if not text:
            return 0

        key = _cache_key(text, ESTIMATION_ENCODING)
        cached_count = self._cache.get(key)
        if cached_count is not None:
            return cached_count

        count = estimate_tokens(text)
        self._cache.set(key, count)
        return count

    async def count_tokens_batch(
        self,
        texts: List[str],
        options: Optional[TokenCountOptions] = None,
    ) -> BatchTokenCountResult:
        """Count many texts, BATCH_CONCURRENCY at a time."""
        start = time.perf_counter()
        results: List[TokenCountResult] = []

        for i in range(0, len(texts), BATCH_CONCURRENCY):
            group = texts[i:i + BATCH_CONCURRENCY]
            results.extend(await asyncio.gather(
                *(self.count_tokens_detailed(text, options) for text in group)
            ))

        total = sum(r.count for r in results)
        return BatchTokenCountResult(
            results=results,
            total_tokens=total,
            average_tokens=round(total / len(texts)) if texts else 0,
            total_processing_ms=(time.perf_counter() - start) * 1000,
        )

    # =========================================================================
    # TRUNCATION & SPLITTING
    # =========================================================================

    async def truncate_to_token_limit(
        self,
        text: str,
        max_tokens: int,
        options: Optional[TokenCountOptions] = None,
    ) -> TruncationResult:
        """
        Longest prefix of text whose count is <= max_tokens.

        Binary search over character cutoffs; probes bypass the cache so
        partial prefixes don't flood it. O(log len(text)) probes.
        """
        options = options or TokenCountOptions()
        current = await self.count_tokens(text, options)
        if current <= max_tokens:
            return TruncationResult(text=text, tokens=current, truncated=False)

        probe_options = replace(options, use_cache=False)
        low, high = 0, len(text)
        best_length, best_tokens = 0, 0

        while low <= high:
            mid = (low + high) // 2
            tokens = await self.count_tokens(text[:mid], probe_options)
            if tokens <= max_tokens:
                best_length, best_tokens = mid, tokens
                low = mid + 1
            else:
                high = mid - 1

        return TruncationResult(text=text[:best_length], tokens=best_tokens, truncated=True)

    async def split_by_token_limit(
        self,
        text: str,
        max_tokens_per_chunk: int,
        options: Optional[TokenCountOptions] = None,
    ) -> List[str]:
        """
        Split text into consecutive chunks of at most max_tokens_per_chunk.

        "".join(chunks) == text. When not even one character fits, the split
        force-advances FORCED_CHUNK_CHARS characters; that chunk can exceed
        the limit.
        """
        total = await self.count_tokens(text, options)
        if total <= max_tokens_per_chunk:
            return [text]

        chunks: List[str] = []
        remaining = text

        while remaining:
            result = await self.truncate_to_token_limit(remaining, max_tokens_per_chunk, options)

            if not result.text:
                chunks.append(remaining[:FORCED_CHUNK_CHARS])
                remaining = remaining[FORCED_CHUNK_CHARS:]
            else:
                chunks.append(result.text)
                remaining = remaining[len(result.text):] if result.truncated else ""

        return chunks

    # =========================================================================
    # INTROSPECTION & LIFECYCLE
    # =========================================================================

    async def is_exact_available(self) -> bool:
        return await self._ensure_provider()

    def get_stats(self) -> Dict[str, Any]:
        return {
            "exact_available": self._exact_available,
            "cache_size": self._cache.size(),
            "encoders_cached": len(self._encoders),
        }

    def clear_cache(self):
        self._cache.invalidate()
        logger.info("[TOKENS] Cache cleared")

    def dispose(self):
        """Drop cached counts and encoders. The counter stays usable."""
        self._cache.invalidate()
        self._encoders.clear()


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

def create_token_counter(
    provider: Optional[TokenizerProvider] = None,
    exact: Optional[bool] = None,
) -> TokenCounter:
    """
    Factory for a TokenCounter configured from the environment.

    With exact enabled (TOKEN_COUNTER_EXACT) and no provider given,
    tiktoken is used.
    """
    use_exact = TOKEN_COUNTER_EXACT if exact is None else exact
    if provider is None and use_exact:
        provider = TiktokenProvider()
    return TokenCounter(
        provider=provider if use_exact else None,
        cache_max_size=TOKEN_CACHE_MAX_SIZE,
        cache_ttl=TOKEN_CACHE_TTL,
    )
