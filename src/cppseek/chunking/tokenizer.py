"""
Token counting for chunk budgets.

The adapter wraps a tiktoken encoding behind a lazily initialized service.
Initialization is single-flighted: the first caller starts it, every other
caller awaits the same in-flight task. When the encoding cannot be loaded
(offline machine, unknown encoding name) the adapter switches to a
deterministic ``ceil(len / 4)`` estimate instead of failing.

Counting policy
---------------
Strings up to ``sample_chars`` characters are tokenized exactly and memoized.
Longer strings are *extrapolated*: the exact count of their first
``sample_chars`` characters is scaled by the length ratio. The result is an
approximation, but it is a pure function of the text, so chunking stays
deterministic, and it never decreases as a prefix grows past the sample.
The binary search in the chunk builder relies on both properties.
"""
from __future__ import annotations

import asyncio
import math
from typing import Callable, List, Optional, Protocol, Sequence

from ..logger import get_logger
from ..settings import settings
from .cache import BoundedCache, CacheInfo

log = get_logger(__name__)

CHARS_PER_TOKEN_ESTIMATE = 4


class Encoder(Protocol):
    """Anything that turns text into a sequence of token ids."""

    def encode(self, text: str) -> Sequence[int]:
        ...


class HeuristicEncoder:
    """Fallback encoder: one pseudo-token per four characters."""

    name = "heuristic"

    def encode(self, text: str) -> List[int]:
        return list(range(math.ceil(len(text) / CHARS_PER_TOKEN_ESTIMATE)))


class TiktokenEncoder:
    """Thin wrapper so special-token markers inside source text never raise."""

    def __init__(self, encoding_name: str) -> None:
        import tiktoken

        self.name = encoding_name
        self._encoding = tiktoken.get_encoding(encoding_name)

    def encode(self, text: str) -> List[int]:
        return self._encoding.encode(text, disallowed_special=())


EncoderLoader = Callable[[], Encoder]


class TokenizerAdapter:
    """Lazily initialized, shareable token counter."""

    def __init__(
        self,
        encoding_name: Optional[str] = None,
        loader: Optional[EncoderLoader] = None,
        sample_chars: Optional[int] = None,
        cache_size: Optional[int] = None,
    ) -> None:
        self.encoding_name = encoding_name or settings.tokenizer_encoding
        self.sample_chars = sample_chars or settings.tokenizer_sample_chars
        if self.sample_chars < 1:
            raise ValueError("sample_chars must be positive")
        self._loader: EncoderLoader = loader or (
            lambda: TiktokenEncoder(self.encoding_name)
        )
        self._cache: BoundedCache[str, int] = BoundedCache(
            cache_size or settings.tokenizer_cache_size
        )
        self._encoder: Optional[Encoder] = None
        self._init_task: Optional[asyncio.Task[None]] = None
        self.fallback_reason: Optional[str] = None

    @property
    def is_ready(self) -> bool:
        return self._encoder is not None

    @property
    def is_fallback(self) -> bool:
        return isinstance(self._encoder, HeuristicEncoder)

    async def ensure_ready(self) -> None:
        """Load the encoder once; concurrent callers share the same attempt."""
        if self._encoder is not None:
            return
        if self._init_task is None:
            self._init_task = asyncio.ensure_future(self._initialize())
        # Shielded so a cancelled waiter does not abort the shared load.
        await asyncio.shield(self._init_task)

    async def _initialize(self) -> None:
        log.info("tokenizer_initializing", encoding=self.encoding_name)
        try:
            encoder = await asyncio.to_thread(self._loader)
        except Exception as exc:
            self.fallback_reason = str(exc) or type(exc).__name__
            self._encoder = HeuristicEncoder()
            log.warning(
                "tokenizer_fallback",
                encoding=self.encoding_name,
                error=self.fallback_reason,
            )
            return
        self._encoder = encoder
        log.info("tokenizer_initialized", encoding=self.encoding_name)

    async def tokenize(self, text: str) -> List[int]:
        """Return token ids for the full text (never extrapolated)."""
        await self.ensure_ready()
        return list(self._encode(text))

    async def count_tokens(self, text: str) -> int:
        """Token count under the memoize-then-extrapolate policy above."""
        if not text:
            return 0
        if len(text) <= self.sample_chars:
            return await self._exact_count(text)
        sampled = await self._exact_count(text[: self.sample_chars])
        return math.ceil(sampled * len(text) / self.sample_chars)

    async def char_offset_for_tokens(self, text: str, tokens: int) -> int:
        """Largest prefix length of ``text`` whose count stays within ``tokens``."""
        if tokens <= 0 or not text:
            return 0
        if await self.count_tokens(text) <= tokens:
            return len(text)
        low, high, best = 1, len(text), 0
        while low <= high:
            mid = (low + high) // 2
            if await self.count_tokens(text[:mid]) <= tokens:
                best = mid
                low = mid + 1
            else:
                high = mid - 1
        return best

    async def _exact_count(self, text: str) -> int:
        cached = self._cache.get(text)
        if cached is not None:
            return cached
        await self.ensure_ready()
        count = len(self._encode(text))
        self._cache.put(text, count)
        return count

    def _encode(self, text: str) -> Sequence[int]:
        assert self._encoder is not None
        try:
            return self._encoder.encode(text)
        except Exception as exc:
            log.warning("tokenization_failed", error=str(exc), chars=len(text))
            return HeuristicEncoder().encode(text)

    def clear_cache(self) -> None:
        self._cache.clear()
        log.debug("tokenizer_cache_cleared")

    def cache_stats(self) -> CacheInfo:
        return self._cache.info()


_default_tokenizer: Optional[TokenizerAdapter] = None


def get_default_tokenizer() -> TokenizerAdapter:
    """Process-wide adapter shared by services that were not handed one."""
    global _default_tokenizer
    if _default_tokenizer is None:
        _default_tokenizer = TokenizerAdapter()
    return _default_tokenizer
