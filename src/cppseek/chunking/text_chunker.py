"""
Token-budgeted chunking of whole source files.

Chunks are contiguous: concatenating their contents rebuilds the processed
text exactly. Each chunk end is found by binary search over character
offsets, then optionally snapped to a nearby semantic boundary.
"""
from __future__ import annotations

import bisect
import re
import time
from typing import List, Optional, Sequence, Tuple

from ..logger import get_logger
from ..settings import settings
from .boundaries import BoundaryScanner
from .models import ChunkingOptions, ChunkingResult, SemanticBoundary, TextChunk
from .tokenizer import TokenizerAdapter, get_default_tokenizer

log = get_logger(__name__)

_WHITESPACE_RUN = re.compile(r"\s+")


def collapse_whitespace(text: str) -> Tuple[str, List[int]]:
    """
    Replace each whitespace run with one space.

    Also returns, for every character of the collapsed text, its offset in
    the original text, so line numbers survive the rewrite.
    """
    pieces: List[str] = []
    origin: List[int] = []
    last = 0
    for match in _WHITESPACE_RUN.finditer(text):
        pieces.append(text[last : match.start()])
        origin.extend(range(last, match.start()))
        pieces.append(" ")
        origin.append(match.start())
        last = match.end()
    pieces.append(text[last:])
    origin.extend(range(last, len(text)))
    return "".join(pieces), origin


def line_starts(text: str) -> List[int]:
    starts = [0]
    starts.extend(match.end() for match in re.finditer("\n", text))
    return starts


def default_options() -> ChunkingOptions:
    return ChunkingOptions(
        chunk_size=settings.chunk_size,
        overlap_size=settings.chunk_overlap,
        smart_boundaries=settings.chunk_smart_boundaries,
        preserve_formatting=settings.chunk_preserve_formatting,
    )


class TextChunker:
    """Splits file text into ordered, gapless, token-bounded chunks."""

    MIN_SNAP_RATIO = 0.8
    MAX_SNAP_RATIO = 1.2

    def __init__(
        self,
        tokenizer: Optional[TokenizerAdapter] = None,
        scanner: Optional[BoundaryScanner] = None,
        max_chunks: Optional[int] = None,
        search_radius: Optional[int] = None,
    ) -> None:
        self.tokenizer = tokenizer or get_default_tokenizer()
        self.scanner = scanner or BoundaryScanner()
        self.max_chunks = max_chunks or settings.chunk_max_chunks
        self.search_radius = (
            settings.chunk_search_radius if search_radius is None else search_radius
        )

    async def chunk_text(
        self,
        content: str,
        source_file: str,
        options: Optional[ChunkingOptions] = None,
    ) -> ChunkingResult:
        started = time.perf_counter()
        opts = options or default_options()
        log.info(
            "chunking_file",
            file=source_file,
            chunk_size=opts.chunk_size,
            overlap=opts.overlap_size,
            smart=opts.smart_boundaries,
        )

        if opts.preserve_formatting:
            text, origin = content, None
        else:
            text, origin = collapse_whitespace(content)
        original_line_starts = line_starts(content)

        boundaries: List[SemanticBoundary] = []
        if opts.smart_boundaries and text and self.search_radius > 0:
            boundaries = self.scanner.scan(text, source_file=source_file)

        chunks: List[TextChunk] = []
        cursor = 0
        truncated = False
        while cursor < len(text):
            if len(chunks) >= self.max_chunks:
                truncated = True
                log.warning(
                    "chunk_limit_reached",
                    file=source_file,
                    max_chunks=self.max_chunks,
                    remaining_chars=len(text) - cursor,
                )
                break

            if await self.tokenizer.count_tokens(text[cursor:]) <= opts.chunk_size:
                end = len(text)
            else:
                end = await self._find_chunk_end(text, cursor, opts.chunk_size, boundaries)

            chunk = await self._create_chunk(
                text,
                cursor,
                end,
                source_file,
                len(chunks),
                original_line_starts,
                origin,
            )
            chunks.append(chunk)
            cursor = end

        total_tokens = sum(chunk.token_count for chunk in chunks)
        elapsed_ms = (time.perf_counter() - started) * 1000.0
        log.info(
            "chunks_created",
            file=source_file,
            chunks=len(chunks),
            total_tokens=total_tokens,
            duration_ms=round(elapsed_ms, 2),
        )
        return ChunkingResult(
            chunks=chunks,
            total_tokens=total_tokens,
            processing_time_ms=elapsed_ms,
            source_file=source_file,
            content=text,
            truncated=truncated,
        )

    async def _find_chunk_end(
        self,
        text: str,
        start: int,
        target_tokens: int,
        boundaries: Sequence[SemanticBoundary],
    ) -> int:
        low, high = start + 1, len(text)
        best: Optional[int] = None
        while low <= high:
            mid = (low + high) // 2
            if await self.tokenizer.count_tokens(text[start:mid]) <= target_tokens:
                best = mid
                low = mid + 1
            else:
                high = mid - 1
        if best is None:
            # Even one character is over budget; advance anyway.
            best = start + 1

        if boundaries:
            snapped = self._best_split_position(text, start, best, boundaries)
            if snapped is not None and snapped != best:
                snapped_tokens = await self.tokenizer.count_tokens(text[start:snapped])
                if (
                    target_tokens * self.MIN_SNAP_RATIO
                    <= snapped_tokens
                    <= target_tokens * self.MAX_SNAP_RATIO
                ):
                    return snapped
        return best

    def _best_split_position(
        self,
        text: str,
        start: int,
        target: int,
        boundaries: Sequence[SemanticBoundary],
    ) -> Optional[int]:
        """Pick the candidate scoring best on (closeness + importance) / 2."""
        radius = self.search_radius
        low = max(start + 1, target - radius)
        high = min(len(text) - 1, target + radius)
        best_position: Optional[int] = None
        best_score = -1.0
        for boundary in boundaries:
            if boundary.end_char < low - 1 or boundary.start_char > high:
                continue
            for position in self._split_candidates(text, boundary):
                if not low <= position <= high:
                    continue
                closeness = 1.0 - abs(position - target) / radius
                score = (closeness + boundary.importance.weight) / 2
                if score > best_score:
                    best_score = score
                    best_position = position
        return best_position

    @staticmethod
    def _split_candidates(text: str, boundary: SemanticBoundary) -> Tuple[int, int]:
        # Before the construct's line, or after it including its newline.
        before = text.rfind("\n", 0, boundary.start_char) + 1
        after = boundary.end_char
        if after < len(text) and text[after] == "\n":
            after += 1
        return before, after

    async def _create_chunk(
        self,
        text: str,
        start: int,
        end: int,
        source_file: str,
        chunk_index: int,
        original_line_starts: List[int],
        origin: Optional[List[int]],
    ) -> TextChunk:
        content = text[start:end]
        first = origin[start] if origin is not None else start
        last = origin[end - 1] if origin is not None else end - 1
        start_line = bisect.bisect_right(original_line_starts, first)
        end_line = bisect.bisect_right(original_line_starts, last)
        return TextChunk(
            id=f"{source_file}-chunk-{chunk_index}-{start_line}-{end_line}",
            content=content,
            token_count=await self.tokenizer.count_tokens(content),
            start_line=start_line,
            end_line=end_line,
            start_char=start,
            end_char=end,
            source_file=source_file,
            chunk_index=chunk_index,
        )
