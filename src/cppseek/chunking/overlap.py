"""
Adaptive overlap between adjacent chunks.

At every junction the manager scans a small window for semantic
boundaries, sizes the overlap from their importance, and appends the
leading text of the following chunk to the earlier chunk. Appending to the
earlier chunk is the only direction used: ``chunk.content[:base_length]``
is always the untouched original slice, and anything after it is overlap.

Token budgets are turned into character ranges with the tokenizer itself
(a prefix search over the following chunk), not with a fixed
characters-per-token ratio.
"""
from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Sequence

from ..logger import get_logger
from ..settings import settings
from .boundaries import BoundaryScanner
from .models import (
    BoundaryType,
    OverlapConfiguration,
    OverlapQuality,
    OverlapRegion,
    OverlapResult,
    SemanticBoundary,
    TextChunk,
)
from .tokenizer import TokenizerAdapter, get_default_tokenizer

log = get_logger(__name__)

FUNCTION_BONUS = 20
COMMENT_BONUS = 10


def default_overlap_configuration() -> OverlapConfiguration:
    return OverlapConfiguration(
        min_size=settings.overlap_min_size,
        max_size=settings.overlap_max_size,
        adaptive_mode=settings.overlap_adaptive_mode,
        preserve_functions=settings.overlap_preserve_functions,
        preserve_comments=settings.overlap_preserve_comments,
    )


def calculate_optimal_overlap(
    boundaries: Sequence[SemanticBoundary], config: OverlapConfiguration
) -> int:
    """Overlap tokens for a junction, clamped to ``[min_size, max_size]``."""
    if not config.adaptive_mode:
        return config.min_size

    recommended = config.min_size
    for boundary in boundaries:
        additional = boundary.importance.overlap_bonus
        if boundary.type is BoundaryType.FUNCTION and config.preserve_functions:
            additional += FUNCTION_BONUS
        elif boundary.type is BoundaryType.COMMENT and config.preserve_comments:
            additional += COMMENT_BONUS
        recommended = max(recommended, config.min_size + additional)
    return min(recommended, config.max_size)


def calculate_semantic_value(boundaries: Sequence[SemanticBoundary]) -> float:
    if not boundaries:
        return 0.0
    total = sum(boundary.importance.weight for boundary in boundaries)
    return min(1.0, total / len(boundaries))


@dataclass
class _QualityTotals:
    overlaps: int = 0
    overlap_tokens: int = 0
    overlap_chars: int = 0
    semantic_value: float = 0.0
    chunk_chars: int = 0
    by_type: Dict[BoundaryType, int] = field(
        default_factory=lambda: {kind: 0 for kind in BoundaryType}
    )


class ChunkOverlapManager:
    """Computes, applies and measures overlaps for one chunk sequence at a time."""

    def __init__(
        self,
        tokenizer: Optional[TokenizerAdapter] = None,
        scanner: Optional[BoundaryScanner] = None,
        config: Optional[OverlapConfiguration] = None,
        window_radius: Optional[int] = None,
    ) -> None:
        self.tokenizer = tokenizer or get_default_tokenizer()
        self.scanner = scanner or BoundaryScanner()
        self.config = config or default_overlap_configuration()
        self.window_radius = (
            settings.overlap_window_radius if window_radius is None else window_radius
        )
        self._totals = _QualityTotals()
        self._lock = threading.Lock()

    async def apply_overlap(
        self,
        chunks: Sequence[TextChunk],
        source_content: str,
        source_file: str,
        config: Optional[OverlapConfiguration] = None,
    ) -> OverlapResult:
        """
        Extend each chunk with the start of its successor.

        ``source_content`` must be the text the chunk offsets refer to
        (``ChunkingResult.content``). Input chunks are not modified; the
        returned chunks are copies.
        """
        if len(chunks) <= 1:
            return OverlapResult(chunks=list(chunks), overlaps=[], quality=self.quality())

        started = time.perf_counter()
        cfg = config or self.config
        enhanced = [replace(chunk) for chunk in chunks]
        overlaps: List[OverlapRegion] = []
        # Long constructs can open far outside a junction window.
        file_boundaries = self.scanner.scan(source_content, source_file=source_file)

        for index in range(len(enhanced) - 1):
            current, following = enhanced[index], enhanced[index + 1]
            boundaries = self.analyze_junction(
                source_content, current, following, source_file, file_boundaries
            )
            overlap_tokens = calculate_optimal_overlap(boundaries, cfg)
            if overlap_tokens <= 0:
                continue

            region = await self._create_overlap_region(
                current, following, source_content, overlap_tokens, boundaries, cfg
            )
            if region is None:
                continue

            current.content += region.content
            current.overlap_end = region.overlap_tokens
            following.overlap_start = region.overlap_tokens
            overlaps.append(region)
            log.debug(
                "overlap_applied",
                file=source_file,
                chunk=index,
                budget=overlap_tokens,
                tokens=region.overlap_tokens,
                chars=len(region.content),
            )

        self._record(overlaps, chunks)
        log.info(
            "overlaps_applied",
            file=source_file,
            chunks=len(enhanced),
            overlaps=len(overlaps),
            duration_ms=round((time.perf_counter() - started) * 1000.0, 2),
        )
        return OverlapResult(chunks=enhanced, overlaps=overlaps, quality=self.quality())

    def analyze_junction(
        self,
        source_content: str,
        current: TextChunk,
        following: TextChunk,
        source_file: str,
        enclosing: Sequence[SemanticBoundary] = (),
    ) -> List[SemanticBoundary]:
        """
        Boundaries within ``window_radius`` characters of the junction.

        Constructs from ``enclosing`` that cross the junction are added too,
        so a function whose header lies before the window still counts.
        """
        start = max(0, current.end_char - self.window_radius)
        end = min(len(source_content), following.start_char + self.window_radius)
        found = self.scanner.scan(source_content, source_file=source_file, start=start, end=end)
        junction = current.end_char
        crossing = [
            boundary
            for boundary in enclosing
            if boundary.straddles(junction) and boundary not in found
        ]
        if not crossing:
            return found
        return sorted(found + crossing, key=lambda b: (b.start_char, b.end_char))

    async def _create_overlap_region(
        self,
        current: TextChunk,
        following: TextChunk,
        source_content: str,
        overlap_tokens: int,
        boundaries: Sequence[SemanticBoundary],
        config: OverlapConfiguration,
    ) -> Optional[OverlapRegion]:
        junction = current.end_char
        tail = source_content[junction : min(following.end_char, len(source_content))]
        span = await self.tokenizer.char_offset_for_tokens(tail, overlap_tokens)
        if span <= 0:
            return None

        # Finish a construct cut by the junction if it fits the maximum budget.
        max_span = await self.tokenizer.char_offset_for_tokens(tail, config.max_size)
        end = junction + span
        for boundary in boundaries:
            if boundary.straddles(junction) and end < boundary.end_char <= junction + max_span:
                end = boundary.end_char

        content = source_content[junction:end]
        contained = [boundary for boundary in boundaries if boundary.within(junction, end)]
        return OverlapRegion(
            chunk_a=current.id,
            chunk_b=following.id,
            overlap_start=junction,
            overlap_end=end,
            content=content,
            # Counted after any extension, so it can exceed the budget.
            overlap_tokens=await self.tokenizer.count_tokens(content),
            budget_tokens=overlap_tokens,
            semantic_value=calculate_semantic_value(contained),
            boundaries=contained,
        )

    def _record(self, overlaps: Sequence[OverlapRegion], chunks: Sequence[TextChunk]) -> None:
        with self._lock:
            totals = self._totals
            totals.chunk_chars += sum(chunk.base_length for chunk in chunks)
            for region in overlaps:
                totals.overlaps += 1
                totals.overlap_tokens += region.overlap_tokens
                totals.overlap_chars += len(region.content)
                totals.semantic_value += region.semantic_value
                for boundary in region.boundaries:
                    totals.by_type[boundary.type] += 1

    def quality(self) -> OverlapQuality:
        """Snapshot of the metrics accumulated since the last reset."""
        with self._lock:
            totals = self._totals
            count = totals.overlaps
            return OverlapQuality(
                total_overlaps=count,
                average_overlap_size=totals.overlap_tokens / count if count else 0.0,
                average_overlap_chars=totals.overlap_chars / count if count else 0.0,
                semantic_preservation=totals.semantic_value / count if count else 0.0,
                functions_preserved=totals.by_type[BoundaryType.FUNCTION],
                classes_preserved=totals.by_type[BoundaryType.CLASS],
                namespaces_preserved=totals.by_type[BoundaryType.NAMESPACE],
                comments_preserved=totals.by_type[BoundaryType.COMMENT],
                preprocessor_preserved=totals.by_type[BoundaryType.PREPROCESSOR],
                # Characters over characters, summed across calls.
                duplicate_content_ratio=(
                    totals.overlap_chars / totals.chunk_chars if totals.chunk_chars else 0.0
                ),
            )

    def reset_quality(self) -> None:
        with self._lock:
            self._totals = _QualityTotals()

    def clear_cache(self) -> None:
        self.scanner.clear_cache()
