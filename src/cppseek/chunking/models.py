"""
Records exchanged between the tokenizer, scanner, chunker and overlap stages.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class BoundaryType(str, Enum):
    """Kinds of semantic constructs the scanner reports."""

    FUNCTION = "function"
    CLASS = "class"
    NAMESPACE = "namespace"
    COMMENT = "comment"
    PREPROCESSOR = "preprocessor"


class Importance(str, Enum):
    """Qualitative weight of a boundary."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def overlap_bonus(self) -> int:
        """Extra overlap tokens granted to a junction carrying this tier."""
        return _OVERLAP_BONUS[self]

    @property
    def weight(self) -> float:
        """Score in [0, 1] used for semantic value and split scoring."""
        return _WEIGHT[self]


_OVERLAP_BONUS = {
    Importance.CRITICAL: 40,
    Importance.HIGH: 25,
    Importance.MEDIUM: 15,
    Importance.LOW: 5,
}

_WEIGHT = {
    Importance.CRITICAL: 1.0,
    Importance.HIGH: 0.8,
    Importance.MEDIUM: 0.5,
    Importance.LOW: 0.2,
}


@dataclass(frozen=True)
class SemanticBoundary:
    """Span of a detected construct. Offsets are absolute; lines are 1-based."""

    type: BoundaryType
    start_line: int
    end_line: int
    start_char: int
    end_char: int
    importance: Importance
    context: str = ""

    def __post_init__(self) -> None:
        if self.start_char > self.end_char:
            raise ValueError(
                f"Boundary start ({self.start_char}) after end ({self.end_char})"
            )

    def within(self, start: int, end: int) -> bool:
        return start <= self.start_char and self.end_char <= end

    def straddles(self, position: int) -> bool:
        return self.start_char < position < self.end_char


@dataclass
class TextChunk:
    """A contiguous, token-budgeted slice of one file."""

    id: str
    content: str
    token_count: int
    start_line: int
    end_line: int
    start_char: int
    end_char: int
    source_file: str
    chunk_index: int
    overlap_start: int = 0
    overlap_end: int = 0

    def __post_init__(self) -> None:
        if self.end_char <= self.start_char:
            raise ValueError(
                f"Chunk {self.id} has empty span {self.start_char}..{self.end_char}"
            )

    @property
    def base_length(self) -> int:
        """Length of the original slice; anything past it is overlap text."""
        return self.end_char - self.start_char

    @property
    def base_content(self) -> str:
        return self.content[: self.base_length]


@dataclass
class OverlapRegion:
    """
    Text duplicated from ``chunk_b`` onto the end of ``chunk_a``.

    ``overlap_tokens`` counts ``content`` itself; ``budget_tokens`` is the
    size chosen for the junction before any extension to a construct end.
    """

    chunk_a: str
    chunk_b: str
    overlap_start: int
    overlap_end: int
    content: str
    overlap_tokens: int
    budget_tokens: int
    semantic_value: float
    boundaries: List[SemanticBoundary] = field(default_factory=list)


@dataclass
class OverlapQuality:
    """
    Run-level overlap metrics.

    ``average_overlap_size`` averages ``OverlapRegion.overlap_tokens``.
    ``duplicate_content_ratio`` is a character ratio over every recorded call:
    total overlap characters divided by total base chunk characters. It is
    not an average of per-chunk ratios.
    """

    total_overlaps: int = 0
    average_overlap_size: float = 0.0
    average_overlap_chars: float = 0.0
    semantic_preservation: float = 0.0
    functions_preserved: int = 0
    classes_preserved: int = 0
    namespaces_preserved: int = 0
    comments_preserved: int = 0
    preprocessor_preserved: int = 0
    duplicate_content_ratio: float = 0.0


@dataclass
class ChunkingOptions:
    """Per-call chunking knobs; sizes are in tokens."""

    chunk_size: int = 500
    overlap_size: int = 50
    smart_boundaries: bool = True
    preserve_formatting: bool = True

    def __post_init__(self) -> None:
        if self.chunk_size < 1:
            raise ValueError("chunk_size must be a positive number of tokens")
        if self.overlap_size < 0:
            raise ValueError("overlap_size must not be negative")


@dataclass
class OverlapConfiguration:
    min_size: int = 25
    max_size: int = 100
    adaptive_mode: bool = True
    preserve_functions: bool = True
    preserve_comments: bool = True

    def __post_init__(self) -> None:
        if self.min_size < 0:
            raise ValueError("min_size must not be negative")
        self.max_size = max(self.max_size, self.min_size)


@dataclass
class ChunkingResult:
    chunks: List[TextChunk]
    total_tokens: int
    processing_time_ms: float
    source_file: str
    content: str
    truncated: bool = False


@dataclass
class OverlapResult:
    chunks: List[TextChunk]
    overlaps: List[OverlapRegion]
    quality: OverlapQuality


@dataclass
class SourceDocument:
    """Already-decoded file content handed over by the file reader."""

    path: str
    content: str
    language: Optional[str] = None
    line_ending: str = "\n"


@dataclass
class FileChunks:
    """Outcome of chunking one file, including the skipped case."""

    source_file: str
    chunks: List[TextChunk] = field(default_factory=list)
    overlaps: List[OverlapRegion] = field(default_factory=list)
    quality: Optional[OverlapQuality] = None
    total_tokens: int = 0
    truncated: bool = False
    skipped: bool = False
    error: Optional[str] = None
