"""
Chunking utilities for semantic code indexing.

Splits C-family source text into token-bounded chunks, snapping to
heuristically detected constructs, and extends chunk junctions with
adaptive overlaps before the chunks are embedded.
"""

from .boundaries import BoundaryDetector, BoundaryScanner, ScanWindow
from .models import (
    BoundaryType,
    ChunkingOptions,
    ChunkingResult,
    FileChunks,
    Importance,
    OverlapConfiguration,
    OverlapQuality,
    OverlapRegion,
    OverlapResult,
    SemanticBoundary,
    SourceDocument,
    TextChunk,
)
from .overlap import ChunkOverlapManager
from .text_chunker import TextChunker
from .tokenizer import TokenizerAdapter

__all__ = [
    "BoundaryDetector",
    "BoundaryScanner",
    "BoundaryType",
    "ChunkOverlapManager",
    "ChunkingOptions",
    "ChunkingResult",
    "FileChunks",
    "Importance",
    "OverlapConfiguration",
    "OverlapQuality",
    "OverlapRegion",
    "OverlapResult",
    "ScanWindow",
    "SemanticBoundary",
    "SourceDocument",
    "TextChunk",
    "TextChunker",
    "TokenizerAdapter",
]
