"""
File-level chunking workflow.

Chains the chunk builder and the overlap manager for each file, keeps one
file's failure from aborting a batch, and reports anomalies to a
caller-supplied sink.
"""
from __future__ import annotations

import asyncio
from dataclasses import replace
from typing import List, Optional, Protocol, Sequence

from ..chunking.boundaries import BoundaryScanner
from ..chunking.models import ChunkingOptions, FileChunks, OverlapConfiguration, SourceDocument
from ..chunking.overlap import ChunkOverlapManager
from ..chunking.text_chunker import TextChunker, default_options
from ..chunking.tokenizer import TokenizerAdapter, get_default_tokenizer
from ..logger import get_logger
from ..settings import settings

log = get_logger(__name__)


class AnomalySink(Protocol):
    """Receives non-fatal problems as ``(file, kind, detail)``."""

    def __call__(self, file: str, kind: str, detail: str) -> None:
        ...


def log_anomaly(file: str, kind: str, detail: str) -> None:
    log.warning(kind, file=file, detail=detail)


class ChunkingService:
    """High-level service that chunks files and applies overlaps."""

    def __init__(
        self,
        tokenizer: Optional[TokenizerAdapter] = None,
        scanner: Optional[BoundaryScanner] = None,
        chunker: Optional[TextChunker] = None,
        overlap_manager: Optional[ChunkOverlapManager] = None,
        anomaly_sink: Optional[AnomalySink] = None,
    ) -> None:
        self.tokenizer = tokenizer or get_default_tokenizer()
        self.scanner = scanner or BoundaryScanner()
        self.chunker = chunker or TextChunker(tokenizer=self.tokenizer, scanner=self.scanner)
        self.overlap_manager = overlap_manager or ChunkOverlapManager(
            tokenizer=self.tokenizer, scanner=self.scanner
        )
        self.anomaly_sink: AnomalySink = anomaly_sink or log_anomaly
        self._fallback_reported = False

    async def process(
        self, document: SourceDocument, options: Optional[ChunkingOptions] = None
    ) -> FileChunks:
        """Chunk one file and apply overlaps; failures mark the file as skipped."""
        opts = options or default_options()
        try:
            await self.tokenizer.ensure_ready()
            self._report_fallback(document.path)
            chunked = await self.chunker.chunk_text(document.content, document.path, opts)
            overlapped = await self.overlap_manager.apply_overlap(
                chunked.chunks,
                chunked.content,
                document.path,
                config=self._overlap_configuration(opts),
            )
        except Exception as exc:
            detail = str(exc) or type(exc).__name__
            self.anomaly_sink(document.path, "file_skipped", detail)
            return FileChunks(source_file=document.path, skipped=True, error=detail)

        if chunked.truncated:
            self.anomaly_sink(
                document.path,
                "chunk_limit_reached",
                f"stopped after {len(chunked.chunks)} chunks",
            )
        return FileChunks(
            source_file=document.path,
            chunks=overlapped.chunks,
            overlaps=overlapped.overlaps,
            quality=overlapped.quality,
            total_tokens=chunked.total_tokens,
            truncated=chunked.truncated,
        )

    async def process_many(
        self,
        documents: Sequence[SourceDocument],
        options: Optional[ChunkingOptions] = None,
        cancel_event: Optional[asyncio.Event] = None,
        concurrency: Optional[int] = None,
    ) -> List[FileChunks]:
        """
        Process files concurrently, in input order.

        Cancellation is checked before each file starts; files already
        running finish normally and files not yet started are left out.
        """
        semaphore = asyncio.Semaphore(max(1, concurrency or settings.chunk_concurrency))

        async def run(document: SourceDocument) -> Optional[FileChunks]:
            async with semaphore:
                if cancel_event is not None and cancel_event.is_set():
                    return None
                return await self.process(document, options)

        outcomes = await asyncio.gather(*(run(document) for document in documents))
        results = [outcome for outcome in outcomes if outcome is not None]
        if len(results) < len(documents):
            log.info(
                "chunking_cancelled",
                processed=len(results),
                not_started=len(documents) - len(results),
            )
        log.info(
            "chunking_batch_completed",
            files=len(results),
            skipped=sum(1 for result in results if result.skipped),
            chunks=sum(len(result.chunks) for result in results),
        )
        return results

    def _overlap_configuration(self, options: ChunkingOptions) -> OverlapConfiguration:
        # The per-call overlap size is the floor of the adaptive range.
        return replace(self.overlap_manager.config, min_size=options.overlap_size)

    def _report_fallback(self, path: str) -> None:
        if self.tokenizer.is_fallback and not self._fallback_reported:
            self._fallback_reported = True
            self.anomaly_sink(
                path,
                "tokenizer_fallback",
                self.tokenizer.fallback_reason or "tokenizer unavailable",
            )
