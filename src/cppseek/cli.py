"""
Command line interface for the chunking engine.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from dataclasses import asdict
from fnmatch import fnmatch
from pathlib import Path
from typing import List, Optional, Sequence

import typer
from rich.console import Console
from rich.progress import (
    BarColumn,
    Progress,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from .chunking import BoundaryScanner, ChunkingOptions, FileChunks, SourceDocument
from .logger import configure_logging, get_logger, redirect_logging_to_file
from .services import ChunkingService
from .settings import settings
from .version import get_version

app = typer.Typer(name="cppseek", help="Chunk C-family sources for semantic search.")
configure_logging(enable_console=False)
log = get_logger(__name__)
console = Console()

CHUNK_SUFFIXES: Sequence[str] = (
    ".c",
    ".h",
    ".cpp",
    ".cxx",
    ".cc",
    ".hpp",
    ".hxx",
    ".hh",
)

DEFAULT_IGNORE_PATTERNS: Sequence[str] = (
    ".*",
    "__pycache__",
    "node_modules",
    "build*",
    "dist",
    "CMakeFiles",
    "vcpkg_installed",
)


def _should_ignore(name: str, patterns: Sequence[str]) -> bool:
    return any(fnmatch(name, pattern) for pattern in patterns)


def _collect_files(paths: Sequence[Path], patterns: Sequence[str]) -> list[Path]:
    files: list[Path] = []
    suffix_set = {s.lower() for s in CHUNK_SUFFIXES}
    for base in paths:
        if base.is_file():
            files.append(base)
            continue
        for root, dirs, filenames in os.walk(base):
            dirs[:] = sorted(d for d in dirs if not _should_ignore(d, patterns))
            root_path = Path(root)
            for filename in sorted(filenames):
                if _should_ignore(filename, patterns):
                    continue
                candidate = root_path / filename
                if candidate.suffix.lower() in suffix_set:
                    files.append(candidate)
    return list(dict.fromkeys(files))


def _read_document(path: Path) -> SourceDocument:
    text = path.read_text(encoding="utf-8", errors="ignore")
    line_ending = "\r\n" if "\r\n" in text else "\n"
    return SourceDocument(path=str(path), content=text, line_ending=line_ending)


def _chunk_table(result: FileChunks) -> Table:
    table = Table(title=result.source_file)
    table.add_column("#", justify="right")
    table.add_column("Lines")
    table.add_column("Tokens", justify="right")
    table.add_column("Overlap in", justify="right")
    table.add_column("Overlap out", justify="right")
    table.add_column("Preview")
    for chunk in result.chunks:
        preview = chunk.base_content.strip().splitlines()[0] if chunk.base_content.strip() else ""
        table.add_row(
            str(chunk.chunk_index),
            f"{chunk.start_line}-{chunk.end_line}",
            str(chunk.token_count),
            str(chunk.overlap_start),
            str(chunk.overlap_end),
            preview[:60],
        )
    return table


@app.command()
def chunk(
    paths: List[Path] = typer.Argument(..., help="Files or directories to chunk."),
    chunk_size: int = typer.Option(
        settings.chunk_size, "--chunk-size", "-s", help="Token budget per chunk."
    ),
    overlap: int = typer.Option(
        settings.chunk_overlap, "--overlap", "-o", help="Minimum overlap in tokens."
    ),
    smart: bool = typer.Option(
        settings.chunk_smart_boundaries,
        "--smart/--no-smart",
        help="Snap chunk ends to nearby functions, classes and comments.",
    ),
    collapse_whitespace: bool = typer.Option(
        not settings.chunk_preserve_formatting,
        "--collapse-whitespace",
        help="Collapse whitespace runs before chunking.",
    ),
    as_json: bool = typer.Option(False, "--json", help="Print results as JSON."),
    log_file: Optional[Path] = typer.Option(
        None, "--log", help="Write detailed logs to this file."
    ),
    log_json: bool = typer.Option(
        False, "--log-json", help="Write the log file as one JSON object per line."
    ),
) -> None:
    """Chunk source files and print chunks plus overlap quality."""
    missing = [path for path in paths if not path.exists()]
    if missing:
        typer.echo(f"[ERROR] Path not found: {missing[0]}")
        raise typer.Exit(code=2)
    if log_file:
        redirect_logging_to_file(log_file, json_output=log_json)

    try:
        options = ChunkingOptions(
            chunk_size=chunk_size,
            overlap_size=overlap,
            smart_boundaries=smart,
            preserve_formatting=not collapse_whitespace,
        )
    except ValueError as exc:
        typer.echo(f"[ERROR] {exc}")
        raise typer.Exit(code=2)

    files = _collect_files(paths, DEFAULT_IGNORE_PATTERNS)
    if not files:
        typer.echo("[ERROR] No C-family source files found.")
        raise typer.Exit(code=2)

    service = ChunkingService()
    results: list[FileChunks] = []

    async def run() -> None:
        with Progress(
            TextColumn("{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            TimeElapsedColumn(),
            console=console,
            transient=True,
            disable=as_json,
        ) as progress:
            task = progress.add_task("Chunking files", total=len(files))
            for path in files:
                progress.update(task, description=f"Chunking {path.name}")
                results.append(await service.process(_read_document(path), options))
                progress.advance(task)

    asyncio.run(run())

    quality = service.overlap_manager.quality()
    if as_json:
        payload = {
            "files": [asdict(result) for result in results],
            "quality": asdict(quality),
        }
        typer.echo(json.dumps(payload, indent=2, default=str))
        return

    for result in results:
        if result.skipped:
            console.print(f"[skipped] {result.source_file}: {result.error}")
            continue
        console.print(_chunk_table(result))
    console.print(
        f"overlaps={quality.total_overlaps} "
        f"avg_tokens={quality.average_overlap_size:.1f} "
        f"preservation={quality.semantic_preservation:.2f} "
        f"duplicate_ratio={quality.duplicate_content_ratio:.3f}"
    )


@app.command()
def scan(
    path: Path = typer.Argument(..., help="Source file to scan."),
) -> None:
    """List the semantic boundaries detected in a file."""
    if not path.is_file():
        typer.echo(f"[ERROR] File not found: {path}")
        raise typer.Exit(code=2)
    document = _read_document(path)
    boundaries = BoundaryScanner().scan(document.content, source_file=document.path)
    table = Table(title=str(path))
    table.add_column("Type")
    table.add_column("Importance")
    table.add_column("Lines")
    table.add_column("Context")
    for boundary in boundaries:
        table.add_row(
            boundary.type.value,
            boundary.importance.value,
            f"{boundary.start_line}-{boundary.end_line}",
            boundary.context,
        )
    console.print(table)


@app.command()
def version() -> None:
    """Print the installed version."""
    typer.echo(get_version())


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log to stderr."),
) -> None:
    if verbose:
        configure_logging(level=logging.DEBUG)


if __name__ == "__main__":  # pragma: no cover
    app()
