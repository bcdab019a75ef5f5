"""
Heuristic detection of semantic constructs in C-family source text.

Each construct kind lives in its own detector behind the ``BoundaryDetector``
protocol, so a parser-backed detector can replace any one of them without
touching the chunker or the overlap manager. Detectors work on a
``ScanWindow`` and report absolute character offsets and 1-based absolute
line numbers.

Constructs that never close inside the window (missing ``}``, missing
``*/``) end at the window end. Nested block comments are not understood;
the first ``*/`` closes the comment.
"""
from __future__ import annotations

import bisect
import hashlib
import re
from typing import FrozenSet, Iterable, List, Optional, Protocol, Sequence, Tuple

from ..logger import get_logger
from ..settings import settings
from .cache import BoundedCache, CacheInfo
from .models import BoundaryType, Importance, SemanticBoundary

log = get_logger(__name__)


class ScanWindow:
    """A slice of a file plus the coordinates needed to report absolute spans."""

    def __init__(self, text: str, offset: int = 0, first_line: int = 1) -> None:
        self.text = text
        self.offset = offset
        self.first_line = first_line
        self._newlines = [index for index, char in enumerate(text) if char == "\n"]

    def __len__(self) -> int:
        return len(self.text)

    def line_at(self, index: int) -> int:
        return self.first_line + bisect.bisect_left(self._newlines, index)

    def boundary(
        self,
        kind: BoundaryType,
        start: int,
        end: int,
        importance: Importance,
        context: str,
    ) -> SemanticBoundary:
        """Build a boundary from window-relative ``[start, end)``."""
        end = max(start, min(end, len(self.text)))
        last = end - 1 if end > start else start
        return SemanticBoundary(
            type=kind,
            start_line=self.line_at(start),
            end_line=self.line_at(last),
            start_char=self.offset + start,
            end_char=self.offset + end,
            importance=importance,
            context=context,
        )


class BoundaryDetector(Protocol):
    """Strategy that finds one kind of construct in a window."""

    boundary_type: BoundaryType

    def detect(self, window: ScanWindow) -> List[SemanticBoundary]:
        ...


_LEXICAL_SKIP = re.compile(
    r'"(?:[^"\\\n]|\\.)*"'
    r"|'(?:[^'\\\n]|\\.)*'"
    r"|//[^\n]*"
    r"|/\*"
)


def find_block_end(text: str, start: int) -> int:
    """
    Index just past the ``}`` matching the first ``{`` at or after ``start``.

    Braces inside string/char literals and comments are ignored. Returns
    ``len(text)`` when the block never closes.
    """
    depth = 0
    opened = False
    position = start
    length = len(text)
    while position < length:
        char = text[position]
        if char in "\"'/":
            match = _LEXICAL_SKIP.match(text, position)
            if match is not None:
                if match.group(0) == "/*":
                    close = text.find("*/", match.end())
                    position = length if close == -1 else close + 2
                else:
                    position = match.end()
                continue
        elif char == "{":
            depth += 1
            opened = True
        elif char == "}" and opened:
            depth -= 1
            if depth == 0:
                return position + 1
        position += 1
    return length


_CONTROL_KEYWORDS: FrozenSet[str] = frozenset(
    {
        "if",
        "for",
        "while",
        "switch",
        "catch",
        "return",
        "sizeof",
        "alignof",
        "decltype",
        "static_assert",
        "defined",
        "else",
        "do",
        "case",
        "new",
        "delete",
        "throw",
    }
)

_STATEMENT_LEADERS: FrozenSet[str] = frozenset(
    {"return", "else", "new", "delete", "throw", "case", "goto", "co_return", "using", "typedef"}
)

_FUNCTION_SIGNATURE = re.compile(
    r"^[ \t]*"
    r"(?P<prefix>(?:[A-Za-z_][\w:]*(?:<[^;{}()\n]*>)?(?:[ \t]*[*&]+)?"
    r"(?:[ \t]+|(?<!:)[ \t]*\n[ \t]*))+)"
    r"[*&]*(?P<name>~?[A-Za-z_]\w*(?:::~?[A-Za-z_]\w*)*)"
    r"[ \t]*\((?P<params>[^()]*(?:\([^()]*\)[^()]*)*)\)"
    r"(?:[ \t]*(?:const|override|final|noexcept|volatile))*"
    r"(?:"
    r"(?P<open>[ \t]*(?:\n[ \t]*)?\{)"
    r"|(?:[ \t]*=[ \t]*(?:0|default|delete))?[ \t]*(?P<semi>;)"
    r")",
    re.MULTILINE,
)


class FunctionDetector:
    """Definitions (``{``, critical) and declarations (``;``, high)."""

    boundary_type = BoundaryType.FUNCTION

    def detect(self, window: ScanWindow) -> List[SemanticBoundary]:
        boundaries: List[SemanticBoundary] = []
        for match in _FUNCTION_SIGNATURE.finditer(window.text):
            name = match.group("name")
            leader = match.group("prefix").split()[0]
            if name in _CONTROL_KEYWORDS or leader in _STATEMENT_LEADERS:
                continue
            start = _skip_leading_space(window.text, match.start())
            if match.group("open") is not None:
                end = find_block_end(window.text, match.start("open"))
                importance = Importance.CRITICAL
            else:
                end = match.end()
                importance = Importance.HIGH
            boundaries.append(
                window.boundary(self.boundary_type, start, end, importance, name)
            )
        return boundaries


_CLASS_HEADER = re.compile(
    r"^[ \t]*(?:template[ \t]*<[^;{}]*?>[ \t]*\n?[ \t]*)?"
    r"(?:typedef[ \t]+)?"
    r"(?P<kind>class|struct|union|enum(?:[ \t]+(?:class|struct))?)[ \t]+"
    r"(?:[A-Za-z_]\w*[ \t]+)*?"
    r"(?P<name>[A-Za-z_]\w*)(?:[ \t]+final)?"
    r"(?:[ \t]*:[^;{]+?)?"
    r"[ \t]*\n?[ \t]*\{",
    re.MULTILINE,
)


class ClassDetector:
    """class/struct/union/enum definitions with a body."""

    boundary_type = BoundaryType.CLASS

    def detect(self, window: ScanWindow) -> List[SemanticBoundary]:
        boundaries: List[SemanticBoundary] = []
        for match in _CLASS_HEADER.finditer(window.text):
            start = _skip_leading_space(window.text, match.start())
            end = find_block_end(window.text, match.end() - 1)
            boundaries.append(
                window.boundary(
                    self.boundary_type, start, end, Importance.CRITICAL, match.group("name")
                )
            )
        return boundaries


_NAMESPACE_HEADER = re.compile(
    r"^[ \t]*(?:inline[ \t]+)?namespace(?:[ \t]+(?P<name>[A-Za-z_][\w:]*))?[ \t]*\n?[ \t]*\{",
    re.MULTILINE,
)


class NamespaceDetector:
    boundary_type = BoundaryType.NAMESPACE

    def detect(self, window: ScanWindow) -> List[SemanticBoundary]:
        boundaries: List[SemanticBoundary] = []
        for match in _NAMESPACE_HEADER.finditer(window.text):
            start = _skip_leading_space(window.text, match.start())
            end = find_block_end(window.text, match.end() - 1)
            boundaries.append(
                window.boundary(
                    self.boundary_type,
                    start,
                    end,
                    Importance.HIGH,
                    match.group("name") or "(anonymous)",
                )
            )
        return boundaries


_COMMENT_MARKERS = re.compile(r"\b(?:TODO|FIXME|NOTE|BUG|HACK)\b")
_DOC_TAGS = ("@param", "@return")


class CommentDetector:
    """Documentation/block comments and line comments carrying work markers."""

    boundary_type = BoundaryType.COMMENT

    def detect(self, window: ScanWindow) -> List[SemanticBoundary]:
        text = window.text
        boundaries: List[SemanticBoundary] = []
        position = 0
        while True:
            match = _LEXICAL_SKIP.search(text, position)
            if match is None:
                break
            token = match.group(0)
            if token == "/*":
                close = text.find("*/", match.end())
                end = len(text) if close == -1 else close + 2
                body = text[match.start() : end]
                boundaries.append(
                    window.boundary(
                        self.boundary_type,
                        match.start(),
                        end,
                        self._block_importance(body),
                        _summarize(body),
                    )
                )
                position = end
                continue
            if token.startswith("//") and _COMMENT_MARKERS.search(token):
                boundaries.append(
                    window.boundary(
                        self.boundary_type,
                        match.start(),
                        match.end(),
                        Importance.MEDIUM,
                        token.strip(),
                    )
                )
            position = match.end()
        return boundaries

    @staticmethod
    def _block_importance(body: str) -> Importance:
        if body.startswith("/**") or any(tag in body for tag in _DOC_TAGS):
            return Importance.HIGH
        return Importance.MEDIUM


_DIRECTIVE = re.compile(r"^[ \t]*#[ \t]*(?P<directive>\w+)", re.MULTILINE)
_KEY_DIRECTIVES = frozenset({"include", "define"})


class PreprocessorDetector:
    boundary_type = BoundaryType.PREPROCESSOR

    def detect(self, window: ScanWindow) -> List[SemanticBoundary]:
        text = window.text
        boundaries: List[SemanticBoundary] = []
        for match in _DIRECTIVE.finditer(text):
            directive = match.group("directive")
            start = _skip_leading_space(text, match.start())
            end = _logical_line_end(text, match.end())
            importance = (
                Importance.HIGH if directive in _KEY_DIRECTIVES else Importance.MEDIUM
            )
            boundaries.append(
                window.boundary(self.boundary_type, start, end, importance, f"#{directive}")
            )
        return boundaries


def _skip_leading_space(text: str, index: int) -> int:
    while index < len(text) and text[index] in " \t\r\n":
        index += 1
    return index


def _logical_line_end(text: str, index: int) -> int:
    """End of the line at ``index``, following backslash continuations."""
    while True:
        newline = text.find("\n", index)
        if newline == -1:
            return len(text)
        line_end = newline - 1 if newline > 0 and text[newline - 1] == "\r" else newline
        if line_end > 0 and text[line_end - 1] == "\\":
            index = newline + 1
            continue
        return newline


def _summarize(body: str, limit: int = 50) -> str:
    first_line = body.strip().splitlines()[0] if body.strip() else ""
    return first_line if len(first_line) <= limit else first_line[:limit] + "..."


def default_detectors() -> List[BoundaryDetector]:
    return [
        FunctionDetector(),
        ClassDetector(),
        CommentDetector(),
        PreprocessorDetector(),
        NamespaceDetector(),
    ]


CacheKey = Tuple[str, int, int, str]


class BoundaryScanner:
    """Runs every detector over a window and caches results per (file, window)."""

    def __init__(
        self,
        detectors: Optional[Sequence[BoundaryDetector]] = None,
        cache_size: Optional[int] = None,
    ) -> None:
        self.detectors: List[BoundaryDetector] = list(
            detectors if detectors is not None else default_detectors()
        )
        self._cache: BoundedCache[CacheKey, Tuple[SemanticBoundary, ...]] = BoundedCache(
            cache_size or settings.boundary_cache_size
        )

    def scan(
        self,
        content: str,
        source_file: Optional[str] = None,
        start: int = 0,
        end: Optional[int] = None,
    ) -> List[SemanticBoundary]:
        """
        Return the boundaries found in ``content[start:end]``, ordered by position.

        Results are cached when ``source_file`` is given. The key also carries
        a digest of the window text, so an edited file never reuses stale spans.
        """
        start = max(0, start)
        end = len(content) if end is None else min(end, len(content))
        if end <= start:
            return []
        text = content[start:end]

        key: Optional[CacheKey] = None
        if source_file is not None:
            digest = hashlib.md5(text.encode("utf-8", errors="surrogatepass")).hexdigest()
            key = (source_file, start, end, digest)
            cached = self._cache.get(key)
            if cached is not None:
                return list(cached)

        window = ScanWindow(text, offset=start, first_line=content.count("\n", 0, start) + 1)
        boundaries = _ordered(self._run_detectors(window))
        if key is not None:
            self._cache.put(key, tuple(boundaries))
        log.debug(
            "boundaries_scanned",
            file=source_file,
            start=start,
            end=end,
            boundaries=len(boundaries),
        )
        return boundaries

    def _run_detectors(self, window: ScanWindow) -> Iterable[SemanticBoundary]:
        for detector in self.detectors:
            yield from detector.detect(window)

    def clear_cache(self) -> None:
        self._cache.clear()

    def cache_info(self) -> CacheInfo:
        return self._cache.info()


def _ordered(boundaries: Iterable[SemanticBoundary]) -> List[SemanticBoundary]:
    return sorted(
        boundaries, key=lambda b: (b.start_char, b.end_char, b.type.value, b.context)
    )
