import re
from typing import List

import pytest

from cppseek.chunking import BoundaryScanner, TokenizerAdapter

_WORD_TOKENS = re.compile(r"\w+|[^\w\s]")


class WordEncoder:
    """Offline stand-in for a subword encoding: one token per word or symbol."""

    def encode(self, text: str) -> List[int]:
        return [len(token) for token in _WORD_TOKENS.findall(text)]


@pytest.fixture
def tokenizer() -> TokenizerAdapter:
    return TokenizerAdapter(loader=WordEncoder, sample_chars=1024, cache_size=512)


@pytest.fixture
def heuristic_tokenizer() -> TokenizerAdapter:
    def unavailable():
        raise OSError("encoding download blocked")

    return TokenizerAdapter(loader=unavailable)


@pytest.fixture
def scanner() -> BoundaryScanner:
    return BoundaryScanner(cache_size=64)


def make_function(name: str, body_lines: int) -> str:
    lines = [f"int {name}(int value) {{"]
    for index in range(body_lines):
        lines.append(f"    value = value * {index + 2} + compute_{name}_{index}(value);")
    lines.append("    return value;")
    lines.append("}")
    return "\n".join(lines) + "\n"


def make_cpp_source(functions: int, body_lines: int) -> str:
    parts = ["#include <vector>", "#include \"engine.h\"", ""]
    for index in range(functions):
        parts.append(f"// helper number {index}")
        parts.append(make_function(f"step{index}", body_lines))
    return "\n".join(parts)


@pytest.fixture
def cpp_source() -> str:
    return make_cpp_source(functions=20, body_lines=22)


@pytest.fixture
def cpp_source_factory():
    return make_cpp_source

