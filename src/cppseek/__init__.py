"""
Chunking and overlap engine for semantic search over C-family source code.
"""

from .version import __version__

__all__ = ["__version__"]
