"""Hybrid Code Search - BM25 and vector retrieval over workspace source code."""

__version__ = "0.3.0"

from .core.exceptions import HybridSearchError

__all__ = ["HybridSearchError", "__version__"]
