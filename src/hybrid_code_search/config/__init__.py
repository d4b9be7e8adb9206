"""Configuration for hybrid code search."""

from .settings import EmbeddingRuntime, IndexBackend, IndexingSettings, load_settings

__all__ = ["EmbeddingRuntime", "IndexBackend", "IndexingSettings", "load_settings"]
