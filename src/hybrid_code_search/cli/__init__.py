"""Command-line interface for Hybrid Code Search."""
