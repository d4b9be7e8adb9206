"""CLI commands for Hybrid Code Search."""
