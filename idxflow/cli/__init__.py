"""Command-line interface for idxflow."""
