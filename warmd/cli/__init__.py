"""Command-line interface for warmd."""
