"""Command line interface for fast42."""
