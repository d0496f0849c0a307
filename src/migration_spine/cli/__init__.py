"""Command-line interface (``migration-spine``)."""
