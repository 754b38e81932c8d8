"""Command-line entrypoints for local and production runs."""
