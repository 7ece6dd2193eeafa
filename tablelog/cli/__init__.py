"""Command line tools for stored log records."""
