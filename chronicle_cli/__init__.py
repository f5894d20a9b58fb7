"""Command-line front end for the American Chronicle client.

This package contains:
- browser: CLI entry point for searching pages, exporting hits and downloading PDFs
"""

__all__ = [
    "browser",
]
