"""Core utilities for the American Chronicle client.

This package contains the building blocks shared by the services:
- config: Configuration loading and section defaults
- network: Transport interface, cancellable handles, requests-based transport
- registry: Request identities and in-flight request tracking
- channel: Single-fire delivery of results to callbacks and futures
- naming: Local file names for downloaded pages
"""

__all__ = [
    "config",
    "network",
    "registry",
    "channel",
    "naming",
]
