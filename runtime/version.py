"""Runtime version metadata for SlideFlow.

Import-safe; exposes version identifiers for logging and the health surface
without side effects.
"""

from __future__ import annotations

PROJECT_NAME = "SlideFlow Runtime"
VERSION = "v0.3.0"
BUILD = "2026.10"

__all__ = [
    "PROJECT_NAME",
    "VERSION",
    "BUILD",
    "as_dict",
    "as_string",
]


def as_dict() -> dict[str, str]:
    """Return version metadata as a dictionary."""

    return {
        "project": PROJECT_NAME,
        "version": VERSION,
        "build": BUILD,
    }


def as_string() -> str:
    """Return a concise version string."""

    return f"{PROJECT_NAME} {VERSION} (Build {BUILD})"
