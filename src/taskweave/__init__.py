"""taskweave - coordination layer for autonomous coding-agent runs.

This package provides the dependency-aware task queue, the bounded parallel
executor and the self-healing failure-recovery engine behind the `tw`
command-line tool.

Exports:
    __version__: Package version string.
"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
