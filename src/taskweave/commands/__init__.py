"""CLI command modules for tw.

    - run: Execute a task plan with the parallel executor (``tw run``, ``tw plan``)
    - heal: Run the self-healing pipeline on a test failure (``tw heal``)
"""

from __future__ import annotations

from . import heal, run

__all__ = ["heal", "run"]
