"""Core shared infrastructure for taskweave.

This package contains foundational utilities:
    - config: Application configuration management
    - console: Rich console output and logging
    - result: Error handling patterns
    - semaphore: FIFO counting semaphore for bounding agent concurrency
    - events: Agent lifecycle event bus

Submodules are imported explicitly; ``config`` depends on ``taskweave.agents``
which in turn depends on ``events``.
"""

from __future__ import annotations
