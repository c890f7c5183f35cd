"""
core/background.py -- Fire-and-forget work detached from the request.

Route handlers hand side effects (welcome email) to a BackgroundRunner and
return immediately. Each task runs on a ThreadPoolExecutor worker. Any
exception raised by the task is caught and logged here; it never propagates
to the request that scheduled it and never fails the already-returned
response. Nothing awaits the result.

The runner is created in the lifespan and shut down there with wait=True, so
queued mail is flushed before the process exits.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable

logger = logging.getLogger("marquee.background")


class BackgroundRunner:
    def __init__(self, max_workers: int = 4) -> None:
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="marquee-bg")

    def submit(self, fn: Callable, *args, **kwargs) -> Future:
        """Schedule fn(*args, **kwargs). Failures are logged and dropped."""
        return self._executor.submit(_supervised, fn, *args, **kwargs)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


def _supervised(fn: Callable, *args, **kwargs) -> None:
    try:
        fn(*args, **kwargs)
    except Exception:
        logger.exception("Background task %s failed", getattr(fn, "__qualname__", fn))
