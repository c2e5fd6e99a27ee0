"""
Per-scope run locks.

Matching runs, risk recalculation and drift sync each run as one logical unit per
scope (e.g. "matching:DAI"). A second run of the same scope waits for the first.
In-process only; the database constraints cover anything that crosses processes.
"""

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from typing import Iterator

from anchor_recon.recon_logging import get_logger

logger = get_logger(__name__)

_registry_lock = threading.Lock()
_scope_locks: dict[str, threading.Lock] = {}


def _lock_for(scope: str) -> threading.Lock:
    with _registry_lock:
        lock = _scope_locks.get(scope)
        if lock is None:
            lock = threading.Lock()
            _scope_locks[scope] = lock
        return lock


@contextmanager
def run_exclusive(scope: str) -> Iterator[None]:
    """Hold the lock for scope for the duration of the block."""
    lock = _lock_for(scope)
    started = time.monotonic()
    lock.acquire()
    waited_ms = int((time.monotonic() - started) * 1000)
    if waited_ms > 0:
        logger.debug("run_lock_waited", scope=scope, waited_ms=waited_ms)
    try:
        yield
    finally:
        lock.release()
