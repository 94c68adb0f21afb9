from __future__ import annotations

import logging
import queue
import threading
from typing import Hashable, Optional, Set

log = logging.getLogger(__name__)

_STOP = object()


class TouchedSetCoordinator:
    """
    Set of block keys owned by a single coordinator thread.

    Workers never touch the set directly: each call posts (op, key, reply_queue)
    on the request queue and blocks on the reply. Requests are served one at a
    time, so claim() is an atomic test-and-insert across all workers.

    Usage:
        with TouchedSetCoordinator() as touched:
            if touched.claim(key):
                build(key)
    """

    def __init__(self, name: str = "touched-set"):
        self._requests: "queue.Queue" = queue.Queue()
        self._keys: Set[Hashable] = set()
        self._thread: Optional[threading.Thread] = None
        self._name = name

    # -------- lifecycle --------

    def start(self) -> "TouchedSetCoordinator":
        if self._thread is not None:
            raise RuntimeError("coordinator already started")
        self._thread = threading.Thread(target=self._serve, name=self._name, daemon=True)
        self._thread.start()
        return self

    def stop(self) -> None:
        if self._thread is None:
            return
        self._requests.put(_STOP)
        self._thread.join()
        self._thread = None

    def __enter__(self) -> "TouchedSetCoordinator":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    # -------- requests --------

    def contains(self, key: Hashable) -> bool:
        return bool(self._ask("contains", key))

    def claim(self, key: Hashable) -> bool:
        """Insert `key`; True only for the first caller that claims it."""
        return bool(self._ask("claim", key))

    def snapshot(self) -> Set[Hashable]:
        return set(self._ask("snapshot", None))

    def _ask(self, op: str, key: Optional[Hashable]):
        if self._thread is None:
            raise RuntimeError("coordinator is not running")
        reply: "queue.Queue" = queue.Queue(maxsize=1)
        self._requests.put((op, key, reply))
        return reply.get()

    # -------- owner thread --------

    def _serve(self) -> None:
        while True:
            item = self._requests.get()
            if item is _STOP:
                break
            op, key, reply = item
            if op == "contains":
                reply.put(key in self._keys)
            elif op == "claim":
                fresh = key not in self._keys
                self._keys.add(key)
                reply.put(fresh)
            elif op == "snapshot":
                reply.put(frozenset(self._keys))
            else:
                log.error("Unknown coordinator request %r", op)
                reply.put(None)
        log.debug("Coordinator stopped", extra={"extra": {"keys": len(self._keys)}})
