import itertools
import os
import threading
import time
from typing import Protocol


class IIDGenerator(Protocol):
    """
    Protocol for document identifier strategies.
    The store only relies on ``str(next_id())`` being stable and unique.
    """

    def next_id(self) -> object:
        """Generates the next unique identifier."""
        ...


class ObjectIdGenerator(IIDGenerator):
    """
    Default generator producing 24-char hex identifiers in the layout of a
    MongoDB ObjectId: 4-byte timestamp, 5-byte process random, 3-byte counter.
    Identifiers sort by creation second, then by counter within a process.
    """

    def __init__(self) -> None:
        self._process_random = os.urandom(5).hex()
        self._counter = itertools.count(int.from_bytes(os.urandom(3), "big"))
        self._lock = threading.Lock()

    def next_id(self) -> str:
        """Returns a fresh 24-char lowercase hex string."""
        with self._lock:
            count = next(self._counter) & 0xFFFFFF
        return f"{int(time.time()) & 0xFFFFFFFF:08x}{self._process_random}{count:06x}"
