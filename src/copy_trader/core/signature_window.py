import threading
import time
from collections import OrderedDict
from typing import List


class ProcessedSignatureWindow:
    """
    Bounded, insertion-ordered record of the last `capacity` signatures
    already handled. Once full, each insertion evicts the oldest entry.
    """

    def __init__(self, capacity: int = 100):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._seen: "OrderedDict[str, float]" = OrderedDict()
        self._lock = threading.Lock()

    def mark_if_new(self, signature: str) -> bool:
        """Record `signature`; False when it was already in the window"""
        with self._lock:
            if signature in self._seen:
                return False
            self._seen[signature] = time.time()
            while len(self._seen) > self.capacity:
                self._seen.popitem(last=False)
            return True

    def __contains__(self, signature: str) -> bool:
        with self._lock:
            return signature in self._seen

    def __len__(self) -> int:
        with self._lock:
            return len(self._seen)

    def signatures(self) -> List[str]:
        """Oldest first"""
        with self._lock:
            return list(self._seen.keys())
