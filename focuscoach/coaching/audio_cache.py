"""
In-memory audio cache keyed by the exact nudge text.

Holds the small fixed phrase corpus, so there is no eviction. Shared by the
speech client and the server routes, hence the lock.
"""

import threading
from typing import Dict, List, Optional


class AudioCache:
    """Thread-safe text -> audio bytes map."""

    def __init__(self):
        self._entries: Dict[str, bytes] = {}
        self._lock = threading.Lock()

    def get(self, text: str) -> Optional[bytes]:
        with self._lock:
            return self._entries.get(text)

    def set(self, text: str, audio: bytes) -> None:
        with self._lock:
            self._entries[text] = audio

    def has(self, text: str) -> bool:
        with self._lock:
            return text in self._entries

    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._entries.keys())

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, text: str) -> bool:
        return self.has(text)

    def __len__(self) -> int:
        return self.size()
