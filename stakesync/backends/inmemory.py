"""In-memory durable medium backed by a dict."""

import threading


class MediumFullError(Exception):
    """Raised when the medium has no room for another key."""

    pass


class InMemoryMedium:
    """Process-local key-value medium.

    This medium is suitable for development and testing. It provides no
    durability guarantees: records are lost when the process terminates.

    Args:
        max_keys: Maximum number of distinct keys. 0 means unbounded (default).
    """

    def __init__(self, max_keys: int = 0) -> None:
        self._data: dict[str, str] = {}
        self._max_keys = max_keys
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        """Store value under key.

        Raises:
            MediumFullError: If key is new and max_keys is already reached.
        """
        if not isinstance(value, str):
            raise TypeError(f"value must be str, got {type(value).__name__}")
        with self._lock:
            if (
                self._max_keys > 0
                and key not in self._data
                and len(self._data) >= self._max_keys
            ):
                raise MediumFullError(
                    f"Medium full (max_keys={self._max_keys}), cannot store {key!r}"
                )
            self._data[key] = value

    def remove(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self) -> list[str]:
        """Return stored keys in insertion order."""
        with self._lock:
            return list(self._data)

    def __len__(self) -> int:
        return len(self._data)
