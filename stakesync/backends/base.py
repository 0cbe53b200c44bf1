"""Durable medium protocol.

The sync core persists everything as string blobs under string keys. A
medium only has to offer synchronous get/set/remove; all record layout and
corruption handling lives in the components that own each key.
"""

from typing import Protocol


class DurableMedium(Protocol):
    """Protocol defining the interface for durable key-value media.

    Media are responsible for:
    - Returning the blob stored under a key (get)
    - Replacing the blob stored under a key (set)
    - Deleting a key (remove)

    Implementations may raise on I/O failure. Callers in the core catch and
    log those errors; they never reach the presentation layer except through
    OperationQueue.enqueue().
    """

    def get(self, key: str) -> str | None:
        """Return the blob stored under key.

        Args:
            key: The record key.

        Returns:
            The stored string, or None if the key is absent.
        """
        ...

    def set(self, key: str, value: str) -> None:
        """Store value under key, replacing any previous blob.

        Args:
            key: The record key.
            value: The serialized record.
        """
        ...

    def remove(self, key: str) -> None:
        """Delete key. Removing an absent key is a no-op.

        Args:
            key: The record key.
        """
        ...
