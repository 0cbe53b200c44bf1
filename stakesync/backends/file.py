"""JSON-file durable medium.

Each key is stored as its own file inside a directory. Writes go to a
temporary file in the same directory and are moved into place with
os.replace(), so a reader never observes a half-written blob.
"""

import logging
import os
import re
import tempfile
from pathlib import Path

logger = logging.getLogger("stakesync.backends.file")

# Keys are used as file names, so keep them to a safe alphabet
_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_.:-]{1,200}$")


class JsonFileMedium:
    """Durable medium that keeps one file per key under a directory.

    Args:
        directory: Directory holding the record files. Created if missing.
        suffix: File name suffix for records (default: .json).
    """

    def __init__(self, directory: str | Path, suffix: str = ".json") -> None:
        self._directory = Path(directory)
        self._suffix = suffix
        self._directory.mkdir(parents=True, exist_ok=True)

    @property
    def directory(self) -> Path:
        return self._directory

    def _path(self, key: str) -> Path:
        if not _KEY_PATTERN.match(key):
            raise ValueError(f"invalid medium key: {key!r}")
        # ':' is not portable in file names
        return self._directory / f"{key.replace(':', '__')}{self._suffix}"

    def get(self, key: str) -> str | None:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def set(self, key: str, value: str) -> None:
        path = self._path(key)
        fd, tmp_name = tempfile.mkstemp(
            dir=self._directory, prefix=f".{path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(value)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except OSError as cleanup_err:
                logger.debug(f"Error removing temp file {tmp_name}: {cleanup_err}")
            raise

    def remove(self, key: str) -> None:
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            pass
