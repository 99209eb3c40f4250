"""Byte-level access to the zip container backing a package working copy.

Python's ``zipfile`` cannot replace an entry inside an existing archive, so the
store keeps every entry in memory while open and rewrites the whole archive on
``close()`` when something changed. The rewrite goes to a sibling temp file
that replaces the archive in one step.
"""

from __future__ import annotations

import logging
import os
import tempfile
import zipfile
from pathlib import Path

logger = logging.getLogger(__name__)

_COMPRESSION = {
    "deflated": zipfile.ZIP_DEFLATED,
    "stored": zipfile.ZIP_STORED,
}


class ArchiveStore:
    """A path-keyed byte store over one zip file."""

    def __init__(self, path: str | Path, compression: str = "deflated") -> None:
        self.path = Path(path)
        self._compression = _COMPRESSION[compression]
        self._entries: dict[str, bytes] | None = None
        self._dirty = False
        self.open()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open(self) -> "ArchiveStore":
        """Load every entry of the archive.

        Raises whatever ``zipfile`` raises for the file: ``FileNotFoundError``,
        ``zipfile.BadZipFile``, ``NotImplementedError`` for an unsupported
        compression method, and so on.
        """
        with zipfile.ZipFile(self.path) as zf:
            entries = {
                info.filename: zf.read(info)
                for info in zf.infolist()
                if not info.is_dir()
            }
        self._entries = entries
        self._dirty = False
        logger.debug(f"Opened archive {self.path.name} ({len(entries)} entries)")
        return self

    def close(self) -> None:
        """Flush pending writes to disk and release the entries."""
        if self._entries is None:
            return
        if self._dirty:
            self._flush()
        self._entries = None
        self._dirty = False

    def discard(self) -> None:
        """Release the entries without writing pending changes."""
        self._entries = None
        self._dirty = False

    @property
    def closed(self) -> bool:
        return self._entries is None

    def _flush(self) -> None:
        fd, tmp_name = tempfile.mkstemp(
            prefix=self.path.name + ".", suffix=".tmp", dir=self.path.parent
        )
        os.close(fd)
        try:
            with zipfile.ZipFile(tmp_name, "w", self._compression) as zf:
                for name, data in self._entries.items():
                    zf.writestr(name, data)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug(f"Wrote {len(self._entries)} entries to {self.path.name}")

    # ------------------------------------------------------------------
    # Entry access
    # ------------------------------------------------------------------

    def _require_open(self) -> dict[str, bytes]:
        if self._entries is None:
            raise ValueError(f"Archive store for {self.path.name} is closed")
        return self._entries

    def read(self, path: str) -> bytes:
        """Return the bytes stored at ``path``; ``KeyError`` when absent."""
        entries = self._require_open()
        try:
            return entries[path]
        except KeyError:
            raise KeyError(f"No entry named {path!r} in {self.path.name}") from None

    def write(self, path: str, data: bytes) -> None:
        entries = self._require_open()
        if entries.get(path) != data:
            entries[path] = data
            self._dirty = True

    def exists(self, path: str) -> bool:
        return path in self._require_open()

    def list(self) -> set[str]:
        return set(self._require_open())

    def names(self) -> list[str]:
        """Entry names in archive order."""
        return list(self._require_open())
