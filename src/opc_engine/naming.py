"""Part-name patterns and free-name allocation inside a store."""

import posixpath
import re

from src.opc_engine.constants import PLACEHOLDER
from src.opc_engine.errors import NameAllocationError

_NUMBERED_NAME = re.compile(r"^(.*?)(\d+)(\.[^.]+)?$")


def pattern_for(path: str) -> str:
    """Turn a part name into a pattern with a ``{x}`` index placeholder.

    ``ppt/media/image12.png`` becomes ``ppt/media/image{x}.png``. A name with no
    trailing number gets the placeholder appended to its stem, so
    ``ppt/media/logo.png`` becomes ``ppt/media/logo{x}.png``.
    """
    directory, filename = posixpath.split(path)
    match = _NUMBERED_NAME.match(filename)
    if match:
        stem, _, ext = match.groups()
    else:
        stem, dot, ext = filename.rpartition(".")
        if not dot:
            stem, ext = filename, ""
        else:
            ext = f".{ext}"
    return posixpath.join(directory, f"{stem}{PLACEHOLDER}{ext or ''}")


def allocate(store, pattern: str, start: int = 1) -> str:
    """Return the lowest-indexed name matching ``pattern`` absent from ``store``.

    The allocator keeps no state between calls: write the returned name to the
    store before asking for another, or the same name comes back.
    """
    index = start
    while True:
        candidate = pattern.replace(PLACEHOLDER, str(index))
        try:
            taken = store.exists(candidate)
        except (OSError, ValueError) as e:
            raise NameAllocationError(f"Could not probe part name {candidate}: {e}") from e
        if not taken:
            return candidate
        index += 1
