"""File I/O and path utilities."""

import json
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)


def ensure_directory(path: str | Path) -> Path:
    """Ensure a directory exists, creating it if necessary."""
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path


def load_yaml(path: str | Path) -> dict[str, Any]:
    """Load a YAML file and return its contents as a dict."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"YAML file not found: {path}")
    with open(path) as f:
        return yaml.safe_load(f) or {}


def load_json(path: str | Path) -> dict[str, Any]:
    """Load a JSON file and return its contents."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"JSON file not found: {path}")
    with open(path) as f:
        return json.load(f)


def load_data_file(path: str | Path) -> dict[str, Any]:
    """Load template data from a .json, .yaml or .yml file."""
    path = Path(path)
    if path.suffix.lower() == ".json":
        return load_json(path)
    if path.suffix.lower() in (".yaml", ".yml"):
        return load_yaml(path)
    raise ValueError(f"Unsupported data file format '{path.suffix}'. Supported: .json, .yaml, .yml")


def create_working_copy(
    source: str | Path,
    directory: str | Path | None = None,
    prefix: str = "PPTX_",
) -> Path:
    """Copy ``source`` to a fresh temp file and return its path.

    The temp file is removed again if the copy fails.
    """
    if directory is not None:
        ensure_directory(directory)
    fd, name = tempfile.mkstemp(prefix=prefix, suffix=Path(source).suffix, dir=directory)
    os.close(fd)
    try:
        shutil.copyfile(source, name)
    except BaseException:
        remove_file(name)
        raise
    logger.debug(f"Working copy of {Path(source).name} created at {name}")
    return Path(name)


def remove_file(path: str | Path) -> None:
    """Delete a file if it is still there."""
    Path(path).unlink(missing_ok=True)


def find_pptx_files(directory: str | Path) -> list[Path]:
    """Recursively find all .pptx files in a directory."""
    directory = Path(directory)
    if not directory.is_dir():
        raise NotADirectoryError(f"Not a directory: {directory}")
    files = sorted(directory.rglob("*.pptx"))
    # Exclude temp/hidden files
    files = [f for f in files if not f.name.startswith(("~", "."))]
    return files
