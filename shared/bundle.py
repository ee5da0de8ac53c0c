"""
Fixed on-disk layout of an .imprint document bundle and small filesystem
helpers shared by every component that reads or writes bundles.
"""

import logging
import os
from pathlib import Path
from typing import Iterator, Union

logger = logging.getLogger(__name__)

BUNDLE_SUFFIX = ".imprint"

SOURCE_FILENAME = "main.typ"
METADATA_FILENAME = "metadata.json"
BIBLIOGRAPHY_FILENAME = "bibliography.bib"
HISTORY_FILENAME = "document.crdt"

# Written by the replication engine or a sync transport while a write is in flight.
SYNC_MARKER_FILENAME = ".sync-in-progress"

DEFAULT_TEMP_SUFFIXES = (".tmp", ".temp", ".partial")


def is_bundle_dir(path: Path) -> bool:
    """Check whether a path is an .imprint bundle directory."""
    return path.suffix == BUNDLE_SUFFIX and path.is_dir()


def find_bundle_root(path: Path) -> Union[Path, None]:
    """Walk up from a path to the enclosing bundle directory, if any."""
    for candidate in (path, *path.parents):
        if candidate.suffix == BUNDLE_SUFFIX:
            return candidate
    return None


def iter_bundles(library_dir: Path) -> Iterator[Path]:
    """Yield every bundle directly inside a library directory, sorted by name."""
    if not library_dir.is_dir():
        logger.warning(f"Library directory does not exist: {library_dir}")
        return
    for entry in sorted(library_dir.iterdir()):
        if is_bundle_dir(entry):
            yield entry


def atomic_write_bytes(target: Path, data: bytes) -> None:
    """
    Write bytes to a file through a dotted temporary sibling and a rename.

    If the process dies mid-write the leftover ``.<name>.tmp`` file is exactly
    what partial-sync detection looks for on the next launch.
    """
    temp_path = target.with_name(f".{target.name}.tmp")
    with open(temp_path, "wb") as f:
        f.write(data)
        f.flush()
        os.fsync(f.fileno())
    os.replace(temp_path, target)


def atomic_write_text(target: Path, text: str) -> None:
    atomic_write_bytes(target, text.encode("utf-8"))
