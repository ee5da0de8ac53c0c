"""Detection of write-interruption markers left inside a bundle."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional, Tuple

from shared.bundle import DEFAULT_TEMP_SUFFIXES, SYNC_MARKER_FILENAME

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PartialSyncSnapshot:
    """What one directory scan found."""

    has_in_flight_write: bool
    dangling_temp_paths: Tuple[Path, ...] = ()
    sentinel_path: Optional[Path] = None

    @property
    def detected(self) -> bool:
        return self.has_in_flight_write or bool(self.dangling_temp_paths)

    @property
    def marker_paths(self) -> Tuple[Path, ...]:
        """Every path a repair has to remove."""
        if self.sentinel_path is None:
            return self.dangling_temp_paths
        return (self.sentinel_path, *self.dangling_temp_paths)


def is_temp_file(name: str, temp_suffixes: Iterable[str] = DEFAULT_TEMP_SUFFIXES) -> bool:
    return name.startswith(".") and any(name.endswith(suffix) for suffix in temp_suffixes)


def scan_interruption_markers(
    bundle_path: Path, temp_suffixes: Iterable[str] = DEFAULT_TEMP_SUFFIXES
) -> PartialSyncSnapshot:
    """Scan a bundle directory once for the sentinel and dotted temp files."""
    suffixes = tuple(temp_suffixes)
    sentinel = None
    temp_paths = []

    try:
        children = sorted(bundle_path.iterdir())
    except FileNotFoundError:
        return PartialSyncSnapshot(has_in_flight_write=False)

    for child in children:
        if child.name == SYNC_MARKER_FILENAME:
            sentinel = child
        elif child.is_file() and is_temp_file(child.name, suffixes):
            temp_paths.append(child)

    if sentinel is not None:
        logger.warning(f"Detected incomplete sync for document: {bundle_path.name}")
    if temp_paths:
        logger.warning(
            f"Detected {len(temp_paths)} temp file(s) from interrupted operation: "
            f"{bundle_path.name}"
        )

    return PartialSyncSnapshot(
        has_in_flight_write=sentinel is not None,
        dangling_temp_paths=tuple(temp_paths),
        sentinel_path=sentinel,
    )
