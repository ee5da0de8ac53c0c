"""
This module defines the StateTracker class, which fingerprints the files of a
bundle directory with SHA-256 and a Merkle tree. Backups record the fingerprint
when they are taken so that later verification can tell whether any file has
changed or disappeared since.
"""

import hashlib
import json
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from pymerkle import InmemoryTree as MerkleTree

logger = logging.getLogger(__name__)


class StateTracker:
    """
    Computes and compares content manifests of a directory tree.
    """

    def __init__(self, root_path: Path, exclude: Iterable[str] = ()):
        """
        Initializes the StateTracker.

        Args:
            root_path: The directory whose files are fingerprinted.
            exclude: Relative paths that are never part of the manifest.
        """
        self.root_path = Path(root_path)
        self.exclude = frozenset(exclude)

    @staticmethod
    def hash_file_content(file_path: Path) -> str:
        """Hashes the content of a single file."""
        sha256 = hashlib.sha256()
        with open(file_path, "rb") as f:
            while chunk := f.read(8192):
                sha256.update(chunk)
        return sha256.hexdigest()

    def _iter_files(self) -> List[Tuple[str, Path]]:
        files = []
        for file_path in self.root_path.rglob("*"):
            if not file_path.is_file():
                continue
            relative = file_path.relative_to(self.root_path).as_posix()
            if relative in self.exclude:
                continue
            files.append((relative, file_path))
        # Sorted so the Merkle root does not depend on directory listing order.
        return sorted(files)

    def generate_manifest(self) -> Tuple[Optional[str], Dict[str, str]]:
        """
        Hashes every file and builds a Merkle tree over the sorted manifest.

        Returns:
            A tuple of the Merkle root (hex, or None for an empty tree) and the
            manifest of {relative_path: content_hash}.
        """
        manifest: Dict[str, str] = {}
        tree = MerkleTree(algorithm="sha256")

        for relative, file_path in self._iter_files():
            content_hash = self.hash_file_content(file_path)
            manifest[relative] = content_hash
            tree.append_entry(f"{relative}:{content_hash}".encode("utf-8"))

        root_hash = tree.get_state().hex() if tree.get_size() > 0 else None
        return root_hash, manifest

    def total_size(self) -> int:
        """Sum of the sizes of every tracked file, in bytes."""
        return sum(file_path.stat().st_size for _, file_path in self._iter_files())

    @staticmethod
    def save_state(state_file_path: Path, state: Dict) -> None:
        """Writes a state document as JSON, creating parent directories."""
        state_file_path.parent.mkdir(parents=True, exist_ok=True)
        with open(state_file_path, "w", encoding="utf-8") as f:
            json.dump(state, f, indent=4)
        logger.info(
            f"Saved state with root hash {state.get('root_hash')} to {state_file_path}"
        )

    @staticmethod
    def load_state(state_file_path: Path) -> Optional[Dict]:
        """
        Loads a state document.

        Returns:
            The parsed state, or None if the file is missing or unreadable.
        """
        if not state_file_path.exists():
            logger.warning(f"State file not found at {state_file_path}.")
            return None

        try:
            with open(state_file_path, "r", encoding="utf-8") as f:
                state = json.load(f)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.error(f"Failed to parse state file at {state_file_path}: {e}")
            return None
        if not isinstance(state, dict):
            logger.error(f"State file at {state_file_path} does not hold an object")
            return None
        return state

    @staticmethod
    def compare_states(
        old_manifest: Dict[str, str], new_manifest: Dict[str, str]
    ) -> Dict[str, List[str]]:
        """
        Compares two file manifests to determine which files were added, updated, or removed.

        Returns:
            A dictionary with three keys: 'added', 'updated', and 'removed', each
            containing a sorted list of relative paths.
        """
        old_files = set(old_manifest.keys())
        new_files = set(new_manifest.keys())

        added = sorted(new_files - old_files)
        removed = sorted(old_files - new_files)
        updated = sorted(
            file
            for file in old_files.intersection(new_files)
            if old_manifest[file] != new_manifest[file]
        )

        return {"added": added, "updated": updated, "removed": removed}
