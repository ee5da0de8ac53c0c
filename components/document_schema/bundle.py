"""A document bundle on disk: paths, stored version and metadata I/O."""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

from pydantic import ValidationError
from shared.bundle import (
    BIBLIOGRAPHY_FILENAME,
    BUNDLE_SUFFIX,
    HISTORY_FILENAME,
    METADATA_FILENAME,
    SOURCE_FILENAME,
    atomic_write_text,
)

from .metadata import DocumentMetadata

logger = logging.getLogger(__name__)


class MetadataUnreadableError(Exception):
    """Raised when metadata.json exists but cannot be decoded."""


class Bundle:
    """
    One document bundle directory.

    The source file is the only authoritative content. This class never writes
    it; it only exposes its path and size.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def __repr__(self) -> str:
        return f"Bundle({str(self.path)!r})"

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Bundle) and self.path == other.path

    def __hash__(self) -> int:
        return hash(self.path)

    @property
    def name(self) -> str:
        """Bundle filename without the .imprint suffix."""
        if self.path.suffix == BUNDLE_SUFFIX:
            return self.path.stem
        return self.path.name

    @property
    def source_path(self) -> Path:
        return self.path / SOURCE_FILENAME

    @property
    def metadata_path(self) -> Path:
        return self.path / METADATA_FILENAME

    @property
    def bibliography_path(self) -> Path:
        return self.path / BIBLIOGRAPHY_FILENAME

    @property
    def history_path(self) -> Path:
        return self.path / HISTORY_FILENAME

    def exists(self) -> bool:
        return self.path.is_dir()

    def has_file(self, filename: str) -> bool:
        return (self.path / filename).is_file()

    def file_size(self, filename: str) -> int:
        """Size of a bundle file in bytes, 0 when it is absent."""
        try:
            return (self.path / filename).stat().st_size
        except FileNotFoundError:
            return 0

    def read_source(self) -> str:
        with open(self.source_path, "r", encoding="utf-8") as f:
            return f.read()

    def read_raw_metadata(self) -> Dict[str, Any]:
        """Load metadata.json as a plain dict."""
        try:
            with open(self.metadata_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise MetadataUnreadableError(f"metadata.json is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise MetadataUnreadableError("metadata.json does not hold an object")
        return data

    def read_stored_version(self) -> Optional[int]:
        """
        Return the raw schema version recorded in metadata, or None when the
        bundle predates versioning.
        """
        raw = self.read_raw_metadata().get("schemaVersion")
        if raw is None:
            return None
        if isinstance(raw, bool) or not isinstance(raw, int):
            raise MetadataUnreadableError(f"schemaVersion is not an integer: {raw!r}")
        return raw

    def read_metadata(self) -> DocumentMetadata:
        try:
            return DocumentMetadata.model_validate(self.read_raw_metadata())
        except ValidationError as e:
            raise MetadataUnreadableError(f"metadata.json is malformed: {e}") from e

    def write_metadata(self, metadata: DocumentMetadata) -> None:
        atomic_write_text(self.metadata_path, metadata.to_json())
        logger.debug(f"Wrote metadata for {self.name}")
