"""
Schema versions of the .imprint bundle format and the checker that classifies
a bundle's stored version against the version this application writes.

Versions are integers encoding ``major * 100 + minor * 10``. Each version
declares the minimum set of files a conformant bundle contains; the set only
grows from one version to the next.
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import FrozenSet, Optional, Union

from shared.bundle import (
    BIBLIOGRAPHY_FILENAME,
    HISTORY_FILENAME,
    METADATA_FILENAME,
    SOURCE_FILENAME,
)


class SchemaVersion(IntEnum):
    """Known bundle schema versions."""

    V1_0 = 100
    V1_1 = 110
    V1_2 = 120

    @classmethod
    def current(cls) -> "SchemaVersion":
        return cls.V1_2

    @classmethod
    def oldest(cls) -> "SchemaVersion":
        return cls.V1_0

    @classmethod
    def from_raw(cls, raw: int) -> Optional["SchemaVersion"]:
        """Return the known version for a raw integer, or None."""
        try:
            return cls(raw)
        except ValueError:
            return None

    @classmethod
    def nearest_known(cls, raw: int) -> "SchemaVersion":
        """Return the highest known version not above ``raw`` (oldest if none)."""
        candidates = [version for version in cls if version <= raw]
        return max(candidates) if candidates else cls.oldest()

    @property
    def display_string(self) -> str:
        """Human-readable version string, e.g. ``"1.2"``."""
        return f"{self.value // 100}.{(self.value % 100) // 10}"

    @property
    def change_description(self) -> str:
        return _CHANGE_DESCRIPTIONS[self]

    @property
    def expected_files(self) -> FrozenSet[str]:
        return _EXPECTED_FILES[self]

    def next(self) -> Optional["SchemaVersion"]:
        """The version one migration step above this one."""
        later = [version for version in SchemaVersion if version > self]
        return min(later) if later else None


_CHANGE_DESCRIPTIONS = {
    SchemaVersion.V1_0: "Initial document format with Typst source and metadata",
    SchemaVersion.V1_1: "Added bibliography and linked manuscript ID",
    SchemaVersion.V1_2: "Added collaboration history for real-time editing",
}

_EXPECTED_FILES = {
    SchemaVersion.V1_0: frozenset({SOURCE_FILENAME, METADATA_FILENAME}),
    SchemaVersion.V1_1: frozenset(
        {SOURCE_FILENAME, METADATA_FILENAME, BIBLIOGRAPHY_FILENAME}
    ),
    SchemaVersion.V1_2: frozenset(
        {SOURCE_FILENAME, METADATA_FILENAME, BIBLIOGRAPHY_FILENAME, HISTORY_FILENAME}
    ),
}


@dataclass(frozen=True)
class Current:
    """The bundle is at the current schema version."""


@dataclass(frozen=True)
class NeedsMigration:
    """The bundle is older than the current schema and can be upgraded."""

    from_version: int

    @property
    def schema_version(self) -> Optional[SchemaVersion]:
        return SchemaVersion.from_raw(self.from_version)


@dataclass(frozen=True)
class NewerThanApp:
    """The bundle was written by a newer application and must not be opened."""

    version: int


@dataclass(frozen=True)
class Legacy:
    """The bundle records no schema version; it is treated as the oldest one."""


VersionClassification = Union[Current, NeedsMigration, NewerThanApp, Legacy]


class VersionChecker:
    """Classifies stored schema versions against the current one."""

    def __init__(self, current: SchemaVersion = SchemaVersion.current()):
        self.current = current

    def check(self, stored_version: Optional[int]) -> VersionClassification:
        if stored_version is None:
            return Legacy()
        if stored_version == self.current:
            return Current()
        if stored_version < self.current:
            return NeedsMigration(from_version=stored_version)
        return NewerThanApp(version=stored_version)

    def can_open(self, stored_version: Optional[int]) -> bool:
        """Whether a bundle at this version may be opened at all."""
        return not isinstance(self.check(stored_version), NewerThanApp)

    def declared_version(self, stored_version: Optional[int]) -> SchemaVersion:
        """The known version whose file set applies to a stored version."""
        if stored_version is None:
            return SchemaVersion.oldest()
        return SchemaVersion.nearest_known(stored_version)

    def expected_files(self, version: Union[SchemaVersion, int]) -> FrozenSet[str]:
        """Minimum file set for a bundle of the given version."""
        if not isinstance(version, SchemaVersion):
            version = SchemaVersion.nearest_known(version)
        return version.expected_files

    def required_files(self, version: Union[SchemaVersion, int]) -> FrozenSet[str]:
        """
        Files whose absence makes a bundle of this version non-conformant.

        The history blob is left out: a document without collaboration history
        is valid at every version.
        """
        return self.expected_files(version) - {HISTORY_FILENAME}
