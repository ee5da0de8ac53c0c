from .bundle import Bundle, MetadataUnreadableError
from .metadata import DocumentMetadata
from .versioning import (
    Current,
    Legacy,
    NeedsMigration,
    NewerThanApp,
    SchemaVersion,
    VersionChecker,
    VersionClassification,
)

__all__ = [
    "Bundle",
    "Current",
    "DocumentMetadata",
    "Legacy",
    "MetadataUnreadableError",
    "NeedsMigration",
    "NewerThanApp",
    "SchemaVersion",
    "VersionChecker",
    "VersionClassification",
]
