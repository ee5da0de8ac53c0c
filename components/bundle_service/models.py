"""Data models for the bundle service."""

from pathlib import Path
from typing import Optional

from components.backup import BackupDescriptor
from components.crdt_health import RepairResult, ValidationResult
from components.document_schema import (
    Current,
    Legacy,
    NeedsMigration,
    NewerThanApp,
    VersionClassification,
)
from components.migration import MigrationResult
from pydantic import BaseModel, Field


def classification_name(classification: VersionClassification) -> str:
    if isinstance(classification, Current):
        return "current"
    if isinstance(classification, NeedsMigration):
        return "needs-migration"
    if isinstance(classification, NewerThanApp):
        return "newer-than-app"
    if isinstance(classification, Legacy):
        return "legacy"
    raise TypeError(f"Unknown classification: {classification!r}")


class VersionReport(BaseModel):
    """How a bundle's stored schema version relates to this application."""

    bundle_path: Path
    stored_version: Optional[int] = Field(
        default=None, description="Raw schemaVersion, None for legacy bundles"
    )
    classification: str
    can_open: bool
    current_version: int
    declared_version: int


class OpenResult(BaseModel):
    """Everything that happened while opening one bundle."""

    bundle_path: Path
    classification: Optional[str] = Field(
        default=None, description="None when the bundle had no metadata to classify"
    )
    backup_before_migration: Optional[BackupDescriptor] = None
    migration: Optional[MigrationResult] = None
    validation: ValidationResult
    backup_before_repair: Optional[BackupDescriptor] = None
    repair: Optional[RepairResult] = None

    @property
    def is_healthy(self) -> bool:
        if self.repair is not None:
            return self.repair.success
        return self.validation.is_healthy
