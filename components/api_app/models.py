"""Request and response models for the bundle API."""

from typing import List

from components.backup import BackupDescriptor
from pydantic import BaseModel, Field


class BundleRequest(BaseModel):
    bundle_path: str = Field(
        ..., description="Bundle path, absolute or relative to the library directory"
    )


class BackupRequest(BaseModel):
    backup_path: str = Field(..., description="Path to a backup bundle")


class RestoreRequest(BaseModel):
    backup_path: str = Field(..., description="Path to the backup to restore from")
    bundle_path: str = Field(..., description="Bundle to replace with the backup")


class StatusResponse(BaseModel):
    status: str
    app_version: str
    schema_version: int
    library_dir: str
    bundle_count: int


class BundleListResponse(BaseModel):
    bundles: List[str]
    total_count: int


class BackupListResponse(BaseModel):
    backups: List[BackupDescriptor]
    total_count: int


class RestoreResponse(BaseModel):
    success: bool
    message: str
