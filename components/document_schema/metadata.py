"""Versioned document metadata stored in a bundle's metadata.json."""

import uuid
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from .versioning import SchemaVersion



def normalize_timestamp(value: datetime) -> datetime:
    """Convert to UTC at second precision; naive values are taken as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).replace(microsecond=0)


def format_timestamp(value: datetime) -> str:
    """ISO-8601 UTC with a four-digit year, e.g. ``0999-06-01T12:00:00Z``."""
    value = normalize_timestamp(value)
    return f"{value.year:04d}-{value:%m-%dT%H:%M:%S}Z"


def utc_now() -> datetime:
    return normalize_timestamp(datetime.now(timezone.utc))


class DocumentMetadata(BaseModel):
    """Metadata record for one document bundle."""

    model_config = ConfigDict(populate_by_name=True)

    schema_version: int = Field(
        default=int(SchemaVersion.current()), alias="schemaVersion"
    )
    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    title: str
    authors: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now, alias="createdAt")
    modified_at: datetime = Field(default_factory=utc_now, alias="modifiedAt")
    linked_manuscript_id: Optional[uuid.UUID] = Field(
        default=None, alias="linkedImbibManuscriptID"
    )
    last_saved_by_app_version: Optional[str] = Field(
        default=None, alias="lastSavedByAppVersion"
    )

    @field_validator("created_at", "modified_at")
    @classmethod
    def validate_timestamp(cls, v: datetime) -> datetime:
        return normalize_timestamp(v)

    @field_serializer("created_at", "modified_at")
    def serialize_timestamp(self, v: datetime) -> str:
        return format_timestamp(v)

    @property
    def schema_version_enum(self) -> Optional[SchemaVersion]:
        return SchemaVersion.from_raw(self.schema_version)

    def to_json(self) -> str:
        """Encode to the on-disk JSON form."""
        return self.model_dump_json(by_alias=True, exclude_none=True, indent=2)

    @classmethod
    def from_json(cls, text: str) -> "DocumentMetadata":
        return cls.model_validate_json(text)

    @classmethod
    def default_for(
        cls, title: str, app_version: Optional[str] = None, now: Optional[datetime] = None
    ) -> "DocumentMetadata":
        """Fresh metadata at the current schema version with no authors."""
        timestamp = now or utc_now()
        return cls(
            title=title,
            authors=[],
            created_at=timestamp,
            modified_at=timestamp,
            last_saved_by_app_version=app_version,
        )
