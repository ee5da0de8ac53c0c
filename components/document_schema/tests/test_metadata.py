"""Tests for document metadata encoding and the Bundle wrapper."""

import json
import uuid
from datetime import datetime, timedelta, timezone

import pytest
from components.document_schema import Bundle, DocumentMetadata, MetadataUnreadableError
from components.document_schema.metadata import normalize_timestamp


def _sample_metadata(**overrides):
    values = dict(
        schema_version=120,
        id=uuid.UUID("6f1b1c52-3a9e-4d1e-9a55-0b0c2f6f8d01"),
        title="On the Theory of Bundles",
        authors=["Ada Lovelace", "Émilie du Châtelet"],
        created_at=datetime(2024, 3, 1, 9, 30, 15, tzinfo=timezone.utc),
        modified_at=datetime(2024, 3, 2, 18, 0, 0, tzinfo=timezone.utc),
        linked_manuscript_id=uuid.UUID("0d5c7a4e-8f7b-4f53-8a2b-1bb9c1d9e7aa"),
        last_saved_by_app_version="0.3.0",
    )
    values.update(overrides)
    return DocumentMetadata(**values)


def test_json_uses_camel_case_keys():
    data = json.loads(_sample_metadata().to_json())
    assert data["schemaVersion"] == 120
    assert data["createdAt"] == "2024-03-01T09:30:15Z"
    assert data["modifiedAt"] == "2024-03-02T18:00:00Z"
    assert data["linkedImbibManuscriptID"] == "0d5c7a4e-8f7b-4f53-8a2b-1bb9c1d9e7aa"
    assert data["lastSavedByAppVersion"] == "0.3.0"


def test_optional_fields_are_omitted_when_unset():
    data = json.loads(
        _sample_metadata(linked_manuscript_id=None, last_saved_by_app_version=None).to_json()
    )
    assert "linkedImbibManuscriptID" not in data
    assert "lastSavedByAppVersion" not in data


@pytest.mark.parametrize(
    "title,authors",
    [
        ("", []),
        ("Ünïcödé: title", ["A", "B", "C"]),
        ('Quotes "and" \\ slashes', ["O'Brien"]),
        ("x" * 500, ["single"]),
    ],
)
def test_round_trip(title, authors):
    original = _sample_metadata(title=title, authors=authors, id=uuid.uuid4())
    assert DocumentMetadata.from_json(original.to_json()) == original


@pytest.mark.parametrize(
    "created_at,expected",
    [
        (datetime(1, 1, 1, 0, 0, 0, tzinfo=timezone.utc), "0001-01-01T00:00:00Z"),
        (datetime(999, 6, 1, 12, 0, 0, tzinfo=timezone.utc), "0999-06-01T12:00:00Z"),
        (datetime(1970, 1, 1, 0, 0, 0, tzinfo=timezone.utc), "1970-01-01T00:00:00Z"),
        (datetime(9999, 12, 31, 23, 59, 59, tzinfo=timezone.utc), "9999-12-31T23:59:59Z"),
    ],
)
def test_round_trip_across_timestamp_range(created_at, expected):
    original = _sample_metadata(
        id=uuid.uuid4(),
        created_at=created_at,
        modified_at=created_at,
        linked_manuscript_id=uuid.uuid4(),
    )
    encoded = original.to_json()
    assert json.loads(encoded)["createdAt"] == expected
    assert DocumentMetadata.from_json(encoded) == original


def test_early_year_survives_bundle_write(tmp_path):
    bundle = Bundle(tmp_path / "Ancient.imprint")
    bundle.path.mkdir()
    metadata = _sample_metadata(
        created_at=datetime(999, 6, 1, 12, 0, 0, tzinfo=timezone.utc)
    )
    bundle.write_metadata(metadata)
    assert bundle.read_metadata() == metadata


def test_timestamps_are_normalized_to_utc_seconds():
    offset = timezone(timedelta(hours=2))
    metadata = _sample_metadata(
        created_at=datetime(2024, 5, 1, 12, 0, 0, 987654, tzinfo=offset)
    )
    assert metadata.created_at == datetime(2024, 5, 1, 10, 0, 0, tzinfo=timezone.utc)
    assert DocumentMetadata.from_json(metadata.to_json()) == metadata


def test_naive_timestamps_are_taken_as_utc():
    value = normalize_timestamp(datetime(2024, 1, 1, 0, 0, 0))
    assert value.tzinfo == timezone.utc


def test_default_for_is_current_and_empty():
    now = datetime(2024, 6, 1, tzinfo=timezone.utc)
    metadata = DocumentMetadata.default_for("Draft", app_version="0.3.0", now=now)
    assert metadata.schema_version == 120
    assert metadata.authors == []
    assert metadata.created_at == metadata.modified_at == now
    assert metadata.last_saved_by_app_version == "0.3.0"


def test_bundle_reads_and_writes_metadata(tmp_path):
    bundle = Bundle(tmp_path / "Paper.imprint")
    bundle.path.mkdir()
    metadata = _sample_metadata()

    bundle.write_metadata(metadata)

    assert bundle.name == "Paper"
    assert bundle.read_metadata() == metadata
    assert bundle.read_stored_version() == 120
    assert not list(bundle.path.glob(".*.tmp"))


def test_bundle_stored_version_absent_is_none(tmp_path):
    bundle = Bundle(tmp_path / "Old.imprint")
    bundle.path.mkdir()
    bundle.metadata_path.write_text(json.dumps({"title": "Old"}))
    assert bundle.read_stored_version() is None


@pytest.mark.parametrize("content", ["{not json", "[1, 2]", '{"schemaVersion": "1.2"}'])
def test_bundle_rejects_unreadable_metadata(tmp_path, content):
    bundle = Bundle(tmp_path / "Bad.imprint")
    bundle.path.mkdir()
    bundle.metadata_path.write_text(content)
    with pytest.raises(MetadataUnreadableError):
        bundle.read_stored_version()


def test_bundle_file_size_of_missing_file_is_zero(tmp_path):
    bundle = Bundle(tmp_path / "Empty.imprint")
    bundle.path.mkdir()
    assert bundle.file_size("document.crdt") == 0
