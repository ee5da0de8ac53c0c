"""Tests for the bundle API."""

import json
from datetime import datetime, timezone

import pytest
from components.api_app.main import create_app
from components.bundle_service import BundleService
from components.crdt_health import SeedHistoryEngine
from fastapi.testclient import TestClient
from shared.config import Config, PathsConfig, WatcherConfig

SOURCE = "= API\n\nServed over HTTP.\n"


def make_bundle(library, name, version=120, history=True):
    path = library / f"{name}.imprint"
    path.mkdir()
    (path / "main.typ").write_text(SOURCE, encoding="utf-8")
    (path / "metadata.json").write_text(
        json.dumps({"schemaVersion": version, "title": name, "authors": []}),
        encoding="utf-8",
    )
    if version >= 110:
        (path / "bibliography.bib").write_text("", encoding="utf-8")
    if history is True:
        (path / "document.crdt").write_bytes(
            SeedHistoryEngine().rebuild_from_text(SOURCE)
        )
    elif history:
        (path / "document.crdt").write_bytes(history)
    return path


@pytest.fixture
def library(tmp_path):
    path = tmp_path / "library"
    path.mkdir()
    return path


@pytest.fixture
def test_service(library):
    config = Config(
        paths=PathsConfig(library_dir=str(library)),
        watcher=WatcherConfig(enabled=False),
    )
    return BundleService(
        config=config, clock=lambda: datetime(2025, 5, 5, 5, 5, 5, tzinfo=timezone.utc)
    )


@pytest.fixture
def client(test_service):
    app = create_app(test_service)
    with TestClient(app) as test_client:
        yield test_client


def test_status(client, library):
    make_bundle(library, "One")
    response = client.get("/status")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["schema_version"] == 120
    assert data["bundle_count"] == 1


def test_list_bundles(client, library):
    make_bundle(library, "B")
    make_bundle(library, "A")
    data = client.get("/bundles").json()
    assert data["total_count"] == 2
    assert [p.rsplit("/", 1)[-1] for p in data["bundles"]] == ["A.imprint", "B.imprint"]


def test_check_version(client, library):
    make_bundle(library, "Old", version=100, history=False)
    response = client.get("/bundles/version", params={"bundle_path": "Old.imprint"})
    assert response.status_code == 200
    data = response.json()
    assert data["classification"] == "needs-migration"
    assert data["stored_version"] == 100
    assert data["can_open"] is True


def test_unknown_bundle_is_404(client):
    response = client.get("/bundles/version", params={"bundle_path": "Nope.imprint"})
    assert response.status_code == 404
    response = client.post("/bundles/open", json={"bundle_path": "Nope.imprint"})
    assert response.status_code == 404


def test_corrupted_metadata_is_422(client, library):
    path = make_bundle(library, "Corrupt")
    (path / "metadata.json").write_text("not json")
    response = client.get("/bundles/version", params={"bundle_path": "Corrupt.imprint"})
    assert response.status_code == 422


def test_open_bundle(client, library):
    make_bundle(library, "Open")
    response = client.post("/bundles/open", json={"bundle_path": "Open.imprint"})
    assert response.status_code == 200
    data = response.json()
    assert data["classification"] == "current"
    assert data["validation"]["is_healthy"] is True
    assert data["repair"] is None


def test_open_newer_bundle_is_409(client, library):
    make_bundle(library, "Future", version=999)
    response = client.post("/bundles/open", json={"bundle_path": "Future.imprint"})
    assert response.status_code == 409
    assert "newer version" in response.json()["detail"]


def test_health(client, library):
    make_bundle(library, "Sick", history=bytes(10))
    response = client.get("/bundles/health", params={"bundle_path": "Sick.imprint"})
    assert response.status_code == 200
    data = response.json()
    assert data["is_healthy"] is False
    assert data["issues"][0]["kind"] == "history-corrupted"
    assert "size_ratio" in data


def test_repair(client, library):
    make_bundle(library, "Fixable", history=bytes(10))
    response = client.post("/bundles/repair", json={"bundle_path": "Fixable.imprint"})
    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["actions_performed"]


def test_repair_without_source_is_422(client, library):
    path = make_bundle(library, "Sourceless", history=bytes(10))
    (path / "main.typ").unlink()
    response = client.post("/bundles/repair", json={"bundle_path": "Sourceless.imprint"})
    assert response.status_code == 422


def test_migrate(client, library):
    make_bundle(library, "Migrate", version=100, history=False)
    response = client.post("/bundles/migrate", json={"bundle_path": "Migrate.imprint"})
    assert response.status_code == 200
    data = response.json()
    assert data["from_version"] == 100
    assert data["to_version"] == 120
    assert data["steps"]


def test_backup_lifecycle(client, library):
    path = make_bundle(library, "Safe")

    created = client.post("/backups", json={"bundle_path": "Safe.imprint"})
    assert created.status_code == 200
    location = created.json()["location"]

    listed = client.get("/backups", params={"bundle_path": "Safe.imprint"}).json()
    assert listed["total_count"] == 1

    verified = client.post("/backups/verify", json={"backup_path": location}).json()
    assert verified["is_valid"] is True

    (path / "main.typ").write_text("overwritten")
    restored = client.post(
        "/backups/restore",
        json={"backup_path": location, "bundle_path": "Safe.imprint"},
    )
    assert restored.status_code == 200
    assert restored.json()["success"] is True
    assert (path / "main.typ").read_text() == SOURCE


def test_restore_invalid_backup_is_409(client, library):
    make_bundle(library, "Target")
    location = client.post("/backups", json={"bundle_path": "Target.imprint"}).json()[
        "location"
    ]
    (library / location.rsplit("/", 1)[-1] / "main.typ").unlink()

    response = client.post(
        "/backups/restore",
        json={"backup_path": location, "bundle_path": "Target.imprint"},
    )
    assert response.status_code == 409


def test_restore_failure_is_500(client, library):
    make_bundle(library, "Stuck")
    location = client.post("/backups", json={"bundle_path": "Stuck.imprint"}).json()[
        "location"
    ]
    (library / ".Stuck.imprint.displaced.tmp").mkdir()

    response = client.post(
        "/backups/restore",
        json={"backup_path": location, "bundle_path": "Stuck.imprint"},
    )
    assert response.status_code == 500


def test_request_validation(client):
    assert client.post("/bundles/open", json={}).status_code == 422
    assert client.post("/backups/restore", json={"backup_path": "x"}).status_code == 422
