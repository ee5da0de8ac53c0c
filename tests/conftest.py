"""Test fixtures and configuration."""

import json
import logging
import shutil
import sys
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Generator

import pytest
from components.bundle_service import BundleService
from components.crdt_health import SeedHistoryEngine
from shared.config import Config, PathsConfig, ServerConfig, WatcherConfig

SAMPLE_SOURCE = """= Resource Balance in Collaborative Writing

#set heading(numbering: "1.")

== Introduction

Writers share one source file; the history blob records who changed what.

$ E = m c^2 $
"""


def pytest_configure(config):
    """Configure logging to be visible for all tests."""
    logging.basicConfig(
        level=logging.DEBUG,
        format="%(levelname)s:%(name)s:%(message)s",
        stream=sys.stdout,
    )


@pytest.fixture
def temp_library_dir() -> Generator[Path, None, None]:
    """Create a temporary library directory."""
    temp_dir = Path(tempfile.mkdtemp()).resolve()
    try:
        yield temp_dir
    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def make_bundle(temp_library_dir: Path) -> Callable[..., Path]:
    """Factory writing a bundle into the library at a given schema version."""

    def _make(
        name: str,
        version=120,
        source: str = SAMPLE_SOURCE,
        history=True,
        metadata: bool = True,
    ) -> Path:
        path = temp_library_dir / f"{name}.imprint"
        path.mkdir()
        (path / "main.typ").write_text(source, encoding="utf-8")
        if metadata:
            data = {"title": name, "authors": ["Test Author"]}
            if version is not None:
                data["schemaVersion"] = version
            (path / "metadata.json").write_text(json.dumps(data), encoding="utf-8")
        if version is not None and version >= 110:
            (path / "bibliography.bib").write_text("", encoding="utf-8")
        if history is True:
            (path / "document.crdt").write_bytes(
                SeedHistoryEngine().rebuild_from_text(source)
            )
        elif history:
            (path / "document.crdt").write_bytes(history)
        return path

    return _make


@pytest.fixture
def test_config(temp_library_dir: Path) -> Config:
    """Create a test configuration."""
    return Config(
        paths=PathsConfig(library_dir=str(temp_library_dir)),
        watcher=WatcherConfig(enabled=False),  # Disable for tests
        server=ServerConfig(host="127.0.0.1", port=8000),
    )


@pytest.fixture
def bundle_service(test_config: Config) -> BundleService:
    return BundleService(
        config=test_config,
        clock=lambda: datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc),
    )
