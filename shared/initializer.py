"""
Centralized application initializer.

This component is responsible for parsing command-line arguments, loading
configuration, and wiring the core bundle components (version checker,
migrator, health validator, backup service) into one BundleService.
It provides a single entry point for building the application's core, which
the API server and the watcher then share.
"""

import argparse
import logging
from typing import Tuple

from components.backup import BackupService
from components.bundle_service import BundleService
from components.crdt_health import CRDTHealthValidator
from components.document_schema import VersionChecker
from components.migration import DocumentMigrator

from shared.config import Config, load_config

logger = logging.getLogger(__name__)


def create_arg_parser() -> argparse.ArgumentParser:
    """
    Creates and returns the command-line argument parser.

    Returns:
        An ArgumentParser instance with all common arguments defined.
    """
    parser = argparse.ArgumentParser(description="Bundle Sync Server.")
    parser.add_argument(
        "-c",
        "--config",
        help="Path to the config folder to use for all config files.",
    )
    parser.add_argument(
        "-a",
        "--app-config",
        help="Path to the app.toml file to use.",
    )
    parser.add_argument(
        "--library-dir",
        help="Override the directory holding the document bundles.",
    )
    parser.add_argument(
        "--port",
        type=int,
        help="Port to run the server on.",
    )
    parser.add_argument(
        "--host",
        type=str,
        help="Host to run the server on.",
    )
    return parser


def initialize_service_from_args(
    args: argparse.Namespace,
) -> Tuple[Config, BundleService]:
    """
    Loads configuration and initializes all core components based on command-line
    arguments.

    1. Loads configuration from files.
    2. Applies command-line overrides.
    3. Builds the shared VersionChecker.
    4. Builds the migrator, health validator and backup service on top of it.
    5. Initializes the BundleService.

    Args:
        args: Parsed command-line arguments from an ArgumentParser.

    Returns:
        A tuple containing the loaded Config object and the fully initialized
        BundleService instance.
    """
    logger.info("Initializing application core services...")

    config = load_config(config_dir=args.config, app_config_path=args.app_config)

    if args.library_dir:
        logger.info(f"Overriding library directory with: {args.library_dir}")
        config.paths.library_dir = args.library_dir
    if args.host:
        logger.info(f"Overriding server host with: {args.host}")
        config.server.host = args.host
    if args.port:
        config.server.port = args.port

    checker = VersionChecker()
    logger.info(f"Current document schema: {checker.current.display_string}")

    migrator = DocumentMigrator(checker=checker, app_version=config.app.version)
    validator = CRDTHealthValidator(
        checker=checker,
        temp_suffixes=config.health.temp_suffixes,
        stale_history_ratio=config.health.stale_history_ratio,
        app_version=config.app.version,
    )
    backup_service = BackupService(checker=checker, backup_dir=config.get_backup_path())

    service = BundleService(
        config=config,
        checker=checker,
        migrator=migrator,
        validator=validator,
        backup_service=backup_service,
    )

    logger.info("Core services initialized successfully.")
    return config, service
