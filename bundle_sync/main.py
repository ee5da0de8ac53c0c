# bundle_sync/main.py

import asyncio
import logging

import uvicorn
from components.api_app.main import create_app
from components.file_watcher.file_watcher import BundleWatcher
from shared.config import Config
from shared.initializer import (
    create_arg_parser,
    initialize_service_from_args,
)

logger = logging.getLogger(__name__)


def configure_logging(config: Config) -> None:
    logging.basicConfig(
        level=config.logging.level.upper(),
        format=config.logging.format,
        force=True,
    )


async def main() -> None:
    """
    Recovers interrupted bundles, then runs the API server and the bundle
    watcher concurrently.
    """
    parser = create_arg_parser()
    parser.description = "Run the Bundle Sync server."
    parser.add_argument(
        "--skip-recovery",
        action="store_true",
        help="Do not scan the library for interrupted writes at launch.",
    )
    args = parser.parse_args()

    config, service = initialize_service_from_args(args)
    configure_logging(config)

    if not args.skip_recovery:
        logger.info("Scanning library for interrupted writes...")
        recovered = await service.recover_interrupted_bundles_async()
        for name, result in recovered.items():
            if not result.success:
                logger.warning(f"Bundle {name} is still unhealthy after recovery")

    watcher = None
    if config.watcher.enabled:
        logger.info("Initializing BundleWatcher for live bundle monitoring...")
        watcher = BundleWatcher(config=config, service=service)
        watcher.start()

    api_app = create_app(service)
    server_config = uvicorn.Config(
        api_app, host=config.server.host, port=config.server.port
    )
    server = uvicorn.Server(server_config)
    print(f"Bundle API will be served on http://{config.server.host}:{config.server.port}")

    try:
        await server.serve()
    finally:
        if watcher:
            logger.info("Stopping BundleWatcher...")
            watcher.stop()
            logger.info("BundleWatcher stopped.")


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("Server shut down gracefully.")


if __name__ == "__main__":
    run()
