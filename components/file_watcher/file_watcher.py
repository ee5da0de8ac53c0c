"""File watcher for live bundle health checks."""

import logging
import threading
import time
from pathlib import Path
from typing import Any, Dict, Optional

from components.backup import BackupError, is_backup
from components.bundle_service import BundleService
from components.crdt_health import RepairError
from components.document_schema import Bundle
from shared.bundle import find_bundle_root
from shared.config import Config
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

logger = logging.getLogger(__name__)


class BundleEventHandler(FileSystemEventHandler):
    """Collects file events per bundle and validates each bundle once it settles."""

    def __init__(
        self,
        config: Config,
        service: BundleService,
        debounce_seconds: float = 2,
        start_worker: bool = True,
    ):
        super().__init__()
        self.config = config
        self.service = service
        self.debounce_seconds = debounce_seconds
        self.library_path = config.get_library_path()

        # Bundle path -> time of the most recent event inside it
        self._pending_bundles: Dict[Path, float] = {}
        self._pending_lock = threading.Lock()

        self._stop_debounce = threading.Event()
        self._debounce_thread: Optional[threading.Thread] = None
        if start_worker:
            self._debounce_thread = threading.Thread(
                target=self._debounce_worker, daemon=True
            )
            self._debounce_thread.start()

    def on_any_event(self, event: Any) -> None:
        for attr in ("src_path", "dest_path"):
            path = getattr(event, attr, None)
            if path:
                self._schedule_bundle(Path(path))

    def _schedule_bundle(self, path: Path) -> None:
        bundle_path = find_bundle_root(path)
        if bundle_path is None or bundle_path.parent != self.library_path:
            return
        with self._pending_lock:
            self._pending_bundles[bundle_path] = time.time()

    def pending_bundles(self) -> Dict[Path, float]:
        with self._pending_lock:
            return dict(self._pending_bundles)

    def process_due(self, now: Optional[float] = None) -> int:
        """Process every bundle whose last event is older than the debounce window."""
        current_time = time.time() if now is None else now
        due = []
        with self._pending_lock:
            for bundle_path, timestamp in list(self._pending_bundles.items()):
                if current_time - timestamp >= self.debounce_seconds:
                    due.append(bundle_path)
                    del self._pending_bundles[bundle_path]

        for bundle_path in due:
            self._process_bundle(bundle_path)
        return len(due)

    def _debounce_worker(self) -> None:
        while not self._stop_debounce.is_set():
            try:
                self.process_due()
            except Exception as e:
                logger.error(f"Error in debounce worker: {e}")
            self._stop_debounce.wait(0.5)

    def _process_bundle(self, bundle_path: Path) -> None:
        if not bundle_path.is_dir():
            logger.debug(f"Bundle {bundle_path.name} no longer exists, ignoring")
            return
        if is_backup(bundle_path):
            return

        bundle = Bundle(bundle_path)
        try:
            validation = self.service.validate(bundle)
            if validation.is_healthy:
                logger.debug(f"Bundle {bundle.name} is healthy")
                return
            if not self.config.watcher.auto_repair:
                logger.warning(
                    f"Bundle {bundle.name} needs repair; auto_repair is disabled"
                )
                return
            result = self.service.repair(bundle)
            logger.info(
                f"Auto-repaired {bundle.name}: success={result.success}, "
                f"{len(result.actions_performed)} action(s)"
            )
        except (RepairError, BackupError, OSError) as e:
            logger.error(f"Error checking bundle {bundle.name}: {e}")

    def stop(self) -> None:
        """Stop the debounce worker thread."""
        self._stop_debounce.set()
        if self._debounce_thread and self._debounce_thread.is_alive():
            self._debounce_thread.join(timeout=5)


class BundleWatcher:
    """Watches the library directory and keeps bundle health checked."""

    def __init__(self, config: Config, service: BundleService):
        self.config = config
        self.service = service

        self.observer: Any = None
        self.event_handler: Optional[BundleEventHandler] = None

    def start(self) -> None:
        """Start watching the library for changes."""
        if not self.config.watcher.enabled:
            logger.info("File watching is disabled in configuration")
            return

        library_path = self.config.get_library_path()
        if not library_path.exists():
            logger.warning(f"Library directory does not exist: {library_path}")
            return

        logger.info(f"Starting bundle watcher for library: {library_path}")

        self.event_handler = BundleEventHandler(
            self.config,
            self.service,
            debounce_seconds=self.config.watcher.debounce_seconds,
        )

        self.observer = Observer()
        self.observer.schedule(self.event_handler, str(library_path), recursive=True)
        self.observer.start()

        logger.info("Bundle watcher started successfully")

    def stop(self) -> None:
        """Stop watching the library."""
        if self.observer:
            logger.info("Stopping bundle watcher")
            self.observer.stop()
            self.observer.join()
            self.observer = None

        if self.event_handler:
            self.event_handler.stop()
            self.event_handler = None

        logger.info("Bundle watcher stopped")

    def is_running(self) -> bool:
        """Check if the watcher is currently running."""
        return self.observer is not None and self.observer.is_alive()
