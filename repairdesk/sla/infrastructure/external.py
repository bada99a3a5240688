"""
SLA External Service Integrations
==================================

External services for SLA monitoring:
- YAML SLA catalog with watchdog hot reload
- APScheduler for the periodic SLA sweep
"""

import threading
from pathlib import Path
from typing import Awaitable, Callable, Optional

import yaml
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from pydantic import ValidationError
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from repairdesk.cases.domain import Case
from repairdesk.core import ConfigurationException
from repairdesk.shared.infrastructure.logging import get_logger
from repairdesk.sla.application import ISLAConfigurationProvider
from repairdesk.sla.domain import SLACatalog, SLAConfiguration

logger = get_logger(__name__)


class ConfigFileHandler(FileSystemEventHandler):
    """Watchdog event handler for SLA config file changes."""

    def __init__(self, config_manager: "SLAConfigManager", config_path: Path):
        self.config_manager = config_manager
        self.config_path = config_path
        super().__init__()

    def on_modified(self, event):
        """Handle file modification event."""
        if event.is_directory:
            return
        if Path(event.src_path).resolve() == self.config_path.resolve():
            logger.info("SLA config file changed", extra={"path": event.src_path})
            self.config_manager.reload()


class SLAConfigManager(ISLAConfigurationProvider):
    """
    Thread-safe SLA catalog with hot-reload support.

    Uses watchdog to monitor file changes and reload configuration
    without restarting the service. A broken file never replaces a
    working catalog.
    """

    def __init__(self):
        self._catalog: Optional[SLACatalog] = None
        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        self._observer = None

    def load(self, path: Path) -> SLACatalog:
        """
        Initial configuration load.

        Raises:
            ConfigurationException: if the file is not valid YAML or fails validation
        """
        self._path = path
        catalog = self._load_from_file(path)
        with self._lock:
            self._catalog = catalog
        return catalog

    def _load_from_file(self, path: Path) -> SLACatalog:
        """Load and parse YAML config file."""
        if not path.exists():
            logger.warning("SLA config file not found, no SLA targets apply", extra={"path": str(path)})
            return SLACatalog()

        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
            return SLACatalog(**data)
        except (yaml.YAMLError, ValidationError, TypeError) as e:
            raise ConfigurationException(
                f"Invalid SLA configuration in {path}: {e}",
                {"path": str(path)}
            ) from e

    def reload(self) -> bool:
        """Reload configuration from file."""
        if self._path is None:
            return False

        try:
            catalog = self._load_from_file(self._path)
        except ConfigurationException as e:
            logger.error("Failed to reload SLA config, keeping previous", extra={"error": str(e)})
            return False

        with self._lock:
            self._catalog = catalog
        logger.info(
            "SLA configuration reloaded",
            extra={"configurations": len(catalog.sla_configurations)}
        )
        return True

    def start_watching(self) -> None:
        """
        Start watching configuration file for changes.

        Skips watching if the file doesn't exist or inotify is unavailable.
        """
        if self._path is None:
            raise RuntimeError("Config not loaded. Call load() first.")

        if not self._path.exists():
            logger.info("SLA config file doesn't exist, skipping file watch", extra={"path": str(self._path)})
            return

        try:
            self._observer = Observer()
            handler = ConfigFileHandler(self, self._path)
            self._observer.schedule(
                handler,
                str(self._path.parent),
                recursive=False
            )
            self._observer.start()
            logger.info("Started watching SLA config file", extra={"path": str(self._path)})
        except OSError as e:
            logger.warning("File watching not available, using static config", extra={"error": str(e)})
            self._observer = None

    def stop_watching(self) -> None:
        """Stop watching configuration file (safe to call even if not watching)."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

    @property
    def catalog(self) -> SLACatalog:
        """Get current catalog."""
        with self._lock:
            if self._catalog is None:
                raise RuntimeError("SLA configuration not loaded")
            return self._catalog

    def resolve(self, case: Case) -> Optional[SLAConfiguration]:
        return self.catalog.resolve(case)


class SLAScheduler:
    """
    Wrapper for APScheduler running the SLA sweep.

    Manages the lifecycle of the scheduler and jobs.
    """

    def __init__(self, interval_minutes: int = 15):
        self.interval_minutes = interval_minutes
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    async def start(self, job_func: Callable[[], Awaitable[None]]) -> None:
        """Start the scheduler with the given job function."""
        if self._running:
            logger.warning("SLA scheduler already running")
            return

        self._scheduler = AsyncIOScheduler()

        self._scheduler.add_job(
            job_func,
            "interval",
            minutes=self.interval_minutes,
            id="sla_sweep",
            name="SLA Sweep Job",
            misfire_grace_time=60,
            max_instances=1,
            coalesce=True,
            replace_existing=True
        )

        self._scheduler.start()
        self._running = True

        logger.info(
            "SLA scheduler started",
            extra={"interval_minutes": self.interval_minutes}
        )

    async def stop(self) -> None:
        """Stop the scheduler gracefully."""
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=True)

        self._running = False
        logger.info("SLA scheduler stopped")

    @property
    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return self._running
