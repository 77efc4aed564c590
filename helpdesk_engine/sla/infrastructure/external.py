"""
SLA External Service Integrations
=================================

External services for SLA monitoring:
- YAML policy file watcher (watchdog) with hot reload
- APScheduler wrapper running the periodic sweep
"""

import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Awaitable, Callable, Optional

import yaml
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from pydantic import ValidationError
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from helpdesk_engine.core import ConfigurationException
from helpdesk_engine.shared.infrastructure.logging import get_logger
from helpdesk_engine.sla.application.services import ISLAConfigProvider, ISweepScheduler
from helpdesk_engine.sla.domain.value_objects import SLAConfig

logger = get_logger(__name__)

SWEEP_JOB_ID = "sla_sweep"


class ConfigFileHandler(FileSystemEventHandler):
    """Watchdog event handler for SLA config file changes."""

    def __init__(self, config_manager: "SLAConfigManager", config_path: Path):
        self.config_manager = config_manager
        self.config_path = config_path
        super().__init__()

    def on_modified(self, event):
        if event.is_directory:
            return
        if Path(event.src_path).resolve() == self.config_path.resolve():
            logger.info("SLA config file changed", extra={"path": str(event.src_path)})
            self.config_manager.reload()

    on_created = on_modified


class SLAConfigManager(ISLAConfigProvider):
    """
    Thread-safe SLA configuration manager with hot-reload support.

    Uses watchdog to monitor file changes and reload configuration
    without restarting the service. A broken file on reload keeps the
    previous policy.
    """

    def __init__(self):
        self._config: Optional[SLAConfig] = None
        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        self._observer = None

    def load(self, path: Path) -> SLAConfig:
        """
        Initial configuration load.

        Raises:
            ConfigurationException: the file exists but is not a valid policy
        """
        self._path = Path(path)
        config = self._load_from_file(self._path)
        with self._lock:
            self._config = config
        return config

    def _load_from_file(self, path: Path) -> SLAConfig:
        """Load and parse YAML config file."""
        if not path.exists():
            logger.warning("SLA config file not found, using defaults", extra={"path": str(path)})
            return SLAConfig()

        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
            return SLAConfig(**data)
        except (yaml.YAMLError, ValidationError, TypeError) as e:
            raise ConfigurationException(
                f"Invalid SLA config file: {path}",
                {"path": str(path), "error": str(e)}
            ) from e

    def reload(self) -> bool:
        """Reload configuration from file."""
        if self._path is None:
            return False

        try:
            new_config = self._load_from_file(self._path)
        except ConfigurationException as e:
            logger.error("Failed to reload SLA config, keeping previous policy", extra=e.details)
            return False

        with self._lock:
            self._config = new_config
        logger.info("SLA configuration reloaded successfully")
        return True

    def start_watching(self) -> None:
        """
        Start watching the configuration file for changes.

        Skips watching if the file doesn't exist or the platform has no
        usable file notification backend.
        """
        if self._path is None:
            raise RuntimeError("Config not loaded. Call load() first.")

        if not self._path.exists():
            logger.info("SLA config file doesn't exist, skipping file watch", extra={"path": str(self._path)})
            return

        try:
            self._observer = Observer()
            handler = ConfigFileHandler(self, self._path)
            self._observer.schedule(handler, str(self._path.parent.resolve()), recursive=False)
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
    def config(self) -> SLAConfig:
        """Get current configuration."""
        with self._lock:
            if self._config is None:
                raise RuntimeError("SLA configuration not loaded")
            return self._config

    def get_config(self) -> SLAConfig:
        return self.config


class SweepScheduler(ISweepScheduler):
    """
    Wrapper for APScheduler running the SLA sweep.

    Manages the lifecycle of the scheduler and its single job.
    """

    def __init__(self, misfire_grace_seconds: int = 60):
        self._misfire_grace = misfire_grace_seconds
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._interval: Optional[int] = None

    def start(
        self,
        job: Callable[[], Awaitable[None]],
        interval_seconds: int,
        run_immediately: bool = True,
    ) -> None:
        """Start the scheduler with the given coroutine job (must run inside the event loop)."""
        if self.is_running:
            logger.warning("SLA scheduler already running")
            return

        # Passing next_run_time=None would add the job paused
        first_run = {"next_run_time": datetime.now(timezone.utc)} if run_immediately else {}

        self._scheduler = AsyncIOScheduler(timezone=timezone.utc)
        self._scheduler.add_job(
            job,
            "interval",
            seconds=interval_seconds,
            id=SWEEP_JOB_ID,
            name="SLA Sweep",
            misfire_grace_time=self._misfire_grace,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
            **first_run,
        )
        self._scheduler.start()
        self._interval = interval_seconds

        logger.info("SLA scheduler started", extra={"interval_seconds": interval_seconds})

    async def stop(self) -> None:
        """Stop the scheduler; the sweep lock in the monitor covers a run in flight."""
        if not self.is_running:
            return

        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        self._interval = None
        logger.info("SLA scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    @property
    def interval_seconds(self) -> Optional[int]:
        return self._interval
