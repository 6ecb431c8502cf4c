"""
Governance External Integrations
================================

Runtime collaborators outside the request path:
- YAML SLA policy file with watchdog hot reload
- APScheduler job for proactive reconciliation
"""

import threading
from pathlib import Path
from typing import Awaitable, Callable, Optional

import yaml
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from pydantic import ValidationError
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from core import ConfigurationException
from governance.application import ISLAPolicyProvider
from governance.domain import SLAPolicy
from shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class PolicyFileHandler(FileSystemEventHandler):
    """Watchdog event handler for SLA policy file changes."""

    def __init__(self, policy_manager: "SLAPolicyManager", policy_path: Path):
        self.policy_manager = policy_manager
        self.policy_path = policy_path
        super().__init__()

    def on_modified(self, event):
        """Handle file modification event."""
        if event.is_directory:
            return

        if Path(event.src_path).resolve() == self.policy_path.resolve():
            logger.info("SLA policy file changed", extra={"path": str(event.src_path)})
            self.policy_manager.reload()


class SLAPolicyManager(ISLAPolicyProvider):
    """
    Thread-safe SLA policy holder with hot-reload support.

    A reload that fails validation keeps the previous policy in force, so a
    bad edit to the file never takes the SLA clocks down.
    """

    def __init__(self, policy: Optional[SLAPolicy] = None):
        self._policy: Optional[SLAPolicy] = policy
        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        self._observer = None

    def load(self, path: Path) -> SLAPolicy:
        """
        Initial policy load.

        Raises:
            ConfigurationException: If the file exists but is invalid
        """
        self._path = Path(path)
        try:
            policy = self._load_from_file(self._path)
        except (yaml.YAMLError, ValidationError, TypeError) as e:
            raise ConfigurationException(
                f"Invalid SLA policy file: {self._path}",
                {"error": str(e)}
            ) from e
        with self._lock:
            self._policy = policy
        return policy

    def _load_from_file(self, path: Path) -> SLAPolicy:
        """Load and parse the YAML policy file."""
        if not path.exists():
            logger.warning("SLA policy file not found, using defaults", extra={"path": str(path)})
            return SLAPolicy()

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        return SLAPolicy(**data)

    def reload(self) -> bool:
        """Reload policy from file. Returns False and keeps the old policy on error."""
        if self._path is None:
            return False

        try:
            new_policy = self._load_from_file(self._path)
        except (yaml.YAMLError, ValidationError, TypeError, OSError) as e:
            logger.error(
                "Failed to reload SLA policy; keeping previous policy",
                extra={"path": str(self._path), "error": str(e)}
            )
            return False

        with self._lock:
            self._policy = new_policy
        logger.info(
            "SLA policy reloaded",
            extra={
                "acceptance_sla_hours": new_policy.acceptance_sla_hours,
                "notification_sla_hours": new_policy.notification_sla_hours,
                "outreach_sla_hours": new_policy.outreach_sla_hours,
            }
        )
        return True

    def start_watching(self) -> None:
        """
        Start watching the policy file for changes.

        Skipped when the file does not exist or the platform cannot watch it.
        """
        if self._path is None:
            raise RuntimeError("Policy not loaded. Call load() first.")

        if not self._path.exists():
            logger.info("SLA policy file doesn't exist, skipping file watch", extra={"path": str(self._path)})
            return

        try:
            self._observer = Observer()
            handler = PolicyFileHandler(self, self._path)
            self._observer.schedule(handler, str(self._path.parent), recursive=False)
            self._observer.start()
            logger.info("Started watching SLA policy file", extra={"path": str(self._path)})
        except OSError as e:
            logger.warning("File watching not available, using static policy", extra={"error": str(e)})
            self._observer = None

    def stop_watching(self) -> None:
        """Stop watching the policy file (safe to call even if not watching)."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

    def get_policy(self) -> SLAPolicy:
        with self._lock:
            if self._policy is None:
                raise RuntimeError("SLA policy not loaded")
            return self._policy

    @property
    def policy(self) -> SLAPolicy:
        return self.get_policy()


class ReconciliationScheduler:
    """
    Wrapper for APScheduler running the proactive reconciliation pass.

    Manages the lifecycle of the scheduler and its single job.
    """

    def __init__(self, interval_seconds: int = 300):
        self.interval_seconds = interval_seconds
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    async def start(self, job_func: Callable[[], Awaitable[None]]) -> None:
        """Start the scheduler with the given job function."""
        if self._running:
            logger.warning("Reconciliation scheduler already running")
            return

        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            job_func,
            "interval",
            seconds=self.interval_seconds,
            id="governance_reconciliation",
            name="Governance Reconciliation Job",
            misfire_grace_time=60,
            max_instances=1,
            replace_existing=True
        )
        self._scheduler.start()
        self._running = True

        logger.info(
            "Reconciliation scheduler started",
            extra={"interval_seconds": self.interval_seconds}
        )

    async def stop(self) -> None:
        """Stop the scheduler gracefully."""
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=False)
        self._running = False
        logger.info("Reconciliation scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._running
