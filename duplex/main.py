"""Duplex Sync - background agent wiring."""

import logging
import os
import signal
import sys
import threading
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from . import __version__
from .auth import SecureTokenStorage, TokenManager, WorkOSAuthClient
from .config import Config, fallback_access_token
from .parsers import ParserRegistry
from .sync import (
    DuplexApiClient,
    FileChangeEvent,
    FileWatcher,
    SyncEngine,
    SyncStateStore,
    discover_and_watch,
)

__all__ = ["DuplexSyncApp", "SingleInstanceLock", "run_agent"]

logger = logging.getLogger(__name__)


class DuplexSyncApp:
    """Wires the watcher, sync engine and token manager together.

    Handles lifecycle (start / shutdown) and the periodic drain job that
    moves watcher events into the engine and uploads them.
    """

    def __init__(self, config: Optional[Config] = None):
        """Build every component from config (nothing is started yet)."""
        self.config = config or Config.load()

        logger.info(f"Duplex Sync {__version__} starting...")
        logger.info(f"Using API URL: {self.config.api_url}")

        self.registry = ParserRegistry.default()
        self.storage = SecureTokenStorage()
        self.auth_client = WorkOSAuthClient(
            self.config.auth.resolve_client_id(),
            api_url=self.config.auth.workos_api_url,
        )
        self.token_manager = TokenManager(
            self.storage,
            self.auth_client,
            check_interval=self.config.auth.check_interval_seconds,
            refresh_buffer=self.config.auth.refresh_buffer_seconds,
        )
        self.store = SyncStateStore()
        self.api = DuplexApiClient(api_url=self.config.api_url)
        self.engine = SyncEngine(
            store=self.store,
            registry=self.registry,
            client=self.api,
            token_provider=self.token_manager,
            fallback_token=fallback_access_token(),
            workspace_id=self.config.sync.workspace_id,
        )
        self.watcher = FileWatcher(debounce_seconds=self.config.sync.debounce_seconds)
        self.scheduler = BackgroundScheduler()

        self._shutdown_done = False
        self._shutdown_event = threading.Event()

    def discover(self) -> int:
        """Register the configured conversation directories with the watcher."""
        return discover_and_watch(self.watcher, self.registry, self.config)

    def drain(self) -> int:
        """Feed pending watcher events to the engine, then upload.

        Returns:
            Number of files uploaded
        """
        handled = 0
        while True:
            event = self.watcher.try_recv()
            if event is None:
                break
            try:
                self.engine.handle_file_change(event)
                handled += 1
            except OSError as e:
                logger.warning(f"Cannot read {event.path}, dropping change: {e}")

        if handled == 0:
            return 0
        return self.engine.process_all()

    def _drain_job(self) -> None:
        try:
            synced = self.drain()
            if synced:
                logger.info(f"Synced {synced} conversations")
        except Exception:
            logger.exception("Drain cycle failed")

    def sync_once(self) -> int:
        """Queue every discoverable conversation file and upload the changed ones.

        Returns:
            Number of files uploaded
        """
        self.discover()
        for directory in self.watcher.watched_paths():
            parser_name = self.watcher.parser_for(directory)
            parser = self.registry.get(parser_name) if parser_name else None
            if parser is None:
                continue
            for found in parser.discover(directory):
                try:
                    self.engine.handle_file_change(
                        FileChangeEvent(path=found.path, parser_name=parser.name)
                    )
                except OSError as e:
                    logger.warning(f"Cannot read {found.path}: {e}")
        return self.engine.process_all()

    def start(self) -> None:
        """Start watching, refreshing tokens and draining."""
        watched = self.discover()
        if watched == 0:
            logger.warning("No conversation directories found to watch")

        recovered = self.engine.recover(self.watcher.parser_for)
        if recovered:
            logger.info(f"Re-queued {recovered} files from the previous run")

        self.token_manager.start()
        self.watcher.start()

        self.scheduler.add_job(
            self._drain_job,
            trigger=IntervalTrigger(seconds=self.config.sync.poll_interval_seconds),
            id="drain_job",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self.scheduler.start()
        logger.info(
            f"Sync loop started (poll interval: {self.config.sync.poll_interval_seconds}s)"
        )

        # Upload anything recovered right away instead of waiting for a file event
        if recovered:
            self.scheduler.add_job(self.engine.process_all, id="recovery_sync", replace_existing=True)

    def run(self) -> None:
        """Run the agent until SIGINT/SIGTERM."""
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

        try:
            self.start()
            logger.info("Duplex Sync running")
            self._shutdown_event.wait()
        finally:
            self._shutdown()

    def stop(self) -> None:
        """Ask run() to return."""
        self._shutdown_event.set()

    def _signal_handler(self, signum, frame) -> None:
        """Handle shutdown signals."""
        logger.info(f"Received signal {signum}")
        self._shutdown_event.set()

    def _shutdown(self) -> None:
        """Shutdown the application. Safe to call multiple times."""
        if self._shutdown_done:
            return
        self._shutdown_done = True
        logger.info("Shutting down...")

        if self.scheduler.running:
            self.scheduler.shutdown(wait=True)
        self.watcher.stop()
        self.token_manager.stop()
        self.api.close()
        self.auth_client.close()
        self.store.close()

        logger.info("Shutdown complete")

    def __enter__(self) -> "DuplexSyncApp":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self._shutdown()


class SingleInstanceLock:
    """File-based single-instance lock using advisory locking."""

    def __init__(self, path: Optional[str] = None):
        self._file = None
        self._path = path or os.path.join(Config.get_config_dir(), ".duplex-sync.lock")

    def acquire(self) -> bool:
        """Try to acquire the lock. Returns True on success."""
        os.makedirs(os.path.dirname(self._path), exist_ok=True)
        self._file = open(self._path, "a+")  # noqa: SIM115
        try:
            if sys.platform == "win32":
                import msvcrt
                msvcrt.locking(self._file.fileno(), msvcrt.LK_NBLCK, 1)
            else:
                import fcntl
                fcntl.flock(self._file, fcntl.LOCK_EX | fcntl.LOCK_NB)
            self._file.seek(0)
            self._file.truncate(0)
            self._file.write(str(os.getpid()))
            self._file.flush()
            return True
        except OSError:
            self._file.close()
            self._file = None
            return False

    def release(self) -> None:
        """Release the lock and remove the lock file."""
        if self._file:
            try:
                if sys.platform == "win32":
                    import msvcrt
                    try:
                        msvcrt.locking(self._file.fileno(), msvcrt.LK_UNLCK, 1)
                    except OSError:
                        pass
                else:
                    import fcntl
                    fcntl.flock(self._file, fcntl.LOCK_UN)
                self._file.close()
                os.unlink(self._path)
            except OSError:
                pass
            self._file = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False


def run_agent(config: Config) -> bool:
    """Run the background agent under the single-instance lock.

    Returns:
        False if another instance already holds the lock
    """
    lock = SingleInstanceLock()
    if not lock.acquire():
        return False

    try:
        with DuplexSyncApp(config) as app:
            app.run()
    finally:
        lock.release()
    return True
