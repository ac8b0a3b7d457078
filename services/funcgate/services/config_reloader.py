"""
Function tree reloader for hot reload functionality.

Periodically snapshots the modification times of every function file and
rebuilds the route table when any file is added, removed or changed. A
failed rebuild keeps the previous table.
"""

import logging
import threading
from typing import Dict, Optional

from services.funcgate.services.function_registry import FunctionRegistry

from ..config import GatewayConfig

logger = logging.getLogger("funcgate.config_reloader")

MIN_INTERVAL = 0.5


class FunctionTreeWatcher:
    """
    Watches the functions root using per-file modification times.
    """

    def __init__(self, registry: FunctionRegistry):
        self.registry = registry
        self._snapshot: Optional[Dict[str, float]] = None
        self._lock = threading.RLock()

    def has_changed(self) -> bool:
        """
        Returns:
            True if any function file was added, removed or modified since the last check
        """
        try:
            current = self.registry.snapshot()
        except OSError as e:
            logger.error(f"Error scanning functions root {self.registry.functions_root}: {e}")
            return False
        with self._lock:
            if self._snapshot is None:
                self._snapshot = current
                return False
            if current != self._snapshot:
                self._snapshot = current
                return True
            return False

    def update_snapshot(self) -> None:
        try:
            current = self.registry.snapshot()
        except OSError:
            current = None
        with self._lock:
            self._snapshot = current


class ConfigReloader:
    """
    Manages hot reloading of the function route table.
    """

    def __init__(self, registry: FunctionRegistry, config: GatewayConfig):
        """
        Args:
            registry: FunctionRegistry whose table is rebuilt on change
            config: GatewayConfig instance
        """
        self.registry = registry
        self._enabled = config.CONFIG_RELOAD_ENABLED
        self._interval = max(MIN_INTERVAL, config.CONFIG_RELOAD_INTERVAL)
        self._watcher = FunctionTreeWatcher(registry)

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._reload_lock = threading.RLock()
        self._initialized = False

    def initialize(self) -> None:
        """
        Record the current file modification times.
        Must be called before start().
        """
        self._watcher.update_snapshot()
        self._initialized = True
        logger.info(
            f"Function reloader initialized (interval={self._interval}s, enabled={self._enabled})"
        )

    def start(self) -> None:
        if not self._enabled:
            logger.info("Function reloader is disabled")
            return

        if not self._initialized:
            self.initialize()

        if self._thread is not None and self._thread.is_alive():
            logger.warning("Function reloader already running")
            return

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, daemon=True, name="function-reloader")
        self._thread.start()
        logger.info("Function reloader started")

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=self._interval + 1.0)
            self._thread = None
            logger.info("Function reloader stopped")

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.check_and_reload()
            except Exception as e:
                logger.error(f"Error in function reload loop: {e}")

            self._stop_event.wait(timeout=self._interval)

    def check_and_reload(self) -> bool:
        """
        Rebuild the route table if the function tree changed.

        Returns:
            True when a reload happened and succeeded
        """
        with self._reload_lock:
            if not self._watcher.has_changed():
                return False
            logger.info(f"Detected changes in {self.registry.functions_root}, reloading...")
            reloaded = self.registry.reload()
            if reloaded:
                logger.info("Function definitions reloaded successfully")
            return reloaded
