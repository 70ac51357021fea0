"""Development mode - watch a plugin's directory and hot-reload it on change."""
from __future__ import annotations

import asyncio
import logging
import threading
from pathlib import Path
from typing import Callable, Optional, TYPE_CHECKING

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from harness.plugins.models import PluginLoadResult

if TYPE_CHECKING:
    from harness.plugins.loader import PluginLoader

logger = logging.getLogger(__name__)

DEBOUNCE_MS = 300
WATCHED_SUFFIXES = (".py", ".json")


class _PluginChangeHandler(FileSystemEventHandler):
    """Watchdog handler that debounces source changes into one reload."""

    def __init__(self, watcher: PluginDevWatcher):
        super().__init__()
        self._watcher = watcher
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()

    def on_any_event(self, event):
        if event.is_directory:
            return
        src = str(getattr(event, "src_path", ""))
        if "__pycache__" in src or not src.endswith(WATCHED_SUFFIXES):
            return
        self._debounce()

    def _debounce(self):
        with self._lock:
            if self._timer:
                self._timer.cancel()
            self._timer = threading.Timer(self._watcher.debounce_ms / 1000.0, self._watcher.trigger_reload)
            self._timer.daemon = True
            self._timer.start()

    def cancel(self):
        with self._lock:
            if self._timer:
                self._timer.cancel()
                self._timer = None


class PluginDevWatcher:
    """Watches one plugin directory and reloads the plugin through the loader.

    Filesystem events arrive on watchdog's thread; the reload itself is
    scheduled onto the event loop that owns the registry.
    """

    def __init__(
        self,
        loader: PluginLoader,
        plugin_name: str,
        plugin_dir: Path,
        loop: asyncio.AbstractEventLoop,
        debounce_ms: int = DEBOUNCE_MS,
        on_reload: Optional[Callable[[PluginLoadResult], None]] = None,
    ):
        self.loader = loader
        self.plugin_name = plugin_name
        self.plugin_dir = Path(plugin_dir)
        self.loop = loop
        self.debounce_ms = debounce_ms
        self.on_reload = on_reload
        self._observer = None
        self._handler: Optional[_PluginChangeHandler] = None

    @property
    def running(self) -> bool:
        return self._observer is not None

    def start(self) -> None:
        if self._observer is not None:
            return
        self._handler = _PluginChangeHandler(self)
        self._observer = Observer()
        self._observer.schedule(self._handler, str(self.plugin_dir), recursive=True)
        self._observer.daemon = True
        self._observer.start()
        logger.info(f"Watching {self.plugin_dir} for changes to plugin '{self.plugin_name}'")

    def stop(self) -> None:
        if self._handler:
            self._handler.cancel()
            self._handler = None
        if self._observer:
            self._observer.stop()
            self._observer.join(timeout=2)
            self._observer = None
        logger.info(f"Stopped watching plugin '{self.plugin_name}'")

    def trigger_reload(self) -> None:
        """Schedule a reload on the event loop. Safe to call from any thread."""
        future = asyncio.run_coroutine_threadsafe(self.reload(), self.loop)
        future.add_done_callback(self._log_failure)

    def _log_failure(self, future) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error(f"[plugin:{self.plugin_name}] Hot reload crashed: {error}")

    async def reload(self) -> PluginLoadResult:
        logger.info(f"Change detected, reloading plugin '{self.plugin_name}'")
        result = await self.loader.reload_plugin(self.plugin_name)
        for error in result.errors:
            logger.error(f"[plugin:{error.plugin_name}] Reload failed ({error.phase.value}): {error.error}")
        if self.on_reload:
            try:
                self.on_reload(result)
            except Exception as e:
                logger.error(f"Reload callback failed: {e}")
        return result
