"""File system watcher for sync target files.

This module provides:
- FileWatcher: one watchdog watch per parent directory, shared by every
  target whose local file lives there
- Debouncing: rapid events on the same target coalesce into one callback

Directories are watched instead of files because editors often save by
writing a temp file and renaming it over the original.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

if TYPE_CHECKING:
    from watchdog.observers.api import BaseObserver, ObservedWatch

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[str], None]

# Open/close notifications carry no content change
_CONTENT_EVENTS = frozenset({"created", "modified", "moved", "deleted"})


def _decode(path: str | bytes) -> str:
    if isinstance(path, bytes):
        return path.decode("utf-8", errors="replace")
    return path


class DirectoryEventHandler(FileSystemEventHandler):
    """Routes events in one directory to the targets whose file matches."""

    def __init__(self, directory: Path, on_match: ChangeCallback) -> None:
        super().__init__()
        self._directory = directory
        self._on_match = on_match
        self._lock = threading.Lock()
        self._files: dict[str, str] = {}  # file name -> target id

    def add(self, file_name: str, target_id: str) -> None:
        with self._lock:
            self._files[file_name] = target_id

    def remove(self, target_id: str) -> bool:
        """Unregister a target. Returns True when no targets remain."""
        with self._lock:
            for name, tid in list(self._files.items()):
                if tid == target_id:
                    del self._files[name]
            return not self._files

    def on_any_event(self, event: FileSystemEvent) -> None:
        """Match changed files by exact name (both ends of a move)."""
        if event.is_directory or event.event_type not in _CONTENT_EVENTS:
            return

        names = {Path(_decode(event.src_path)).name}
        dest = getattr(event, "dest_path", "")
        if dest:
            names.add(Path(_decode(dest)).name)

        with self._lock:
            matched = [self._files[name] for name in names if name in self._files]

        for target_id in matched:
            self._on_match(target_id)


@dataclass
class _DirectoryWatch:
    handler: DirectoryEventHandler
    watch: ObservedWatch
    targets: set[str] = field(default_factory=set)


class FileWatcher:
    """Watches target files and reports changes by target id.

    Every start_watching() is paired with teardown in stop_watching() or
    stop_all(); the last target leaving a directory unschedules its watch.
    """

    def __init__(
        self,
        callback: ChangeCallback,
        debounce_s: float = 0.5,
        observer: BaseObserver | None = None,
    ) -> None:
        """Initialize the file watcher.

        Args:
            callback: Called with the target id after events settle.
            debounce_s: Quiet period before the callback fires.
            observer: Watchdog observer (defaults to the platform observer).
        """
        self._callback = callback
        self._debounce_s = debounce_s
        self._observer_factory: Callable[[], BaseObserver] = (lambda: observer) if observer else Observer
        self._observer = self._observer_factory()
        self._lock = threading.RLock()
        self._dirs: dict[Path, _DirectoryWatch] = {}
        self._target_dirs: dict[str, Path] = {}
        self._timers: dict[str, threading.Timer] = {}
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def watched_targets(self) -> set[str]:
        with self._lock:
            return set(self._target_dirs)

    def start(self) -> None:
        """Start the observer thread."""
        with self._lock:
            if self._running:
                return
            self._observer.start()
            self._running = True

    def start_watching(self, target_id: str, file_path: Path) -> None:
        """Watch a target's local file, replacing any previous registration.

        Raises:
            OSError: If the parent directory cannot be watched.
        """
        file_path = Path(file_path)
        directory = file_path.parent.resolve()

        with self._lock:
            self.stop_watching(target_id)
            self.start()

            entry = self._dirs.get(directory)
            if entry is None:
                directory.mkdir(parents=True, exist_ok=True)
                handler = DirectoryEventHandler(directory, self._schedule)
                watch = self._observer.schedule(handler, str(directory), recursive=False)
                entry = _DirectoryWatch(handler=handler, watch=watch)
                self._dirs[directory] = entry

            entry.handler.add(file_path.name, target_id)
            entry.targets.add(target_id)
            self._target_dirs[target_id] = directory

        logger.debug("Started watching %s for %s", file_path, target_id)

    def stop_watching(self, target_id: str) -> None:
        """Stop watching a target and cancel its pending callback."""
        with self._lock:
            timer = self._timers.pop(target_id, None)
            if timer:
                timer.cancel()

            directory = self._target_dirs.pop(target_id, None)
            if directory is None:
                return

            entry = self._dirs[directory]
            entry.targets.discard(target_id)
            if entry.handler.remove(target_id) or not entry.targets:
                self._observer.unschedule(entry.watch)
                del self._dirs[directory]
                logger.debug("Stopped watching directory %s", directory)

    def stop_all(self) -> None:
        """Tear down every registration and stop the observer."""
        with self._lock:
            for target_id in list(self._target_dirs):
                self.stop_watching(target_id)
            if self._running:
                self._observer.stop()
                running = True
            else:
                running = False
            self._running = False

        if running:
            self._observer.join(timeout=5.0)
            # Observer threads cannot be restarted
            with self._lock:
                self._observer = self._observer_factory()

    def _schedule(self, target_id: str) -> None:
        """Restart the debounce timer for a target."""
        with self._lock:
            if target_id not in self._target_dirs:
                return
            existing = self._timers.get(target_id)
            if existing:
                existing.cancel()
            timer = threading.Timer(self._debounce_s, self._fire, args=(target_id,))
            timer.daemon = True
            self._timers[target_id] = timer
            timer.start()

    def _fire(self, target_id: str) -> None:
        with self._lock:
            self._timers.pop(target_id, None)
            if target_id not in self._target_dirs:
                return
        logger.debug("Local file changed for %s", target_id)
        self._callback(target_id)

    def __enter__(self) -> FileWatcher:
        self.start()
        return self

    def __exit__(self, *args: object) -> None:
        self.stop_all()
