"""
Event Log Folder Watchdog

Monitors a folder for new decoded battle event logs (JSON lines) and hands
them to registered callbacks once they have finished being written. With
``auto_analyze`` the watcher runs every new log through the analysis
pipeline itself.
"""

import fnmatch
import logging
import queue
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from watchdog.events import FileCreatedEvent, FileModifiedEvent, FileMovedEvent, FileSystemEventHandler
from watchdog.observers import Observer

from salvo.core.config import WatcherConfig

logger = logging.getLogger(__name__)

DEFAULT_WATCH_FOLDER = Path.home() / ".salvo" / "events"


def get_default_watch_folder(config: WatcherConfig | None = None) -> Path:
    """Configured watch folder, or ~/.salvo/events."""
    if config is not None and config.watch_folder:
        return Path(config.watch_folder).expanduser()
    return DEFAULT_WATCH_FOLDER


@dataclass
class EventLogFileEvent:
    """A new or replaced event log, ready for processing."""

    file_path: Path
    event_type: str  # "created" or "moved"
    timestamp: float

    @property
    def filename(self) -> str:
        return self.file_path.name


class EventLogHandler(FileSystemEventHandler):
    """
    Handler for event log file events.

    Filters on the configured glob pattern and queues files once their size
    has stopped changing for ``debounce_seconds``.
    """

    def __init__(
        self,
        event_queue: queue.Queue,
        pattern: str = "*.jsonl",
        min_file_size: int = 64,
        debounce_seconds: float = 2.0,
    ):
        super().__init__()
        self.event_queue = event_queue
        self.pattern = pattern
        self.min_file_size = min_file_size
        self.debounce_seconds = debounce_seconds
        self._pending_files: dict[str, float] = {}
        self._lock = threading.Lock()

    def _is_event_log(self, path: str) -> bool:
        return fnmatch.fnmatch(Path(path).name.lower(), self.pattern.lower())

    def _is_file_ready(self, path: Path) -> bool:
        """The file exists, is large enough and is not growing."""
        if not path.exists():
            return False
        try:
            size = path.stat().st_size
            if size < self.min_file_size:
                return False
            time.sleep(0.2)
            return size == path.stat().st_size
        except OSError:
            return False

    def on_created(self, event: FileCreatedEvent) -> None:
        if event.is_directory or not self._is_event_log(event.src_path):
            return
        logger.debug(f"Event log created: {event.src_path}")
        self._schedule_processing(event.src_path, "created")

    def on_moved(self, event: FileMovedEvent) -> None:
        # Writers that rename a finished temp file into place
        if event.is_directory or not self._is_event_log(event.dest_path):
            return
        logger.debug(f"Event log moved into place: {event.dest_path}")
        self._schedule_processing(event.dest_path, "moved")

    def on_modified(self, event: FileModifiedEvent) -> None:
        if event.is_directory or not self._is_event_log(event.src_path):
            return
        with self._lock:
            if event.src_path in self._pending_files:
                self._pending_files[event.src_path] = time.time()

    def _schedule_processing(self, file_path: str, event_type: str) -> None:
        with self._lock:
            self._pending_files[file_path] = time.time()

        def process_after_debounce():
            time.sleep(self.debounce_seconds)

            with self._lock:
                last_modified = self._pending_files.get(file_path)
                if last_modified is None:
                    return
                if time.time() - last_modified < self.debounce_seconds:
                    threading.Thread(target=process_after_debounce, daemon=True).start()
                    return
                del self._pending_files[file_path]

            path = Path(file_path)
            if self._is_file_ready(path):
                self.event_queue.put(
                    EventLogFileEvent(file_path=path, event_type=event_type, timestamp=time.time())
                )
                logger.info(f"Event log ready for processing: {path.name}")

        threading.Thread(target=process_after_debounce, daemon=True).start()


class EventLogWatcher:
    """
    Watches a folder for new battle event logs.

    Example usage:
        watcher = EventLogWatcher(Path("~/battles").expanduser())

        @watcher.on_new_log
        def handle(event):
            print(f"New battle: {event.file_path}")

        watcher.start()
        ...
        watcher.stop()
    """

    def __init__(
        self,
        watch_folder: Path | None = None,
        config: WatcherConfig | None = None,
    ):
        self.config = config or WatcherConfig()
        self.watch_folder = Path(watch_folder) if watch_folder else get_default_watch_folder(self.config)
        self.recursive = self.config.recursive

        self._event_queue: queue.Queue[EventLogFileEvent] = queue.Queue()
        self._observer: Observer | None = None
        self._callbacks: list[Callable[[EventLogFileEvent], None]] = []
        self._running = False
        self._processor_thread: threading.Thread | None = None

    def on_new_log(self, callback: Callable[[EventLogFileEvent], None]) -> Callable:
        """Decorator registering a callback for new event logs."""
        self._callbacks.append(callback)
        return callback

    def add_callback(self, callback: Callable[[EventLogFileEvent], None]) -> None:
        self._callbacks.append(callback)

    def start(self, blocking: bool = False) -> None:
        """
        Start watching.

        Args:
            blocking: If True, blocks until stop() is called or interrupted
        """
        if self._running:
            logger.warning("Watcher is already running")
            return

        if not self.watch_folder.exists():
            logger.info(f"Creating watch folder: {self.watch_folder}")
            self.watch_folder.mkdir(parents=True, exist_ok=True)

        self._running = True

        handler = EventLogHandler(
            self._event_queue,
            pattern=self.config.pattern,
            min_file_size=self.config.min_file_size_bytes,
            debounce_seconds=self.config.debounce_seconds,
        )
        self._observer = Observer()
        self._observer.schedule(handler, str(self.watch_folder), recursive=self.recursive)

        self._processor_thread = threading.Thread(target=self._process_events, daemon=True)
        self._processor_thread.start()

        self._observer.start()
        logger.info(f"Watching for event logs in: {self.watch_folder}")

        if blocking:
            try:
                while self._running:
                    time.sleep(1)
            except KeyboardInterrupt:
                self.stop()

    def stop(self) -> None:
        self._running = False
        if self._observer:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None
        logger.info("Event log watcher stopped")

    def submit(self, path: Path) -> None:
        """Queue a file for the callbacks as if it had just appeared."""
        self._event_queue.put(EventLogFileEvent(file_path=Path(path), event_type="created", timestamp=time.time()))

    def _dispatch(self, event: EventLogFileEvent) -> None:
        for callback in self._callbacks:
            try:
                callback(event)
            except Exception as e:
                # One bad log must not stop the watcher
                logger.error(f"Error handling {event.filename}: {e}")

    def _process_events(self) -> None:
        while self._running:
            try:
                event = self._event_queue.get(timeout=0.5)
            except queue.Empty:
                continue
            self._dispatch(event)

    def scan_existing(self) -> list[Path]:
        """Event logs already present in the watch folder."""
        if not self.watch_folder.exists():
            return []
        pattern = self.config.pattern
        found = self.watch_folder.rglob(pattern) if self.recursive else self.watch_folder.glob(pattern)
        return sorted(found)

    @property
    def is_running(self) -> bool:
        return self._running


def watch_event_logs(
    folder: Path | None = None,
    callback: Callable[[EventLogFileEvent], None] | None = None,
    config: WatcherConfig | None = None,
    orchestrator=None,
    blocking: bool = True,
) -> EventLogWatcher:
    """
    Start watching for event logs.

    With ``config.auto_analyze`` and an orchestrator, every new log is
    analyzed before ``callback`` sees it; the callback then receives the
    BattleAnalysis instead of the file event.
    """
    config = config or WatcherConfig()
    watcher = EventLogWatcher(folder, config)

    if config.auto_analyze and orchestrator is not None:

        def analyze(event: EventLogFileEvent) -> None:
            analysis = orchestrator.analyze_battle(event.file_path)
            if callback:
                callback(analysis)

        watcher.add_callback(analyze)
    elif callback:
        watcher.add_callback(callback)

    watcher.start(blocking=blocking)
    return watcher
