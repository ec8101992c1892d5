"""Background watcher keeping leases in sync with the dnsmasq lease file"""
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable, Optional
import os
import threading

from inotify_simple import INotify, flags

from dnsmasq_dhcp.logger import get_logger
from dnsmasq_dhcp.services.subnet_service import SubnetService

logger = get_logger("lease_watcher")

WATCH_FLAGS = flags.MODIFY | flags.MOVED_TO | flags.CLOSE_WRITE
BACKOFF_SECONDS = 60
POLL_INTERVAL_MS = 1000


class WatcherState(str, Enum):
    IDLE = "idle"
    WATCHING = "watching"
    RELOADING = "reloading"
    BACKOFF = "backoff"
    STOPPED = "stopped"


class LeaseQueueOverflow(Exception):
    """The kernel dropped change notifications."""


class LeaseWatcher:
    """Watch the lease file's directory and swap in fresh leases on change.

    dnsmasq rewrites its lease file in place or through a rename, so the
    parent directory is watched and events are filtered by file name. A
    notification queue overflow backs off and re-subscribes forever; any
    other error stops the watcher for good.
    """

    def __init__(
        self,
        service: SubnetService,
        backoff_seconds: int = BACKOFF_SECONDS,
        inotify_factory: Callable[[], INotify] = INotify,
        sleep: Optional[Callable[[float], object]] = None,
        poll_interval_ms: int = POLL_INTERVAL_MS,
    ):
        self.service = service
        self.backoff_seconds = backoff_seconds
        self.poll_interval_ms = poll_interval_ms
        self._inotify_factory = inotify_factory
        self._stop_event = threading.Event()
        self._sleep = sleep or self._stop_event.wait
        self._thread: Optional[threading.Thread] = None
        self._resync = False
        self.state = WatcherState.IDLE

    @property
    def lease_file(self) -> Path:
        return self.service.lease_file

    def start(self):
        """Start watching in a daemon thread."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self.state = WatcherState.WATCHING
        self._thread = threading.Thread(target=self.run, name="lease-watcher", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0):
        """Stop watching. Safe to call repeatedly or before start()."""
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        self._thread = None
        self.state = WatcherState.STOPPED

    def run(self):
        """Watch loop; returns when stopped or on a fatal error."""
        logger.info(f"Watching leases in file {self.lease_file}")
        while not self._stop_event.is_set():
            try:
                self._watch()
            except LeaseQueueOverflow:
                self.state = WatcherState.BACKOFF
                logger.warning(
                    f"Queue overflow occurred when monitoring {self.lease_file}, "
                    f"restarting monitoring in {self.backoff_seconds}s"
                )
                self._resync = True
                self._sleep(self.backoff_seconds)
            except Exception as e:
                self.state = WatcherState.STOPPED
                logger.error(f"Error occurred when monitoring {self.lease_file}: {e}", exc_info=True)
                return
        self.state = WatcherState.STOPPED

    def _watch(self):
        lease_file = self.lease_file
        inotify = self._inotify_factory()
        try:
            inotify.add_watch(str(lease_file.parent), WATCH_FLAGS)
            self.state = WatcherState.WATCHING

            # Changes may have been missed while the queue overflowed
            if self._resync:
                self._resync = False
                self._reload()

            while not self._stop_event.is_set():
                events = inotify.read(timeout=self.poll_interval_ms)
                if self._matches(events, lease_file):
                    self._reload()
        finally:
            inotify.close()

    @staticmethod
    def _matches(events: Iterable, lease_file: Path) -> bool:
        """Check whether a batch of events touches the lease file."""
        matched = False
        for event in events:
            if event.mask & flags.Q_OVERFLOW:
                raise LeaseQueueOverflow()
            if os.path.join(str(lease_file.parent), event.name) == str(lease_file):
                matched = True
        return matched

    def _reload(self):
        self.state = WatcherState.RELOADING
        self.service.reload_leases()
        self.state = WatcherState.WATCHING
