import datetime as dt
import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Iterator, Optional

from .db import open_readonly
from .errors import HandleUnavailableError

logger = logging.getLogger(__name__)


class LiveHandle:
    """
    A read-only connection to one merged database file.

    Queries take a lease on the handle. A retired handle is closed (and
    optionally its file removed) once the last lease is released, so queries
    that captured it before a swap finish against the old data.
    """

    def __init__(self, group: str, path: str, conn: sqlite3.Connection,
                 source_count: Optional[int] = None):
        self.group = group
        self.path = path
        self.conn = conn
        self.source_count = source_count
        self.activated_at = dt.datetime.now(dt.timezone.utc)
        self._leases = 0
        self._retired = False
        self._remove_file = False
        self._closed = False
        self._lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def leases(self) -> int:
        return self._leases

    def acquire(self):
        with self._lock:
            self._leases += 1

    def release(self):
        with self._lock:
            self._leases -= 1
            should_close = self._retired and self._leases == 0
        if should_close:
            self._close()

    def retire(self, remove_file: bool = False):
        with self._lock:
            self._retired = True
            self._remove_file = remove_file
            should_close = self._leases == 0
        if should_close:
            self._close()

    def _close(self):
        with self._lock:
            if self._closed:
                return
            self._closed = True
        try:
            self.conn.close()
        except sqlite3.Error as e:
            logger.warning(f"Closing handle for {self.group} ({self.path}) failed: {e}")
        if self._remove_file:
            try:
                os.remove(self.path)
                logger.info(f"Removed retired database {self.path}")
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning(f"Could not remove retired database {self.path}: {e}")


@dataclass
class HandleSnapshot:
    group: str
    path: str
    activated_at: dt.datetime
    source_count: Optional[int]


class ConnectionManager:
    """Owns the current read-only handle for every group."""

    def __init__(self, remove_retired_files: bool = True):
        self.remove_retired_files = remove_retired_files
        self._handles: Dict[str, LiveHandle] = {}
        self._lock = threading.Lock()

    def activate_group(self, group: str, new_path: str, source_count: Optional[int] = None) -> bool:
        """
        Point ``group`` at ``new_path``. Returns False (and changes nothing)
        when the file does not exist or cannot be opened.
        """
        if not new_path or not os.path.isfile(new_path):
            logger.warning(f"Cannot activate {group}: {new_path} does not exist")
            return False
        try:
            conn = open_readonly(new_path)
        except sqlite3.Error as e:
            logger.error(f"Cannot activate {group}: opening {new_path} failed: {e}")
            return False

        handle = LiveHandle(group, new_path, conn, source_count=source_count)
        with self._lock:
            previous = self._handles.get(group)
            self._handles[group] = handle
        if previous is not None:
            remove = self.remove_retired_files and os.path.abspath(previous.path) != os.path.abspath(new_path)
            previous.retire(remove_file=remove)
        logger.info(f"Activated {group} -> {new_path}")
        return True

    def has_handle(self, group: str) -> bool:
        with self._lock:
            return group in self._handles

    @contextmanager
    def lease(self, group: str) -> Iterator[LiveHandle]:
        with self._lock:
            handle = self._handles.get(group)
            if handle is None:
                raise HandleUnavailableError(group)
            handle.acquire()
        try:
            yield handle
        finally:
            handle.release()

    def snapshot(self, group: str) -> Optional[HandleSnapshot]:
        with self._lock:
            handle = self._handles.get(group)
        if handle is None:
            return None
        return HandleSnapshot(group, handle.path, handle.activated_at, handle.source_count)

    def current_path(self, group: str) -> Optional[str]:
        snap = self.snapshot(group)
        return snap.path if snap else None

    def close_all(self):
        with self._lock:
            handles = list(self._handles.values())
            self._handles.clear()
        for handle in handles:
            handle.retire(remove_file=False)
