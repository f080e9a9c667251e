"""
Content-addressed cache for rendered images.

Each entry is one file named ``<sha256 hex><extension>`` in the cache
directory; its presence is the only hit signal and its mtime is its age.
"""

import os
import re
import time
import hashlib
import tempfile
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Set, Union

from pbrtapi.config.constants import (
    CACHE_MAX_AGE_DAYS,
    CACHE_SWEEP_INTERVAL_HOURS,
    EXR_EXT,
    STALE_PARTIAL_SECONDS,
)
from pbrtapi.utils.logger import RichLogger

logger = RichLogger.get_logger("pbrtapi.utils.cache")

PARTIAL_SUFFIX = ".partial"
_FINGERPRINT_RE = re.compile(r"^[0-9a-f]{64}$")

HIT = "hit"
MISS = "miss"
SHARED = "shared"


@dataclass
class CacheResult:
    data: bytes
    fingerprint: str
    status: str

    @property
    def hit(self) -> bool:
        return self.status != MISS


class RenderCache:
    """
    Map scene fingerprints to rendered image bytes and deduplicate renders.

    Concurrent ``get_or_render`` calls for the same fingerprint share one
    render: the first caller owns a ``Future`` and the others wait on it.
    """

    def __init__(
        self,
        cache_dir: Union[str, os.PathLike],
        extension: str = EXR_EXT,
        max_age: float = CACHE_MAX_AGE_DAYS * 24 * 3600,
    ):
        self.cache_dir = Path(cache_dir)
        self.extension = extension
        self.max_age = max_age

        self._lock = threading.Lock()
        self._in_flight: Dict[str, Future] = {}
        self._writing: Set[str] = set()
        self._stop_event = threading.Event()
        self._sweeper: Optional[threading.Thread] = None

        self.cache_dir.mkdir(parents=True, exist_ok=True)
        logger.debug(f"Render cache at {self.cache_dir} (max age {self.max_age:.0f}s)")

    @staticmethod
    def fingerprint(data: bytes) -> str:
        """SHA-256 hex digest of exactly the submitted bytes."""
        return hashlib.sha256(data).hexdigest()

    def entry_path(self, fingerprint: str) -> Path:
        if not _FINGERPRINT_RE.match(fingerprint or ""):
            raise ValueError(f"Invalid fingerprint: {fingerprint!r}")
        return self.cache_dir / f"{fingerprint}{self.extension}"

    def contains(self, fingerprint: str) -> bool:
        return self.entry_path(fingerprint).is_file()

    def lookup(self, fingerprint: str) -> Optional[bytes]:
        """
        Return the cached bytes for a fingerprint.

        Args:
            fingerprint: SHA-256 hex digest

        Returns:
            The entry's bytes, or None on a miss
        """
        path = self.entry_path(fingerprint)
        try:
            data = path.read_bytes()
        except FileNotFoundError:
            logger.debug(f"Cache miss for {fingerprint[:12]}")
            return None
        logger.debug(f"Cache hit for {fingerprint[:12]} ({len(data)} bytes)")
        return data

    def store(self, fingerprint: str, data: bytes) -> Path:
        """
        Publish an entry atomically.

        The bytes go to a temporary file in the cache directory which is then
        renamed over the entry name, so ``lookup`` never sees a partial file.

        Args:
            fingerprint: SHA-256 hex digest
            data: Rendered image bytes

        Returns:
            Path of the stored entry
        """
        path = self.entry_path(fingerprint)
        with self._lock:
            self._writing.add(fingerprint)
        try:
            fd, tmp_path = tempfile.mkstemp(prefix=f".{fingerprint}.", suffix=PARTIAL_SUFFIX, dir=str(self.cache_dir))
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(data)
                os.replace(tmp_path, path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        finally:
            with self._lock:
                self._writing.discard(fingerprint)
        logger.debug(f"Stored cache entry {path.name} ({len(data)} bytes)")
        return path

    def discard(self, fingerprint: str) -> bool:
        """
        Remove one entry unless it is being rendered or written.

        Returns:
            True if a file was removed
        """
        path = self.entry_path(fingerprint)
        with self._lock:
            if fingerprint in self._writing or fingerprint in self._in_flight:
                logger.debug(f"Not discarding {fingerprint[:12]}, it is in use")
                return False
            try:
                path.unlink()
            except FileNotFoundError:
                return False
        logger.debug(f"Discarded cache entry {path.name}")
        return True

    def get_or_render(self, fingerprint: str, render_fn: Callable[[], bytes]) -> CacheResult:
        """
        Return the cached image or render it, once per fingerprint.

        Args:
            fingerprint: SHA-256 hex digest of the submitted scene
            render_fn: Callable producing the image bytes on a miss

        Returns:
            CacheResult whose status is ``hit``, ``miss`` or ``shared``

        Raises:
            Exception: Whatever ``render_fn`` raised, in the owner and in every waiter
        """
        data = self.lookup(fingerprint)
        if data is not None:
            return CacheResult(data, fingerprint, HIT)

        with self._lock:
            future = self._in_flight.get(fingerprint)
            owner = future is None
            if owner:
                future = Future()
                self._in_flight[fingerprint] = future

        if not owner:
            logger.debug(f"Waiting for in-flight render of {fingerprint[:12]}")
            return CacheResult(future.result(), fingerprint, SHARED)

        try:
            # Another owner may have published between the first lookup and now
            data = self.lookup(fingerprint)
            status = HIT
            if data is None:
                status = MISS
                data = render_fn()
                try:
                    self.store(fingerprint, data)
                except OSError as e:
                    logger.warning(f"Could not store cache entry for {fingerprint[:12]}: {e}")
            future.set_result(data)
            return CacheResult(data, fingerprint, status)
        except BaseException as e:
            future.set_exception(e)
            raise
        finally:
            with self._lock:
                self._in_flight.pop(fingerprint, None)

    def sweep(self, max_age: Optional[float] = None, now: Optional[float] = None) -> int:
        """
        Delete entries older than ``max_age`` seconds.

        Entries currently being written are skipped, and leftover temporary
        files from interrupted writes are removed once they are stale.

        Args:
            max_age: Retention in seconds, defaults to the cache's max age
            now: Reference time, defaults to the current time

        Returns:
            Number of entries removed
        """
        max_age = self.max_age if max_age is None else max_age
        now = time.time() if now is None else now
        cutoff = now - max_age
        removed = 0

        try:
            entries = list(os.scandir(self.cache_dir))
        except OSError as e:
            logger.warning(f"Cache sweep could not list {self.cache_dir}: {e}")
            return 0

        for entry in entries:
            try:
                if not entry.is_file():
                    continue
                mtime = entry.stat().st_mtime
                if entry.name.endswith(PARTIAL_SUFFIX):
                    if mtime < now - STALE_PARTIAL_SECONDS:
                        os.unlink(entry.path)
                        logger.debug(f"Removed stale temporary file {entry.name}")
                    continue
                if not entry.name.endswith(self.extension):
                    continue
                fingerprint = entry.name[:-len(self.extension)]
                with self._lock:
                    if fingerprint in self._writing or mtime >= cutoff:
                        continue
                    os.unlink(entry.path)
                removed += 1
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning(f"Cache sweep failed on {entry.name}: {e}")

        if removed:
            logger.info(f"Cache sweep removed {removed} entries older than {max_age / 86400:.1f} days")
        else:
            logger.debug("Cache sweep removed nothing")
        return removed

    def clear(self) -> int:
        """Remove every entry; returns the number removed."""
        return self.sweep(max_age=-1)

    def stats(self) -> Dict[str, Any]:
        """
        Get statistics about the cache.

        Returns:
            Dictionary with cache statistics
        """
        count = 0
        total_size = 0
        oldest = None
        newest = None
        for path in self.cache_dir.glob(f"*{self.extension}"):
            try:
                stat = path.stat()
            except FileNotFoundError:
                continue
            count += 1
            total_size += stat.st_size
            oldest = stat.st_mtime if oldest is None else min(oldest, stat.st_mtime)
            newest = stat.st_mtime if newest is None else max(newest, stat.st_mtime)

        with self._lock:
            in_flight = len(self._in_flight)

        return {
            "directory": str(self.cache_dir),
            "entries": count,
            "total_size_bytes": total_size,
            "total_size_mb": total_size / (1024 * 1024),
            "oldest_entry": datetime.fromtimestamp(oldest).isoformat() if oldest else "N/A",
            "newest_entry": datetime.fromtimestamp(newest).isoformat() if newest else "N/A",
            "in_flight": in_flight,
        }

    def start_sweeper(self, interval: float = CACHE_SWEEP_INTERVAL_HOURS * 3600) -> threading.Thread:
        """Sweep now and then every ``interval`` seconds on a daemon thread."""
        if self._sweeper is not None and self._sweeper.is_alive():
            return self._sweeper
        self._stop_event.clear()

        def run() -> None:
            while True:
                try:
                    self.sweep()
                except OSError as e:
                    logger.warning(f"Background cache sweep failed: {e}")
                if self._stop_event.wait(interval):
                    break

        self._sweeper = threading.Thread(target=run, name="render-cache-sweeper", daemon=True)
        self._sweeper.start()
        logger.debug(f"Started cache sweeper every {interval:.0f}s")
        return self._sweeper

    def stop_sweeper(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout)
            self._sweeper = None
