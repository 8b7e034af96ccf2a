"""Directory-backed avatar cache with TTL expiry and LRU size eviction.

Layout under the cache root::

    meta/<fingerprint>.json   CacheEntry metadata (commit marker)
    svg/<fingerprint>.svg     vector artifact
    ascii/<fingerprint>.txt   character-art artifact

Writes are staged: every file of an entry is written to a temporary file in
its final directory and only renamed into place once all writes succeeded,
metadata last.  The presence of ``meta/<fingerprint>.json`` therefore marks a
complete entry.

Staging files and artifacts without metadata (left by an interrupted or
failed ``set()``) are strays: sweeps delete them once they are older than
``STRAY_MIN_AGE`` and ``evict_by_size()`` deletes them unconditionally.

The cache assumes a single owning process; eviction is not safe to run
concurrently with ``set()``/``get()`` on the same entries.
"""

from __future__ import annotations

import json
import logging
import os
import re
import shutil
import tempfile
import threading
import time
from collections.abc import Callable, Iterator
from datetime import datetime, timedelta, timezone
from pathlib import Path

from termonaut.avatar.errors import CacheExpiredError, CacheIOError, CacheNotFoundError
from termonaut.avatar.models import Avatar, CacheEntry, CacheStats, utcnow

logger = logging.getLogger(__name__)

DEFAULT_TTL = timedelta(days=7)

# Seconds a stray file must be left untouched before a sweep deletes it.
STRAY_MIN_AGE = 300.0

_KEY_RE = re.compile(r"[A-Za-z0-9_-]+")
_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


class SweepTask:
    """Expired-entry sweep running on a daemon thread.

    One-shot by default; with ``interval`` it repeats until cancelled.  The
    owner can ``wait()`` for it, ``cancel()`` it or ``start()`` it again.
    """

    def __init__(
        self,
        sweep: Callable[[threading.Event], int],
        interval: float | None = None,
        name: str = "avatar-cache-sweep",
    ) -> None:
        self._sweep = sweep
        self.interval = interval
        self.name = name
        self.removed = 0
        self.runs = 0
        self._cancelled = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> SweepTask:
        if self._thread is not None and self._thread.is_alive():
            return self
        self._cancelled.clear()
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()
        return self

    def _run(self) -> None:
        while not self._cancelled.is_set():
            try:
                self.removed += self._sweep(self._cancelled)
            except Exception:
                logger.warning("Avatar cache sweep failed", exc_info=True)
            self.runs += 1
            if self.interval is None or self._cancelled.wait(self.interval):
                break

    def cancel(self) -> None:
        """Stop after the current entry (or before the next periodic run)."""
        self._cancelled.set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the task finishes. Returns True if it is done."""
        if self._thread is not None:
            self._thread.join(timeout)
        return self.done

    @property
    def done(self) -> bool:
        return self._thread is None or not self._thread.is_alive()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()


class AvatarCache:
    """Stores avatars on disk keyed by fingerprint.

    Construction creates the directory layout and, unless ``sweep_on_start``
    is false, starts one background sweep of expired entries exposed as
    ``self.sweeper``.
    """

    def __init__(
        self,
        cache_dir: Path | str,
        ttl: timedelta | float = DEFAULT_TTL,
        *,
        sweep_on_start: bool = True,
    ) -> None:
        self.cache_dir = Path(cache_dir).expanduser()
        self.ttl = ttl if isinstance(ttl, timedelta) else timedelta(seconds=ttl)
        self.meta_dir = self.cache_dir / "meta"
        self.svg_dir = self.cache_dir / "svg"
        self.ascii_dir = self.cache_dir / "ascii"
        self._ensure_layout()

        self.sweeper: SweepTask | None = None
        if sweep_on_start:
            self.sweeper = SweepTask(self.sweep_expired).start()

    def _ensure_layout(self) -> None:
        try:
            for directory in (self.meta_dir, self.svg_dir, self.ascii_dir):
                directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise CacheIOError(f"failed to create cache directory {self.cache_dir}: {exc}") from exc

    # -- Paths ----------------------------------------------------------------

    def _check_key(self, fingerprint: str) -> str:
        if not _KEY_RE.fullmatch(fingerprint or ""):
            raise CacheIOError(f"invalid cache key: {fingerprint!r}")
        return fingerprint

    def meta_path(self, fingerprint: str) -> Path:
        return self.meta_dir / f"{self._check_key(fingerprint)}.json"

    def svg_path(self, fingerprint: str) -> Path:
        return self.svg_dir / f"{self._check_key(fingerprint)}.svg"

    def ascii_path(self, fingerprint: str) -> Path:
        return self.ascii_dir / f"{self._check_key(fingerprint)}.txt"

    def _entry_paths(self, fingerprint: str) -> list[Path]:
        return [self.meta_path(fingerprint), self.svg_path(fingerprint), self.ascii_path(fingerprint)]

    def _iter_meta(self) -> Iterator[Path]:
        if not self.meta_dir.is_dir():
            return iter(())
        return iter(sorted(self.meta_dir.glob("*.json")))

    def keys(self) -> list[str]:
        """Fingerprints that currently have a metadata file."""
        return [path.stem for path in self._iter_meta()]

    # -- Metadata I/O ---------------------------------------------------------

    def _read_entry(self, path: Path) -> CacheEntry:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return CacheEntry.from_dict(data)
        except FileNotFoundError:
            raise CacheNotFoundError(f"cache entry not found: {path.stem}") from None
        except (OSError, ValueError, KeyError, TypeError) as exc:
            raise CacheIOError(f"failed to read cache entry {path.name}: {exc}") from exc

    def _stage(self, final: Path, data: bytes) -> Path:
        """Write *data* to a temporary sibling of *final* and return its path."""
        fd, tmp = tempfile.mkstemp(dir=final.parent, prefix=f".{final.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
        except OSError:
            Path(tmp).unlink(missing_ok=True)
            raise
        return Path(tmp)

    def _write_entry(self, path: Path, entry: CacheEntry) -> None:
        payload = json.dumps(entry.to_dict(), indent=2).encode("utf-8")
        try:
            os.replace(self._stage(path, payload), path)
        except OSError as exc:
            raise CacheIOError(f"failed to write cache metadata {path.name}: {exc}") from exc

    def _entry_size(self, fingerprint: str) -> int:
        size = 0
        for path in self._entry_paths(fingerprint):
            try:
                size += path.stat().st_size
            except OSError:
                continue
        return size

    # -- Public API -----------------------------------------------------------

    def get(self, fingerprint: str) -> Avatar:
        """Return the cached avatar and record the access.

        Raises:
            CacheNotFoundError: No entry for *fingerprint*.
            CacheExpiredError: The entry's TTL has passed; it has been removed.
            CacheIOError: The metadata could not be read.
        """
        meta_path = self.meta_path(fingerprint)
        if not meta_path.exists():
            raise CacheNotFoundError(f"cache entry not found: {fingerprint}")

        entry = self._read_entry(meta_path)
        now = utcnow()
        if entry.is_expired(now):
            try:
                self.delete(fingerprint)
            except CacheIOError:
                logger.warning("Failed to remove expired avatar %s", fingerprint, exc_info=True)
            raise CacheExpiredError(f"cache entry expired: {fingerprint}")

        entry.touch(now)
        try:
            self._write_entry(meta_path, entry)
        except CacheIOError:
            logger.warning("Failed to update access stats for %s", fingerprint, exc_info=True)

        svg_data = ascii_art = None
        try:
            svg_data = self.svg_path(fingerprint).read_bytes()
        except OSError:
            pass
        try:
            ascii_art = self.ascii_path(fingerprint).read_text(encoding="utf-8")
        except OSError:
            pass
        return entry.avatar.with_artifacts(svg_data=svg_data, ascii_art=ascii_art)

    def get_entry(self, fingerprint: str) -> CacheEntry:
        """Read the metadata record without touching access statistics."""
        meta_path = self.meta_path(fingerprint)
        if not meta_path.exists():
            raise CacheNotFoundError(f"cache entry not found: {fingerprint}")
        return self._read_entry(meta_path)

    def set(self, fingerprint: str, avatar: Avatar) -> CacheEntry:
        """Store *avatar* under *fingerprint* with a fresh TTL.

        Raises:
            CacheIOError: If any file could not be written.  Metadata is
                renamed into place last and artifacts already renamed are
                removed again, so a failed write never leaves a new entry
                readable.  A previous entry for *fingerprint* keeps its
                metadata and is served from the copies embedded there.
        """
        self._ensure_layout()
        entry = CacheEntry.new(avatar, self.ttl)
        meta_path = self.meta_path(fingerprint)
        svg_path = self.svg_path(fingerprint)
        ascii_path = self.ascii_path(fingerprint)

        staged: list[tuple[Path, Path]] = []
        renamed: list[Path] = []
        try:
            if avatar.svg_data:
                staged.append((self._stage(svg_path, avatar.svg_data), svg_path))
            if avatar.ascii_art:
                staged.append((self._stage(ascii_path, avatar.ascii_art.encode("utf-8")), ascii_path))
            payload = json.dumps(entry.to_dict(), indent=2).encode("utf-8")
            staged.append((self._stage(meta_path, payload), meta_path))

            for tmp, final in staged:
                os.replace(tmp, final)
                renamed.append(final)
        except OSError as exc:
            for tmp, _ in staged:
                tmp.unlink(missing_ok=True)
            # New artifacts must not pair with the previous metadata; that
            # entry falls back to the copies embedded in its JSON.
            for final in renamed:
                final.unlink(missing_ok=True)
            raise CacheIOError(f"failed to write cache entry {fingerprint}: {exc}") from exc

        # Artifacts from a previous entry must not outlive it.
        if not avatar.svg_data:
            svg_path.unlink(missing_ok=True)
        if not avatar.ascii_art:
            ascii_path.unlink(missing_ok=True)
        return entry

    def delete(self, fingerprint: str) -> None:
        """Remove all files of an entry; missing files are not an error."""
        errors = []
        for path in self._entry_paths(fingerprint):
            try:
                path.unlink()
            except FileNotFoundError:
                continue
            except OSError as exc:
                errors.append(str(exc))
        if errors:
            raise CacheIOError(f"failed to delete cache files: {'; '.join(errors)}")

    def clear(self) -> None:
        """Remove the entire cache root. The layout is recreated on next ``set()``."""
        try:
            shutil.rmtree(self.cache_dir)
        except FileNotFoundError:
            pass
        except OSError as exc:
            raise CacheIOError(f"failed to clear cache {self.cache_dir}: {exc}") from exc

    def stats(self) -> CacheStats:
        stats = CacheStats()
        now = utcnow()
        for path in self._iter_meta():
            stats.total_entries += 1
            stats.total_size += self._entry_size(path.stem)
            try:
                entry = self._read_entry(path)
            except (CacheIOError, CacheNotFoundError):
                continue
            if entry.is_expired(now):
                stats.expired_entries += 1
            else:
                stats.valid_entries += 1
            stats.total_access_count += entry.access_count

        if stats.total_access_count > 0:
            stats.hit_rate = stats.valid_entries / stats.total_access_count
        return stats

    def sweep_expired(self, stop: threading.Event | None = None) -> int:
        """Delete every expired entry. Returns how many were removed."""
        removed = 0
        for path in self._iter_meta():
            if stop is not None and stop.is_set():
                break
            try:
                entry = self._read_entry(path)
            except (CacheIOError, CacheNotFoundError):
                continue
            if not entry.is_expired():
                continue
            try:
                self.delete(path.stem)
                removed += 1
            except CacheIOError:
                logger.warning("Failed to sweep expired avatar %s", path.stem, exc_info=True)
        if removed:
            logger.info("Swept %d expired avatar cache entries", removed)
        if stop is None or not stop.is_set():
            self.remove_strays(min_age=STRAY_MIN_AGE)
        return removed

    def _iter_strays(self) -> Iterator[Path]:
        committed = set(self.keys())
        for directory in (self.meta_dir, self.svg_dir, self.ascii_dir):
            if not directory.is_dir():
                continue
            for path in sorted(directory.iterdir()):
                if not path.is_file():
                    continue
                if path.name.endswith(".tmp"):
                    yield path
                elif directory != self.meta_dir and path.stem not in committed:
                    yield path

    def remove_strays(self, min_age: float = 0.0) -> int:
        """Delete staging leftovers and artifacts that have no metadata file.

        Files modified less than *min_age* seconds ago are left alone so a
        ``set()`` in progress keeps its staged files.  Returns the number of
        files removed.
        """
        cutoff = time.time() - min_age
        removed = 0
        for path in list(self._iter_strays()):
            try:
                if min_age > 0 and path.stat().st_mtime > cutoff:
                    continue
                path.unlink()
            except FileNotFoundError:
                continue
            except OSError:
                logger.warning("Failed to remove stray cache file %s", path, exc_info=True)
                continue
            removed += 1
        if removed:
            logger.info("Removed %d stray avatar cache files", removed)
        return removed

    def schedule_sweeps(self, interval: float) -> SweepTask:
        """Replace the current sweeper with one repeating every *interval* seconds."""
        if self.sweeper is not None:
            self.sweeper.cancel()
        self.sweeper = SweepTask(self.sweep_expired, interval=interval).start()
        return self.sweeper

    def get_cache_size(self) -> int:
        """Total size in bytes of every file under the cache root."""
        size = 0
        for dirpath, _dirnames, filenames in os.walk(self.cache_dir):
            for name in filenames:
                try:
                    size += os.path.getsize(os.path.join(dirpath, name))
                except OSError:
                    continue
        return size

    def evict_by_size(self, max_bytes: int) -> int:
        """Delete least-recently-accessed entries until the cache fits *max_bytes*.

        Returns the number of entries removed.
        """
        current = self.get_cache_size()
        if current <= max_bytes:
            return 0

        # Strays count against the budget but belong to no entry.
        if self.remove_strays():
            current = self.get_cache_size()
            if current <= max_bytes:
                return 0

        candidates: list[tuple[datetime, str, int]] = []
        for path in self._iter_meta():
            try:
                last_access = self._read_entry(path).last_access
            except (CacheIOError, CacheNotFoundError):
                # Unreadable entries go first.
                last_access = _OLDEST
            candidates.append((last_access, path.stem, self._entry_size(path.stem)))
        candidates.sort(key=lambda item: (item[0], item[1]))

        removed = 0
        for _last_access, fingerprint, size in candidates:
            if current <= max_bytes:
                break
            try:
                self.delete(fingerprint)
            except CacheIOError:
                logger.warning("Failed to evict avatar %s", fingerprint, exc_info=True)
                continue
            current -= size
            removed += 1

        logger.debug("Evicted %d avatar cache entries (now %d bytes)", removed, current)
        return removed
