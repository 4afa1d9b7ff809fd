"""
Content-hash keyed cache of transcription results.

Entries are ``partial`` while a job is running and ``complete`` once it has
finished. A partial entry is never returned unless the caller explicitly
asks for it: treating partial output as complete would silently truncate
subtitles.

Also holds per-key generation locks so that two requests for the same media
never transcribe it concurrently.
"""

import hashlib
import json
import os
import re
import tempfile
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Protocol, Sequence, Union

from reelscribe.modules.errors import CancelledError
from reelscribe.modules.srt_io import to_srt
from reelscribe.modules.types import (
    CacheEntry,
    CacheHit,
    CacheLookup,
    CacheMeta,
    CacheMiss,
    CacheStatus,
    SubtitleSegment,
)
from reelscribe.utils.logger import logger

HASH_SAMPLE_BYTES = 1024 * 1024
SECONDS_PER_DAY = 24 * 60 * 60


def compute_content_hash(path: Union[str, Path], sample_bytes: int = HASH_SAMPLE_BYTES) -> str:
    """
    SHA-256 over the first and last ``sample_bytes`` plus the file size.

    Files smaller than two samples are hashed whole. Reading only the edges
    keeps hashing multi-GB videos instant while still separating different
    encodes of the same title.
    """
    path = Path(path)
    size = path.stat().st_size
    digest = hashlib.sha256()
    digest.update(str(size).encode("ascii"))

    with open(path, "rb") as f:
        if size <= sample_bytes * 2:
            for block in iter(lambda: f.read(HASH_SAMPLE_BYTES), b""):
                digest.update(block)
        else:
            digest.update(f.read(sample_bytes))
            f.seek(size - sample_bytes)
            digest.update(f.read(sample_bytes))

    return digest.hexdigest()


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------


class CacheStore(Protocol):
    def get(self, key: str) -> Optional[Dict[str, Any]]: ...
    def set(self, key: str, data: Dict[str, Any]) -> None: ...
    def delete(self, key: str) -> bool: ...
    def keys(self) -> List[str]: ...


class InMemoryCacheStore:
    """Dict-backed store for tests and throwaway sessions."""

    def __init__(self):
        self._data: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key):
        with self._lock:
            data = self._data.get(key)
            return dict(data) if data is not None else None

    def set(self, key, data):
        with self._lock:
            self._data[key] = dict(data)

    def delete(self, key):
        with self._lock:
            return self._data.pop(key, None) is not None

    def keys(self):
        with self._lock:
            return list(self._data)


class JsonFileCacheStore:
    """One JSON document per key under ``cache_dir``; writes are atomic."""

    _UNSAFE = re.compile(r"[^A-Za-z0-9._-]")

    def __init__(self, cache_dir: Union[str, Path]):
        self.cache_dir = Path(cache_dir).expanduser()
        self.cache_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.cache_dir / f"{self._UNSAFE.sub('_', key)}.json"

    def get(self, key):
        path = self._path(key)
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable cache file {path.name}: {e}")
            return None

    def set(self, key, data):
        path = self._path(key)
        fd, tmp_name = tempfile.mkstemp(prefix=".tmp_", suffix=".json", dir=self.cache_dir)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False, indent=2)
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def delete(self, key):
        path = self._path(key)
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False

    def keys(self):
        return [
            path.stem for path in self.cache_dir.glob("*.json")
            if not path.name.startswith(".tmp_")
        ]


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------


@dataclass
class CacheStats:
    entries: int = 0
    complete: int = 0
    partial: int = 0
    analysis: int = 0
    total_bytes: int = 0
    oldest: Optional[float] = None
    newest: Optional[float] = None


class ResultCache:
    """
    Partial/complete result cache.

    Args:
        store: Backing key-value store (defaults to in-memory)
        retention_days: Entries older than this are treated as misses and pruned
        clock: Wall clock in seconds; injectable for tests
    """

    def __init__(
        self,
        store: Optional[CacheStore] = None,
        retention_days: float = 30,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store if store is not None else InMemoryCacheStore()
        self.retention_seconds = retention_days * SECONDS_PER_DAY
        self._clock = clock
        self._write_lock = threading.RLock()
        self._key_locks: Dict[str, List] = {}
        self._key_locks_guard = threading.Lock()

    # -- reads ---------------------------------------------------------------

    def _load(self, key: str) -> Optional[CacheEntry]:
        data = self.store.get(key)
        if not data:
            return None
        try:
            return CacheEntry.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Corrupt cache entry {key[:12]}: {e}")
            return None

    def _expired(self, entry: CacheEntry) -> bool:
        return self.retention_seconds > 0 and entry.timestamp < self._clock() - self.retention_seconds

    def get(self, key: str, include_partial: bool = False) -> CacheLookup:
        """
        Look up ``key``.

        A partial entry is a miss unless ``include_partial`` is True.
        """
        entry = self._load(key)
        if entry is None:
            return CacheMiss("not found")
        if self._expired(entry):
            return CacheMiss("expired")
        if not entry.is_complete and not include_partial:
            return CacheMiss("partial")
        return CacheHit(entry)

    # -- writes --------------------------------------------------------------

    def _entry(self, key, segments, status, meta: CacheMeta) -> CacheEntry:
        return CacheEntry(
            key=key,
            content=to_srt(segments),
            status=status,
            provider=meta.provider,
            timestamp=self._clock(),
            source_size=meta.source_size,
            source_duration=meta.source_duration,
            language=meta.language,
            segment_count=len(segments),
        )

    def put_complete(self, key: str, segments: Sequence[SubtitleSegment], meta: CacheMeta) -> CacheEntry:
        entry = self._entry(key, segments, CacheStatus.COMPLETE, meta)
        with self._write_lock:
            self.store.set(key, entry.to_dict())
        logger.debug(f"Cached complete result {key[:12]} ({entry.segment_count} segments, {meta.provider})")
        return entry

    def put_partial(self, key: str, segments: Sequence[SubtitleSegment], meta: CacheMeta) -> bool:
        """
        Save in-progress output. Monotonic: never shrinks or downgrades an entry.

        Returns:
            True if the entry was written
        """
        if not segments:
            return False

        with self._write_lock:
            existing = self._load(key)
            if existing is not None and not self._expired(existing):
                if existing.is_complete:
                    return False
                if existing.segment_count >= len(segments):
                    return False
            entry = self._entry(key, segments, CacheStatus.PARTIAL, meta)
            self.store.set(key, entry.to_dict())

        logger.debug(f"Cached partial result {key[:12]} ({entry.segment_count} segments)")
        return True

    # -- analysis entries ----------------------------------------------------

    @staticmethod
    def analysis_key(key: str, kind: str) -> str:
        return f"{key}-{kind}"

    def get_analysis(self, key: str, kind: str) -> Optional[Dict[str, Any]]:
        entry = self._load(self.analysis_key(key, kind))
        if entry is None or self._expired(entry):
            return None
        try:
            return json.loads(entry.content)
        except json.JSONDecodeError:
            return None

    def put_analysis(self, key: str, kind: str, data: Dict[str, Any], provider: str = "analysis") -> None:
        entry = CacheEntry(
            key=self.analysis_key(key, kind),
            content=json.dumps(data, ensure_ascii=False),
            status=CacheStatus.COMPLETE,
            provider=provider,
            timestamp=self._clock(),
            kind=kind,
        )
        with self._write_lock:
            self.store.set(entry.key, entry.to_dict())

    # -- maintenance ---------------------------------------------------------

    def delete(self, key: str) -> bool:
        with self._write_lock:
            return self.store.delete(key)

    def clear(self) -> int:
        with self._write_lock:
            keys = self.store.keys()
            for key in keys:
                self.store.delete(key)
        return len(keys)

    def prune(self) -> int:
        """Delete entries past the retention window. Returns the number removed."""
        removed = 0
        with self._write_lock:
            for key in self.store.keys():
                entry = self._load(key)
                if entry is None or self._expired(entry):
                    self.store.delete(key)
                    removed += 1
        if removed:
            logger.info(f"Pruned {removed} expired cache entr{'y' if removed == 1 else 'ies'}")
        return removed

    def stats(self) -> CacheStats:
        stats = CacheStats()
        for key in self.store.keys():
            entry = self._load(key)
            if entry is None:
                continue
            stats.entries += 1
            if entry.kind != "subtitles":
                stats.analysis += 1
            elif entry.is_complete:
                stats.complete += 1
            else:
                stats.partial += 1
            stats.total_bytes += len(entry.content.encode("utf-8"))
            stats.oldest = entry.timestamp if stats.oldest is None else min(stats.oldest, entry.timestamp)
            stats.newest = entry.timestamp if stats.newest is None else max(stats.newest, entry.timestamp)
        return stats

    # -- per-key generation lock ---------------------------------------------

    @contextmanager
    def key_lock(self, key: str, cancel=None, poll_seconds: float = 0.2) -> Iterator[None]:
        """
        Hold the generation lock for ``key``.

        Requests for the same key run one at a time; different keys never
        contend. Waiting is interruptible through ``cancel``.
        """
        with self._key_locks_guard:
            slot = self._key_locks.setdefault(key, [threading.Lock(), 0])
            slot[1] += 1
        lock = slot[0]

        acquired = False
        try:
            while not acquired:
                acquired = lock.acquire(timeout=poll_seconds)
                if not acquired and cancel is not None and cancel.is_cancelled:
                    raise CancelledError()
            yield
        finally:
            if acquired:
                lock.release()
            with self._key_locks_guard:
                slot[1] -= 1
                if slot[1] <= 0 and self._key_locks.get(key) is slot:
                    del self._key_locks[key]
