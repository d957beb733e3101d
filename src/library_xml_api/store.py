"""Cached file store: the single read/write path for collection files.

Each entity type lives in one XML file directly under the data root
(``books.xml``, ``members.xml``, ``borrowings.xml``, ``users.xml``).
:meth:`CachedFileStore.load` serves decoded collections from a
:class:`~library_xml_api.cache.CollectionCache` keyed ``xml_<file name>``
and falls back to disk on a miss. :meth:`CachedFileStore.save` rewrites the
whole file and evicts that key, so the next load re-reads from disk.

Guarantees:
    * ``load`` returns None, not an error, when the file is missing or
      empty. Callers treat that as "no data yet".
    * ``load`` hands out a deep copy; mutating it never changes what the
      cache holds until ``save`` is called.
    * ``save`` writes a sibling temp file and ``os.replace``s it over the
      target, so a failed write leaves the previous content in place.
    * ``load`` and ``save`` each take the same per-file lock,
      so a decode of the old file can never be cached after a save.
    * ``lock`` serializes load-mutate-validate-save sequences per file
      within this process. Writers in other processes are not covered.

Example::

    store = CachedFileStore(Settings(data_dir=Path("Data")))
    with store.lock("books.xml"):
        books = store.load_or_empty("books.xml", Books)
        books.items.append(Book(id=books.next_id(), ...))
        store.save(books, "books.xml")
"""

from __future__ import annotations

import contextlib
import copy
import logging
import os
import threading
from pathlib import Path
from typing import Dict, Iterator, Optional, Type, TypeVar, Union

from .cache import CollectionCache, ExpiryPolicy
from .codec import XmlCodec
from .config import Settings
from .errors import ArgumentError, MalformedDocumentError
from .models import RecordCollection
from .monitoring import get_monitor

logger = logging.getLogger(__name__)

C = TypeVar("C", bound=RecordCollection)

CACHE_KEY_PREFIX = "xml_"


class CachedFileStore:
    """Load and save whole collections as XML files under a data root.

    Args:
        source: A :class:`Settings` instance or a data root path.
        codec: Serialization codec; a fresh :class:`XmlCodec` by default.
        cache: Collection cache; built from the settings' expiry windows
            by default.
    """

    def __init__(
        self,
        source: Union[Settings, Path, str],
        codec: Optional[XmlCodec] = None,
        cache: Optional[CollectionCache] = None,
    ) -> None:
        settings = source if isinstance(source, Settings) else Settings(data_dir=Path(source))
        settings.data_dir.mkdir(parents=True, exist_ok=True)
        self.data_dir = settings.data_dir
        self.codec = codec or XmlCodec()
        self.cache = cache or CollectionCache(
            ExpiryPolicy(settings.cache_sliding_seconds, settings.cache_absolute_seconds)
        )
        self._file_locks: Dict[str, threading.RLock] = {}
        self._file_locks_guard = threading.Lock()
        self._monitor = get_monitor()

    def _path_for(self, file_name: str) -> Path:
        if not file_name or not file_name.strip():
            raise ArgumentError("File name cannot be empty")
        if file_name != Path(file_name).name or file_name in (".", ".."):
            raise ArgumentError(f"File name must not contain path components: {file_name!r}")
        return self.data_dir / file_name

    @staticmethod
    def cache_key(file_name: str) -> str:
        return f"{CACHE_KEY_PREFIX}{file_name}"

    def load(self, file_name: str, expected: Optional[Type[C]] = None) -> Optional[C]:
        """Return the collection stored in ``file_name``, or None if there is none.

        Args:
            file_name: Plain file name under the data root.
            expected: Collection class the file's root element must match.

        Raises:
            ArgumentError: If ``file_name`` is empty or contains a path.
            MalformedDocumentError: If the file content cannot be decoded.
        """
        path = self._path_for(file_name)
        key = self.cache_key(file_name)

        # A disk read and cache fill must not interleave with a save, or a
        # stale decode would be cached after the save evicted the entry.
        with self._lock_for(file_name):
            cached = self.cache.get(key)
            if cached is None:
                return self._load_from_disk(path, file_name, expected)

        if expected is not None and not isinstance(cached, expected):
            raise MalformedDocumentError(
                f"{file_name} holds <{cached.root_tag}>, expected <{expected.root_tag}>"
            )
        logger.debug(f"Cache hit for {file_name}")
        return copy.deepcopy(cached)

    def _load_from_disk(self, path: Path, file_name: str, expected: Optional[Type[C]]) -> Optional[C]:
        if not path.exists():
            logger.warning(f"Collection file not found: {path}")
            return None
        content = path.read_bytes()
        if not content.strip():
            logger.warning(f"Collection file is empty: {path}")
            return None

        try:
            collection = self.codec.decode(content, expected)
        except MalformedDocumentError as e:
            logger.error(f"Failed to decode {path}: {e}")
            raise

        self.cache.set(self.cache_key(file_name), collection)
        self._monitor.record_file_load(file_name)
        logger.info(f"Loaded {len(collection)} record(s) from {file_name}")
        return copy.deepcopy(collection)

    def load_or_empty(self, file_name: str, collection_type: Type[C]) -> C:
        """Like :meth:`load` but returns an empty ``collection_type`` when there is no data."""
        collection = self.load(file_name, collection_type)
        return collection if collection is not None else collection_type()

    def save(self, collection: RecordCollection, file_name: str) -> None:
        """Encode ``collection`` and overwrite ``file_name`` in full, then evict its cache entry.

        Raises:
            ArgumentError: If ``file_name`` is empty or contains a path.
            OSError: If the write fails; the previous file is left intact.
        """
        path = self._path_for(file_name)
        content = self.codec.encode(collection)

        tmp_path = path.with_name(f".{path.name}.tmp")
        with self._lock_for(file_name):
            try:
                with open(tmp_path, "w", encoding="utf-8") as f:
                    f.write(content)
                os.replace(tmp_path, path)
            except OSError:
                logger.error(f"Failed to write {path}")
                with contextlib.suppress(FileNotFoundError):
                    tmp_path.unlink()
                raise
            self.cache.invalidate(self.cache_key(file_name))
        self._monitor.record_file_save(file_name)
        logger.info(f"Saved {len(collection)} record(s) to {file_name}")

    # Names used by the HTTP layer and CLI.
    load_collection = load
    save_collection = save

    def _lock_for(self, file_name: str) -> threading.RLock:
        with self._file_locks_guard:
            lock = self._file_locks.get(file_name)
            if lock is None:
                lock = self._file_locks[file_name] = threading.RLock()
            return lock

    @contextlib.contextmanager
    def lock(self, *file_names: str) -> Iterator[None]:
        """Hold the per-file locks for ``file_names`` (taken in sorted order)."""
        with contextlib.ExitStack() as stack:
            for name in sorted(set(file_names)):
                self._path_for(name)
                stack.enter_context(self._lock_for(name))
            yield
