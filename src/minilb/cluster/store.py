from __future__ import annotations

import threading
from typing import Any, Callable, Dict, Generic, Hashable, Iterable, List, Optional, Tuple, TypeVar

T = TypeVar("T")

IndexFunc = Callable[[Any], Optional[Hashable]]


class ObjectStore(Generic[T]):
    """Brief: Thread-safe snapshot of one watched resource kind.

    Plays the role of a client-go lister: the watch driver is the only writer
    and everything else reads. Records are keyed by (namespace, name) and may
    additionally be grouped by named secondary indexes.

    Inputs:
      - kind: Resource kind label used in logs.
      - indexers: Optional mapping index_name -> callable(record) returning
        the index key (or None to leave the record unindexed).

    Outputs:
      - ObjectStore instance.

    Example:
      >>> store = ObjectStore("EndpointSlice", indexers={"service": lambda r: (r.namespace, r.service_name)})
      >>> store.list()
      []
    """

    def __init__(
        self, kind: str, indexers: Optional[Dict[str, IndexFunc]] = None
    ) -> None:
        self.kind = kind
        self._lock = threading.Lock()
        self._items: Dict[Tuple[str, str], T] = {}
        self._indexers: Dict[str, IndexFunc] = dict(indexers or {})
        self._indexes: Dict[str, Dict[Hashable, Dict[Tuple[str, str], T]]] = {
            name: {} for name in self._indexers
        }

    @staticmethod
    def _key(record: Any) -> Tuple[str, str]:
        return str(record.namespace), str(record.name)

    def _index_add(self, key: Tuple[str, str], record: T) -> None:
        for name, func in self._indexers.items():
            ikey = func(record)
            if ikey is None:
                continue
            self._indexes[name].setdefault(ikey, {})[key] = record

    def _index_remove(self, key: Tuple[str, str], record: T) -> None:
        for name, func in self._indexers.items():
            ikey = func(record)
            if ikey is None:
                continue
            bucket = self._indexes[name].get(ikey)
            if bucket is None:
                continue
            bucket.pop(key, None)
            if not bucket:
                del self._indexes[name][ikey]

    def replace(self, records: Iterable[T]) -> None:
        """Swap the whole snapshot, as done after a (re)list."""

        with self._lock:
            self._items = {}
            self._indexes = {name: {} for name in self._indexers}
            for record in records:
                key = self._key(record)
                self._items[key] = record
                self._index_add(key, record)

    def upsert(self, record: T) -> Optional[T]:
        """Insert or replace a record; returns the previous one, if any."""

        key = self._key(record)
        with self._lock:
            old = self._items.get(key)
            if old is not None:
                self._index_remove(key, old)
            self._items[key] = record
            self._index_add(key, record)
            return old

    def delete(self, namespace: str, name: str) -> Optional[T]:
        key = (namespace, name)
        with self._lock:
            old = self._items.pop(key, None)
            if old is not None:
                self._index_remove(key, old)
            return old

    def get(self, namespace: str, name: str) -> Optional[T]:
        with self._lock:
            return self._items.get((namespace, name))

    def list(self) -> List[T]:
        with self._lock:
            return list(self._items.values())

    def by_index(self, index_name: str, key: Hashable) -> List[T]:
        with self._lock:
            try:
                bucket = self._indexes[index_name]
            except KeyError:
                raise KeyError(
                    f"{self.kind} store has no index named {index_name!r}"
                ) from None
            return list(bucket.get(key, {}).values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
