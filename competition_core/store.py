"""Document store collaborator.

The engine only needs a small slice of a hosted document database:
per-document CRUD, an atomic create-if-absent, an atomic keyed
"add to set" on array fields, single-field ordered queries and realtime
change subscriptions. `DocumentStore` captures that slice;
`InMemoryDocumentStore` is a thread-safe reference implementation used by
tests and local tooling.

Paths alternate collection and document ids, e.g.
``competitions/{id}/scores/{userId}``. Odd segment counts name a
collection, even counts name a document.
"""
from __future__ import annotations

import logging
import threading
import uuid
from copy import deepcopy
from typing import Any, Callable, Dict, List, Mapping, Protocol, Sequence, Tuple

from .errors import DocumentExistsError, StoreError

logger = logging.getLogger(__name__)

Doc = Dict[str, Any]
DocItem = Tuple[str, Doc]
Where = Tuple[str, str, Any]
Unsubscribe = Callable[[], None]

_WHERE_OPS: Dict[str, Callable[[Any, Any], bool]] = {
    "==": lambda a, b: a == b,
    "!=": lambda a, b: a != b,
    "<": lambda a, b: a < b,
    "<=": lambda a, b: a <= b,
    ">": lambda a, b: a > b,
    ">=": lambda a, b: a >= b,
}


class DocumentStore(Protocol):
    """Persistence contract. Every method raises StoreError on failure."""

    def get(self, path: str) -> Doc | None:
        ...

    def set(self, path: str, data: Mapping[str, Any], *, merge: bool = False) -> None:
        ...

    def add(self, collection: str, data: Mapping[str, Any]) -> str:
        ...

    def set_many(self, writes: Sequence[Tuple[str, Mapping[str, Any]]], *, merge: bool = False) -> None:
        ...

    def create(self, path: str, data: Mapping[str, Any]) -> None:
        ...

    def delete(self, path: str) -> None:
        ...

    def add_to_set(self, path: str, field: str, item: Mapping[str, Any], *, key: str) -> bool:
        ...

    def query(
        self,
        collection: str,
        *,
        order_by: str | None = None,
        descending: bool = False,
        where: Sequence[Where] = (),
    ) -> List[DocItem]:
        ...

    def subscribe(
        self,
        path: str,
        on_update: Callable[[Any], None],
        *,
        order_by: str | None = None,
        descending: bool = False,
        where: Sequence[Where] = (),
    ) -> Unsubscribe:
        ...


class IdentityDirectory(Protocol):
    def display_name(self, user_id: str) -> str | None:
        ...


def doc_path(*parts: str) -> str:
    """Join path segments, rejecting empty ids."""
    cleaned = []
    for part in parts:
        text = str(part).strip("/") if part is not None else ""
        if not text:
            raise StoreError(f"empty path segment in {parts!r}")
        cleaned.append(text)
    return "/".join(cleaned)


def _split(path: str) -> List[str]:
    parts = [p for p in str(path).split("/") if p]
    if not parts:
        raise StoreError(f"invalid path: {path!r}")
    return parts


def _is_collection(path: str) -> bool:
    return len(_split(path)) % 2 == 1


def _split_doc(path: str) -> Tuple[str, str]:
    parts = _split(path)
    if len(parts) % 2 != 0:
        raise StoreError(f"not a document path: {path!r}")
    return "/".join(parts[:-1]), parts[-1]


def _matches(doc: Doc, where: Sequence[Where]) -> bool:
    for field, op, value in where:
        if field not in doc:
            return False
        compare = _WHERE_OPS.get(op)
        if compare is None:
            raise StoreError(f"unsupported where operator: {op!r}")
        try:
            if not compare(doc[field], value):
                return False
        except TypeError:
            return False
    return True


def _ordered(items: List[DocItem], order_by: str | None, descending: bool) -> List[DocItem]:
    if not order_by:
        return items
    present = [it for it in items if it[1].get(order_by) is not None]
    missing = [it for it in items if it[1].get(order_by) is None]
    try:
        present.sort(key=lambda it: it[1][order_by], reverse=descending)
    except TypeError as e:
        raise StoreError(f"cannot order by {order_by!r}: {e}")
    # Documents without the order field sort last either way.
    return present + missing


class _Listener:
    __slots__ = ("path", "callback", "order_by", "descending", "where", "active", "lock")

    def __init__(self, path, callback, order_by, descending, where) -> None:
        self.path = path
        self.callback = callback
        self.order_by = order_by
        self.descending = descending
        self.where = tuple(where)
        self.active = True
        # Held across snapshot and callback so deliveries never overtake each other.
        self.lock = threading.RLock()


class InMemoryDocumentStore:
    """Thread-safe in-process DocumentStore with synchronous change fan-out.

    Reads and writes copy documents, so callers never share mutable state
    with the store. Listeners receive a fresh snapshot immediately on
    subscribe and again after every write touching their path.
    """

    def __init__(self) -> None:
        self._collections: Dict[str, Dict[str, Doc]] = {}
        self._listeners: List[_Listener] = []
        self._lock = threading.RLock()

    # ==================== READS ====================

    def get(self, path: str) -> Doc | None:
        collection, doc_id = _split_doc(path)
        with self._lock:
            doc = self._collections.get(collection, {}).get(doc_id)
            return deepcopy(doc) if doc is not None else None

    def query(
        self,
        collection: str,
        *,
        order_by: str | None = None,
        descending: bool = False,
        where: Sequence[Where] = (),
    ) -> List[DocItem]:
        if not _is_collection(collection):
            raise StoreError(f"not a collection path: {collection!r}")
        key = "/".join(_split(collection))
        with self._lock:
            items = [
                (doc_id, deepcopy(doc))
                for doc_id, doc in self._collections.get(key, {}).items()
                if _matches(doc, where)
            ]
        return _ordered(items, order_by, descending)

    # ==================== WRITES ====================

    def set(self, path: str, data: Mapping[str, Any], *, merge: bool = False) -> None:
        collection, doc_id = _split_doc(path)
        with self._lock:
            self._write(collection, doc_id, data, merge)
        self._notify(collection, doc_id)

    def set_many(self, writes: Sequence[Tuple[str, Mapping[str, Any]]], *, merge: bool = False) -> None:
        """Apply several writes as one batch.

        Every path is checked before anything is written, so a bad path
        leaves the store untouched. Listeners are notified once per batch.
        """
        targets = [(_split_doc(path), data) for path, data in writes]
        with self._lock:
            for (collection, doc_id), data in targets:
                self._write(collection, doc_id, data, merge)
        self._notify_many([key for key, _ in targets])

    def _write(self, collection: str, doc_id: str, data: Mapping[str, Any], merge: bool) -> None:
        docs = self._collections.setdefault(collection, {})
        if merge and doc_id in docs:
            docs[doc_id].update(deepcopy(dict(data)))
        else:
            docs[doc_id] = deepcopy(dict(data))

    def add(self, collection: str, data: Mapping[str, Any]) -> str:
        if not _is_collection(collection):
            raise StoreError(f"not a collection path: {collection!r}")
        key = "/".join(_split(collection))
        doc_id = uuid.uuid4().hex[:20]
        with self._lock:
            self._collections.setdefault(key, {})[doc_id] = deepcopy(dict(data))
        self._notify(key, doc_id)
        return doc_id

    def create(self, path: str, data: Mapping[str, Any]) -> None:
        collection, doc_id = _split_doc(path)
        with self._lock:
            docs = self._collections.setdefault(collection, {})
            if doc_id in docs:
                raise DocumentExistsError(f"document already exists: {path}")
            docs[doc_id] = deepcopy(dict(data))
        self._notify(collection, doc_id)

    def delete(self, path: str) -> None:
        collection, doc_id = _split_doc(path)
        with self._lock:
            removed = self._collections.get(collection, {}).pop(doc_id, None)
        if removed is not None:
            self._notify(collection, doc_id)

    def add_to_set(self, path: str, field: str, item: Mapping[str, Any], *, key: str) -> bool:
        """Append `item` to the array `field` unless an element with the same `key` exists.

        Creates the document (or the field) when missing. Returns True when
        the item was added.
        """
        if key not in item:
            raise StoreError(f"add_to_set item is missing key field {key!r}")
        collection, doc_id = _split_doc(path)
        with self._lock:
            docs = self._collections.setdefault(collection, {})
            doc = docs.setdefault(doc_id, {})
            current = doc.get(field)
            if not isinstance(current, list):
                current = []
            if any(isinstance(el, dict) and el.get(key) == item[key] for el in current):
                return False
            current.append(deepcopy(dict(item)))
            doc[field] = current
        self._notify(collection, doc_id)
        return True

    # ==================== SUBSCRIPTIONS ====================

    def subscribe(
        self,
        path: str,
        on_update: Callable[[Any], None],
        *,
        order_by: str | None = None,
        descending: bool = False,
        where: Sequence[Where] = (),
    ) -> Unsubscribe:
        normalized = "/".join(_split(path))
        listener = _Listener(normalized, on_update, order_by, descending, where)
        with self._lock:
            self._listeners.append(listener)
        self._deliver(listener)

        def unsubscribe() -> None:
            listener.active = False
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)

    def _snapshot(self, listener: _Listener) -> Any:
        if _is_collection(listener.path):
            return self.query(
                listener.path,
                order_by=listener.order_by,
                descending=listener.descending,
                where=listener.where,
            )
        return self.get(listener.path)

    def _deliver(self, listener: _Listener) -> None:
        with listener.lock:
            if not listener.active:
                return
            snapshot = self._snapshot(listener)
            try:
                listener.callback(snapshot)
            except Exception:
                logger.exception(f"Subscriber callback failed for {listener.path}")

    def _notify(self, collection: str, doc_id: str) -> None:
        self._notify_many([(collection, doc_id)])

    def _notify_many(self, changed: Sequence[Tuple[str, str]]) -> None:
        paths = set()
        for collection, doc_id in changed:
            paths.add(collection)
            paths.add(f"{collection}/{doc_id}")
        with self._lock:
            targets = [l for l in self._listeners if l.path in paths]
        for listener in targets:
            self._deliver(listener)


class StoreIdentityDirectory:
    """Display names read from users/{id}.displayName."""

    def __init__(self, store: DocumentStore, collection: str = "users") -> None:
        self._store = store
        self._collection = collection

    def display_name(self, user_id: str) -> str | None:
        if not user_id:
            return None
        doc = self._store.get(doc_path(self._collection, user_id))
        if not doc:
            return None
        name = doc.get("displayName")
        if isinstance(name, str) and name.strip():
            return name.strip()
        return None


__all__ = [
    "DocumentStore",
    "IdentityDirectory",
    "InMemoryDocumentStore",
    "StoreIdentityDirectory",
    "doc_path",
]
