from __future__ import annotations

import copy
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from threading import RLock
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple, Type
from zoneinfo import ZoneInfo

from bson import ObjectId
from pydantic import BaseModel, ValidationError

from .errors import DocumentValidationError, StoreError, TransactionStateError
from .models import BulkUpdateResult, GroupCount
from .utils import is_valid_object_id

Document = Dict[str, Any]
SortSpec = Sequence[Tuple[str, int]]


@dataclass(frozen=True)
class CollectionSchema:
    """
    Write-time schema of a collection: one model for whole documents and one
    for `$set` patches.
    """
    document: Type[BaseModel]
    patch: Type[BaseModel]

    def validate_document(self, doc: Mapping[str, Any]) -> None:
        body = {k: v for k, v in doc.items() if k != "_id"}
        try:
            self.document.model_validate(body)
        except ValidationError as exc:
            raise DocumentValidationError(_describe(exc, "document")) from exc

    def validate_patch(self, patch: Mapping[str, Any]) -> None:
        try:
            self.patch.model_validate(dict(patch))
        except ValidationError as exc:
            raise DocumentValidationError(_describe(exc, "update")) from exc


def _describe(exc: ValidationError, what: str) -> str:
    problems = "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or what}: {err['msg']}" for err in exc.errors()
    )
    return f"Invalid {what}: {problems}"


# PUBLIC_INTERFACE
class StoreSession(ABC):
    """
    A store session scoping a transaction.

    Lifecycle: start_transaction() once, then commit() or abort(), then end().
    end() may be called at any time and more than once; ending a session with
    an open transaction aborts it.
    """

    @property
    @abstractmethod
    def in_transaction(self) -> bool:
        """True between start_transaction() and commit()/abort()."""

    @abstractmethod
    def start_transaction(self) -> None:
        """Begin a transaction on this session."""

    @abstractmethod
    async def commit(self) -> None:
        """Make the transaction's writes visible."""

    @abstractmethod
    async def abort(self) -> None:
        """Discard the transaction's writes."""

    @abstractmethod
    async def end(self) -> None:
        """Release the session. Idempotent."""


# PUBLIC_INTERFACE
class DocumentStore(ABC):
    """
    Abstract collection of documents. Filters use the MongoDB query dialect.
    Every operation except begin_session accepts an optional session; when
    given, the operation runs inside that session's transaction.
    """

    @abstractmethod
    async def insert(self, document: Mapping[str, Any], *, session: Optional[StoreSession] = None) -> Document:
        """Store a new document, assign its `_id`, and return the stored copy."""

    @abstractmethod
    async def find_many(
        self,
        filter: Optional[Mapping[str, Any]] = None,
        sort: Optional[SortSpec] = None,
        skip: int = 0,
        limit: Optional[int] = None,
        *,
        session: Optional[StoreSession] = None,
    ) -> List[Document]:
        """Return documents matching filter, sorted, then sliced by skip/limit."""

    @abstractmethod
    async def count(self, filter: Optional[Mapping[str, Any]] = None, *, session: Optional[StoreSession] = None) -> int:
        """Count documents matching filter."""

    @abstractmethod
    async def find_one_by_id(self, doc_id: str, *, session: Optional[StoreSession] = None) -> Optional[Document]:
        """Return the document with this id, or None."""

    @abstractmethod
    async def update_one_by_id(
        self, doc_id: str, patch: Mapping[str, Any], *, session: Optional[StoreSession] = None
    ) -> Optional[Document]:
        """Set the patch fields on one document and return it after the update, or None."""

    @abstractmethod
    async def delete_one_by_id(self, doc_id: str, *, session: Optional[StoreSession] = None) -> Optional[Document]:
        """Delete one document and return it, or None if it did not exist."""

    @abstractmethod
    async def update_many(
        self, doc_ids: Sequence[str], patch: Mapping[str, Any], *, session: Optional[StoreSession] = None
    ) -> BulkUpdateResult:
        """Set the patch fields on every document whose id is in doc_ids."""

    @abstractmethod
    async def delete_many(self, doc_ids: Sequence[str], *, session: Optional[StoreSession] = None) -> int:
        """Delete every document whose id is in doc_ids and return how many were deleted."""

    @abstractmethod
    async def aggregate_group_count(
        self,
        group_field: str,
        match: Optional[Mapping[str, Any]] = None,
        day_timezone: Optional[str] = None,
        *,
        session: Optional[StoreSession] = None,
    ) -> List[GroupCount]:
        """
        Group matching documents by `group_field` and count each group.
        With day_timezone set, the (datetime) field is bucketed to its
        YYYY-MM-DD calendar day in that zone. Rows are sorted by key ascending.
        """

    @abstractmethod
    async def begin_session(self) -> StoreSession:
        """Open a new session."""

    async def ping(self) -> bool:
        """Return True when the store is reachable."""
        return True


# Query matching for the in-memory backend


def _match(doc: Mapping[str, Any], flt: Optional[Mapping[str, Any]]) -> bool:
    if not flt:
        return True
    for key, cond in flt.items():
        if key == "$or":
            if not any(_match(doc, sub) for sub in cond):
                return False
        elif key == "$and":
            if not all(_match(doc, sub) for sub in cond):
                return False
        elif key.startswith("$"):
            raise StoreError(f"Unsupported query operator: {key}")
        elif not _match_field(doc.get(key), cond):
            return False
    return True


def _match_field(value: Any, cond: Any) -> bool:
    if not (isinstance(cond, Mapping) and cond and all(str(k).startswith("$") for k in cond)):
        return value == cond

    for op, arg in cond.items():
        if op == "$options":
            continue
        if op == "$regex":
            flags = re.IGNORECASE if "i" in cond.get("$options", "") else 0
            if not isinstance(value, str) or re.search(arg, value, flags) is None:
                return False
        elif op == "$in":
            if value not in arg:
                return False
        elif op in ("$gte", "$gt", "$lte", "$lt"):
            if value is None:
                return False
            if op == "$gte" and not value >= arg:
                return False
            if op == "$gt" and not value > arg:
                return False
            if op == "$lte" and not value <= arg:
                return False
            if op == "$lt" and not value < arg:
                return False
        else:
            raise StoreError(f"Unsupported query operator: {op}")
    return True


def _sort_docs(docs: List[Document], sort: Optional[SortSpec]) -> List[Document]:
    if not sort:
        return docs
    result = list(docs)
    # Stable sorts applied from the least significant key give a multi-key sort.
    for field, direction in reversed(list(sort)):
        present = [d for d in result if d.get(field) is not None]
        missing = [d for d in result if d.get(field) is None]
        present.sort(key=lambda d: d[field], reverse=direction < 0)
        # Missing values sort as null: first ascending, last descending.
        result = missing + present if direction >= 0 else present + missing
    return result


def _key(doc_id: str) -> str:
    # Hex ids are case-insensitive; documents are keyed by the canonical lowercase form.
    return str(ObjectId(doc_id)) if is_valid_object_id(doc_id) else doc_id


# PUBLIC_INTERFACE
class InMemorySession(StoreSession):
    """
    Session of an InMemoryStore. A transaction works on a snapshot of the
    collection; commit writes back only the documents it touched.
    """

    def __init__(self, store: "InMemoryStore") -> None:
        self._store = store
        self._working: Optional[Dict[str, Document]] = None
        self._touched: Set[str] = set()
        self._ended = False

    @property
    def in_transaction(self) -> bool:
        return self._working is not None

    @property
    def ended(self) -> bool:
        return self._ended

    def start_transaction(self) -> None:
        if self._ended:
            raise TransactionStateError("Cannot start a transaction on an ended session")
        if self._working is not None:
            raise TransactionStateError("Transaction already in progress")
        self._working = self._store._snapshot()
        self._touched = set()

    async def commit(self) -> None:
        if self._working is None:
            raise TransactionStateError("No transaction started")
        self._store._apply(self._working, self._touched)
        self._reset()

    async def abort(self) -> None:
        if self._working is None:
            raise TransactionStateError("No transaction started")
        self._reset()

    async def end(self) -> None:
        self._reset()
        self._ended = True

    def _reset(self) -> None:
        self._working = None
        self._touched = set()


# PUBLIC_INTERFACE
class InMemoryStore(DocumentStore):
    """
    Dict-backed document store suitable for testing and default runtime.
    Documents are deep-copied on the way in and out.
    """

    def __init__(self, schema: Optional[CollectionSchema] = None) -> None:
        self._lock = RLock()
        self._docs: Dict[str, Document] = {}
        self._schema = schema

    def _snapshot(self) -> Dict[str, Document]:
        with self._lock:
            return copy.deepcopy(self._docs)

    def _apply(self, working: Dict[str, Document], touched: Iterable[str]) -> None:
        with self._lock:
            for key in touched:
                if key in working:
                    self._docs[key] = working[key]
                else:
                    self._docs.pop(key, None)

    def _view(self, session: Optional[StoreSession]) -> Dict[str, Document]:
        """Return the documents an operation should see: the transaction's copy or the live collection."""
        if session is None:
            return self._docs
        if not isinstance(session, InMemorySession) or session._store is not self:
            raise StoreError("Session does not belong to this store")
        if session.ended:
            raise TransactionStateError("Session has ended")
        if session._working is None:
            return self._docs
        return session._working

    @staticmethod
    def _mark(session: Optional[StoreSession], key: str) -> None:
        if isinstance(session, InMemorySession) and session.in_transaction:
            session._touched.add(key)

    async def insert(self, document: Mapping[str, Any], *, session: Optional[StoreSession] = None) -> Document:
        if self._schema is not None:
            self._schema.validate_document(document)
        doc = copy.deepcopy(dict(document))
        doc["_id"] = doc.get("_id") or ObjectId()
        key = str(doc["_id"])
        with self._lock:
            docs = self._view(session)
            if key in docs:
                raise StoreError(f"Duplicate key: {key}")
            docs[key] = doc
            self._mark(session, key)
        return copy.deepcopy(doc)

    async def find_many(
        self,
        filter: Optional[Mapping[str, Any]] = None,
        sort: Optional[SortSpec] = None,
        skip: int = 0,
        limit: Optional[int] = None,
        *,
        session: Optional[StoreSession] = None,
    ) -> List[Document]:
        with self._lock:
            matched = [d for d in self._view(session).values() if _match(d, filter)]
            ordered = _sort_docs(matched, sort)
            start = max(skip, 0)
            end = None if not limit else start + limit
            return copy.deepcopy(ordered[start:end])

    async def count(self, filter: Optional[Mapping[str, Any]] = None, *, session: Optional[StoreSession] = None) -> int:
        with self._lock:
            return sum(1 for d in self._view(session).values() if _match(d, filter))

    async def find_one_by_id(self, doc_id: str, *, session: Optional[StoreSession] = None) -> Optional[Document]:
        with self._lock:
            doc = self._view(session).get(_key(doc_id))
            return None if doc is None else copy.deepcopy(doc)

    async def update_one_by_id(
        self, doc_id: str, patch: Mapping[str, Any], *, session: Optional[StoreSession] = None
    ) -> Optional[Document]:
        if self._schema is not None:
            self._schema.validate_patch(patch)
        with self._lock:
            docs = self._view(session)
            existing = docs.get(_key(doc_id))
            if existing is None:
                return None
            existing.update(copy.deepcopy(dict(patch)))
            self._mark(session, _key(doc_id))
            return copy.deepcopy(existing)

    async def delete_one_by_id(self, doc_id: str, *, session: Optional[StoreSession] = None) -> Optional[Document]:
        with self._lock:
            removed = self._view(session).pop(_key(doc_id), None)
            if removed is not None:
                self._mark(session, _key(doc_id))
            return removed

    async def update_many(
        self, doc_ids: Sequence[str], patch: Mapping[str, Any], *, session: Optional[StoreSession] = None
    ) -> BulkUpdateResult:
        if self._schema is not None:
            self._schema.validate_patch(patch)
        matched = modified = 0
        with self._lock:
            docs = self._view(session)
            for key in dict.fromkeys(_key(i) for i in doc_ids):
                doc = docs.get(key)
                if doc is None:
                    continue
                matched += 1
                if any(doc.get(f) != v for f, v in patch.items()):
                    doc.update(copy.deepcopy(dict(patch)))
                    modified += 1
                    self._mark(session, key)
        return BulkUpdateResult(matched_count=matched, modified_count=modified)

    async def delete_many(self, doc_ids: Sequence[str], *, session: Optional[StoreSession] = None) -> int:
        deleted = 0
        with self._lock:
            docs = self._view(session)
            for key in dict.fromkeys(_key(i) for i in doc_ids):
                if docs.pop(key, None) is not None:
                    deleted += 1
                    self._mark(session, key)
        return deleted

    async def aggregate_group_count(
        self,
        group_field: str,
        match: Optional[Mapping[str, Any]] = None,
        day_timezone: Optional[str] = None,
        *,
        session: Optional[StoreSession] = None,
    ) -> List[GroupCount]:
        tz = ZoneInfo(day_timezone) if day_timezone else None
        counts: Dict[Any, int] = {}
        with self._lock:
            for doc in self._view(session).values():
                if not _match(doc, match):
                    continue
                key = doc.get(group_field)
                if tz is not None and key is not None:
                    key = key.astimezone(tz).strftime("%Y-%m-%d")
                counts[key] = counts.get(key, 0) + 1
        # Mongo orders null before any other value.
        ordered = sorted(counts.items(), key=lambda kv: (kv[0] is not None, kv[0] if kv[0] is not None else ""))
        return [GroupCount(key=k, count=c) for k, c in ordered]

    async def begin_session(self) -> InMemorySession:
        return InMemorySession(self)
