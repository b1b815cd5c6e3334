"""
Transactional storage for accounts, campaigns, submissions and ledger entries.

Records are plain dicts keyed by UUID. Every record carries a version that
is bumped on each committed write. A Transaction remembers the version of
every record it read and buffers its writes; commit re-checks those
versions under the store lock and applies all writes or none of them
(optimistic concurrency). run_transaction() retries attempts that lost a
race, so callers only ever observe a clean success or a clean abort.

Queries filter and sort inside the store, and subscribe() gives a live
query that is re-evaluated after every commit touching its collection.
"""

import copy
import itertools
import logging
import threading
import time
from typing import Any, Callable, Optional, TypeVar
from uuid import UUID

from .errors import ConflictRetryExhaustedError

logger = logging.getLogger(__name__)

T = TypeVar("T")

ACCOUNTS = "accounts"
CAMPAIGNS = "campaigns"
SUBMISSIONS = "submissions"
LEDGER_ENTRIES = "ledger_entries"
COLLECTIONS = (ACCOUNTS, CAMPAIGNS, SUBMISSIONS, LEDGER_ENTRIES)


class WriteConflictError(Exception):
    pass


class UniqueConstraintError(Exception):
    def __init__(self, collection: str, fields: tuple, values: tuple):
        self.collection = collection
        self.fields = fields
        self.values = values
        super().__init__(f"{collection} already has a record with {dict(zip(fields, values))}")


class Transaction:
    def __init__(self, storage: "InMemoryStorage"):
        self._storage = storage
        self._reads: dict[tuple[str, UUID], int] = {}
        self._snapshots: dict[tuple[str, UUID], Optional[dict]] = {}
        self._writes: dict[tuple[str, UUID], dict] = {}
        self.committed = False

    def get(self, collection: str, record_id: UUID) -> Optional[dict]:
        key = (collection, record_id)
        if key in self._writes:
            return copy.deepcopy(self._writes[key])
        if key in self._snapshots:
            return copy.deepcopy(self._snapshots[key])
        record, version = self._storage._read(collection, record_id)
        self._reads[key] = version
        self._snapshots[key] = record
        return copy.deepcopy(record)

    def insert(self, collection: str, record: dict) -> None:
        key = (collection, record["id"])
        if key in self._writes:
            raise ValueError(f"{collection}/{record['id']} already written in this transaction")
        # The id must still be unused when the transaction commits.
        self._reads.setdefault(key, 0)
        self._writes[key] = copy.deepcopy(record)

    def update(self, collection: str, record_id: UUID, changes: dict) -> dict:
        key = (collection, record_id)
        current = self._writes.get(key)
        if current is None:
            if key not in self._snapshots:
                raise RuntimeError(f"{collection}/{record_id} must be read before it is updated")
            current = copy.deepcopy(self._snapshots[key])
            if current is None:
                raise KeyError(f"{collection}/{record_id} does not exist")
        current.update(changes)
        self._writes[key] = current
        return copy.deepcopy(current)

    def is_stale(self) -> bool:
        return self._storage._has_changed(self._reads)

    def commit(self) -> None:
        if self.committed:
            raise RuntimeError("Transaction already committed")
        self._storage._commit(self)
        self.committed = True


class Subscription:
    def __init__(self, storage: "InMemoryStorage", token: int):
        self._storage = storage
        self._token = token

    def unsubscribe(self) -> None:
        self._storage._unsubscribe(self._token)


class InMemoryStorage:
    def __init__(self, unique_fields: Optional[dict[str, tuple[str, ...]]] = None):
        self._data: dict[str, dict[UUID, dict]] = {name: {} for name in COLLECTIONS}
        self._versions: dict[tuple[str, UUID], int] = {}
        self._unique_fields = dict(unique_fields or {})
        self._unique_index: dict[tuple[str, tuple], UUID] = {}
        self._subscriptions: dict[int, dict] = {}
        self._tokens = itertools.count(1)
        self._sequence = 0
        self._lock = threading.RLock()

    def transaction(self) -> Transaction:
        return Transaction(self)

    def run_transaction(
        self,
        fn: Callable[[Transaction], T],
        max_attempts: int = 5,
        backoff_seconds: float = 0.0,
    ) -> T:
        """Run fn inside a transaction, retrying when a concurrent commit wins.

        Exceptions raised by fn abort the attempt without writing anything.
        They are re-raised unless the attempt had read stale data, in which
        case the attempt is retried against the current state.
        """
        for attempt in range(1, max_attempts + 1):
            txn = self.transaction()
            try:
                result = fn(txn)
                txn.commit()
                return result
            except WriteConflictError as e:
                logger.debug(f"Transaction attempt {attempt}/{max_attempts} conflicted: {e}")
            except Exception:
                if not txn.is_stale():
                    raise
                logger.debug(f"Transaction attempt {attempt}/{max_attempts} failed on stale data, retrying")
            if backoff_seconds:
                time.sleep(backoff_seconds * attempt)

        logger.error(f"Transaction could not be serialized after {max_attempts} attempts")
        raise ConflictRetryExhaustedError(
            f"Transaction could not be serialized after {max_attempts} attempts"
        )

    def get(self, collection: str, record_id: UUID) -> Optional[dict]:
        record, _ = self._read(collection, record_id)
        return copy.deepcopy(record)

    def query(
        self,
        collection: str,
        filters: Optional[dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[dict]:
        filters = filters or {}
        with self._lock:
            matches = [
                copy.deepcopy(record) for record in self._data[collection].values()
                if all(record.get(field) == value for field, value in filters.items())
            ]
        if order_by:
            matches.sort(key=lambda r: r[order_by], reverse=descending)
        end = None if limit is None else offset + limit
        return matches[offset:end]

    def count(self, collection: str, filters: Optional[dict[str, Any]] = None) -> int:
        return len(self.query(collection, filters))

    def subscribe(
        self,
        collection: str,
        callback: Callable[[list[dict]], None],
        filters: Optional[dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> Subscription:
        token = next(self._tokens)
        listener = {
            "collection": collection,
            "callback": callback,
            "filters": dict(filters or {}),
            "order_by": order_by,
            "descending": descending,
            "lock": threading.RLock(),
            "delivered": -1,
        }
        with self._lock:
            self._subscriptions[token] = listener
        self._deliver(listener)
        return Subscription(self, token)

    def _unsubscribe(self, token: int) -> None:
        with self._lock:
            self._subscriptions.pop(token, None)

    def _read(self, collection: str, record_id: UUID) -> tuple[Optional[dict], int]:
        with self._lock:
            record = self._data[collection].get(record_id)
            version = self._versions.get((collection, record_id), 0)
            return copy.deepcopy(record), version

    def _has_changed(self, reads: dict[tuple[str, UUID], int]) -> bool:
        with self._lock:
            return any(self._versions.get(key, 0) != seen for key, seen in reads.items())

    def _unique_key(self, collection: str, record: dict) -> Optional[tuple]:
        fields = self._unique_fields.get(collection)
        if not fields:
            return None
        return tuple(record.get(field) for field in fields)

    def _check_unique(self, txn: Transaction) -> None:
        claimed: dict[tuple[str, tuple], UUID] = {}
        for (collection, record_id), record in txn._writes.items():
            values = self._unique_key(collection, record)
            if values is None:
                continue
            index_key = (collection, values)
            owner = claimed.get(index_key, self._unique_index.get(index_key))
            if owner is not None and owner != record_id:
                raise UniqueConstraintError(collection, self._unique_fields[collection], values)
            claimed[index_key] = record_id

    def _commit(self, txn: Transaction) -> None:
        with self._lock:
            for (collection, record_id), seen in txn._reads.items():
                if self._versions.get((collection, record_id), 0) != seen:
                    raise WriteConflictError(f"{collection}/{record_id} changed since it was read")
            self._check_unique(txn)

            for (collection, record_id), record in txn._writes.items():
                previous = self._data[collection].get(record_id)
                if previous is not None:
                    old_values = self._unique_key(collection, previous)
                    if old_values is not None:
                        self._unique_index.pop((collection, old_values), None)
                new_values = self._unique_key(collection, record)
                if new_values is not None:
                    self._unique_index[(collection, new_values)] = record_id
                self._data[collection][record_id] = record
                self._versions[(collection, record_id)] = self._versions.get((collection, record_id), 0) + 1
            self._sequence += 1

            touched = {collection for collection, _ in txn._writes}
            listeners = [s for s in self._subscriptions.values() if s["collection"] in touched]

        for listener in listeners:
            self._deliver(listener)

    def _deliver(self, listener: dict) -> None:
        # One delivery per listener at a time, and never one older than the last sent.
        with listener["lock"]:
            with self._lock:
                sequence = self._sequence
                results = self.query(
                    listener["collection"], listener["filters"], listener["order_by"], listener["descending"]
                )
            if sequence <= listener["delivered"]:
                return
            listener["delivered"] = sequence
            try:
                listener["callback"](results)
            except Exception:
                logger.exception(f"Subscriber on {listener['collection']} failed")
