"""
Transaction store
-----------------
Keyed record storage for transactions behind a small CRUD interface:

    insert(fields) -> record
    get_by_id(id) -> record | None
    update_fields(id, fields) -> None
    compare_and_update(id, expected_status, fields) -> bool
    query(filters, order, limit, offset) -> (records, total)

Records are plain dicts in storage naming (see Transaction.to_record). Every
backend failure surfaces as StorageError. compare_and_update is the single
conditional write used for confirmation and for scheduled transitions; it is
atomic per record so two writers can never both observe the same status.
"""
from __future__ import annotations

import copy
import json
import threading
from contextlib import contextmanager
from typing import Any, Dict, List, Optional, Tuple

from redis import Redis, RedisError

from paylite.core.errors import NotFoundError, StorageError
from paylite.store.models import new_id

PREFIX = "txn:"
INDEX_CREATED = "txn:index:created"
INDEX_STATUS_PREFIX = "txn:index:status:"

SUPPORTED_FILTERS = {"status"}

# Creation-time ordering; ties fall back to the backend's insertion order.
NEWEST_FIRST = "-created_at"
OLDEST_FIRST = "created_at"
ORDERS = (NEWEST_FIRST, OLDEST_FIRST)

# KEYS[1] record key, KEYS[2] status index key prefix
# ARGV[1] expected status ("" = unconditional), ARGV[2] JSON patch
# Returns -1 missing, 0 precondition failed, 1 applied.
_UPDATE_LUA = """
local raw = redis.call('GET', KEYS[1])
if not raw then
  return -1
end
local rec = cjson.decode(raw)
local old = rec['status']
if ARGV[1] ~= '' and old ~= ARGV[1] then
  return 0
end
local patch = cjson.decode(ARGV[2])
for k, v in pairs(patch) do
  rec[k] = v
end
redis.call('SET', KEYS[1], cjson.encode(rec))
local new = rec['status']
if new ~= old then
  redis.call('ZREM', KEYS[2] .. old, rec['id'])
  redis.call('ZADD', KEYS[2] .. new, rec['created_ms'], rec['id'])
end
return 1
"""


def _key(txn_id: str) -> str:
    return f"{PREFIX}{txn_id}"


def _check_filters(filters: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    filters = {k: v for k, v in (filters or {}).items() if v is not None}
    unknown = set(filters) - SUPPORTED_FILTERS
    if unknown:
        raise ValueError(f"Unsupported filters: {sorted(unknown)}")
    return filters


def _check_order(order: str) -> bool:
    """Returns True for newest-first."""
    if order not in ORDERS:
        raise ValueError(f"Unsupported order: {order!r}")
    return order == NEWEST_FIRST


class TransactionStore:
    """Interface shared by the Redis and in-memory backends."""

    def insert(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    def get_by_id(self, txn_id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def update_fields(self, txn_id: str, fields: Dict[str, Any]) -> None:
        raise NotImplementedError

    def compare_and_update(self, txn_id: str, expected_status: str, fields: Dict[str, Any]) -> bool:
        raise NotImplementedError

    def query(
        self,
        filters: Optional[Dict[str, Any]] = None,
        order: str = NEWEST_FIRST,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[Dict[str, Any]], int]:
        """Page of records ordered by created_ms, plus the total matching the filters."""
        raise NotImplementedError


@contextmanager
def _storage_errors(op: str):
    try:
        yield
    except RedisError as e:
        raise StorageError(f"Transaction store {op} failed: {e}") from e


class RedisTransactionStore(TransactionStore):
    def __init__(self, redis: Redis):
        self._r = redis
        self._update = redis.register_script(_UPDATE_LUA)

    def insert(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        record = dict(fields)
        record["id"] = record.get("id") or new_id()
        score = int(record["created_ms"])
        with _storage_errors("insert"):
            pipe = self._r.pipeline(transaction=True)
            pipe.set(_key(record["id"]), json.dumps(record))
            pipe.zadd(INDEX_CREATED, {record["id"]: score})
            pipe.zadd(f"{INDEX_STATUS_PREFIX}{record['status']}", {record["id"]: score})
            pipe.execute()
        return record

    def get_by_id(self, txn_id: str) -> Optional[Dict[str, Any]]:
        with _storage_errors("get"):
            raw = self._r.get(_key(txn_id))
        if not raw:
            return None
        return json.loads(raw)

    def _apply(self, txn_id: str, expected_status: str, fields: Dict[str, Any]) -> int:
        with _storage_errors("update"):
            res = self._update(
                keys=[_key(txn_id), INDEX_STATUS_PREFIX],
                args=[expected_status, json.dumps(fields)],
            )
        res = int(res)
        if res < 0:
            raise NotFoundError(f"Transaction not found: {txn_id}")
        return res

    def update_fields(self, txn_id: str, fields: Dict[str, Any]) -> None:
        self._apply(txn_id, "", fields)

    def compare_and_update(self, txn_id: str, expected_status: str, fields: Dict[str, Any]) -> bool:
        return self._apply(txn_id, expected_status, fields) == 1

    def query(self, filters=None, order=NEWEST_FIRST, limit=50, offset=0):
        filters = _check_filters(filters)
        newest_first = _check_order(order)
        index = INDEX_CREATED
        if "status" in filters:
            index = f"{INDEX_STATUS_PREFIX}{filters['status']}"

        with _storage_errors("query"):
            total = int(self._r.zcard(index) or 0)
            if limit <= 0:
                return [], total
            page = self._r.zrevrange if newest_first else self._r.zrange
            ids = page(index, offset, offset + limit - 1) or []
            raws = self._r.mget([_key(i) for i in ids]) if ids else []

        records = [json.loads(raw) for raw in raws if raw]
        return records, total


class MemoryTransactionStore(TransactionStore):
    """Single-process backend. Data lives only as long as the process."""

    def __init__(self):
        self._lock = threading.RLock()
        self._records: Dict[str, Dict[str, Any]] = {}
        self._seq: Dict[str, int] = {}

    def insert(self, fields):
        record = copy.deepcopy(dict(fields))
        record["id"] = record.get("id") or new_id()
        with self._lock:
            self._records[record["id"]] = record
            self._seq[record["id"]] = len(self._seq)
            return copy.deepcopy(record)

    def get_by_id(self, txn_id):
        with self._lock:
            rec = self._records.get(txn_id)
            return copy.deepcopy(rec) if rec is not None else None

    def update_fields(self, txn_id, fields):
        with self._lock:
            rec = self._records.get(txn_id)
            if rec is None:
                raise NotFoundError(f"Transaction not found: {txn_id}")
            rec.update(copy.deepcopy(fields))

    def compare_and_update(self, txn_id, expected_status, fields):
        with self._lock:
            rec = self._records.get(txn_id)
            if rec is None:
                raise NotFoundError(f"Transaction not found: {txn_id}")
            if rec.get("status") != expected_status:
                return False
            rec.update(copy.deepcopy(fields))
            return True

    def delete(self, txn_id: str) -> None:
        # Retention is an external concern; used to simulate out-of-band deletion.
        with self._lock:
            self._records.pop(txn_id, None)

    def query(self, filters=None, order=NEWEST_FIRST, limit=50, offset=0):
        filters = _check_filters(filters)
        newest_first = _check_order(order)
        with self._lock:
            rows = [
                r for r in self._records.values()
                if all(r.get(k) == v for k, v in filters.items())
            ]
            rows.sort(key=lambda r: (int(r["created_ms"]), self._seq[r["id"]]), reverse=newest_first)
            total = len(rows)
            page = rows[offset:offset + limit] if limit > 0 else []
            return copy.deepcopy(page), total
