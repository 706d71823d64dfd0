import json
from unittest.mock import MagicMock

import pytest
from redis import RedisError

from paylite.core.errors import NotFoundError, StorageError
from paylite.store.transaction_repo import (
    INDEX_CREATED,
    INDEX_STATUS_PREFIX,
    MemoryTransactionStore,
    OLDEST_FIRST,
    RedisTransactionStore,
)


def _fields(created_ms, status="created", vpa="a@upi"):
    return {
        "payee_vpa": vpa,
        "payee_name": "A",
        "amount": "10",
        "user_phone": None,
        "status": status,
        "mode": None,
        "created_at": "2024-05-01T10:00:00.000Z",
        "updated_at": "2024-05-01T10:00:00.000Z",
        "created_ms": created_ms,
    }


# ---------------------------------------------------------------------------
# Memory backend
# ---------------------------------------------------------------------------
@pytest.fixture
def memory_store():
    return MemoryTransactionStore()


def test_memory_insert_assigns_id_and_copies(memory_store):
    fields = _fields(1)
    rec = memory_store.insert(fields)
    assert rec["id"]
    assert "id" not in fields

    rec["status"] = "tampered"
    assert memory_store.get_by_id(rec["id"])["status"] == "created"


def test_memory_get_missing(memory_store):
    assert memory_store.get_by_id("nope") is None


def test_memory_compare_and_update(memory_store):
    rec = memory_store.insert(_fields(1))
    assert memory_store.compare_and_update(rec["id"], "created", {"status": "confirmed", "mode": "ivr"}) is True
    assert memory_store.compare_and_update(rec["id"], "created", {"status": "confirmed", "mode": "ussd"}) is False
    assert memory_store.get_by_id(rec["id"])["mode"] == "ivr"


def test_memory_updates_on_missing_record_raise(memory_store):
    with pytest.raises(NotFoundError):
        memory_store.compare_and_update("nope", "created", {"status": "confirmed"})
    with pytest.raises(NotFoundError):
        memory_store.update_fields("nope", {"status": "failed"})


def test_memory_query_orders_filters_and_counts(memory_store):
    a = memory_store.insert(_fields(1))
    b = memory_store.insert(_fields(2, status="failed"))
    c = memory_store.insert(_fields(2))  # same ms as b, inserted later

    rows, total = memory_store.query()
    assert [r["id"] for r in rows] == [c["id"], b["id"], a["id"]]
    assert total == 3

    rows, total = memory_store.query({"status": "failed"})
    assert [r["id"] for r in rows] == [b["id"]]
    assert total == 1

    rows, total = memory_store.query({"status": None}, limit=1, offset=1)
    assert [r["id"] for r in rows] == [b["id"]]
    assert total == 3


def test_memory_query_oldest_first(memory_store):
    a = memory_store.insert(_fields(1))
    b = memory_store.insert(_fields(2))
    memory_store.insert(_fields(3))

    rows, total = memory_store.query(order=OLDEST_FIRST, limit=2)
    assert [r["id"] for r in rows] == [a["id"], b["id"]]
    assert total == 3


def test_memory_query_rejects_unknown_filter(memory_store):
    with pytest.raises(ValueError):
        memory_store.query({"payee_vpa": "a@upi"})
    with pytest.raises(ValueError):
        memory_store.query(order="amount")


# ---------------------------------------------------------------------------
# Redis backend (mocked client)
# ---------------------------------------------------------------------------
@pytest.fixture
def mock_redis():
    r = MagicMock()
    r.register_script.return_value = MagicMock(name="update_script")
    return r


def test_redis_insert_writes_record_and_indexes(mock_redis):
    store = RedisTransactionStore(mock_redis)
    pipe = mock_redis.pipeline.return_value

    rec = store.insert(_fields(1714557600000))

    pipe.set.assert_called_once()
    key, raw = pipe.set.call_args.args
    assert key == f"txn:{rec['id']}"
    assert json.loads(raw)["payee_vpa"] == "a@upi"
    pipe.zadd.assert_any_call(INDEX_CREATED, {rec["id"]: 1714557600000})
    pipe.zadd.assert_any_call(f"{INDEX_STATUS_PREFIX}created", {rec["id"]: 1714557600000})
    pipe.execute.assert_called_once()


def test_redis_get_by_id(mock_redis):
    store = RedisTransactionStore(mock_redis)
    mock_redis.get.return_value = json.dumps({"id": "abc", "status": "created"})
    assert store.get_by_id("abc") == {"id": "abc", "status": "created"}
    mock_redis.get.assert_called_with("txn:abc")

    mock_redis.get.return_value = None
    assert store.get_by_id("missing") is None


@pytest.mark.parametrize("script_result,expected", [(1, True), (0, False)])
def test_redis_compare_and_update(mock_redis, script_result, expected):
    store = RedisTransactionStore(mock_redis)
    script = mock_redis.register_script.return_value
    script.return_value = script_result

    assert store.compare_and_update("abc", "created", {"status": "confirmed"}) is expected
    script.assert_called_once_with(
        keys=["txn:abc", INDEX_STATUS_PREFIX],
        args=["created", json.dumps({"status": "confirmed"})],
    )


def test_redis_update_missing_raises_not_found(mock_redis):
    store = RedisTransactionStore(mock_redis)
    mock_redis.register_script.return_value.return_value = -1
    with pytest.raises(NotFoundError):
        store.update_fields("abc", {"status": "failed"})


def test_redis_update_fields_is_unconditional(mock_redis):
    store = RedisTransactionStore(mock_redis)
    script = mock_redis.register_script.return_value
    script.return_value = 1
    store.update_fields("abc", {"status": "failed"})
    assert script.call_args.kwargs["args"][0] == ""


def test_redis_query_uses_status_index(mock_redis):
    store = RedisTransactionStore(mock_redis)
    mock_redis.zcard.return_value = 7
    mock_redis.zrevrange.return_value = ["a", "b"]
    mock_redis.mget.return_value = [json.dumps({"id": "a"}), None]

    rows, total = store.query({"status": "failed"}, limit=2, offset=4)

    assert total == 7
    assert rows == [{"id": "a"}]
    mock_redis.zcard.assert_called_with(f"{INDEX_STATUS_PREFIX}failed")
    mock_redis.zrevrange.assert_called_with(f"{INDEX_STATUS_PREFIX}failed", 4, 5)
    mock_redis.mget.assert_called_with(["txn:a", "txn:b"])


def test_redis_query_oldest_first_uses_zrange(mock_redis):
    store = RedisTransactionStore(mock_redis)
    mock_redis.zcard.return_value = 2
    mock_redis.zrange.return_value = ["a"]
    mock_redis.mget.return_value = [json.dumps({"id": "a"})]

    rows, total = store.query({"status": "confirmed"}, order=OLDEST_FIRST, limit=1)

    assert (rows, total) == ([{"id": "a"}], 2)
    mock_redis.zrange.assert_called_with(f"{INDEX_STATUS_PREFIX}confirmed", 0, 0)
    mock_redis.zrevrange.assert_not_called()


def test_redis_query_zero_limit_only_counts(mock_redis):
    store = RedisTransactionStore(mock_redis)
    mock_redis.zcard.return_value = 3
    assert store.query(limit=0) == ([], 3)
    mock_redis.zcard.assert_called_with(INDEX_CREATED)
    mock_redis.zrevrange.assert_not_called()


def test_redis_errors_surface_as_storage_error(mock_redis):
    store = RedisTransactionStore(mock_redis)
    mock_redis.get.side_effect = RedisError("connection refused")
    with pytest.raises(StorageError):
        store.get_by_id("abc")

    mock_redis.register_script.return_value.side_effect = RedisError("timeout")
    with pytest.raises(StorageError):
        store.compare_and_update("abc", "created", {"status": "confirmed"})
