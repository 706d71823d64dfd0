import random
import threading
from datetime import datetime, timedelta, timezone

import fakeredis
import pytest

from paylite.core.engine import TransactionEngine
from paylite.core.errors import InvalidStateError, NotFoundError
from paylite.queue.scheduler import TransitionScheduler
from paylite.store.job_repo import RedisJobStore
from paylite.store.models import TransitionJob
from paylite.store.transaction_repo import RedisTransactionStore
from paylite.utils.time import to_ms

T0 = datetime(2024, 5, 1, 10, 0, 0, tzinfo=timezone.utc)
TERMINAL = {"success", "pending", "failed"}


def at(seconds):
    return T0 + timedelta(seconds=seconds)


class FakeClock:
    def __init__(self, start):
        self.now = start

    def __call__(self):
        return self.now


@pytest.fixture
def redis_client():
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture
def store(redis_client):
    return RedisTransactionStore(redis_client)


@pytest.fixture
def jobs(redis_client):
    return RedisJobStore(redis_client)


@pytest.fixture
def scheduler(store, jobs):
    return TransitionScheduler(store, jobs, rng=random.Random(21), clock=FakeClock(T0))


@pytest.fixture
def engine(store, scheduler):
    return TransactionEngine(store, scheduler, clock=FakeClock(T0))


def _ids(engine, status):
    txns, total, _, _ = engine.list(status=status)
    return [t.id for t in txns], total


# ---------------------------------------------------------------------------
# Transaction update script
# ---------------------------------------------------------------------------
def test_compare_and_update_applies_once(store, engine):
    txn = engine.create("bob@upi", "Bob", 250)

    assert store.compare_and_update(txn.id, "created", {"status": "confirmed", "mode": "ivr"}) is True
    assert store.compare_and_update(txn.id, "created", {"status": "confirmed", "mode": "ussd"}) is False

    rec = store.get_by_id(txn.id)
    assert rec["status"] == "confirmed"
    assert rec["mode"] == "ivr"
    assert rec["payee_vpa"] == "bob@upi"
    assert rec["user_phone"] is None


def test_status_change_moves_record_between_indexes(store, engine):
    txn = engine.create("bob@upi", "Bob", 250)
    other = engine.create("carol@upi", "Carol", 10)

    engine.confirm(txn.id, "ussd")

    assert _ids(engine, "confirmed") == ([txn.id], 1)
    assert _ids(engine, "created") == ([other.id], 1)
    assert _ids(engine, None)[1] == 2

    store.update_fields(txn.id, {"status": "failed"})
    assert _ids(engine, "confirmed") == ([], 0)
    assert _ids(engine, "failed") == ([txn.id], 1)


def test_update_script_reports_missing_record(store):
    assert store.get_by_id("nope") is None
    with pytest.raises(NotFoundError):
        store.compare_and_update("nope", "created", {"status": "confirmed"})


def test_concurrent_confirms_have_one_winner(engine, jobs):
    txn = engine.create("bob@upi", "Bob", 250)
    n = 8
    barrier = threading.Barrier(n)
    results = []
    lock = threading.Lock()

    def attempt(mode):
        barrier.wait()
        try:
            engine.confirm(txn.id, mode)
            outcome = "ok"
        except InvalidStateError:
            outcome = "invalid_state"
        with lock:
            results.append(outcome)

    threads = [threading.Thread(target=attempt, args=("ussd" if i % 2 else "ivr",)) for i in range(n)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(5)

    assert results.count("ok") == 1
    assert results.count("invalid_state") == n - 1
    assert jobs.stats()["due"] == 1
    assert _ids(engine, "confirmed") == ([txn.id], 1)


def test_full_lifecycle_on_redis(engine, scheduler):
    txn = engine.create("bob@upi", "Bob", 250)
    engine.confirm(txn.id, "ivr")
    with pytest.raises(InvalidStateError):
        engine.confirm(txn.id, "ivr")

    scheduler.run_pending(at(1.5))
    assert engine.get(txn.id).status == "processing"
    assert _ids(engine, "processing") == ([txn.id], 1)
    assert _ids(engine, "confirmed") == ([], 0)

    scheduler.run_pending(at(4.5))
    final = engine.get(txn.id).status
    assert final in TERMINAL
    assert _ids(engine, final) == ([txn.id], 1)
    assert _ids(engine, "processing") == ([], 0)
    assert scheduler.stats() == {"due": 0, "inflight": 0, "deadLettered": 0}


# ---------------------------------------------------------------------------
# Job ledger claim / recover scripts
# ---------------------------------------------------------------------------
def test_claim_then_recover_expired_lease(jobs):
    job = TransitionJob.new("txn-1", at(1.5), "confirmed", "processing", job_id="txn-1:processing")
    fire_ms = to_ms(at(1.5))
    jobs.save(job)

    assert jobs.due_ids(fire_ms - 1) == []
    assert jobs.due_ids(fire_ms) == [job.job_id]
    assert jobs.claim(job.job_id, fire_ms + 1000) is True
    assert jobs.claim(job.job_id, fire_ms + 1000) is False
    assert jobs.stats() == {"due": 0, "inflight": 1, "deadLettered": 0}

    # Lease still held
    assert jobs.recover(fire_ms + 999) == 0
    assert jobs.due_ids(fire_ms + 999) == []

    assert jobs.recover(fire_ms + 1000) == 1
    assert jobs.stats() == {"due": 1, "inflight": 0, "deadLettered": 0}
    assert jobs.due_ids(fire_ms + 1000) == [job.job_id]
    assert jobs.load(job.job_id).target_status == "processing"


def test_scheduler_recovers_lease_on_redis(engine, scheduler, jobs):
    txn = engine.create("bob@upi", "Bob", 250)
    engine.confirm(txn.id, "ussd")
    job_id = jobs.due_ids(to_ms(at(1.5)))[0]

    # Claimed by a poller that died before applying it
    assert jobs.claim(job_id, to_ms(at(2.0)))
    assert scheduler.run_pending(at(1.9)) == 0
    assert engine.get(txn.id).status == "confirmed"

    assert scheduler.run_pending(at(2.0)) == 1
    assert engine.get(txn.id).status == "processing"
