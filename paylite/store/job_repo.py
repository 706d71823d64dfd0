"""
Transition job ledger
---------------------
Durable records of pending delayed transitions. A job moves through:

    due (sorted by fire_at) --claim--> inflight (sorted by lease expiry) --complete--> gone
                                         |                 \\
                                         | recover()        --dead_letter--> dlq
                                         v
                                        due

claim() is atomic, so with several pollers each job is applied by exactly one
of them. recover() returns jobs whose lease expired (poller crashed mid-apply)
to the due set; call it on startup.
"""
from __future__ import annotations

import json
import threading
from contextlib import contextmanager
from typing import Dict, List, Optional

from redis import Redis, RedisError

from paylite.core.errors import StorageError
from paylite.store.models import TransitionJob
from paylite.utils.time import now_ms

JOB_PREFIX = "transition:job:"
DUE_KEY = "transitions:due"
INFLIGHT_KEY = "transitions:inflight"
DLQ_KEY = "transitions:dlq"

# KEYS[1] due, KEYS[2] inflight; ARGV[1] job id, ARGV[2] lease expiry ms
_CLAIM_LUA = """
if redis.call('ZREM', KEYS[1], ARGV[1]) == 1 then
  redis.call('ZADD', KEYS[2], ARGV[2], ARGV[1])
  return 1
end
return 0
"""

# KEYS[1] inflight, KEYS[2] due; ARGV[1] now ms
_RECOVER_LUA = """
local ids = redis.call('ZRANGEBYSCORE', KEYS[1], '-inf', ARGV[1])
for _, id in ipairs(ids) do
  redis.call('ZREM', KEYS[1], id)
  redis.call('ZADD', KEYS[2], ARGV[1], id)
end
return #ids
"""


def _key(job_id: str) -> str:
    return f"{JOB_PREFIX}{job_id}"


class JobStore:
    """Interface shared by the Redis and in-memory ledgers."""

    def save(self, job: TransitionJob) -> None:
        raise NotImplementedError

    def due_ids(self, now: int, limit: int = 100) -> List[str]:
        raise NotImplementedError

    def claim(self, job_id: str, lease_until: int) -> bool:
        raise NotImplementedError

    def load(self, job_id: str) -> Optional[TransitionJob]:
        raise NotImplementedError

    def complete(self, job_id: str) -> None:
        raise NotImplementedError

    def dead_letter(self, job: TransitionJob, reason: str) -> None:
        raise NotImplementedError

    def recover(self, now: int) -> int:
        raise NotImplementedError

    def stats(self) -> Dict[str, int]:
        raise NotImplementedError


@contextmanager
def _storage_errors(op: str):
    try:
        yield
    except RedisError as e:
        raise StorageError(f"Job ledger {op} failed: {e}") from e


class RedisJobStore(JobStore):
    def __init__(self, redis: Redis):
        self._r = redis
        self._claim = redis.register_script(_CLAIM_LUA)
        self._recover = redis.register_script(_RECOVER_LUA)

    def save(self, job):
        with _storage_errors("save"):
            pipe = self._r.pipeline(transaction=True)
            pipe.set(_key(job.job_id), json.dumps(job.to_record()))
            pipe.zrem(INFLIGHT_KEY, job.job_id)
            pipe.zadd(DUE_KEY, {job.job_id: job.fire_at_ms})
            pipe.execute()

    def due_ids(self, now, limit=100):
        with _storage_errors("poll"):
            return list(self._r.zrangebyscore(DUE_KEY, "-inf", now, start=0, num=limit) or [])

    def claim(self, job_id, lease_until):
        with _storage_errors("claim"):
            return int(self._claim(keys=[DUE_KEY, INFLIGHT_KEY], args=[job_id, lease_until])) == 1

    def load(self, job_id):
        with _storage_errors("load"):
            raw = self._r.get(_key(job_id))
        if not raw:
            return None
        return TransitionJob.from_record(json.loads(raw))

    def complete(self, job_id):
        with _storage_errors("complete"):
            pipe = self._r.pipeline(transaction=True)
            pipe.delete(_key(job_id))
            pipe.zrem(INFLIGHT_KEY, job_id)
            pipe.zrem(DUE_KEY, job_id)
            pipe.execute()

    def dead_letter(self, job, reason):
        entry = dict(job.to_record(), reason=reason, deadAt=now_ms())
        with _storage_errors("dead_letter"):
            self._r.lpush(DLQ_KEY, json.dumps(entry))
        self.complete(job.job_id)

    def recover(self, now):
        with _storage_errors("recover"):
            return int(self._recover(keys=[INFLIGHT_KEY, DUE_KEY], args=[now]))

    def stats(self):
        with _storage_errors("stats"):
            return {
                "due": int(self._r.zcard(DUE_KEY) or 0),
                "inflight": int(self._r.zcard(INFLIGHT_KEY) or 0),
                "deadLettered": int(self._r.llen(DLQ_KEY) or 0),
            }


class MemoryJobStore(JobStore):
    def __init__(self):
        self._lock = threading.RLock()
        self._jobs: Dict[str, dict] = {}
        self._due: Dict[str, int] = {}
        self._inflight: Dict[str, int] = {}
        self.dlq: List[dict] = []

    def save(self, job):
        with self._lock:
            self._jobs[job.job_id] = job.to_record()
            self._inflight.pop(job.job_id, None)
            self._due[job.job_id] = job.fire_at_ms

    def due_ids(self, now, limit=100):
        with self._lock:
            ready = sorted((score, jid) for jid, score in self._due.items() if score <= now)
            return [jid for _, jid in ready[:limit]]

    def claim(self, job_id, lease_until):
        with self._lock:
            if self._due.pop(job_id, None) is None:
                return False
            self._inflight[job_id] = int(lease_until)
            return True

    def load(self, job_id):
        with self._lock:
            rec = self._jobs.get(job_id)
        return TransitionJob.from_record(rec) if rec else None

    def complete(self, job_id):
        with self._lock:
            self._jobs.pop(job_id, None)
            self._inflight.pop(job_id, None)
            self._due.pop(job_id, None)

    def dead_letter(self, job, reason):
        with self._lock:
            self.dlq.append(dict(job.to_record(), reason=reason, deadAt=now_ms()))
            self.complete(job.job_id)

    def recover(self, now):
        with self._lock:
            expired = [jid for jid, lease in self._inflight.items() if lease <= now]
            for jid in expired:
                del self._inflight[jid]
                self._due[jid] = int(now)
            return len(expired)

    def stats(self):
        with self._lock:
            return {"due": len(self._due), "inflight": len(self._inflight), "deadLettered": len(self.dlq)}
