"""
Lifecycle counters & scheduler lag
----------------------------------
Lightweight counters and a bounded list of lag samples (how late a delayed
transition fired relative to its fire_at), backed by Redis when available or
by process memory otherwise. Recording is best-effort: a metrics failure is
logged and never fails the lifecycle operation that triggered it.
"""
from __future__ import annotations
import threading
import time
from collections import Counter
from typing import Dict, List, Optional, Tuple

from redis import Redis, RedisError

from paylite.core.lifecycle import TERMINAL_STATUSES
from paylite.observability.logging import log

K_CREATED = "metrics:txn:created"
K_CONFIRMED = "metrics:txn:confirmed"
K_CONFIRM_REJECTED = "metrics:txn:confirm_rejected"
K_OUTCOME_PREFIX = "metrics:txn:outcome:"
K_STALE = "metrics:scheduler:stale"
K_RETRIES = "metrics:scheduler:retries"
K_LAG = "metrics:scheduler:lag"  # LPUSH ms

_MAX_SAMPLES = 500  # cap to bound percentile computation cost


def _percentile(data: List[float], p: float) -> float:
    """Deterministic percentile (nearest-rank on sorted data)."""
    if not data:
        return 0.0
    d = sorted(data)
    k = max(1, int(round(p * len(d))))
    return float(d[k - 1])


def _p50_p95(samples: List[float]) -> Tuple[float, float]:
    if not samples:
        return 0.0, 0.0
    return _percentile(samples, 0.50), _percentile(samples, 0.95)


class Metrics:
    def __init__(self, redis: Optional[Redis] = None):
        self._r = redis
        self._lock = threading.Lock()
        self._counts: Counter = Counter()
        self._lag: List[int] = []

    def _incr(self, key: str) -> None:
        if self._r is None:
            with self._lock:
                self._counts[key] += 1
            return
        try:
            self._r.incr(key, 1)
        except RedisError as e:
            log(event="metrics_error", key=key, error=str(e))

    def _get(self, key: str) -> int:
        if self._r is None:
            with self._lock:
                return int(self._counts.get(key, 0))
        return int(self._r.get(key) or 0)

    def increment_created(self) -> None:
        self._incr(K_CREATED)

    def increment_confirmed(self) -> None:
        self._incr(K_CONFIRMED)

    def increment_confirm_rejected(self) -> None:
        self._incr(K_CONFIRM_REJECTED)

    def increment_outcome(self, status: str) -> None:
        self._incr(f"{K_OUTCOME_PREFIX}{status}")

    def increment_stale(self) -> None:
        self._incr(K_STALE)

    def increment_retry(self) -> None:
        self._incr(K_RETRIES)

    def record_lag(self, ms: int) -> None:
        try:
            ms = max(0, int(ms))
        except Exception:
            return
        if self._r is None:
            with self._lock:
                self._lag.insert(0, ms)
                del self._lag[_MAX_SAMPLES:]
            return
        try:
            self._r.lpush(K_LAG, ms)
            self._r.ltrim(K_LAG, 0, _MAX_SAMPLES - 1)
        except RedisError as e:
            log(event="metrics_error", key=K_LAG, error=str(e))

    def _read_lag(self) -> List[float]:
        if self._r is None:
            with self._lock:
                return [float(x) for x in self._lag]
        out: List[float] = []
        for x in self._r.lrange(K_LAG, 0, _MAX_SAMPLES - 1) or []:
            try:
                out.append(float(x))
            except (TypeError, ValueError):
                continue
        return out

    def snapshot(self) -> Dict[str, object]:
        """Counters plus p50/p95 scheduler lag (ms) for /admin/stats."""
        p50, p95 = _p50_p95(self._read_lag())
        return {
            "created": self._get(K_CREATED),
            "confirmed": self._get(K_CONFIRMED),
            "confirmRejected": self._get(K_CONFIRM_REJECTED),
            "outcomes": {s: self._get(f"{K_OUTCOME_PREFIX}{s}") for s in sorted(TERMINAL_STATUSES)},
            "staleTransitions": self._get(K_STALE),
            "transitionRetries": self._get(K_RETRIES),
            "p50SchedulerLagMs": round(p50, 3),
            "p95SchedulerLagMs": round(p95, 3),
            "snapshotAt": int(time.time()),
        }
