"""
Process-scoped collaborators. Built once at startup (API lifespan, worker
main, RQ job) and passed explicitly into the engine and scheduler.
"""
from dataclasses import dataclass
from typing import Optional

from paylite.core.engine import TransactionEngine
from paylite.core.outcomes import make_rng, parse_weights
from paylite.observability.metrics import Metrics
from paylite.queue.scheduler import TransitionScheduler
from paylite.settings import settings
from paylite.store.job_repo import JobStore, MemoryJobStore, RedisJobStore
from paylite.store.transaction_repo import TransactionStore, MemoryTransactionStore, RedisTransactionStore


@dataclass
class Services:
    transactions: TransactionStore
    jobs: JobStore
    metrics: Metrics
    scheduler: TransitionScheduler
    engine: TransactionEngine


def build_services(backend: Optional[str] = None, dispatch=None, rng=None, clock=None) -> Services:
    backend = (backend or settings.STORE_BACKEND).lower()
    if backend == "memory":
        transactions, jobs, metrics = MemoryTransactionStore(), MemoryJobStore(), Metrics()
    elif backend == "redis":
        from paylite.store.redis_conn import get_redis

        r = get_redis()
        transactions, jobs, metrics = RedisTransactionStore(r), RedisJobStore(r), Metrics(r)
    else:
        raise ValueError(f"Unknown STORE_BACKEND: {backend!r}")

    if dispatch is None and settings.SCHEDULER_DISPATCH == "rq":
        from paylite.queue.jobs import enqueue_transition

        dispatch = enqueue_transition

    extra = {"clock": clock} if clock is not None else {}
    scheduler = TransitionScheduler(
        transactions,
        jobs,
        metrics=metrics,
        rng=rng or make_rng(settings.RANDOM_SEED),
        processing_delay_sec=settings.PROCESSING_DELAY_SEC,
        settle_delay_sec=settings.SETTLE_DELAY_SEC,
        outcome_weights=parse_weights(settings.OUTCOME_WEIGHTS),
        lease_ms=settings.TRANSITION_LEASE_MS,
        max_attempts=settings.TRANSITION_MAX_ATTEMPTS,
        base_delay_ms=settings.TRANSITION_BASE_DELAY_MS,
        max_delay_ms=settings.TRANSITION_MAX_DELAY_MS,
        batch_size=settings.SCHEDULER_BATCH_SIZE,
        poll_interval_sec=settings.SCHEDULER_POLL_INTERVAL_SEC,
        reconcile_interval_sec=settings.SCHEDULER_RECONCILE_INTERVAL_SEC,
        dispatch=dispatch,
        **extra,
    )
    engine = TransactionEngine(
        transactions,
        scheduler,
        metrics=metrics,
        default_limit=settings.LIST_DEFAULT_LIMIT,
        max_limit=settings.LIST_MAX_LIMIT,
        **extra,
    )
    return Services(transactions=transactions, jobs=jobs, metrics=metrics, scheduler=scheduler, engine=engine)


_services: Optional[Services] = None


def get_services() -> Services:
    """Lazily built default services for processes without an explicit startup hook (RQ jobs)."""
    global _services
    if _services is None:
        _services = build_services()
    return _services
