"""
Delayed transition scheduler
----------------------------
Advances a confirmed transaction through its remaining edges without any
further client request:

    confirm at T        -> job A: at T + PROCESSING_DELAY_SEC, confirmed -> processing
    job A fires at F    -> job B: at F + SETTLE_DELAY_SEC,     processing -> drawn outcome

Jobs live in the durable ledger (store/job_repo.py) and are applied by a single
polling loop, either in a daemon thread of the API process or in the
standalone worker (queue/worker.py). Every transition is a compare-and-set
against the job's expected status; a job whose precondition no longer holds is
stale and is dropped. Storage failures are retried with exponential backoff
and dead-lettered after TRANSITION_MAX_ATTEMPTS.

Job ids are derived from the transaction and step, so a transaction has at most
one processing job and one settle job. reconcile() re-seeds the processing step
for transactions left `confirmed` with no job (the confirmation committed but
its job save failed, or the job was dead-lettered).
"""
from __future__ import annotations

import random
import threading
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from paylite.core.errors import NotFoundError, StorageError
from paylite.core.lifecycle import CONFIRMED, PROCESSING, is_terminal
from paylite.core.outcomes import DEFAULT_WEIGHTS, draw_outcome
from paylite.observability.logging import log
from paylite.observability.metrics import Metrics
from paylite.store.job_repo import JobStore
from paylite.store.models import TransitionJob
from paylite.store.transaction_repo import TransactionStore, OLDEST_FIRST
from paylite.utils.time import utcnow, to_iso, to_ms, after, parse_iso

# fire() results
APPLIED = "applied"
STALE = "stale"
RETRY = "retry"
DEAD = "dead"
MISSING = "missing"


def processing_job_id(transaction_id: str) -> str:
    return f"{transaction_id}:processing"


def settle_job_id(transaction_id: str) -> str:
    return f"{transaction_id}:settle"


class TransitionScheduler:
    def __init__(
        self,
        transactions: TransactionStore,
        jobs: JobStore,
        *,
        metrics: Optional[Metrics] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = utcnow,
        processing_delay_sec: float = 1.5,
        settle_delay_sec: float = 3.0,
        outcome_weights: Optional[List[Tuple[str, int]]] = None,
        lease_ms: int = 30000,
        max_attempts: int = 5,
        base_delay_ms: int = 500,
        max_delay_ms: int = 30000,
        batch_size: int = 100,
        poll_interval_sec: float = 0.1,
        reconcile_interval_sec: float = 5.0,
        dispatch: Optional[Callable[[str], object]] = None,
    ):
        self._tx = transactions
        self._jobs = jobs
        self._metrics = metrics or Metrics()
        self._rng = rng or random.Random()
        self._rng_lock = threading.Lock()
        self._clock = clock
        self.processing_delay_sec = float(processing_delay_sec)
        self.settle_delay_sec = float(settle_delay_sec)
        self.outcome_weights = outcome_weights or list(DEFAULT_WEIGHTS)
        self.lease_ms = int(lease_ms)
        self.max_attempts = int(max_attempts)
        self.base_delay_ms = int(base_delay_ms)
        self.max_delay_ms = int(max_delay_ms)
        self.batch_size = int(batch_size)
        self.poll_interval_sec = float(poll_interval_sec)
        self.reconcile_interval_ms = int(float(reconcile_interval_sec) * 1000)
        self._next_reconcile_ms = 0
        # When set (RQ mode), claimed jobs are handed off instead of applied here.
        self._dispatch = dispatch

        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------
    def schedule_confirmation(self, transaction_id: str, confirmed_at: datetime) -> TransitionJob:
        """Persist the processing step for a just-confirmed transaction."""
        job = TransitionJob.new(
            transaction_id,
            after(confirmed_at, self.processing_delay_sec),
            CONFIRMED,
            PROCESSING,
            job_id=processing_job_id(transaction_id),
        )
        self._jobs.save(job)
        log(
            event="transition_scheduled",
            transactionId=transaction_id,
            jobId=job.job_id,
            targetStatus=job.target_status,
            fireAt=to_iso(job.fire_at),
        )
        return job

    def _schedule_settle(self, transaction_id: str, fired_at: datetime) -> TransitionJob:
        with self._rng_lock:
            outcome = draw_outcome(self._rng, self.outcome_weights)
        job = TransitionJob.new(
            transaction_id,
            after(fired_at, self.settle_delay_sec),
            PROCESSING,
            outcome,
            job_id=settle_job_id(transaction_id),
        )
        self._jobs.save(job)
        log(
            event="transition_scheduled",
            transactionId=transaction_id,
            jobId=job.job_id,
            targetStatus=job.target_status,
            fireAt=to_iso(job.fire_at),
        )
        return job

    def _calc_backoff(self, attempt: int) -> int:
        """Exponential backoff with jitter."""
        delay = self.base_delay_ms * (2 ** (attempt - 1))
        jitter = delay * 0.1 * random.uniform(-1, 1)
        return min(self.max_delay_ms, int(delay + jitter))

    # ------------------------------------------------------------------
    # Applying
    # ------------------------------------------------------------------
    def run_pending(self, now: Optional[datetime] = None) -> int:
        """
        One polling pass: return expired leases to the due set, re-seed stranded
        confirmations (at most once per reconcile interval), then claim and
        apply (or dispatch) every due job. Returns the number of jobs claimed.
        """
        now = now or self._clock()
        now_ms = to_ms(now)
        recovered = self._jobs.recover(now_ms)
        if recovered:
            log(event="scheduler_recovered", jobs=recovered)
        if now_ms >= self._next_reconcile_ms:
            self._next_reconcile_ms = now_ms + self.reconcile_interval_ms
            self.reconcile(now)

        claimed = 0
        for job_id in self._jobs.due_ids(now_ms, self.batch_size):
            if not self._jobs.claim(job_id, now_ms + self.lease_ms):
                # Another poller won it
                continue
            claimed += 1
            if self._dispatch is None:
                self.fire(job_id, now)
                continue
            try:
                self._dispatch(job_id)
            except Exception as e:
                job = self._jobs.load(job_id)
                if job is not None:
                    self._retry(job, now, f"dispatch failed: {e}")
        return claimed

    def reconcile(self, now: Optional[datetime] = None) -> int:
        """
        Save a processing job, due immediately, for every `confirmed` transaction
        that has none and whose confirmation is older than the processing delay
        plus one lease. Returns the number of jobs re-seeded.
        """
        now = now or self._clock()
        cutoff_ms = to_ms(now) - int(self.processing_delay_sec * 1000) - self.lease_ms
        reseeded = 0
        offset = 0
        while True:
            records, total = self._tx.query(
                {"status": CONFIRMED}, order=OLDEST_FIRST, limit=self.batch_size, offset=offset
            )
            for rec in records:
                if to_ms(parse_iso(rec["updated_at"])) > cutoff_ms:
                    continue
                job_id = processing_job_id(rec["id"])
                if self._jobs.load(job_id) is not None:
                    continue
                self._jobs.save(TransitionJob.new(rec["id"], now, CONFIRMED, PROCESSING, job_id=job_id))
                reseeded += 1
                log(event="transition_reseeded", transactionId=rec["id"], jobId=job_id)
            offset += len(records)
            if not records or offset >= total:
                return reseeded

    def fire(self, job_id: str, now: Optional[datetime] = None) -> str:
        """Apply one claimed job against the current transaction state."""
        now = now or self._clock()
        job = self._jobs.load(job_id)
        if job is None:
            return MISSING

        try:
            applied = self._tx.compare_and_update(
                job.transaction_id,
                job.expected_status,
                {"status": job.target_status, "updated_at": to_iso(now)},
            )
            if not applied and job.target_status == PROCESSING:
                # A previous attempt may have applied the step and then failed before
                # its follow-up was saved; resume from there instead of stranding it.
                rec = self._tx.get_by_id(job.transaction_id)
                applied = bool(rec) and rec.get("status") == PROCESSING
                if applied:
                    log(event="transition_resumed", transactionId=job.transaction_id, jobId=job.job_id)
            if applied and job.target_status == PROCESSING:
                self._schedule_settle(job.transaction_id, now)
        except NotFoundError:
            log(event="transition_skipped_stale", transactionId=job.transaction_id,
                jobId=job.job_id, reason="transaction_missing")
            self._metrics.increment_stale()
            self._jobs.complete(job.job_id)
            return STALE
        except StorageError as e:
            return self._retry(job, now, str(e))

        if not applied:
            log(event="transition_skipped_stale", transactionId=job.transaction_id,
                jobId=job.job_id, expectedStatus=job.expected_status, reason="precondition_failed")
            self._metrics.increment_stale()
            self._jobs.complete(job.job_id)
            return STALE

        self._metrics.record_lag(to_ms(now) - job.fire_at_ms)
        if is_terminal(job.target_status):
            self._metrics.increment_outcome(job.target_status)
        log(
            event="transition_applied",
            transactionId=job.transaction_id,
            jobId=job.job_id,
            fromStatus=job.expected_status,
            toStatus=job.target_status,
            attempt=job.attempts + 1,
        )
        self._jobs.complete(job.job_id)
        return APPLIED

    def _retry(self, job: TransitionJob, now: datetime, error: str) -> str:
        job.attempts += 1
        if job.attempts >= self.max_attempts:
            self._jobs.dead_letter(job, error)
            log(event="transition_dead_lettered", transactionId=job.transaction_id,
                jobId=job.job_id, attempts=job.attempts, error=error)
            return DEAD

        backoff = self._calc_backoff(job.attempts)
        job.fire_at = after(now, ms=backoff)
        self._jobs.save(job)
        self._metrics.increment_retry()
        log(event="transition_retry_scheduled", transactionId=job.transaction_id,
            jobId=job.job_id, attempt=job.attempts, backoffMs=backoff, error=error)
        return RETRY

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------
    def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                self.run_pending()
            except Exception as e:
                log(event="scheduler_loop_error", errorType=type(e).__name__, error=str(e)[:500])
            self._stop.wait(self.poll_interval_sec)

    def start(self) -> None:
        """Run the polling loop in a daemon thread (idempotent)."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="transition-scheduler", daemon=True)
        self._thread.start()
        log(event="scheduler_started", pollIntervalSec=self.poll_interval_sec,
            dispatch="rq" if self._dispatch else "inline")

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        log(event="scheduler_stopped")

    def run_forever(self) -> None:
        """Blocking loop for the standalone worker process."""
        self._stop.clear()
        log(event="scheduler_started", pollIntervalSec=self.poll_interval_sec,
            dispatch="rq" if self._dispatch else "inline")
        try:
            self._loop()
        except KeyboardInterrupt:
            pass
        log(event="scheduler_stopped")

    def stats(self) -> dict:
        return self._jobs.stats()
