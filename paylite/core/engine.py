"""
Transaction lifecycle engine
----------------------------
Owns intake, confirmation and read operations for transactions.

INVARIANT: exactly one confirmation succeeds per transaction. The status
check is re-done inside the store as a compare-and-set (created -> confirmed),
so concurrent confirmations that all read `created` still produce a single
winner; the losers get InvalidStateError. The delayed-transition job is
enqueued only after that write commits. Its id is derived from the transaction,
so there is one processing job per confirmation; if saving it fails the
confirmation still stands and the scheduler's reconcile pass re-seeds it.
"""
from __future__ import annotations

import math
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Optional, Tuple

from paylite.core.errors import ValidationError, NotFoundError, InvalidStateError, StorageError
from paylite.core.instructions import build_instruction
from paylite.core.lifecycle import CREATED, CONFIRMED, MODES, STATUSES
from paylite.observability.logging import log
from paylite.observability.metrics import Metrics
from paylite.queue.scheduler import TransitionScheduler
from paylite.store.models import Transaction
from paylite.store.transaction_repo import TransactionStore, NEWEST_FIRST
from paylite.utils.time import utcnow, to_iso, to_ms, parse_iso

DEFAULT_LIMIT = 50
MAX_LIMIT = 100


def _require_text(name: str, value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{name} must be a non-empty string")
    return value


def _require_amount(value: Any) -> Decimal:
    # bool is an int subclass; True is not an amount
    if isinstance(value, bool) or value is None:
        raise ValidationError("amount must be a positive number")
    if isinstance(value, float) and not math.isfinite(value):
        raise ValidationError("amount must be a positive number")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError("amount must be a positive number")
    if not amount.is_finite() or amount <= 0:
        raise ValidationError("amount must be a positive number")
    return amount


def clamp_page(limit: Optional[int], offset: Optional[int],
               default_limit: int = DEFAULT_LIMIT, max_limit: int = MAX_LIMIT) -> Tuple[int, int]:
    limit = default_limit if limit is None else int(limit)
    offset = 0 if offset is None else int(offset)
    return max(0, min(limit, max_limit)), max(0, offset)


class TransactionEngine:
    def __init__(
        self,
        store: TransactionStore,
        scheduler: TransitionScheduler,
        *,
        metrics: Optional[Metrics] = None,
        clock: Callable[[], datetime] = utcnow,
        default_limit: int = DEFAULT_LIMIT,
        max_limit: int = MAX_LIMIT,
    ):
        self._store = store
        self._scheduler = scheduler
        self._metrics = metrics or Metrics()
        self._clock = clock
        self.default_limit = int(default_limit)
        self.max_limit = int(max_limit)

    def create(self, payee_vpa: Any, payee_name: Any, amount: Any, user_phone: Optional[str] = None) -> Transaction:
        vpa = _require_text("payeeVpa", payee_vpa)
        name = _require_text("payeeName", payee_name)
        amt = _require_amount(amount)
        if user_phone is not None and not isinstance(user_phone, str):
            raise ValidationError("userPhone must be a string")

        now = self._clock()
        draft = Transaction(
            id="",
            payee_vpa=vpa,
            payee_name=name,
            amount=amt,
            user_phone=(user_phone or None),
            status=CREATED,
            mode=None,
            created_at=now,
            updated_at=now,
        )
        fields = draft.to_record()
        del fields["id"]
        txn = Transaction.from_record(self._store.insert(fields))

        self._metrics.increment_created()
        log(event="transaction_created", transactionId=txn.id, amount=str(txn.amount),
            payeeVpa=txn.payee_vpa, userPhone=txn.user_phone)
        return txn

    def get(self, txn_id: str) -> Transaction:
        rec = self._store.get_by_id(txn_id)
        if rec is None:
            raise NotFoundError("Transaction not found")
        return Transaction.from_record(rec)

    def confirm(self, txn_id: str, mode: Any) -> Tuple[Transaction, Dict[str, object]]:
        # Mode is checked first, independent of whether the transaction exists.
        if mode not in MODES:
            raise ValidationError(f"Invalid mode: must be one of {', '.join(MODES)}")

        txn = self.get(txn_id)
        if txn.status != CREATED:
            self._reject(txn_id, txn.status)

        now = max(self._clock(), txn.created_at)
        won = self._store.compare_and_update(
            txn_id, CREATED, {"status": CONFIRMED, "mode": mode, "updated_at": to_iso(now)}
        )
        if not won:
            self._reject(txn_id, "raced")

        txn.status = CONFIRMED
        txn.mode = mode
        txn.updated_at = parse_iso(to_iso(now))

        try:
            self._scheduler.schedule_confirmation(txn_id, now)
        except StorageError as e:
            # Committed already; picked up by TransitionScheduler.reconcile.
            log(event="transition_enqueue_failed", transactionId=txn_id, error=str(e))

        self._metrics.increment_confirmed()
        log(event="transaction_confirmed", transactionId=txn_id, mode=mode,
            confirmedAtMs=to_ms(now))
        return txn, build_instruction(mode, txn.payee_vpa, txn.amount)

    def _reject(self, txn_id: str, observed: str) -> None:
        self._metrics.increment_confirm_rejected()
        log(event="confirm_rejected", transactionId=txn_id, observedStatus=observed)
        raise InvalidStateError("Transaction already processed")

    def get_status(self, txn_id: str) -> Dict[str, Any]:
        return self.get(txn_id).status_view()

    def list(
        self,
        status: Optional[str] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> Tuple[List[Transaction], int, int, int]:
        """
        Page of transactions, newest first, optionally filtered by exact status.
        Returns (transactions, total, limit, offset) with limit/offset as clamped.
        """
        if status is not None and status not in STATUSES:
            raise ValidationError(f"Invalid status filter: {status!r}")
        limit, offset = clamp_page(limit, offset, self.default_limit, self.max_limit)
        records, total = self._store.query(
            {"status": status}, order=NEWEST_FIRST, limit=limit, offset=offset
        )
        return [Transaction.from_record(r) for r in records], int(total), limit, offset
