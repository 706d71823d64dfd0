import uuid
from dataclasses import dataclass, field, fields as dc_fields
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from paylite.core.lifecycle import CREATED
from paylite.utils.time import utcnow, to_iso, parse_iso, to_ms, from_ms


def new_id() -> str:
    return uuid.uuid4().hex


def _known_fields(cls, data: dict) -> dict:
    """Drop unknown keys so cls(**kwargs) never explodes on index/legacy fields."""
    allowed = {f.name for f in dc_fields(cls)}
    return {k: v for k, v in data.items() if k in allowed}


@dataclass
class Transaction:
    # Immutable after intake
    id: str
    payee_vpa: str
    payee_name: str
    amount: Decimal
    user_phone: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)

    # Lifecycle
    status: str = CREATED
    mode: Optional[str] = None  # set exactly once, at confirmation
    updated_at: datetime = field(default_factory=utcnow)

    def to_record(self) -> Dict[str, Any]:
        """Storage shape: snake_case keys, string amount, ISO timestamps."""
        return {
            "id": self.id,
            "payee_vpa": self.payee_vpa,
            "payee_name": self.payee_name,
            "amount": str(self.amount),
            "user_phone": self.user_phone,
            "status": self.status,
            "mode": self.mode,
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
            # Sort key for the creation-time index
            "created_ms": to_ms(self.created_at),
        }

    @classmethod
    def from_record(cls, data: Dict[str, Any]) -> "Transaction":
        data = _known_fields(cls, dict(data))
        data["amount"] = Decimal(str(data["amount"]))
        for key in ("created_at", "updated_at"):
            if isinstance(data.get(key), str):
                data[key] = parse_iso(data[key])
        return cls(**data)

    def to_public(self) -> Dict[str, Any]:
        """Boundary vocabulary (camelCase), independent of storage naming."""
        return {
            "id": self.id,
            "payeeVpa": self.payee_vpa,
            "payeeName": self.payee_name,
            "amount": float(self.amount),
            "status": self.status,
            "mode": self.mode,
            "userPhone": self.user_phone,
            "createdAt": to_iso(self.created_at),
            "updatedAt": to_iso(self.updated_at),
        }

    def status_view(self) -> Dict[str, Any]:
        return {"id": self.id, "status": self.status, "updatedAt": to_iso(self.updated_at)}


@dataclass
class TransitionJob:
    """A pending delayed transition: apply target_status at fire_at if status is still expected_status."""

    job_id: str
    transaction_id: str
    fire_at: datetime
    expected_status: str
    target_status: str
    attempts: int = 0

    @classmethod
    def new(cls, transaction_id: str, fire_at: datetime, expected_status: str, target_status: str,
            job_id: Optional[str] = None) -> "TransitionJob":
        return cls(
            job_id=job_id or new_id(),
            transaction_id=transaction_id,
            fire_at=fire_at,
            expected_status=expected_status,
            target_status=target_status,
        )

    @property
    def fire_at_ms(self) -> int:
        return to_ms(self.fire_at)

    def to_record(self) -> Dict[str, Any]:
        return {
            "jobId": self.job_id,
            "transactionId": self.transaction_id,
            "fireAt": self.fire_at_ms,
            "expectedStatus": self.expected_status,
            "targetStatus": self.target_status,
            "attempts": int(self.attempts),
        }

    @classmethod
    def from_record(cls, data: Dict[str, Any]) -> "TransitionJob":
        return cls(
            job_id=str(data["jobId"]),
            transaction_id=str(data["transactionId"]),
            fire_at=from_ms(int(data["fireAt"])),
            expected_status=str(data["expectedStatus"]),
            target_status=str(data["targetStatus"]),
            attempts=int(data.get("attempts", 0) or 0),
        )
