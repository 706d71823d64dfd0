from typing import Optional

from fastapi import APIRouter, Depends, Request

from paylite.api.schemas import (
    ConfirmRequest,
    ConfirmResponse,
    CreateTransactionRequest,
    StatusResponse,
    TransactionEnvelope,
    TransactionPage,
)
from paylite.core.engine import TransactionEngine

router = APIRouter(tags=["transactions"])


def get_engine(request: Request) -> TransactionEngine:
    return request.app.state.services.engine


@router.post("/transactions", response_model=TransactionEnvelope, status_code=201)
def create_transaction(body: CreateTransactionRequest, engine: TransactionEngine = Depends(get_engine)):
    txn = engine.create(body.payeeVpa, body.payeeName, body.amount, body.userPhone)
    return {"transaction": txn.to_public()}


@router.get("/transactions/{txn_id}", response_model=TransactionEnvelope)
def get_transaction(txn_id: str, engine: TransactionEngine = Depends(get_engine)):
    return {"transaction": engine.get(txn_id).to_public()}


@router.post("/transactions/{txn_id}/confirm", response_model=ConfirmResponse)
def confirm_transaction(txn_id: str, body: ConfirmRequest, engine: TransactionEngine = Depends(get_engine)):
    txn, instruction = engine.confirm(txn_id, body.mode)
    return {"transaction": txn.to_public(), "instruction": instruction}


@router.get("/transactions/{txn_id}/status", response_model=StatusResponse)
def get_transaction_status(txn_id: str, engine: TransactionEngine = Depends(get_engine)):
    return engine.get_status(txn_id)


@router.get("/transactions", response_model=TransactionPage)
def list_transactions(
    limit: Optional[int] = None,
    offset: Optional[int] = None,
    status: Optional[str] = None,
    engine: TransactionEngine = Depends(get_engine),
):
    # An empty ?status= means "no filter"
    txns, total, limit, offset = engine.list(status or None, limit, offset)
    return {
        "transactions": [t.to_public() for t in txns],
        "total": total,
        "limit": limit,
        "offset": offset,
    }
