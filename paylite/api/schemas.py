from decimal import Decimal
from typing import List, Literal, Optional
from pydantic import BaseModel

# Requests carry only shape/type constraints; value rules (non-empty payee,
# positive amount, known mode) are enforced by the engine so every caller gets
# the same ValidationError.

class CreateTransactionRequest(BaseModel):
    payeeVpa: str
    payeeName: str
    amount: Decimal
    userPhone: Optional[str] = None

class ConfirmRequest(BaseModel):
    mode: Optional[str] = None

class TransactionOut(BaseModel):
    id: str
    payeeVpa: str
    payeeName: str
    amount: float
    status: str
    mode: Optional[str] = None
    userPhone: Optional[str] = None
    createdAt: str
    updatedAt: str

class InstructionOut(BaseModel):
    type: Literal["ussd", "ivr"]
    steps: List[str]
    message: str

class TransactionEnvelope(BaseModel):
    transaction: TransactionOut

class ConfirmResponse(BaseModel):
    transaction: TransactionOut
    instruction: InstructionOut

class StatusResponse(BaseModel):
    id: str
    status: str
    updatedAt: str

class TransactionPage(BaseModel):
    transactions: List[TransactionOut]
    total: int
    limit: int
    offset: int
