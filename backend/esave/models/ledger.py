from __future__ import annotations
from pydantic import BaseModel

class LedgerEntry(BaseModel):
    type: str                 # MINT | TRANSFER
    sender: str | None = None  # None for MINT
    recipient: str
    amount: int
