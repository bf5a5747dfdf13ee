from __future__ import annotations
from pydantic import BaseModel, ConfigDict


class CallContext(BaseModel):
    """Who is calling and at which block height; fixed for the whole call."""
    model_config = ConfigDict(frozen=True)

    caller: str
    height: int
