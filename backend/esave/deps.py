from __future__ import annotations
from typing import TypeVar
from fastapi import Header, HTTPException, Request
from esave.engine import Engine
from esave.errors import ErrorKind, Result

T = TypeVar("T")

_STATUS_BY_KIND = {
    ErrorKind.AUTHORIZATION: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.VALIDATION: 422,
    ErrorKind.STATE_CONFLICT: 409,
    ErrorKind.CONFIGURATION: 503,
    ErrorKind.EXTERNAL: 502,
}

def get_engine(request: Request) -> Engine:
    return request.app.state.engine

async def get_caller(x_principal: str | None = Header(default=None, alias="X-Principal")) -> str:
    if not x_principal:
        raise HTTPException(status_code=401, detail="Missing X-Principal header")
    return x_principal

def unwrap(res: Result[T]) -> T:
    """Return the success value or raise the HTTP error matching the failure kind."""
    if res.ok:
        return res.value
    code = res.code
    raise HTTPException(
        status_code=_STATUS_BY_KIND[code.kind],
        detail={"code": code.label, "error": int(code), "kind": code.kind.value},
    )
