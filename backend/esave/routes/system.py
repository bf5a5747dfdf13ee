from __future__ import annotations
from fastapi import APIRouter, Depends, HTTPException, Request, Query
from datetime import datetime, timezone
from esave.config import settings
from esave.deps import get_caller, get_engine
from esave.engine import Engine

router = APIRouter()

@router.get("/health")
async def health(request: Request):
    return{
        "status": "ok",
        "env": settings.environment,
        "time": datetime.now(timezone.utc).isoformat(),
        "request_id": request.headers.get("x-request-id") or request.state.request_id,
    }

@router.get("/version")
async def version():
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "git_sha": settings.git_sha,
        "build": "docker",
    }

@router.get("/clock")
async def clock(engine: Engine = Depends(get_engine)):
    return {"height": engine.height}

@router.post("/clock/advance")
async def advance_clock(
    blocks: int = Query(default=1, ge=0, le=1_000_000),
    engine: Engine = Depends(get_engine),
    caller: str = Depends(get_caller),
):
    """Move the local block clock forward. Authority only, and only in the dev environment."""
    if settings.environment != "dev":
        raise HTTPException(status_code=403, detail="Clock is driven by the ledger outside dev")
    if caller != engine.registry.authority:
        raise HTTPException(status_code=403, detail="Only the authority may advance the clock")
    try:
        height = engine.advance_clock(blocks)
    except TypeError:
        raise HTTPException(status_code=409, detail="Clock cannot be advanced by this host")
    return {"height": height}
