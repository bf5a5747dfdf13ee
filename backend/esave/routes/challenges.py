from __future__ import annotations
from fastapi import APIRouter, Depends, HTTPException, Path
from esave.deps import get_caller, get_engine, unwrap
from esave.engine import Engine
from esave.models.challenge import Challenge
from esave.schemas.challenge import (
    AuthorityUpdate, ChallengeCreate, ChallengeCreated, ChallengePublic, ChallengeUpdate, ParticipantPublic,
)

router = APIRouter(prefix="/challenges", tags=["challenges"])

def compute_runtime_state(ch: Challenge, height: int) -> str:
    if ch.status == "ended" or height > ch.end_block:
        return "ended"
    if height < ch.start_block:
        return "upcoming"
    return "started"

def hydrate_public(engine: Engine, ch: Challenge, caller: str | None) -> ChallengePublic:
    participants = engine.get_participants(ch.id)
    return ChallengePublic(
        **ch.model_dump(),
        participant_count=len(participants),
        is_participant=caller in participants if caller else False,
        is_active=engine.is_active(ch.id),
        is_ended=engine.is_ended(ch.id),
        runtime_state=compute_runtime_state(ch, engine.height),
    )

def _get_or_404(engine: Engine, challenge_id: int) -> Challenge:
    ch = engine.get_challenge(challenge_id)
    if not ch:
        raise HTTPException(status_code=404, detail="Challenge not found")
    return ch

@router.post("", response_model=ChallengeCreated, status_code=201)
async def create_challenge(
    payload: ChallengeCreate,
    engine: Engine = Depends(get_engine),
    caller: str = Depends(get_caller),
):
    cid = unwrap(engine.create_challenge(caller, **payload.model_dump()))
    return ChallengeCreated(id=cid)

@router.get("/{challenge_id}", response_model=ChallengePublic)
async def get_challenge(
    challenge_id: int = Path(...),
    engine: Engine = Depends(get_engine),
    caller: str = Depends(get_caller),
):
    return hydrate_public(engine, _get_or_404(engine, challenge_id), caller)

@router.patch("/{challenge_id}", response_model=ChallengePublic)
async def update_challenge(
    payload: ChallengeUpdate,
    challenge_id: int = Path(...),
    engine: Engine = Depends(get_engine),
    caller: str = Depends(get_caller),
):
    unwrap(engine.update_challenge(caller, challenge_id, **payload.model_dump()))
    return hydrate_public(engine, _get_or_404(engine, challenge_id), caller)

@router.post("/{challenge_id}/end")
async def end_challenge(
    challenge_id: int = Path(...),
    engine: Engine = Depends(get_engine),
    caller: str = Depends(get_caller),
):
    unwrap(engine.end_challenge(caller, challenge_id))
    return {"challenge_id": challenge_id, "status": "ended"}

@router.post("/{challenge_id}/join", response_model=ParticipantPublic, status_code=201)
async def join_challenge(
    challenge_id: int = Path(...),
    engine: Engine = Depends(get_engine),
    caller: str = Depends(get_caller),
):
    unwrap(engine.join_challenge(caller, challenge_id))
    m = engine.get_membership(challenge_id, caller)
    return ParticipantPublic(**m.model_dump())

@router.post("/{challenge_id}/leave", status_code=204)
async def leave_challenge(
    challenge_id: int = Path(...),
    engine: Engine = Depends(get_engine),
    caller: str = Depends(get_caller),
):
    unwrap(engine.leave_challenge(caller, challenge_id))

@router.get("/{challenge_id}/participants", response_model=list[ParticipantPublic])
async def list_participants(
    challenge_id: int = Path(...),
    engine: Engine = Depends(get_engine),
):
    _get_or_404(engine, challenge_id)
    return [
        ParticipantPublic(**engine.get_membership(challenge_id, p).model_dump())
        for p in engine.get_participants(challenge_id)
    ]

@router.put("/authority")
async def set_authority(
    payload: AuthorityUpdate,
    engine: Engine = Depends(get_engine),
    caller: str = Depends(get_caller),
):
    unwrap(engine.set_authority(caller, payload.authority))
    return {"authority": payload.authority}
