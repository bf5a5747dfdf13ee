from __future__ import annotations
from fastapi import APIRouter, Depends, HTTPException, Path
from esave.deps import get_caller, get_engine, unwrap
from esave.engine import Engine
from esave.schemas.reward import ClaimResult, FundIn, ParticipantRewardPublic, RewardSnapshot, TargetIn
from esave.schemas.savings import ContractRefIn

router = APIRouter(prefix="/rewards", tags=["rewards"])

def _snapshot_or_404(engine: Engine, challenge_id: int) -> RewardSnapshot:
    snap = engine.reward_snapshot(challenge_id)
    if snap is None:
        raise HTTPException(status_code=404, detail="No reward pool for this challenge")
    snap["rewards"] = [r.model_dump() for r in snap["rewards"]]
    return RewardSnapshot.model_validate(snap)

@router.put("/config/token")
async def set_token_contract(payload: ContractRefIn, engine: Engine = Depends(get_engine), caller: str = Depends(get_caller)):
    unwrap(engine.set_token_contract(caller, payload.contract))
    return {"token_contract": payload.contract}

@router.put("/config/calculator")
async def set_calculator_contract(payload: ContractRefIn, engine: Engine = Depends(get_engine), caller: str = Depends(get_caller)):
    unwrap(engine.set_calculator_contract(caller, payload.contract))
    return {"calculator_contract": payload.contract}

@router.put("/config/registry")
async def set_registry_contract(payload: ContractRefIn, engine: Engine = Depends(get_engine), caller: str = Depends(get_caller)):
    unwrap(engine.set_distributor_registry_contract(caller, payload.contract))
    return {"registry_contract": payload.contract}

@router.post("/{challenge_id}/fund", response_model=RewardSnapshot)
async def fund(
    payload: FundIn,
    challenge_id: int = Path(...),
    engine: Engine = Depends(get_engine),
    caller: str = Depends(get_caller),
):
    unwrap(engine.fund_challenge(caller, challenge_id, payload.amount))
    return _snapshot_or_404(engine, challenge_id)

@router.put("/{challenge_id}/target", response_model=RewardSnapshot)
async def set_target(
    payload: TargetIn,
    challenge_id: int = Path(...),
    engine: Engine = Depends(get_engine),
    caller: str = Depends(get_caller),
):
    unwrap(engine.set_challenge_target(caller, challenge_id, payload.target_percentage, payload.end_height))
    return _snapshot_or_404(engine, challenge_id)

@router.post("/{challenge_id}/distribute", response_model=RewardSnapshot)
async def distribute(
    challenge_id: int = Path(...),
    engine: Engine = Depends(get_engine),
    caller: str = Depends(get_caller),
):
    unwrap(engine.distribute_rewards(caller, challenge_id))
    return _snapshot_or_404(engine, challenge_id)

@router.post("/{challenge_id}/claim", response_model=ClaimResult)
async def claim(
    challenge_id: int = Path(...),
    engine: Engine = Depends(get_engine),
    caller: str = Depends(get_caller),
):
    amount = unwrap(engine.claim_reward(caller, challenge_id))
    return ClaimResult(challenge_id=challenge_id, amount=amount)

@router.get("/{challenge_id}", response_model=RewardSnapshot)
async def get_rewards(challenge_id: int = Path(...), engine: Engine = Depends(get_engine)):
    return _snapshot_or_404(engine, challenge_id)

@router.get("/{challenge_id}/participants/{participant}", response_model=ParticipantRewardPublic)
async def get_participant_reward(
    challenge_id: int = Path(...),
    participant: str = Path(...),
    engine: Engine = Depends(get_engine),
):
    r = engine.get_participant_reward(challenge_id, participant)
    if r is None:
        raise HTTPException(status_code=404, detail="No reward for this participant")
    return ParticipantRewardPublic(**r.model_dump())
