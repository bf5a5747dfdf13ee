from __future__ import annotations
from fastapi import APIRouter, Depends, HTTPException, Path
from esave.deps import get_caller, get_engine, unwrap
from esave.engine import Engine
from esave.schemas.savings import (
    AnomalyCheckIn, BaselineIn, CalculatorParamIn, ContractRefIn, EligibilityIn, MeterReadingIn, SavingsStatus,
)

router = APIRouter(prefix="/savings", tags=["savings"])

def _status(engine: Engine, participant: str, challenge_id: int) -> SavingsStatus:
    b = engine.get_baseline(participant, challenge_id)
    p = engine.get_period_data(participant, challenge_id)
    e = engine.get_eligibility(participant, challenge_id)
    return SavingsStatus(
        participant=participant,
        challenge_id=challenge_id,
        baseline_kwh=b.baseline_kwh if b else None,
        baseline_data_points=b.data_points if b else 0,
        period_total_kwh=p.total_kwh if p else None,
        period_data_points=p.data_points if p else 0,
        last_timestamp=p.last_timestamp if p else None,
        eligible=e.eligible if e else False,
        savings_percentage=e.savings_percentage if e else 0,
        average_kwh=engine.get_average_usage(participant, challenge_id),
        anomaly_count=engine.get_anomaly_count(participant, challenge_id),
    )

@router.post("/readings", status_code=201)
async def submit_reading(
    payload: MeterReadingIn,
    engine: Engine = Depends(get_engine),
    caller: str = Depends(get_caller),
):
    try:
        sig = bytes.fromhex(payload.signature)
    except ValueError:
        raise HTTPException(status_code=422, detail="signature must be hex")
    unwrap(engine.submit_meter_reading(caller, payload.participant, payload.challenge_id, payload.kwh_reading, sig))
    return _status(engine, payload.participant, payload.challenge_id)

@router.put("/baselines")
async def set_baseline(
    payload: BaselineIn,
    engine: Engine = Depends(get_engine),
    caller: str = Depends(get_caller),
):
    unwrap(engine.set_baseline(caller, payload.participant, payload.challenge_id, payload.baseline_kwh))
    return _status(engine, payload.participant, payload.challenge_id)

@router.put("/eligibility")
async def update_eligibility(
    payload: EligibilityIn,
    engine: Engine = Depends(get_engine),
    caller: str = Depends(get_caller),
):
    unwrap(engine.update_eligibility(caller, payload.participant, payload.challenge_id, payload.eligible))
    return _status(engine, payload.participant, payload.challenge_id)

@router.post("/anomalies")
async def detect_anomaly(
    payload: AnomalyCheckIn,
    engine: Engine = Depends(get_engine),
    caller: str = Depends(get_caller),
):
    unwrap(engine.detect_anomaly(caller, payload.participant, payload.challenge_id, payload.kwh))
    return {"anomaly_count": engine.get_anomaly_count(payload.participant, payload.challenge_id)}

@router.get("/config")
async def get_config(engine: Engine = Depends(get_engine)):
    return engine.get_calculator_config()

@router.put("/config")
async def set_param(
    payload: CalculatorParamIn,
    engine: Engine = Depends(get_engine),
    caller: str = Depends(get_caller),
):
    unwrap(engine.set_calculator_param(caller, payload.name, payload.value))
    return engine.get_calculator_config()

@router.put("/config/oracle")
async def set_oracle(
    payload: ContractRefIn,
    engine: Engine = Depends(get_engine),
    caller: str = Depends(get_caller),
):
    unwrap(engine.set_oracle_contract(caller, payload.contract))
    return engine.get_calculator_config()

@router.put("/config/registry")
async def set_registry(
    payload: ContractRefIn,
    engine: Engine = Depends(get_engine),
    caller: str = Depends(get_caller),
):
    unwrap(engine.set_calculator_registry_contract(caller, payload.contract))
    return engine.get_calculator_config()

@router.get("/{challenge_id}/participants/{participant}", response_model=SavingsStatus)
async def get_status(
    challenge_id: int = Path(...),
    participant: str = Path(...),
    engine: Engine = Depends(get_engine),
):
    return _status(engine, participant, challenge_id)

@router.get("/{challenge_id}/participants/{participant}/percentage")
async def get_percentage(
    challenge_id: int = Path(...),
    participant: str = Path(...),
    engine: Engine = Depends(get_engine),
):
    return {"savings_percentage": unwrap(engine.get_savings_percentage(participant, challenge_id))}

@router.post("/{challenge_id}/participants/{participant}/average")
async def calculate_average(
    challenge_id: int = Path(...),
    participant: str = Path(...),
    engine: Engine = Depends(get_engine),
    caller: str = Depends(get_caller),
):
    return {"average_kwh": unwrap(engine.calculate_average_usage(caller, participant, challenge_id))}

@router.post("/{challenge_id}/participants/{participant}/finalize")
async def finalize(
    challenge_id: int = Path(...),
    participant: str = Path(...),
    engine: Engine = Depends(get_engine),
    caller: str = Depends(get_caller),
):
    return {"savings_percentage": unwrap(engine.finalize_savings(caller, participant, challenge_id))}
