from __future__ import annotations
from typing import Protocol
import structlog
from esave.context import CallContext
from esave.errors import ErrorCode, Ok, Result, check_authority, reject
from esave.models.savings import (
    AnomalyRecord, AverageUsage, Baseline, CalculatorConfig, CalculatorState, Eligibility, PeriodData,
)
from esave.services.keys import composite_key
from esave.services.ledger import TokenLedger
from esave.services.oracle import Oracle, encodable, reading_payload

log = structlog.get_logger()

BASIS_POINTS = 10000
ANOMALY_DEVIATION_PCT = 50


class ActiveChallenges(Protocol):
    def is_active(self, challenge_id: int) -> bool: ...


def _key(participant: str, challenge_id: int) -> str:
    return composite_key(participant, challenge_id)

# ---------- configuration setters (authority only) ----------

def set_oracle_contract(state: CalculatorState, ctx: CallContext, contract: str) -> Result[bool]:
    err = check_authority(ctx.caller, state.authority, "set_oracle_contract")
    if err:
        return err
    state.config.oracle_contract = contract
    log.info("calculator_config_changed", field="oracle_contract", value=contract)
    return Ok(True)


def set_registry_contract(state: CalculatorState, ctx: CallContext, contract: str) -> Result[bool]:
    err = check_authority(ctx.caller, state.authority, "set_registry_contract")
    if err:
        return err
    state.config.registry_contract = contract
    log.info("calculator_config_changed", field="registry_contract", value=contract)
    return Ok(True)


def _set_positive(state: CalculatorState, ctx: CallContext, field: str, value: int) -> Result[bool]:
    op = f"set_{field}"
    err = check_authority(ctx.caller, state.authority, op)
    if err:
        return err
    if value <= 0:
        return reject(ErrorCode.INVALID_INPUT, op, value=value)
    setattr(state.config, field, value)
    log.info("calculator_config_changed", field=field, value=value)
    return Ok(True)


def set_max_data_points(state: CalculatorState, ctx: CallContext, value: int) -> Result[bool]:
    return _set_positive(state, ctx, "max_data_points", value)


def set_min_kwh_threshold(state: CalculatorState, ctx: CallContext, value: int) -> Result[bool]:
    return _set_positive(state, ctx, "min_kwh_threshold", value)


def set_max_kwh_threshold(state: CalculatorState, ctx: CallContext, value: int) -> Result[bool]:
    return _set_positive(state, ctx, "max_kwh_threshold", value)


def set_baseline_duration(state: CalculatorState, ctx: CallContext, value: int) -> Result[bool]:
    return _set_positive(state, ctx, "baseline_duration", value)


def set_update_fee(state: CalculatorState, ctx: CallContext, value: int) -> Result[bool]:
    return _set_positive(state, ctx, "update_fee", value)


def _kwh_in_range(state: CalculatorState, kwh: int) -> bool:
    return state.config.min_kwh_threshold <= kwh <= state.config.max_kwh_threshold

# ---------- readings & baselines ----------

def submit_meter_reading(
    state: CalculatorState,
    ctx: CallContext,
    participant: str,
    challenge_id: int,
    kwh_reading: int,
    signature: bytes,
    *,
    challenges: ActiveChallenges,
    oracle: Oracle,
) -> Result[bool]:
    """
    Accumulate one attested reading into the participant's period data.

    Readings are submitted by a third party (meter operator / oracle relay), never by
    the participant. A reading beyond ``max_data_points`` is rejected, not dropped.
    The signature covers the reading's sequence number (the period's current
    ``data_points``), so an accepted signature cannot be replayed into a later slot.
    """
    op = "submit_meter_reading"
    cfg = state.config
    if not cfg.oracle_contract:
        return reject(ErrorCode.INVALID_ORACLE, op)
    if not cfg.registry_contract:
        return reject(ErrorCode.INVALID_REGISTRY, op)
    if not _kwh_in_range(state, kwh_reading):
        return reject(ErrorCode.INVALID_KWH_READING, op, kwh=kwh_reading)
    if not signature:
        return reject(ErrorCode.INVALID_SIGNATURE, op, reason="empty")
    if challenge_id <= 0 or participant == ctx.caller or not encodable(participant):
        return reject(ErrorCode.INVALID_INPUT, op, challenge_id=challenge_id, participant=repr(participant))
    if not challenges.is_active(challenge_id):
        return reject(ErrorCode.CHALLENGE_NOT_ACTIVE, op, challenge_id=challenge_id)
    key = _key(participant, challenge_id)
    period = state.period_data.get(key) or PeriodData()
    payload = reading_payload(participant, challenge_id, kwh_reading, period.data_points)
    if not oracle.verify_signature(payload, signature):
        return reject(ErrorCode.INVALID_SIGNATURE, op, participant=participant, challenge_id=challenge_id,
                      sequence=period.data_points)
    if key not in state.baselines:
        return reject(ErrorCode.BASELINE_NOT_SET, op, participant=participant, challenge_id=challenge_id)
    if period.data_points >= cfg.max_data_points:
        return reject(ErrorCode.MAX_DATA_POINTS_EXCEEDED, op, participant=participant, challenge_id=challenge_id)

    state.period_data[key] = PeriodData(
        total_kwh=period.total_kwh + kwh_reading,
        data_points=period.data_points + 1,
        last_timestamp=ctx.height,
    )
    log.info("meter_reading_recorded", participant=participant, challenge_id=challenge_id, kwh=kwh_reading,
             data_points=period.data_points + 1)
    return Ok(True)


def set_baseline(
    state: CalculatorState,
    ctx: CallContext,
    participant: str,
    challenge_id: int,
    baseline_kwh: int,
) -> Result[bool]:
    """Latest value wins for baseline_kwh; total_kwh/data_points keep the audit trail."""
    op = "set_baseline"
    err = check_authority(ctx.caller, state.authority, op)
    if err:
        return err
    if not _kwh_in_range(state, baseline_kwh):
        return reject(ErrorCode.INVALID_KWH_READING, op, kwh=baseline_kwh)
    if challenge_id <= 0 or participant == ctx.caller:
        return reject(ErrorCode.INVALID_INPUT, op, challenge_id=challenge_id, participant=participant)
    key = _key(participant, challenge_id)
    current = state.baselines.get(key)
    state.baselines[key] = Baseline(
        baseline_kwh=baseline_kwh,
        block_height=ctx.height,
        data_points=(current.data_points if current else 0) + 1,
        total_kwh=(current.total_kwh if current else 0) + baseline_kwh,
    )
    log.info("baseline_set", participant=participant, challenge_id=challenge_id, kwh=baseline_kwh)
    return Ok(True)


def update_eligibility(
    state: CalculatorState,
    ctx: CallContext,
    participant: str,
    challenge_id: int,
    eligible: bool,
    *,
    ledger: TokenLedger,
) -> Result[bool]:
    """Overwrite the eligible flag and clear any finalized percentage. Charges update_fee to the caller."""
    op = "update_eligibility"
    err = check_authority(ctx.caller, state.authority, op)
    if err:
        return err
    fee = state.config.update_fee
    if not ledger.transfer(fee, ctx.caller, state.authority):
        return reject(ErrorCode.TRANSFER_FAILED, op, amount=fee)
    state.eligibility[_key(participant, challenge_id)] = Eligibility(
        eligible=bool(eligible), savings_percentage=0, timestamp=ctx.height
    )
    log.info("eligibility_updated", participant=participant, challenge_id=challenge_id, eligible=bool(eligible), fee=fee)
    return Ok(True)

# ---------- derived figures ----------

def calculate_average_usage(state: CalculatorState, ctx: CallContext, participant: str, challenge_id: int) -> Result[int]:
    op = "calculate_average_usage"
    key = _key(participant, challenge_id)
    period = state.period_data.get(key)
    if period is None:
        return reject(ErrorCode.METER_DATA_MISSING, op, participant=participant, challenge_id=challenge_id)
    if period.data_points == 0:
        return reject(ErrorCode.INVALID_INPUT, op, reason="no_data_points")
    average = period.total_kwh // period.data_points
    if average <= 0:
        return reject(ErrorCode.INVALID_INPUT, op, reason="non_positive_average")
    state.average_usage[key] = AverageUsage(average_kwh=average)
    log.debug("average_usage_calculated", participant=participant, challenge_id=challenge_id, average=average)
    return Ok(average)


def detect_anomaly(state: CalculatorState, ctx: CallContext, participant: str, challenge_id: int, kwh: int) -> Result[bool]:
    """Count readings deviating more than 50% from baseline. Detection only, the reading is not rejected."""
    key = _key(participant, challenge_id)
    baseline = state.baselines.get(key)
    if baseline is None:
        return reject(ErrorCode.BASELINE_NOT_SET, "detect_anomaly", participant=participant, challenge_id=challenge_id)
    threshold = baseline.baseline_kwh * ANOMALY_DEVIATION_PCT // 100
    if abs(baseline.baseline_kwh - kwh) > threshold:
        rec = state.anomalies.get(key) or AnomalyRecord()
        state.anomalies[key] = AnomalyRecord(anomaly_count=rec.anomaly_count + 1)
        log.warning("usage_anomaly", participant=participant, challenge_id=challenge_id, kwh=kwh,
                    baseline=baseline.baseline_kwh, count=rec.anomaly_count + 1)
    return Ok(True)


def get_savings_percentage(state: CalculatorState, participant: str, challenge_id: int) -> Result[int]:
    """Savings in basis points; InvalidSavings unless period usage is strictly below baseline."""
    op = "get_savings_percentage"
    key = _key(participant, challenge_id)
    baseline = state.baselines.get(key)
    if baseline is None:
        return reject(ErrorCode.BASELINE_NOT_SET, op, participant=participant, challenge_id=challenge_id)
    period = state.period_data.get(key)
    if period is None:
        return reject(ErrorCode.METER_DATA_MISSING, op, participant=participant, challenge_id=challenge_id)
    saved = max(0, baseline.baseline_kwh - period.total_kwh)
    percentage = saved * BASIS_POINTS // baseline.baseline_kwh
    if baseline.baseline_kwh <= period.total_kwh:
        return reject(ErrorCode.INVALID_SAVINGS, op, participant=participant, challenge_id=challenge_id)
    return Ok(percentage)


def finalize_savings(state: CalculatorState, ctx: CallContext, participant: str, challenge_id: int) -> Result[int]:
    res = get_savings_percentage(state, participant, challenge_id)
    if not res.ok:
        return res
    savings = res.value
    if savings > BASIS_POINTS:
        return reject(ErrorCode.INVALID_INPUT, "finalize_savings", savings=savings)
    key = _key(participant, challenge_id)
    current = state.eligibility.get(key) or Eligibility()
    state.eligibility[key] = Eligibility(
        eligible=current.eligible, savings_percentage=savings, timestamp=ctx.height
    )
    log.info("savings_finalized", participant=participant, challenge_id=challenge_id, savings_bp=savings)
    return Ok(savings)

# ---------- reads ----------

def get_config(state: CalculatorState) -> CalculatorConfig:
    return state.config.model_copy()


def get_baseline(state: CalculatorState, participant: str, challenge_id: int) -> Baseline | None:
    return state.baselines.get(_key(participant, challenge_id))


def get_period_data(state: CalculatorState, participant: str, challenge_id: int) -> PeriodData | None:
    return state.period_data.get(_key(participant, challenge_id))


def get_eligibility(state: CalculatorState, participant: str, challenge_id: int) -> Eligibility | None:
    return state.eligibility.get(_key(participant, challenge_id))


def next_reading_sequence(state: CalculatorState, participant: str, challenge_id: int) -> int:
    """Sequence number the oracle must sign for the participant's next reading."""
    period = state.period_data.get(_key(participant, challenge_id))
    return period.data_points if period else 0


def get_average_usage(state: CalculatorState, participant: str, challenge_id: int) -> int | None:
    avg = state.average_usage.get(_key(participant, challenge_id))
    return avg.average_kwh if avg else None


def get_anomaly_count(state: CalculatorState, participant: str, challenge_id: int) -> int:
    rec = state.anomalies.get(_key(participant, challenge_id))
    return rec.anomaly_count if rec else 0


class CalculatorView:
    """Read-only eligibility source for the reward distributor."""

    def __init__(self, state: CalculatorState):
        self._state = state

    def eligibility(self, participant: str, challenge_id: int) -> Eligibility | None:
        return get_eligibility(self._state, participant, challenge_id)
