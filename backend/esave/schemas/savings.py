from __future__ import annotations
from typing import Literal
from pydantic import BaseModel

CalculatorParam = Literal["max_data_points", "min_kwh_threshold", "max_kwh_threshold", "baseline_duration", "update_fee"]

class MeterReadingIn(BaseModel):
    participant: str
    challenge_id: int
    kwh_reading: int
    signature: str  # hex

class BaselineIn(BaseModel):
    participant: str
    challenge_id: int
    baseline_kwh: int

class EligibilityIn(BaseModel):
    participant: str
    challenge_id: int
    eligible: bool

class AnomalyCheckIn(BaseModel):
    participant: str
    challenge_id: int
    kwh: int

class CalculatorParamIn(BaseModel):
    name: CalculatorParam
    value: int

class ContractRefIn(BaseModel):
    contract: str

class SavingsStatus(BaseModel):
    participant: str
    challenge_id: int
    baseline_kwh: int | None = None
    baseline_data_points: int = 0
    period_total_kwh: int | None = None
    period_data_points: int = 0
    last_timestamp: int | None = None
    eligible: bool = False
    savings_percentage: int = 0
    average_kwh: int | None = None
    anomaly_count: int = 0
