from __future__ import annotations
from pydantic import BaseModel, Field

class Baseline(BaseModel):
    baseline_kwh: int   # latest value set
    block_height: int   # height of the last set
    data_points: int    # number of set calls
    total_kwh: int      # running sum of every value set

class PeriodData(BaseModel):
    total_kwh: int = 0
    data_points: int = 0
    last_timestamp: int = 0

class Eligibility(BaseModel):
    eligible: bool = False
    savings_percentage: int = 0  # basis points, written by finalize only
    timestamp: int = 0

class AverageUsage(BaseModel):
    average_kwh: int

class AnomalyRecord(BaseModel):
    anomaly_count: int = 0

class CalculatorConfig(BaseModel):
    oracle_contract: str | None = None
    registry_contract: str | None = None
    max_data_points: int = 100
    min_kwh_threshold: int = 10
    max_kwh_threshold: int = 100000
    baseline_duration: int = 7
    update_fee: int = 100

class CalculatorState(BaseModel):
    """All per-participant maps are keyed by composite_key(participant, challenge_id)."""
    authority: str
    config: CalculatorConfig = Field(default_factory=CalculatorConfig)
    baselines: dict[str, Baseline] = Field(default_factory=dict)
    period_data: dict[str, PeriodData] = Field(default_factory=dict)
    eligibility: dict[str, Eligibility] = Field(default_factory=dict)
    average_usage: dict[str, AverageUsage] = Field(default_factory=dict)
    anomalies: dict[str, AnomalyRecord] = Field(default_factory=dict)
