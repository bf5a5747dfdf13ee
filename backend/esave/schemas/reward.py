from __future__ import annotations
from pydantic import BaseModel

class FundIn(BaseModel):
    amount: int

class TargetIn(BaseModel):
    target_percentage: int
    end_height: int

class ParticipantRewardPublic(BaseModel):
    challenge_id: int
    participant: str
    claimed: bool
    amount: int

class RewardSnapshot(BaseModel):
    challenge_id: int
    total_pool: int
    distributed: bool
    end_height: int
    target_percentage: int
    allocated: int
    dust: int
    claimed: int
    unclaimed: int
    issued: int
    rewards: list[ParticipantRewardPublic]

class ClaimResult(BaseModel):
    challenge_id: int
    amount: int
