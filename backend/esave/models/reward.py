from __future__ import annotations
from pydantic import BaseModel, Field

class ChallengeReward(BaseModel):
    total_pool: int = 0
    distributed: bool = False
    end_height: int = 0
    target_percentage: int = 0
    # Set by distribution: sum of allocated rewards (total_pool - allocated is undistributed dust)
    allocated: int = 0

class ParticipantReward(BaseModel):
    challenge_id: int
    participant: str
    claimed: bool = False
    amount: int

class DistributorState(BaseModel):
    """participant_rewards is keyed by composite_key(challenge_id, participant)."""
    authority: str
    token_contract: str = ".esave-token"
    calculator_contract: str = ".savings-calculator"
    registry_contract: str = ".challenge-registry"
    treasury: str = ".reward-distributor"  # principal paying out claims
    challenge_rewards: dict[int, ChallengeReward] = Field(default_factory=dict)
    participant_rewards: dict[str, ParticipantReward] = Field(default_factory=dict)
