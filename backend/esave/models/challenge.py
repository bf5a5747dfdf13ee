from __future__ import annotations
from typing import Literal
from pydantic import BaseModel, Field

ChallengeStatus = Literal["active", "ended"]

class Challenge(BaseModel):
    id: int
    title: str
    description: str
    start_block: int
    end_block: int
    reward_pool: int  # informational; funds live in the distributor
    status: ChallengeStatus = "active"
    target_percentage: int  # basis points
    creator: str

class Membership(BaseModel):
    challenge_id: int
    participant: str
    joined_at: int

class RegistryState(BaseModel):
    """
    Challenge definitions plus membership.
    memberships is keyed by composite_key(challenge_id, participant) and keeps join order.
    """
    authority: str
    next_challenge_id: int = 1
    challenges: dict[int, Challenge] = Field(default_factory=dict)
    memberships: dict[str, Membership] = Field(default_factory=dict)
