from __future__ import annotations
from typing import Literal
from pydantic import BaseModel
from esave.models.challenge import ChallengeStatus

RuntimeState = Literal["upcoming", "started", "ended"]

# Field checks (empty title, block ordering, target range) are done by the registry
# so callers get its error codes rather than a generic 422.

class ChallengeCreate(BaseModel):
    title: str
    description: str
    start_block: int
    end_block: int
    reward_pool: int = 0
    target_percentage: int

class ChallengeUpdate(BaseModel):
    title: str
    description: str
    reward_pool: int

class ChallengeCreated(BaseModel):
    id: int

class ChallengePublic(BaseModel):
    id: int
    title: str
    description: str
    start_block: int
    end_block: int
    reward_pool: int
    status: ChallengeStatus
    target_percentage: int
    creator: str
    participant_count: int
    is_participant: bool
    is_active: bool
    is_ended: bool
    runtime_state: RuntimeState

class ParticipantPublic(BaseModel):
    challenge_id: int
    participant: str
    joined_at: int

class AuthorityUpdate(BaseModel):
    authority: str
