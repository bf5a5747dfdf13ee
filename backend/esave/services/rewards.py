from __future__ import annotations
from typing import Protocol
import structlog
from esave.context import CallContext
from esave.errors import ErrorCode, Ok, Result, check_authority, reject
from esave.models.reward import ChallengeReward, DistributorState, ParticipantReward
from esave.models.savings import Eligibility
from esave.services.keys import composite_key
from esave.services.ledger import TokenLedger
from esave.services.registry import MAX_TARGET_PERCENTAGE, MIN_TARGET_PERCENTAGE

log = structlog.get_logger()


class ChallengeParticipants(Protocol):
    def get_participants(self, challenge_id: int) -> list[str]: ...


class EligibilitySource(Protocol):
    def eligibility(self, participant: str, challenge_id: int) -> Eligibility | None: ...


def _key(challenge_id: int, participant: str) -> str:
    return composite_key(challenge_id, participant)

# ---------- contract references (authority only) ----------

def _set_reference(state: DistributorState, ctx: CallContext, field: str, contract: str) -> Result[bool]:
    op = f"set_{field}"
    err = check_authority(ctx.caller, state.authority, op)
    if err:
        return err
    setattr(state, field, contract)
    log.info("distributor_config_changed", field=field, value=contract)
    return Ok(True)


def set_token_contract(state: DistributorState, ctx: CallContext, contract: str) -> Result[bool]:
    return _set_reference(state, ctx, "token_contract", contract)


def set_calculator_contract(state: DistributorState, ctx: CallContext, contract: str) -> Result[bool]:
    return _set_reference(state, ctx, "calculator_contract", contract)


def set_registry_contract(state: DistributorState, ctx: CallContext, contract: str) -> Result[bool]:
    return _set_reference(state, ctx, "registry_contract", contract)

# ---------- pool ----------

def fund_challenge(state: DistributorState, ctx: CallContext, challenge_id: int, amount: int) -> Result[bool]:
    """Open to anyone. Adds to the challenge pool, creating the reward record if needed."""
    if amount <= 0:
        return reject(ErrorCode.INVALID_REWARD, "fund_challenge", challenge_id=challenge_id, amount=amount)
    info = state.challenge_rewards.setdefault(challenge_id, ChallengeReward())
    info.total_pool += int(amount)
    log.info("challenge_funded", challenge_id=challenge_id, amount=amount, funder=ctx.caller, total_pool=info.total_pool)
    return Ok(True)


def set_challenge_target(
    state: DistributorState,
    ctx: CallContext,
    challenge_id: int,
    target_percentage: int,
    end_height: int,
) -> Result[bool]:
    """
    Set the savings threshold and distribution height.

    Always re-opens distribution (distributed=False). The next distribution pass
    replaces unclaimed rewards from the earlier pass; claimed ones stay claimed and
    are never re-issued.
    """
    op = "set_challenge_target"
    err = check_authority(ctx.caller, state.authority, op)
    if err:
        return err
    if not MIN_TARGET_PERCENTAGE <= target_percentage <= MAX_TARGET_PERCENTAGE:
        return reject(ErrorCode.INVALID_TARGET_PERCENTAGE, op, target_percentage=target_percentage)
    if end_height <= ctx.height:
        return reject(ErrorCode.INVALID_INPUT, op, end_height=end_height, height=ctx.height)
    info = state.challenge_rewards.setdefault(challenge_id, ChallengeReward())
    reopened = info.distributed
    info.end_height = end_height
    info.target_percentage = target_percentage
    info.distributed = False
    if reopened:
        log.warning("distribution_reopened", challenge_id=challenge_id, end_height=end_height)
    log.info("challenge_target_set", challenge_id=challenge_id, target_percentage=target_percentage, end_height=end_height)
    return Ok(True)

# ---------- distribution ----------

def _qualifying_savings(
    challenge_id: int,
    participants: list[str],
    target_percentage: int,
    savings: EligibilitySource,
) -> list[tuple[str, int]]:
    out: list[tuple[str, int]] = []
    for p in participants:
        e = savings.eligibility(p, challenge_id)
        if e is not None and e.eligible and e.savings_percentage >= target_percentage:
            out.append((p, e.savings_percentage))
    return out


def distribute_rewards(
    state: DistributorState,
    ctx: CallContext,
    challenge_id: int,
    *,
    challenges: ChallengeParticipants,
    savings: EligibilitySource,
) -> Result[bool]:
    """
    Split the pool across participants whose savings meet the target.

    Each share is floor(available * savings / total_eligible_savings), where available is
    total_pool on the first pass and total_pool minus already-claimed rewards on a pass
    after a re-target. Rounding dust stays in the pool, so the sum of issued and claimed
    rewards never exceeds total_pool. The record is marked distributed even when nobody
    qualifies.
    """
    op = "distribute_rewards"
    info = state.challenge_rewards.get(challenge_id)
    if info is None:
        return reject(ErrorCode.CHALLENGE_NOT_FOUND, op, challenge_id=challenge_id)
    err = check_authority(ctx.caller, state.authority, op)
    if err:
        return err
    if info.distributed:
        return reject(ErrorCode.ALREADY_DISTRIBUTED, op, challenge_id=challenge_id)
    if ctx.height < info.end_height:
        return reject(ErrorCode.CHALLENGE_NOT_ENDED, op, challenge_id=challenge_id, end_height=info.end_height)
    if info.total_pool == 0:
        return reject(ErrorCode.POOL_EMPTY, op, challenge_id=challenge_id)

    participants = list(challenges.get_participants(challenge_id))
    # Rewards already paid out in an earlier pass stay paid and are never re-issued
    paid = {
        r.participant: r.amount
        for r in state.participant_rewards.values()
        if r.challenge_id == challenge_id and r.claimed
    }
    for key in [k for k, r in state.participant_rewards.items() if r.challenge_id == challenge_id and not r.claimed]:
        del state.participant_rewards[key]

    qualifying = [
        (p, s) for p, s in _qualifying_savings(challenge_id, participants, info.target_percentage, savings)
        if p not in paid
    ]
    total_eligible = sum(s for _, s in qualifying)
    available = info.total_pool - sum(paid.values())

    pool_remaining = available
    if total_eligible > 0 and available > 0:
        for p, s in qualifying:
            reward = available * s // total_eligible
            state.participant_rewards[_key(challenge_id, p)] = ParticipantReward(
                challenge_id=challenge_id, participant=p, claimed=False, amount=reward
            )
            pool_remaining -= reward

    info.allocated = info.total_pool - pool_remaining
    info.distributed = True
    log.info(
        "rewards_distributed",
        challenge_id=challenge_id,
        participants=len(participants),
        qualifying=len(qualifying),
        already_paid=len(paid),
        total_pool=info.total_pool,
        allocated=info.allocated,
        dust=pool_remaining,
    )
    return Ok(True)

# ---------- claims ----------

def claim_reward(state: DistributorState, ctx: CallContext, challenge_id: int, *, ledger: TokenLedger) -> Result[int]:
    """Exactly-once payout of the caller's reward through the external ledger."""
    op = "claim_reward"
    key = _key(challenge_id, ctx.caller)
    entry = state.participant_rewards.get(key)
    if entry is None:
        return reject(ErrorCode.INVALID_PARTICIPANT, op, challenge_id=challenge_id, participant=ctx.caller)
    info = state.challenge_rewards.get(challenge_id)
    if info is None or not info.distributed:
        return reject(ErrorCode.CHALLENGE_NOT_ENDED, op, challenge_id=challenge_id)
    if entry.claimed:
        return reject(ErrorCode.ALREADY_DISTRIBUTED, op, challenge_id=challenge_id, participant=ctx.caller)
    if entry.amount <= 0:
        return reject(ErrorCode.INVALID_REWARD, op, challenge_id=challenge_id, participant=ctx.caller)
    if not ledger.transfer(entry.amount, state.treasury, ctx.caller):
        return reject(ErrorCode.TRANSFER_FAILED, op, challenge_id=challenge_id, amount=entry.amount)
    entry.claimed = True
    log.info("reward_claimed", challenge_id=challenge_id, participant=ctx.caller, amount=entry.amount)
    return Ok(entry.amount)

# ---------- reads ----------

def get_challenge_reward(state: DistributorState, challenge_id: int) -> ChallengeReward | None:
    return state.challenge_rewards.get(challenge_id)


def get_participant_reward(state: DistributorState, challenge_id: int, participant: str) -> ParticipantReward | None:
    return state.participant_rewards.get(_key(challenge_id, participant))


def reward_snapshot(state: DistributorState, challenge_id: int) -> dict | None:
    """Return pool, allocation and per-participant rewards for one challenge."""
    info = state.challenge_rewards.get(challenge_id)
    if info is None:
        return None
    rewards = [r for r in state.participant_rewards.values() if r.challenge_id == challenge_id]
    issued = sum(r.amount for r in rewards)
    return {
        "challenge_id": challenge_id,
        "total_pool": info.total_pool,
        "distributed": info.distributed,
        "end_height": info.end_height,
        "target_percentage": info.target_percentage,
        "allocated": info.allocated,
        "dust": info.total_pool - info.allocated if info.distributed else 0,
        "claimed": sum(r.amount for r in rewards if r.claimed),
        "unclaimed": sum(r.amount for r in rewards if not r.claimed),
        "issued": issued,
        "rewards": sorted(rewards, key=lambda r: (-r.amount, r.participant)),
    }
