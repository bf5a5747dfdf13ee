from __future__ import annotations
import structlog
from esave.context import CallContext
from esave.errors import ErrorCode, Ok, Result, check_authority, reject
from esave.models.challenge import Challenge, Membership, RegistryState
from esave.services.keys import composite_key

log = structlog.get_logger()

MIN_TARGET_PERCENTAGE = 100
MAX_TARGET_PERCENTAGE = 10000

# ---------- admin ----------

def set_authority(state: RegistryState, ctx: CallContext, new_authority: str) -> Result[bool]:
    err = check_authority(ctx.caller, state.authority, "set_authority")
    if err:
        return err
    if not new_authority:
        return reject(ErrorCode.INVALID_INPUT, "set_authority")
    state.authority = new_authority
    log.info("authority_changed", component="registry", authority=new_authority)
    return Ok(True)

# ---------- challenge lifecycle ----------

def create_challenge(
    state: RegistryState,
    ctx: CallContext,
    *,
    title: str,
    description: str,
    start_block: int,
    end_block: int,
    reward_pool: int,
    target_percentage: int,
) -> Result[int]:
    op = "create_challenge"
    err = check_authority(ctx.caller, state.authority, op)
    if err:
        return err
    if not title:
        return reject(ErrorCode.INVALID_TITLE, op)
    if not description:
        return reject(ErrorCode.INVALID_DESCRIPTION, op)
    if start_block < ctx.height:
        return reject(ErrorCode.INVALID_START_BLOCK, op, start_block=start_block, height=ctx.height)
    if end_block <= start_block:
        return reject(ErrorCode.INVALID_END_BLOCK, op, start_block=start_block, end_block=end_block)
    if not MIN_TARGET_PERCENTAGE <= target_percentage <= MAX_TARGET_PERCENTAGE:
        return reject(ErrorCode.INVALID_TARGET_PERCENTAGE, op, target_percentage=target_percentage)

    cid = state.next_challenge_id
    state.challenges[cid] = Challenge(
        id=cid,
        title=title,
        description=description,
        start_block=start_block,
        end_block=end_block,
        reward_pool=reward_pool,
        status="active",
        target_percentage=target_percentage,
        creator=ctx.caller,
    )
    state.next_challenge_id = cid + 1
    log.info("challenge_created", challenge_id=cid, start_block=start_block, end_block=end_block, creator=ctx.caller)
    return Ok(cid)


def update_challenge(
    state: RegistryState,
    ctx: CallContext,
    challenge_id: int,
    *,
    title: str,
    description: str,
    reward_pool: int,
) -> Result[bool]:
    """Creator-only edit of the descriptive fields. Status and block bounds never change here."""
    op = "update_challenge"
    ch = state.challenges.get(challenge_id)
    if ch is None:
        return reject(ErrorCode.CHALLENGE_NOT_FOUND, op, challenge_id=challenge_id)
    if ctx.caller != ch.creator:
        return reject(ErrorCode.NOT_AUTHORIZED, op, challenge_id=challenge_id, caller=ctx.caller)
    if not title:
        return reject(ErrorCode.INVALID_TITLE, op, challenge_id=challenge_id)
    if not description:
        return reject(ErrorCode.INVALID_DESCRIPTION, op, challenge_id=challenge_id)
    ch.title = title
    ch.description = description
    ch.reward_pool = reward_pool
    log.info("challenge_updated", challenge_id=challenge_id)
    return Ok(True)


def end_challenge(state: RegistryState, ctx: CallContext, challenge_id: int) -> Result[bool]:
    op = "end_challenge"
    ch = state.challenges.get(challenge_id)
    if ch is None:
        return reject(ErrorCode.CHALLENGE_NOT_FOUND, op, challenge_id=challenge_id)
    err = check_authority(ctx.caller, state.authority, op)
    if err:
        return err
    if is_ended(state, challenge_id, ctx.height):
        return reject(ErrorCode.CHALLENGE_ENDED, op, challenge_id=challenge_id)
    ch.status = "ended"
    log.info("challenge_ended", challenge_id=challenge_id, height=ctx.height)
    return Ok(True)

# ---------- membership ----------

def join_challenge(state: RegistryState, ctx: CallContext, challenge_id: int) -> Result[bool]:
    op = "join_challenge"
    if challenge_id not in state.challenges:
        return reject(ErrorCode.CHALLENGE_NOT_FOUND, op, challenge_id=challenge_id)
    if not is_active(state, challenge_id, ctx.height):
        return reject(ErrorCode.CHALLENGE_NOT_ACTIVE, op, challenge_id=challenge_id, height=ctx.height)
    key = composite_key(challenge_id, ctx.caller)
    if key in state.memberships:
        return reject(ErrorCode.PARTICIPANT_ALREADY_JOINED, op, challenge_id=challenge_id, participant=ctx.caller)
    state.memberships[key] = Membership(challenge_id=challenge_id, participant=ctx.caller, joined_at=ctx.height)
    log.info("participant_joined", challenge_id=challenge_id, participant=ctx.caller, joined_at=ctx.height)
    return Ok(True)


def leave_challenge(state: RegistryState, ctx: CallContext, challenge_id: int) -> Result[bool]:
    key = composite_key(challenge_id, ctx.caller)
    if key not in state.memberships:
        return reject(ErrorCode.MEMBERSHIP_NOT_FOUND, "leave_challenge", challenge_id=challenge_id, participant=ctx.caller)
    del state.memberships[key]
    log.info("participant_left", challenge_id=challenge_id, participant=ctx.caller)
    return Ok(True)

# ---------- reads ----------

def get_challenge(state: RegistryState, challenge_id: int) -> Challenge | None:
    return state.challenges.get(challenge_id)


def next_challenge_id(state: RegistryState) -> int:
    return state.next_challenge_id


def get_participants(state: RegistryState, challenge_id: int) -> list[str]:
    """Participants in join order; the order is stable between calls with no membership change."""
    return [m.participant for m in state.memberships.values() if m.challenge_id == challenge_id]


def get_membership(state: RegistryState, challenge_id: int, participant: str) -> Membership | None:
    return state.memberships.get(composite_key(challenge_id, participant))


def has_participant(state: RegistryState, challenge_id: int, participant: str) -> bool:
    return composite_key(challenge_id, participant) in state.memberships


def is_active(state: RegistryState, challenge_id: int, height: int) -> bool:
    ch = state.challenges.get(challenge_id)
    if ch is None:
        return False
    return ch.start_block <= height <= ch.end_block and ch.status == "active"


def is_ended(state: RegistryState, challenge_id: int, height: int) -> bool:
    ch = state.challenges.get(challenge_id)
    if ch is None:
        return True
    return height > ch.end_block or ch.status == "ended"


class RegistryView:
    """Read-only challenge-state provider handed to the calculator and distributor."""

    def __init__(self, state: RegistryState, height: int):
        self._state = state
        self._height = height

    def is_active(self, challenge_id: int) -> bool:
        return is_active(self._state, challenge_id, self._height)

    def get_participants(self, challenge_id: int) -> list[str]:
        return get_participants(self._state, challenge_id)
