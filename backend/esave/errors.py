from __future__ import annotations
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import ClassVar, Generic, TypeVar, Union
import structlog

log = structlog.get_logger()

T = TypeVar("T")


class ErrorKind(str, Enum):
    AUTHORIZATION = "authorization"
    NOT_FOUND = "not_found"
    VALIDATION = "validation"
    STATE_CONFLICT = "state_conflict"
    CONFIGURATION = "configuration"
    EXTERNAL = "external"


class ErrorCode(IntEnum):
    """
    Failure codes returned by every engine operation.
    Numbers are stable and safe to persist or send over the wire.
    """
    NOT_AUTHORIZED = 100

    CHALLENGE_NOT_FOUND = 101
    BASELINE_NOT_SET = 102
    METER_DATA_MISSING = 103
    INVALID_PARTICIPANT = 104
    MEMBERSHIP_NOT_FOUND = 105

    INVALID_TITLE = 110
    INVALID_DESCRIPTION = 111
    INVALID_START_BLOCK = 112
    INVALID_END_BLOCK = 113
    INVALID_TARGET_PERCENTAGE = 114
    INVALID_KWH_READING = 115
    INVALID_SIGNATURE = 116
    INVALID_REWARD = 117
    INVALID_SAVINGS = 118
    INVALID_INPUT = 119

    PARTICIPANT_ALREADY_JOINED = 130
    CHALLENGE_NOT_ACTIVE = 131
    CHALLENGE_ENDED = 132
    CHALLENGE_NOT_ENDED = 133
    ALREADY_DISTRIBUTED = 134
    MAX_DATA_POINTS_EXCEEDED = 135
    POOL_EMPTY = 136

    INVALID_ORACLE = 150
    INVALID_REGISTRY = 151

    TRANSFER_FAILED = 170

    @property
    def kind(self) -> ErrorKind:
        if self == ErrorCode.NOT_AUTHORIZED:
            return ErrorKind.AUTHORIZATION
        if self < 110:
            return ErrorKind.NOT_FOUND
        if self < 130:
            return ErrorKind.VALIDATION
        if self < 150:
            return ErrorKind.STATE_CONFLICT
        if self < 170:
            return ErrorKind.CONFIGURATION
        return ErrorKind.EXTERNAL

    @property
    def label(self) -> str:
        """CamelCase name, e.g. ``ParticipantAlreadyJoined``."""
        return "".join(part.capitalize() for part in self.name.split("_"))


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    value: T
    ok: ClassVar[bool] = True


@dataclass(frozen=True, slots=True)
class Err:
    code: ErrorCode
    ok: ClassVar[bool] = False


Result = Union[Ok[T], Err]


def reject(code: ErrorCode, op: str, **fields) -> Err:
    """Log a refused call and hand back its failure result."""
    log.info("call_rejected", op=op, code=code.label, error=int(code), **fields)
    return Err(code)


def check_authority(caller: str, authority: str, op: str) -> Err | None:
    """Shared gate for admin-only transitions; None means the caller may proceed."""
    if caller != authority:
        return reject(ErrorCode.NOT_AUTHORIZED, op, caller=caller)
    return None
