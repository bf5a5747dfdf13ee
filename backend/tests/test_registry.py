from __future__ import annotations
from esave.context import CallContext
from esave.errors import ErrorCode, ErrorKind
from esave.models.challenge import RegistryState
from esave.services import registry

AUTH = "ST1TEST"


def _ctx(caller: str = AUTH, height: int = 100) -> CallContext:
    return CallContext(caller=caller, height=height)


def _state() -> RegistryState:
    return RegistryState(authority=AUTH)


def _create(state: RegistryState, height: int = 100, **overrides):
    fields = dict(
        title="Winter Saver",
        description="Cut usage by 15%",
        start_block=100,
        end_block=200,
        reward_pool=5000,
        target_percentage=1500,
    )
    fields.update(overrides)
    return registry.create_challenge(state, _ctx(height=height), **fields)


def test_create_challenge_allocates_sequential_ids():
    s = _state()
    r1 = _create(s)
    r2 = _create(s, title="Spring Saver")
    assert r1.ok and r1.value == 1
    assert r2.ok and r2.value == 2
    ch = registry.get_challenge(s, 1)
    assert ch.status == "active"
    assert ch.creator == AUTH
    assert ch.target_percentage == 1500
    assert s.next_challenge_id == 3


def test_create_challenge_rejects_non_authority():
    s = _state()
    r = registry.create_challenge(
        s, _ctx(caller="ST3FAKE"), title="t", description="d",
        start_block=100, end_block=200, reward_pool=0, target_percentage=1500,
    )
    assert not r.ok
    assert r.code == ErrorCode.NOT_AUTHORIZED
    assert r.code.kind == ErrorKind.AUTHORIZATION
    assert s.challenges == {}
    assert s.next_challenge_id == 1


def test_create_challenge_validation_codes():
    s = _state()
    assert _create(s, title="").code == ErrorCode.INVALID_TITLE
    assert _create(s, description="").code == ErrorCode.INVALID_DESCRIPTION
    assert _create(s, start_block=50).code == ErrorCode.INVALID_START_BLOCK
    assert _create(s, end_block=100).code == ErrorCode.INVALID_END_BLOCK
    assert _create(s, end_block=90).code == ErrorCode.INVALID_END_BLOCK
    assert _create(s, target_percentage=99).code == ErrorCode.INVALID_TARGET_PERCENTAGE
    assert _create(s, target_percentage=10001).code == ErrorCode.INVALID_TARGET_PERCENTAGE
    # nothing was stored by any failed call
    assert s.challenges == {}
    assert _create(s, target_percentage=100).ok
    assert _create(s, target_percentage=10000).ok


def test_update_challenge_by_creator_only():
    s = _state()
    _create(s)
    r = registry.update_challenge(s, _ctx(), 1, title="New", description="Desc", reward_pool=9000)
    assert r.ok
    ch = registry.get_challenge(s, 1)
    assert (ch.title, ch.description, ch.reward_pool) == ("New", "Desc", 9000)
    assert (ch.start_block, ch.end_block, ch.status) == (100, 200, "active")

    r2 = registry.update_challenge(s, _ctx(caller="ST3FAKE"), 1, title="x", description="y", reward_pool=1)
    assert r2.code == ErrorCode.NOT_AUTHORIZED
    assert registry.get_challenge(s, 1).title == "New"


def test_update_challenge_validation_and_missing():
    s = _state()
    _create(s)
    assert registry.update_challenge(s, _ctx(), 9, title="a", description="b", reward_pool=1).code == ErrorCode.CHALLENGE_NOT_FOUND
    assert registry.update_challenge(s, _ctx(), 1, title="", description="b", reward_pool=1).code == ErrorCode.INVALID_TITLE
    assert registry.update_challenge(s, _ctx(), 1, title="a", description="", reward_pool=1).code == ErrorCode.INVALID_DESCRIPTION


def test_creator_keeps_update_rights_after_authority_change():
    s = _state()
    _create(s)
    assert registry.set_authority(s, _ctx(), "ST9NEW").ok
    assert registry.update_challenge(s, _ctx(), 1, title="Still mine", description="d", reward_pool=0).ok
    assert registry.end_challenge(s, _ctx(), 1).code == ErrorCode.NOT_AUTHORIZED
    assert registry.end_challenge(s, _ctx(caller="ST9NEW"), 1).ok


def test_set_authority_rejects_non_authority_and_empty():
    s = _state()
    assert registry.set_authority(s, _ctx(caller="ST3FAKE"), "ST3FAKE").code == ErrorCode.NOT_AUTHORIZED
    assert registry.set_authority(s, _ctx(), "").code == ErrorCode.INVALID_INPUT
    assert s.authority == AUTH


def test_end_challenge_is_guarded():
    s = _state()
    _create(s)
    assert registry.end_challenge(s, _ctx(caller="ST3FAKE"), 1).code == ErrorCode.NOT_AUTHORIZED
    assert registry.end_challenge(s, _ctx(), 42).code == ErrorCode.CHALLENGE_NOT_FOUND
    assert registry.end_challenge(s, _ctx(), 1).ok
    assert registry.get_challenge(s, 1).status == "ended"
    assert registry.end_challenge(s, _ctx(), 1).code == ErrorCode.CHALLENGE_ENDED


def test_end_challenge_rejected_once_clock_passed_end_block():
    s = _state()
    _create(s)
    r = registry.end_challenge(s, _ctx(height=201), 1)
    assert r.code == ErrorCode.CHALLENGE_ENDED
    # status untouched: ended-by-clock is derived only
    assert registry.get_challenge(s, 1).status == "active"


def test_is_active_tracks_clock_and_status():
    s = _state()
    _create(s, height=50, start_block=100, end_block=200)
    assert not registry.is_active(s, 1, 99)
    assert registry.is_active(s, 1, 100)
    assert registry.is_active(s, 1, 200)
    assert not registry.is_active(s, 1, 201)
    registry.end_challenge(s, _ctx(height=150), 1)
    assert not registry.is_active(s, 1, 150)
    assert not registry.is_active(s, 999, 150)


def test_is_ended_conditions():
    s = _state()
    _create(s)
    assert registry.is_ended(s, 999, 100)
    assert not registry.is_ended(s, 1, 200)
    assert registry.is_ended(s, 1, 201)
    registry.end_challenge(s, _ctx(height=150), 1)
    assert registry.is_ended(s, 1, 150)


def test_join_and_leave_are_inverse():
    s = _state()
    _create(s)
    alice = _ctx(caller="ST2USER", height=120)
    assert registry.join_challenge(s, alice, 1).ok
    assert registry.has_participant(s, 1, "ST2USER")
    assert registry.get_membership(s, 1, "ST2USER").joined_at == 120
    assert registry.leave_challenge(s, alice, 1).ok
    assert not registry.has_participant(s, 1, "ST2USER")
    assert registry.join_challenge(s, _ctx(caller="ST2USER", height=130), 1).ok
    assert registry.get_membership(s, 1, "ST2USER").joined_at == 130


def test_double_join_keeps_original_membership():
    s = _state()
    _create(s)
    assert registry.join_challenge(s, _ctx(caller="ST2USER", height=110), 1).ok
    r = registry.join_challenge(s, _ctx(caller="ST2USER", height=150), 1)
    assert r.code == ErrorCode.PARTICIPANT_ALREADY_JOINED
    assert registry.get_membership(s, 1, "ST2USER").joined_at == 110
    assert registry.get_participants(s, 1) == ["ST2USER"]


def test_join_requires_existing_active_challenge():
    s = _state()
    _create(s, height=50, start_block=100, end_block=200)
    assert registry.join_challenge(s, _ctx(caller="ST2USER"), 7).code == ErrorCode.CHALLENGE_NOT_FOUND
    assert registry.join_challenge(s, _ctx(caller="ST2USER", height=99), 1).code == ErrorCode.CHALLENGE_NOT_ACTIVE
    assert registry.join_challenge(s, _ctx(caller="ST2USER", height=201), 1).code == ErrorCode.CHALLENGE_NOT_ACTIVE
    registry.end_challenge(s, _ctx(height=150), 1)
    assert registry.join_challenge(s, _ctx(caller="ST2USER", height=150), 1).code == ErrorCode.CHALLENGE_NOT_ACTIVE


def test_leave_without_membership_is_rejected():
    s = _state()
    _create(s)
    r = registry.leave_challenge(s, _ctx(caller="ST2USER"), 1)
    assert r.code == ErrorCode.MEMBERSHIP_NOT_FOUND
    assert r.code.kind == ErrorKind.NOT_FOUND


def test_leave_allowed_after_challenge_window():
    s = _state()
    _create(s)
    registry.join_challenge(s, _ctx(caller="ST2USER", height=150), 1)
    assert registry.leave_challenge(s, _ctx(caller="ST2USER", height=500), 1).ok


def test_participants_are_scoped_per_challenge_in_join_order():
    s = _state()
    _create(s)
    _create(s, title="Second")
    for who in ("ST2USER", "ST3USER", "ST4USER"):
        registry.join_challenge(s, _ctx(caller=who), 1)
    registry.join_challenge(s, _ctx(caller="ST5USER"), 2)
    assert registry.get_participants(s, 1) == ["ST2USER", "ST3USER", "ST4USER"]
    assert registry.get_participants(s, 2) == ["ST5USER"]
    assert registry.get_participants(s, 3) == []


def test_participant_ids_containing_delimiters_do_not_collide():
    s = _state()
    for _ in range(12):
        _create(s)
    # ids containing "-" must not alias across challenges
    registry.join_challenge(s, _ctx(caller="1-2"), 1)
    registry.join_challenge(s, _ctx(caller="2"), 11)
    registry.join_challenge(s, _ctx(caller="-2"), 11)
    assert registry.get_participants(s, 1) == ["1-2"]
    assert registry.get_participants(s, 11) == ["2", "-2"]
    assert not registry.has_participant(s, 11, "1-2")
    assert not registry.has_participant(s, 1, "2")


def test_registry_view_uses_call_height():
    s = _state()
    _create(s)
    registry.join_challenge(s, _ctx(caller="ST2USER"), 1)
    assert registry.RegistryView(s, 150).is_active(1)
    assert not registry.RegistryView(s, 250).is_active(1)
    assert registry.RegistryView(s, 250).get_participants(1) == ["ST2USER"]


def test_public_schema_shares_challenge_status():
    from esave.models.challenge import ChallengeStatus
    from esave.schemas.challenge import ChallengePublic
    assert ChallengePublic.model_fields["status"].annotation == ChallengeStatus
