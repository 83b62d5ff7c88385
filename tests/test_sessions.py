# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_fortress

from typing import Callable, List

import pytest

from coreason_fortress.models import ChannelType
from coreason_fortress.sessions import SessionManager, generate_session_id

ALICE = "+12025550101"


class FakeClock:
    def __init__(self) -> None:
        self.now = 1_700_000_000_000

    def __call__(self) -> int:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def manager(clock: FakeClock) -> SessionManager:
    return SessionManager(clock=clock)


def test_session_ids_are_long_and_unique() -> None:
    ids = {generate_session_id() for _ in range(100)}
    assert len(ids) == 100
    assert all(len(i) == 43 for i in ids)
    assert all("=" not in i for i in ids)


def test_create_session(manager: SessionManager, clock: FakeClock, events: Callable[[], List[str]]) -> None:
    session = manager.create_session(ALICE, ChannelType.SIGNAL, 3600)
    assert session.contact_id == ALICE
    assert session.created_at == session.last_active_at == clock.now
    assert session.expires_at == clock.now + 3_600_000
    assert manager.session_count() == 1
    assert events() == ["session_created_managed"]


def test_validate_success_bumps_activity(manager: SessionManager, clock: FakeClock) -> None:
    session = manager.create_session(ALICE, ChannelType.SIGNAL, 3600)
    clock.now += 5_000
    result = manager.validate_session(session.id, ALICE, ChannelType.SIGNAL)
    assert result.valid
    assert result.session is not None
    assert result.session.last_active_at == clock.now


def test_validate_unknown(manager: SessionManager) -> None:
    result = manager.validate_session("nope", ALICE, ChannelType.SIGNAL)
    assert not result.valid
    assert result.reason == "Session not found"


def test_validate_expired_removes_session(
    manager: SessionManager, clock: FakeClock, events: Callable[[], List[str]]
) -> None:
    session = manager.create_session(ALICE, ChannelType.SIGNAL, 10)
    clock.now += 10_000
    # Exactly at expiry is still valid
    assert manager.validate_session(session.id, ALICE, ChannelType.SIGNAL).valid
    clock.now += 1
    result = manager.validate_session(session.id, ALICE, ChannelType.SIGNAL)
    assert result.reason == "Session expired"
    assert manager.session_count() == 0
    assert events()[-1] == "session_expired_validation"


def test_channel_binding_checked_before_contact(
    manager: SessionManager, events: Callable[[], List[str]]
) -> None:
    session = manager.create_session(ALICE, ChannelType.SIGNAL, 3600)
    result = manager.validate_session(session.id, "someone-else", ChannelType.DISCORD)
    assert result.reason == "Channel binding mismatch"
    assert events()[-1] == "session_channel_mismatch"

    result = manager.validate_session(session.id, "someone-else", ChannelType.SIGNAL)
    assert result.reason == "Contact binding mismatch"
    assert events()[-1] == "session_contact_mismatch"
    # Binding failures do not destroy the session
    assert manager.get_session(session.id) is not None


def test_rotate_session(manager: SessionManager, clock: FakeClock) -> None:
    session = manager.create_session(ALICE, ChannelType.WEBCHAT, 3600)
    clock.now += 1_000
    rotated = manager.rotate_session(session.id)

    assert rotated is not None
    assert rotated.id != session.id
    assert rotated.rotated_from == session.id
    assert rotated.expires_at == session.expires_at
    assert rotated.created_at == session.created_at
    assert rotated.last_active_at == clock.now
    assert manager.get_session(session.id) is None
    assert manager.validate_session(rotated.id, ALICE, ChannelType.WEBCHAT).valid
    assert manager.rotate_session("missing") is None


def test_destroy_session(manager: SessionManager, events: Callable[[], List[str]]) -> None:
    session = manager.create_session(ALICE, ChannelType.SIGNAL, 3600)
    assert manager.destroy_session(session.id)
    assert not manager.destroy_session(session.id)
    assert events().count("session_destroyed") == 1


def test_get_session_hides_expired(manager: SessionManager, clock: FakeClock) -> None:
    session = manager.create_session(ALICE, ChannelType.SIGNAL, 1)
    assert manager.get_session(session.id) is not None
    clock.now += 2_000
    assert manager.get_session(session.id) is None


def test_prune_and_clear(manager: SessionManager, clock: FakeClock) -> None:
    manager.create_session(ALICE, ChannelType.SIGNAL, 1)
    keep = manager.create_session(ALICE, ChannelType.DISCORD, 3600)
    clock.now += 2_000

    assert manager.prune_expired_sessions() == 1
    assert [s.id for s in manager.list_sessions()] == [keep.id]

    manager.clear_all()
    assert manager.session_count() == 0
