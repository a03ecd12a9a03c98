"""Tests for SKLoader Activation Session — state machine and eviction."""

from pathlib import Path

import pytest

from skloader import open_session
from skloader.errors import BudgetExceeded, NotFound, SessionClosed
from skloader.models import ActivatedSkill, SkillDescriptor
from skloader.session import EVICTION_HISTORY, ActivationSession, SessionState


def _activated(skill_id: str, size: int) -> ActivatedSkill:
    descriptor = SkillDescriptor(
        id=skill_id,
        name=skill_id,
        description=f"{skill_id} skill",
        source_path=Path("/skills") / skill_id,
        body_loaded=True,
    )
    return ActivatedSkill(descriptor=descriptor, body="x" * size, size=size)


@pytest.fixture
def session() -> ActivationSession:
    return ActivationSession(budget_limit=100)


class TestStateMachine:
    """EMPTY -> ACTIVE -> CLOSED."""

    def test_new_session_is_empty(self, session: ActivationSession):
        assert session.state == SessionState.EMPTY
        assert session.bytes_used == 0
        assert session.bytes_free == 100

    def test_commit_makes_active(self, session: ActivationSession):
        session.commit(_activated("a", 10))
        assert session.state == SessionState.ACTIVE
        assert session.is_loaded("a")

    def test_evicting_last_returns_to_empty(self, session: ActivationSession):
        session.commit(_activated("a", 10))
        session.evict("a")
        assert session.state == SessionState.EMPTY
        assert session.bytes_used == 0

    def test_close_is_terminal(self, session: ActivationSession):
        session.commit(_activated("a", 10))
        session.close()
        assert session.state == SessionState.CLOSED
        assert session.bytes_used == 0
        assert session.loaded_ids == []
        with pytest.raises(SessionClosed):
            session.commit(_activated("b", 10))
        with pytest.raises(SessionClosed):
            session.evict()
        with pytest.raises(SessionClosed):
            session.pin("a")
        with pytest.raises(SessionClosed):
            session.cached("a")

    def test_close_is_idempotent(self, session: ActivationSession):
        session.close()
        session.close()
        assert session.closed

    def test_invalid_budget(self):
        with pytest.raises(ValueError):
            ActivationSession(budget_limit=0)

    def test_open_session_helper(self):
        assert open_session(budget_limit=42).budget_limit == 42


class TestEvict:
    """Explicit and automatic eviction."""

    def test_evict_oldest(self, session: ActivationSession):
        session.commit(_activated("a", 10))
        session.commit(_activated("b", 10))
        assert session.evict() == "a"
        assert session.loaded_ids == ["b"]
        assert session.evictions == ["a"]

    def test_evict_skips_pinned(self, session: ActivationSession):
        session.commit(_activated("a", 10))
        session.commit(_activated("b", 10))
        session.pin("a")
        assert session.evict() == "b"

    def test_evict_named(self, session: ActivationSession):
        session.commit(_activated("a", 10))
        session.commit(_activated("b", 10))
        assert session.evict("b") == "b"
        assert session.loaded_ids == ["a"]

    def test_evict_pinned_by_name_refused(self, session: ActivationSession):
        session.commit(_activated("a", 10))
        session.pin("a")
        with pytest.raises(ValueError, match="pinned"):
            session.evict("a")

    def test_evict_not_loaded(self, session: ActivationSession):
        with pytest.raises(NotFound):
            session.evict("a")
        with pytest.raises(NotFound):
            session.evict()

    def test_pin_requires_loaded(self, session: ActivationSession):
        with pytest.raises(NotFound):
            session.pin("a")

    def test_commit_evicts_until_it_fits(self, session: ActivationSession):
        session.commit(_activated("a", 30))
        session.commit(_activated("b", 30))
        session.commit(_activated("c", 30))
        session.commit(_activated("d", 60))
        assert session.loaded_ids == ["c", "d"]
        assert session.evictions == ["a", "b"]
        assert session.bytes_used == 90

    def test_eviction_history_is_bounded(self):
        session = ActivationSession(budget_limit=10)
        total = EVICTION_HISTORY + 20
        for i in range(total):
            session.commit(_activated(f"s{i}", 10))
        assert session.eviction_count == total - 1
        assert len(session.evictions) == EVICTION_HISTORY
        assert session.evictions[-1] == f"s{total - 2}"
        assert session.snapshot()["eviction_count"] == total - 1

    def test_commit_same_id_twice_keeps_first(self, session: ActivationSession):
        first = session.commit(_activated("a", 10))
        second = session.commit(_activated("a", 20))
        assert second is first
        assert session.bytes_used == 10

    def test_commit_oversized(self, session: ActivationSession):
        with pytest.raises(BudgetExceeded):
            session.commit(_activated("big", 101))
        assert session.state == SessionState.EMPTY

    def test_commit_exact_budget(self, session: ActivationSession):
        session.commit(_activated("a", 100))
        assert session.bytes_free == 0


class TestSnapshot:
    def test_snapshot(self, session: ActivationSession):
        session.commit(_activated("a", 10))
        session.pin("a")
        snap = session.snapshot()
        assert snap["state"] == "active"
        assert snap["bytes_used"] == 10
        assert snap["loaded"] == [{"id": "a", "size": 10, "pinned": True}]
