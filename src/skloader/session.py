"""SKLoader Activation Session — per-task working set of activated skills.

State machine:

    EMPTY --activate--> ACTIVE(1) --activate/evict--> ACTIVE(n±1)
      |                    |
      +------close()-------+--> CLOSED  (terminal)

The loaded set is ordered: insertion order is activation order and doubles
as LRU order (a cache hit moves the skill to the end). When committing a new
skill would exceed the budget, the oldest non-pinned skills are evicted first.
Eviction and commit happen under one lock, so ``bytes_used`` never exceeds
``budget_limit`` as seen from any thread.
"""

from __future__ import annotations

import enum
import logging
import threading
import uuid
from collections import OrderedDict, deque
from typing import Any, Optional

from .errors import BudgetExceeded, NotFound, SessionClosed
from .models import ActivatedSkill
from .singleflight import SingleFlight

logger = logging.getLogger("skloader.session")

EVICTION_HISTORY = 256


class SessionState(str, enum.Enum):
    """Lifecycle state of an activation session."""

    EMPTY = "empty"
    ACTIVE = "active"
    CLOSED = "closed"


class ActivationSession:
    """Tracks which skills a task has loaded and how much budget they use.

    A session is owned by one consuming task. Concurrent activations from
    that task are safe: identical requests are coalesced through ``flights``
    and state changes are serialized by an internal lock.

    Args:
        budget_limit: Maximum total body bytes held at once.
        session_id: Optional explicit id (default: random hex).
    """

    def __init__(self, budget_limit: int, session_id: Optional[str] = None) -> None:
        if budget_limit <= 0:
            raise ValueError(f"budget_limit must be positive, got {budget_limit}")
        self.session_id = session_id or uuid.uuid4().hex
        self.budget_limit = budget_limit
        self.eviction_count = 0
        self._evictions: deque[str] = deque(maxlen=EVICTION_HISTORY)
        self.flights: SingleFlight[ActivatedSkill] = SingleFlight()
        self._lock = threading.RLock()
        self._loaded: OrderedDict[str, ActivatedSkill] = OrderedDict()
        self._pinned: set[str] = set()
        self._bytes_used = 0
        self._closed = False

    # ── Read accessors ────────────────────────────────────────────────

    @property
    def state(self) -> SessionState:
        with self._lock:
            if self._closed:
                return SessionState.CLOSED
            return SessionState.ACTIVE if self._loaded else SessionState.EMPTY

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def bytes_used(self) -> int:
        return self._bytes_used

    @property
    def bytes_free(self) -> int:
        return self.budget_limit - self._bytes_used

    @property
    def loaded_ids(self) -> list[str]:
        """Loaded skill ids, least recently used first."""
        with self._lock:
            return list(self._loaded)

    @property
    def evictions(self) -> list[str]:
        """The most recent evicted ids, oldest first (at most EVICTION_HISTORY)."""
        with self._lock:
            return list(self._evictions)

    @property
    def pinned(self) -> frozenset[str]:
        with self._lock:
            return frozenset(self._pinned)

    def is_loaded(self, skill_id: str) -> bool:
        with self._lock:
            return skill_id in self._loaded

    def ensure_open(self) -> None:
        """Raise SessionClosed if the session has been closed."""
        if self._closed:
            raise SessionClosed(self.session_id)

    def cached(self, skill_id: str) -> Optional[ActivatedSkill]:
        """Return an already-activated skill and mark it most recently used.

        Raises:
            SessionClosed: If the session is closed.
        """
        with self._lock:
            self.ensure_open()
            activated = self._loaded.get(skill_id)
            if activated is not None:
                self._loaded.move_to_end(skill_id)
            return activated

    # ── Mutations ─────────────────────────────────────────────────────

    def commit(self, activated: ActivatedSkill) -> ActivatedSkill:
        """Add a materialized skill, evicting older entries to make room.

        Either the skill is added (after any needed evictions) or nothing
        changes at all.

        Args:
            activated: The materialized skill.

        Returns:
            ActivatedSkill: The committed entry (the existing one if the skill
                was committed concurrently).

        Raises:
            SessionClosed: If the session is closed.
            BudgetExceeded: If the skill alone exceeds the budget, or pinned
                skills leave too little room.
        """
        skill_id = activated.descriptor.id
        with self._lock:
            self.ensure_open()
            existing = self._loaded.get(skill_id)
            if existing is not None:
                self._loaded.move_to_end(skill_id)
                return existing

            if activated.size > self.budget_limit:
                logger.warning(
                    "Rejected %s: %d bytes exceeds budget %d", skill_id, activated.size, self.budget_limit
                )
                raise BudgetExceeded(skill_id, activated.size, self.budget_limit)

            victims = self._plan_eviction(activated.size, exclude=skill_id)
            if victims is None:
                logger.warning("Rejected %s: pinned skills leave too little budget", skill_id)
                raise BudgetExceeded(
                    skill_id,
                    activated.size,
                    self.budget_limit,
                    reason="pinned skills leave too little room",
                )

            for victim in victims:
                self._remove(victim)

            self._loaded[skill_id] = activated
            self._bytes_used += activated.size
            logger.debug(
                "Activated %s (%d bytes, %d/%d used)",
                skill_id,
                activated.size,
                self._bytes_used,
                self.budget_limit,
            )
            return activated

    def _plan_eviction(self, incoming: int, exclude: str) -> Optional[list[str]]:
        """Pick the oldest non-pinned entries whose removal makes room.

        Returns:
            list[str] of ids to evict (possibly empty), or None if even
            evicting every candidate would not free enough.
        """
        victims: list[str] = []
        projected = self._bytes_used
        for skill_id, entry in self._loaded.items():
            if projected + incoming <= self.budget_limit:
                break
            if skill_id in self._pinned or skill_id == exclude:
                continue
            victims.append(skill_id)
            projected -= entry.size
        if projected + incoming > self.budget_limit:
            return None
        return victims

    def _remove(self, skill_id: str) -> None:
        entry = self._loaded.pop(skill_id)
        self._pinned.discard(skill_id)
        self._bytes_used -= entry.size
        self._evictions.append(skill_id)
        self.eviction_count += 1
        logger.info("Evicted %s (%d bytes freed, %d/%d used)", skill_id, entry.size, self._bytes_used, self.budget_limit)

    def evict(self, skill_id: Optional[str] = None) -> str:
        """Evict a skill from the working set.

        Args:
            skill_id: Skill to evict. Defaults to the oldest non-pinned skill.

        Returns:
            str: The evicted skill id.

        Raises:
            SessionClosed: If the session is closed.
            NotFound: If the skill is not loaded or nothing is evictable.
            ValueError: If the named skill is pinned.
        """
        with self._lock:
            self.ensure_open()
            if skill_id is None:
                skill_id = next((sid for sid in self._loaded if sid not in self._pinned), None)
                if skill_id is None:
                    raise NotFound("<no evictable skill>")
            elif skill_id not in self._loaded:
                raise NotFound(skill_id)
            elif skill_id in self._pinned:
                raise ValueError(f"Skill '{skill_id}' is pinned; unpin it before evicting")
            self._remove(skill_id)
            return skill_id

    def pin(self, skill_id: str) -> None:
        """Protect a loaded skill from automatic eviction.

        Raises:
            SessionClosed: If the session is closed.
            NotFound: If the skill is not loaded.
        """
        with self._lock:
            self.ensure_open()
            if skill_id not in self._loaded:
                raise NotFound(skill_id)
            self._pinned.add(skill_id)

    def unpin(self, skill_id: str) -> None:
        with self._lock:
            self.ensure_open()
            self._pinned.discard(skill_id)

    def close(self) -> None:
        """Close the session and release its content. Idempotent."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._loaded.clear()
            self._pinned.clear()
            self._bytes_used = 0
        logger.debug("Closed session %s", self.session_id)

    def snapshot(self) -> dict[str, Any]:
        """Summarize the session for display or MCP responses."""
        with self._lock:
            return {
                "session_id": self.session_id,
                "state": self.state.value,
                "budget_limit": self.budget_limit,
                "bytes_used": self._bytes_used,
                "loaded": [
                    {"id": sid, "size": entry.size, "pinned": sid in self._pinned}
                    for sid, entry in self._loaded.items()
                ],
                "evictions": list(self._evictions),
                "eviction_count": self.eviction_count,
            }

    def __repr__(self) -> str:
        return (
            f"ActivationSession({self.session_id[:8]}, {self.state.value}, "
            f"{self._bytes_used}/{self.budget_limit} bytes, {len(self._loaded)} loaded)"
        )
