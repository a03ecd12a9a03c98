"""SKLoader errors — the exception taxonomy shared by every component.

Each exception also derives from the closest builtin so callers that only
know ``ValueError`` / ``LookupError`` / ``RuntimeError`` keep working.

``recoverable`` tells a caller whether to try a different skill (True) or
treat the corpus or the calling code as broken (False).
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional


class SkillError(Exception):
    """Base class for all SKLoader errors."""

    recoverable: bool = True


class InvalidMetadata(SkillError, ValueError):
    """A skill header is missing a required field or is not a key-value mapping.

    Args:
        message: Human-readable reason.
        field: The offending header field, or None for structural errors.
        source: Where the header came from (file path or "<string>").
    """

    def __init__(self, message: str, field: Optional[str] = None, source: str = "<string>") -> None:
        self.field = field
        self.source = source
        super().__init__(f"{source}: {message}")


class ScanError(SkillError, RuntimeError):
    """The scan of a skill root had to be aborted."""

    recoverable = False


class DuplicateId(ScanError):
    """Two skill packages resolve to the same id."""

    def __init__(self, skill_id: str, paths: tuple[Path, ...]) -> None:
        self.skill_id = skill_id
        self.paths = paths
        joined = ", ".join(str(p) for p in paths)
        super().__init__(f"Duplicate skill id '{skill_id}': {joined}")


class NotFound(SkillError, LookupError):
    """No skill with the requested id exists in the registry."""

    def __init__(self, skill_id: str) -> None:
        self.skill_id = skill_id
        super().__init__(f"Skill not found: {skill_id}")


class ActivationError(SkillError, RuntimeError):
    """A skill body could not be materialized. The session is left unchanged."""


class BudgetExceeded(ActivationError):
    """Activating a skill would exceed the session budget and eviction cannot help."""

    def __init__(self, skill_id: str, required: int, budget_limit: int, reason: str = "") -> None:
        self.skill_id = skill_id
        self.required = required
        self.budget_limit = budget_limit
        detail = reason or "skill is larger than the whole budget"
        super().__init__(
            f"Cannot activate '{skill_id}' ({required} bytes, budget {budget_limit}): {detail}"
        )


class ResourceNotFound(SkillError, LookupError):
    """A resource path is not recorded for the skill or no longer exists."""


class PathEscape(ResourceNotFound):
    """A resource path resolves outside the skill package root."""


class SessionClosed(SkillError, RuntimeError):
    """An operation was attempted on a closed activation session."""

    recoverable = False

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Session {session_id} is closed")
