"""SKLoader — skill registry and progressive disclosure loader.

Discovers skill packages (SKILL.md + optional scripts/, references/,
assets/), matches them to a task from metadata alone, and loads bodies and
resources lazily into budgeted activation sessions.

    registry = scan("~/.skloader/skills")
    loader = ProgressiveLoader(registry)
    session = loader.open_session(budget_limit=100_000)
    for skill_id, score in match(registry, "build a REST API", top_k=3):
        body = activate(loader, session, skill_id)
    close_session(session)
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Union

from .config import LoaderSettings
from .errors import (
    ActivationError,
    BudgetExceeded,
    DuplicateId,
    InvalidMetadata,
    NotFound,
    PathEscape,
    ResourceNotFound,
    ScanError,
    SessionClosed,
    SkillError,
)
from .loader import ProgressiveLoader
from .matcher import Match, RelevanceMatcher, match
from .models import ResourceCategory, SkillDescriptor, parse_header
from .registry import SkillRegistry
from .session import ActivationSession, SessionState

__version__ = "0.1.0"

SKLOADER_HOME = "~/.skloader"


def scan(root: Union[str, Path], *more_roots: Union[str, Path], settings: Optional[LoaderSettings] = None) -> SkillRegistry:
    """Scan skill roots and build an immutable registry.

    Raises:
        ScanError: If a root is unusable or two skills share an id.
    """
    return SkillRegistry.from_roots(Path(root), *(Path(r) for r in more_roots), settings=settings)


def open_session(budget_limit: Optional[int] = None) -> ActivationSession:
    """Start an activation session (default budget from settings)."""
    if budget_limit is None:
        budget_limit = LoaderSettings.load().budget_limit
    return ActivationSession(budget_limit)


def activate(loader: ProgressiveLoader, session: ActivationSession, skill_id: str) -> str:
    """Activate a skill in a session and return its body."""
    return loader.activate(session, skill_id)


def resolve_resource(
    loader: ProgressiveLoader,
    session: ActivationSession,
    skill_id: str,
    category: Union[ResourceCategory, str],
    path: str,
) -> bytes:
    """Read one resource file of a skill."""
    return loader.resolve_resource(session, skill_id, category, path)


def close_session(session: ActivationSession) -> None:
    """Close a session; every later operation on it raises SessionClosed."""
    session.close()


__all__ = [
    "ActivationError",
    "ActivationSession",
    "BudgetExceeded",
    "DuplicateId",
    "InvalidMetadata",
    "LoaderSettings",
    "Match",
    "NotFound",
    "PathEscape",
    "ProgressiveLoader",
    "RelevanceMatcher",
    "ResourceCategory",
    "ResourceNotFound",
    "ScanError",
    "SessionClosed",
    "SessionState",
    "SkillDescriptor",
    "SkillError",
    "SkillRegistry",
    "activate",
    "close_session",
    "match",
    "open_session",
    "parse_header",
    "resolve_resource",
    "scan",
]
