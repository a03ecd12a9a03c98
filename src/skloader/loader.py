"""SKLoader Loader — progressive disclosure of skill content.

Three tiers of disclosure:
    1. metadata   name + description, held by the registry (always loaded)
    2. body       the SKILL.md Markdown, read on activation into a session
    3. resources  files under scripts/ references/ assets/, streamed on request

Activation is idempotent per session and single-flight per (session, id):
concurrent requests for a skill that is mid-load wait for and reuse the
first read. A failed load leaves the session untouched.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path, PurePosixPath
from typing import Iterator, Optional, Union

from .config import LoaderSettings
from .errors import ActivationError, InvalidMetadata, PathEscape, ResourceNotFound
from .models import ActivatedSkill, ResourceCategory, SkillDescriptor, read_body
from .registry import SkillRegistry
from .session import ActivationSession

logger = logging.getLogger("skloader.loader")


class ProgressiveLoader:
    """Materializes skill bodies and resources for activation sessions.

    The loader holds only the shared, immutable registry and settings; all
    per-task state lives in the sessions it is handed.

    Args:
        registry: The skill registry.
        settings: Loader settings (budget default, read bounds).
    """

    def __init__(self, registry: SkillRegistry, settings: Optional[LoaderSettings] = None) -> None:
        self.registry = registry
        self.settings = settings or LoaderSettings()

    def open_session(self, budget_limit: Optional[int] = None) -> ActivationSession:
        """Start a new activation session.

        Args:
            budget_limit: Byte budget (default: settings.budget_limit).

        Returns:
            ActivationSession: An empty session.
        """
        if budget_limit is None:
            budget_limit = self.settings.budget_limit
        return ActivationSession(budget_limit)

    # ── Tier 2: bodies ────────────────────────────────────────────────

    def activate(self, session: ActivationSession, skill_id: str) -> str:
        """Activate a skill in a session and return its body.

        Args:
            session: The caller's activation session.
            skill_id: Skill to activate.

        Returns:
            str: The skill's Markdown body.

        Raises:
            SessionClosed: If the session is closed.
            NotFound: If the id is not in the registry.
            BudgetExceeded: If the body cannot fit in the budget.
            ActivationError: If the body cannot be read.
        """
        cached = session.cached(skill_id)
        if cached is not None:
            logger.debug("Cache hit for %s in session %s", skill_id, session.session_id[:8])
            return cached.body

        activated = session.flights.do(skill_id, lambda: self._materialize(session, skill_id))
        return activated.body

    async def aactivate(self, session: ActivationSession, skill_id: str) -> str:
        """Async variant of :meth:`activate` that reads in a worker thread."""
        return await asyncio.to_thread(self.activate, session, skill_id)

    def activated(self, session: ActivationSession, skill_id: str) -> Optional[ActivatedSkill]:
        """Return the session's activated copy of a skill, if loaded."""
        return session.cached(skill_id)

    def _materialize(self, session: ActivationSession, skill_id: str) -> ActivatedSkill:
        """Read, measure and commit one skill body (runs once per flight)."""
        cached = session.cached(skill_id)
        if cached is not None:
            return cached

        descriptor = self.registry.get(skill_id)
        body = self._read_body(descriptor)
        activated = ActivatedSkill(
            descriptor=descriptor.model_copy(update={"body_loaded": True}),
            body=body,
            size=len(body.encode("utf-8")),
        )
        return session.commit(activated)

    def _read_body(self, descriptor: SkillDescriptor) -> str:
        path = descriptor.header_path
        try:
            size = path.stat().st_size
            if size > self.settings.max_body_bytes:
                raise ActivationError(
                    f"{descriptor.id}: {path.name} is {size} bytes, limit {self.settings.max_body_bytes}"
                )
            return read_body(path)
        except FileNotFoundError as exc:
            raise ActivationError(f"{descriptor.id}: {path.name} no longer exists") from exc
        except InvalidMetadata as exc:
            raise ActivationError(f"{descriptor.id}: {exc}") from exc
        except (OSError, UnicodeDecodeError) as exc:
            raise ActivationError(f"{descriptor.id}: cannot read {path.name}: {exc}") from exc

    # ── Tier 3: resources ─────────────────────────────────────────────

    def resources(self, skill_id: str) -> dict[ResourceCategory, list[str]]:
        """List a skill's recorded resources without reading them."""
        descriptor = self.registry.get(skill_id)
        return {category: sorted(paths) for category, paths in descriptor.resource_dirs.items()}

    def resource_path(
        self,
        skill_id: str,
        category: Union[ResourceCategory, str],
        relative_path: str,
    ) -> Path:
        """Validate a resource reference and return its absolute path.

        Args:
            skill_id: Skill id.
            category: Resource category (scripts, references, assets).
            relative_path: POSIX path relative to the category directory.

        Returns:
            Path: The resolved file path inside the package root.

        Raises:
            NotFound: If the skill id is unknown.
            PathEscape: If the path is absolute or resolves outside the package.
            ResourceNotFound: If the category is unknown or the path is not
                recorded for the skill.
        """
        descriptor = self.registry.get(skill_id)
        try:
            category = ResourceCategory(category)
        except ValueError:
            raise ResourceNotFound(f"{skill_id}: unknown resource category '{category}'") from None

        pure = PurePosixPath(relative_path.replace("\\", "/"))
        if pure.is_absolute() or Path(relative_path).is_absolute():
            logger.warning("Rejected absolute resource path for %s: %s", skill_id, relative_path)
            raise PathEscape(f"{skill_id}: resource path must be relative: '{relative_path}'")

        # The path must stay inside its category directory, which in turn must
        # stay inside the package root.
        root = descriptor.source_path.resolve()
        category_root = (root / category.value).resolve()
        target = (category_root / pure).resolve()
        if not (category_root.is_relative_to(root) and target.is_relative_to(category_root)):
            logger.warning("Rejected escaping resource path for %s: %s", skill_id, relative_path)
            raise PathEscape(
                f"{skill_id}: resource path escapes {category.value}/ of the package: '{relative_path}'"
            )

        recorded = descriptor.resource_dirs.get(category, frozenset())
        if pure.as_posix() not in recorded:
            raise ResourceNotFound(f"{skill_id}: no {category.value} resource '{relative_path}'")
        return target

    def iter_resource(
        self,
        session: ActivationSession,
        skill_id: str,
        category: Union[ResourceCategory, str],
        relative_path: str,
    ) -> Iterator[bytes]:
        """Stream one resource file in chunks.

        Validation happens before the first chunk is produced, so errors are
        raised by this call rather than on iteration.

        Raises:
            SessionClosed: If the session is closed.
            PathEscape: If the path escapes the package root.
            ResourceNotFound: If the path is not recorded or no longer exists.
        """
        session.ensure_open()
        target = self.resource_path(skill_id, category, relative_path)
        try:
            size = target.stat().st_size
        except FileNotFoundError:
            raise ResourceNotFound(f"{skill_id}: resource no longer exists: '{relative_path}'") from None
        if size > self.settings.max_resource_bytes:
            raise ResourceNotFound(
                f"{skill_id}: resource '{relative_path}' is {size} bytes, "
                f"limit {self.settings.max_resource_bytes}"
            )
        return self._chunks(target, self.settings.chunk_size)

    @staticmethod
    def _chunks(path: Path, chunk_size: int) -> Iterator[bytes]:
        with path.open("rb") as fh:
            while True:
                chunk = fh.read(chunk_size)
                if not chunk:
                    return
                yield chunk

    def resolve_resource(
        self,
        session: ActivationSession,
        skill_id: str,
        category: Union[ResourceCategory, str],
        relative_path: str,
    ) -> bytes:
        """Read one resource file fully.

        Args:
            session: The caller's activation session (must be open).
            skill_id: Skill id.
            category: Resource category.
            relative_path: Path relative to the category directory.

        Returns:
            bytes: File content.

        Raises:
            SessionClosed: If the session is closed.
            PathEscape: If the path escapes the package root.
            ResourceNotFound: If the path is not recorded or no longer exists.
        """
        try:
            data = b"".join(self.iter_resource(session, skill_id, category, relative_path))
        except OSError as exc:
            raise ResourceNotFound(f"{skill_id}: cannot read resource '{relative_path}': {exc}") from exc
        logger.debug("Served %s/%s/%s (%d bytes)", skill_id, ResourceCategory(category).value, relative_path, len(data))
        return data
