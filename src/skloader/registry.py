"""SKLoader Registry — the read-only index of scanned skill descriptors.

A registry is built once from a scan and never mutated. Rescanning means
building a new instance, so readers never observe a half-updated index and
can share one registry across threads without locking.
"""

from __future__ import annotations

from pathlib import Path
from types import MappingProxyType
from typing import Iterable, Iterator, Optional

from .config import LoaderSettings
from .errors import DuplicateId, NotFound
from .models import ParseFailure, SkillDescriptor
from .scanner import scan_root


class SkillRegistry:
    """Immutable index of skill descriptors keyed by id.

    Args:
        descriptors: Accepted descriptors, in scan order.
        failures: Candidates rejected during the scan.

    Raises:
        DuplicateId: If two descriptors share an id.
    """

    def __init__(
        self,
        descriptors: Iterable[SkillDescriptor],
        failures: Iterable[ParseFailure] = (),
    ) -> None:
        ordered = tuple(descriptors)
        index: dict[str, SkillDescriptor] = {}
        for descriptor in ordered:
            if descriptor.id in index:
                raise DuplicateId(descriptor.id, (index[descriptor.id].source_path, descriptor.source_path))
            index[descriptor.id] = descriptor

        self._descriptors = ordered
        self._index = MappingProxyType(index)
        self._positions = MappingProxyType({d.id: i for i, d in enumerate(ordered)})
        self._failures = tuple(failures)

    @classmethod
    def from_roots(cls, *roots: Path, settings: Optional[LoaderSettings] = None) -> "SkillRegistry":
        """Scan one or more roots and build a registry from the result.

        Args:
            *roots: Skill root directories.
            settings: Loader settings passed to the scanner.

        Returns:
            SkillRegistry: The built registry.

        Raises:
            ScanError: If a root cannot be scanned or ids collide.
        """
        result = scan_root(*roots, settings=settings)
        return cls(result.descriptors, result.failures)

    def list(self) -> tuple[SkillDescriptor, ...]:
        """All descriptors in scan order."""
        return self._descriptors

    def get(self, skill_id: str) -> SkillDescriptor:
        """Look up a descriptor by id.

        Args:
            skill_id: Skill id.

        Returns:
            SkillDescriptor: The matching descriptor.

        Raises:
            NotFound: If no skill has this id.
        """
        try:
            return self._index[skill_id]
        except KeyError:
            raise NotFound(skill_id) from None

    def ids(self) -> tuple[str, ...]:
        return tuple(d.id for d in self._descriptors)

    def position(self, skill_id: str) -> int:
        """Scan-order position of a skill, used as the ranking tie-breaker."""
        try:
            return self._positions[skill_id]
        except KeyError:
            raise NotFound(skill_id) from None

    @property
    def failures(self) -> tuple[ParseFailure, ...]:
        return self._failures

    def __contains__(self, skill_id: object) -> bool:
        return skill_id in self._index

    def __len__(self) -> int:
        return len(self._descriptors)

    def __iter__(self) -> Iterator[SkillDescriptor]:
        return iter(self._descriptors)

    def __repr__(self) -> str:
        return f"SkillRegistry({len(self._descriptors)} skills, {len(self._failures)} failures)"
