"""SKLoader Scanner — discover skill packages under one or more roots.

Layout consumed:
    <root>/
        rest-api-builder/
            SKILL.md            # '---' header '---' + body
            scripts/            # optional
            references/         # optional
            assets/             # optional
        form-styling/
            SKILL.md

Only headers are read. Resource directories are listed (paths only);
bodies and resource contents are left for the loader.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Optional, Union

from .config import LoaderSettings
from .errors import DuplicateId, InvalidMetadata, ScanError
from .models import (
    HEADER_FILE,
    ParseFailure,
    ResourceCategory,
    ScanResult,
    SkillDescriptor,
    normalize_skill_id,
    parse_header,
    read_header,
)

logger = logging.getLogger("skloader.scanner")

_Outcome = Union[SkillDescriptor, ParseFailure]


def list_resources(package_root: Path) -> dict[ResourceCategory, frozenset[str]]:
    """List resource files per category without reading them.

    Only files that resolve inside their own category directory are listed,
    which is the rule the loader applies when serving them. Symlinks that
    point elsewhere (another category, or outside the package) are skipped.

    Args:
        package_root: The skill package directory.

    Returns:
        dict: Category -> POSIX paths relative to the category directory.
            Categories whose directory is absent are omitted.
    """
    resolved_root = package_root.resolve()
    found: dict[ResourceCategory, frozenset[str]] = {}

    for category in ResourceCategory:
        category_dir = package_root / category.value
        if not category_dir.is_dir():
            continue
        resolved_category = category_dir.resolve()
        if not resolved_category.is_relative_to(resolved_root):
            logger.warning("Skipping %s/: resolves outside package root %s", category.value, package_root)
            continue
        paths: set[str] = set()
        for entry in category_dir.rglob("*"):
            if not entry.is_file():
                continue
            if not entry.resolve().is_relative_to(resolved_category):
                logger.warning("Skipping resource outside %s/: %s", category.value, entry)
                continue
            paths.add(entry.relative_to(category_dir).as_posix())
        found[category] = frozenset(paths)

    return found


def _candidate_dirs(root: Path) -> list[Path]:
    """Return the package directories directly under ``root`` in name order."""
    if not root.is_dir():
        raise ScanError(f"Skill root is not a directory: {root}")

    candidates: list[Path] = []
    for entry in sorted(root.iterdir(), key=lambda p: p.name):
        if entry.name.startswith(".") or not entry.is_dir():
            continue
        if not (entry / HEADER_FILE).is_file():
            logger.debug("Skipping %s: no %s", entry, HEADER_FILE)
            continue
        candidates.append(entry)
    return candidates


def _scan_candidate(package_dir: Path, settings: LoaderSettings) -> _Outcome:
    """Parse one candidate into a descriptor or a failure record."""
    skill_id = normalize_skill_id(package_dir.name)
    header_path = package_dir / HEADER_FILE
    try:
        header = parse_header(
            read_header(header_path, settings.max_header_bytes),
            source=str(header_path),
        )
    except InvalidMetadata as exc:
        logger.warning("Rejected skill candidate %s: %s", package_dir, exc)
        return ParseFailure(path=package_dir, skill_id=skill_id, field=exc.field, reason=str(exc))
    except (OSError, UnicodeDecodeError) as exc:
        logger.warning("Could not read %s: %s", header_path, exc)
        return ParseFailure(path=package_dir, skill_id=skill_id, reason=f"unreadable header: {exc}")

    return SkillDescriptor.from_header(
        skill_id,
        header,
        source_path=package_dir.resolve(),
        resource_dirs=list_resources(package_dir),
    )


def scan_root(*roots: Path, settings: Optional[LoaderSettings] = None) -> ScanResult:
    """Scan skill roots into descriptors plus per-candidate failures.

    Args:
        *roots: One or more root directories.
        settings: Loader settings (header bound, worker count).

    Returns:
        ScanResult: Accepted descriptors in scan order and rejected candidates.

    Raises:
        ScanError: If a root is missing or not a directory.
        DuplicateId: If two candidates resolve to the same id.
    """
    if not roots:
        raise ScanError("At least one skill root is required")
    settings = settings or LoaderSettings()

    candidates: list[Path] = []
    for root in roots:
        candidates.extend(_candidate_dirs(Path(root).expanduser()))

    # Ids are checked before any header is parsed so the result does not
    # depend on which candidates happen to be valid.
    seen: dict[str, Path] = {}
    for package_dir in candidates:
        skill_id = normalize_skill_id(package_dir.name)
        if skill_id in seen:
            raise DuplicateId(skill_id, (seen[skill_id], package_dir))
        seen[skill_id] = package_dir

    if settings.scan_workers > 1 and len(candidates) > 1:
        with ThreadPoolExecutor(max_workers=settings.scan_workers) as pool:
            outcomes = list(pool.map(lambda d: _scan_candidate(d, settings), candidates))
    else:
        outcomes = [_scan_candidate(d, settings) for d in candidates]

    descriptors = tuple(o for o in outcomes if isinstance(o, SkillDescriptor))
    failures = tuple(o for o in outcomes if isinstance(o, ParseFailure))
    logger.info(
        "Scanned %d candidate(s) under %s: %d accepted, %d rejected",
        len(candidates),
        ", ".join(str(r) for r in roots),
        len(descriptors),
        len(failures),
    )
    return ScanResult(descriptors=descriptors, failures=failures)
