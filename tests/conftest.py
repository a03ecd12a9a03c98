"""Shared fixtures: build skill packages on disk."""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Optional

import pytest


def write_skill(
    root: Path,
    dirname: str,
    name: Optional[str] = None,
    description: Optional[str] = "A test skill",
    body: str = "# Body\n",
    extra_header: str = "",
    resources: Optional[dict[str, dict[str, str]]] = None,
) -> Path:
    """Create ``root/dirname/SKILL.md`` plus optional resource files.

    ``name`` / ``description`` set to None are left out of the header.
    """
    skill_dir = root / dirname
    skill_dir.mkdir(parents=True, exist_ok=True)

    lines = ["---"]
    if name is not None:
        lines.append(f"name: {name}")
    if description is not None:
        lines.append(f"description: {description}")
    if extra_header:
        lines.append(extra_header.rstrip("\n"))
    lines.append("---")
    (skill_dir / "SKILL.md").write_text("\n".join(lines) + "\n" + body)

    for category, files in (resources or {}).items():
        for rel, content in files.items():
            target = skill_dir / category / rel
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content)

    return skill_dir


@pytest.fixture
def make_skill(tmp_path: Path) -> Callable[..., Path]:
    """Factory writing skill packages under ``tmp_path / 'skills'``."""
    root = tmp_path / "skills"
    root.mkdir(exist_ok=True)

    def _make(dirname: str, **kwargs) -> Path:
        kwargs.setdefault("name", dirname)
        return write_skill(root, dirname, **kwargs)

    return _make


@pytest.fixture
def skills_root(tmp_path: Path) -> Path:
    root = tmp_path / "skills"
    root.mkdir(exist_ok=True)
    return root
