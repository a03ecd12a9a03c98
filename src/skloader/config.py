"""SKLoader settings — defaults, an optional config.yaml, and env overrides.

Resolution order (later wins):
    1. field defaults below
    2. $SKLOADER_HOME/config.yaml (or an explicit path)
    3. SKLOADER_* environment variables
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

ENV_OVERRIDES = {
    "SKLOADER_BUDGET": "budget_limit",
    "SKLOADER_THRESHOLD": "match_threshold",
    "SKLOADER_TOP_K": "top_k",
    "SKLOADER_SCAN_WORKERS": "scan_workers",
}


def _default_home() -> Path:
    """Resolve the SKLoader home directory, respecting SKLOADER_HOME.

    Returns:
        Path: The home directory.
    """
    env = os.environ.get("SKLOADER_HOME")
    if env:
        return Path(env).expanduser()
    return Path("~/.skloader").expanduser()


class LoaderSettings(BaseModel):
    """Tunables shared by the scanner, matcher and loader."""

    skills_root: Path = Field(
        default_factory=lambda: _default_home() / "skills",
        description="Directory whose immediate subdirectories are skill packages",
    )
    budget_limit: int = Field(default=200_000, description="Per-session byte budget")
    match_threshold: float = Field(default=0.0, description="Scores must be above this to match")
    top_k: int = Field(default=5, description="Default number of matches to return")
    name_weight: float = Field(default=2.0, description="Score weight of a name hit vs. a description hit")
    max_header_bytes: int = Field(default=64 * 1024, description="Largest header block accepted")
    max_body_bytes: int = Field(default=4 * 1024 * 1024, description="Largest SKILL.md read on activation")
    max_resource_bytes: int = Field(default=16 * 1024 * 1024, description="Largest resource file streamed")
    chunk_size: int = Field(default=64 * 1024, description="Resource streaming chunk size")
    scan_workers: int = Field(default=1, description="Threads used to parse candidates")

    @field_validator(
        "budget_limit",
        "top_k",
        "max_header_bytes",
        "max_body_bytes",
        "max_resource_bytes",
        "chunk_size",
        "scan_workers",
    )
    @classmethod
    def positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be a positive integer")
        return v

    @field_validator("skills_root")
    @classmethod
    def expand(cls, v: Path) -> Path:
        return v.expanduser()

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "LoaderSettings":
        """Build settings from config.yaml (if present) and the environment.

        Args:
            path: Explicit config file. Defaults to $SKLOADER_HOME/config.yaml.

        Returns:
            LoaderSettings: The resolved settings.

        Raises:
            ValueError: If the config file is not a YAML mapping.
            pydantic.ValidationError: If a value has the wrong type or range.
        """
        config_path = path or _default_home() / "config.yaml"
        data: dict[str, Any] = {}
        if config_path.exists():
            raw = yaml.safe_load(config_path.read_text())
            if raw is not None and not isinstance(raw, dict):
                raise ValueError(f"config.yaml must be a YAML mapping, got {type(raw).__name__}")
            data.update(raw or {})

        for env_name, field_name in ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value:
                data[field_name] = value

        return cls.model_validate(data)
