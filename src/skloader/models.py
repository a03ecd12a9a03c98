"""SKLoader data models — the SKILL.md header schema as Pydantic models.

A skill package is a directory with a package-defining ``SKILL.md``:

    ---
    name: rest-api-builder
    description: Build REST APIs with routing and validation
    license: MIT
    ---
    # Body (Markdown) — only read when the skill is activated

plus optional ``scripts/``, ``references/`` and ``assets/`` directories.

The header is parsed by a pure validating parser into a typed
``SkillHeader``; the scanner turns that into an immutable ``SkillDescriptor``.
"""

from __future__ import annotations

import enum
import re
from datetime import datetime
from pathlib import Path, PurePosixPath
from types import MappingProxyType
from typing import Any, Mapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import InvalidMetadata

HEADER_FILE = "SKILL.md"
HEADER_DELIMITER = "---"


class ResourceCategory(str, enum.Enum):
    """The optional resource directories a skill package may carry."""

    SCRIPTS = "scripts"
    REFERENCES = "references"
    ASSETS = "assets"


class SkillHeader(BaseModel):
    """The validated key-value header of a SKILL.md file.

    Only ``name`` and ``description`` are required. Keys the schema does not
    know about are kept verbatim in ``extra``.
    """

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(description="Human-readable skill label")
    description: str = Field(description="What the skill does; drives relevance matching")
    license: Optional[str] = Field(default=None, description="License name or reference")
    version: Optional[str] = Field(default=None, description="Free-form version string")
    tags: list[str] = Field(default_factory=list, description="Categorization tags")
    allowed_tools: list[str] = Field(
        default_factory=list,
        alias="allowed-tools",
        description="Tools the skill expects the agent to have",
    )
    extra: dict[str, Any] = Field(default_factory=dict, description="Unknown header keys")

    @field_validator("name", "description", mode="before")
    @classmethod
    def require_text(cls, v: Any) -> str:
        """Required fields must be non-blank strings."""
        if not isinstance(v, str) or not v.strip():
            raise ValueError("must be a non-empty string")
        return v.strip()

    @field_validator("license", "version", mode="before")
    @classmethod
    def coerce_text(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        return str(v).strip() or None

    @field_validator("tags", "allowed_tools", mode="before")
    @classmethod
    def split_list(cls, v: Any) -> list[str]:
        """Accept either a YAML list or a comma/space separated string."""
        if v is None:
            return []
        if isinstance(v, str):
            return [part for part in re.split(r"[,\s]+", v) if part]
        if isinstance(v, (list, tuple)):
            return [str(item) for item in v]
        raise ValueError("must be a list or a string")


KNOWN_HEADER_KEYS = frozenset({"name", "description", "license", "version", "tags", "allowed-tools"})


class SkillDescriptor(BaseModel):
    """Identity and discovery metadata for one skill package.

    Descriptors held by a registry are frozen and always have
    ``body_loaded=False``. Activation hands out a copy with
    ``body_loaded=True`` that lives in the activating session only.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Registry-unique id derived from the package directory name")
    name: str
    description: str
    license: Optional[str] = None
    version: Optional[str] = None
    tags: tuple[str, ...] = ()
    extra: Mapping[str, Any] = Field(default_factory=dict, validate_default=True)
    source_path: Path = Field(description="Absolute path of the package root")
    header_file: str = HEADER_FILE
    resource_dirs: Mapping[ResourceCategory, frozenset[str]] = Field(
        default_factory=dict,
        validate_default=True,
        description="Category -> POSIX paths relative to the category directory",
    )
    body_loaded: bool = False

    @field_validator("resource_dirs")
    @classmethod
    def validate_relative(
        cls, v: Mapping[ResourceCategory, frozenset[str]]
    ) -> Mapping[ResourceCategory, frozenset[str]]:
        """Resource paths must stay inside their category directory."""
        for category, paths in v.items():
            for rel in paths:
                pure = PurePosixPath(rel)
                if pure.is_absolute() or ".." in pure.parts or not pure.parts:
                    raise ValueError(f"{category.value}: resource path must be relative: '{rel}'")
        return MappingProxyType(dict(v))

    @field_validator("extra")
    @classmethod
    def freeze_extra(cls, v: Mapping[str, Any]) -> Mapping[str, Any]:
        return MappingProxyType(dict(v))

    @property
    def header_path(self) -> Path:
        return self.source_path / self.header_file

    @property
    def resource_count(self) -> int:
        return sum(len(paths) for paths in self.resource_dirs.values())

    def has_resources(self, category: ResourceCategory) -> bool:
        return bool(self.resource_dirs.get(category))

    @classmethod
    def from_header(
        cls,
        skill_id: str,
        header: SkillHeader,
        source_path: Path,
        resource_dirs: Optional[dict[ResourceCategory, frozenset[str]]] = None,
    ) -> "SkillDescriptor":
        """Build a descriptor from a parsed header and the scanner's findings."""
        return cls(
            id=skill_id,
            name=header.name,
            description=header.description,
            license=header.license,
            version=header.version,
            tags=tuple(header.tags),
            extra=dict(header.extra),
            source_path=source_path,
            resource_dirs=resource_dirs or {},
        )


class ActivatedSkill(BaseModel):
    """A skill body materialized into an activation session."""

    model_config = ConfigDict(frozen=True)

    descriptor: SkillDescriptor
    body: str
    size: int = Field(description="UTF-8 byte length of the body")
    activated_at: datetime = Field(default_factory=datetime.now)


class ParseFailure(BaseModel):
    """One rejected candidate, reported alongside a successful scan."""

    path: Path
    skill_id: str
    field: Optional[str] = None
    reason: str


class ScanResult(BaseModel):
    """Accepted descriptors (in scan order) plus per-candidate failures."""

    model_config = ConfigDict(frozen=True)

    descriptors: tuple[SkillDescriptor, ...] = ()
    failures: tuple[ParseFailure, ...] = ()


def normalize_skill_id(directory_name: str) -> str:
    """Derive a skill id from its package directory name.

    Args:
        directory_name: Name of the skill's package directory.

    Returns:
        str: Lower-case id with whitespace and underscores folded to '-'.
    """
    return re.sub(r"[\s_]+", "-", directory_name.strip().lower())


def split_header(text: str, source: str = "<string>") -> tuple[str, str]:
    """Split a SKILL.md document into header text and body.

    Args:
        text: Full document content.
        source: Label used in error messages.

    Returns:
        tuple[str, str]: (header text without delimiters, body).

    Raises:
        InvalidMetadata: If the document has no delimited header.
    """
    lines = text.lstrip("\ufeff").splitlines(keepends=True)
    if not lines or lines[0].strip() != HEADER_DELIMITER:
        raise InvalidMetadata(f"missing '{HEADER_DELIMITER}' header delimiter", source=source)

    for idx in range(1, len(lines)):
        if lines[idx].strip() == HEADER_DELIMITER:
            header = "".join(lines[1:idx])
            body = "".join(lines[idx + 1:]).lstrip("\r\n")
            return header, body

    raise InvalidMetadata("unterminated header", source=source)


def parse_header(text: str, source: str = "<string>") -> SkillHeader:
    """Parse header text (the part between the delimiters) into a SkillHeader.

    Pure: performs no I/O and has no side effects.

    Args:
        text: YAML key-value header content.
        source: Label used in error messages.

    Returns:
        SkillHeader: The validated header.

    Raises:
        InvalidMetadata: If the header is not a well-formed mapping or a
            required field is missing or blank.
    """
    try:
        raw = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise InvalidMetadata(f"header is not valid YAML: {exc}", source=source) from exc

    if not isinstance(raw, dict):
        kind = "empty" if raw is None else type(raw).__name__
        raise InvalidMetadata(f"header must be a key-value mapping, got {kind}", source=source)

    for required in ("name", "description"):
        if required not in raw:
            raise InvalidMetadata(f"missing required field '{required}'", field=required, source=source)

    known = {str(k): v for k, v in raw.items() if str(k) in KNOWN_HEADER_KEYS}
    extra = {str(k): v for k, v in raw.items() if str(k) not in KNOWN_HEADER_KEYS}

    try:
        return SkillHeader.model_validate({**known, "extra": extra})
    except ValidationError as exc:
        err = exc.errors()[0]
        loc = err["loc"][0] if err["loc"] else None
        field = "allowed-tools" if loc == "allowed_tools" else (str(loc) if loc is not None else None)
        raise InvalidMetadata(f"field '{field}' {err['msg'].lower()}", field=field, source=source) from exc


def read_header(path: Path, max_bytes: int) -> str:
    """Read only the header block of a SKILL.md file.

    Reading stops at the closing delimiter, so the body is never touched.

    Args:
        path: Path to the SKILL.md file.
        max_bytes: Upper bound on header size.

    Returns:
        str: Header text without delimiters.

    Raises:
        InvalidMetadata: If the header is missing, unterminated or too large.
        OSError: If the file cannot be read.
    """
    source = str(path)
    lines: list[str] = []
    consumed = 0
    with path.open("r", encoding="utf-8-sig") as fh:
        first = fh.readline()
        if first.strip() != HEADER_DELIMITER:
            raise InvalidMetadata(f"missing '{HEADER_DELIMITER}' header delimiter", source=source)
        for line in fh:
            if line.strip() == HEADER_DELIMITER:
                return "".join(lines)
            consumed += len(line.encode("utf-8"))
            if consumed > max_bytes:
                raise InvalidMetadata(f"header exceeds {max_bytes} bytes", source=source)
            lines.append(line)
    raise InvalidMetadata("unterminated header", source=source)


def read_body(path: Path) -> str:
    """Read a SKILL.md file and return everything after the header.

    Args:
        path: Path to the SKILL.md file.

    Returns:
        str: The Markdown body.

    Raises:
        InvalidMetadata: If the file no longer has a valid header block.
        OSError: If the file cannot be read.
    """
    _, body = split_header(path.read_text(encoding="utf-8-sig"), source=str(path))
    return body


def render_skill_md(header: SkillHeader, body: str) -> str:
    """Serialize a header and body back into SKILL.md form.

    Args:
        header: The skill header.
        body: Markdown body.

    Returns:
        str: Document text.
    """
    data = header.model_dump(exclude_none=True, by_alias=True, exclude={"extra"})
    data = {k: v for k, v in data.items() if v != []}
    data.update(header.extra)
    dumped = yaml.dump(data, default_flow_style=False, sort_keys=False, allow_unicode=True)
    return f"{HEADER_DELIMITER}\n{dumped}{HEADER_DELIMITER}\n\n{body}"
