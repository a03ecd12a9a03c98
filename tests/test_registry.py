"""Tests for SKLoader Registry — build-once, read-only lookup."""

from pathlib import Path

import pytest

from skloader import scan
from skloader.errors import DuplicateId, NotFound
from skloader.models import SkillDescriptor
from skloader.registry import SkillRegistry


@pytest.fixture
def registry(make_skill, skills_root: Path) -> SkillRegistry:
    """A registry with two good skills and one rejected candidate."""
    make_skill("rest-api", description="Build REST APIs")
    make_skill("forms", description="Style forms")
    make_skill("broken", description=None)
    return SkillRegistry.from_roots(skills_root)


class TestLookup:
    """Test list() and get()."""

    def test_list_in_scan_order(self, registry: SkillRegistry):
        assert [d.id for d in registry.list()] == ["forms", "rest-api"]

    def test_list_is_stable(self, registry: SkillRegistry):
        assert registry.list() == registry.list()

    def test_failures_exposed(self, registry: SkillRegistry):
        assert [f.skill_id for f in registry.failures] == ["broken"]
        assert "broken" not in registry

    def test_get(self, registry: SkillRegistry):
        assert registry.get("rest-api").description == "Build REST APIs"

    def test_get_unknown(self, registry: SkillRegistry):
        with pytest.raises(NotFound, match="nope"):
            registry.get("nope")

    def test_not_found_is_lookup_error(self, registry: SkillRegistry):
        with pytest.raises(LookupError):
            registry.get("nope")

    def test_container_protocol(self, registry: SkillRegistry):
        assert len(registry) == 2
        assert "forms" in registry
        assert [d.id for d in registry] == ["forms", "rest-api"]
        assert registry.ids() == ("forms", "rest-api")
        assert registry.position("rest-api") == 1


class TestImmutability:
    """The registry never changes after construction."""

    def test_list_is_a_tuple(self, registry: SkillRegistry):
        assert isinstance(registry.list(), tuple)

    def test_index_is_read_only(self, registry: SkillRegistry):
        with pytest.raises(TypeError):
            registry._index["x"] = registry.get("forms")

    def test_rescan_builds_new_instance(self, registry: SkillRegistry, make_skill, skills_root: Path):
        """Adding a package later leaves the existing registry untouched."""
        make_skill("charts", description="Draw charts")
        fresh = SkillRegistry.from_roots(skills_root)
        assert "charts" in fresh
        assert "charts" not in registry

    def test_duplicate_descriptors_rejected(self, tmp_path: Path):
        d = SkillDescriptor(id="x", name="x", description="y", source_path=tmp_path)
        with pytest.raises(DuplicateId):
            SkillRegistry([d, d])


class TestScanFunction:
    """Test the top-level scan() helper."""

    def test_scan_accepts_strings(self, make_skill, skills_root: Path):
        make_skill("rest-api", description="Build REST APIs")
        registry = scan(str(skills_root))
        assert registry.ids() == ("rest-api",)
