"""Tests for the SKLoader MCP server handlers."""

from __future__ import annotations

import base64
import json
from pathlib import Path

import pytest

from skloader.registry import SkillRegistry
from skloader.server import URI_SCHEME, SkillServer

PNG_BYTES = b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR\xff\xfe"


@pytest.fixture
def server(make_skill, skills_root: Path) -> SkillServer:
    make_skill(
        "api-builder",
        name="API Builder",
        description="Build REST APIs with routing",
        body="# API Builder\n",
        resources={"references": {"routing.md": "# Routing\n"}},
    )
    make_skill("form-styler", name="Form Styler", description="Style HTML forms", body="# Forms\n")
    assets = skills_root / "form-styler" / "assets"
    assets.mkdir()
    (assets / "icon.png").write_bytes(PNG_BYTES)
    return SkillServer(SkillRegistry.from_roots(skills_root), budget_limit=1000)


def _payload(result):
    assert len(result) == 1
    return json.loads(result[0].text)


class TestToolDefinitions:
    def test_tool_names(self):
        names = [t.name for t in SkillServer.tool_definitions()]
        assert names == [
            "skills.list",
            "skills.match",
            "skills.activate",
            "skills.evict",
            "skills.session",
            "skills.resource",
        ]

    def test_resource_list(self, server: SkillServer):
        uris = [r["uri"] for r in server.resource_list()]
        assert f"{URI_SCHEME}api-builder/SKILL.md" in uris
        assert f"{URI_SCHEME}api-builder/references/routing.md" in uris
        assert f"{URI_SCHEME}form-styler/SKILL.md" in uris

    def test_resource_list_mime_types(self, server: SkillServer):
        mime = {r["uri"]: r["mimeType"] for r in server.resource_list()}
        assert mime[f"{URI_SCHEME}form-styler/assets/icon.png"] == "image/png"


class TestToolCalls:
    @pytest.mark.asyncio
    async def test_list(self, server: SkillServer):
        data = _payload(await server.handle_tool_call("skills.list", {}))
        assert [s["id"] for s in data] == ["api-builder", "form-styler"]
        assert "body" not in data[0]

    @pytest.mark.asyncio
    async def test_match(self, server: SkillServer):
        data = _payload(await server.handle_tool_call("skills.match", {"query": "REST routing"}))
        assert data[0]["id"] == "api-builder"
        assert all(m["id"] != "form-styler" for m in data)

    @pytest.mark.asyncio
    async def test_activate_and_session(self, server: SkillServer):
        result = await server.handle_tool_call("skills.activate", {"id": "form-styler"})
        assert result[0].text == "# Forms\n"

        snap = _payload(await server.handle_tool_call("skills.session", {}))
        assert snap["state"] == "active"
        assert [e["id"] for e in snap["loaded"]] == ["form-styler"]

    @pytest.mark.asyncio
    async def test_evict(self, server: SkillServer):
        await server.handle_tool_call("skills.activate", {"id": "form-styler"})
        data = _payload(await server.handle_tool_call("skills.evict", {}))
        assert data["evicted"] == "form-styler"
        assert data["session"]["loaded"] == []

    @pytest.mark.asyncio
    async def test_evict_empty_session_is_error(self, server: SkillServer):
        data = _payload(await server.handle_tool_call("skills.evict", {}))
        assert data["type"] == "NotFound"

    @pytest.mark.asyncio
    async def test_resource(self, server: SkillServer):
        result = await server.handle_tool_call(
            "skills.resource",
            {"id": "api-builder", "category": "references", "path": "routing.md"},
        )
        assert result[0].text == "# Routing\n"

    @pytest.mark.asyncio
    async def test_binary_resource_is_base64_blob(self, server: SkillServer):
        result = await server.handle_tool_call(
            "skills.resource",
            {"id": "form-styler", "category": "assets", "path": "icon.png"},
        )
        assert len(result) == 1
        contents = result[0].resource
        assert contents.mimeType == "image/png"
        assert base64.b64decode(contents.blob) == PNG_BYTES

    @pytest.mark.asyncio
    async def test_resource_escape_is_error(self, server: SkillServer):
        data = _payload(
            await server.handle_tool_call(
                "skills.resource",
                {"id": "api-builder", "category": "references", "path": "../SKILL.md"},
            )
        )
        assert data["type"] == "PathEscape"
        assert data["recoverable"] is True

    @pytest.mark.asyncio
    async def test_unknown_skill_is_error(self, server: SkillServer):
        data = _payload(await server.handle_tool_call("skills.activate", {"id": "nope"}))
        assert data["type"] == "NotFound"
        assert "nope" in data["error"]

    @pytest.mark.asyncio
    async def test_over_budget_is_error(self, make_skill, skills_root: Path):
        make_skill("big", description="large", body="x" * 200)
        server = SkillServer(SkillRegistry.from_roots(skills_root), budget_limit=100)
        data = _payload(await server.handle_tool_call("skills.activate", {"id": "big"}))
        assert data["type"] == "BudgetExceeded"

    @pytest.mark.asyncio
    async def test_closed_session_is_not_recoverable(self, server: SkillServer):
        server.session.close()
        data = _payload(await server.handle_tool_call("skills.activate", {"id": "form-styler"}))
        assert data["type"] == "SessionClosed"
        assert data["recoverable"] is False

    @pytest.mark.asyncio
    async def test_unknown_tool(self, server: SkillServer):
        data = _payload(await server.handle_tool_call("skills.nope", {}))
        assert data["type"] == "KeyError"


class TestReadResource:
    @pytest.mark.asyncio
    async def test_read_body(self, server: SkillServer):
        body = await server.handle_read_resource(f"{URI_SCHEME}api-builder/SKILL.md")
        assert body == "# API Builder\n"
        assert server.session.is_loaded("api-builder")

    @pytest.mark.asyncio
    async def test_read_resource_file(self, server: SkillServer):
        text = await server.handle_read_resource(f"{URI_SCHEME}api-builder/references/routing.md")
        assert text == "# Routing\n"
        assert not server.session.is_loaded("api-builder")

    @pytest.mark.asyncio
    async def test_read_binary_resource_returns_bytes(self, server: SkillServer):
        data = await server.handle_read_resource(f"{URI_SCHEME}form-styler/assets/icon.png")
        assert data == PNG_BYTES

    @pytest.mark.asyncio
    async def test_bad_scheme(self, server: SkillServer):
        with pytest.raises(ValueError, match="Unsupported"):
            await server.handle_read_resource("file:///etc/passwd")

    @pytest.mark.asyncio
    async def test_missing_path(self, server: SkillServer):
        with pytest.raises(ValueError, match="category and a path"):
            await server.handle_read_resource(f"{URI_SCHEME}api-builder/references")
