"""SKLoader MCP server — progressive disclosure over the MCP protocol.

Exposes one registry and one activation session (for the lifetime of the
server process) to an MCP client:

    Agent MCP Client
         |
    SkillServer (this)  --match-->     RelevanceMatcher  (metadata only)
         |              --activate-->  ProgressiveLoader (bodies, budgeted)
         |              --resource-->  ProgressiveLoader (files, streamed)
    SkillRegistry (immutable, scanned once)

Resources are addressed as ``skill://<id>/SKILL.md`` for bodies and
``skill://<id>/<category>/<path>`` for resource files.
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
import mimetypes
from typing import Any, Optional, Union

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import BlobResourceContents, EmbeddedResource, Resource, TextContent, Tool

from .config import LoaderSettings
from .errors import SkillError
from .loader import ProgressiveLoader
from .matcher import RelevanceMatcher
from .models import HEADER_FILE, ResourceCategory
from .registry import SkillRegistry

logger = logging.getLogger("skloader.server")

URI_SCHEME = "skill://"


def _text(data: Any) -> list[TextContent]:
    if isinstance(data, str):
        return [TextContent(type="text", text=data)]
    return [TextContent(type="text", text=json.dumps(data, indent=2, default=str))]


def _error(exc: Exception) -> list[TextContent]:
    recoverable = getattr(exc, "recoverable", True)
    return _text({"error": str(exc), "type": type(exc).__name__, "recoverable": recoverable})


def _mime_type(path: str) -> str:
    return mimetypes.guess_type(path)[0] or "application/octet-stream"


def _resource_content(uri: str, data: bytes) -> list[Union[TextContent, EmbeddedResource]]:
    """UTF-8 files come back as text; anything else as a base64 blob."""
    try:
        return _text(data.decode("utf-8"))
    except UnicodeDecodeError:
        blob = BlobResourceContents(
            uri=uri,
            mimeType=_mime_type(uri),
            blob=base64.b64encode(data).decode("ascii"),
        )
        return [EmbeddedResource(type="resource", resource=blob)]


class SkillServer:
    """Serves a skill registry and one activation session over MCP.

    Args:
        registry: The scanned skill registry.
        settings: Loader settings.
        budget_limit: Session budget override.
    """

    def __init__(
        self,
        registry: SkillRegistry,
        settings: Optional[LoaderSettings] = None,
        budget_limit: Optional[int] = None,
    ) -> None:
        self.registry = registry
        self.settings = settings or LoaderSettings()
        self.loader = ProgressiveLoader(registry, self.settings)
        self.matcher = RelevanceMatcher(
            registry,
            threshold=self.settings.match_threshold,
            name_weight=self.settings.name_weight,
        )
        self.session = self.loader.open_session(budget_limit)
        self._mcp_server = Server("skloader")
        self._setup_handlers()

    def _setup_handlers(self) -> None:
        """Register MCP protocol handlers."""

        @self._mcp_server.list_tools()
        async def list_tools() -> list[Tool]:
            return self.tool_definitions()

        @self._mcp_server.list_resources()
        async def list_resources() -> list[Resource]:
            return [
                Resource(
                    uri=res["uri"],
                    name=res["name"],
                    description=res.get("description", ""),
                    mimeType=res.get("mimeType", "text/plain"),
                )
                for res in self.resource_list()
            ]

        @self._mcp_server.call_tool()
        async def call_tool(name: str, arguments: dict) -> list[Union[TextContent, EmbeddedResource]]:
            return await self.handle_tool_call(name, arguments or {})

        @self._mcp_server.read_resource()
        async def read_resource(uri: Any) -> Union[str, bytes]:
            return await self.handle_read_resource(str(uri))

    @staticmethod
    def tool_definitions() -> list[Tool]:
        """The MCP tools this server offers."""
        id_schema = {"type": "string", "description": "Skill id"}
        return [
            Tool(
                name="skills.list",
                description="List all skills with their name and description (no bodies)",
                inputSchema={"type": "object", "properties": {}, "required": []},
            ),
            Tool(
                name="skills.match",
                description="Rank skills for a task description using metadata only",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "query": {"type": "string", "description": "Task description"},
                        "top_k": {"type": "integer", "description": "Maximum results"},
                    },
                    "required": ["query"],
                },
            ),
            Tool(
                name="skills.activate",
                description="Load a skill's full instructions into the working set",
                inputSchema={"type": "object", "properties": {"id": id_schema}, "required": ["id"]},
            ),
            Tool(
                name="skills.evict",
                description="Drop a skill (or the oldest one) from the working set",
                inputSchema={"type": "object", "properties": {"id": id_schema}, "required": []},
            ),
            Tool(
                name="skills.session",
                description="Show loaded skills and budget usage",
                inputSchema={"type": "object", "properties": {}, "required": []},
            ),
            Tool(
                name="skills.resource",
                description="Read one file from a skill's scripts/, references/ or assets/",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "id": id_schema,
                        "category": {
                            "type": "string",
                            "enum": [c.value for c in ResourceCategory],
                        },
                        "path": {"type": "string", "description": "Path inside the category"},
                    },
                    "required": ["id", "category", "path"],
                },
            ),
        ]

    def resource_list(self) -> list[dict[str, str]]:
        """MCP resource definitions for every body and recorded resource file."""
        resources: list[dict[str, str]] = []
        for d in self.registry.list():
            resources.append({
                "uri": f"{URI_SCHEME}{d.id}/{HEADER_FILE}",
                "name": f"{d.id}/{HEADER_FILE}",
                "description": d.description,
                "mimeType": "text/markdown",
            })
            for category, paths in d.resource_dirs.items():
                for rel in sorted(paths):
                    resources.append({
                        "uri": f"{URI_SCHEME}{d.id}/{category.value}/{rel}",
                        "name": f"{d.id}/{category.value}/{rel}",
                        "description": f"{category.value} file of {d.name}",
                        "mimeType": _mime_type(rel),
                    })
        return resources

    async def handle_tool_call(
        self, name: str, arguments: dict
    ) -> list[Union[TextContent, EmbeddedResource]]:
        """Route a tool call to the appropriate handler.

        Args:
            name: Tool name.
            arguments: Tool arguments.

        Returns:
            list: MCP content. Errors are returned as JSON text, binary
                resource files as a base64 blob.
        """
        try:
            if name == "skills.list":
                return _text([
                    {"id": d.id, "name": d.name, "description": d.description}
                    for d in self.registry.list()
                ])

            if name == "skills.match":
                matches = self.matcher.match(
                    arguments.get("query", ""),
                    top_k=arguments.get("top_k") or self.settings.top_k,
                )
                return _text([
                    {"id": m.skill_id, "name": m.descriptor.name, "score": m.score}
                    for m in matches
                ])

            if name == "skills.activate":
                return _text(await self.loader.aactivate(self.session, arguments.get("id", "")))

            if name == "skills.evict":
                evicted = self.session.evict(arguments.get("id") or None)
                return _text({"evicted": evicted, "session": self.session.snapshot()})

            if name == "skills.session":
                return _text(self.session.snapshot())

            if name == "skills.resource":
                skill_id = arguments.get("id", "")
                category = arguments.get("category", "")
                path = arguments.get("path", "")
                data = await asyncio.to_thread(
                    self.loader.resolve_resource, self.session, skill_id, category, path
                )
                return _resource_content(f"{URI_SCHEME}{skill_id}/{category}/{path}", data)

        except (SkillError, ValueError) as exc:
            logger.warning("Tool '%s' failed: %s", name, exc)
            return _error(exc)

        return _error(KeyError(f"Unknown tool: {name}"))

    async def handle_read_resource(self, uri: str) -> Union[str, bytes]:
        """Read a body or resource file by ``skill://`` URI.

        Bodies and UTF-8 resource files are returned as text; other files as
        raw bytes, which the MCP server sends as a base64 blob.

        Raises:
            ValueError: If the URI is malformed.
            SkillError: If the skill or resource cannot be loaded.
        """
        if not uri.startswith(URI_SCHEME):
            raise ValueError(f"Unsupported resource URI: {uri}")

        skill_id, _, rest = uri[len(URI_SCHEME):].partition("/")
        if rest == HEADER_FILE:
            return await self.loader.aactivate(self.session, skill_id)

        category, _, rel = rest.partition("/")
        if not rel:
            raise ValueError(f"Resource URI needs a category and a path: {uri}")
        data = await asyncio.to_thread(self.loader.resolve_resource, self.session, skill_id, category, rel)
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError:
            return data

    async def run_stdio(self) -> None:
        """Run the server on stdio until the client disconnects."""
        try:
            async with stdio_server() as (read_stream, write_stream):
                await self._mcp_server.run(
                    read_stream,
                    write_stream,
                    self._mcp_server.create_initialization_options(),
                )
        finally:
            self.session.close()


def main() -> None:
    """Entry point for the SKLoader MCP server."""
    logging.basicConfig(level=logging.WARNING, format="%(name)s: %(message)s")
    settings = LoaderSettings.load()
    server = SkillServer(SkillRegistry.from_roots(settings.skills_root, settings=settings), settings)
    logger.warning("SKLoader MCP server started: %d skills", len(server.registry))
    asyncio.run(server.run_stdio())
