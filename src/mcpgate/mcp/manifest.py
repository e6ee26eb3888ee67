"""Tool manifest: the set of tools offered to the model and who serves each one."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable, Iterator

from mcpgate.exceptions import ToolInvocationError
from mcpgate.mcp.pool import ConnectionPool
from mcpgate.schemas import ManifestTool

logger = logging.getLogger(__name__)

EMPTY_PARAMETERS: dict[str, Any] = {"type": "object", "properties": {}}


class ToolManifest:
    """
    Tool-name routing table built from the live connections of a pool.

    When two servers expose the same tool name, the connection registered
    first keeps it and the later one is logged as shadowed.
    """

    def __init__(self, tools: Iterable[ManifestTool] = ()):
        self._tools: dict[str, ManifestTool] = {}
        for tool in tools:
            self.add(tool)

    @classmethod
    async def build(cls, pool: ConnectionPool) -> "ToolManifest":
        """List tools from every active connection concurrently."""
        entries = pool.active_entries()
        results = await asyncio.gather(
            *(entry.client.list_tools() for entry in entries), return_exceptions=True
        )

        manifest = cls()
        for entry, result in zip(entries, results):
            if isinstance(result, BaseException):
                logger.warning("Skipping tools from %s: %s", entry.server_id, result)
                continue
            for tool in result:
                manifest.add(
                    ManifestTool(
                        server_id=entry.server_id,
                        name=tool.name,
                        description=tool.description or "",
                        input_schema=tool.input_schema or dict(EMPTY_PARAMETERS),
                    )
                )
        logger.debug("Built manifest with %d tool(s) from %d server(s)", len(manifest), len(entries))
        return manifest

    def add(self, tool: ManifestTool) -> bool:
        """Register a tool; returns False when the name is already taken."""
        existing = self._tools.get(tool.name)
        if existing is not None:
            logger.warning(
                "Tool name collision: '%s' from '%s' shadowed by '%s'",
                tool.name,
                tool.server_id,
                existing.server_id,
            )
            return False
        self._tools[tool.name] = tool
        return True

    def get(self, name: str) -> ManifestTool | None:
        return self._tools.get(name)

    def resolve(self, name: str) -> str:
        """
        Return the id of the server that serves ``name``.

        Raises:
            ToolInvocationError: If no connection advertises the tool
        """
        tool = self._tools.get(name)
        if tool is None:
            raise ToolInvocationError(f"Unknown tool: {name}", tool_name=name)
        return tool.server_id

    @property
    def tools(self) -> list[ManifestTool]:
        return list(self._tools.values())

    def to_function_declarations(self) -> list[dict[str, Any]]:
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.input_schema or dict(EMPTY_PARAMETERS),
                },
            }
            for tool in self._tools.values()
        ]

    def __len__(self) -> int:
        return len(self._tools)

    def __bool__(self) -> bool:
        return bool(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[ManifestTool]:
        return iter(list(self._tools.values()))
