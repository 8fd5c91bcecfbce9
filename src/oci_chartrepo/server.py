"""MCP server exposing an OCI-backed Helm chart repository."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

from mcp.server import Server, NotificationOptions
from mcp.server.models import InitializationOptions
from mcp.server.stdio import stdio_server
from mcp.types import Resource, Tool, TextContent

from .chart_tools.config import settings, McpResourceUris, McpToolNames
from .chart_tools.exceptions import (
    CatalogUnavailableError,
    ChartNotFoundError,
    ChartRepoError,
    InvalidArtifactError,
)
from .chart_tools.index_builder import bare_digest
from .chart_tools.models import (
    ChartInfoResponse,
    ChartSummary,
    ChartVersionEntry,
    ErrorType,
    ListChartsResponse,
    RefreshResponse,
    VerifyResponse,
    chart_path,
)
from .chart_tools.repository import ChartRepository


logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("oci-chartrepo-mcp")

_CHART_ARGUMENTS = {
    "type": "object",
    "properties": {
        "name": {"type": "string", "description": "Chart name"},
        "version": {"type": "string", "description": "Chart version"},
    },
    "required": ["name", "version"],
}


def _summary(entry: ChartVersionEntry) -> ChartSummary:
    return ChartSummary(
        name=entry.name,
        version=entry.version,
        path=chart_path(entry.name, entry.version),
        description=entry.description,
        app_version=entry.app_version,
        digest=entry.digest,
    )


def _error_type(error: ChartRepoError) -> ErrorType:
    if isinstance(error, ChartNotFoundError):
        return ErrorType.CHART_NOT_FOUND
    if isinstance(error, InvalidArtifactError):
        return ErrorType.INVALID_ARTIFACT
    if isinstance(error, CatalogUnavailableError):
        return ErrorType.CATALOG_UNAVAILABLE
    return ErrorType.TRANSPORT_FAILED


class ChartRepoMCPServer:
    """MCP server for browsing and verifying charts stored in an OCI registry."""

    def __init__(self, repository: Optional[ChartRepository] = None) -> None:
        self.server = Server("oci-chartrepo-mcp")
        self.repository = repository

        # Register handlers
        self._register_handlers()

    async def _get_repository(self) -> ChartRepository:
        """Create and start the repository on first use."""
        if self.repository is None:
            self.repository = await ChartRepository.from_settings()
        await self.repository.start()
        return self.repository

    async def close(self) -> None:
        if self.repository is not None:
            await self.repository.close()

    def _register_handlers(self) -> None:
        """Register MCP server handlers."""

        @self.server.list_resources()
        async def handle_list_resources() -> List[Resource]:
            """List available resources."""
            return [
                Resource(
                    uri=McpResourceUris.INDEX,
                    name="Chart Repository Index",
                    description="Helm repository index of every chart version in the registry",
                    mimeType="application/yaml",
                ),
                Resource(
                    uri=McpResourceUris.SUMMARY,
                    name="Chart Repository Summary",
                    description="Backend, inclusion policy and catalog statistics",
                    mimeType="application/json",
                ),
            ]

        @self.server.read_resource()
        async def handle_read_resource(uri: Any) -> str:
            """Read a specific resource."""
            uri = str(uri)
            try:
                repository = await self._get_repository()
                if uri == McpResourceUris.INDEX.value:
                    return await repository.get_index_yaml()

                elif uri == McpResourceUris.SUMMARY.value:
                    index = await repository.get_index()
                    summary = {
                        "backend": repository.backend.kind.value,
                        "host": repository.backend.host,
                        "policy_mode": repository.builder.policy.mode.value,
                        "passes_completed": repository.builder.passes_completed,
                        "charts": {
                            name: [e.version for e in versions]
                            for name, versions in index.entries.items()
                        },
                        "chart_versions_cached": len(repository.cache),
                    }
                    return json.dumps(summary, indent=2)

            except ChartRepoError as e:
                logger.error(f"Error reading resource {uri}: {e}")
                return json.dumps({"error": str(e)})

            return json.dumps({"error": f"Unknown resource URI: {uri}"})

        @self.server.list_tools()
        async def handle_list_tools() -> List[Tool]:
            """List available tools."""
            return [
                Tool(
                    name=McpToolNames.REFRESH_CATALOG,
                    description="Run a catalog pass against the registry and update the chart cache. Returns structured JSON with the number of charts accepted by the pass and cached overall.",
                    inputSchema={
                        "type": "object",
                        "properties": {},
                        "required": [],
                    },
                ),
                Tool(
                    name=McpToolNames.LIST_CHARTS,
                    description="List every cached chart version. Returns structured JSON with name, version, download path, app version and digest of each chart. Runs a catalog pass first if none has completed yet.",
                    inputSchema={
                        "type": "object",
                        "properties": {
                            "name": {
                                "type": "string",
                                "description": "Only list versions of this chart",
                            },
                        },
                        "required": [],
                    },
                ),
                Tool(
                    name=McpToolNames.GET_CHART_INFO,
                    description="Get the metadata of one chart version and the registry coordinates it is pulled from.",
                    inputSchema=_CHART_ARGUMENTS,
                ),
                Tool(
                    name=McpToolNames.VERIFY_CHART,
                    description="Pull one chart version from the registry and validate it as a download would. Returns structured JSON with the archive size and digest, without the archive itself.",
                    inputSchema=_CHART_ARGUMENTS,
                ),
            ]

        @self.server.call_tool()
        async def handle_call_tool(
            name: str, arguments: Dict[str, Any]
        ) -> List[TextContent]:
            """Handle tool calls."""
            arguments = arguments or {}
            try:
                if name == McpToolNames.REFRESH_CATALOG:
                    return await self._refresh_catalog(arguments)
                elif name == McpToolNames.LIST_CHARTS:
                    return await self._list_charts(arguments)
                elif name == McpToolNames.GET_CHART_INFO:
                    return await self._get_chart_info(arguments)
                elif name == McpToolNames.VERIFY_CHART:
                    return await self._verify_chart(arguments)
                else:
                    return [TextContent(type="text", text=f"Unknown tool: {name}")]

            except Exception as e:
                logger.error(f"Error in tool {name}: {e}")
                return [TextContent(type="text", text=f"Error: {str(e)}")]

    async def _refresh_catalog(self, arguments: Dict[str, Any]) -> List[TextContent]:
        """Run a catalog pass."""
        try:
            repository = await self._get_repository()
            records = await repository.refresh()
        except ChartRepoError as e:
            logger.error(f"Catalog pass failed: {e}")
            response = RefreshResponse(
                success=False,
                error=_error_type(e),
                message="Catalog pass failed",
                details=str(e),
            )
            return [TextContent(type="text", text=response.model_dump_json(indent=2))]

        response = RefreshResponse(
            success=True,
            message="Catalog pass completed",
            charts_accepted=len(records),
            charts_cached=len(repository.cache),
        )
        return [TextContent(type="text", text=response.model_dump_json(indent=2))]

    async def _list_charts(self, arguments: Dict[str, Any]) -> List[TextContent]:
        """List cached chart versions, optionally for one chart name."""
        wanted = arguments.get("name")
        try:
            repository = await self._get_repository()
            index = await repository.get_index()
        except ChartRepoError as e:
            response = ListChartsResponse(
                success=False,
                error=_error_type(e),
                message="Could not build the chart index",
                details=str(e),
            )
            return [TextContent(type="text", text=response.model_dump_json(indent=2))]

        charts = [
            _summary(entry)
            for name, versions in index.entries.items()
            if not wanted or name == wanted
            for entry in versions
        ]
        if wanted and not charts:
            response = ListChartsResponse(
                success=False,
                error=ErrorType.CHART_NOT_FOUND,
                message=f"Chart '{wanted}' not found in catalog",
                action_required="run refresh_catalog if the chart was pushed recently",
            )
        else:
            response = ListChartsResponse(
                success=True,
                message=f"Found {len(charts)} chart versions",
                charts=charts,
            )
        return [TextContent(type="text", text=response.model_dump_json(indent=2))]

    async def _get_chart_info(self, arguments: Dict[str, Any]) -> List[TextContent]:
        """Describe one cached chart version."""
        path = chart_path(arguments["name"], arguments["version"])
        try:
            repository = await self._get_repository()
            if repository.builder.passes_completed == 0:
                await repository.refresh()
        except ChartRepoError as e:
            logger.error(f"Cannot look up {path}: {e}")
            response = ChartInfoResponse(
                success=False,
                error=_error_type(e),
                message="Could not build the chart catalog",
                details=str(e),
            )
            return [TextContent(type="text", text=response.model_dump_json(indent=2))]

        reference = repository.cache.get_by_path(path)
        record = (
            repository.cache.get_by_digest(reference.content_digest) if reference else None
        )
        if reference is None or record is None:
            response = ChartInfoResponse(
                success=False,
                error=ErrorType.CHART_NOT_FOUND,
                message=f"Chart '{path}' not found in catalog",
                action_required="run refresh_catalog if the chart was pushed recently",
            )
            return [TextContent(type="text", text=response.model_dump_json(indent=2))]

        response = ChartInfoResponse(
            success=True,
            message="Chart information retrieved successfully",
            chart=ChartSummary(
                name=record.name,
                version=record.version,
                path=path,
                description=record.description,
                app_version=record.app_version,
                digest=bare_digest(record.content_digest),
            ),
            api_version=record.api_version,
            type=record.type,
            coordinates=reference.coordinates,
        )
        return [TextContent(type="text", text=response.model_dump_json(indent=2))]

    async def _verify_chart(self, arguments: Dict[str, Any]) -> List[TextContent]:
        """Pull and validate one chart version without returning its bytes."""
        path = chart_path(arguments["name"], arguments["version"])
        try:
            repository = await self._get_repository()
            if repository.builder.passes_completed == 0:
                await repository.refresh()
            layer, data = await repository.pull_chart(path)
        except ChartRepoError as e:
            logger.error(f"Verification of {path} failed: {e}")
            response = VerifyResponse(
                success=False,
                error=_error_type(e),
                message=f"Chart '{path}' failed verification",
                details=str(e),
                path=path,
            )
            return [TextContent(type="text", text=response.model_dump_json(indent=2))]

        response = VerifyResponse(
            success=True,
            message="Chart pulled and validated successfully",
            path=path,
            size=len(data),
            digest=layer.digest,
        )
        return [TextContent(type="text", text=response.model_dump_json(indent=2))]


async def main():
    """Main entry point for the MCP server."""
    server_instance = ChartRepoMCPServer()

    try:
        async with stdio_server() as (read_stream, write_stream):
            await server_instance.server.run(
                read_stream,
                write_stream,
                InitializationOptions(
                    server_name="oci-chartrepo-mcp",
                    server_version="0.1.0",
                    capabilities=server_instance.server.get_capabilities(
                        notification_options=NotificationOptions(),
                        experimental_capabilities={},
                    ),
                ),
            )
    finally:
        await server_instance.close()


def cli_main():
    """Synchronous entry point for the CLI."""
    asyncio.run(main())


if __name__ == "__main__":
    cli_main()
