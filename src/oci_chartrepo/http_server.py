"""HTTP server exposing the chart repository to Helm clients."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import AsyncIterator, Optional

from aiohttp import web

from .chart_tools.config import settings
from .chart_tools.exceptions import (
    ChartNotFoundError,
    ChartRepoError,
    InvalidArtifactError,
    TransportError,
)
from .chart_tools.repository import ChartRepository

logger = logging.getLogger(__name__)

REPOSITORY_KEY = web.AppKey("repository", ChartRepository)


async def hello(request: web.Request) -> web.Response:
    return web.Response(text="Hello, OCI chart repository!")


async def get_index(request: web.Request) -> web.Response:
    repository = request.app[REPOSITORY_KEY]
    try:
        body = await repository.get_index_yaml()
    except ChartRepoError as e:
        logger.error(f"Cannot build index: {e}")
        raise web.HTTPBadGateway(text=str(e))
    return web.Response(text=body, content_type="application/x-yaml")


async def get_chart(request: web.Request) -> web.Response:
    """Serve one chart archive, mapping download failures to distinct statuses."""
    path = request.match_info["name"]
    repository = request.app[REPOSITORY_KEY]
    try:
        data = await repository.get_chart(path)
    except ChartNotFoundError as e:
        raise web.HTTPNotFound(text=str(e))
    except InvalidArtifactError as e:
        raise web.HTTPUnprocessableEntity(text=str(e))
    except TransportError as e:
        raise web.HTTPBadGateway(text=str(e))
    return web.Response(body=data, content_type="application/x-tar")


async def refresh(request: web.Request) -> web.Response:
    repository = request.app[REPOSITORY_KEY]
    try:
        records = await repository.refresh()
    except ChartRepoError as e:
        logger.error(f"Manual catalog pass failed: {e}")
        raise web.HTTPBadGateway(text=str(e))
    return web.json_response(
        {"charts_accepted": len(records), "charts_cached": len(repository.cache)}
    )


def _repository_ctx(repository: ChartRepository, refresh_interval: int):
    async def ctx(app: web.Application) -> AsyncIterator[None]:
        await repository.start()
        # warm up the cache before accepting traffic
        try:
            await repository.refresh()
        except ChartRepoError as e:
            logger.error(f"Initial catalog pass failed: {e}")

        task: Optional[asyncio.Task] = None
        if refresh_interval > 0:
            task = asyncio.create_task(repository.run_periodic_refresh(refresh_interval))
        yield
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        await repository.close()

    return ctx


def create_app(repository: ChartRepository, refresh_interval: int = 0) -> web.Application:
    """Build the web application around a (not yet started) repository."""
    app = web.Application()
    app[REPOSITORY_KEY] = repository
    app.cleanup_ctx.append(_repository_ctx(repository, refresh_interval))
    app.router.add_get("/", hello)
    app.router.add_get("/index.yaml", get_index)
    app.router.add_get("/charts/{name}", get_chart)
    app.router.add_post("/refresh", refresh)
    return app


async def make_app() -> web.Application:
    repository = await ChartRepository.from_settings()
    return create_app(repository, settings.refresh_interval)


def cli_main():
    """Synchronous entry point for the CLI."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    web.run_app(make_app(), host=settings.host, port=settings.port)


if __name__ == "__main__":
    cli_main()
