"""
FastAPI apps and process entry point for ShareGate.

Two apps share one ``ResourceStore``: the admin app (operator, loopback by
default) and the user app (public). ``serve`` runs both in one event loop and
stops both when either one exits.
"""

import asyncio
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from starlette.concurrency import run_in_threadpool

from sharegate.config import Config
from sharegate.core.errors import PUBLIC_DETAIL, ShareGateError
from sharegate.core.rate_limit import configure_limiter
from sharegate.routes.admin import router as admin_router
from sharegate.routes.user import router as user_router
from sharegate.services.admin_service import AdminService
from sharegate.services.authorizers import ShareAuthorizer, UploadAuthorizer
from sharegate.services.resource_store import ResourceStore

logger = logging.getLogger(__name__)

__version__ = "0.3.0"

EXPIRY_SWEEP_SECONDS = 3600


def configure_logging(config: Config) -> None:
    logging.basicConfig(level=config.logging.level.upper(), format=config.logging.format)


def _error_handler(hide_details: bool):
    """Map core errors to responses; hidden denials all read "No such file"."""

    async def handle(request: Request, exc: ShareGateError):
        kind = type(exc).__name__
        logger.warning(f"{request.method} rejected with {kind}: {exc.message}")
        if hide_details and exc.public:
            return JSONResponse(status_code=404, content={"detail": PUBLIC_DETAIL})
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "error": kind})

    return handle


@asynccontextmanager
async def lifespan(app: FastAPI):
    store: ResourceStore = app.state.store

    # Startup: no upload can be running yet, so every partial file is stale
    logger.info("Startup: Removing stale partial uploads...")
    await run_in_threadpool(store.cleanup_partials)
    await run_in_threadpool(store.purge_expired)

    async def periodic_sweep():
        while True:
            await asyncio.sleep(EXPIRY_SWEEP_SECONDS)
            try:
                await run_in_threadpool(store.purge_expired)
            except asyncio.CancelledError:
                break
            except OSError as e:
                logger.error(f"Periodic expiry sweep failed: {e}")

    sweep_task = asyncio.create_task(periodic_sweep())

    yield

    sweep_task.cancel()
    try:
        await sweep_task
    except asyncio.CancelledError:
        pass


def _base_app(title: str, store: ResourceStore, config: Config, **kwargs) -> FastAPI:
    app = FastAPI(title=title, version=__version__, **kwargs)
    app.state.store = store
    app.state.config = config

    # Set up Rate Limiter (limits live on the route decorators)
    app.state.limiter = configure_limiter(config.rate_limit)
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    return app


def create_user_app(store: ResourceStore, config: Config) -> FastAPI:
    """Public app: share downloads and uploads by token."""
    app = _base_app(
        "ShareGate",
        store,
        config,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.share_authorizer = ShareAuthorizer(store.files_root)
    app.state.upload_authorizer = UploadAuthorizer(store, max_file_size=config.logic.max_file_size)
    app.add_exception_handler(ShareGateError, _error_handler(hide_details=True))
    app.include_router(user_router)
    return app


def create_admin_app(store: ResourceStore, config: Config) -> FastAPI:
    """Operator app: mint, inspect and revoke tokens."""
    app = _base_app("ShareGate Admin", store, config)
    app.state.admin_service = AdminService(config.security.master_key)
    app.add_exception_handler(ShareGateError, _error_handler(hide_details=False))
    app.include_router(admin_router)
    return app


async def serve(config: Config) -> None:
    """Run the user app (and the admin app, if enabled) until one stops."""
    store = ResourceStore.from_config(config)

    servers = [
        uvicorn.Server(uvicorn.Config(
            create_user_app(store, config),
            host=config.server.bound_user_host,
            port=config.server.user_port,
            log_config=None,
        ))
    ]
    logger.info(f"User app listening on {config.server.bound_user_host}:{config.server.user_port}")

    if config.server.admin_enabled:
        servers.append(uvicorn.Server(uvicorn.Config(
            create_admin_app(store, config),
            host=config.server.admin_host,
            port=config.server.admin_port,
            log_config=None,
        )))
        logger.info(f"Admin app listening on {config.server.admin_host}:{config.server.admin_port}")

    tasks = [asyncio.create_task(server.serve()) for server in servers]
    _, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)

    logger.info("Shutting down")
    for server in servers:
        server.should_exit = True
    await asyncio.gather(*pending)


def main(config_path=None) -> None:
    config = Config.load(config_path)
    configure_logging(config)
    asyncio.run(serve(config))


if __name__ == "__main__":
    main()
