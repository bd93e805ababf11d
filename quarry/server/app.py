# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""FastAPI application factory for the Quarry API server."""

import logging
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager

# Configure logging for server module
# Only add handler if not already configured, and prevent duplicate logs
_quarry_logger = logging.getLogger('quarry')
if not any(isinstance(h, logging.StreamHandler) for h in _quarry_logger.handlers):
    _console_handler = logging.StreamHandler()
    _console_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    ))
    _quarry_logger.addHandler(_console_handler)
    _quarry_logger.setLevel(logging.INFO)
# Always prevent propagation to root logger to avoid duplicate messages
_quarry_logger.propagate = False

from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from quarry.catalog.introspector import SchemaIntrospector
from quarry.catalog.router import DataSourceRouter
from quarry.core.config import Config
from quarry.core.errors import QuarryError
from quarry.ddl.generator import DdlGenerator
from quarry.loader.autocreate import AutoTableImporter
from quarry.loader.bulk import BulkLoader
from quarry.loader.rows import RowEditor
from quarry.loader.validation import ImportValidator
from quarry.search.cache import SearchCache
from quarry.search.engine import SearchEngine
from quarry.search.export import TableExporter
from quarry.search.orchestrator import SearchOrchestrator
from quarry.server.config import ServerConfig

logger = logging.getLogger(__name__)


def create_app(config: Config, server_config: ServerConfig) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Main Quarry configuration
        server_config: Server-specific configuration

    Returns:
        Configured FastAPI application
    """
    router = DataSourceRouter(config)
    introspector = SchemaIntrospector()
    cache = SearchCache.from_config(config.cache)
    engine = SearchEngine(router, introspector, cache, config.search)
    loader = BulkLoader(router, introspector, cache, batch_size=config.loader.batch_size)
    ddl = DdlGenerator(router, introspector, cache)
    scan_executor = ThreadPoolExecutor(
        max_workers=server_config.scan_workers,
        thread_name_prefix="scan-worker",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage application lifecycle."""
        try:
            await cache.start_sweep_task(config.cache.sweep_interval_seconds)
            logger.info("Quarry API server started")
        except Exception as e:
            logger.error(f"FATAL: Server startup failed: {e}")
            logger.exception("Full traceback:")
            raise

        yield

        try:
            logger.info("Shutting down Quarry API server...")
            scan_executor.shutdown(wait=False, cancel_futures=True)
            await cache.stop_sweep_task()
            router.close()
            logger.info("Quarry API server stopped cleanly")
        except Exception as e:
            logger.error(f"Error during shutdown: {e}")
            logger.exception("Shutdown error traceback:")

    app = FastAPI(
        title="Quarry API",
        description="Schema-driven search, DDL and bulk loading over relational datasources",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Store config and services on app state
    app.state.config = config
    app.state.server_config = server_config
    app.state.router = router
    app.state.introspector = introspector
    app.state.cache = cache
    app.state.search_engine = engine
    app.state.exporter = TableExporter(engine)
    app.state.orchestrator = SearchOrchestrator(
        router, introspector, engine, deadline_seconds=config.search.deadline_seconds
    )
    app.state.ddl = ddl
    app.state.loader = loader
    app.state.row_editor = RowEditor(router, introspector, cache)
    app.state.validator = ImportValidator(
        router, introspector, sample_rows=config.loader.validation_sample_rows
    )
    app.state.auto_importer = AutoTableImporter(ddl, loader)
    app.state.scan_executor = scan_executor

    app.add_middleware(
        CORSMiddleware,
        allow_origins=server_config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """Handle request validation errors with detailed logging."""
        logger.error(f"[VALIDATION ERROR] Path: {request.url.path}, Method: {request.method}")
        logger.error(f"[VALIDATION ERROR] Details: {exc.errors()}")
        return JSONResponse(
            status_code=422,
            content={"detail": exc.errors()},
        )

    @app.exception_handler(QuarryError)
    async def quarry_error_handler(request, exc: QuarryError) -> JSONResponse:
        """Map engine errors to their kind and HTTP status."""
        if exc.status_code >= 500:
            logger.error(f"{request.url.path}: {exc.kind}: {exc}")
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.kind, "message": str(exc)},
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request, exc: ValueError) -> JSONResponse:
        """Handle ValueError (invalid input, etc.)."""
        return JSONResponse(
            status_code=400,
            content={"error": "validation_error", "message": str(exc)},
        )

    @app.get("/health")
    async def health() -> dict[str, Any]:
        """Health check endpoint.

        Returns:
            Health status, pool stats and cache stats
        """
        return {
            "status": "ok",
            "datasources": router.get_stats(),
            "cache": cache.stats(),
        }

    from quarry.server.routes.cache import router as cache_router
    from quarry.server.routes.catalog import router as catalog_router
    from quarry.server.routes.data import router as data_router
    from quarry.server.routes.ddl import router as ddl_router
    from quarry.server.routes.export import router as export_router
    from quarry.server.routes.search import router as search_router

    app.include_router(
        catalog_router,
        prefix="/api/datasources",
        tags=["datasources"],
    )
    app.include_router(
        search_router,
        prefix="/api",
        tags=["search"],
    )
    app.include_router(
        ddl_router,
        prefix="/api/ddl",
        tags=["ddl"],
    )
    app.include_router(
        data_router,
        prefix="/api/data",
        tags=["data"],
    )
    app.include_router(
        export_router,
        prefix="/api/export",
        tags=["export"],
    )
    app.include_router(
        cache_router,
        prefix="/api/cache",
        tags=["cache"],
    )

    return app


def get_app() -> FastAPI:
    """Build the application from ``QUARRY_CONFIG`` (default ``config.yaml``).

    Used as a uvicorn factory in reload mode.
    """
    import os

    config_path = os.environ.get("QUARRY_CONFIG", "config.yaml")
    try:
        config = Config.from_yaml(config_path)
    except FileNotFoundError:
        logger.warning(f"Config file {config_path} not found, using defaults")
        config = Config()
    server_config = ServerConfig.from_yaml_data(config.server)
    return create_app(config, server_config)
