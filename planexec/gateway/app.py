"""
FastAPI application for planexec
"""

from contextlib import asynccontextmanager
from typing import Any, Dict, Optional, Union

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from .. import __version__
from ..config import get_database_path, get_execution_defaults, get_tools_settings, load_config
from ..core.agent import ExecutionAgent
from ..core.errors import StorageError
from ..logging.config import configure_logging, log_system
from ..logging.middleware import ErrorLoggingMiddleware, RequestLoggingMiddleware
from ..observability.metrics import metrics
from ..storage.database import ExecutionStorage, PlanStorage
from ..tools.client import HttpToolClient, ToolCallable, ToolClient
from .routes import router


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle management"""
    config = app.state.config
    db_path = get_database_path(config)

    plan_storage = PlanStorage(db_path)
    execution_storage = ExecutionStorage(db_path)
    log_system("app", "storage_initialized", db_path=db_path)

    tools = app.state.tools
    http_client = None
    if tools is None:
        settings = get_tools_settings(config)
        http_client = HttpToolClient(settings["base_url"], timeout_seconds=settings["timeout_seconds"])
        tools = http_client
        log_system("app", "http_tool_client_initialized", base_url=settings["base_url"])

    app.state.plan_storage = plan_storage
    app.state.execution_storage = execution_storage
    app.state.metrics = metrics
    app.state.agent = ExecutionAgent(
        tools,
        execution_storage,
        plan_storage,
        default_config=get_execution_defaults(config)
    )
    log_system("app", "execution_agent_initialized")

    yield

    if http_client is not None:
        await http_client.close()
    log_system("app", "shutdown_complete")


async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
    return JSONResponse(status_code=503, content={"detail": str(exc)})


def create_app(
    config: Optional[Dict[str, Any]] = None,
    tools: Optional[Union[ToolClient, ToolCallable]] = None
) -> FastAPI:
    """
    Create FastAPI application

    Args:
        config: Service configuration, loaded from config.yaml when omitted
        tools: Tool client or callable; an HTTP client for ``tools.base_url``
            is created when omitted
    """
    config = load_config() if config is None else config
    logging_config = config.get("logging") or {}
    configure_logging(
        log_level=logging_config.get("level", "INFO"),
        json_format=logging_config.get("json", True)
    )

    app = FastAPI(
        title="planexec - Plan Execution Control Plane",
        description="Dependency-aware execution of multi-step tool plans",
        version=__version__,
        lifespan=lifespan
    )
    app.state.config = config
    app.state.tools = tools

    app.add_middleware(ErrorLoggingMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_exception_handler(StorageError, storage_error_handler)

    # Prometheus instrumentation
    Instrumentator().instrument(app).expose(app)
    log_system("app", "prometheus_instrumentation_enabled")

    app.include_router(router, prefix="/api/v1")

    @app.get("/")
    async def root():
        return {
            "message": "planexec - Plan Execution Control Plane",
            "version": __version__,
            "status": "running",
            "metrics": "/metrics"
        }

    @app.get("/health")
    async def health_check():
        return {"status": "healthy", "service": "planexec"}

    return app
