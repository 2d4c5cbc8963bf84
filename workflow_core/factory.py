"""Application factory for creating FastAPI instances."""

from typing import Optional
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from .config import AppConfig, get_config, validate_config
from .core.logging import setup_logging, get_logger
from .core.execution_engine import ExecutionEngine
from .core.node_registry import NodeExecutorRegistry, create_default_registry
from .core.validator import GraphValidator
from .core.middleware import ErrorHandlingMiddleware, PerformanceMonitoringMiddleware
from .api.endpoints import router, init_dependencies


class ApplicationState:
    """Container for application state and components."""

    def __init__(self):
        self.config: Optional[AppConfig] = None
        self.node_registry: Optional[NodeExecutorRegistry] = None
        self.execution_engine: Optional[ExecutionEngine] = None
        self.validator: Optional[GraphValidator] = None


# Global application state
app_state = ApplicationState()


def initialize_core_components(config: AppConfig, logger, node_registry: Optional[NodeExecutorRegistry] = None) -> tuple:
    """Initialize core application components."""
    try:
        node_registry = node_registry or create_default_registry()
        execution_engine = ExecutionEngine(
            registry=node_registry,
            config=config.get_execution_config()
        )
        validator = GraphValidator(config.get_validation_config())

        logger.info(f"Core components initialized with node types: {', '.join(node_registry.list_types())}")

        return node_registry, execution_engine, validator

    except Exception as e:
        logger.error(f"Core components initialization failed: {e}")
        raise


def create_lifespan_handler(config: AppConfig, node_registry: Optional[NodeExecutorRegistry] = None):
    """Create application lifespan handler."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        setup_logging(
            level=config.log_level.value,
            log_file=config.log_file,
            log_format=config.log_format,
            structured=config.log_structured,
            max_size=config.log_max_size,
            backup_count=config.log_backup_count
        )
        logger = get_logger(__name__)
        logger.info(f"Starting {config.app_name} v{config.app_version}")

        registry, execution_engine, validator = initialize_core_components(config, logger, node_registry)

        app_state.config = config
        app_state.node_registry = registry
        app_state.execution_engine = execution_engine
        app_state.validator = validator

        init_dependencies(
            execution_engine=execution_engine,
            validator=validator,
            node_registry=registry
        )

        logger.info("Application startup completed successfully")

        yield

        # Shutdown
        logger.info(f"Shutting down {config.app_name}")

    return lifespan


def create_app(config: Optional[AppConfig] = None, node_registry: Optional[NodeExecutorRegistry] = None) -> FastAPI:
    """
    Create and configure FastAPI application instance.

    Args:
        config: Application settings; loaded from the environment when omitted
        node_registry: Registry with custom node executors; defaults to the built-ins

    Returns:
        Configured FastAPI application
    """
    if config is None:
        config = get_config()

    validate_config(config)

    app = FastAPI(
        title=config.app_name,
        description="Validate, score and execute node-based workflow graphs",
        version=config.app_version,
        debug=config.debug,
        lifespan=create_lifespan_handler(config, node_registry)
    )

    if config.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.cors_origins,
            allow_credentials=True,
            allow_methods=config.cors_methods,
            allow_headers=["*"],
        )

    if config.enable_performance_monitoring:
        app.add_middleware(PerformanceMonitoringMiddleware, slow_request_threshold=config.slow_request_threshold)
    app.add_middleware(ErrorHandlingMiddleware)

    app.include_router(router)

    add_health_endpoints(app, config)

    return app


def add_health_endpoints(app: FastAPI, config: AppConfig) -> None:
    """Add health check endpoints to the application."""

    @app.get("/")
    async def root():
        """Root endpoint for basic health check."""
        return {"message": f"{config.app_name} is running", "version": config.app_version}

    @app.get("/health")
    async def health_check():
        """Basic health check endpoint."""
        registry = app_state.node_registry
        return {
            "status": "healthy",
            "service": config.app_name.lower().replace(" ", "-"),
            "version": config.app_version,
            "node_types": registry.list_types() if registry else []
        }
