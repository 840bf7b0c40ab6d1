"""Application factory for creating FastAPI instances."""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from .api.endpoints import init_dependencies, router
from .config import AppConfig, get_config, validate_config
from .core.cache import TTLCache
from .core.drivers import InboundMessageDriver, StepAdvanceDriver, TestRunDriver
from .core.error_recovery import HealthChecker
from .core.execution_engine import ExecutionEngine
from .core.graph_manager import GraphManager
from .core.logging import get_logger, setup_logging
from .core.middleware import ErrorHandlingMiddleware, PerformanceMonitoringMiddleware, RequestLoggingMiddleware
from .core.node_executor import NodeExecutor, NodeServices
from .core.state_manager import StateManager
from .integrations import CohereTextGenerator, EmailQueue, HttpClient, QueryExecutor, WhatsAppCloudTransport
from .storage.database import configure_database, create_tables, get_session

logger = get_logger(__name__)


class ApplicationState:
    """Container for application state and components."""

    def __init__(self):
        self.config: Optional[AppConfig] = None
        self.cache: Optional[TTLCache] = None
        self.graph_manager: Optional[GraphManager] = None
        self.state_manager: Optional[StateManager] = None
        self.execution_engine: Optional[ExecutionEngine] = None
        self.test_driver: Optional[TestRunDriver] = None
        self.step_driver: Optional[StepAdvanceDriver] = None
        self.inbound_driver: Optional[InboundMessageDriver] = None
        self.health_checker: Optional[HealthChecker] = None


def build_node_services(config: AppConfig) -> NodeServices:
    """Node collaborators backed by the configured external services."""
    return NodeServices(
        text_generator=CohereTextGenerator(
            api_key=config.cohere_api_key,
            model=config.cohere_model,
            api_url=config.cohere_api_url,
            timeout=config.ai_timeout
        ),
        http_client=HttpClient(timeout=config.http_timeout),
        query_executor=QueryExecutor(
            database_url=config.query_database_url,
            timeout=config.query_timeout
        ),
        email_queue=EmailQueue()
    )


def build_transport(config: AppConfig) -> WhatsAppCloudTransport:
    return WhatsAppCloudTransport(
        token=config.whatsapp_token,
        phone_number_id=config.whatsapp_phone_number_id,
        api_version=config.whatsapp_api_version,
        base_url=config.whatsapp_api_base_url,
        timeout=config.transport_timeout
    )


def initialize_database(config: AppConfig) -> None:
    """Bind the engine to the configured database and create missing tables."""
    configure_database(config.database_url, echo=config.database_echo)
    create_tables()
    logger.info("Database tables created")


def initialize_components(
    config: AppConfig,
    node_services: Optional[NodeServices] = None,
    transport=None
) -> ApplicationState:
    """
    Build the engine, managers and drivers for a configuration.

    Args:
        config: Application configuration
        node_services: Node collaborators; built from the configuration when omitted
        transport: Outbound message transport; WhatsApp Cloud API when omitted
    """
    state = ApplicationState()
    state.config = config
    state.cache = TTLCache(ttl_seconds=config.cache_ttl_seconds, max_entries=config.cache_max_entries)
    state.graph_manager = GraphManager(cache=state.cache, default_workflow_type=config.default_workflow_type)
    state.state_manager = StateManager()

    node_executor = NodeExecutor(
        services=node_services or build_node_services(config),
        locale=config.trace_locale,
        max_wait_seconds=config.max_wait_seconds
    )
    state.execution_engine = ExecutionEngine(
        node_executor,
        max_concurrent_executions=config.max_concurrent_executions
    )

    if transport is None:
        transport = build_transport(config)

    state.test_driver = TestRunDriver(state.execution_engine, state.state_manager)
    state.step_driver = StepAdvanceDriver(
        state.execution_engine,
        state.graph_manager,
        state.state_manager,
        transport=transport,
        reply_mode=config.customer_reply_mode
    )
    state.inbound_driver = InboundMessageDriver(
        state.execution_engine,
        state.graph_manager,
        state.state_manager,
        state.step_driver,
        transport=transport,
        reply_mode=config.customer_reply_mode
    )
    state.health_checker = setup_health_checks(state)

    logger.info("Core components initialized")
    return state


def setup_health_checks(state: ApplicationState) -> HealthChecker:
    """Register the component checks reported by /health/detailed."""
    checker = HealthChecker()

    def check_database():
        db = get_session()
        try:
            db.execute(text("SELECT 1"))
        finally:
            db.close()
        return "Database connection successful"

    def check_execution_engine():
        return {
            "message": "Execution engine operational",
            **state.execution_engine.get_execution_statistics()
        }

    def check_cache():
        return {"message": "Cache operational", **state.cache.stats()}

    checker.register_check("database", check_database)
    checker.register_check("execution_engine", check_execution_engine)
    checker.register_check("cache", check_cache)
    return checker


def create_app(
    config: Optional[AppConfig] = None,
    node_services: Optional[NodeServices] = None,
    transport=None
) -> FastAPI:
    """Create and configure FastAPI application instance."""
    if config is None:
        config = get_config()

    validate_config(config)
    app_state = ApplicationState()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(
            level=config.log_level.value,
            log_file=config.log_file,
            log_format=config.log_format,
            structured=config.structured_logging,
            max_size=config.log_max_size,
            backup_count=config.log_backup_count
        )
        logger.info(f"Starting {config.app_name} v{config.app_version}")

        initialize_database(config)
        components = initialize_components(config, node_services, transport)
        app_state.__dict__.update(components.__dict__)

        init_dependencies(
            config=config,
            graph_manager=components.graph_manager,
            state_manager=components.state_manager,
            test_driver=components.test_driver,
            step_driver=components.step_driver,
            inbound_driver=components.inbound_driver
        )
        logger.info("Application startup completed successfully")

        yield

        logger.info(f"Shutting down {config.app_name}")
        components.execution_engine.shutdown()

    app = FastAPI(
        title=config.app_name,
        description="Workflow graph executor for WhatsApp chat bots",
        version=config.app_version,
        debug=config.debug,
        lifespan=lifespan
    )
    app.state.botflow = app_state

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
        app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(ErrorHandlingMiddleware)

    app.include_router(router)
    add_health_endpoints(app, config, app_state)

    return app


def add_health_endpoints(app: FastAPI, config: AppConfig, app_state: ApplicationState) -> None:
    """Add health check endpoints to the application."""
    service_name = config.app_name.lower().replace(" ", "-")

    @app.get("/")
    async def root():
        return {"message": f"{config.app_name} is running", "version": config.app_version}

    @app.get("/health")
    async def health_check():
        """Basic health check endpoint."""
        return {
            "status": "healthy",
            "service": service_name,
            "version": config.app_version
        }

    @app.get("/health/detailed")
    def detailed_health_check():
        """Detailed health check endpoint with component status."""
        if app_state.health_checker is None:
            return JSONResponse(
                status_code=503,
                content={
                    "service": service_name,
                    "overall_status": "starting",
                    "timestamp": datetime.utcnow().isoformat()
                }
            )

        results = app_state.health_checker.run_all_checks()
        status_code = 200 if results["overall_status"] == "healthy" else 503
        return JSONResponse(
            status_code=status_code,
            content={
                "service": service_name,
                "version": config.app_version,
                **results
            }
        )
