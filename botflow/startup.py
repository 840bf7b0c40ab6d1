"""Command line interface: serve the API, manage the database, test-run graphs."""

import argparse
import json
import sys
from typing import List, Optional

from pydantic import ValidationError

from .config import (
    AppConfig,
    CustomerReplyMode,
    LogLevel,
    TraceLocale,
    get_development_config,
    get_production_config,
    get_testing_config,
    load_config,
    validate_config,
)
from .core.exceptions import NodeExecutionError, WorkflowEngineError
from .core.logging import get_logger, setup_logging
from .models.core import WorkflowDefinition

logger = get_logger(__name__)


def create_argument_parser() -> argparse.ArgumentParser:
    """Create command line argument parser."""
    parser = argparse.ArgumentParser(
        prog="botflow",
        description="Botflow - workflow graph executor for WhatsApp chat bots"
    )

    parser.add_argument("--host", help="Host to bind the server to")
    parser.add_argument("--port", type=int, help="Port to bind the server to")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload for development")
    parser.add_argument(
        "--env",
        choices=["development", "production", "testing"],
        help="Environment configuration preset"
    )
    parser.add_argument("--config", help="Path to a .env configuration file")
    parser.add_argument("--database-url", help="Database connection URL")
    parser.add_argument(
        "--log-level",
        choices=[level.value for level in LogLevel],
        help="Logging level"
    )
    parser.add_argument("--log-file", help="Path to log file")
    parser.add_argument("--debug", action="store_true", help="Enable debug mode")
    parser.add_argument(
        "--max-concurrent-executions",
        type=int,
        help="Maximum number of concurrent workflow runs"
    )
    parser.add_argument(
        "--locale",
        choices=[locale.value for locale in TraceLocale],
        help="Language of trace lines"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    run_parser = subparsers.add_parser("run", help="Run the API server")
    run_parser.add_argument("--workers", type=int, default=1, help="Number of worker processes (default: 1)")

    db_parser = subparsers.add_parser("db", help="Database management commands")
    db_subparsers = db_parser.add_subparsers(dest="db_command", help="Database commands")
    db_subparsers.add_parser("init", help="Create database tables")
    db_subparsers.add_parser("reset", help="Drop and recreate database tables")

    config_parser = subparsers.add_parser("config", help="Configuration management")
    config_subparsers = config_parser.add_subparsers(dest="config_command", help="Config commands")
    config_subparsers.add_parser("show", help="Show current configuration")
    config_subparsers.add_parser("validate", help="Validate configuration")

    execute_parser = subparsers.add_parser("execute", help="Test-run a graph from a JSON file")
    execute_parser.add_argument("file", help="JSON file holding {\"nodes\": [...], \"edges\": [...]}")
    execute_parser.add_argument("--recipient", help="Identity the run acts on behalf of")
    execute_parser.add_argument(
        "--var",
        action="append",
        default=[],
        metavar="NAME=VALUE",
        help="Initial run variable (repeatable)"
    )

    return parser


def load_configuration(args: argparse.Namespace) -> AppConfig:
    """Load configuration based on command line arguments."""
    if args.env == "development":
        config = get_development_config()
    elif args.env == "production":
        config = get_production_config()
    elif args.env == "testing":
        config = get_testing_config()
    else:
        config = load_config(args.config)

    if args.host:
        config.host = args.host
    if args.port:
        config.port = args.port
    if args.reload:
        config.reload = True
    if args.database_url:
        config.database_url = args.database_url
    if args.log_level:
        config.log_level = LogLevel(args.log_level)
    if args.log_file:
        config.log_file = args.log_file
    if args.debug:
        config.debug = True
    if args.max_concurrent_executions:
        config.max_concurrent_executions = args.max_concurrent_executions
    if args.locale:
        config.trace_locale = TraceLocale(args.locale)

    return config


def run_server(config: AppConfig, workers: int = 1):
    """Run the API server."""
    import uvicorn

    from .factory import create_app

    logger.info(f"Starting server with {workers} worker(s)")
    uvicorn_config = config.get_uvicorn_config()

    if workers > 1:
        uvicorn.run("botflow.factory:create_app", factory=True, workers=workers, **uvicorn_config)
    else:
        uvicorn.run(create_app(config), **uvicorn_config)


def run_database_command(command: str, config: AppConfig):
    """Run database management commands."""
    from .storage.database import configure_database, create_tables, drop_tables

    configure_database(config.database_url, echo=config.database_echo)

    if command == "init":
        logger.info("Initializing database tables...")
        create_tables()
        print("Database tables created")
    elif command == "reset":
        logger.info("Resetting database...")
        drop_tables()
        create_tables()
        print("Database reset completed")


def show_configuration(config: AppConfig):
    """Show current configuration."""
    print("Current Configuration:")
    print(f"  App Name: {config.app_name}")
    print(f"  Version: {config.app_version}")
    print(f"  Debug: {config.debug}")
    print(f"  Host: {config.host}")
    print(f"  Port: {config.port}")
    print(f"  Database URL: {config.database_url}")
    print(f"  Query Database URL: {config.effective_query_database_url}")
    print(f"  Log Level: {config.log_level.value}")
    print(f"  Max Concurrent Executions: {config.max_concurrent_executions}")
    print(f"  Max Wait Seconds: {config.max_wait_seconds}")
    print(f"  Trace Locale: {config.trace_locale.value}")
    print(f"  Customer Reply Mode: {config.customer_reply_mode.value}")
    print(f"  Default Workflow Type: {config.default_workflow_type}")
    print(f"  Cohere API Key: {'set' if config.cohere_api_key else 'not set'}")
    print(f"  WhatsApp Token: {'set' if config.whatsapp_token else 'not set'}")


def validate_configuration_command(config: AppConfig):
    """Validate configuration and show results."""
    try:
        validate_config(config)
        print("Configuration validation: PASSED")
    except ValueError as e:
        print("Configuration validation: FAILED")
        print(f"Error: {e}")
        sys.exit(1)


def parse_variables(pairs: List[str]) -> dict:
    """Turn NAME=VALUE pairs into a dict; values are JSON when they parse as JSON."""
    variables = {}
    for pair in pairs:
        name, separator, value = pair.partition("=")
        if not separator or not name:
            raise ValueError(f"Variable must look like NAME=VALUE: {pair!r}")
        try:
            variables[name] = json.loads(value)
        except ValueError:
            variables[name] = value
    return variables


def execute_graph_file(config: AppConfig, path: str, recipient: Optional[str], variables: dict) -> int:
    """Test-run a graph file, print its trace and return the exit code."""
    from .factory import initialize_components, initialize_database

    with open(path, encoding="utf-8") as handle:
        definition = WorkflowDefinition(**json.load(handle))

    # Runs from the command line never message real customers.
    config.customer_reply_mode = CustomerReplyMode.TRACE
    initialize_database(config)
    components = initialize_components(config)
    try:
        trace = components.test_driver.run(definition.nodes, definition.edges, recipient, variables)
    except NodeExecutionError as e:
        if e.partial_trace is not None:
            for line in e.partial_trace.lines():
                print(line)
        print(f"Run halted: {e.message}", file=sys.stderr)
        return 1
    finally:
        components.execution_engine.shutdown()

    for line in trace.lines():
        print(line)
    return 0


def main():
    """Main entry point for the command line."""
    parser = create_argument_parser()
    args = parser.parse_args()

    try:
        config = load_configuration(args)
        validate_config(config)

        if args.command == "run" or args.command is None:
            run_server(config, getattr(args, "workers", 1))

        elif args.command == "db":
            if not args.db_command:
                print("Database command required. Use --help for options.")
                sys.exit(1)
            run_database_command(args.db_command, config)

        elif args.command == "config":
            if args.config_command == "show":
                show_configuration(config)
            elif args.config_command == "validate":
                validate_configuration_command(config)
            else:
                print("Configuration command required. Use --help for options.")
                sys.exit(1)

        elif args.command == "execute":
            setup_logging(level=config.log_level.value, log_file=config.log_file)
            exit_code = execute_graph_file(config, args.file, args.recipient, parse_variables(args.var))
            sys.exit(exit_code)

        else:
            parser.print_help()

    except (WorkflowEngineError, ValidationError, ValueError, OSError) as e:
        print(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
