"""Pytest configuration and fixtures."""

import os
import tempfile

import pytest

from botflow.config import TraceLocale, get_testing_config
from botflow.core.execution_engine import ExecutionEngine
from botflow.core.graph_manager import GraphManager
from botflow.core.cache import TTLCache
from botflow.core.node_executor import NodeExecutor, NodeServices
from botflow.core.state_manager import StateManager
from botflow.storage import database
from botflow.storage.database import configure_database, create_tables

from fakes import (
    FakeEmailQueue, FakeHttpClient, FakeQueryExecutor, FakeTextGenerator, FakeTransport, RecordingSleep
)


@pytest.fixture
def temp_db():
    """Create a temporary database for testing."""
    db_fd, db_path = tempfile.mkstemp(suffix=".db")
    os.close(db_fd)

    configure_database(f"sqlite:///{db_path}")
    create_tables()

    yield db_path

    if database.engine is not None:
        database.engine.dispose()
    try:
        os.unlink(db_path)
    except OSError:
        pass


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def text_generator():
    return FakeTextGenerator()


@pytest.fixture
def http_client():
    return FakeHttpClient()


@pytest.fixture
def query_executor():
    return FakeQueryExecutor()


@pytest.fixture
def email_queue():
    return FakeEmailQueue()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def services(text_generator, http_client, query_executor, email_queue, sleep):
    return NodeServices(
        text_generator=text_generator,
        http_client=http_client,
        query_executor=query_executor,
        email_queue=email_queue,
        sleep=sleep
    )


@pytest.fixture
def node_executor(services):
    return NodeExecutor(services, locale=TraceLocale.PT, max_wait_seconds=30.0)


@pytest.fixture
def engine(node_executor):
    engine = ExecutionEngine(node_executor, max_concurrent_executions=4)
    yield engine
    engine.shutdown()


@pytest.fixture
def graph_manager(temp_db):
    return GraphManager(cache=TTLCache(ttl_seconds=60.0, max_entries=32))


@pytest.fixture
def state_manager(temp_db):
    return StateManager()


@pytest.fixture
def app_config(temp_db):
    """Testing configuration pointing at the temporary database."""
    config = get_testing_config()
    config.database_url = f"sqlite:///{temp_db}"
    config.whatsapp_verify_token = "segredo"
    config.cors_origins = []
    return config
