"""Pytest configuration and fixtures."""

import pytest
from fastapi.testclient import TestClient

from workflow_core.config import get_testing_config, reset_config
from workflow_core.core.execution_engine import ExecutionEngine
from workflow_core.core.node_registry import create_default_registry
from workflow_core.core.validator import GraphValidator
from workflow_core.factory import create_app


@pytest.fixture
def registry():
    """Create a registry with the built-in executors."""
    return create_default_registry()


@pytest.fixture
def engine(registry):
    """Create an ExecutionEngine instance for testing."""
    return ExecutionEngine(registry=registry)


@pytest.fixture
def validator():
    """Create a GraphValidator with default switches."""
    return GraphValidator()


@pytest.fixture
def client():
    """Create a test client with the application lifespan running."""
    reset_config()
    app = create_app(get_testing_config())
    with TestClient(app) as test_client:
        yield test_client
    reset_config()
