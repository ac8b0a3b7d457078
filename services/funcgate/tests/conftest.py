import os

import pytest

FIXTURES_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "fixtures")
FUNCTIONS_ROOT = os.path.join(FIXTURES_DIR, "functions")

# Config is instantiated at import time, so set environment variables at the top level.
os.environ["FUNCTIONS_ROOT"] = FUNCTIONS_ROOT
os.environ["ENVIRONMENT"] = "development"
os.environ["CONFIG_RELOAD_ENABLED"] = "false"
os.environ["PRETTY_JSON"] = "false"
os.environ["LOG_CONFIG_PATH"] = os.path.join(FIXTURES_DIR, "missing-logging.yml")


@pytest.fixture
def functions_root():
    return FUNCTIONS_ROOT


@pytest.fixture
def registry():
    from services.funcgate.services.function_registry import FunctionRegistry

    function_registry = FunctionRegistry(FUNCTIONS_ROOT)
    function_registry.load_functions()
    return function_registry


@pytest.fixture
def parser():
    from services.funcgate.services.definition_parser import DefinitionParser

    return DefinitionParser()


@pytest.fixture
def parse_one(parser):
    """Parse source text into a single definition."""

    def _parse(source, name="test"):
        definitions = parser.parse(name, f"{name}.py", source)
        assert len(definitions) == 1
        return definitions[0]

    return _parse


@pytest.fixture
def client():
    from fastapi.testclient import TestClient

    from services.funcgate.main import app

    with TestClient(app) as test_client:
        yield test_client
