"""Test configuration and fixtures for mcpgate"""

import sys
from pathlib import Path

import pytest
import pytest_asyncio

from conftest_fakes import MockServers
from mcpgate.config import Settings
from mcpgate.mcp.gateway import Gateway
from mcpgate.mcp.pool import ConnectionPool
from mcpgate.persistence import InMemoryConversationStore

FIXTURES_DIR = Path(__file__).parent / "fixtures"


@pytest.fixture
def mock_servers() -> MockServers:
    """Registry of scripted capability servers, used as the pool's transport factory."""
    return MockServers()


@pytest_asyncio.fixture
async def pool(mock_servers):
    """Connection pool whose transports are in-memory mock servers."""
    pool = ConnectionPool(
        connect_timeout=2.0,
        request_timeout=2.0,
        transport_factory=mock_servers.factory,
    )
    yield pool
    await pool.close()


@pytest.fixture
def gateway(pool) -> Gateway:
    return Gateway(pool)


@pytest.fixture
def store() -> InMemoryConversationStore:
    return InMemoryConversationStore()


@pytest.fixture
def settings() -> Settings:
    return Settings(api_key="test-key", connect_timeout=2.0, request_timeout=2.0)


@pytest.fixture
def test_server_descriptor():
    """Descriptor data for the stdio test server in tests/fixtures."""

    def _descriptor(server_id: str = "fs1", *extra_args: str) -> dict:
        return {
            "id": server_id,
            "name": "Test filesystem server",
            "transportKind": "stdio",
            "command": sys.executable,
            "args": [str(FIXTURES_DIR / "mcp_test_server.py"), *extra_args],
        }

    return _descriptor
