"""Test configuration and fixtures."""

import asyncio
import os
import socket

import pytest
import pytest_asyncio

from registry_v2_client import RegistryClient, RegistryConfig, check_registry_connectivity
from tests.helpers import FakeRegistry, FakeStorage

REPO = "my/repo"


def is_port_open(host, port):
    """Check if a port is open."""
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.settimeout(1)
            return sock.connect_ex((host, port)) == 0
    except OSError:
        return False


@pytest.fixture(scope="session")
def registry_port():
    """Get registry port for integration testing."""
    return int(os.getenv("REGISTRY_PORT", "15000"))


@pytest_asyncio.fixture
async def live_registry(registry_port):
    """Host of a real registry, skipping if it is not reachable."""
    host = f"localhost:{registry_port}"

    # Wait for registry to be available (for CI)
    max_attempts = 30
    for attempt in range(max_attempts):
        if is_port_open("localhost", registry_port):
            if await check_registry_connectivity(f"{host}/probe", insecure=True):
                return host
        if attempt < max_attempts - 1:
            await asyncio.sleep(1)

    pytest.skip(f"Registry not available at {host}")


@pytest_asyncio.fixture
async def make_registry():
    """Factory starting fake registries that are shut down after the test."""
    started = []

    async def _make(auth="none", **kwargs):
        registry = FakeRegistry(auth=auth, **kwargs)
        await registry.start()
        started.append(registry)
        return registry

    yield _make
    for registry in started:
        await registry.close()


@pytest_asyncio.fixture
async def storage():
    """Blob storage server on a different origin than the registry."""
    server = FakeStorage()
    await server.start()
    yield server
    await server.close()


@pytest_asyncio.fixture
async def make_client():
    """Factory for clients bound to a fake registry; closed after the test."""
    clients = []

    def _make(registry, repo=REPO, **options):
        config = RegistryConfig(name=f"http://{registry.host}/{repo}", **options)
        client = RegistryClient(config)
        clients.append(client)
        return client

    yield _make
    for client in clients:
        await client.close()


# Pytest configuration
def pytest_configure(config):
    """Configure pytest markers and settings."""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test requiring registry"
    )
    config.addinivalue_line("markers", "unit: mark test as unit test (default)")


def pytest_collection_modifyitems(config, items):
    """Modify test collection."""
    # Skip integration tests if no registry
    skip_integration = pytest.mark.skip(reason="Registry not available")

    for item in items:
        if (
            "integration" in item.keywords
            and os.getenv("REGISTRY_AVAILABLE", "false").lower() != "true"
        ):
            item.add_marker(skip_integration)
