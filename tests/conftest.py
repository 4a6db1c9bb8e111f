"""
Pytest Configuration and Shared Fixtures

Provides the loopback bus, relay engine, recording sessions and settings
used across unit and integration tests.
"""

import os
import tempfile
from pathlib import Path
from typing import AsyncGenerator, Generator, List, Union

import httpx
import pytest
import pytest_asyncio

# Test environment setup
os.environ["DEVTOOLS_ENVIRONMENT"] = "test"

from config.settings import Settings, reload_settings
from core.bus import SRV_DEVICE_SCRIPT_MANAGER, Device, LoopbackBus
from monitoring import MetricsRegistry, setup_standard_metrics
from relay import ClientSession, RelayEngine
from utils.http import HTTPClient


PROXY_PAGE = (
    "<html><head><title>Jacdac DevTools</title>"
    '<link rel="icon" href="https://microsoft.github.io/jacdac-docs/favicon.svg">'
    "</head><body>"
    '<iframe src="https://microsoft.github.io/jacdac-docs/dashboard?devtools=1"></iframe>'
    '<a href="https://microsoft.github.io/jacdac-docs/dashboard">open</a>'
    "</body></html>"
)


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests that test individual components"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests over real sockets or the ASGI app"
    )


# =============================================================================
# Settings Fixtures
# =============================================================================

@pytest.fixture(autouse=True)
def reset_settings():
    """Reset cached settings after each test."""
    yield
    reload_settings()


@pytest.fixture
def test_settings() -> Settings:
    """Settings with ephemeral ports and no program."""
    return Settings(
        environment="test",
        relay={"ws_port": 0, "tcp_port": 0},
        monitoring={"log_level": "WARNING"},
    )


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


# =============================================================================
# Relay Fixtures
# =============================================================================

class RecordingSession(ClientSession):
    """
    Session that records everything sent to it.

    With fail=True every send reports a dead connection.
    """

    def __init__(self, kind: str = "ws", fail: bool = False):
        super().__init__()
        self.kind = kind
        self.fail = fail
        self.sent: List[Union[bytes, str]] = []
        self.closed = False

    async def send(self, message) -> bool:
        if self.fail:
            return False
        self.sent.append(message)
        return True

    async def close(self) -> None:
        self.closed = True

    @property
    def frames(self) -> List[bytes]:
        return [m for m in self.sent if isinstance(m, bytes)]

    @property
    def texts(self) -> List[str]:
        return [m for m in self.sent if isinstance(m, str)]


@pytest.fixture
def metrics():
    """Standard metrics in a private registry."""
    return setup_standard_metrics(MetricsRegistry())


@pytest_asyncio.fixture
async def bus() -> AsyncGenerator[LoopbackBus, None]:
    """Started loopback bus."""
    bus = LoopbackBus()
    await bus.start()
    await bus.connect()
    yield bus
    await bus.stop()


@pytest.fixture
def engine(bus: LoopbackBus, metrics) -> RelayEngine:
    """Relay engine subscribed to the loopback bus."""
    engine = RelayEngine(bus, metrics)
    bus.on("frame", engine.on_bus_frame)
    return engine


@pytest.fixture
def session_factory(engine: RelayEngine):
    """Create and register recording sessions."""
    def create(kind: str = "ws", fail: bool = False) -> RecordingSession:
        return engine.register_client(RecordingSession(kind=kind, fail=fail))
    return create


@pytest.fixture
def device_factory():
    """Create devices with a DeviceScript manager service."""
    def create(device_id: str = "dev1", managers: int = 1, extra_classes: List[int] = None) -> Device:
        classes = list(extra_classes or []) + [SRV_DEVICE_SCRIPT_MANAGER] * managers
        return Device(device_id=device_id, service_classes=classes)
    return create


# =============================================================================
# HTTP Fixtures
# =============================================================================

@pytest.fixture
def proxy_transport():
    """httpx transport serving the upstream proxy page."""
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.startswith("/jacdac-docs/devtools/proxy") or request.url.path == "/devtools/proxy.html":
            return httpx.Response(200, text=PROXY_PAGE)
        return httpx.Response(404)
    return httpx.MockTransport(handler)


@pytest_asyncio.fixture
async def mock_http_client(proxy_transport) -> AsyncGenerator[HTTPClient, None]:
    """HTTP client backed by the mock proxy transport."""
    client = HTTPClient(transport=proxy_transport)
    yield client
    await client.close()
