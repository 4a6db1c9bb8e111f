"""
FastAPI Application Factory

Creates the DevTools bridge application:
- WebSocket endpoint for browser DevTools clients
- Raw TCP relay server
- Proxy page, health and metrics endpoints
- Lifecycle management (bus, TCP server, deploy watcher, trace file)

@.architecture
Incoming: main.py, config/settings.py, relay/*, core/bus/*, core/deploy/*, core/proxy.py --- {Settings object, Bus handle, HTTPClient}
Processing: create_app(), lifespan(), websocket_endpoint(), proxy_page(), health_check(), metrics() --- {7 jobs: application_creation, cleanup, connection_management, initialization, lifecycle_management, message_routing, routing_registration}
Outgoing: main.py, DevTools clients (HTTP/WebSocket/TCP) --- {FastAPI application instance, HTML/JSON/metrics responses, relayed frames}
"""

import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse

from config.settings import Settings, get_settings
from core.bus import ERROR_EVENT, FRAME_EVENT, Bus, LoopbackBus
from core.deploy import DeployWatcher
from core.proxy import fetch_proxy
from core.trace import TraceWriter
from monitoring import (
    clear_sender_context,
    configure_from_preset,
    get_logger,
    get_registry,
    set_sender_context,
    setup_standard_metrics,
)
from relay import RelayEngine, TcpRelayServer, WebSocketSession
from utils.http import HTTPClient, close_http_client

logger = get_logger(__name__)

# Track startup time for uptime calculation
START_TIME = time.time()

LOGGING_PRESET_BY_ENVIRONMENT = {
    "production": "production",
    "test": "testing",
    "development": "development",
}


def create_app(
    settings: Optional[Settings] = None,
    bus: Optional[Bus] = None,
    http_client: Optional[HTTPClient] = None,
) -> FastAPI:
    """
    Create and configure the bridge application.

    Args:
        settings: Application settings (loaded from config/env if None)
        bus: Bus handle (in-process loopback bus if None)
        http_client: HTTP client for the proxy page download (global client if None)

    Returns:
        FastAPI: Configured application instance
    """
    settings = settings or get_settings()

    configure_from_preset(
        LOGGING_PRESET_BY_ENVIRONMENT[settings.environment],
        level=settings.monitoring.log_level,
        format_type=settings.monitoring.log_format,
    )

    if bus is None:
        logger.warning("No hardware transport configured; using loopback bus")
        bus = LoopbackBus()

    metrics = setup_standard_metrics()
    engine = RelayEngine(bus, metrics)
    tcp_server = TcpRelayServer(engine, settings.relay.bind_host, settings.relay.tcp_port)
    watcher = None
    if settings.deploy.program:
        watcher = DeployWatcher(
            bus,
            settings.deploy.program,
            debounce=settings.deploy.debounce_seconds,
            poll_interval=settings.deploy.poll_interval,
            metrics=metrics,
        )
    trace = TraceWriter(settings.trace_path) if settings.trace_path else None

    async def on_bus_error(error: Exception) -> None:
        logger.error(f"bus error: {error}")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Startup: proxy page, trace file, bus subscriptions, TCP server, bus,
        deploy watcher. A TCP bind failure aborts startup.
        """
        logger.info(f"starting dev tools at http://localhost:{settings.relay.ws_port}")

        try:
            app.state.proxy_html = await fetch_proxy(settings.proxy, http_client)
        except Exception as e:
            logger.warning(f"Proxy page download failed: {e}")

        if trace:
            await trace.open()
            bus.on(FRAME_EVENT, trace.write_frame)
        bus.on(FRAME_EVENT, engine.on_bus_frame)
        bus.on(ERROR_EVENT, on_bus_error)

        logger.info(f"   websocket: ws://localhost:{settings.relay.ws_port}")
        await tcp_server.start()

        await bus.start()
        await bus.connect()

        if watcher:
            await watcher.start()

        logger.info("=== Startup Complete ===")
        try:
            yield
        finally:
            logger.info("=== Application Shutdown ===")
            if watcher:
                await watcher.stop()
            await engine.cleanup_all()
            await tcp_server.stop()
            bus.off(FRAME_EVENT, engine.on_bus_frame)
            bus.off(ERROR_EVENT, on_bus_error)
            await bus.stop()
            if trace:
                bus.off(FRAME_EVENT, trace.write_frame)
                await trace.close()
            if http_client:
                await http_client.close()
            else:
                await close_http_client()
            logger.info("=== Shutdown Complete ===")

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.bus = bus
    app.state.engine = engine
    app.state.tcp_server = tcp_server
    app.state.watcher = watcher
    app.state.proxy_html = None

    # ==========================================================================
    # HTTP Endpoints
    # ==========================================================================

    @app.get("/")
    async def proxy_page():
        """DevTools proxy page."""
        if app.state.proxy_html is None:
            return PlainTextResponse("DevTools proxy page unavailable", status_code=503)
        return HTMLResponse(app.state.proxy_html, headers={"Cache-control": "no-cache"})

    @app.get("/health")
    async def health_check():
        return JSONResponse({
            "status": "ok",
            "timestamp": time.time(),
            "uptime_seconds": time.time() - START_TIME,
            "version": settings.app_version,
            "clients": engine.get_client_count(),
        })

    if settings.monitoring.metrics_enabled:
        @app.get("/metrics")
        async def metrics_endpoint():
            return PlainTextResponse(get_registry().export_prometheus())

    # ==========================================================================
    # WebSocket Endpoint
    # ==========================================================================

    @app.websocket("/")
    async def websocket_endpoint(websocket: WebSocket):
        """
        DevTools WebSocket client.

        Binary messages are bus frames; text messages are side-channel JSON.
        """
        await websocket.accept()
        session = engine.register_client(WebSocketSession(websocket))
        set_sender_context(session.sender_tag)

        try:
            while True:
                try:
                    message = await websocket.receive()
                except RuntimeError as e:
                    if "disconnect" in str(e).lower():
                        break
                    raise

                if message.get("type") == "websocket.disconnect":
                    break

                if message.get("bytes") is not None:
                    await engine.on_client_frame(message["bytes"], session.sender_tag)
                    continue

                text = message.get("text")
                if text is not None:
                    await engine.handle_text(session, text)

        except WebSocketDisconnect:
            logger.debug(f"WebSocket client {session.sender_tag} disconnected normally")
        except Exception as e:
            logger.error(f"WebSocket error for client {session.sender_tag}: {e}", exc_info=True)
        finally:
            engine.remove_client(session)
            clear_sender_context()

    return app
