"""Tether API server implementation using Starlette."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, AsyncIterator, Dict, Optional

from .auth import APIKeyManager

if TYPE_CHECKING:
    from ..configuration import ConfigurationBundle
    from ..sync import SyncEngine

logger = logging.getLogger("tether.api.server")

PUBLIC_PATHS = frozenset({"/health"})


class APIServerState(str, Enum):
    """API server lifecycle states."""
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class TetherAPIServer:
    """HTTP API over a SyncEngine, authenticated with per-user keys."""

    config_bundle: "ConfigurationBundle"
    engine: "SyncEngine"
    key_manager: Optional[APIKeyManager] = None

    # Server state
    _state: APIServerState = field(default=APIServerState.STOPPED, init=False)
    _server: Optional[Any] = field(default=None, init=False)
    _thread: Optional[threading.Thread] = field(default=None, init=False)

    def __post_init__(self) -> None:
        if self.key_manager is None:
            self.key_manager = APIKeyManager(self.config_bundle.data_dir)

    @property
    def state(self) -> APIServerState:
        """Current server state."""
        return self._state

    @property
    def host(self) -> str:
        return self.config_bundle.section("api").get("host", "127.0.0.1")

    @property
    def port(self) -> int:
        return int(self.config_bundle.section("api").get("port", 8000))

    def create_app(self) -> Any:
        """Create the Starlette application."""
        from starlette.applications import Starlette
        from starlette.middleware import Middleware
        from starlette.middleware.cors import CORSMiddleware
        from starlette.routing import Route

        from .routes import (
            batch_enqueue_handler,
            clear_operations_handler,
            detect_conflict_handler,
            enqueue_handler,
            health_handler,
            list_conflicts_handler,
            list_operations_handler,
            process_handler,
            resolutions_handler,
            resolve_conflict_handler,
            status_handler,
        )

        middleware = []
        cors_origins = self.config_bundle.section("api").get("cors_origins", [])
        if cors_origins:
            middleware.append(
                Middleware(
                    CORSMiddleware,
                    allow_origins=cors_origins,
                    allow_credentials=True,
                    allow_methods=["*"],
                    allow_headers=["*"],
                )
            )
        middleware.append(Middleware(self._auth_middleware_class()))

        prefix = "/api/v1/sync"
        routes = [
            Route("/health", health_handler, methods=["GET"]),
            Route(f"{prefix}/operations", enqueue_handler, methods=["POST"]),
            Route(f"{prefix}/operations", list_operations_handler, methods=["GET"]),
            Route(f"{prefix}/operations", clear_operations_handler, methods=["DELETE"]),
            Route(f"{prefix}/operations/batch", batch_enqueue_handler, methods=["POST"]),
            Route(f"{prefix}/process", process_handler, methods=["POST"]),
            Route(f"{prefix}/status", status_handler, methods=["GET"]),
            Route(f"{prefix}/conflicts/detect", detect_conflict_handler, methods=["POST"]),
            Route(f"{prefix}/conflicts", list_conflicts_handler, methods=["GET"]),
            Route(
                f"{prefix}/conflicts/{{conflict_id}}/resolve",
                resolve_conflict_handler,
                methods=["POST"],
            ),
            Route(f"{prefix}/resolutions", resolutions_handler, methods=["GET"]),
        ]

        app = Starlette(routes=routes, middleware=middleware, lifespan=self._lifespan)
        app.state.tether_server = self
        return app

    def _auth_middleware_class(self) -> type:
        """Create an authentication middleware bound to this server's keys."""
        server = self

        from starlette.middleware.base import BaseHTTPMiddleware
        from starlette.responses import JSONResponse

        class AuthMiddleware(BaseHTTPMiddleware):
            async def dispatch(self, request, call_next):
                if request.url.path in PUBLIC_PATHS or request.method == "OPTIONS":
                    return await call_next(request)

                api_key = request.headers.get("X-API-Key", "")
                if not api_key:
                    api_key = request.query_params.get("api_key", "")

                user_id = server.key_manager.resolve_user(api_key)
                if user_id is None:
                    return JSONResponse(
                        {"error": "Invalid or missing API key", "code": "unauthenticated"},
                        status_code=401,
                    )

                request.state.user_id = user_id
                return await call_next(request)

        return AuthMiddleware

    @contextlib.asynccontextmanager
    async def _lifespan(self, app: Any) -> AsyncIterator[None]:
        logger.info("API server starting on %s:%s", self.host, self.port)
        self._state = APIServerState.RUNNING
        try:
            yield
        finally:
            logger.info("API server shutting down")
            self._state = APIServerState.STOPPED

    def start(self, blocking: bool = False) -> bool:
        """Start the API server.

        Args:
            blocking: If True, block until server stops. If False, run in background thread.

        Returns:
            True if server started successfully.
        """
        if self._state == APIServerState.RUNNING:
            logger.warning("API server is already running")
            return False

        import uvicorn

        self._state = APIServerState.STARTING
        config = uvicorn.Config(
            self.create_app(),
            host=self.host,
            port=self.port,
            log_level="warning",
            access_log=False,
        )
        self._server = uvicorn.Server(config)

        if blocking:
            try:
                asyncio.run(self._server.serve())
            except Exception:
                logger.exception("API server error")
                self._state = APIServerState.ERROR
                return False
            return True

        self._thread = threading.Thread(
            target=self._run_in_thread,
            daemon=True,
            name="tether-api-server",
        )
        self._thread.start()

        # Wait up to 2 seconds for startup
        for _ in range(20):
            time.sleep(0.1)
            if self._state in (APIServerState.RUNNING, APIServerState.ERROR):
                break

        return self._state == APIServerState.RUNNING

    def _run_in_thread(self) -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        try:
            loop.run_until_complete(self._server.serve())
        except Exception:
            logger.exception("API server thread error")
            self._state = APIServerState.ERROR
        finally:
            loop.close()
            if self._state != APIServerState.ERROR:
                self._state = APIServerState.STOPPED

    def stop(self) -> bool:
        """Stop the API server.

        Returns:
            True if server stopped successfully.
        """
        if self._state != APIServerState.RUNNING:
            logger.warning("API server is not running")
            return False

        self._state = APIServerState.STOPPING
        if self._server:
            self._server.should_exit = True
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5.0)

        self._state = APIServerState.STOPPED
        self._server = None
        self._thread = None
        return True

    def status(self) -> Dict[str, Any]:
        """Get server status information."""
        running = self._state == APIServerState.RUNNING
        return {
            "state": self._state.value,
            "host": self.host,
            "port": self.port,
            "url": f"http://{self.host}:{self.port}" if running else None,
        }


__all__ = ["TetherAPIServer", "APIServerState", "PUBLIC_PATHS"]
