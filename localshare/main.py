"""
LocalShare: FastAPI application entry point.

Serves the peer-facing transfer endpoints (/upload, /message, /ping), the
UI command API under /api and the event WebSocket on /ws, and runs mDNS
advertisement and discovery for the lifetime of the app.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware

from localshare.api.routes import init_routes, router
from localshare.api.websocket import EventBroadcaster
from localshare.config import API_HOST, APP_NAME
from localshare.controller import LocalShareController
from localshare.events import ALIAS_CHANGED, PEERS_UPDATE
from localshare.settings import SettingsStore

logger = logging.getLogger(__name__)


def create_app(
    controller: LocalShareController | None = None,
    start_services: bool = True,
) -> FastAPI:
    """Build the app around `controller` (a default one if omitted)."""
    controller = controller or LocalShareController()

    def initial_state():
        return [
            (ALIAS_CHANGED, controller.settings.alias),
            (PEERS_UPDATE, [p.model_dump() for p in controller.peers()]),
        ]

    broadcaster = EventBroadcaster(initial_state)
    controller.events.subscribe(broadcaster)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Start/stop background services."""
        if not start_services:
            yield
            return

        logger.info("Starting LocalShare services...")
        try:
            await controller.start()
            logger.info(f"LocalShare ready, download directory: {controller.server.download_dir}")
            yield
        except Exception as e:
            logger.error(f"Startup failed: {e}", exc_info=True)
            raise
        finally:
            logger.info("Shutting down LocalShare services...")
            await controller.stop()

    app = FastAPI(title=APP_NAME, version="1.0.0", lifespan=lifespan)
    app.state.controller = controller
    app.state.broadcaster = broadcaster

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:5173", "http://127.0.0.1:5173",
            "http://localhost:1420", "http://127.0.0.1:1420",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    init_routes(controller)
    app.include_router(router)
    app.include_router(controller.server.router)

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        await broadcaster.serve(websocket)

    return app


def main() -> None:
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    store = SettingsStore()
    settings = store.load()
    controller = LocalShareController(settings_store=store)

    uvicorn.run(
        create_app(controller),
        host=API_HOST,
        port=settings.port,
        log_level="info",
    )


if __name__ == "__main__":
    main()
