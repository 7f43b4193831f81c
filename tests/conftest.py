import asyncio
import socket
from contextlib import asynccontextmanager

import httpx
import pytest
import uvicorn
from fastapi import FastAPI

from localshare.events import FILE_TRANSFER_REQUEST, EventBus
from localshare.transfer.pending import PendingTransferRegistry
from localshare.transfer.server import TransferServer


class EventRecorder:
    """EventBus subscriber that keeps everything it sees."""

    def __init__(self) -> None:
        self.events: list[tuple[str, object]] = []

    async def __call__(self, event: str, data) -> None:
        self.events.append((event, data))

    def names(self) -> list[str]:
        return [name for name, _ in self.events]

    def named(self, name: str) -> list:
        return [data for event, data in self.events if event == name]


def auto_respond(events: EventBus, registry: PendingTransferRegistry, accepted: bool = True) -> None:
    """Answer every confirmation request immediately."""

    async def responder(event: str, data) -> None:
        if event == FILE_TRANSFER_REQUEST:
            registry.respond(data["transfer_id"], accepted)

    events.subscribe(responder)


def free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@asynccontextmanager
async def serve_app(app: FastAPI):
    """Run `app` under uvicorn on a loopback port for the duration of the block."""
    port = free_port()
    config = uvicorn.Config(
        app,
        host="127.0.0.1",
        port=port,
        log_level="warning",
        lifespan="off",
        http="h11",
        loop="asyncio",
    )
    server = uvicorn.Server(config)
    task = asyncio.create_task(server.serve())
    try:
        while not server.started:
            if task.done():
                task.result()
            await asyncio.sleep(0.01)
        yield port
    finally:
        server.should_exit = True
        await task


@pytest.fixture
def events() -> EventBus:
    return EventBus()


@pytest.fixture
def recorder(events) -> EventRecorder:
    rec = EventRecorder()
    events.subscribe(rec)
    return rec


@pytest.fixture
def registry() -> PendingTransferRegistry:
    return PendingTransferRegistry()


@pytest.fixture
def download_dir(tmp_path):
    return tmp_path / "downloads"


@pytest.fixture
def server(events, recorder, registry, download_dir) -> TransferServer:
    return TransferServer(
        events, registry, download_dir, confirm_timeout=5, progress_interval=0
    )


@pytest.fixture
async def http(server):
    app = FastAPI()
    app.include_router(server.router)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://peer") as client:
        yield client
