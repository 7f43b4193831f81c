"""
Outbound transfers: push a file or a text message to a peer's TransferServer.
"""

import asyncio
import logging
import os
from pathlib import Path
from typing import AsyncIterator, BinaryIO

import aiohttp

from localshare.config import CHUNK_SIZE, PROGRESS_INTERVAL, REQUEST_TIMEOUT
from localshare.errors import NetworkError
from localshare.events import TRANSFER_PROGRESS, EventBus
from localshare.transfer.models import MessagePayload, TransferProgress
from localshare.transfer.progress import ProgressThrottle
from localshare.transfer.sniffer import infer

logger = logging.getLogger(__name__)


def peer_url(peer_ip: str, peer_port: int, path: str) -> str:
    host = f"[{peer_ip}]" if ":" in peer_ip else peer_ip
    return f"http://{host}:{peer_port}{path}"


class TransferClient:
    """Sends files and messages over HTTP. No retries; callers decide."""

    def __init__(
        self,
        events: EventBus | None = None,
        timeout: float = REQUEST_TIMEOUT,
        chunk_size: int = CHUNK_SIZE,
        progress_interval: float = PROGRESS_INTERVAL,
    ) -> None:
        self._events = events
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._chunk_size = chunk_size
        self._progress_interval = progress_interval

    async def send_file(self, peer_ip: str, peer_port: int, file_path: str | Path) -> None:
        """
        Stream a file from disk as a multipart upload.

        Progress events use the file name as transfer id on this side.
        Raises NetworkError with a user-facing message on any failure.
        """
        url = peer_url(peer_ip, peer_port, "/upload")
        path = Path(file_path)
        file_name = path.name
        if not file_name:
            raise NetworkError("Invalid file name")

        logger.info(f"Sending {path} -> {url}")
        try:
            f = open(path, "rb")
        except OSError as e:
            raise NetworkError(f"Failed to open file: {e}") from e

        try:
            file_size = os.fstat(f.fileno()).st_size
            form = aiohttp.FormData()
            form.add_field("size", str(file_size))
            form.add_field(
                "file",
                self._read_chunks(f, file_name, file_size),
                filename=file_name,
                content_type=infer(file_name).mime_type,
            )
            status = await self._post(url, data=form)
        finally:
            f.close()

        if not 200 <= status < 300:
            raise NetworkError(f"Upload failed with status: {status}")

        await self._emit_progress(file_name, file_size, file_size)
        logger.info(f"Sent {file_name} ({file_size} bytes)")

    async def send_file_bytes(
        self, peer_ip: str, peer_port: int, file_name: str, data: bytes
    ) -> None:
        """Upload an in-memory payload. The MIME type also looks at the bytes."""
        url = peer_url(peer_ip, peer_port, "/upload")
        file_size = len(data)
        logger.info(f"Sending {file_name} ({file_size} bytes) -> {url}")

        form = aiohttp.FormData()
        form.add_field("size", str(file_size))
        form.add_field(
            "file",
            data,
            filename=file_name,
            content_type=infer(file_name, data).mime_type,
        )
        status = await self._post(url, data=form)
        if not 200 <= status < 300:
            raise NetworkError(f"Upload failed with status: {status}")

        await self._emit_progress(file_name, file_size, file_size)

    async def send_text(
        self, peer_ip: str, peer_port: int, text: str, sender_alias: str
    ) -> None:
        url = peer_url(peer_ip, peer_port, "/message")
        payload = MessagePayload(sender_alias=sender_alias, content=text)
        status = await self._post(url, json=payload.model_dump())
        if not 200 <= status < 300:
            raise NetworkError(f"Message failed with status: {status}")

    async def _post(self, url: str, **kwargs) -> int:
        try:
            async with aiohttp.ClientSession(timeout=self._timeout) as session:
                async with session.post(url, **kwargs) as resp:
                    logger.info(f"Response status: {resp.status}")
                    return resp.status
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            logger.error(f"Request to {url} failed: {e}")
            raise NetworkError(f"Request failed: {e}") from e

    async def _read_chunks(
        self, f: BinaryIO, transfer_id: str, total: int
    ) -> AsyncIterator[bytes]:
        uploaded = 0
        throttle = ProgressThrottle(self._progress_interval)
        while True:
            chunk = await asyncio.to_thread(f.read, self._chunk_size)
            if not chunk:
                break
            uploaded += len(chunk)
            if throttle.ready():
                await self._emit_progress(transfer_id, uploaded, total)
            yield chunk

    async def _emit_progress(self, transfer_id: str, current: int, total: int) -> None:
        if self._events is None:
            return
        progress = TransferProgress(
            transfer_id=transfer_id, current_bytes=current, total_bytes=total
        )
        await self._events.emit(TRANSFER_PROGRESS, progress.model_dump())
