"""
HTTP transfer server: the endpoints peers talk to.

POST /upload   multipart body: optional "size" field, then file field(s).
               Every file is held back until the local user accepts it.
POST /message  JSON {sender_alias, content}, republished as an event.
GET  /ping     liveness probe.
"""

import asyncio
import logging
import os
import uuid
from pathlib import Path
from urllib.parse import unquote

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import PlainTextResponse, Response
from starlette.requests import ClientDisconnect

from localshare.config import CONFIRM_TIMEOUT, DOWNLOAD_DIR, PROGRESS_INTERVAL, SNIFF_WINDOW
from localshare.events import (
    FILE_RECEIVE_COMPLETE,
    FILE_RECEIVE_ERROR,
    FILE_RECEIVE_START,
    FILE_TRANSFER_REJECTED,
    FILE_TRANSFER_REQUEST,
    FILE_TRANSFER_TIMEOUT,
    MESSAGE_RECEIVED,
    TRANSFER_PROGRESS,
    EventBus,
)
from localshare.errors import ConfirmationChannelError, ProtocolError, TransferTimeout
from localshare.transfer.models import (
    MessagePayload,
    TransferFailure,
    TransferNotice,
    TransferProgress,
    TransferRequest,
    make_transfer_id,
)
from localshare.transfer.multipart import FormField, MultipartReader
from localshare.transfer.pending import PendingTransferRegistry
from localshare.transfer.progress import ProgressThrottle
from localshare.transfer.sniffer import ZIP_MIME, has_extension, infer

logger = logging.getLogger(__name__)

UNSAFE_CHARS = (":", "/", "\\")


def sanitize_file_name(raw_name: str) -> str:
    """Percent-decode a client file name and neutralise path separators."""
    try:
        name = unquote(raw_name, errors="strict")
    except UnicodeDecodeError:
        name = raw_name

    for ch in UNSAFE_CHARS:
        name = name.replace(ch, "_")
    # NUL and other control characters are not valid in file names.
    name = "".join("_" if ord(ch) < 32 or ord(ch) == 127 else ch for ch in name)

    if not name.strip("."):
        return "file"
    return name


def _parse_size(text: str) -> int | None:
    try:
        size = int(text.strip())
    except ValueError:
        logger.debug(f"Ignoring invalid size field: {text!r}")
        return None
    return size if size >= 0 else None


class TransferServer:
    """Receives files and messages from peers."""

    def __init__(
        self,
        events: EventBus,
        registry: PendingTransferRegistry,
        download_dir: Path | str = DOWNLOAD_DIR,
        confirm_timeout: float = CONFIRM_TIMEOUT,
        progress_interval: float = PROGRESS_INTERVAL,
    ) -> None:
        self._events = events
        self._registry = registry
        self._download_dir = Path(download_dir)
        self._confirm_timeout = confirm_timeout
        self._progress_interval = progress_interval

        self.router = APIRouter()
        self.router.add_api_route("/upload", self.handle_upload, methods=["POST"])
        self.router.add_api_route("/message", self.handle_message, methods=["POST"])
        self.router.add_api_route("/ping", self.handle_ping, methods=["GET"])

    @property
    def download_dir(self) -> Path:
        return self._download_dir

    @download_dir.setter
    def download_dir(self, path: Path | str) -> None:
        self._download_dir = Path(path)

    # --- Endpoints ---

    async def handle_ping(self) -> PlainTextResponse:
        return PlainTextResponse("pong")

    async def handle_message(self, payload: MessagePayload) -> Response:
        logger.info(f"Message from {payload.sender_alias} ({len(payload.content)} chars)")
        await self._events.emit(MESSAGE_RECEIVED, payload.model_dump())
        return Response(status_code=200)

    async def handle_upload(self, request: Request) -> Response:
        """
        Process each file part in turn. Rejections and timeouts are reported
        to the local UI only; the sender always gets 200 once we are done.
        """
        try:
            reader = MultipartReader(request.stream(), request.headers.get("content-type", ""))
        except ProtocolError as e:
            raise HTTPException(status_code=400, detail=str(e))

        declared_size: int | None = None
        try:
            while True:
                field = await reader.next_field()
                if field is None:
                    break

                if not field.is_file:
                    # Auxiliary fields; only "size" means anything to us.
                    if field.name == "size":
                        declared_size = _parse_size(await field.text())
                    continue

                if not await self._receive_part(field, declared_size):
                    # Stop at a rejection without reading the rest of the body.
                    break
        except ProtocolError as e:
            logger.warning(f"Malformed upload body: {e}")
            raise HTTPException(status_code=400, detail=str(e))
        except ClientDisconnect:
            logger.warning("Sender disconnected during upload")

        return Response(status_code=200)

    # --- Upload pipeline ---

    async def _receive_part(self, field: FormField, declared_size: int | None) -> bool:
        """
        Confirm, stream and save one file part.

        Returns False when the request should stop here (rejected or timed out).
        """
        file_name = sanitize_file_name(field.filename)
        transfer_id = self._unique_transfer_id(file_name)
        logger.info(f"Receiving file: {file_name} (original: {field.filename})")

        request = TransferRequest(
            transfer_id=transfer_id,
            file_name=file_name,
            file_size=declared_size,
        )
        future = self._registry.register(transfer_id)
        try:
            await self._events.emit(FILE_TRANSFER_REQUEST, request.model_dump(), required=True)
        except ConfirmationChannelError as e:
            logger.error(f"Cannot ask for confirmation of {file_name}: {e}")
            self._registry.discard(transfer_id)
            return True

        notice = TransferNotice(transfer_id=transfer_id, file_name=file_name)
        try:
            accepted = await self._registry.wait_for_response(
                transfer_id, future, timeout=self._confirm_timeout
            )
        except TransferTimeout as e:
            logger.info(str(e))
            await self._events.emit(FILE_TRANSFER_TIMEOUT, notice.model_dump())
            return False

        if not accepted:
            logger.info(f"Transfer {transfer_id} rejected")
            await self._events.emit(FILE_TRANSFER_REJECTED, notice.model_dump())
            return False

        await self._events.emit(FILE_RECEIVE_START, notice.model_dump())
        await self._stream_to_disk(field, transfer_id, file_name, declared_size)
        return True

    async def _stream_to_disk(
        self,
        field: FormField,
        transfer_id: str,
        file_name: str,
        declared_size: int | None,
    ) -> None:
        total = declared_size or 0
        received = 0
        throttle = ProgressThrottle(self._progress_interval)
        temp_path: Path | None = None
        f = None

        try:
            chunk = await self._read_head(field)
            if chunk and not has_extension(file_name):
                sniffed = infer(file_name, chunk)
                # A bare ZIP signature is inconclusive; leave the name alone.
                if sniffed.mime_type != ZIP_MIME and sniffed.file_name != file_name:
                    logger.info(f"Inferred extension for {file_name}: {sniffed.file_name}")
                    file_name = sniffed.file_name

            self._download_dir.mkdir(parents=True, exist_ok=True)
            final_path = self._download_dir / file_name
            # Fixed-length temp name; the final name may already be at the filesystem limit.
            temp_path = self._download_dir / f".{uuid.uuid4().hex[:12]}.part"
            f = await asyncio.to_thread(open, temp_path, "wb")

            while chunk:
                await asyncio.to_thread(f.write, chunk)
                received += len(chunk)
                if throttle.ready():
                    await self._emit_progress(transfer_id, received, max(total, received))
                chunk = await field.read_chunk()

            await asyncio.to_thread(f.close)
            f = None
            await asyncio.to_thread(os.replace, temp_path, final_path)
            temp_path = None

        except (OSError, ValueError) as e:
            logger.error(f"Failed to save {file_name}: {e}")
            await self._fail(transfer_id, file_name, str(e))
            return
        except (ClientDisconnect, ProtocolError) as e:
            logger.error(f"Transfer of {file_name} interrupted after {received} bytes")
            await self._fail(transfer_id, file_name, str(e) or "Sender disconnected")
            raise
        finally:
            self._cleanup_partial(f, temp_path)

        logger.info(f"File saved successfully: {final_path} ({received} bytes total)")
        await self._emit_progress(transfer_id, received, received)
        await self._events.emit(
            FILE_RECEIVE_COMPLETE,
            TransferNotice(transfer_id=transfer_id, file_name=file_name).model_dump(),
        )

    def _unique_transfer_id(self, file_name: str) -> str:
        base = make_transfer_id(file_name)
        transfer_id, n = base, 1
        # Same name within the same millisecond; no await between check and register.
        while transfer_id in self._registry:
            transfer_id = f"{base}-{n}"
            n += 1
        return transfer_id

    @staticmethod
    async def _read_head(field: FormField) -> bytes | None:
        """Collect up to SNIFF_WINDOW bytes so sniffing does not depend on how the body was split."""
        head = b""
        while len(head) < SNIFF_WINDOW:
            chunk = await field.read_chunk()
            if chunk is None:
                break
            head += chunk
        return head or None

    @staticmethod
    def _cleanup_partial(f, temp_path: Path | None) -> None:
        try:
            if f is not None:
                f.close()
            if temp_path is not None:
                temp_path.unlink(missing_ok=True)
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to remove partial file {temp_path}: {e}")

    async def _emit_progress(self, transfer_id: str, current: int, total: int) -> None:
        progress = TransferProgress(
            transfer_id=transfer_id, current_bytes=current, total_bytes=total
        )
        await self._events.emit(TRANSFER_PROGRESS, progress.model_dump())

    async def _fail(self, transfer_id: str, file_name: str, error: str) -> None:
        failure = TransferFailure(transfer_id=transfer_id, file_name=file_name, error=error)
        await self._events.emit(FILE_RECEIVE_ERROR, failure.model_dump())
