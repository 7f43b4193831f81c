"""REST API routes: the command interface exposed to the UI."""

import logging

from fastapi import APIRouter, File, Form, HTTPException, UploadFile
from pydantic import BaseModel

from localshare.errors import CommandError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

# Injected by main.py at startup
_controller = None


def init_routes(controller) -> None:
    """Inject the controller into the routes module."""
    global _controller
    _controller = controller


def _command_failed(e: CommandError) -> HTTPException:
    logger.warning(f"Command failed: {e}")
    return HTTPException(status_code=e.status_code, detail=str(e))


# --- Settings ---

class SettingsBody(BaseModel):
    alias: str
    port: int


@router.get("/settings")
async def get_settings():
    return _controller.get_settings().model_dump()


@router.put("/settings")
async def save_settings(body: SettingsBody):
    try:
        settings = await _controller.save_settings(body.alias, body.port)
    except CommandError as e:
        raise _command_failed(e)
    return settings.model_dump()


# --- Peers ---

@router.get("/peers")
async def list_peers():
    """Return the current peer-table snapshot."""
    return {"peers": [p.model_dump() for p in _controller.peers()]}


@router.post("/peers/refresh")
async def refresh_peers():
    try:
        _controller.refresh_peers()
    except CommandError as e:
        raise _command_failed(e)
    return {"status": "refreshing"}


# --- Sending ---

class SendFileBody(BaseModel):
    peer_ip: str
    peer_port: int
    path: str


class SendTextBody(BaseModel):
    peer_ip: str
    peer_port: int
    text: str


@router.post("/send-file")
async def send_file(body: SendFileBody):
    try:
        await _controller.send_file(body.peer_ip, body.peer_port, body.path)
    except CommandError as e:
        raise _command_failed(e)
    return {"status": "sent"}


@router.post("/send-file-bytes")
async def send_file_bytes(
    peer_ip: str = Form(...),
    peer_port: int = Form(...),
    file: UploadFile = File(...),
):
    """Send a file whose bytes the UI uploads to us (e.g. from a content URI)."""
    data = await file.read()
    try:
        await _controller.send_file_bytes(peer_ip, peer_port, file.filename or "", data)
    except CommandError as e:
        raise _command_failed(e)
    return {"status": "sent"}


@router.post("/send-text")
async def send_text(body: SendTextBody):
    try:
        await _controller.send_text(body.peer_ip, body.peer_port, body.text)
    except CommandError as e:
        raise _command_failed(e)
    return {"status": "sent"}


# --- Incoming transfer decisions ---

class RespondBody(BaseModel):
    accepted: bool


@router.post("/transfers/{transfer_id}/respond")
async def respond_to_transfer(transfer_id: str, body: RespondBody):
    try:
        _controller.respond_to_transfer(transfer_id, body.accepted)
    except CommandError as e:
        raise _command_failed(e)
    return {"status": "accepted" if body.accepted else "rejected"}


@router.post("/transfers/{transfer_id}/accept")
async def accept_transfer(transfer_id: str):
    return await respond_to_transfer(transfer_id, RespondBody(accepted=True))


@router.post("/transfers/{transfer_id}/reject")
async def reject_transfer(transfer_id: str):
    return await respond_to_transfer(transfer_id, RespondBody(accepted=False))
