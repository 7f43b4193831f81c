"""Pydantic models for file transfer."""

import time

from pydantic import BaseModel


class TransferRequest(BaseModel):
    """Sent to the UI when a file arrives and needs a decision."""
    transfer_id: str
    file_name: str
    file_size: int | None = None


class TransferProgress(BaseModel):
    transfer_id: str
    current_bytes: int
    total_bytes: int


class TransferNotice(BaseModel):
    """Payload of start/complete/rejected/timeout events."""
    transfer_id: str
    file_name: str


class TransferFailure(BaseModel):
    transfer_id: str
    file_name: str
    error: str


class MessagePayload(BaseModel):
    """Body of POST /message."""
    sender_alias: str
    content: str


def make_transfer_id(file_name: str) -> str:
    """Sanitized file name plus a millisecond timestamp."""
    return f"{file_name}-{int(time.time() * 1000)}"
