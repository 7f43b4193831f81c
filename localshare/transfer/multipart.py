"""
Pull-style multipart/form-data reader.

python-multipart is a push parser: it fires callbacks as bytes are written
into it. MultipartReader feeds it from the request stream only when the
caller asks for more, so an upload handler can stop and wait (e.g. for a
user decision) before any bytes of a file part are read off the socket.
"""

from collections import deque
from enum import Enum
from typing import AsyncIterable

from python_multipart.exceptions import MultipartParseError
from python_multipart.multipart import MultipartParser, parse_options_header

from localshare.errors import ProtocolError


class _Msg(Enum):
    PART_BEGIN = 1
    HEADERS = 2
    DATA = 3
    PART_END = 4
    END = 5


class FormField:
    """One part of a multipart body, read incrementally."""

    def __init__(self, reader: "MultipartReader", headers: list[tuple[bytes, bytes]]) -> None:
        self._reader = reader
        self._done = False
        self.content_type: str | None = None
        options: dict[bytes, bytes] = {}

        for name, value in headers:
            key = name.lower()
            if key == b"content-disposition":
                _, options = parse_options_header(value)
            elif key == b"content-type":
                self.content_type = value.decode("latin-1")

        self.name = options.get(b"name", b"").decode("utf-8", errors="replace")
        filename = options.get(b"filename")
        # An empty filename is what browsers send for an unused file input.
        self.filename = filename.decode("utf-8", errors="replace") if filename else None

    @property
    def is_file(self) -> bool:
        return self.filename is not None

    async def read_chunk(self) -> bytes | None:
        """Next chunk of this part's body, or None once the part is exhausted."""
        if self._done:
            return None
        kind, payload = await self._reader._next_message()
        if kind is _Msg.DATA:
            return payload
        if kind is _Msg.PART_END:
            self._done = True
            return None
        raise ProtocolError(f"Unexpected {kind.name} inside a form field")

    async def read(self) -> bytes:
        chunks = []
        while True:
            chunk = await self.read_chunk()
            if chunk is None:
                return b"".join(chunks)
            chunks.append(chunk)

    async def text(self) -> str:
        return (await self.read()).decode("utf-8", errors="replace")

    async def drain(self) -> None:
        while await self.read_chunk() is not None:
            pass


class MultipartReader:
    """Iterates over the fields of a multipart/form-data stream."""

    def __init__(self, stream: AsyncIterable[bytes], content_type: str) -> None:
        ctype, options = parse_options_header(content_type or "")
        if ctype.lower() != b"multipart/form-data":
            raise ProtocolError("Expected a multipart/form-data body")
        boundary = options.get(b"boundary")
        if not boundary:
            raise ProtocolError("Missing multipart boundary")

        self._stream = stream.__aiter__()
        self._messages: deque[tuple[_Msg, object]] = deque()
        self._header_field = b""
        self._header_value = b""
        self._headers: list[tuple[bytes, bytes]] = []
        self._current: FormField | None = None
        self._exhausted = False
        self._finished = False

        callbacks = {
            "on_part_begin": self._on_part_begin,
            "on_part_data": self._on_part_data,
            "on_part_end": self._on_part_end,
            "on_header_field": self._on_header_field,
            "on_header_value": self._on_header_value,
            "on_header_end": self._on_header_end,
            "on_headers_finished": self._on_headers_finished,
            "on_end": self._on_end,
        }
        self._parser = MultipartParser(boundary, callbacks)

    # --- Parser callbacks ---

    def _on_part_begin(self) -> None:
        self._headers = []
        self._messages.append((_Msg.PART_BEGIN, None))

    def _on_part_data(self, data: bytes, start: int, end: int) -> None:
        if end > start:
            self._messages.append((_Msg.DATA, bytes(data[start:end])))

    def _on_part_end(self) -> None:
        self._messages.append((_Msg.PART_END, None))

    def _on_header_field(self, data: bytes, start: int, end: int) -> None:
        self._header_field += data[start:end]

    def _on_header_value(self, data: bytes, start: int, end: int) -> None:
        self._header_value += data[start:end]

    def _on_header_end(self) -> None:
        self._headers.append((self._header_field, self._header_value))
        self._header_field = b""
        self._header_value = b""

    def _on_headers_finished(self) -> None:
        self._messages.append((_Msg.HEADERS, self._headers))

    def _on_end(self) -> None:
        self._messages.append((_Msg.END, None))

    # --- Pull interface ---

    async def _next_message(self) -> tuple[_Msg, object]:
        while not self._messages:
            if self._exhausted:
                raise ProtocolError("Unexpected end of multipart body")
            try:
                chunk = await self._stream.__anext__()
            except StopAsyncIteration:
                self._exhausted = True
                self._parser.finalize()
                continue
            if not chunk:
                continue
            try:
                self._parser.write(chunk)
            except MultipartParseError as e:
                raise ProtocolError(f"Malformed multipart body: {e}") from e
        return self._messages.popleft()

    async def next_field(self) -> FormField | None:
        """
        Advance to the next field, skipping whatever is left of the current one.
        Returns None at the end of the body.
        """
        if self._current is not None:
            await self._current.drain()
            self._current = None

        while not self._finished:
            kind, payload = await self._next_message()
            if kind is _Msg.END:
                self._finished = True
            elif kind is _Msg.HEADERS:
                self._current = FormField(self, payload)
                return self._current
        return None
