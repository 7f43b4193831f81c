import asyncio

import pytest

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
from localshare.transfer.pending import PendingTransferRegistry
from localshare.transfer.server import TransferServer, sanitize_file_name

from conftest import auto_respond

APK = b"PK\x03\x04" + b"\x14\x00\x00\x00\x08\x00" + b"AndroidManifest.xml" + b"\x00" * 2048
PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 256
ZIP = b"PK\x03\x04" + b"\x14\x00\x00\x00\x08\x00" + b"\x00" * 256


def upload(http, *files, size=None):
    data = {"size": str(size)} if size is not None else None
    return http.post(
        "/upload",
        data=data,
        files=[("file", (name, payload, "application/octet-stream")) for name, payload in files],
    )


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("image:1000.jpg", "image_1000.jpg"),
        ("image%3A1000.jpg", "image_1000.jpg"),
        ("../../etc/passwd", ".._.._etc_passwd"),
        ("dir\\file.txt", "dir_file.txt"),
        ("..", "file"),
        ("", "file"),
        ("bad%ff.txt", "bad%ff.txt"),
        ("plain.txt", "plain.txt"),
        ("a%00b.txt", "a_b.txt"),
        ("tab\there.txt", "tab_here.txt"),
    ],
)
def test_sanitize_file_name(raw, expected):
    assert sanitize_file_name(raw) == expected


async def test_ping(http):
    resp = await http.get("/ping")
    assert resp.status_code == 200
    assert resp.text == "pong"


async def test_message_is_published(http, recorder, download_dir):
    resp = await http.post("/message", json={"sender_alias": "Bob", "content": "hello"})

    assert resp.status_code == 200
    assert recorder.named(MESSAGE_RECEIVED) == [{"sender_alias": "Bob", "content": "hello"}]
    assert not download_dir.exists()


async def test_malformed_message(http, recorder):
    resp = await http.post("/message", content=b"{not json", headers={"content-type": "application/json"})
    assert resp.status_code == 422
    assert recorder.events == []


async def test_upload_requires_multipart(http):
    resp = await http.post("/upload", json={"file": "nope"})
    assert resp.status_code == 400


async def test_accepted_apk_gets_extension(http, events, registry, recorder, download_dir):
    auto_respond(events, registry)

    resp = await upload(http, ("msf_1000", APK), size=len(APK))

    assert resp.status_code == 200
    saved = download_dir / "msf_1000.apk"
    assert saved.read_bytes() == APK
    assert not list(download_dir.glob("*.part"))

    request = recorder.named(FILE_TRANSFER_REQUEST)[0]
    assert request["file_name"] == "msf_1000"
    assert request["file_size"] == len(APK)
    assert request["transfer_id"].startswith("msf_1000-")

    complete = recorder.named(FILE_RECEIVE_COMPLETE)
    assert complete == [{"transfer_id": request["transfer_id"], "file_name": "msf_1000.apk"}]
    assert recorder.names().index(FILE_RECEIVE_START) < recorder.names().index(FILE_RECEIVE_COMPLETE)
    assert len(registry) == 0


async def test_png_without_extension_is_renamed(http, events, registry, download_dir):
    auto_respond(events, registry)
    await upload(http, ("photo", PNG))
    assert (download_dir / "photo.png").read_bytes() == PNG


async def test_plain_zip_keeps_its_name(http, events, registry, download_dir):
    auto_respond(events, registry)
    await upload(http, ("bundle", ZIP))
    assert (download_dir / "bundle").read_bytes() == ZIP


async def test_existing_extension_is_kept(http, events, registry, download_dir):
    auto_respond(events, registry)
    await upload(http, ("notes.dat", PNG))
    assert (download_dir / "notes.dat").exists()


async def test_unsafe_name_is_sanitized(http, events, registry, recorder, download_dir):
    auto_respond(events, registry)
    await upload(http, ("image:1000.jpg", b"jpeg-ish"))

    assert (download_dir / "image_1000.jpg").read_bytes() == b"jpeg-ish"
    assert recorder.named(FILE_TRANSFER_REQUEST)[0]["file_name"] == "image_1000.jpg"


async def test_existing_file_is_overwritten(http, events, registry, download_dir):
    auto_respond(events, registry)
    download_dir.mkdir()
    (download_dir / "a.txt").write_bytes(b"old contents that are longer")

    await upload(http, ("a.txt", b"new"))
    assert (download_dir / "a.txt").read_bytes() == b"new"


async def test_rejection_writes_nothing(http, events, registry, recorder, download_dir):
    auto_respond(events, registry, accepted=False)

    resp = await upload(http, ("a.txt", b"data"), ("b.txt", b"more"))

    assert resp.status_code == 200
    assert not download_dir.exists()
    rejected = recorder.named(FILE_TRANSFER_REJECTED)
    assert [r["file_name"] for r in rejected] == ["a.txt"]
    # Processing stops at the first rejected part.
    assert len(recorder.named(FILE_TRANSFER_REQUEST)) == 1
    assert FILE_RECEIVE_START not in recorder.names()


async def test_unanswered_request_times_out(recorder, events, download_dir):
    import httpx
    from fastapi import FastAPI

    registry = PendingTransferRegistry()
    server = TransferServer(events, registry, download_dir, confirm_timeout=0.05)
    app = FastAPI()
    app.include_router(server.router)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://peer") as http:
        resp = await upload(http, ("a.txt", b"data"))

    assert resp.status_code == 200
    assert [t["file_name"] for t in recorder.named(FILE_TRANSFER_TIMEOUT)] == ["a.txt"]
    assert len(registry) == 0
    assert not download_dir.exists()


async def test_no_confirmation_listener_skips_file(download_dir):
    import httpx
    from fastapi import FastAPI

    async def broken(event, data):
        raise RuntimeError("ui gone")

    events = EventBus()
    events.subscribe(broken)
    registry = PendingTransferRegistry()
    server = TransferServer(events, registry, download_dir, confirm_timeout=5)
    app = FastAPI()
    app.include_router(server.router)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://peer") as http:
        resp = await asyncio.wait_for(upload(http, ("a.txt", b"data")), timeout=2)

    assert resp.status_code == 200
    assert len(registry) == 0
    assert not download_dir.exists()


async def test_every_accepted_part_is_saved(http, events, registry, recorder, download_dir):
    auto_respond(events, registry)

    await upload(http, ("a.txt", b"first"), ("b.txt", b"second"))

    assert (download_dir / "a.txt").read_bytes() == b"first"
    assert (download_dir / "b.txt").read_bytes() == b"second"
    assert len(recorder.named(FILE_RECEIVE_COMPLETE)) == 2


async def test_progress_is_monotonic_and_ends_complete(http, events, registry, recorder):
    auto_respond(events, registry)
    payload = b"x" * 300_000

    await upload(http, ("big.bin", payload), size=len(payload))

    progress = recorder.named(TRANSFER_PROGRESS)
    assert progress
    currents = [p["current_bytes"] for p in progress]
    assert currents == sorted(currents)
    assert all(p["current_bytes"] <= p["total_bytes"] for p in progress)
    assert progress[-1]["current_bytes"] == progress[-1]["total_bytes"] == len(payload)


async def test_write_failure_is_reported(events, recorder, registry, tmp_path):
    import httpx
    from fastapi import FastAPI

    blocker = tmp_path / "not-a-dir"
    blocker.write_text("")
    auto_respond(events, registry)
    server = TransferServer(events, registry, blocker, confirm_timeout=5)
    app = FastAPI()
    app.include_router(server.router)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://peer") as http:
        resp = await upload(http, ("a.txt", b"data"))

    assert resp.status_code == 200
    errors = recorder.named(FILE_RECEIVE_ERROR)
    assert [e["file_name"] for e in errors] == ["a.txt"]
    assert errors[0]["error"]
    assert FILE_RECEIVE_COMPLETE not in recorder.names()


async def test_size_field_is_optional(http, events, registry, recorder, download_dir):
    auto_respond(events, registry)

    await upload(http, ("a.txt", b"data"))

    assert recorder.named(FILE_TRANSFER_REQUEST)[0]["file_size"] is None
    assert (download_dir / "a.txt").read_bytes() == b"data"


def test_download_dir_can_be_changed(server, tmp_path):
    server.download_dir = str(tmp_path / "elsewhere")
    assert server.download_dir == tmp_path / "elsewhere"


async def test_nul_in_name_is_saved_under_safe_name(http, events, registry, recorder, download_dir):
    auto_respond(events, registry)

    resp = await upload(http, ("a%00b.txt", b"data"), ("next.txt", b"more"))

    assert resp.status_code == 200
    assert (download_dir / "a_b.txt").read_bytes() == b"data"
    assert (download_dir / "next.txt").read_bytes() == b"more"
    assert FILE_RECEIVE_ERROR not in recorder.names()


async def test_apk_detected_when_body_arrives_in_small_pieces(http, events, registry, download_dir):
    auto_respond(events, registry)
    boundary = "splitboundary"
    body = (
        f"--{boundary}\r\n"
        'Content-Disposition: form-data; name="file"; filename="msf_2000"\r\n'
        "Content-Type: application/octet-stream\r\n\r\n"
    ).encode() + APK + f"\r\n--{boundary}--\r\n".encode()

    async def trickle():
        for i in range(0, len(body), 3):
            yield body[i:i + 3]

    resp = await http.post(
        "/upload",
        content=trickle(),
        headers={"content-type": f"multipart/form-data; boundary={boundary}"},
    )

    assert resp.status_code == 200
    assert (download_dir / "msf_2000.apk").read_bytes() == APK


async def test_name_at_length_limit_is_saved(http, events, registry, download_dir):
    auto_respond(events, registry)
    name = "n" * 251 + ".txt"

    await upload(http, (name, b"data"))

    assert (download_dir / name).read_bytes() == b"data"
    assert [p.name for p in download_dir.iterdir()] == [name]


def test_colliding_transfer_ids_get_a_suffix(server, registry, monkeypatch):
    import localshare.transfer.server as server_module

    monkeypatch.setattr(server_module, "make_transfer_id", lambda name: f"{name}-1000")

    async def scenario():
        registry.register("a.txt-1000")
        registry.register("a.txt-1000-1")
        return server._unique_transfer_id("a.txt")

    assert asyncio.run(scenario()) == "a.txt-1000-2"
