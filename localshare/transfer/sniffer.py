"""
Content-based file type inference.

Byte signatures come from filetype. APKs are ZIP archives, so a plain
signature match reports them as application/zip; they are told apart by
looking for the AndroidManifest entry name near the start of the archive.
"""

import os
from typing import NamedTuple

import filetype

from localshare.config import SNIFF_WINDOW

APK_MIME = "application/vnd.android.package-archive"
ZIP_MIME = "application/zip"
PDF_MIME = "application/pdf"
DEFAULT_MIME = "application/octet-stream"

ZIP_SIGNATURE = b"PK\x03\x04"
ANDROID_MANIFEST_MARKER = b"AndroidManifest"

# Android content-URI ids handed over instead of real file names.
PLACEHOLDER_PREFIXES = ("msf_", "document_")


class Sniffed(NamedTuple):
    file_name: str
    mime_type: str


def has_extension(file_name: str) -> bool:
    return bool(os.path.splitext(file_name)[1])


def is_apk(data: bytes) -> bool:
    """ZIP signature plus an AndroidManifest entry in the first SNIFF_WINDOW bytes."""
    return data.startswith(ZIP_SIGNATURE) and ANDROID_MANIFEST_MARKER in data[:SNIFF_WINDOW]


def is_placeholder_name(file_name: str) -> bool:
    return "." not in file_name and file_name.startswith(PLACEHOLDER_PREFIXES)


def _generic_basename(mime_type: str) -> str:
    if mime_type.startswith("image/"):
        return "image"
    if mime_type.startswith("video/"):
        return "video"
    if mime_type.startswith("audio/"):
        return "audio"
    if mime_type == PDF_MIME:
        return "document"
    if mime_type == ZIP_MIME:
        return "archive"
    return "file"


def _with_extension(file_name: str, basename: str, ext: str) -> str:
    if not file_name:
        return f"{basename}.{ext}"
    if has_extension(file_name):
        return file_name
    return f"{file_name}.{ext}"


def infer(file_name: str, data: bytes | None = None) -> Sniffed:
    """
    Infer (file name with extension, MIME type) from a name and optional bytes.

    The name is only amended when it has no extension; an empty name gets a
    category basename such as "image.png" or "app.apk".
    """
    if file_name.lower().endswith(".apk"):
        return Sniffed(file_name, APK_MIME)

    if data:
        if is_apk(data):
            if not file_name:
                return Sniffed("app.apk", APK_MIME)
            return Sniffed(_with_extension(file_name, "app", "apk"), APK_MIME)

        kind = filetype.guess(data[:SNIFF_WINDOW])
        if kind is not None:
            name = _with_extension(file_name, _generic_basename(kind.mime), kind.extension)
            return Sniffed(name, kind.mime)

    return Sniffed(file_name, DEFAULT_MIME)
