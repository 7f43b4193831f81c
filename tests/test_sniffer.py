from localshare.transfer.sniffer import (
    APK_MIME,
    DEFAULT_MIME,
    ZIP_MIME,
    has_extension,
    infer,
    is_apk,
    is_placeholder_name,
)

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64
PDF = b"%PDF-1.4\n" + b"\x00" * 64
ZIP = b"PK\x03\x04" + b"\x14\x00\x00\x00\x08\x00" + b"\x00" * 64
APK = b"PK\x03\x04" + b"\x14\x00\x00\x00\x08\x00" + b"AndroidManifest.xml" + b"\x00" * 64


def test_apk_by_name_is_case_insensitive():
    assert infer("Game.APK") == ("Game.APK", APK_MIME)


def test_apk_detected_from_content():
    name, mime = infer("msf_1000", APK)
    assert name == "msf_1000.apk"
    assert mime == APK_MIME


def test_apk_marker_must_be_within_sniff_window():
    late_marker = b"PK\x03\x04" + b"\x00" * 9000 + b"AndroidManifest"
    assert not is_apk(late_marker)
    assert infer("bundle", late_marker).mime_type != APK_MIME


def test_zip_without_manifest_is_generic_zip():
    name, mime = infer("bundle", ZIP)
    assert mime == ZIP_MIME
    assert name == "bundle.zip"


def test_marker_without_zip_signature_is_not_apk():
    assert not is_apk(b"AndroidManifest" + b"\x00" * 16)


def test_png_gets_extension():
    assert infer("photo", PNG) == ("photo.png", "image/png")


def test_existing_extension_is_kept():
    assert infer("photo.dat", PNG) == ("photo.dat", "image/png")


def test_unnamed_input_gets_category_basename():
    assert infer("", PNG).file_name == "image.png"
    assert infer("", PDF).file_name == "document.pdf"
    assert infer("", ZIP).file_name == "archive.zip"
    assert infer("", APK).file_name == "app.apk"


def test_unknown_content_falls_back_to_octet_stream():
    assert infer("notes", b"just some text") == ("notes", DEFAULT_MIME)


def test_name_only_without_apk_suffix():
    assert infer("report.pdf") == ("report.pdf", DEFAULT_MIME)


def test_has_extension():
    assert has_extension("a.txt")
    assert not has_extension("msf_1000")
    assert not has_extension(".bashrc")


def test_placeholder_names():
    assert is_placeholder_name("msf_1000285299")
    assert is_placeholder_name("document_42")
    assert not is_placeholder_name("msf_1000.jpg")
    assert not is_placeholder_name("holiday")
