import base64

import pytest

from chat_gateway import image_codec
from chat_gateway.image_codec import MAX_IMAGE_BYTES


def test_valid_small_jpeg_passes_unchanged(jpeg_data_uri):
    result = image_codec.validate(jpeg_data_uri)
    assert result
    assert result.error is None
    assert image_codec.normalize(jpeg_data_uri) == jpeg_data_uri


@pytest.mark.parametrize(
    "value, fragment",
    [
        (None, "empty"),
        ("   ", "empty"),
        ("https://example.com/cat.png", "data URI"),
        ("data:image/svg;base64,AAAA", "malformed"),
        ("data:image/png;base64,@@@@", "malformed"),
    ],
)
def test_validate_rejects_malformed_input(value, fragment):
    result = image_codec.validate(value)
    assert not result
    assert fragment in result.error
    assert not result.oversized


def test_validate_rejects_bad_base64_padding():
    # Grammar-valid characters, but not a valid base64 length
    result = image_codec.validate("data:image/png;base64,AAAAA")
    assert not result
    assert "base64" in result.error


def test_validate_rejects_magic_mismatch(jpeg_bytes, data_uri):
    result = image_codec.validate(data_uri(jpeg_bytes, "png"))
    assert not result
    assert "png" in result.error


def test_validate_rejects_payload_shorter_than_four_bytes(data_uri):
    result = image_codec.validate(data_uri(b"\xff\xd8\xff"))
    assert not result


def test_validate_flags_oversized_image(data_uri):
    payload = b"\xff\xd8\xff\xe0" + b"\x00" * MAX_IMAGE_BYTES
    result = image_codec.validate(data_uri(payload))
    assert not result
    assert result.oversized


def test_validate_accepts_exactly_the_limit(data_uri):
    payload = b"\xff\xd8\xff\xe0" + b"\x00" * (MAX_IMAGE_BYTES - 4)
    assert image_codec.validate(data_uri(payload))


def test_jpg_alias_is_accepted(jpeg_bytes, data_uri):
    assert image_codec.validate(data_uri(jpeg_bytes, "jpg"))


@pytest.mark.parametrize(
    "data, expected",
    [
        (b"\xff\xd8\xff\xe0rest", "jpeg"),
        (b"\x89PNG\r\n\x1a\n", "png"),
        (b"\x89PNG", None),
        (b"RIFF\x00\x00\x00\x00WEBP", "webp"),
        (b"GIF89a...", "gif"),
        (b"GIF87a", "gif"),
        (b"BM\x00\x00", "bmp"),
        (b"II*\x00", "tiff"),
        (b"MM\x00*", "tiff"),
        (b"BM", None),
        (b"\x00\x01\x02\x03", None),
    ],
)
def test_detect_format(data, expected):
    assert image_codec.detect_format(data) == expected


def test_normalize_blank_is_none():
    assert image_codec.normalize("") is None
    assert image_codec.normalize("  \n") is None
    assert image_codec.normalize(None) is None


def test_normalize_adds_prefix_to_bare_payload(jpeg_bytes):
    bare = base64.b64encode(jpeg_bytes).decode("ascii")
    normalized = image_codec.normalize(bare)
    assert normalized == f"data:image/jpeg;base64,{bare}"
    assert image_codec.validate(normalized)


def test_normalize_leaves_unknown_bare_payload():
    bare = base64.b64encode(b"not an image at all").decode("ascii")
    assert image_codec.normalize(bare) == bare


def test_normalize_canonicalizes_format_token(png_rgba_bytes):
    payload = base64.b64encode(png_rgba_bytes).decode("ascii")
    normalized = image_codec.normalize(f"data:image/PNG;base64,{payload}")
    assert normalized == f"data:image/png;base64,{payload}"

    jpg = image_codec.normalize(f"data:image/JPG,{payload}")
    assert jpg.startswith("data:image/jpeg;base64,")


@pytest.mark.parametrize(
    "value",
    [
        "data:image/JPG;base64,abc",
        "data:image/Png,@@@",
        "plain text, with a comma, or two",
        "not-base64!",
        "data:text/plain;base64,QUJD",
    ],
)
def test_normalize_is_idempotent(value):
    once = image_codec.normalize(value)
    assert image_codec.normalize(once) == once


def test_build_data_uri_sniffs_format(png_rgba_bytes):
    uri = image_codec.build_data_uri(png_rgba_bytes)
    assert uri.startswith("data:image/png;base64,")
    assert image_codec.decode(uri) == png_rgba_bytes


def test_build_data_uri_unknown_format_raises():
    with pytest.raises(ValueError):
        image_codec.build_data_uri(b"garbage bytes")


def test_decode_requires_comma():
    with pytest.raises(ValueError):
        image_codec.decode("data:image/png;base64")
