"""Shared fixtures: fake provider clients and generated images."""

import base64
import io
import random
import struct
import zlib

import pytest
from PIL import Image


class FakeClient:
    """Provider client that records payloads and returns a canned reply."""

    def __init__(self, response=None, error=None):
        self.payloads = []
        self.response = response if response is not None else completion()
        self.error = error

    @property
    def calls(self) -> int:
        return len(self.payloads)

    def chat_completions(self, payload):
        self.payloads.append(payload)
        if self.error is not None:
            raise self.error
        return self.response


def completion(content="Hello there", reasoning=None, finish_reason="stop", model="test-model", **extra):
    message = {"role": "assistant", "content": content}
    if reasoning is not None:
        message["reasoning_content"] = reasoning
    data = {
        "id": "cmpl-123",
        "object": "chat.completion",
        "created": 1700000000,
        "model": model,
        "choices": [{"index": 0, "message": message, "finish_reason": finish_reason}],
        "usage": {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15},
    }
    data.update(extra)
    return data


def encode_image(img: Image.Image, fmt: str = "JPEG", **params) -> bytes:
    output = io.BytesIO()
    img.save(output, format=fmt, **params)
    return output.getvalue()


@pytest.fixture()
def make_client():
    """Factory for FakeClient instances."""
    return FakeClient


@pytest.fixture()
def make_completion():
    """Factory for OpenAI-style completion dicts."""
    return completion


@pytest.fixture()
def jpeg_bytes() -> bytes:
    """A small (well under 5KB) solid-colour JPEG."""
    return encode_image(Image.new("RGB", (32, 32), (200, 30, 30)), quality=85)


@pytest.fixture()
def png_rgba_bytes() -> bytes:
    img = Image.new("RGBA", (48, 24), (0, 128, 255, 128))
    return encode_image(img, "PNG")


@pytest.fixture()
def noise_png():
    """Factory for incompressible random-noise PNG images."""

    def _make(width: int = 400, height: int = 400, seed: int = 7) -> bytes:
        raw = random.Random(seed).randbytes(width * height * 3)
        return encode_image(Image.frombytes("RGB", (width, height), raw), "PNG")

    return _make


@pytest.fixture()
def data_uri():
    """Factory turning raw bytes into a ``data:image/<fmt>;base64,...`` string."""

    def _make(data: bytes, fmt: str = "jpeg") -> str:
        return f"data:image/{fmt};base64,{base64.b64encode(data).decode('ascii')}"

    return _make


@pytest.fixture()
def jpeg_data_uri(jpeg_bytes, data_uri) -> str:
    return data_uri(jpeg_bytes)


def _png_chunk(tag: bytes, data: bytes) -> bytes:
    return struct.pack(">I", len(data)) + tag + data + struct.pack(">I", zlib.crc32(tag + data) & 0xFFFFFFFF)


@pytest.fixture()
def huge_png():
    """Factory for a PNG whose header declares far more pixels than Pillow will open.

    ``padding`` bytes of a private chunk make the file as large as needed.
    """

    def _make(padding: int = 64 * 1024, width: int = 20000, height: int = 20000) -> bytes:
        header = struct.pack(">IIBBBBB", width, height, 8, 2, 0, 0, 0)
        return (
            b"\x89PNG\r\n\x1a\n"
            + _png_chunk(b"IHDR", header)
            + _png_chunk(b"prIv", b"\x00" * padding)
            + _png_chunk(b"IDAT", b"")
            + _png_chunk(b"IEND", b"")
        )

    return _make
