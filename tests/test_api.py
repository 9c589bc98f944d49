"""Tests for the decode and health endpoints."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING
from unittest.mock import patch

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

import httpx
import numpy as np
import pytest
from fastapi import FastAPI, status

from rawviewer.config import get_settings
from rawviewer.errors import DecodeFailedError, UnsupportedChannelLayoutError
from rawviewer.imaging.decoder import RawDecoder
from rawviewer.imaging.models import DecodeResult, EngineImage, ImageMetadata
from rawviewer.imaging.pool import DecodePool
from rawviewer.main import create_app
from rawviewer.wire.envelope import parse_envelope


class StubDecoder:
    """Records calls and returns a canned result or raises a canned error."""

    def __init__(self, result: DecodeResult | None = None, error: Exception | None = None) -> None:
        self.result = result
        self.error = error
        self.calls: list[tuple[bytes | bytearray, str, int]] = []

    def decode(self, raw_data: bytes | bytearray, extension: str, max_dimension: int) -> DecodeResult:
        self.calls.append((raw_data, extension, max_dimension))
        if self.error is not None:
            raise self.error
        assert self.result is not None
        return self.result


def _small_result(**overrides: object) -> DecodeResult:
    values: dict[str, object] = {
        "width": 2,
        "height": 1,
        "channels": 3,
        "bits_per_sample": 16,
        "pixel_bytes": bytes([1, 2, 3, 4, 5, 6]),
        "metadata": ImageMetadata(make="SIGMA", model="fp", iso=100, width=6064, height=4042),
    }
    values.update(overrides)
    return DecodeResult(**values)  # type: ignore[arg-type]


def _init_app_state(app: FastAPI, decoder: object, **env_overrides: str) -> None:
    """Manually initialize app state (ASGITransport does not trigger lifespan)."""
    with patch.dict(os.environ, env_overrides):
        settings = get_settings()
    app.state.settings = settings
    app.state.decode_pool = DecodePool(settings)
    app.state.decoder = decoder


async def _make_client(app: FastAPI) -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://testserver",
    ) as ac:
        yield ac
    pool: DecodePool = app.state.decode_pool
    pool.shutdown()


@pytest.fixture()
def decoder() -> StubDecoder:
    return StubDecoder(result=_small_result())


@pytest.fixture()
def app(decoder: StubDecoder) -> FastAPI:
    """Create a fresh app instance with default settings and a stub decoder."""
    application = create_app()
    _init_app_state(application, decoder)
    return application


@pytest.fixture()
async def client(app: FastAPI) -> AsyncIterator[httpx.AsyncClient]:
    """Async HTTP client for testing the app."""
    async for ac in _make_client(app):
        yield ac


class TestHealthEndpoint:
    async def test_healthz_returns_ok(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/healthz")
        assert response.status_code == status.HTTP_200_OK
        assert response.text == "ok"
        assert response.headers["content-type"].startswith("text/plain")

    async def test_healthz_allows_any_origin(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/healthz", headers={"Origin": "http://viewer.example"})
        assert response.headers["access-control-allow-origin"] == "*"

    async def test_healthz_cors_without_origin(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/healthz")
        assert response.headers["access-control-allow-origin"] == "*"

    async def test_healthz_does_not_touch_decoder(self, client: httpx.AsyncClient, decoder: StubDecoder) -> None:
        await client.get("/api/healthz")
        assert decoder.calls == []


class TestDecodeMethods:
    async def test_get_not_allowed(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/decode")
        assert response.status_code == status.HTTP_405_METHOD_NOT_ALLOWED

    async def test_put_not_allowed(self, client: httpx.AsyncClient) -> None:
        response = await client.put("/api/decode", content=b"abc")
        assert response.status_code == status.HTTP_405_METHOD_NOT_ALLOWED

    async def test_options_returns_no_content(self, client: httpx.AsyncClient, decoder: StubDecoder) -> None:
        response = await client.options("/api/decode")
        assert response.status_code == status.HTTP_204_NO_CONTENT
        assert response.content == b""
        assert decoder.calls == []

    async def test_browser_preflight_is_answered(self, client: httpx.AsyncClient) -> None:
        response = await client.options(
            "/api/decode",
            headers={
                "Origin": "http://viewer.example",
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "X-Max-Dimension",
            },
        )
        assert response.status_code == status.HTTP_204_NO_CONTENT
        assert response.content == b""
        assert response.headers["access-control-allow-origin"] == "*"
        assert "POST" in response.headers["access-control-allow-methods"]
        assert "X-Max-Dimension" in response.headers["access-control-allow-headers"]

    async def test_rejections_carry_cors_headers(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/decode")
        assert response.status_code == status.HTTP_405_METHOD_NOT_ALLOWED
        assert response.headers["access-control-allow-origin"] == "*"


class TestDecodeEndpoint:
    async def test_returns_envelope(self, client: httpx.AsyncClient) -> None:
        response = await client.post("/api/decode", content=b"\x01\x02\x03")
        assert response.status_code == status.HTTP_200_OK
        assert response.headers["content-type"] == "application/octet-stream"
        assert response.headers["cache-control"] == "no-store"

        envelope = parse_envelope(response.content)
        assert envelope.width == 2
        assert envelope.height == 1
        assert envelope.channels == 3
        assert envelope.bits_per_sample == 16
        assert envelope.pixel_bytes == bytes([1, 2, 3, 4, 5, 6])
        assert envelope.metadata["model"] == "fp"

    async def test_max_dimension_unset_passes_zero(self, client: httpx.AsyncClient, decoder: StubDecoder) -> None:
        await client.post("/api/decode", content=b"raw")
        assert decoder.calls == [(b"raw", "", 0)]

    async def test_empty_max_dimension_passes_zero(self, client: httpx.AsyncClient, decoder: StubDecoder) -> None:
        await client.post("/api/decode", content=b"raw", headers={"X-Max-Dimension": ""})
        assert decoder.calls[0][2] == 0

    async def test_passes_max_dimension(self, client: httpx.AsyncClient, decoder: StubDecoder) -> None:
        await client.post("/api/decode", content=b"raw", headers={"X-Max-Dimension": "2048"})
        assert decoder.calls[0][2] == 2048

    async def test_body_buffer_passed_without_copy(self, client: httpx.AsyncClient, decoder: StubDecoder) -> None:
        await client.post("/api/decode", content=b"raw sensor bytes")
        raw_data = decoder.calls[0][0]
        assert isinstance(raw_data, bytearray)
        assert raw_data == b"raw sensor bytes"

    async def test_passes_extension_from_filename(self, client: httpx.AsyncClient, decoder: StubDecoder) -> None:
        await client.post("/api/decode", content=b"raw", headers={"X-Filename": "shots/DSC_0001.NEF"})
        assert decoder.calls[0][1] == ".NEF"

    async def test_empty_body_rejected(self, client: httpx.AsyncClient, decoder: StubDecoder) -> None:
        response = await client.post("/api/decode", content=b"")
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert "empty" in response.json()["detail"]
        assert decoder.calls == []

    @pytest.mark.parametrize("value", ["-5", "0", "abc", "12px", "1.5"])
    async def test_invalid_max_dimension_rejected(
        self, client: httpx.AsyncClient, decoder: StubDecoder, value: str
    ) -> None:
        response = await client.post("/api/decode", content=b"raw", headers={"X-Max-Dimension": value})
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert "X-Max-Dimension" in response.json()["detail"]
        assert decoder.calls == []

    async def test_decode_failure_is_client_error(self) -> None:
        app = create_app()
        _init_app_state(app, StubDecoder(error=DecodeFailedError("raw decode failed: unsupported file format")))
        async for ac in _make_client(app):
            response = await ac.post("/api/decode", content=b"not a raw file")
            assert response.status_code == status.HTTP_400_BAD_REQUEST
            detail = response.json()["detail"]
            assert detail.startswith("decode failed:")
            assert "unsupported file format" in detail

    async def test_channel_layout_failure_is_client_error(self) -> None:
        app = create_app()
        _init_app_state(app, StubDecoder(error=UnsupportedChannelLayoutError("unsupported channel layout: 1")))
        async for ac in _make_client(app):
            response = await ac.post("/api/decode", content=b"raw")
            assert response.status_code == status.HTTP_400_BAD_REQUEST

    async def test_envelope_failure_is_server_error(self) -> None:
        app = create_app()
        _init_app_state(app, StubDecoder(result=_small_result(width=0)))
        async for ac in _make_client(app):
            response = await ac.post("/api/decode", content=b"raw")
            assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
            assert response.json()["detail"].startswith("encode response failed:")


class TestUploadLimit:
    async def test_declared_oversized_body_rejected(self) -> None:
        decoder = StubDecoder(result=_small_result())
        app = create_app()
        _init_app_state(app, decoder, RAWVIEWER_MAX_UPLOAD_SIZE="8")
        async for ac in _make_client(app):
            response = await ac.post("/api/decode", content=b"x" * 16)
            assert response.status_code == status.HTTP_400_BAD_REQUEST
            assert "too large" in response.json()["detail"]
        assert decoder.calls == []

    async def test_streamed_oversized_body_rejected(self) -> None:
        async def chunks() -> AsyncIterator[bytes]:
            for _ in range(4):
                yield b"x" * 4

        decoder = StubDecoder(result=_small_result())
        app = create_app()
        _init_app_state(app, decoder, RAWVIEWER_MAX_UPLOAD_SIZE="8")
        async for ac in _make_client(app):
            response = await ac.post("/api/decode", content=chunks())
            assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert decoder.calls == []

    async def test_body_at_limit_accepted(self) -> None:
        app = create_app()
        _init_app_state(app, StubDecoder(result=_small_result()), RAWVIEWER_MAX_UPLOAD_SIZE="8")
        async for ac in _make_client(app):
            response = await ac.post("/api/decode", content=b"x" * 8)
            assert response.status_code == status.HTTP_200_OK


class TestDecodePipeline:
    async def test_full_pipeline_with_engine_double(self) -> None:
        samples = np.array([[[1, 2, 3], [4, 5, 6]]], dtype=np.uint16)

        def engine(path: object) -> EngineImage:
            return EngineImage(data=samples, metadata={"camera_make": "SIGMA", "camera_model": "fp", "iso": 100})

        app = create_app()
        _init_app_state(app, RawDecoder(get_settings(), engine=engine))
        async for ac in _make_client(app):
            response = await ac.post("/api/decode", content=b"raw sensor bytes", headers={"X-Filename": "a.dng"})
            assert response.status_code == status.HTTP_200_OK

            envelope = parse_envelope(response.content)
            assert (envelope.width, envelope.height, envelope.channels) == (2, 1, 3)
            assert envelope.bits_per_sample == 16
            assert len(envelope.pixel_bytes) == 12
            np.testing.assert_array_equal(envelope.samples(), samples)
            assert envelope.metadata["make"] == "SIGMA"
            assert envelope.metadata["focalLength"] == 0.0
            assert envelope.metadata["width"] == 2

    async def test_pipeline_downsizes(self) -> None:
        samples = np.arange(8 * 4 * 3, dtype=np.uint16).reshape(4, 8, 3)

        def engine(path: object) -> EngineImage:
            return EngineImage(data=samples)

        app = create_app()
        _init_app_state(app, RawDecoder(get_settings(), engine=engine))
        async for ac in _make_client(app):
            response = await ac.post("/api/decode", content=b"raw", headers={"X-Max-Dimension": "4"})
            envelope = parse_envelope(response.content)
            assert (envelope.width, envelope.height) == (4, 2)
            assert (envelope.metadata["width"], envelope.metadata["height"]) == (8, 4)
