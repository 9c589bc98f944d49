"""API route definitions."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import APIRouter, HTTPException, Request, status
from fastapi.responses import PlainTextResponse, Response

from rawviewer.api.responses import EnvelopeResponse
from rawviewer.api.schemas import ErrorResponse
from rawviewer.api.uploads import extension_from_filename, parse_max_dimension, read_upload_body
from rawviewer.errors import ClientInputError, DecodeError, EncodingError
from rawviewer.wire.envelope import build_envelope

if TYPE_CHECKING:
    from rawviewer.config import Settings
    from rawviewer.imaging.decoder import Decoder
    from rawviewer.imaging.pool import DecodePool

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_decoder(request: Request) -> Decoder:
    decoder: Decoder = request.app.state.decoder
    return decoder


def _get_decode_pool(request: Request) -> DecodePool:
    pool: DecodePool = request.app.state.decode_pool
    return pool


@router.get(
    "/healthz",
    response_class=PlainTextResponse,
    summary="Liveness probe",
)
async def healthz() -> PlainTextResponse:
    """Report that the process is up."""
    return PlainTextResponse("ok")


@router.options("/decode", include_in_schema=False)
async def decode_preflight() -> Response:
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/decode",
    response_class=EnvelopeResponse,
    responses={
        status.HTTP_200_OK: {"content": {"application/octet-stream": {}}},
        status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
        status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
    summary="Decode a RAW image into a binary envelope",
)
async def decode(request: Request) -> EnvelopeResponse:
    """Decode an uploaded RAW file.

    The request body is the raw file. ``X-Filename`` supplies the extension
    hint and ``X-Max-Dimension`` optionally caps the longer output side.
    """
    settings = _get_settings(request)

    try:
        raw_data = await read_upload_body(request, settings.max_upload_size)
    except ClientInputError as exc:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, f"read request body failed: {exc}") from exc
    if not raw_data:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "request body is empty")

    extension = extension_from_filename(request.headers.get("X-Filename", ""))
    try:
        max_dimension = parse_max_dimension(request.headers.get("X-Max-Dimension", ""))
    except ValueError as exc:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, f"invalid X-Max-Dimension: {exc}") from exc

    decoder = _get_decoder(request)
    pool = _get_decode_pool(request)
    try:
        result = await pool.run(decoder.decode, raw_data, extension, max_dimension)
    except TimeoutError as exc:
        raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, "decoder busy, try again later") from exc
    except DecodeError as exc:
        logger.warning("Rejected %d-byte upload: %s", len(raw_data), exc)
        raise HTTPException(status.HTTP_400_BAD_REQUEST, f"decode failed: {exc}") from exc

    try:
        envelope = build_envelope(
            result.width,
            result.height,
            result.channels,
            result.bits_per_sample,
            result.metadata,
            result.pixel_bytes,
        )
    except EncodingError as exc:
        logger.error("encode response failed: %s", exc)
        raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, f"encode response failed: {exc}") from exc

    return EnvelopeResponse(envelope)
