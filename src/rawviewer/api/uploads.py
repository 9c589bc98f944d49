"""Upload validation: size-capped body reads and decode header parsing."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from starlette.requests import ClientDisconnect

from rawviewer.errors import ClientInputError

if TYPE_CHECKING:
    from fastapi import Request

_INTEGER = re.compile(r"[+-]?[0-9]+")


async def read_upload_body(request: Request, limit: int) -> bytearray:
    """Read the whole request body, refusing anything larger than ``limit`` bytes.

    The accumulated buffer is handed back as-is so a near-limit upload is
    held in memory once.

    Raises:
        ClientInputError: If the body is too large or the client goes away mid-read.
    """
    declared = request.headers.get("content-length", "")
    if declared.isdigit() and int(declared) > limit:
        raise ClientInputError(f"request body too large: {declared} bytes exceeds {limit}")

    body = bytearray()
    try:
        async for chunk in request.stream():
            body.extend(chunk)
            if len(body) > limit:
                raise ClientInputError(f"request body too large: exceeds {limit} bytes")
    except ClientDisconnect as exc:
        raise ClientInputError("client disconnected while sending body") from exc
    return body


def extension_from_filename(name: str) -> str:
    """Return the suffix (with dot) of the last path component, or ``""``."""
    for i in range(len(name) - 1, -1, -1):
        char = name[i]
        if char == ".":
            return name[i:]
        if char in "/\\":
            break
    return ""


def parse_max_dimension(value: str) -> int:
    """Parse the ``X-Max-Dimension`` header; empty means no limit (0).

    Raises:
        ValueError: If the value is not a positive decimal integer.
    """
    if value == "":
        return 0
    if not _INTEGER.fullmatch(value):
        raise ValueError(f"not an integer: {value!r}")
    number = int(value)
    if number <= 0:
        raise ValueError("must be > 0")
    return number
