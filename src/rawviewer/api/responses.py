"""Binary response type for decode envelopes."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi.responses import Response

if TYPE_CHECKING:
    from starlette.types import Receive, Scope, Send

logger = logging.getLogger(__name__)


class EnvelopeResponse(Response):
    """An uncacheable ``application/octet-stream`` body.

    Once the status line is sent a failed write cannot be reported to the
    client, so it is logged instead of raised.
    """

    media_type = "application/octet-stream"

    def __init__(self, content: bytes, status_code: int = 200) -> None:
        super().__init__(content=content, status_code=status_code, headers={"Cache-Control": "no-store"})

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        except OSError as exc:
            logger.warning("write decode response failed: %s", exc)
