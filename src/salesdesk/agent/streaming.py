"""Forwards the model's answer to the HTTP client as it is generated."""

import logging
from typing import (
    Any,
    AsyncIterator,
)

logger = logging.getLogger(__name__)


async def _close(chunks: Any) -> None:
    aclose = getattr(chunks, "aclose", None)
    if aclose is not None:
        await aclose()


async def stream_answer(chunks: AsyncIterator[str], fallback: str) -> AsyncIterator[str]:
    """
    Yield each non-empty chunk of *chunks* in arrival order.

    If the model produced no text at all, *fallback* is written instead.  Output already sent cannot
    be taken back, so a provider failure mid-answer ends the stream after logging.  When the client
    goes away the server closes or cancels this generator; the upstream stream is closed and the
    abandoned answer is logged.
    """
    sent = 0
    finished = False
    try:
        async for chunk in chunks:
            if not chunk:
                continue
            sent += 1
            yield chunk
        if not sent:
            yield fallback
        finished = True
    except Exception:  # pylint: disable=broad-except
        finished = True
        logger.exception("Model stream failed after %d chunk(s)", sent)
    finally:
        if not finished:
            logger.info("Client disconnected; stream abandoned after %d chunk(s)", sent)
        await _close(chunks)
