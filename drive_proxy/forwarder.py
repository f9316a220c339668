"""
Relays the resolved Drive response to the client.

Only the content metadata Drive advertises is passed through; the body is
streamed untouched, chunk by chunk.
"""

from typing import Dict

import httpx
import structlog
from starlette.background import BackgroundTask
from starlette.responses import StreamingResponse
from starlette.types import Send

logger = structlog.get_logger(__name__)

FORWARDED_HEADERS = ("Content-Type", "Content-Length", "Accept-Ranges")


def copy_headers(source: httpx.Response) -> Dict[str, str]:
    headers = {}
    for name in FORWARDED_HEADERS:
        value = source.headers.get(name)
        if value:
            headers[name] = value
    return headers


class ForwardedResponse(StreamingResponse):
    """Streaming response that commits its headers with the first body chunk.

    If the upstream body fails before anything was written the client gets a
    502 instead; once bytes are out the response is simply ended.
    """

    def __init__(self, upstream: httpx.Response, background: BackgroundTask = None):
        self.upstream = upstream
        self.stream_failed = False
        super().__init__(
            self._iter_upstream(),
            status_code=upstream.status_code or 200,
            headers=copy_headers(upstream),
            background=background,
        )

    async def _iter_upstream(self):
        """Yield upstream chunks as they arrive, undecoded."""
        try:
            if self.upstream.is_stream_consumed:
                # body was already read into memory
                yield self.upstream.content
            else:
                async for chunk in self.upstream.aiter_raw():
                    yield chunk
        except (httpx.HTTPError, httpx.StreamError) as e:
            logger.error("stream_error", error=str(e))
            self.stream_failed = True
        finally:
            await self.upstream.aclose()

    async def stream_response(self, send: Send) -> None:
        headers_sent = False
        async for chunk in self.body_iterator:
            if not chunk:
                continue
            if not headers_sent:
                await self._send_start(send, self.status_code, self.raw_headers)
                headers_sent = True
            await send({"type": "http.response.body", "body": chunk, "more_body": True})

        if not headers_sent:
            if self.stream_failed:
                await self._send_start(send, 502, [(b"content-type", b"text/plain")])
            else:
                await self._send_start(send, self.status_code, self.raw_headers)
        await send({"type": "http.response.body", "body": b"", "more_body": False})

    async def _send_start(self, send: Send, status_code: int, raw_headers) -> None:
        await send({"type": "http.response.start", "status": status_code, "headers": raw_headers})


def forward_response(source: httpx.Response, background: BackgroundTask = None) -> ForwardedResponse:
    return ForwardedResponse(source, background=background)
