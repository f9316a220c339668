"""Shared fixtures: a scripted Drive stub and a client wired to the proxy app."""

import httpx
import pytest

from drive_proxy.config import Config
from drive_proxy.server import create_app

FILE_HEADERS = {
    "Content-Type": "application/pdf",
    "Accept-Ranges": "bytes",
    "X-Upstream-Secret": "do-not-forward",
    "Set-Cookie": "session=1; Path=/",
}


def confirm_page(body: str, *cookies: str, status_code: int = 200) -> httpx.Response:
    """Build a Drive warning page response."""
    headers = [("Content-Type", "text/html; charset=utf-8")]
    headers.extend(("Set-Cookie", cookie) for cookie in cookies)
    return httpx.Response(status_code, headers=headers, content=body.encode("utf-8"))


def file_response(content: bytes = b"hello world", **headers) -> httpx.Response:
    return httpx.Response(200, headers={**FILE_HEADERS, **headers}, content=content)


def redirect_response(location: str, *cookies: str) -> httpx.Response:
    headers = [("Location", location)]
    headers.extend(("Set-Cookie", cookie) for cookie in cookies)
    return httpx.Response(303, headers=headers)


class FailingStream(httpx.AsyncByteStream):
    """Body stream that yields the given chunks and then drops the connection."""

    def __init__(self, *chunks: bytes):
        self.chunks = chunks

    async def __aiter__(self):
        for chunk in self.chunks:
            yield chunk
        raise httpx.ReadError("connection reset by peer")


class DriveStub:
    """Records upstream requests and answers them in order.

    Each entry is either an httpx.Response or a callable taking the request.
    """

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0)
        if callable(response):
            return response(request)
        return response

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


@pytest.fixture
def config():
    """Packaged defaults, isolated from the process environment."""
    return Config(environ={})


@pytest.fixture
def make_client(config):
    def _make(stub: DriveStub) -> httpx.AsyncClient:
        app = create_app(config, transport=stub.transport)
        return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://proxy.test")

    return _make
