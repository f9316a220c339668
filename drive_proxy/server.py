"""
HTTP surface of the proxy: GET /<anything>?id=<fileId> streams the Drive file.
"""

import httpx
import structlog
from fastapi import FastAPI, Request
from fastapi.exception_handlers import http_exception_handler
from fastapi.responses import PlainTextResponse, Response
from starlette.background import BackgroundTask
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import Config
from .fetcher import DriveFetcher
from .forwarder import forward_response

logger = structlog.get_logger(__name__)

# non-GET methods are routed here too so they get the 404 below instead of a 405
ROUTED_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def send_error(status_code: int, message: str) -> Response:
    return PlainTextResponse(f"Error: {message}", status_code=status_code)


def method_not_supported() -> Response:
    return PlainTextResponse("Only GET requests are supported.", status_code=404)


def first_query_value(request: Request, name: str):
    values = request.query_params.getlist(name)
    return values[0] if values else None


def get_file_id(request: Request):
    """Return the first id query parameter, falling back to fileId only when id is absent."""
    file_id = first_query_value(request, "id")
    if file_id is None:
        file_id = first_query_value(request, "fileId")
    return file_id


async def stream_drive_file(file_id: str, config: Config, transport: httpx.AsyncBaseTransport = None) -> Response:
    """Resolve the Drive download and hand the final response to the forwarder.

    The fetcher belongs to this request only and is closed once the body has
    been relayed.
    """
    fetcher = DriveFetcher.from_config(config, transport=transport)
    try:
        upstream = await fetcher.resolve(file_id)
    except Exception:
        await fetcher.aclose()
        raise

    logger.info(
        "drive_response",
        file_id=file_id,
        status_code=upstream.status_code,
        content_type=upstream.headers.get("content-type"),
        content_length=upstream.headers.get("content-length"),
    )
    return forward_response(upstream, background=BackgroundTask(fetcher.aclose))


def create_app(config: Config = None, transport: httpx.AsyncBaseTransport = None) -> FastAPI:
    """Build the proxy application.

    Args:
        config: Loaded configuration. Defaults to config.yaml plus environment overrides.
        transport: Optional httpx transport used for every upstream request.
    """
    if config is None:
        config = Config()

    # every path belongs to the proxy, so the generated docs routes are disabled
    app = FastAPI(title="Drive Proxy", docs_url=None, redoc_url=None, openapi_url=None)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        # verbs outside ROUTED_METHODS fail the route match with a 405
        if exc.status_code == 405:
            logger.info("request_rejected", method=request.method, path=request.url.path, reason="method")
            return method_not_supported()
        return await http_exception_handler(request, exc)

    @app.api_route("/{path:path}", methods=ROUTED_METHODS)
    async def handle_stream_request(request: Request, path: str):
        try:
            if request.method != "GET":
                logger.info("request_rejected", method=request.method, path=request.url.path, reason="method")
                return method_not_supported()

            file_id = get_file_id(request)
            if not file_id:
                logger.info("request_rejected", method=request.method, path=request.url.path, reason="missing_file_id")
                return PlainTextResponse(
                    "Missing google drive file id (use query parameter id=<fileId>).",
                    status_code=400,
                )

            logger.info("request_received", path=request.url.path, file_id=file_id)
            return await stream_drive_file(file_id, config, transport)
        except Exception as e:
            logger.error("request_failed", path=request.url.path, error=str(e), exc_info=True)
            return send_error(500, str(e))

    return app
