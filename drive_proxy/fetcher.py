"""
Fetches a file from the Drive export endpoint.

Drive answers large or unscannable files with an HTML warning page instead of
the payload. The page carries a confirm token that, together with the cookies
issued alongside it, unlocks the real download on a second request.
"""

import re
from typing import Iterable, Optional

import httpx
import structlog

from .errors import ConfirmationTokenError, UpstreamTimeoutError

logger = structlog.get_logger(__name__)

DRIVE_EXPORT_BASE = "https://drive.google.com/uc?export=download"
CONFIRM_TOKEN_PATTERN = re.compile(r"confirm=([0-9A-Za-z_-]+)")
HTML_CONTENT_TYPE = "text/html"
DEFAULT_TIMEOUT = 20.0


def is_confirm_page(response: httpx.Response) -> bool:
    """Check whether Drive returned its warning page instead of the file."""
    content_type = response.headers.get("content-type", "")
    return content_type.startswith(HTML_CONTENT_TYPE)


def extract_confirm_token(body: str) -> Optional[str]:
    """Return the first confirm token in a warning page body, if any."""
    match = CONFIRM_TOKEN_PATTERN.search(body)
    return match.group(1) if match else None


def build_cookie_header(cookies: Optional[Iterable[str]]) -> str:
    """Flatten Set-Cookie values into a single Cookie header value."""
    if not cookies:
        return ""
    return "; ".join(cookie.split(";", 1)[0] for cookie in cookies)


def response_cookies(response: httpx.Response) -> list:
    """Collect Set-Cookie entries of a response and the redirects that led to it."""
    cookies = []
    for hop in list(response.history) + [response]:
        cookies.extend(hop.headers.get_list("set-cookie"))
    return cookies


class DriveFetcher:
    """Issues the Drive requests for a single client request.

    Each instance owns its own client so cookies issued by Drive never leak
    between client requests. Call ``aclose`` once the resolved response has
    been forwarded.
    """

    def __init__(
        self,
        export_url: str = DRIVE_EXPORT_BASE,
        timeout: float = DEFAULT_TIMEOUT,
        user_agent: str = "DriveProxy/1.0",
        follow_redirects: bool = False,
        transport: httpx.AsyncBaseTransport = None,
    ):
        self.export_url = export_url
        self.timeout = timeout

        headers = {
            'User-Agent': user_agent,
            'Accept': '*/*',
            # forwarded bytes must match the forwarded Content-Length
            'Accept-Encoding': 'identity',
        }
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            follow_redirects=follow_redirects,
            headers=headers,
            transport=transport,
        )

    @classmethod
    def from_config(cls, config, transport: httpx.AsyncBaseTransport = None) -> "DriveFetcher":
        drive = config.drive
        return cls(
            export_url=drive.get('export_url', DRIVE_EXPORT_BASE),
            timeout=float(drive.get('timeout', DEFAULT_TIMEOUT)),
            user_agent=drive.get('user_agent', 'DriveProxy/1.0'),
            follow_redirects=drive.get('follow_redirects', False),
            transport=transport,
        )

    def build_url(self, file_id: str, confirm_token: str = None) -> httpx.URL:
        params = {'id': file_id}
        if confirm_token:
            params['confirm'] = confirm_token
        return httpx.URL(self.export_url).copy_merge_params(params)

    async def fetch(
        self,
        file_id: str,
        confirm_token: str = None,
        cookie_header: str = None,
    ) -> httpx.Response:
        """Send one export request and return the response with its body unread."""
        url = self.build_url(file_id, confirm_token)
        headers = {}
        if cookie_header:
            headers['Cookie'] = cookie_header

        logger.info("drive_fetch", file_id=file_id, confirm=bool(confirm_token), cookie=bool(cookie_header))
        request = self._client.build_request("GET", url, headers=headers)
        try:
            return await self._client.send(request, stream=True)
        except httpx.TimeoutException as e:
            logger.warning("drive_fetch_timeout", file_id=file_id, timeout_seconds=self.timeout, error=str(e))
            raise UpstreamTimeoutError("Drive request timed out.") from e

    async def collect_text(self, response: httpx.Response) -> str:
        """Buffer the whole body and decode it as UTF-8."""
        try:
            content = await response.aread()
        except httpx.TimeoutException as e:
            raise UpstreamTimeoutError("Drive request timed out.") from e
        finally:
            await response.aclose()
        return content.decode('utf-8', errors='replace')

    async def resolve(self, file_id: str) -> httpx.Response:
        """Return the response carrying the file, passing the warning page if needed.

        Without redirect following at most two requests are made. The second
        response is returned as-is whatever its content type.
        """
        initial = await self.fetch(file_id)
        if not is_confirm_page(initial):
            return initial

        logger.info("drive_confirm_page", file_id=file_id, status_code=initial.status_code)
        body = await self.collect_text(initial)
        confirm_token = extract_confirm_token(body)
        if not confirm_token:
            logger.warning("drive_confirm_token_missing", file_id=file_id, body_length=len(body))
            raise ConfirmationTokenError("Unable to find Drive confirmation token.")

        cookie_header = build_cookie_header(response_cookies(initial))
        return await self.fetch(file_id, confirm_token, cookie_header)

    async def aclose(self):
        await self._client.aclose()
