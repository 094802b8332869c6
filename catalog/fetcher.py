import asyncio
import time
from typing import Dict

import httpx
import structlog

logger = structlog.get_logger(__name__)

DEFAULT_USER_AGENT = (
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 '
    '(KHTML, like Gecko) Chrome/121.0.0.0 Safari/537.36'
)


class FetchResult:
    def __init__(
        self,
        url: str,
        status_code: int,
        content: bytes = b'',
        headers: Dict[str, str] = None,
        final_url: str = None,
        fetch_time: float = 0.0,
        error: str = None,
        content_type: str = None,
        encoding: str = None
    ):
        """Initialize a FetchResult with HTTP response data and metadata."""
        self.url = url
        self.status_code = status_code
        self.content = content
        self.headers = headers or {}
        self.final_url = final_url or url
        self.fetch_time = fetch_time
        self.error = error
        self.content_type = content_type
        self.encoding = encoding

    @property
    def success(self) -> bool:
        """Check if the fetch was successful (no error and 2xx status code)."""
        return self.error is None and 200 <= self.status_code < 300

    @property
    def text(self) -> str:
        """Decode the response content using the detected encoding, utf-8 as fallback."""
        if not self.content:
            return ""
        encoding = self.encoding or 'utf-8'
        try:
            return self.content.decode(encoding)
        except (UnicodeDecodeError, LookupError):
            return self.content.decode('utf-8', errors='replace')


class HTTPFetcher:
    def __init__(
        self,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout: float = 10.0,
        max_response_size: int = 10 * 1024 * 1024,
        transport: httpx.AsyncBaseTransport = None,
    ):
        """Initialize the HTTP fetcher.

        Args:
            user_agent: Default User-Agent sent with every request.
            timeout: Default total timeout per request, in seconds.
            max_response_size: Largest accepted body, in bytes.
            transport: Optional httpx transport, used to stub the network in tests.
        """
        self.user_agent = user_agent
        self.timeout = timeout
        self.max_redirects = 5
        self.max_response_size = max_response_size

        headers = {
            'User-Agent': self.user_agent,
            'Accept': 'application/json, text/plain, */*',
            'Accept-Encoding': 'gzip, deflate',
        }
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout),
            follow_redirects=True,
            max_redirects=self.max_redirects,
            headers=headers,
            limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
            transport=transport,
        )

    async def fetch(self, url: str, headers: Dict[str, str] = None, timeout: float = None) -> FetchResult:
        """Fetch a URL once, bounded by ``timeout`` seconds in total.

        Transport problems never raise; they come back as a FetchResult with
        ``error`` set and ``status_code`` 0.
        """
        timeout = self.timeout if timeout is None else timeout
        start_time = time.monotonic()

        try:
            response = await asyncio.wait_for(
                self._client.get(url, headers=headers or {}),
                timeout=timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            error = f"Timeout after {timeout}s"
            logger.warning("fetch_timeout", url=url, timeout=timeout, error=str(e))
            return self._failed(url, start_time, error)
        except httpx.ConnectError as e:
            error = f"Connection error: {str(e)}"
            logger.warning("fetch_connect_error", url=url, error=str(e))
            return self._failed(url, start_time, error)
        except httpx.InvalidURL as e:
            error = f"Invalid url: {str(e)}"
            logger.warning("fetch_invalid_url", url=url, error=str(e))
            return self._failed(url, start_time, error)
        except httpx.HTTPError as e:
            error = f"Transport error: {str(e)}"
            logger.warning("fetch_transport_error", url=url, error=str(e))
            return self._failed(url, start_time, error)

        fetch_time = time.monotonic() - start_time
        content_type = response.headers.get('content-type', '').lower()
        common = dict(
            url=url,
            status_code=response.status_code,
            headers=dict(response.headers),
            final_url=str(response.url),
            fetch_time=fetch_time,
            content_type=content_type,
        )

        if len(response.content) > self.max_response_size:
            return FetchResult(
                error=f"Content too large: {len(response.content)} bytes > {self.max_response_size} bytes",
                **common
            )

        if not 200 <= response.status_code < 300:
            return FetchResult(
                content=response.content,
                error=f"HTTP {response.status_code}",
                **common
            )

        return FetchResult(
            content=response.content,
            encoding=self._extract_encoding(content_type),
            **common
        )

    async def close(self):
        await self._client.aclose()

    def _failed(self, url: str, start_time: float, error: str) -> FetchResult:
        return FetchResult(
            url=url,
            status_code=0,
            fetch_time=time.monotonic() - start_time,
            error=error
        )

    def _extract_encoding(self, content_type: str) -> str:
        """Extract character encoding from the Content-Type header."""
        if 'charset=' in content_type:
            charset = content_type.split('charset=')[1].split(';')[0].strip(' \'"')
            if charset:
                return charset
        return 'utf-8'
