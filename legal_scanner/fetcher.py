"""
Document fetcher: URL → plain text.

Downloads a legal document and reduces it to the visible text the summarizer
needs: comments, script, style and noscript content are dropped and whitespace
is collapsed.  Every failure (DNS, connection, timeout, HTTP error status) is
raised as DocumentFetchError.
"""

import re
from typing import Optional

import httpx
from bs4 import Comment

from .exceptions import DocumentFetchError
from .page import parse_html
from .logger import get_module_logger

logger = get_module_logger("fetcher")

DEFAULT_TIMEOUT = 15.0
USER_AGENT = "Mozilla/5.0 (compatible; legal-scanner/0.1)"

NON_CONTENT_ELEMENTS = ['script', 'style', 'noscript', 'template', 'svg']

# WHATWG encoding spec: browsers silently remap these charsets.
# https://encoding.spec.whatwg.org/#names-and-labels
WHATWG_CHARSET_MAP = {
    'iso-8859-1': 'windows-1252',
    'iso8859-1': 'windows-1252',
    'latin-1': 'windows-1252',
    'latin1': 'windows-1252',
    'us-ascii': 'windows-1252',
    'ascii': 'windows-1252',
    'iso-8859-9': 'windows-1254',
    'iso-8859-11': 'windows-874',
}


def detect_charset_from_bytes(raw_bytes: bytes) -> Optional[str]:
    """
    Find a <meta charset> or http-equiv charset declaration in the first 2KB.

    Returns the browser-equivalent charset, or None if nothing is declared.
    """
    head_str = raw_bytes[:2048].decode('ascii', errors='ignore')

    m = re.search(r'<meta[^>]+charset=["\']?\s*([^\s"\';>]+)', head_str, re.IGNORECASE)
    if not m:
        m = re.search(
            r'<meta[^>]+content=["\'][^"\']*charset=([^\s"\';>]+)',
            head_str, re.IGNORECASE
        )
    if not m:
        return None

    charset = m.group(1).strip().lower()
    return WHATWG_CHARSET_MAP.get(charset, charset)


def decode_html(raw_bytes: bytes, header_charset: Optional[str] = None) -> str:
    """Decode with the declared charset (HTTP header first, then <meta>), else UTF-8."""
    for charset in (header_charset, detect_charset_from_bytes(raw_bytes), 'utf-8'):
        if not charset:
            continue
        charset = WHATWG_CHARSET_MAP.get(charset.lower(), charset)
        try:
            return raw_bytes.decode(charset, errors='replace')
        except LookupError:
            logger.debug(f"Unknown charset '{charset}', trying next")
    return raw_bytes.decode('utf-8', errors='replace')


def extract_text(html: str) -> str:
    """Visible text of an HTML document with whitespace collapsed."""
    # NULL bytes crash some parsers and are never valid in text content
    soup = parse_html(html.replace('\x00', ''))

    for comment in soup.find_all(string=lambda text: isinstance(text, Comment)):
        comment.extract()
    for element in soup.find_all(NON_CONTENT_ELEMENTS):
        element.decompose()

    root = soup.body or soup
    text = root.get_text(separator=' ')
    return re.sub(r'\s+', ' ', text).strip()


class DocumentFetcher:
    """Fetches documents over HTTP with a bounded timeout."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = DEFAULT_TIMEOUT
    ):
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                headers={"User-Agent": USER_AGENT}
            )
        return self._client

    async def fetch_text(self, url: str) -> str:
        """
        Download `url` and return its plain text.

        Raises:
            DocumentFetchError: on malformed URLs and network, timeout or HTTP
                status failures
        """
        logger.info(f"Fetching document: {url}")
        try:
            response = await self._get_client().get(url, timeout=self.timeout)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise DocumentFetchError(
                f"Failed to fetch document: HTTP {e.response.status_code}",
                url=url,
                details={"status_code": e.response.status_code}
            )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise DocumentFetchError(
                f"Failed to fetch document: {type(e).__name__}: {e}",
                url=url,
                details={"error": str(e)}
            )

        content_type = response.headers.get("content-type", "")
        if "html" not in content_type and content_type.startswith("text/"):
            # Plain-text documents need no HTML stripping
            return re.sub(r'\s+', ' ', response.text).strip()

        html = decode_html(response.content, response.charset_encoding)
        text = extract_text(html)
        logger.debug(f"Extracted {len(text)} characters from {url}")
        return text

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
