import re
from typing import List, Optional
import httpx
from src.config.settings import settings
from src.utils.errors import ExtractionError
from src.utils.logging import logger

URL_PATTERN = re.compile(r"https?://[^\s]+")

_SCRIPT_RE = re.compile(r"<script[^>]*>[\s\S]*?</script>", re.IGNORECASE)
_STYLE_RE = re.compile(r"<style[^>]*>[\s\S]*?</style>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]+>")
_SPACE_RE = re.compile(r"\s+")


def extract_urls(text: str) -> List[str]:
    """Distinct http(s) URLs in order of first appearance."""
    seen = []
    for url in URL_PATTERN.findall(text or ""):
        if url not in seen:
            seen.append(url)
    return seen


def html_to_text(html: str) -> str:
    text = _SCRIPT_RE.sub("", html)
    text = _STYLE_RE.sub("", text)
    text = _TAG_RE.sub(" ", text)
    return _SPACE_RE.sub(" ", text).strip()


class ContentExtractor:
    """Fetch a URL and turn it into text suitable for ingestion."""

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        self.client = client
        self.max_chars = settings.EXTRACT_MAX_CHARS
        self.min_html_chars = settings.EXTRACT_MIN_HTML_CHARS

    async def _fetch(self, url: str) -> httpx.Response:
        headers = {"User-Agent": settings.EXTRACT_USER_AGENT}
        if self.client is not None:
            return await self.client.get(url, headers=headers, follow_redirects=True)
        async with httpx.AsyncClient(timeout=settings.EXTRACT_TIMEOUT) as client:
            return await client.get(url, headers=headers, follow_redirects=True)

    def _body_text(self, url: str, response: httpx.Response) -> str:
        content_type = response.headers.get("content-type", "")

        if "text/html" in content_type:
            text = html_to_text(response.text)[:self.max_chars]
            if len(text) < self.min_html_chars:
                text = f"Content from {url}. Web page processed."
            return text

        if "text/plain" in content_type or "text/markdown" in content_type:
            return response.text[:self.max_chars]

        return f"Content from {url} ({content_type}). Link processed and added to knowledge base."

    def tag(self, url: str, text: str) -> str:
        return f"[Personal Information for {settings.OWNER_NAME}]\n[Content from: {url}]\n{text}"

    async def fetch_text(self, url: str) -> str:
        """Like ``extract`` but raises ExtractionError instead of returning None."""
        try:
            parsed = httpx.URL(url)
        except (httpx.InvalidURL, ValueError) as e:
            raise ExtractionError(f"Invalid URL {url}: {e}") from e
        if parsed.scheme not in ("http", "https") or not parsed.host:
            raise ExtractionError(f"Invalid URL {url}")

        try:
            response = await self._fetch(url)
        except httpx.HTTPError as e:
            raise ExtractionError(f"Could not fetch {url}: {e}") from e

        if not response.is_success:
            raise ExtractionError(f"Fetching {url} returned HTTP {response.status_code}")

        return self.tag(url, self._body_text(url, response))

    async def extract(self, url: str) -> Optional[str]:
        try:
            return await self.fetch_text(url)
        except ExtractionError as e:
            logger.warning(f"Skipping URL content: {e}")
            return None
