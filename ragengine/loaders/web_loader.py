"""Web page loader using httpx and BeautifulSoup."""

import asyncio
from typing import Optional
from urllib.parse import urlparse

import httpx
from bs4 import BeautifulSoup

from ragengine.exceptions import SourceFetchError
from ragengine.loaders.base import DocumentLoader
from ragengine.models import Document
from ragengine.utils.logger import get_logger

logger = get_logger("loader")

# Elements that never carry article text
_NOISE_TAGS = ["script", "style", "noscript", "nav", "footer", "header", "aside", "form", "svg"]


class WebLoader(DocumentLoader):
    """Fetches a URL and extracts its readable text."""

    def __init__(
        self,
        user_agent: str = "Mozilla/5.0 (compatible; RAGEngine/1.0)",
        timeout: float = 10.0,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        """
        Initialize the loader.

        Args:
            user_agent: User-Agent header sent with every request
            timeout: Request timeout in seconds
            max_retries: Attempts per URL for network errors and 5xx/429 responses
            retry_delay: Base delay for exponential backoff between attempts
            client: Shared client; one is created per request when omitted
        """
        self.user_agent = user_agent
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self.client = client

    async def load(self, source: str) -> Document:
        parsed = urlparse(source)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise SourceFetchError(source, "not an http(s) URL")

        response = await self.fetch_url(source)
        content_type = response.headers.get("content-type", "")

        if "html" in content_type or not content_type:
            title, text = self.extract_text(response.text)
        else:
            title, text = "", response.text

        logger.info(f"Loaded {source} ({len(text)} chars of text)")

        return Document(
            source=source,
            text=text,
            metadata={"title": title, "url": str(response.url), "content_type": content_type},
        )

    async def fetch_url(self, url: str) -> httpx.Response:
        """
        Fetch a URL with retry logic.

        Raises:
            SourceFetchError: All attempts failed or the server answered 4xx
        """
        for attempt in range(self.max_retries):
            try:
                logger.debug(f"Fetching URL: {url} (attempt {attempt + 1}/{self.max_retries})")
                response = await self._get(url)

                if response.status_code == 429 or response.status_code >= 500:
                    reason = f"HTTP {response.status_code}"
                elif response.status_code >= 400:
                    raise SourceFetchError(url, f"HTTP {response.status_code}")
                else:
                    return response

            except httpx.HTTPError as e:
                reason = f"{type(e).__name__}: {e}"

            logger.warning(f"Failed to fetch {url}: {reason}")
            if attempt < self.max_retries - 1:
                # Exponential backoff
                delay = self.retry_delay * (2 ** attempt)
                logger.debug(f"Retrying in {delay} seconds...")
                await asyncio.sleep(delay)

        logger.error(f"Max retries reached for {url}")
        raise SourceFetchError(url, reason)

    async def _get(self, url: str) -> httpx.Response:
        headers = {"User-Agent": self.user_agent}
        if self.client is not None:
            return await self.client.get(url, headers=headers, follow_redirects=True)

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.get(url, headers=headers, follow_redirects=True)

    @staticmethod
    def extract_text(html: str):
        """
        Extract the title and readable text from an HTML page.

        Returns:
            (title, text) with one line per block of text
        """
        soup = BeautifulSoup(html, "html.parser")

        title = ""
        if soup.title and soup.title.string:
            title = soup.title.string.strip()

        for tag in soup(_NOISE_TAGS):
            tag.decompose()

        root = soup.find("main") or soup.find("article") or soup.body or soup
        lines = [line.strip() for line in root.get_text("\n").split("\n")]
        text = "\n".join(line for line in lines if line)

        return title, text
