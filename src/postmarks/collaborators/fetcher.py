"""Fetch a page over HTTP and extract its visible text."""

from __future__ import annotations

import asyncio
import logging
import re
import unicodedata

import requests
from bs4 import BeautifulSoup

from postmarks.collaborators.base import ContentFetcher, FetchResult
from postmarks.errors import ContentFetchError, TransientError

logger = logging.getLogger(__name__)

_BOILERPLATE_TAGS = ["script", "style", "nav", "footer", "header", "aside", "noscript", "iframe"]


def normalise(text: str) -> str:
    """Unicode NFC, collapse whitespace, strip control chars."""
    text = unicodedata.normalize("NFC", text)
    text = re.sub(r"[^\S\n]+", " ", text)  # collapse spaces (keep \n)
    text = re.sub(r"\n{3,}", "\n\n", text)  # max two consecutive newlines
    text = re.sub(r"[\x00-\x08\x0b\x0c\x0e-\x1f]", "", text)
    return text.strip()


def extract_text(html: str) -> str:
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(_BOILERPLATE_TAGS):
        tag.decompose()
    body = soup.body or soup
    return normalise(body.get_text(separator="\n", strip=True))


class HttpContentFetcher(ContentFetcher):
    """``requests``-based fetcher.

    Network errors, timeouts and 5xx responses are transient; any other
    non-200 status and pages without text are terminal.

    Parameters
    ----------
    timeout:
        Per-request timeout in seconds.
    headers:
        Extra HTTP headers sent with every request.
    """

    def __init__(self, *, timeout: float = 30.0, headers: dict[str, str] | None = None) -> None:
        self.timeout = timeout
        self.headers = headers or {}

    async def fetch(self, url: str) -> FetchResult:
        return await asyncio.to_thread(self._fetch, url)

    def _fetch(self, url: str) -> FetchResult:
        try:
            resp = requests.get(url, headers=self.headers, timeout=self.timeout)
        except requests.Timeout as exc:
            raise TransientError(f"Timed out fetching {url}") from exc
        except requests.ConnectionError as exc:
            raise TransientError(f"Could not connect to {url}: {exc}") from exc
        except requests.RequestException as exc:
            raise ContentFetchError(url, str(exc)) from exc

        if resp.status_code >= 500:
            raise TransientError(f"Non-200 response for {url}: {resp.status_code}")
        if resp.status_code != 200:
            raise ContentFetchError(url, f"status {resp.status_code}")

        text = extract_text(resp.text) if resp.text else ""
        if not text:
            raise ContentFetchError(url, "no body")
        logger.info("Fetched %s (%d chars)", url, len(text))
        return FetchResult(status=resp.status_code, text=text)
