from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator

import httpx
from bs4 import BeautifulSoup

from tucache.config import Settings
from tucache.errors import SessionExpired
from tucache.model import Session
from tucache.url import BASE_URL, Program

log = logging.getLogger(__name__)

TIMEOUT_HEADING = "Timeout!"


@dataclass
class Document:
    """A fetched portal page: where it came from and its parsed tree."""

    url: str
    soup: BeautifulSoup

    @classmethod
    def from_html(cls, html: str, url: str) -> "Document":
        return cls(url=url, soup=BeautifulSoup(html, "html.parser"))


# ---------------------------------------------------------------------------
# Core logic
# ---------------------------------------------------------------------------


class Fetcher:
    """
    Issues authenticated GET requests against the portal.

    Every request holds one permit of `semaphore` from just before it is sent
    until its body has been read. The semaphore is shared by every crawl in the
    process, so it is the only limit on outbound concurrency; callers beyond the
    limit wait for a permit.
    """

    def __init__(self, client: httpx.AsyncClient, semaphore: asyncio.Semaphore, base_url: str = BASE_URL) -> None:
        self._client = client
        self._semaphore = semaphore
        self.base_url = base_url

    def url_for(self, program: Program, session: Session) -> str:
        return program.url(session.session_nr, base_url=self.base_url)

    async def fetch(self, program: Program, session: Session) -> Document:
        url = self.url_for(program, session)
        headers = {"Cookie": f"cnsc={session.session_id}"}

        async with self._semaphore:
            log.debug("GET %s", url)
            resp = await self._client.get(url, headers=headers)
            html = resp.text

        resp.raise_for_status()

        document = Document.from_html(html, url)
        if any(h1.get_text(strip=True) == TIMEOUT_HEADING for h1 in document.soup.select("h1")):
            log.info("session of %s expired (%s)", session.tu_id, url)
            raise SessionExpired(url)
        return document


@asynccontextmanager
async def open_fetcher(settings: Settings) -> AsyncIterator[Fetcher]:
    """Create a Fetcher with its own HTTP client and a semaphore sized from settings."""
    semaphore = asyncio.Semaphore(settings.max_concurrent_requests)
    async with httpx.AsyncClient(timeout=settings.request_timeout, follow_redirects=True) as client:
        yield Fetcher(client, semaphore, base_url=settings.base_url)
