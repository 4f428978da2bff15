"""arXiv search API client: turns a search query into candidate ``Record``s."""

import re
import xml.etree.ElementTree as ET
from datetime import datetime
from typing import Any

import httpx

from ..core.errors import FetchError
from ..core.models import Record
from ..utils.http import RateLimiter, get_with_retry
from ..utils.log import get_logger

log = get_logger(__name__)

ARXIV_API_URL = "http://export.arxiv.org/api/query"
ATOM_NS = {"atom": "http://www.w3.org/2005/Atom"}

# arXiv asks clients for at most one request every three seconds
ARXIV_RATE_LIMITER = RateLimiter(calls_per_second=0.33)


def _clean(text: str | None) -> str:
    if not text:
        return ""
    return re.sub(r"\s+", " ", text).strip()


def _find_text(elem: ET.Element, path: str) -> str:
    child = elem.find(path, ATOM_NS)
    return _clean(child.text if child is not None else None)


def _pdf_link(entry: ET.Element) -> str | None:
    links = entry.findall("atom:link", ATOM_NS)
    for link in links:
        if link.get("title") == "pdf" or link.get("type") == "application/pdf":
            return link.get("href")
    return links[0].get("href") if links else None


def parse_entry(entry: ET.Element) -> Record:
    """Build a ``Record`` from one Atom ``<entry>`` element."""
    paper_id = _find_text(entry, "atom:id")
    published = _find_text(entry, "atom:published")
    if not paper_id or not published:
        raise FetchError(f"arXiv entry without id or publication date: {paper_id or '<missing id>'}")

    try:
        published_at = datetime.fromisoformat(published)
    except ValueError as e:
        raise FetchError(f"Invalid publication date {published!r} for {paper_id}") from e

    authors = [_find_text(a, "atom:name") for a in entry.findall("atom:author", ATOM_NS)]
    categories = [c.get("term", "") for c in entry.findall("atom:category", ATOM_NS)]
    return Record(
        id=paper_id,
        title=_find_text(entry, "atom:title"),
        abstract=_find_text(entry, "atom:summary"),
        authors=[a for a in authors if a],
        categories=[c for c in categories if c],
        published=published_at,
        pdf_link=_pdf_link(entry),
    )


def parse_feed(xml: str) -> list[Record]:
    """
    Parse an arXiv Atom feed into records.

    Raises:
        FetchError: On invalid XML, an arXiv error entry, or a malformed entry
    """
    try:
        root = ET.fromstring(xml)
    except ET.ParseError as e:
        log.error("arxiv_xml_parse_error", error=str(e), xml_preview=xml[:500])
        raise FetchError(f"Could not parse arXiv response: {e}") from e

    records = []
    for entry in root.findall("atom:entry", ATOM_NS):
        # Rejected queries come back as a single entry pointing at /api/errors
        if "/api/errors" in _find_text(entry, "atom:id"):
            message = _find_text(entry, "atom:summary") or "unknown error"
            raise FetchError(f"arXiv rejected the query: {message}")
        records.append(parse_entry(entry))
    return records


class ArxivSource:
    """Record source backed by the arXiv export API."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        max_results: int | None = None,
        rate_limiter: RateLimiter | None = ARXIV_RATE_LIMITER,
        base_url: str = ARXIV_API_URL,
    ) -> None:
        self.client = client
        self.max_results = max_results
        self.rate_limiter = rate_limiter
        self.base_url = base_url

    def build_params(self, query_text: str) -> dict[str, Any]:
        params: dict[str, Any] = {"search_query": query_text}
        if self.max_results is not None:
            params["max_results"] = self.max_results
            params["sortBy"] = "submittedDate"
            params["sortOrder"] = "descending"
        return params

    async def fetch(self, query_text: str) -> list[Record]:
        """
        Return the candidate records arXiv lists for ``query_text``.

        Raises:
            FetchError: On transport failure, a non-200 response, or an unparseable feed
        """
        if self.rate_limiter is not None:
            await self.rate_limiter.acquire()

        params = self.build_params(query_text)
        try:
            resp = await get_with_retry(self.client, self.base_url, params=params)
        except httpx.HTTPError as e:
            log.error("arxiv_http_error", query=query_text, error=str(e), error_type=type(e).__name__)
            raise FetchError(f"arXiv request failed for {query_text!r}: {e}") from e

        if resp.status_code != 200:
            log.warning("arxiv_non_200", query=query_text, status=resp.status_code)
            raise FetchError(f"arXiv answered HTTP {resp.status_code} for {query_text!r}")

        records = parse_feed(resp.text)
        log.info("arxiv_fetched", query=query_text, count=len(records))
        return records
