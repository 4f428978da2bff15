from datetime import UTC, datetime

import httpx
import pytest

from arxiv_explorer.core.errors import FetchError
from arxiv_explorer.sources.arxiv import ArxivSource, parse_feed
from arxiv_explorer.utils.http import get_client

FEED = """<?xml version="1.0" encoding="UTF-8"?>
<feed xmlns="http://www.w3.org/2005/Atom" xmlns:arxiv="http://arxiv.org/schemas/atom">
  <title type="html">ArXiv Query: search_query=all:transformers</title>
  <entry>
    <id>http://arxiv.org/abs/2405.00001v1</id>
    <published>2024-05-01T17:59:59Z</published>
    <title>Conditioning Music
      Transformers on Chords</title>
    <summary>  We condition a music transformer
  on chord progressions.  </summary>
    <author><name>Ada Lovelace</name></author>
    <author><name>Alan Turing</name></author>
    <link href="http://arxiv.org/abs/2405.00001v1" rel="alternate" type="text/html"/>
    <link title="pdf" href="http://arxiv.org/pdf/2405.00001v1" rel="related" type="application/pdf"/>
    <arxiv:primary_category term="cs.SD" scheme="http://arxiv.org/schemas/atom"/>
    <category term="cs.SD" scheme="http://arxiv.org/schemas/atom"/>
    <category term="cs.LG" scheme="http://arxiv.org/schemas/atom"/>
    <category term="cs.SD" scheme="http://arxiv.org/schemas/atom"/>
  </entry>
  <entry>
    <id>http://arxiv.org/abs/2404.12345v2</id>
    <published>2024-04-20T08:00:00Z</published>
    <title>No PDF Here</title>
    <summary>Short abstract.</summary>
    <author><name>Grace Hopper</name></author>
    <link href="http://arxiv.org/abs/2404.12345v2" rel="alternate" type="text/html"/>
    <category term="eess.AS" scheme="http://arxiv.org/schemas/atom"/>
  </entry>
</feed>
"""

ERROR_FEED = """<?xml version="1.0" encoding="UTF-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <entry>
    <id>http://arxiv.org/api/errors#incorrect_id_format_for_1234</id>
    <title>Error</title>
    <summary>incorrect id format for 1234</summary>
  </entry>
</feed>
"""

EMPTY_FEED = """<?xml version="1.0" encoding="UTF-8"?>
<feed xmlns="http://www.w3.org/2005/Atom"><title>empty</title></feed>
"""


def test_parse_feed_extracts_records() -> None:
    records = parse_feed(FEED)

    assert [r.id for r in records] == [
        "http://arxiv.org/abs/2405.00001v1",
        "http://arxiv.org/abs/2404.12345v2",
    ]
    first = records[0]
    assert first.title == "Conditioning Music Transformers on Chords"
    assert first.abstract == "We condition a music transformer on chord progressions."
    assert first.authors == ["Ada Lovelace", "Alan Turing"]
    assert first.categories == ["cs.SD", "cs.LG"]
    assert first.published == datetime(2024, 5, 1, 17, 59, 59, tzinfo=UTC)
    assert first.pdf_link == "http://arxiv.org/pdf/2405.00001v1"


def test_parse_feed_falls_back_to_first_link() -> None:
    record = parse_feed(FEED)[1]
    assert record.pdf_link == "http://arxiv.org/abs/2404.12345v2"


def test_parse_feed_without_entries() -> None:
    assert parse_feed(EMPTY_FEED) == []


def test_parse_feed_rejects_error_entry() -> None:
    with pytest.raises(FetchError, match="incorrect id format"):
        parse_feed(ERROR_FEED)


def test_parse_feed_rejects_invalid_xml() -> None:
    with pytest.raises(FetchError):
        parse_feed("<feed><entry>")


def test_parse_feed_rejects_entry_without_date() -> None:
    broken = FEED.replace("<published>2024-04-20T08:00:00Z</published>", "")
    with pytest.raises(FetchError):
        parse_feed(broken)


def test_build_params_with_max_results() -> None:
    source = ArxivSource(client=None, max_results=25, rate_limiter=None)  # type: ignore[arg-type]

    assert source.build_params("all:music") == {
        "search_query": "all:music",
        "max_results": 25,
        "sortBy": "submittedDate",
        "sortOrder": "descending",
    }
    assert ArxivSource(client=None, rate_limiter=None).build_params("x") == {"search_query": "x"}  # type: ignore[arg-type]


async def test_fetch_queries_the_api() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, text=FEED)

    async with get_client(transport=httpx.MockTransport(handler)) as client:
        source = ArxivSource(client, max_results=5, rate_limiter=None)
        records = await source.fetch("all:transformers AND cat:cs.SD")

    assert len(records) == 2
    assert seen[0].url.path == "/api/query"
    assert seen[0].url.params["search_query"] == "all:transformers AND cat:cs.SD"
    assert seen[0].url.params["max_results"] == "5"


async def test_fetch_raises_on_client_error_status() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, text="bad query")

    async with get_client(transport=httpx.MockTransport(handler)) as client:
        source = ArxivSource(client, rate_limiter=None)
        with pytest.raises(FetchError, match="HTTP 400"):
            await source.fetch("all:")


async def test_fetch_raises_on_unparseable_body() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>maintenance</html")

    async with get_client(transport=httpx.MockTransport(handler)) as client:
        source = ArxivSource(client, rate_limiter=None)
        with pytest.raises(FetchError):
            await source.fetch("all:music")
