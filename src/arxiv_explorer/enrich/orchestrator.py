import asyncio
from collections.abc import Awaitable, Callable, Iterable, Sequence
from typing import Protocol

import structlog

from ..core.errors import EnrichmentError, FetchError, StorageError
from ..core.models import EnrichedRecord, Enrichment, Query, QueryOutcome, Record
from ..utils.log import get_logger

log = get_logger(__name__)

Fetcher = Callable[[str], Awaitable[list[Record]]]
Enricher = Callable[[str], Awaitable[Enrichment]]
OutcomeCallback = Callable[[QueryOutcome], None]

DEFAULT_MAX_CONCURRENT = 8
DEFAULT_ENRICH_TIMEOUT = 60.0


class PaperSink(Protocol):
    """The two storage operations the pipeline depends on."""

    def filter_known(self, candidate_ids: set[str]) -> set[str]: ...

    def persist_batch(self, entries: Sequence[EnrichedRecord], query_id: str) -> list[str]: ...


def unique_by_id(records: Iterable[Record]) -> list[Record]:
    """Drop repeated ids, keeping the first occurrence and the fetch order."""
    seen: set[str] = set()
    unique = []
    for rec in records:
        if rec.id in seen:
            continue
        seen.add(rec.id)
        unique.append(rec)
    return unique


async def _enrich_with_timeout(enrich: Enricher, abstract: str, timeout: float | None) -> Enrichment:
    try:
        return await asyncio.wait_for(enrich(abstract), timeout)
    except TimeoutError as e:
        raise EnrichmentError(f"Enrichment timed out after {timeout}s") from e


async def enrich_records(
    records: Sequence[Record],
    enrich: Enricher,
    query_id: str,
    max_concurrent: int = DEFAULT_MAX_CONCURRENT,
    timeout: float | None = DEFAULT_ENRICH_TIMEOUT,
) -> list[EnrichedRecord]:
    """
    Enrich ``records`` concurrently and return the successful ones.

    At most ``max_concurrent`` calls are in flight. A record whose call fails or
    times out is logged and left out of the result; it never affects the
    other records.

    Parameters:
    records (Sequence[Record]): Records confirmed absent from storage.
    enrich (Enricher): Enrichment service call, abstract in, Enrichment out.
    query_id (str): Query the records belong to.
    max_concurrent (int): Upper bound on simultaneous enrichment calls.
    timeout (float | None): Per-call timeout in seconds, None for no limit.

    Returns:
    list[EnrichedRecord]: One entry per successful enrichment, in input order.
    """
    semaphore = asyncio.Semaphore(max_concurrent)

    async def enrich_one(rec: Record) -> EnrichedRecord | None:
        async with semaphore:
            log.debug("enrichment_started", paper_id=rec.id)
            try:
                enrichment = await _enrich_with_timeout(enrich, rec.abstract, timeout)
            except EnrichmentError as e:
                log.warning("enrichment_failed", paper_id=rec.id, error=str(e))
                return None
            except Exception as e:
                log.exception("enrichment_unexpected_error", paper_id=rec.id, error=str(e))
                return None
        log.debug("enrichment_completed", paper_id=rec.id, tags=len(enrichment.tags))
        return EnrichedRecord(record=rec, enrichment=enrichment, query_id=query_id)

    results = await asyncio.gather(*(enrich_one(rec) for rec in records))
    return [entry for entry in results if entry is not None]


async def process_query(
    query: Query,
    *,
    fetch: Fetcher,
    store: PaperSink,
    enrich: Enricher,
    max_concurrent: int = DEFAULT_MAX_CONCURRENT,
    timeout: float | None = DEFAULT_ENRICH_TIMEOUT,
) -> QueryOutcome:
    """
    Drive one query from fetched candidates to a persisted batch.

    Fetch and storage failures end this query with a failed outcome instead of
    raising, so the caller can move on to the next query.
    """
    with structlog.contextvars.bound_contextvars(query_id=query.id):
        log.info("query_started", query=query.text)

        try:
            records = unique_by_id(await fetch(query.text))
        except FetchError as e:
            log.error("query_fetch_failed", error=str(e))
            return QueryOutcome(query_id=query.id, status="fetch_failed", error=str(e))

        if not records:
            log.info("query_no_candidates")
            return QueryOutcome(query_id=query.id, status="no_candidates")

        try:
            known = store.filter_known({rec.id for rec in records})
        except StorageError as e:
            log.error("query_filter_failed", error=str(e))
            return QueryOutcome(
                query_id=query.id, status="filter_failed", candidates=len(records), error=str(e)
            )

        new_records = [rec for rec in records if rec.id not in known]
        counts = {"candidates": len(records), "known": len(known), "new": len(new_records)}
        if not new_records:
            log.info("query_nothing_new", **counts)
            return QueryOutcome(query_id=query.id, status="nothing_new", **counts)

        log.info("query_enriching", **counts, max_concurrent=max_concurrent)
        batch = await enrich_records(new_records, enrich, query.id, max_concurrent, timeout)
        failed = len(new_records) - len(batch)

        if not batch:
            log.warning("query_all_enrichments_failed", failed=failed)
            return QueryOutcome(query_id=query.id, status="completed", failed=failed, **counts)

        try:
            inserted_ids = set(store.persist_batch(batch, query.id))
        except StorageError as e:
            log.error("query_persist_failed", batch=len(batch), error=str(e))
            return QueryOutcome(
                query_id=query.id, status="persist_failed", failed=failed, error=str(e), **counts
            )

        # rows another writer stored first stay attributed to that writer
        persisted = [entry for entry in batch if entry.id in inserted_ids]
        log.info("query_completed", persisted=len(persisted), skipped=len(batch) - len(persisted), failed=failed)
        return QueryOutcome(
            query_id=query.id, status="completed", failed=failed, persisted=persisted, **counts
        )


async def run_queries(
    queries: Sequence[Query],
    *,
    fetch: Fetcher,
    store: PaperSink,
    enrich: Enricher,
    max_concurrent: int = DEFAULT_MAX_CONCURRENT,
    timeout: float | None = DEFAULT_ENRICH_TIMEOUT,
    on_outcome: OutcomeCallback | None = None,
) -> list[QueryOutcome]:
    """Process ``queries`` one after another, in input order."""
    outcomes = []
    for query in queries:
        outcome = await process_query(
            query,
            fetch=fetch,
            store=store,
            enrich=enrich,
            max_concurrent=max_concurrent,
            timeout=timeout,
        )
        outcomes.append(outcome)
        if on_outcome is not None:
            on_outcome(outcome)

    log.info(
        "all_queries_processed",
        queries=len(outcomes),
        failed_queries=sum(1 for o in outcomes if not o.ok),
        persisted=sum(len(o.persisted) for o in outcomes),
    )
    return outcomes
