import json
import sqlite3
from collections.abc import Generator, Iterable, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path

from ..utils.log import get_logger
from .config import get_config
from .errors import StorageError
from .models import EnrichedRecord, Enrichment, Record

log = get_logger(__name__)

# Stay well below SQLITE_MAX_VARIABLE_NUMBER on older builds (999)
_MAX_IN_PARAMS = 900

CREATE_PAPERS_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS papers (
    paper_id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    summary TEXT,
    categories TEXT,
    pdf_url TEXT,
    authors TEXT,
    publication_date TEXT,
    query_id TEXT NOT NULL,
    gpt_summary TEXT,
    gpt_contributions TEXT,
    gpt_tags TEXT,
    created_at TEXT NOT NULL
);
"""

CREATE_INDEXES_SQL = [
    "CREATE INDEX IF NOT EXISTS idx_papers_publication_date ON papers(publication_date);",
    "CREATE INDEX IF NOT EXISTS idx_papers_query_id ON papers(query_id);",
]

INSERT_PAPER_SQL = """
INSERT INTO papers (
    paper_id,
    title,
    summary,
    categories,
    pdf_url,
    authors,
    publication_date,
    query_id,
    gpt_summary,
    gpt_contributions,
    gpt_tags,
    created_at
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(paper_id) DO NOTHING
RETURNING paper_id
"""

SELECT_PAPERS_SQL = """
SELECT
    paper_id,
    title,
    summary,
    categories,
    pdf_url,
    authors,
    publication_date,
    query_id,
    gpt_summary,
    gpt_contributions,
    gpt_tags
FROM papers
ORDER BY publication_date DESC, paper_id
"""


@contextmanager
def get_conn(db_path: Path) -> Generator[sqlite3.Connection, None, None]:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path)
    try:
        conn.execute("PRAGMA journal_mode=DELETE")
        conn.execute("PRAGMA synchronous=FULL")
        conn.execute("PRAGMA temp_store=MEMORY")
        conn.execute("PRAGMA busy_timeout=5000")
        yield conn
        conn.commit()
    finally:
        conn.close()


def _to_storage_time(value: datetime) -> str:
    # Normalised to UTC so lexical order in SQL equals chronological order
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat()


def _entry_to_row(entry: EnrichedRecord, query_id: str, created_at: str) -> tuple:
    rec = entry.record
    return (
        rec.id,
        rec.title,
        rec.abstract,
        json.dumps(rec.categories),
        rec.pdf_link,
        json.dumps(rec.authors),
        _to_storage_time(rec.published),
        query_id,
        entry.enrichment.summary,
        entry.enrichment.contribution,
        json.dumps(entry.enrichment.tags),
        created_at,
    )


def _row_to_entry(row: sqlite3.Row) -> EnrichedRecord:
    record = Record(
        id=row["paper_id"],
        title=row["title"],
        abstract=row["summary"] or "",
        authors=json.loads(row["authors"] or "[]"),
        categories=json.loads(row["categories"] or "[]"),
        published=datetime.fromisoformat(row["publication_date"]),
        pdf_link=row["pdf_url"],
    )
    enrichment = Enrichment(
        summary=row["gpt_summary"] or "",
        contribution=row["gpt_contributions"] or "",
        tags=json.loads(row["gpt_tags"] or "[]"),
    )
    return EnrichedRecord(record=record, enrichment=enrichment, query_id=row["query_id"])


def _chunks(items: Sequence[str], size: int) -> Iterable[Sequence[str]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


class PaperStore:
    """SQLite-backed store of enriched papers, keyed by arXiv identifier.

    Rows are only ever inserted, one batch per query, inside a single
    transaction. Nothing here updates or deletes a stored paper.
    """

    def __init__(self, db_path: Path | None = None) -> None:
        self.db_path = db_path if db_path is not None else get_config().db_path

    def init_db(self) -> None:
        log.info("initializing_database", path=str(self.db_path))
        try:
            with get_conn(self.db_path) as conn:
                conn.execute(CREATE_PAPERS_TABLE_SQL)
                for index_sql in CREATE_INDEXES_SQL:
                    conn.execute(index_sql)
        except (sqlite3.Error, OSError) as e:
            log.error("database_init_failed", path=str(self.db_path), error=str(e))
            raise StorageError(f"Could not initialize database {self.db_path}: {e}") from e
        log.info("database_initialized", path=str(self.db_path))

    def filter_known(self, candidate_ids: set[str]) -> set[str]:
        """
        Return the subset of ``candidate_ids`` that is already stored.

        An empty input returns an empty set without opening the database.

        Raises:
            StorageError: If the lookup fails
        """
        if not candidate_ids:
            return set()

        ids = sorted(candidate_ids)
        known: set[str] = set()
        try:
            with get_conn(self.db_path) as conn:
                for chunk in _chunks(ids, _MAX_IN_PARAMS):
                    placeholders = ",".join("?" * len(chunk))
                    cur = conn.execute(
                        f"SELECT paper_id FROM papers WHERE paper_id IN ({placeholders})",
                        tuple(chunk),
                    )
                    known.update(row[0] for row in cur.fetchall())
        except (sqlite3.Error, OSError) as e:
            log.error("filter_known_failed", candidates=len(ids), error=str(e))
            raise StorageError(f"Known-id lookup failed: {e}") from e

        log.debug("filter_known_completed", candidates=len(ids), known=len(known))
        return known

    def persist_batch(self, entries: Sequence[EnrichedRecord], query_id: str) -> list[str]:
        """
        Insert a batch of enriched papers for ``query_id`` atomically.

        Either every row of the batch becomes visible or none does. A paper id
        that another writer stored in the meantime is skipped (first writer
        wins) and left out of the returned ids.

        Args:
            entries: Enriched papers produced for the query
            query_id: Identifier of the query that produced the batch

        Returns:
            Ids of the rows actually inserted, in batch order.

        Raises:
            StorageError: If the transaction fails; nothing is written
        """
        if not entries:
            return []

        mismatched = [e.id for e in entries if e.query_id != query_id]
        if mismatched:
            raise ValueError(f"Entries {mismatched} do not belong to query {query_id!r}")

        created_at = datetime.now(UTC).isoformat()
        rows = [_entry_to_row(entry, query_id, created_at) for entry in entries]

        log.debug("persisting_batch", query_id=query_id, count=len(rows))
        inserted: list[str] = []
        try:
            with get_conn(self.db_path) as conn:
                # one transaction: rolled back as a whole if any row fails
                with conn:
                    for row in rows:
                        inserted.extend(paper_id for (paper_id,) in conn.execute(INSERT_PAPER_SQL, row).fetchall())
        except (sqlite3.Error, OSError) as e:
            log.error("persist_batch_failed", query_id=query_id, count=len(rows), error=str(e))
            raise StorageError(f"Saving {len(rows)} papers for query {query_id!r} failed: {e}") from e

        inserted_ids = set(inserted)
        skipped = [entry.id for entry in entries if entry.id not in inserted_ids]
        if skipped:
            log.warning("persist_batch_conflicts_skipped", query_id=query_id, skipped=skipped)
        log.info("batch_persisted", query_id=query_id, inserted=len(inserted))
        return inserted

    def list_all(self) -> list[EnrichedRecord]:
        """Return every stored paper, most recently published first."""
        try:
            with get_conn(self.db_path) as conn:
                conn.row_factory = sqlite3.Row
                rows = conn.execute(SELECT_PAPERS_SQL).fetchall()
        except (sqlite3.Error, OSError) as e:
            log.error("list_all_failed", path=str(self.db_path), error=str(e))
            raise StorageError(f"Reading papers failed: {e}") from e

        entries = [_row_to_entry(row) for row in rows]
        log.info("papers_fetched", count=len(entries), path=str(self.db_path))
        return entries

    def count(self) -> int:
        try:
            with get_conn(self.db_path) as conn:
                (total,) = conn.execute("SELECT COUNT(*) FROM papers").fetchone()
        except (sqlite3.Error, OSError) as e:
            raise StorageError(f"Counting papers failed: {e}") from e
        return int(total)

    def count_by_query(self) -> dict[str, int]:
        try:
            with get_conn(self.db_path) as conn:
                rows = conn.execute(
                    "SELECT query_id, COUNT(*) FROM papers GROUP BY query_id ORDER BY query_id"
                ).fetchall()
        except (sqlite3.Error, OSError) as e:
            raise StorageError(f"Counting papers failed: {e}") from e
        return {query_id: int(n) for query_id, n in rows}
