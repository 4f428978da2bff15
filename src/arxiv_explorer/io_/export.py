from collections.abc import Sequence
from pathlib import Path

import pandas as pd

from ..core.models import EnrichedRecord
from ..utils.log import get_logger
from .markdown import save_entries_to_markdown

log = get_logger(__name__)

EXPORT_FORMATS = ("md", "csv", "xlsx", "parquet")


def entries_to_frame(entries: Sequence[EnrichedRecord]) -> pd.DataFrame:
    """Flatten enriched papers into one row per paper."""
    rows = [
        {
            "paper_id": e.record.id,
            "title": e.record.title,
            "published": e.record.published.isoformat(),
            "authors": "; ".join(e.record.authors),
            "categories": ", ".join(e.record.categories),
            "pdf_link": e.record.pdf_link,
            "query_id": e.query_id,
            "summary": e.enrichment.summary,
            "contribution": e.enrichment.contribution,
            "tags": ", ".join(e.enrichment.tags),
            "abstract": e.record.abstract,
        }
        for e in entries
    ]
    return pd.DataFrame(rows, columns=[
        "paper_id",
        "title",
        "published",
        "authors",
        "categories",
        "pdf_link",
        "query_id",
        "summary",
        "contribution",
        "tags",
        "abstract",
    ])


def export_entries(entries: Sequence[EnrichedRecord], path: Path, format: str = "md") -> None:
    """Export enriched papers to Markdown/CSV/XLSX/Parquet."""
    log.info("exporting_papers", count=len(entries), path=str(path), format=format)
    if format not in EXPORT_FORMATS:
        log.error("unsupported_export_format", format=format, path=str(path))
        raise ValueError(f"Unsupported export format: {format}")

    path.parent.mkdir(parents=True, exist_ok=True)
    if format == "md":
        save_entries_to_markdown(entries, path)
    else:
        df = entries_to_frame(entries)
        if format == "csv":
            df.to_csv(path, index=False)
        elif format == "xlsx":
            df.to_excel(path, index=False)
        else:
            df.to_parquet(path, index=False)

    log.info("export_completed", count=len(entries), path=str(path), format=format)
