from collections.abc import Sequence
from datetime import datetime
from pathlib import Path

from ..core.models import EnrichedRecord
from ..utils.log import get_logger

log = get_logger(__name__)


def _one_line(text: str) -> str:
    return " ".join(text.split())


def render_entries(entries: Sequence[EnrichedRecord], heading: str = "Research Papers Summary") -> str:
    """Render enriched papers as one Markdown document."""
    lines = [f"# {heading}", ""]
    for entry in entries:
        rec = entry.record
        lines.append(f"## {_one_line(rec.title)}")
        lines.append("")
        lines.append(f"- **ID**: {rec.id}")
        lines.append(f"- **Published**: {rec.published.isoformat()}")
        lines.append(f"- **Authors**: {', '.join(rec.authors)}")
        lines.append(f"- **Categories**: {', '.join(rec.categories)}")
        lines.append(f"- **Query**: {entry.query_id}")
        lines.append("")
        lines.append("### GPT Summary")
        lines.append(entry.enrichment.summary)
        lines.append("")
        lines.append("### New Contributions")
        lines.append(entry.enrichment.contribution)
        lines.append("")
        lines.append("### Tags")
        lines.append(", ".join(entry.enrichment.tags))
        if rec.pdf_link:
            lines.append("")
            lines.append("### PDF Link")
            lines.append(f"[Link]({rec.pdf_link})")
        lines.append("")
        lines.append("---")
        lines.append("")
    return "\n".join(lines)


def save_entries_to_markdown(entries: Sequence[EnrichedRecord], path: Path) -> Path:
    """Write ``entries`` to ``path``, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_entries(entries), encoding="utf-8")
    log.info("markdown_written", path=str(path), count=len(entries))
    return path


def query_summary_path(summary_dir: Path, query_id: str, now: datetime | None = None) -> Path:
    """Path of the Markdown file for one query's newly persisted papers.

    Files are grouped per day (``dd-mm``) and prefixed with the time of the run.
    """
    now = now or datetime.now()
    return summary_dir / now.strftime("%d-%m") / f"{now.strftime('%H%M%S')}_{query_id}.md"
