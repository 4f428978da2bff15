import asyncio
import os
from datetime import datetime
from pathlib import Path

import typer
from dotenv import load_dotenv

from .core.config import Settings, get_config, load_settings, set_test_mode
from .core.errors import ConfigError, QueryFileError, StorageError
from .core.models import Query, QueryOutcome
from .core.store import PaperStore
from .enrich.gpt import GPTEnricher
from .enrich.orchestrator import run_queries
from .io_.export import EXPORT_FORMATS, export_entries
from .io_.load import load_queries
from .io_.markdown import query_summary_path, save_entries_to_markdown
from .sources.arxiv import ArxivSource
from .utils.http import get_client
from .utils.log import get_logger, setup_logging

# Load environment variables from .env file
load_dotenv()

log = get_logger(__name__)

app = typer.Typer(help="Fetch arXiv papers for saved queries, summarise new ones with GPT, store them.")


@app.callback()
def callback(
    quiet: bool = typer.Option(
        False, "--quiet", "-q", help="Suppress console log output (logs still written to file)"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose (DEBUG) logging"),
    test: bool = typer.Option(
        False, "--test", help="Use test environment (separate database and output directories)"
    ),
) -> None:
    """Initialize structured logging and the environment configuration."""
    if test:
        set_test_mode()

    log_level = "DEBUG" if verbose else os.getenv("LOG_LEVEL", "INFO")
    session_id = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = setup_logging(session_id=session_id, log_level=log_level, console_output=not quiet)
    log.debug(
        "application_started",
        session_id=session_id,
        log_file=str(log_file),
        environment=get_config().mode,
        db_path=str(get_config().db_path),
    )


def _open_store(db: Path | None) -> PaperStore:
    store = PaperStore(db)
    try:
        store.init_db()
    except StorageError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e
    return store


def _write_query_summary(outcome: QueryOutcome, summary_dir: Path) -> None:
    if not outcome.persisted:
        return
    path = query_summary_path(summary_dir, outcome.query_id)
    try:
        save_entries_to_markdown(outcome.persisted, path)
    except OSError as e:
        log.error("query_summary_write_failed", query_id=outcome.query_id, path=str(path), error=str(e))


async def _run_pipeline(
    queries: list[Query],
    settings: Settings,
    store: PaperStore,
    summary_dir: Path,
) -> list[QueryOutcome]:
    enricher = GPTEnricher.from_settings(settings)
    try:
        async with get_client() as client:
            source = ArxivSource(client, max_results=settings.max_results)
            return await run_queries(
                queries,
                fetch=source.fetch,
                store=store,
                enrich=enricher.enrich,
                max_concurrent=settings.max_concurrent,
                timeout=settings.enrich_timeout,
                on_outcome=lambda outcome: _write_query_summary(outcome, summary_dir),
            )
    finally:
        await enricher.close()


@app.command()
def run(
    queries_path: Path = typer.Option(Path("queries.json"), "--queries", help="Path to JSON queries file"),  # noqa: B008
    db: Path | None = typer.Option(None, "--db", help="Path to SQLite database file"),  # noqa: B008
    max_concurrent: int | None = typer.Option(None, min=1, help="Maximum concurrent GPT calls per query"),
    timeout: float | None = typer.Option(None, min=0.1, help="Timeout in seconds for one GPT call"),
    max_results: int | None = typer.Option(None, min=1, help="Maximum arXiv results per query"),
    summary_dir: Path | None = typer.Option(None, help="Directory for per-query Markdown summaries"),  # noqa: B008
    export_path: Path | None = typer.Option(None, "--export", help="Markdown export of all stored papers"),  # noqa: B008
    no_export: bool = typer.Option(False, "--no-export", help="Skip the full Markdown export"),
) -> None:
    """Process every query: fetch from arXiv, enrich new papers, store them."""
    try:
        settings = load_settings()
    except ConfigError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e

    overrides = {
        "max_concurrent": max_concurrent,
        "enrich_timeout": timeout,
        "max_results": max_results,
    }
    settings = settings.model_copy(update={k: v for k, v in overrides.items() if v is not None})

    try:
        queries = load_queries(queries_path)
    except QueryFileError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e

    store = _open_store(db)
    config = get_config()
    summary_dir = summary_dir or config.summary_dir

    log.info(
        "run_started",
        queries=len(queries),
        db_path=str(store.db_path),
        model=settings.openai_model,
        max_concurrent=settings.max_concurrent,
    )
    outcomes = asyncio.run(_run_pipeline(queries, settings, store, summary_dir))

    typer.echo(f"\nProcessed {len(outcomes)} queries:")
    for outcome in outcomes:
        line = (
            f"  {outcome.query_id}: {outcome.status} "
            f"(candidates={outcome.candidates}, new={outcome.new}, "
            f"saved={len(outcome.persisted)}, failed={outcome.failed})"
        )
        if outcome.error:
            line += f" - {outcome.error}"
        typer.echo(line)

    if no_export:
        return

    target = export_path or config.export_path
    try:
        export_entries(store.list_all(), target, format="md")
    except (StorageError, OSError) as e:
        log.error("export_failed", path=str(target), error=str(e))
        typer.echo(f"Export failed: {e}", err=True)
        raise typer.Exit(code=1) from e
    typer.echo(f"\nAll stored papers saved to {target}")


@app.command()
def export(
    path: Path,
    db: Path | None = typer.Option(None, "--db", help="Path to SQLite database file"),  # noqa: B008
    format: str | None = typer.Option(None, "--format", "-f", help="md, csv, xlsx or parquet (default: file suffix)"),
) -> None:
    """Export all stored papers, most recently published first."""
    export_format = format or path.suffix.lstrip(".").lower() or "md"
    if export_format not in EXPORT_FORMATS:
        typer.echo(f"Unsupported export format: {export_format}. Use one of {', '.join(EXPORT_FORMATS)}", err=True)
        raise typer.Exit(code=2)

    store = _open_store(db)
    entries = store.list_all()
    export_entries(entries, path, format=export_format)
    typer.echo(f"Exported {len(entries)} papers to {path}")


@app.command()
def stats(
    db: Path | None = typer.Option(None, "--db", help="Path to SQLite database file"),  # noqa: B008
) -> None:
    """Show how many papers are stored, per query."""
    store = _open_store(db)
    per_query = store.count_by_query()
    typer.echo(f"Database: {store.db_path}")
    typer.echo(f"Total papers: {store.count()}")
    for query_id, count in per_query.items():
        typer.echo(f"  {query_id}: {count}")


if __name__ == "__main__":
    app()
