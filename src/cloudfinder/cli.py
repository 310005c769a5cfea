"""Command line interface for CloudFinder."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import List, Optional

import typer
import uvicorn
from rich.console import Console
from rich.table import Table

from cloudfinder.config import AppConfig
from cloudfinder.index.local_index import LocalIndex
from cloudfinder.index.pipeline import Pipeline
from cloudfinder.index.storage import SQLiteDocumentStore
from cloudfinder.ingestion.loader import Ingestor, load_snapshot
from cloudfinder.models import SearchResultSet
from cloudfinder.remote.delegate import HttpDelegate
from cloudfinder.search.engine import Engine
from cloudfinder.search.scorer import Scorer
from cloudfinder.web.app import create_app

console = Console()
app = typer.Typer(help="CloudFinder - local search and discovery for cloud documents")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _ensure_db_parent(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)


def _config(db: Optional[Path], **overrides) -> AppConfig:
    return AppConfig(db_path=db if db is not None else AppConfig().db_path, **overrides)


def _results_table(title: str, result_set: SearchResultSet) -> Table:
    table = Table(title=title, show_header=True, header_style="bold magenta")
    table.add_column("Score")
    table.add_column("Title")
    table.add_column("Modified")
    table.add_column("Link")
    for result in result_set.results:
        table.add_row(
            f"{result.score:.4f}",
            result.doc.title,
            str(result.doc.modification_timestamp or ""),
            result.doc.link,
        )
    return table


def _people_table(result_set: SearchResultSet) -> Table:
    table = Table(title="Contributors", show_header=True, header_style="bold cyan")
    table.add_column("Person")
    table.add_column("Docs")
    table.add_column("Contributions")
    for person_result in result_set.people_results:
        table.add_row(
            person_result.person.display_name or person_result.person.id,
            str(person_result.doc_count),
            str(person_result.contribution_count),
        )
    return table


@app.command()
def load(
    snapshots: List[Path] = typer.Argument(
        ..., help="Snapshot JSON files to load.", exists=True, resolve_path=True
    ),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Load exported document snapshots into the local store."""
    _setup_logging(verbose)
    resolved_db = _config(db).resolve_db_path(Path.cwd())
    _ensure_db_parent(resolved_db)

    store = SQLiteDocumentStore(resolved_db)
    pipeline = Pipeline(store)
    ingestor = Ingestor(store, pipeline)
    console.print(f"Loading into [bold]{resolved_db}[/bold]...")
    try:
        for path in snapshots:
            stats = asyncio.run(ingestor.ingest(load_snapshot(path)))
            console.print(
                f"{path.name}: inserted: {stats.inserted}, updated: {stats.updated}, "
                f"skipped: {stats.skipped}, failed: {stats.failed}, "
                f"contents stored: {stats.contents_stored}"
            )
    finally:
        pipeline.index.close()
        store.close()


async def _run_search(config: AppConfig, resolved_db: Path, query: str, limit: int, delegate: bool):
    store = SQLiteDocumentStore(resolved_db)
    remote = (
        HttpDelegate(config.delegate_url, timeout=config.delegate_timeout)
        if config.delegate_url
        else None
    )
    pipeline = Pipeline(
        store, title_count=config.title_count, fulltext_count=config.fulltext_count
    )
    try:
        await pipeline.reload_index()
        engine = Engine(
            store, pipeline.index, remote, Scorer(), delegate_delay=config.delegate_delay
        )
        return await engine.search(query, limit, delegate=delegate)
    finally:
        if remote is not None:
            await remote.aclose()
        pipeline.index.close()
        store.close()


@app.command()
def search(
    query: str = typer.Argument(..., help="Query text"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    limit: int = typer.Option(AppConfig().result_limit, help="Number of results to display"),
    delegate_url: Optional[str] = typer.Option(
        None, "--delegate-url", help="Also query this remote search service"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Search the local mirror, optionally falling back to a remote service."""
    _setup_logging(verbose)
    config = _config(db, delegate_url=delegate_url)
    resolved_db = config.resolve_db_path(Path.cwd())

    if not resolved_db.exists():
        raise typer.BadParameter(f"Database not found: {resolved_db}")

    responses = asyncio.run(
        _run_search(config, resolved_db, query, limit, delegate=delegate_url is not None)
    )
    final = responses[-1].results
    if not final.results:
        console.print("[yellow]No matches found.[/yellow]")
        return

    console.print(_results_table(f"{final.total_count} found", final))
    if final.people_results:
        console.print(_people_table(final))


async def _run_discovery(resolved_db: Path):
    store = SQLiteDocumentStore(resolved_db)
    index = LocalIndex()
    try:
        engine = Engine(store, index, None, Scorer())
        return await engine.query_discovery()
    finally:
        index.close()
        store.close()


@app.command()
def discover(
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Show documents likely to be relevant right now."""
    _setup_logging(verbose)
    resolved_db = _config(db).resolve_db_path(Path.cwd())
    if not resolved_db.exists():
        raise typer.BadParameter(f"Database not found: {resolved_db}")

    response = asyncio.run(_run_discovery(resolved_db))
    console.print(_results_table("My documents", response.my_docs))
    console.print(_results_table("Recently modified by others", response.org_docs))


@app.command()
def clear(
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Remove every stored document, content and contribution."""
    _setup_logging(verbose)
    resolved_db = _config(db).resolve_db_path(Path.cwd())
    if not resolved_db.exists():
        console.print("[yellow]Database not found, nothing to clear.[/yellow]")
        return

    store = SQLiteDocumentStore(resolved_db)
    try:
        asyncio.run(store.clear())
    finally:
        store.close()
    console.print("Document store cleared.")


@app.command()
def web(
    host: str = typer.Option("127.0.0.1", help="Host interface"),
    port: int = typer.Option(8000, help="Server port"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    delegate_url: Optional[str] = typer.Option(
        None, "--delegate-url", help="Remote search service to delegate to"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Start the web API."""
    _setup_logging(verbose)
    config = _config(db, delegate_url=delegate_url)
    resolved_db = config.resolve_db_path(Path.cwd())
    if not resolved_db.exists():
        console.print("[yellow]Warning: database not found, an empty one will be created.[/yellow]")
        _ensure_db_parent(resolved_db)
    config.db_path = resolved_db

    console.print(f"Starting web API on http://{host}:{port} (database: {resolved_db})")
    uvicorn.run(
        create_app(config),
        host=host,
        port=port,
        reload=False,
        log_level="info",
    )
