"""
ToneMatch CLI Entry Point.

Operator commands for searching, selecting examples, re-indexing pending
emails and running health checks.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

import structlog
import typer
from rich.console import Console
from rich.table import Table

from tonematch.cmd_doctor import ToneMatchDoctor
from tonematch.common.exceptions import ConfigurationError, ToneMatchError
from tonematch.config.loader import ToneMatchConfig, get_config
from tonematch.domain.models import SearchFilter
from tonematch.observability import init_observability
from tonematch.services import ToneMatchServices, build_services
from tonematch.store.sql import SqlCandidateStore

app = typer.Typer(help="ToneMatch example retrieval CLI")
logger = structlog.get_logger()
console = Console()


async def _open_services(config: ToneMatchConfig) -> ToneMatchServices:
    if not config.database.url:
        raise ConfigurationError("TONEMATCH_DB_URL is not set")
    store = SqlCandidateStore.from_url(config.database.url, config.database.pool_size)
    return await build_services(config, store)


def _run(coro) -> None:
    try:
        asyncio.run(coro)
    except ToneMatchError as e:
        logger.error("command_failed", error_code=e.error_code)
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(code=1)


def _config() -> ToneMatchConfig:
    try:
        config = get_config()
    except ConfigurationError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(code=1)
    init_observability(config)
    return config


@app.command()
def doctor():
    """Run system health checks."""
    doc = ToneMatchDoctor(_config(), console=console)
    logger.info("running_tonematch_doctor")
    if not doc.run_all():
        logger.error("doctor_checks_failed")
        raise typer.Exit(code=1)
    logger.info("doctor_checks_passed")


@app.command()
def search(
    user_id: str = typer.Argument(..., help="Owner of the sent emails"),
    query: str = typer.Argument(..., help="Text to match"),
    limit: int = typer.Option(10, "--limit", "-k", help="Number of results"),
    relationship: Optional[str] = typer.Option(None, help="Relationship filter"),
    recipient: Optional[str] = typer.Option(None, help="Recipient email filter"),
    threshold: Optional[float] = typer.Option(None, help="Minimum combined score"),
):
    """Rank a user's sent emails against a query."""
    config = _config()

    async def _search() -> None:
        services = await _open_services(config)
        result = await services.search_service.search(
            user_id,
            query,
            filters=SearchFilter(relationship=relationship, recipient_email=recipient),
            limit=limit,
            score_threshold=threshold,
        )
        table = Table("#", "Email", "Recipient", "Semantic", "Style", "Combined", "Temporal")
        for i, match in enumerate(result.documents, 1):
            table.add_row(
                str(i),
                match.candidate.id,
                match.candidate.recipient_email,
                f"{match.semantic_score:.4f}",
                f"{match.style_score:.4f}",
                f"{match.combined_score:.4f}",
                f"{match.temporal_score:.4f}",
            )
        console.print(table)
        stats = result.stats
        console.print(
            f"{len(result.documents)} of {stats.total_candidates} candidates "
            f"({stats.latency_ms:.1f} ms, cache {'hit' if stats.cache_hit else 'miss'})"
        )

    _run(_search())


@app.command()
def select(
    user_id: str = typer.Argument(..., help="Owner of the sent emails"),
    recipient: str = typer.Argument(..., help="Recipient of the draft"),
    email_file: Path = typer.Option(
        ..., "--email-file", "-f", exists=True, readable=True, help="Incoming email text"
    ),
    count: Optional[int] = typer.Option(None, "--count", "-n", help="Examples wanted"),
):
    """Select tone examples for a draft reply."""
    config = _config()
    incoming = email_file.read_text(encoding="utf-8")

    async def _select() -> None:
        services = await _open_services(config)
        result = await services.selector.select_examples(
            user_id, incoming, recipient, desired_count=count
        )
        console.print(f"Relationship: [bold]{result.relationship}[/bold]")
        table = Table("#", "Email", "Origin", "Semantic", "Style", "Combined")
        for i, example in enumerate(result.examples, 1):
            m = example.match
            table.add_row(
                str(i),
                m.candidate.id,
                example.origin,
                f"{m.semantic_score:.4f}",
                f"{m.style_score:.4f}",
                f"{m.combined_score:.4f}",
            )
        console.print(table)
        stats = result.stats
        console.print(
            f"direct={stats.direct_correspondence} "
            f"relationship_match={stats.relationship_match} "
            f"avg_age_days={stats.avg_age_days:.1f}"
        )

    _run(_select())


@app.command()
def reindex(
    limit: int = typer.Option(1000, help="Maximum pending emails to index"),
    batch_size: Optional[int] = typer.Option(None, help="Documents per chunk"),
    user_id: Optional[str] = typer.Option(None, "--user", help="Only this user"),
):
    """Embed sent emails that have no vectors yet."""
    config = _config()

    async def _reindex() -> None:
        services = await _open_services(config)
        store = services.store
        if not isinstance(store, SqlCandidateStore):
            raise ConfigurationError("reindex needs the SQL candidate store")
        pending = await store.fetch_pending(limit, user_id=user_id)
        if not pending:
            console.print("Nothing to index.")
            return
        result = await services.search_service.batch_index(pending, batch_size)
        console.print(
            f"Indexed {result.indexed}, failed {result.failed} "
            f"in {result.latency_ms:.0f} ms"
        )
        for document_id, message in result.errors:
            console.print(f"[red]{document_id}: {message}[/red]")
        if result.failed:
            raise typer.Exit(code=1)

    _run(_reindex())


if __name__ == "__main__":
    app()
