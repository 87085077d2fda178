"""Command line interface for Leyline discovery."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console
from rich.table import Table

from leyline.config import AppConfig
from leyline.discovery.metadata_cache import MetadataCache
from leyline.errors import ConfigurationError, InvalidCategoryError
from leyline.models import Category

console = Console()
app = typer.Typer(help="Leyline - discover tenets and bindings in a document corpus")

_MAX_STARS = 5


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def format_bytes(size: int) -> str:
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024 or unit == "GB":
            return f"{int(value)} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} GB"


def format_relevance(score: float) -> str:
    filled = max(0, min(_MAX_STARS, round(score * _MAX_STARS)))
    return "★" * filled + "☆" * (_MAX_STARS - filled)


def _open_cache(
    docs: Optional[Path], cache_dir: Optional[Path], no_cache: bool, *, warm: bool = True
) -> MetadataCache:
    try:
        config = AppConfig.from_env(
            docs_root=docs,
            cache_dir=cache_dir,
            cache_enabled=False if no_cache else None,
        )
    except ConfigurationError as exc:
        raise typer.BadParameter(str(exc)) from exc
    cache = MetadataCache.open(config)
    if warm:
        cache.warm_in_background()
    return cache


def _print_json(payload: Any) -> None:
    typer.echo(json.dumps(payload, indent=2, default=str))


def _report_skipped(cache: MetadataCache) -> None:
    skipped = len(cache.scan_warnings)
    if skipped:
        console.print(f"[yellow]{skipped} documents skipped (run with --verbose for details)[/yellow]")


def _print_stats(cache: MetadataCache) -> None:
    stats = cache.performance_stats()
    console.print()
    console.print(
        f"[dim]state: {stats['state']}, documents: {stats['document_count']}, "
        f"hit ratio: {stats['hit_ratio']:.0%}, memory: {format_bytes(stats['memory_usage'])}, "
        f"compression: {stats['compression_ratio']:.2f}x[/dim]"
    )
    for name, op in stats["operation_stats"].items():
        console.print(
            f"[dim]  {name}: {op['count']} calls, avg {op['avg_ms']:.2f} ms, "
            f"p95 {op['p95_ms']:.2f} ms[/dim]"
        )


DocsOption = typer.Option(None, "--docs", help="Document root to index")
CacheDirOption = typer.Option(None, "--cache-dir", help="Content cache directory")
NoCacheOption = typer.Option(False, "--no-cache", help="Disable the on-disk content cache")
JsonOption = typer.Option(False, "--json", help="Emit JSON instead of tables")
StatsOption = typer.Option(False, "--stats", help="Show cache performance statistics")
VerboseOption = typer.Option(False, "--verbose", "-v", help="Verbose logging")


@app.command()
def categories(
    docs: Optional[Path] = DocsOption,
    cache_dir: Optional[Path] = CacheDirOption,
    no_cache: bool = NoCacheOption,
    as_json: bool = JsonOption,
    show_stats: bool = StatsOption,
    verbose: bool = VerboseOption,
) -> None:
    """List categories that contain documents."""
    _setup_logging(verbose)
    with _open_cache(docs, cache_dir, no_cache) as cache:
        found = cache.categories()
        if as_json:
            _print_json(
                [
                    {"category": c.value, "documents": len(cache.documents_for_category(c))}
                    for c in found
                ]
            )
            return

        if not found:
            console.print("[yellow]No categories found.[/yellow]")
        else:
            table = Table(show_header=True, header_style="bold magenta")
            table.add_column("Category")
            table.add_column("Documents", justify="right")
            for category in found:
                table.add_row(category.value, str(len(cache.documents_for_category(category))))
            console.print(table)
        _report_skipped(cache)
        if show_stats:
            _print_stats(cache)


@app.command()
def show(
    category: str = typer.Argument(..., help="Category to list"),
    docs: Optional[Path] = DocsOption,
    cache_dir: Optional[Path] = CacheDirOption,
    no_cache: bool = NoCacheOption,
    as_json: bool = JsonOption,
    show_stats: bool = StatsOption,
    verbose: bool = VerboseOption,
) -> None:
    """Show the documents in one category."""
    _setup_logging(verbose)
    with _open_cache(docs, cache_dir, no_cache) as cache:
        try:
            records = cache.documents_for_category(category)
        except InvalidCategoryError:
            console.print(f"[red]Unknown category '{category}'.[/red]")
            console.print("Available categories: " + ", ".join(Category.values()))
            raise typer.Exit(code=1)

        if as_json:
            _print_json([record.to_dict() for record in records])
            return

        if not records:
            console.print(f"[yellow]No documents in '{category}'.[/yellow]")
        else:
            table = Table(show_header=True, header_style="bold magenta")
            table.add_column("ID")
            table.add_column("Title")
            table.add_column("Description")
            table.add_column("Updated")
            for record in records:
                table.add_row(record.id, record.title, record.description[:120], record.last_modified)
            console.print(table)
        _report_skipped(cache)
        if show_stats:
            _print_stats(cache)


@app.command()
def search(
    query: str = typer.Argument(..., help="Query text"),
    limit: int = typer.Option(10, "--limit", help="Number of results to display"),
    docs: Optional[Path] = DocsOption,
    cache_dir: Optional[Path] = CacheDirOption,
    no_cache: bool = NoCacheOption,
    as_json: bool = JsonOption,
    show_stats: bool = StatsOption,
    verbose: bool = VerboseOption,
) -> None:
    """Search titles and contents."""
    _setup_logging(verbose)
    with _open_cache(docs, cache_dir, no_cache) as cache:
        results = cache.search(query, limit=limit)
        if as_json:
            _print_json([result.to_dict() for result in results])
            return

        if not results:
            console.print("[yellow]No matches found.[/yellow]")
            suggestions = cache.suggest_corrections(query)
            if suggestions:
                console.print("Did you mean: " + ", ".join(suggestions) + "?")
        else:
            table = Table(show_header=True, header_style="bold magenta")
            table.add_column("Relevance")
            table.add_column("ID")
            table.add_column("Category")
            table.add_column("Title")
            for result in results:
                table.add_row(
                    format_relevance(result.score),
                    result.record.id,
                    result.record.category.value,
                    result.record.title,
                )
            console.print(table)
        _report_skipped(cache)
        if show_stats:
            _print_stats(cache)


@app.command()
def stats(
    docs: Optional[Path] = DocsOption,
    cache_dir: Optional[Path] = CacheDirOption,
    no_cache: bool = NoCacheOption,
    as_json: bool = JsonOption,
    verbose: bool = VerboseOption,
) -> None:
    """Index the corpus and print cache statistics."""
    _setup_logging(verbose)
    with _open_cache(docs, cache_dir, no_cache) as cache:
        cache.categories()
        payload = cache.performance_stats()
        if as_json:
            _print_json(payload)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Metric")
        table.add_column("Value")
        table.add_row("State", payload["state"])
        table.add_row("Documents", str(payload["document_count"]))
        table.add_row("Categories", str(payload["category_count"]))
        table.add_row("Skipped documents", str(payload["skipped_documents"]))
        table.add_row("Memory estimate", format_bytes(payload["memory_usage"]))
        table.add_row("Hit ratio", f"{payload['hit_ratio']:.1%}")
        table.add_row("Compression ratio", f"{payload['compression_ratio']:.2f}x")
        store = payload["store"]
        if store is not None:
            table.add_row("Cache size", f"{format_bytes(store['size'])} / {format_bytes(store['max_size'])}")
            table.add_row("Cached blobs", str(store["file_count"]))
        else:
            table.add_row("Cache", "disabled")
        console.print(table)


@app.command("cache-health")
def cache_health(
    cache_dir: Optional[Path] = CacheDirOption,
    as_json: bool = JsonOption,
    verbose: bool = VerboseOption,
) -> None:
    """Check that the content cache directory is usable."""
    _setup_logging(verbose)
    cache = _open_cache(None, cache_dir, False, warm=False)
    with cache:
        if cache.store is None:
            issues = [{"type": "unavailable", "path": str(cache_dir or "")}]
            stats_payload = None
        else:
            issues = cache.store.health()
            stats_payload = cache.store.stats()

        if as_json:
            _print_json({"healthy": not issues, "issues": issues, "stats": stats_payload})
        elif issues:
            console.print("[red]Cache unhealthy:[/red]")
            for issue in issues:
                details = ", ".join(f"{key}={value}" for key, value in issue.items() if key != "type")
                console.print(f"  - {issue['type']} ({details})")
        else:
            console.print(
                f"[green]Cache healthy[/green] ({stats_payload['file_count']} blobs, "
                f"{format_bytes(stats_payload['size'])} of {format_bytes(stats_payload['max_size'])})"
            )
    if issues:
        raise typer.Exit(code=1)


def main() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
