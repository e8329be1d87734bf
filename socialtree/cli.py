"""Command-line interface for SocialTree.

This module provides a Typer-based CLI for inspecting a SocialTree store.

Commands:
- init: Create the SQLite store file
- status: Show configuration and entity counts
- feed: Show the most recent posts
- trending: Show the most used tags
- audit: Check denormalized counters and indexes

Example:
    $ socialtree init
    $ socialtree feed --limit 10
    $ socialtree audit
"""

import asyncio
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console
from rich.table import Table

from socialtree import paths
from socialtree.config import settings
from socialtree.consistency import audit as run_audit
from socialtree.logging import setup_logging as configure_logging
from socialtree.posts import PostRepository
from socialtree.store import SQLiteTreeStore, create_store
from socialtree.utils import as_mapping, excerpt, format_timestamp

# Initialize CLI app
app     = typer.Typer(
    name="socialtree",
    help="Social feed and notification store toolkit",
    add_completion=False,
)
console = Console()


# =============================================================================
# Helper Functions
# =============================================================================


def setup_logging(verbose: bool = False) -> None:
    """Configure logging based on verbosity level.

    Args:
        verbose: If True, set DEBUG level; otherwise keep the configured level
    """
    configure_logging(
        level="DEBUG" if verbose else settings.log_level,
        json_logs=settings.log_json,
        colorize=not settings.log_json,
    )


def run_async(coro):
    """Run async coroutine in event loop.

    Args:
        coro: Coroutine to run

    Returns:
        Result of coroutine execution
    """
    return asyncio.run(coro)


def _count(value: Any) -> int:
    return len(as_mapping(value))


async def _collect_stats() -> dict[str, int]:
    store = create_store()
    try:
        comments = await store.get(paths.COMMENTS)
        return {
            "users": _count(await store.get(paths.USERS)),
            "posts": _count(await store.get(paths.POSTS)),
            "comments": sum(_count(c) for c in as_mapping(comments).values()),
            "tags": _count(await store.get(paths.TAGS)),
            "groups": _count(await store.get(paths.GROUPS)),
            "shares": _count(await store.get(paths.SHARES)),
        }
    finally:
        await store.close()


# =============================================================================
# CLI Commands
# =============================================================================


@app.command()
def init(
    database: Optional[Path] = typer.Option(
        None,
        "--database",
        "-d",
        help="SQLite file to create (defaults to DATABASE_PATH)",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose logging",
    ),
) -> None:
    """Create the SQLite store file and its table.

    Running it against an existing file is harmless; data is kept.

    Examples:
        $ socialtree init
        $ socialtree init --database ./tmp/dev.db
    """
    setup_logging(verbose)

    console.print("🏗️  [bold cyan]SocialTree Initialization[/bold cyan]\n")

    db_path = database or settings.database_path
    try:
        store = SQLiteTreeStore(db_path)
        store.initialize()
        run_async(store.close())
    except Exception as e:
        console.print(f"\n❌ [bold red]Initialization failed: {e}[/bold red]")
        raise typer.Exit(code=1)

    console.print(f"✅ Store created at [yellow]{db_path}[/yellow]")
    console.print("\nNext steps:")
    console.print("  1. Set STORE_BACKEND=sqlite (the default outside tests)")
    console.print("  2. Run: socialtree status")


@app.command()
def status(
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose logging",
    ),
) -> None:
    """Show configuration and entity counts.

    Examples:
        $ socialtree status
    """
    setup_logging(verbose)

    console.print("📊 [bold cyan]SocialTree Status[/bold cyan]\n")

    config_table = Table(title="Configuration", show_header=False)
    config_table.add_column("Key", style="cyan")
    config_table.add_column("Value", style="yellow")

    config_table.add_row("Environment", settings.environment.value)
    config_table.add_row("Store Backend", settings.store_backend.value)
    config_table.add_row("Database Path", str(settings.database_path))
    if settings.firebase_database_url:
        config_table.add_row("Firebase URL", settings.firebase_database_url)
    config_table.add_row("Blob Backend", settings.blob_backend.value)
    config_table.add_row("Blob API Token", settings.redact_token())
    config_table.add_row("Atomic Counters", str(settings.atomic_counters))
    config_table.add_row("Max Concurrency", str(settings.max_concurrency))

    console.print(config_table)
    console.print()

    try:
        stats = run_async(_collect_stats())
    except Exception as e:
        console.print(f"\n❌ [bold red]Status failed: {e}[/bold red]")
        raise typer.Exit(code=1)

    stats_table = Table(title="Store Statistics")
    stats_table.add_column("Entity", style="cyan")
    stats_table.add_column("Count", justify="right", style="green")
    for entity, count in stats.items():
        stats_table.add_row(entity.capitalize(), f"{count:,}")

    console.print(stats_table)


@app.command()
def feed(
    limit: int = typer.Option(
        settings.feed_page_size,
        "--limit",
        "-n",
        min=1,
        help="Number of posts to show",
    ),
) -> None:
    """Show the most recent posts.

    Examples:
        $ socialtree feed --limit 5
    """

    async def _feed():
        store = create_store()
        try:
            return await PostRepository(store).list_posts(limit)
        finally:
            await store.close()

    try:
        posts = run_async(_feed())
    except Exception as e:
        console.print(f"\n❌ [bold red]Feed failed: {e}[/bold red]")
        raise typer.Exit(code=1)

    if not posts:
        console.print("📭 No posts yet")
        return

    table = Table(title="Feed")
    table.add_column("Posted", style="dim")
    table.add_column("Author", style="cyan")
    table.add_column("Content")
    table.add_column("Tags", style="magenta")
    table.add_column("👍", justify="right", style="green")
    table.add_column("💬", justify="right", style="green")

    for post in posts:
        table.add_row(
            format_timestamp(post.timestamp),
            post.author.name,
            excerpt(post.content, 60),
            " ".join(post.tags),
            str(post.likes),
            str(post.comments),
        )
    console.print(table)


@app.command()
def trending(
    limit: int = typer.Option(
        settings.trending_limit,
        "--limit",
        "-n",
        min=1,
        help="Number of tags to show",
    ),
) -> None:
    """Show the most used tags.

    Examples:
        $ socialtree trending
    """

    async def _trending():
        store = create_store()
        try:
            return await PostRepository(store).get_trending_topics(limit)
        finally:
            await store.close()

    try:
        tags = run_async(_trending())
    except Exception as e:
        console.print(f"\n❌ [bold red]Trending failed: {e}[/bold red]")
        raise typer.Exit(code=1)

    if not tags:
        console.print("📭 No tags yet")
        return

    table = Table(title="Trending Topics")
    table.add_column("Tag", style="magenta")
    table.add_column("Posts", justify="right", style="green")
    for tag in tags:
        table.add_row(tag.name, str(tag.count))
    console.print(table)


@app.command()
def audit(
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose logging",
    ),
) -> None:
    """Check denormalized counters and indexes against primary records.

    Exits with code 1 when inconsistencies are found. Nothing is repaired.

    Examples:
        $ socialtree audit
    """
    setup_logging(verbose)

    async def _audit():
        store = create_store()
        try:
            return await run_audit(store)
        finally:
            await store.close()

    try:
        report = run_async(_audit())
    except Exception as e:
        console.print(f"\n❌ [bold red]Audit failed: {e}[/bold red]")
        raise typer.Exit(code=1)

    checked = ", ".join(f"{count} {entity}" for entity, count in report.checked.items())
    console.print(f"🔎 Checked {checked}")

    if report.ok:
        console.print("✅ [bold green]No inconsistencies found[/bold green]")
        return

    table = Table(title="Inconsistencies")
    table.add_column("Check", style="cyan")
    table.add_column("Path", style="yellow")
    table.add_column("Detail")
    for violation in report.violations:
        table.add_row(violation.check, violation.path, violation.detail)
    console.print(table)
    console.print(f"\n⚠️  [bold yellow]{len(report.violations)} inconsistencies found[/bold yellow]")
    raise typer.Exit(code=1)


def main() -> None:
    """Main entry point for CLI."""
    app()


if __name__ == "__main__":
    main()
