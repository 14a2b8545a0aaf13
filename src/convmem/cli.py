"""CLI interface for convmem.

Searches run against the PostgreSQL conversation store configured by
CONVMEM_DATABASE_URL; query embeddings and LLM classification need
OPENROUTER_API_KEY. `convmem classify` works offline with the pattern rules.
"""

import json
import logging
import sys

import click
from rich.console import Console
from rich.table import Table

from convmem.classifier import QueryClassifier
from convmem.config import ConvMemConfig
from convmem.errors import ConvMemError
from convmem.lib import run_async
from convmem.models import SearchOptions, SearchResult, parse_time_window
from convmem.retrieval import ConversationSearchEngine

console = Console()


def setup_logging(verbose: bool) -> None:
    """Set up logging configuration."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def handle_error(e: Exception) -> None:
    """Handle and display errors nicely."""
    if isinstance(e, ConvMemError):
        console.print(f"[red]Error:[/red] {e}")
    elif isinstance(e, ValueError):
        console.print(f"[red]Configuration Error:[/red] {e}")
        console.print("[dim]Check CONVMEM_DATABASE_URL and OPENROUTER_API_KEY.[/dim]")
    else:
        console.print(f"[red]Unexpected Error:[/red] {e}")
    sys.exit(1)


def render_result(result: SearchResult, query: str) -> None:
    if not result.success:
        console.print(f"[red]Search failed:[/red] {result.error}")
        return

    if not result.results:
        console.print("[yellow]No results found[/yellow]")
    else:
        table = Table(title=f"Results for: {query}")
        table.add_column("Sender", style="yellow")
        table.add_column("Text", style="white")
        table.add_column("Score", style="cyan")
        table.add_column("Session", style="dim", max_width=24)

        for r in result.results:
            text = r.text[:120] + "..." if len(r.text) > 120 else r.text
            table.add_row(
                r.sender or r.source,
                text,
                f"{r.similarity:.3f}",
                r.session_title or r.session_id or "-",
            )
        console.print(table)

    console.print(
        f"[dim]Path: {result.search_path.value} | "
        f"Sessions: {result.relevant_sessions}/{result.total_sessions}"
        f"{' | partial' if result.partial else ''}[/dim]"
    )
    if result.message:
        console.print(f"[dim]{result.message}[/dim]")


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
@click.pass_context
def main(ctx: click.Context, verbose: bool) -> None:
    """convmem - two-tier conversational memory retrieval.

    Configuration:
      CONVMEM_DATABASE_URL  - PostgreSQL with conversation sessions/messages
      OPENROUTER_API_KEY    - Query embeddings and LLM classification
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    setup_logging(verbose)


@main.command()
@click.argument("query")
@click.option("--session-id", "-s", default=None, help="Current session id")
@click.option("--limit", "-l", type=int, default=None, help="Maximum results")
@click.option("--min-similarity", type=float, default=None, help="Similarity threshold")
@click.option("--time-window", default=None, help="Restrict flat search, e.g. 24h or 7d")
@click.option("--legacy", is_flag=True, help="Skip two-tier search and scan the flat corpus")
@click.option("--json", "as_json", is_flag=True, help="Print the raw result as JSON")
def search(
    query: str,
    session_id: str | None,
    limit: int | None,
    min_similarity: float | None,
    time_window: str | None,
    legacy: bool,
    as_json: bool,
) -> None:
    """Search conversation history.

    Example:
        convmem search "what did I just say?" --session-id abc123
        convmem search "have we ever discussed flights?" --json
    """
    try:
        options = SearchOptions(
            limit=limit,
            min_similarity=min_similarity,
            time_window=parse_time_window(time_window) if time_window else None,
            session_id=session_id,
            use_two_tier=not legacy,
        )
        engine = ConversationSearchEngine.from_config(ConvMemConfig())

        async def _search() -> SearchResult:
            async with engine:
                return await engine.search_async(query, options)

        if as_json:
            result = run_async(_search())
            click.echo(json.dumps(result.model_dump(mode="json"), indent=2, default=str))
        else:
            with console.status("Searching..."):
                result = run_async(_search())
            render_result(result, query)

        if not result.success:
            sys.exit(1)

    except (ConvMemError, ValueError) as e:
        handle_error(e)


@main.command()
@click.argument("query")
@click.option("--session-id", "-s", default=None, help="Current session id")
def classify(query: str, session_id: str | None) -> None:
    """Classify a query as conversational or general.

    Example:
        convmem classify "what was my first question?"
    """
    classifier = QueryClassifier.from_config(ConvMemConfig())
    result = run_async(classifier.classify(query, session_id=session_id))
    click.echo(json.dumps(result.model_dump(mode="json"), indent=2))


@main.command()
@click.option("--host", default=None, help="Host to bind (default: CONVMEM_SERVER_HOST)")
@click.option("--port", type=int, default=None, help="Port (default: CONVMEM_SERVER_PORT)")
def serve(host: str | None, port: int | None) -> None:
    """Run the HTTP API server."""
    from convmem.server import run_server

    try:
        run_server(host=host, port=port)
    except (ConvMemError, ValueError) as e:
        handle_error(e)


if __name__ == "__main__":
    main()
