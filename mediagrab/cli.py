"""Entrypoint for the command line interface."""

import asyncio
import signal
from contextlib import suppress
from typing import Any, Callable, Optional

import typer
from rich.console import Console
from rich.status import Status

from mediagrab.caches import BlockListCache, FaviconCache
from mediagrab.configs import settings
from mediagrab.configs.app_configs.config_logging import configure_logging
from mediagrab.exceptions import InvalidURLError
from mediagrab.resolver import LinkInterceptor, MetadataResolver, SessionState, URLClassifier
from mediagrab.store import close_store, init_store
from mediagrab.utils.domain import extract_key
from mediagrab.utils.remote_fetcher import RemoteFetcher

cli = typer.Typer(no_args_is_help=True, add_completion=False)
console = Console()

# CLI Options
store_option = typer.Option(
    True,
    "--store/--no-store",
    help="Record resolved links in the history store",
)

check_option = typer.Option(
    None,
    "--check",
    help="Report whether the host of this URL is blocked instead of listing the hosts",
)


class ConsoleStatusPresenter:
    """Show the waiting indicator as a rich console spinner. Ctrl-C cancels."""

    def __init__(self, console: Console) -> None:
        self.console = console

    def show_waiting_indicator(self, message: str, on_cancel: Callable[[], None]) -> Any:
        """Start the spinner and bind Ctrl-C to `on_cancel`."""
        with suppress(NotImplementedError, RuntimeError):
            asyncio.get_running_loop().add_signal_handler(signal.SIGINT, on_cancel)
        status = Status(f"{message} (Ctrl-C to cancel)", console=self.console)
        status.start()
        return status

    def dismiss(self, handle: Any) -> None:
        """Stop the spinner and restore the default Ctrl-C handling."""
        handle.stop()
        with suppress(NotImplementedError, RuntimeError):
            asyncio.get_running_loop().remove_signal_handler(signal.SIGINT)


def _print_direct_link(url: str) -> None:
    console.print(f"Handing off to the downloader: {url}")


async def _resolve(url: str, use_store: bool) -> SessionState:
    presenter = ConsoleStatusPresenter(console)
    async with RemoteFetcher() as fetcher:
        interceptor = LinkInterceptor(
            URLClassifier(),
            MetadataResolver(fetcher),
            presenter,
            store=init_store() if use_store else None,
            on_direct_link=_print_direct_link,
        )
        outcome = await interceptor.resolve(url)

    match outcome.state:
        case SessionState.RESOLVED if outcome.metadata is not None:
            console.print(f"[green]Title:[/green] {outcome.metadata.title}")
            if outcome.metadata.thumbnail_url:
                console.print(f"[green]Thumbnail:[/green] {outcome.metadata.thumbnail_url}")
        case SessionState.ABORTED:
            console.print("[yellow]Resolution cancelled[/yellow]")
        case SessionState.FALLBACK:
            reason = outcome.error or "no title found"
            console.print(f"[yellow]Opening in the browser instead:[/yellow] {reason}")
    return outcome.state


@cli.command()
def resolve(
    url: str = typer.Argument(..., help="Link to resolve"),
    use_store: bool = store_option,
):
    """Resolve the title and thumbnail of a link, or hand it off as a direct link."""
    try:
        state = asyncio.run(_resolve(url, use_store))
    finally:
        close_store()
    if state is SessionState.FALLBACK:
        raise typer.Exit(code=1)


@cli.command()
def favicon(url: str = typer.Argument(..., help="Website URL")):
    """Download the favicon of a website, or print the cached one."""

    async def _favicon() -> Optional[str]:
        async with RemoteFetcher() as fetcher:
            return await FaviconCache(fetcher).get_favicon_path(url)

    path = asyncio.run(_favicon())
    if path is None:
        console.print(f"[red]No favicon available for {url}[/red]")
        raise typer.Exit(code=1)
    console.print(path)


@cli.command()
def blocklist(check: Optional[str] = check_option):
    """Fetch the ad-block host list and print it."""

    async def _blocklist() -> BlockListCache:
        async with RemoteFetcher() as fetcher:
            cache = BlockListCache(fetcher)
            await cache.refresh()
            return cache

    cache = asyncio.run(_blocklist())
    if cache.snapshot.is_default:
        console.print(
            f"[yellow]Remote list at {settings.blocklist.source_url} unavailable, "
            "using the built-in list[/yellow]"
        )

    if check is not None:
        blocked = cache.is_blocked(check)
        console.print(f"{check}: {'blocked' if blocked else 'allowed'}")
        return

    for host in sorted(cache.get_blocked_hosts()):
        console.print(host)


@cli.command()
def key(url: str = typer.Argument(..., help="URL to key")):
    """Print the cache key (registrable domain) of a URL."""
    try:
        console.print(extract_key(url))
    except InvalidURLError as ex:
        console.print(f"[red]{ex}[/red]")
        raise typer.Exit(code=1)


@cli.callback()
def setup():
    """CLI Entrypoint"""
    configure_logging()


if __name__ == "__main__":
    cli()
