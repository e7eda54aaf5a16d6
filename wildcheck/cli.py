"""wildcheck CLI: terminal interface built with Typer + Rich.

Results are written to stdout (or ``--output``); the banner, progress notes
and logs go to stderr so the tool can sit in a shell pipeline.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import IO, Callable, List, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from wildcheck import __version__
from wildcheck.core.config import Config, load_config
from wildcheck.core.engine import OUTPUT_MODES, FilterEngine, RunSummary, read_lines
from wildcheck.core.errors import DomainLookupError, EmptyResolverPoolError
from wildcheck.core.public_dns import load_public_resolvers
from wildcheck.core.resolver_pool import setup_resolver_pool
from wildcheck.utils.helpers import is_valid_hostname, normalise_name, parse_resolver_lines
from wildcheck.utils.logger import configure_logging, get_logger

app = typer.Typer(
    name="wildcheck",
    help="[bold cyan]wildcheck[/]: filter wildcard DNS artifacts out of subdomain lists",
    rich_markup_mode="rich",
    no_args_is_help=True,
)

console = Console()
err_console = Console(stderr=True)
logger = get_logger(__name__)

_BANNER = r"""
         _ __    __     __           __
 _    __(_) /___/ /____/ /  ___ ____/ /__
| |/|/ / / / __  / __/ _ \/ -_) __/  '_/
|__,__/_/_/\_,_/\__/_//_/\__/\__/_/\_\
"""


def _print_banner() -> None:
    """Print the wildcheck ASCII art banner on stderr."""
    err_console.print(
        Panel(
            Text(_BANNER, style="bold cyan", justify="center"),
            subtitle=f"[dim]v{__version__}  wildcard DNS filter[/]",
            border_style="cyan",
            expand=False,
        )
    )


def _read_resolver_file(path: str) -> List[str]:
    """Read a resolver list file; unreadable files are fatal."""
    try:
        with open(path, "r", encoding="utf-8", errors="replace") as fh:
            return parse_resolver_lines(fh)
    except OSError as exc:
        err_console.print(f"[red]Failed to open resolver file: {exc}[/]")
        raise typer.Exit(1)


def _open_input(path: str) -> IO[str]:
    """Open the candidate list; ``-`` means stdin."""
    if path == "-":
        return sys.stdin
    try:
        return open(path, "r", encoding="utf-8", errors="replace")
    except OSError as exc:
        err_console.print(f"[red]Please check your input file: {exc}[/]")
        raise typer.Exit(1)


# ---------------------------------------------------------------------------
# filter command
# ---------------------------------------------------------------------------


@app.command("filter")
def filter_command(
    input_path: str = typer.Option("-", "--input", "-i", help="Subdomain list, '-' for stdin"),
    threads: Optional[int] = typer.Option(None, "--threads", "-t", help="Worker count"),
    public_dns: bool = typer.Option(
        False, "--public-dns", "-p", help="Add resolvers from public-dns.info"
    ),
    resolver_list: Optional[str] = typer.Option(
        None, "--resolvers", "-r", help="Resolver list file (host or host:port per line)"
    ),
    domain: Optional[str] = typer.Option(
        None, "--domain", "-d", help="Only classify names under this base domain"
    ),
    max_qps: Optional[int] = typer.Option(None, "--max-qps", help="Global query-rate ceiling"),
    mode: Optional[str] = typer.Option(
        None, "--mode", "-m", help="Output mode: tagged (every name) or filtered (non-wildcard only)"
    ),
    output: Optional[str] = typer.Option(None, "--output", "-o", help="Output file path"),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="DNS query timeout in seconds"),
    log_file: Optional[str] = typer.Option(None, "--log-file", help="Also write logs to this file"),
    silent: bool = typer.Option(False, "--silent", help="Only print results"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
    config_file: Optional[str] = typer.Option(None, "--config", help="Custom config file"),
) -> None:
    """[bold]Classify candidate subdomains as wildcard or non-wildcard.[/]

    Examples:

        subfinder -d example.com | wildcheck filter

        wildcheck filter -i subs.txt -r resolvers.txt -t 50 --mode filtered

        wildcheck filter -i subs.txt -d example.com --max-qps 500 -o clean.txt
    """
    if not silent:
        _print_banner()

    configure_logging(
        level=logging.WARNING if silent else logging.INFO,
        log_file=log_file,
        verbose=verbose,
    )

    cfg = load_config(config_file)
    if threads is not None:
        cfg.general.threads = threads
    if timeout is not None:
        cfg.general.timeout = timeout
    if max_qps is not None:
        cfg.resolvers.max_qps = max_qps
    if mode is not None:
        cfg.general.output_mode = mode  # type: ignore[assignment]
    if cfg.general.output_mode not in OUTPUT_MODES:
        err_console.print(
            f"[red]Unknown output mode: {cfg.general.output_mode!r}. Use tagged or filtered.[/]"
        )
        raise typer.Exit(1)
    if cfg.general.threads < 1:
        err_console.print("[red]--threads must be at least 1[/]")
        raise typer.Exit(1)
    if domain is not None and not is_valid_hostname(normalise_name(domain)):
        err_console.print(f"[red]Invalid target domain: {domain!r}[/]")
        raise typer.Exit(1)

    file_resolvers = _read_resolver_file(resolver_list) if resolver_list else []
    source = _open_input(input_path)
    sink = open(output, "w", encoding="utf-8") if output else sys.stdout

    def write(line: str) -> None:
        sink.write(line + "\n")
        sink.flush()

    try:
        summary = asyncio.run(
            _run_filter(cfg, source, write, file_resolvers, public_dns, domain, silent)
        )
    except EmptyResolverPoolError as exc:
        err_console.print(f"[red]Failed to init pool: {exc}[/]")
        raise typer.Exit(1)
    except DomainLookupError as exc:
        err_console.print(f"[red]{exc}[/]")
        raise typer.Exit(1)
    finally:
        if source is not sys.stdin:
            source.close()
        if sink is not sys.stdout:
            sink.close()

    if not silent:
        err_console.print(
            f"[bold green]✓[/] {summary.pipeline.completed} names, "
            f"[bold]{summary.pipeline.wildcard}[/] wildcard, "
            f"{summary.skipped} skipped in {summary.duration:.1f}s"
        )
        if output:
            err_console.print(f"[bold green]✓[/] Results saved to [bold]{output}[/]")


async def _run_filter(
    cfg: Config,
    source: IO[str],
    write: Callable[[str], None],
    file_resolvers: List[str],
    public_dns: bool,
    domain: Optional[str],
    silent: bool,
) -> RunSummary:
    """Build the resolver pool and run the engine over *source*."""
    candidates: List[str] = []
    if public_dns:
        fetched, error = await load_public_resolvers(cfg.resolvers)
        if error is not None:
            logger.warning("Continuing without public resolvers")
        candidates.extend(fetched)
    candidates.extend(file_resolvers)
    if not candidates:
        candidates = list(cfg.resolvers.candidates)

    pool = await setup_resolver_pool(candidates, cfg.resolvers, timeout=cfg.general.timeout)
    if not silent:
        err_console.print(
            f"[bold green]►[/] Total working resolvers: [bold]{len(pool.candidates)}[/] "
            f"(+{len(pool.baseline)} baseline, {pool.global_rate_limit} q/s)"
        )
    try:
        engine = FilterEngine(pool, cfg, write=write, target_domain=domain)
        return await engine.run(read_lines(source))
    finally:
        pool.close()


# ---------------------------------------------------------------------------
# config command
# ---------------------------------------------------------------------------


@app.command()
def config(
    config_file: Optional[str] = typer.Option(None, "--config", help="Config file path"),
) -> None:
    """[bold]Show the effective configuration.[/]"""
    cfg = load_config(config_file)
    console.print_json(cfg.model_dump_json(indent=2))


# ---------------------------------------------------------------------------
# version command
# ---------------------------------------------------------------------------


@app.command()
def version() -> None:
    """[bold]Show wildcheck version information.[/]"""
    console.print(f"[bold cyan]wildcheck[/] version [bold]{__version__}[/]")


def main() -> None:
    """Entry point registered in pyproject.toml."""
    app()


if __name__ == "__main__":
    main()
