"""prompt-modules command line interface.

Thin operator surface over ModuleLoader and ContentCache: load a module and
show what it provides, load the modules configured in settings, and inspect
or clear the content cache.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

import click
from rich.markup import escape
from rich.table import Table

from .console import console
from .console import error_console
from .errors import ModuleLoadError
from .logging_setup import init_json_logging
from .models import LoadedLibrary
from .models import LoadResult
from .models import ResolvedModuleEntry
from .settings import LoaderSettings
from .settings import create_content_cache
from .settings import create_module_loader
from .settings import load_settings

logger = logging.getLogger(__name__)


def _format_size(size_bytes: int) -> str:
    """Format bytes as human-readable size."""
    size_float = float(size_bytes)
    for unit in ["B", "KB", "MB", "GB"]:
        if size_float < 1024:
            return f"{size_float:.1f} {unit}"
        size_float /= 1024
    return f"{size_float:.1f} TB"


def _fail(error: Exception) -> None:
    error_console.print(f"[red]Error:[/red] {escape(str(error))}")
    sys.exit(1)


def _get_settings(ctx: click.Context) -> LoaderSettings:
    """Settings from the context object, loaded from disk on first use."""
    if ctx.obj.get("settings") is None:
        try:
            ctx.obj["settings"] = load_settings()
        except ModuleLoadError as e:
            _fail(e)
    return ctx.obj["settings"]


def _print_library(library: LoadedLibrary) -> None:
    console.print(f"[bold]Library:[/bold] [cyan]{escape(library.name)}[/cyan]")

    if library.prompts:
        table = Table(title="Prompts")
        table.add_column("Name", style="cyan")
        table.add_column("Description")
        table.add_column("Tags", style="dim")
        table.add_column("Version", style="green")
        for prompt in sorted(library.prompts.values(), key=lambda p: p.name):
            table.add_row(
                escape(prompt.name),
                escape(prompt.description),
                ", ".join(sorted(prompt.tags)),
                prompt.version or "",
            )
        console.print(table)

    if library.components:
        table = Table(title="Components")
        table.add_column("Name", style="cyan")
        table.add_column("Class", style="dim")
        for name, component in sorted(library.components.items()):
            table.add_row(escape(name), f"{component.__module__}.{component.__qualname__}")
        console.print(table)

    if library.dependencies:
        console.print(f"[dim]Dependencies: {escape(', '.join(library.dependencies))}[/dim]")

    console.print(f"\n[bold]Total:[/bold] {len(library.prompts)} prompts, {len(library.components)} components")


@click.group()
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Write JSONL logs to this file",
)
@click.option("--log-level", default=None, help="Log level for --log-file (default: INFO)")
@click.pass_context
def cli(ctx: click.Context, log_file: Path | None, log_level: str | None):
    """Resolve prompt modules from local directories, packages, URLs and GitHub."""
    ctx.ensure_object(dict)
    if log_file is not None:
        init_json_logging(log_file, log_level)


@cli.command(name="load")
@click.argument("source")
@click.option(
    "--type",
    "module_type",
    type=click.Choice(["local", "npm", "url", "git"]),
    default="local",
    show_default=True,
    help="Origin kind of SOURCE",
)
@click.option("--name", help="Library name (default: SOURCE)")
@click.option("--prompt-dir", "prompt_dirs", multiple=True, help="Sub-directory to scan (repeatable)")
@click.option("--version", help="Pinned version")
@click.option("--branch", help="Git ref for git sources")
@click.pass_context
def load_cmd(
    ctx: click.Context,
    source: str,
    module_type: str,
    name: str | None,
    prompt_dirs: tuple[str, ...],
    version: str | None,
    branch: str | None,
):
    """Load one module and list its prompts and components."""
    settings = _get_settings(ctx)
    entry = ResolvedModuleEntry(
        name=name or source,
        type=module_type,
        source=source,
        prompt_dirs=list(prompt_dirs) or None,
        version=version,
        branch=branch,
    )

    async def run() -> LoadedLibrary:
        return await create_module_loader(settings).load_entry(entry)

    try:
        library = asyncio.run(run())
    except ModuleLoadError as e:
        _fail(e)
    _print_library(library)


@cli.command(name="load-all")
@click.pass_context
def load_all_cmd(ctx: click.Context):
    """Load every module configured in settings."""
    settings = _get_settings(ctx)
    if not settings.modules:
        console.print("[dim]No modules configured.[/dim]")
        return

    async def run() -> LoadResult:
        return await create_module_loader(settings).load_entries(settings.modules)

    result = asyncio.run(run())
    for library in result.libraries:
        console.print(
            f"[green]✓[/green] {escape(library.name)}: "
            f"{len(library.prompts)} prompts, {len(library.components)} components"
        )
    for warning in result.warnings:
        console.print(f"[yellow]⚠[/yellow] {escape(warning)}")

    if result.warnings:
        sys.exit(1)


@cli.group(name="cache", invoke_without_command=True)
@click.pass_context
def cache_group(ctx: click.Context):
    """Inspect and manage the content cache."""
    if ctx.invoked_subcommand is None:
        click.echo("\n" + ctx.get_help())
        ctx.exit()


@cache_group.command(name="stats")
@click.pass_context
def cache_stats(ctx: click.Context):
    """Show cached entry count and size."""
    settings = _get_settings(ctx)
    if settings.cache_dir is None:
        console.print("[dim]Persistent cache is disabled.[/dim]")
        return

    stats = create_content_cache(settings).get_stats()
    console.print(f"[bold]Entries:[/bold] {stats.entry_count}")
    console.print(f"[bold]Size:[/bold] {_format_size(stats.total_bytes)}")
    console.print(f"[dim]Path: {settings.cache_dir}[/dim]")


@cache_group.command(name="clear")
@click.argument("url", required=False)
@click.option("--force", "-f", is_flag=True, help="Skip confirmation prompt")
@click.pass_context
def cache_clear(ctx: click.Context, url: str | None, force: bool):
    """Clear the whole cache, or only URL when given."""
    settings = _get_settings(ctx)
    if settings.cache_dir is None:
        console.print("[dim]Persistent cache is disabled - nothing to clear.[/dim]")
        return

    cache = create_content_cache(settings)
    if url:
        if cache.invalidate(url):
            console.print(f"[green]Removed {escape(url)} from cache[/green]")
        else:
            console.print(f"[dim]{escape(url)} is not cached.[/dim]")
        return

    stats = cache.get_stats()
    if stats.entry_count == 0:
        console.print("[dim]Cache is empty - nothing to clear.[/dim]")
        return

    if not force and not click.confirm(f"Remove {stats.entry_count} cached entries?"):
        console.print("[yellow]Aborted.[/yellow]")
        return

    removed = cache.clear()
    console.print(f"[green]Cleared {removed} entries ({_format_size(stats.total_bytes)})[/green]")


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
