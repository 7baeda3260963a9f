"""
Devbox Lock CLI — inspect and maintain a project's devbox.lock.

Usage:
    devbox-lock show --project-dir ./my-project
    devbox-lock status --project-dir ./my-project --fish
    devbox-lock tidy --project-dir ./my-project --keep glibcLocales
    devbox-lock plugin "github:jetify-com/devbox-plugins?dir=mongodb"
"""

import asyncio
import logging
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from devbox_lock import __version__
from devbox_lock.errors import DevboxLockError

console = Console()

project_dir_option = click.option(
    "--project-dir",
    "-p",
    type=click.Path(file_okay=False, path_type=Path),
    default=".",
    help="Directory containing devbox.json and devbox.lock.",
)

keep_option = click.option(
    "--keep",
    "-k",
    multiple=True,
    help="Trigger package to keep locked although devbox.json no longer declares it (repeatable).",
)


@click.group()
@click.version_option(version=__version__, package_name="devbox-lock")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging.")
def cli(verbose):
    """Devbox Lock — inspect and maintain devbox.lock files."""
    log_level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _load(project_dir: Path, keep=()):
    from devbox_lock.core.lockfile import LockFile
    from devbox_lock.core.project import DevboxJSONProject

    project = DevboxJSONProject(project_dir, trigger_packages=list(keep))
    try:
        project.config()
        return project, LockFile.load(project)
    except DevboxLockError as e:
        raise click.ClickException(str(e)) from e


@cli.command()
@project_dir_option
def show(project_dir):
    """List the packages locked in devbox.lock."""
    _, lock = _load(project_dir)

    if not lock.packages:
        console.print("[yellow]No locked packages.[/yellow]")
        return

    table = Table(title=f"{lock.path} (v{lock.lockfile_version})")
    table.add_column("Package", style="cyan", no_wrap=True)
    table.add_column("Source")
    table.add_column("Resolved", overflow="fold")
    table.add_column("Systems")
    for spec, pkg in sorted(lock.packages.items()):
        table.add_row(
            spec,
            str(getattr(pkg.source, "value", pkg.source)) or "-",
            pkg.resolved or "[red]unresolved[/red]",
            ", ".join(sorted(pkg.systems)) or "-",
        )
    console.print(table)


@cli.command()
@project_dir_option
@keep_option
@click.option("--fish", is_flag=True, help="Check state recorded for the fish shell.")
def status(project_dir, keep, fish):
    """Report whether devbox.lock matches devbox.json and the last install."""
    project, lock = _load(project_dir, keep)

    declared = project.all_package_names_including_removed_trigger_packages()
    missing = [spec for spec in declared if lock.get(spec) is None]
    kept = set(declared) | {str(project.stdenv())}
    stale = [spec for spec in lock.packages if spec not in kept]

    try:
        installed = lock.is_up_to_date_and_installed(is_fish=fish)
    except DevboxLockError as e:
        raise click.ClickException(str(e)) from e

    for spec in missing:
        console.print(f"[yellow]not locked:[/yellow] {spec}")
    for spec in stale:
        console.print(f"[yellow]no longer declared:[/yellow] {spec}")
    if lock.has_allow_insecure_packages():
        console.print("[red]Lockfile allows insecure packages.[/red]")

    if installed and not missing:
        console.print("[bold green]Up to date and installed.[/bold green]")
    else:
        console.print("[bold yellow]Out of date.[/bold yellow]")


@cli.command()
@project_dir_option
@keep_option
def tidy(project_dir, keep):
    """Remove lock entries that devbox.json no longer references.

    Trigger packages are only kept when passed with --keep.
    """
    _, lock = _load(project_dir, keep)
    before = len(lock.packages)
    lock.tidy()
    try:
        written = lock.save()
    except DevboxLockError as e:
        raise click.ClickException(str(e)) from e
    removed = before - len(lock.packages)
    if written:
        console.print(f"[green]Removed {removed} unused package(s).[/green]")
    else:
        console.print("Nothing to tidy.")


@cli.command()
@click.argument("ref")
@click.option(
    "--cache-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Cache directory (defaults to the user cache directory).",
)
@click.option("--manifest/--no-manifest", default=True, help="Print the plugin manifest.")
def plugin(ref, cache_dir, manifest):
    """Fetch a remote plugin and print its canonical name and hash."""
    import httpx

    from devbox_lock.config import PLUGIN_CACHE_NAMESPACE
    from devbox_lock.core.cache import RemoteContentCache
    from devbox_lock.plugins import get_plugin

    async def fetch():
        cache = RemoteContentCache(PLUGIN_CACHE_NAMESPACE, cache_dir=cache_dir)
        source = await get_plugin(ref, cache)
        content = await source.fetch() if manifest else b""
        return source, content

    try:
        source, content = asyncio.run(fetch())
    except (DevboxLockError, ValueError, httpx.HTTPError) as e:
        raise click.ClickException(str(e)) from e

    console.print(f"[cyan]Name:[/cyan] {source.canonical_name}")
    console.print(f"[cyan]Hash:[/cyan] {source.hash()}")
    if content:
        console.print_json(content.decode("utf-8"))


if __name__ == "__main__":
    cli()
