"""SKLoader CLI — inspect and exercise a skill corpus from the terminal.

Commands:
    init        Scaffold a new skill package
    scan        Scan roots and report accepted and rejected skills
    list        Show accepted skills
    info        Get detailed skill information
    match       Rank skills against a task query
    show        Activate a skill and print its body
    resource    Print one resource file of a skill
    serve       Start the MCP server on stdio
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from . import __version__
from .config import LoaderSettings
from .errors import ScanError, SkillError
from .loader import ProgressiveLoader
from .matcher import RelevanceMatcher
from .models import HEADER_FILE, ResourceCategory, SkillHeader, normalize_skill_id, render_skill_md
from .registry import SkillRegistry

console = Console()


def _configure_logging(verbose: int) -> None:
    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose > 1:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(name)s: %(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


def _settings(ctx: click.Context) -> LoaderSettings:
    return ctx.obj["settings"]


def _registry(ctx: click.Context, roots: tuple[str, ...] = ()) -> SkillRegistry:
    """Scan the requested roots (or the configured ones); exit 1 on ScanError."""
    settings = _settings(ctx)
    paths = [Path(r) for r in (roots or ctx.obj["roots"])] or [settings.skills_root]
    try:
        return SkillRegistry.from_roots(*paths, settings=settings)
    except ScanError as exc:
        console.print(f"[red]Scan failed:[/red] {exc}")
        sys.exit(1)


@click.group()
@click.version_option(__version__, prog_name="skloader")
@click.option("--root", "roots", multiple=True, help="Skill root directory (repeatable).")
@click.option("--config", "config_path", type=click.Path(dir_okay=False), default=None, help="Config file.")
@click.option("-v", "--verbose", count=True, help="Increase log verbosity.")
@click.pass_context
def main(ctx: click.Context, roots: tuple[str, ...], config_path: str | None, verbose: int) -> None:
    """SKLoader — skill registry and progressive disclosure loader.

    Discover skill packages, match them to a task from their metadata,
    and load their content on demand under a budget.
    """
    _configure_logging(verbose)
    try:
        settings = LoaderSettings.load(Path(config_path) if config_path else None)
    except ValueError as exc:
        console.print(f"[red]Invalid configuration:[/red] {exc}")
        sys.exit(1)
    ctx.obj = {"settings": settings, "roots": roots}


@main.command()
@click.argument("name")
@click.option("--dir", "directory", default=".", help="Parent directory for the skill.")
@click.option("--description", "desc", default="", help="Skill description.")
@click.option("--license", "license_", default=None, help="License name.")
def init(name: str, directory: str, desc: str, license_: str | None) -> None:
    """Scaffold a new skill package.

    Creates SKILL.md with a header and the optional resource directories.
    """
    base = Path(directory) / normalize_skill_id(name)
    if base.exists():
        console.print(f"[red]Directory already exists:[/red] {base}")
        sys.exit(1)

    base.mkdir(parents=True)
    for category in ResourceCategory:
        (base / category.value).mkdir()

    header = SkillHeader(
        name=name,
        description=desc or f"{name} skill",
        license=license_,
    )
    (base / HEADER_FILE).write_text(render_skill_md(header, f"# {name}\n\nDescribe how to use this skill.\n"))

    console.print(f"\n[green]Skill scaffolded:[/green] {base}")
    console.print(f"  {HEADER_FILE}         — header + body")
    console.print("  scripts/         — helper scripts")
    console.print("  references/      — reference documents")
    console.print("  assets/          — templates and other files")


@main.command()
@click.argument("roots", nargs=-1, type=click.Path(exists=True, file_okay=False))
@click.pass_context
def scan(ctx: click.Context, roots: tuple[str, ...]) -> None:
    """Scan skill roots and report accepted and rejected skills."""
    registry = _registry(ctx, roots)
    _print_skills(registry, title="Accepted Skills")

    if registry.failures:
        table = Table(title="Rejected Candidates")
        table.add_column("Id", style="cyan")
        table.add_column("Field", style="yellow")
        table.add_column("Reason")
        for failure in registry.failures:
            table.add_row(failure.skill_id, failure.field or "-", failure.reason)
        console.print(table)

    console.print(f"[green]{len(registry)} accepted[/green], [red]{len(registry.failures)} rejected[/red]")


def _print_skills(registry: SkillRegistry, title: str) -> None:
    if not len(registry):
        console.print("[dim]No skills found.[/dim]")
        return

    table = Table(title=title)
    table.add_column("Id", style="cyan")
    table.add_column("Name")
    table.add_column("Description")
    table.add_column("License", style="green")
    table.add_column("Resources", style="yellow")

    for d in registry.list():
        table.add_row(
            d.id,
            d.name,
            d.description[:60] + ("..." if len(d.description) > 60 else ""),
            d.license or "-",
            str(d.resource_count),
        )
    console.print(table)


@main.command("list")
@click.pass_context
def list_skills(ctx: click.Context) -> None:
    """Show accepted skills."""
    _print_skills(_registry(ctx), title="Skills")


@main.command()
@click.argument("skill_id")
@click.pass_context
def info(ctx: click.Context, skill_id: str) -> None:
    """Get detailed information about a skill."""
    registry = _registry(ctx)
    try:
        d = registry.get(skill_id)
    except SkillError as exc:
        console.print(f"[red]{exc}[/red]")
        sys.exit(1)

    console.print(f"\n[cyan bold]{d.id}[/cyan bold] — {d.name}")
    console.print(f"  {d.description}")
    console.print(f"  Path: {d.source_path}")
    if d.license:
        console.print(f"  License: {d.license}")
    if d.version:
        console.print(f"  Version: {d.version}")
    if d.tags:
        console.print(f"  Tags: {', '.join(d.tags)}")

    for category, paths in d.resource_dirs.items():
        console.print(f"\n  [bold]{category.value}/[/bold] ({len(paths)})")
        for rel in sorted(paths):
            console.print(f"    {rel}")


@main.command("match")
@click.argument("query")
@click.option("--top-k", type=int, default=None, help="Maximum number of results.")
@click.option("--threshold", type=float, default=None, help="Minimum score (exclusive).")
@click.pass_context
def match_cmd(ctx: click.Context, query: str, top_k: int | None, threshold: float | None) -> None:
    """Rank skills against a task query (metadata only)."""
    settings = _settings(ctx)
    registry = _registry(ctx)
    matcher = RelevanceMatcher(
        registry,
        threshold=settings.match_threshold if threshold is None else threshold,
        name_weight=settings.name_weight,
    )
    try:
        results = matcher.match(query, top_k=settings.top_k if top_k is None else top_k)
    except ValueError as exc:
        console.print(f"[red]{exc}[/red]")
        sys.exit(1)

    if not results:
        console.print(f"[dim]No skills match '{query}'.[/dim]")
        return

    table = Table(title=f"Match: '{query}'")
    table.add_column("#", justify="right")
    table.add_column("Id", style="cyan")
    table.add_column("Score", justify="right", style="green")
    table.add_column("Description")
    for rank, m in enumerate(results, start=1):
        desc = m.descriptor.description
        table.add_row(str(rank), m.skill_id, f"{m.score:.3f}", desc[:60] + ("..." if len(desc) > 60 else ""))
    console.print(table)


@main.command()
@click.argument("skill_id")
@click.option("--budget", type=click.IntRange(min=1), default=None, help="Session byte budget.")
@click.pass_context
def show(ctx: click.Context, skill_id: str, budget: int | None) -> None:
    """Activate a skill in a fresh session and print its body."""
    loader = ProgressiveLoader(_registry(ctx), _settings(ctx))
    session = loader.open_session(budget)
    try:
        body = loader.activate(session, skill_id)
    except SkillError as exc:
        console.print(f"[red]Activation failed:[/red] {exc}")
        sys.exit(1)
    finally:
        session.close()
    click.echo(body, nl=False)


@main.command()
@click.argument("skill_id")
@click.argument("category", type=click.Choice([c.value for c in ResourceCategory]))
@click.argument("path")
@click.pass_context
def resource(ctx: click.Context, skill_id: str, category: str, path: str) -> None:
    """Print one resource file of a skill."""
    loader = ProgressiveLoader(_registry(ctx), _settings(ctx))
    session = loader.open_session()
    try:
        data = loader.resolve_resource(session, skill_id, category, path)
    except SkillError as exc:
        console.print(f"[red]Resource failed:[/red] {exc}")
        sys.exit(1)
    finally:
        session.close()
    click.echo(data, nl=False)


@main.command()
@click.option("--budget", type=click.IntRange(min=1), default=None, help="Session byte budget.")
@click.pass_context
def serve(ctx: click.Context, budget: int | None) -> None:
    """Start the SKLoader MCP server on stdio.

    One activation session lives for the lifetime of the server.
    """
    import asyncio

    from .server import SkillServer

    server = SkillServer(_registry(ctx), _settings(ctx), budget_limit=budget)
    Console(stderr=True).print(f"[green]SKLoader MCP server:[/green] {len(server.registry)} skills")
    asyncio.run(server.run_stdio())


if __name__ == "__main__":
    main()
