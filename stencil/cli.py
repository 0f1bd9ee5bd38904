"""Stencil CLI: the main entry point for template provisioning and sync."""

import asyncio
import logging

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from stencil import __version__

console = Console()


def _split_repo(value: str) -> tuple[str, str]:
    owner, sep, name = value.partition("/")
    if not sep or not owner or not name:
        raise click.BadParameter(f"expected OWNER/REPO, got {value!r}")
    return owner, name.removesuffix(".git")


def _service(ctx: click.Context, source_token: str | None):
    from stencil.service import TemplateSync

    return TemplateSync(
        token=ctx.obj["token"],
        source_token=source_token or ctx.obj["source_token"] or None,
        settings=ctx.obj["settings"],
    )


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "-c", "config_path", default=None, help="YAML settings file")
@click.option("--token", envvar="GITHUB_TOKEN", default="", help="Target GitHub token")
@click.option("--source-token", envvar="STENCIL_SOURCE_TOKEN", default="", help="Template GitHub token")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.pass_context
def main(ctx: click.Context, config_path: str | None, token: str, source_token: str, verbose: bool):
    """Stencil: provision repositories from templates and keep them in sync.

    Repositories are given as OWNER/REPO.
    """
    from stencil.config import load_settings

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )
    ctx.ensure_object(dict)
    ctx.obj.update(
        token=token,
        source_token=source_token,
        settings=load_settings(config_path),
    )


# ── Clone ────────────────────────────────────────────────────────────


@main.command()
@click.argument("source")
@click.argument("target_name")
@click.option("--description", "-d", default=None, help="Description of the new repository")
@click.option("--private", "is_private", is_flag=True, help="Create a private repository")
@click.option("--include-branches", is_flag=True, help="Also copy non-default branches")
@click.option("--owner", "target_username", default=None, help="Create under this user/org")
@click.pass_context
def clone(
    ctx: click.Context,
    source: str,
    target_name: str,
    description: str | None,
    is_private: bool,
    include_branches: bool,
    target_username: str | None,
):
    """Create TARGET_NAME as a copy of the SOURCE template."""
    from stencil.errors import SyncError
    from stencil.github.errors import GitHubAPIError

    source_owner, source_repo = _split_repo(source)
    console.print(f"\n[bold blue]Stencil[/] — Cloning {source} as {target_name}\n")

    async def run():
        async with _service(ctx, None) as ts:
            return await ts.clone_as_template(
                source_owner,
                source_repo,
                target_name,
                target_description=description,
                is_private=is_private,
                include_branches=include_branches,
                target_username=target_username,
            )

    try:
        result = asyncio.run(run())
    except (GitHubAPIError, SyncError) as e:
        console.print(f"[red]Clone failed:[/] {e}")
        raise SystemExit(1)

    console.print(f"[green]v[/] {result.message}")
    console.print(f"  Repository: {result.repository.html_url or result.repository.full_name}")
    console.print(f"  Files: {result.files_count} (strategy: {result.strategy})")
    for skipped in result.skipped:
        console.print(f"  [yellow]![/] skipped {skipped.path}: {skipped.reason}")


# ── Check ────────────────────────────────────────────────────────────


@main.command()
@click.argument("template")
@click.argument("project")
@click.option("--branch", "-b", default=None, help="Template branch to track")
@click.pass_context
def check(ctx: click.Context, template: str, project: str, branch: str | None):
    """Check whether TEMPLATE has changes not yet synced into PROJECT."""
    from stencil.github.errors import GitHubAPIError

    source_owner, source_repo = _split_repo(template)
    target_owner, target_repo = _split_repo(project)

    async def run():
        async with _service(ctx, None) as ts:
            return await ts.check_for_updates(
                source_owner, source_repo, target_owner, target_repo, template_branch=branch
            )

    try:
        result = asyncio.run(run())
    except GitHubAPIError as e:
        console.print(f"[red]Update check failed:[/] {e}")
        raise SystemExit(1)

    if not result.has_updates:
        console.print(f"  [green]OK[/] {result.message or 'No updates available.'}")
        return

    commit = result.latest_commit
    console.print(f"  [yellow]UPDATES[/] {result.message}")
    if commit:
        console.print(f"    {commit.sha[:12]} {commit.message.splitlines()[0] if commit.message else ''}")
        console.print(f"    by {commit.author} on {commit.date}")

    if result.all_files_changed:
        console.print("    All files (first sync or template sha not found)")
    elif result.changed_files:
        table = Table(title=f"Changed files ({len(result.changed_files)})")
        table.add_column("Path", style="cyan")
        for path in result.changed_files:
            table.add_row(path)
        console.print(table)


# ── Sync ─────────────────────────────────────────────────────────────


@main.command()
@click.argument("template")
@click.argument("project")
@click.option("--branch", "target_branch", default=None, help="Branch to write to")
@click.option("--direct", "direct_to_main", is_flag=True, help="Commit straight to the default branch")
@click.option("--no-pr", is_flag=True, help="Do not open a pull request")
@click.option("--message", "-m", "commit_message", default=None, help="Custom commit message")
@click.pass_context
def sync(
    ctx: click.Context,
    template: str,
    project: str,
    target_branch: str | None,
    direct_to_main: bool,
    no_pr: bool,
    commit_message: str | None,
):
    """Replay the current TEMPLATE content onto PROJECT."""
    from stencil.errors import SyncError
    from stencil.github.errors import GitHubAPIError

    source_owner, source_repo = _split_repo(template)
    target_owner, target_repo = _split_repo(project)
    console.print(f"\n[bold blue]Stencil[/] — Syncing {project} with {template}\n")

    async def run():
        async with _service(ctx, None) as ts:
            return await ts.sync_with_template(
                source_owner,
                source_repo,
                target_owner,
                target_repo,
                target_branch=target_branch,
                create_pull_request=not no_pr and not direct_to_main,
                commit_message=commit_message,
                direct_to_main=direct_to_main,
            )

    try:
        result = asyncio.run(run())
    except (GitHubAPIError, SyncError) as e:
        console.print(f"[red]Sync failed:[/] {e}")
        raise SystemExit(1)

    console.print(f"[green]v[/] {result.message}")
    console.print(f"  Files: {result.files_count}")
    if result.sync_branch:
        console.print(f"  Branch: {result.sync_branch}")
    if result.pull_request_url:
        console.print(f"  Pull request: {result.pull_request_url}")
    if result.excluded:
        console.print(f"  [dim]Excluded: {', '.join(result.excluded)}[/]")


# ── Validate ─────────────────────────────────────────────────────────


@main.command(name="validate-template")
@click.argument("template")
@click.option("--branch", "-b", default="main", help="Template branch")
@click.option("--path", default=".template.json", help="Manifest path")
@click.pass_context
def validate_template(ctx: click.Context, template: str, branch: str, path: str):
    """Check that TEMPLATE carries a readable manifest."""
    from stencil.github.errors import GitHubAPIError
    from stencil.manifest import fetch_manifest

    owner, repo = _split_repo(template)

    async def run():
        async with _service(ctx, None) as ts:
            return await fetch_manifest(ts.source, owner, repo, branch, path)

    try:
        manifest = asyncio.run(run())
    except (GitHubAPIError, ValueError) as e:
        console.print(f"  [red]x[/] {e}")
        raise SystemExit(1)

    console.print(f"  [green]v[/] {manifest.name}: {manifest.description}")
    if manifest.features:
        console.print(f"    Features: {', '.join(manifest.features)}")
    if manifest.exclude_files:
        console.print(f"    Excludes: {', '.join(manifest.exclude_files)}")


if __name__ == "__main__":
    main()
