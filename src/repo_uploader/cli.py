"""CLI for repo-uploader."""

import logging
import os
from pathlib import Path
from typing import Optional

import typer
import yaml
from rich.console import Console
from rich.markup import escape
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from .api import BackgroundUpload, make_client, make_orchestrator
from .client import RemoteRepositoryClient
from .config import UploaderConfig, config_path, load_config
from .core import UploadResult
from .errors import CATEGORY_MESSAGES, ConfigError, NotFoundError, UploaderError
from .progress_store import ProgressStore
from .utils import humanize_size


app = typer.Typer(help="""\
Upload a local folder into a GitHub repository as one logical push.
Interrupted uploads are checkpointed and resume where they stopped.""")

console = Console()

TOKEN_OPTION = typer.Option(
    None, "--token", envvar="GITHUB_TOKEN", help="Access token (defaults to $GITHUB_TOKEN)"
)


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
):
    """Configure logging for all commands."""
    debug = verbose or bool(os.environ.get("DEBUG"))
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load_config() -> UploaderConfig:
    try:
        return load_config()
    except ConfigError as e:
        console.print(f"[red]✗[/red] {escape(str(e))}")
        raise typer.Exit(1)


def _get_client(token: Optional[str], config: UploaderConfig) -> RemoteRepositoryClient:
    """Authenticate and build a client, exiting with a message on failure."""
    if not token:
        console.print("[red]✗[/red] No access token")
        console.print("[dim]Pass --token or set GITHUB_TOKEN[/dim]")
        raise typer.Exit(1)
    try:
        return make_client(token, config)
    except UploaderError as e:
        console.print(f"[red]✗[/red] Authentication failed: {escape(str(e))}")
        raise typer.Exit(1)


def _print_result(result: UploadResult) -> None:
    if result.skipped:
        console.print(f"\n[yellow]Skipped {len(result.skipped)} entries (symlinks or special files):[/yellow]")
        for path in result.skipped:
            console.print(f"  [yellow]![/yellow] {escape(path)}")

    if result.success:
        console.print(f"[green]✓[/green] Uploaded {result.files_count} files ({result.mode.value} mode)")
        console.print(f"  {result.url}")
        return

    category = result.error_category or "generic"
    console.print(f"[red]✗[/red] {CATEGORY_MESSAGES.get(category, CATEGORY_MESSAGES['generic'])}")
    console.print(f"[dim]{escape(result.error or '')}[/dim]")
    if result.can_resume:
        console.print("[yellow]Progress was saved. Run the same command again to resume.[/yellow]")
    else:
        console.print("[dim]Nothing was uploaded; fix the problem and run again.[/dim]")


@app.command()
def upload(
    folder: Path = typer.Argument(..., help="Folder to upload"),
    repo: str = typer.Option(..., "--repo", "-r", help="Target repository name"),
    branch: Optional[str] = typer.Option(None, "--branch", "-b", help="Target branch (defaults to the repository default)"),
    message: Optional[str] = typer.Option(None, "--message", "-m", help="Commit message"),
    create: bool = typer.Option(False, "--create", help="Create the repository if it does not exist"),
    workers: Optional[int] = typer.Option(None, "--workers", min=1, help="Concurrent blob uploads"),
    token: Optional[str] = TOKEN_OPTION,
):
    """Upload a folder to a repository.

    Examples:
        repo-uploader upload ./site --repo demo
        repo-uploader upload ./site --repo demo -m "Publish site" --create
    """
    config = _load_config()
    client = _get_client(token, config)
    orchestrator = make_orchestrator(client, config, blob_workers=workers)

    columns = (
        SpinnerColumn(),
        TextColumn("{task.description}"),
        BarColumn(),
        TextColumn("{task.percentage:>3.0f}%"),
    )
    with Progress(*columns, console=console) as progress:
        task = progress.add_task("Preparing upload...", total=100)
        background = BackgroundUpload(orchestrator, folder, repo, branch, message, create).start()
        try:
            for event in background.iter_events():
                progress.update(task, completed=event.percent, description=event.message)
        except KeyboardInterrupt:
            background.cancel()
            progress.update(task, description="Cancelling after the current file...")
            for event in background.iter_events():
                progress.update(task, completed=event.percent)
        result = background.result()

    client.session.close()
    _print_result(result)
    if not result.success:
        raise typer.Exit(1)


@app.command()
def status(
    repo: Optional[str] = typer.Argument(None, help="Repository name (all if omitted)"),
):
    """Show saved checkpoints of interrupted uploads."""
    config = _load_config()
    store = ProgressStore(config.resolved_state_dir())

    if repo and not store.exists(repo):
        console.print(f"[dim]No checkpoint for {repo}[/dim]")
        return
    names = [repo] if repo else store.list_checkpoints()
    if not names:
        console.print("[dim]No interrupted uploads[/dim]")
        return

    table = Table(title="Upload checkpoints")
    table.add_column("Repository", style="cyan")
    table.add_column("Blobs", justify="right")
    table.add_column("Files", justify="right")
    table.add_column("Checkpoint", style="dim")
    for name in names:
        state = store.load(name)
        table.add_row(
            name,
            str(len(state.uploaded_blobs)),
            str(len(state.uploaded_files)),
            str(store.path_for(name)),
        )
    console.print(table)


@app.command()
def reset(
    repo: str = typer.Argument(..., help="Repository name"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
):
    """Discard the checkpoint so the next upload starts from scratch."""
    config = _load_config()
    store = ProgressStore(config.resolved_state_dir())
    if not store.exists(repo):
        console.print(f"[dim]No checkpoint for {repo}[/dim]")
        return
    if not yes and not typer.confirm(f"Discard upload progress for {repo}?"):
        raise typer.Exit(1)
    store.clear(repo)
    console.print(f"[green]✓[/green] Checkpoint for {repo} removed")


@app.command()
def repos(token: Optional[str] = TOKEN_OPTION):
    """List repositories of the authenticated user."""
    config = _load_config()
    client = _get_client(token, config)
    try:
        items = client.list_repositories()
    except UploaderError as e:
        console.print(f"[red]✗[/red] {escape(str(e))}")
        raise typer.Exit(1)

    if not items:
        console.print("[dim]No repositories[/dim]")
        return
    table = Table(title=f"Repositories of {client.owner}")
    table.add_column("Name", style="cyan")
    table.add_column("Visibility")
    table.add_column("Default branch")
    table.add_column("Description", style="dim")
    for item in items:
        table.add_row(
            item.name,
            "private" if item.private else "public",
            item.default_branch or "-",
            item.description or "",
        )
    console.print(table)


@app.command("ls")
def list_contents(
    repo: str = typer.Argument(..., help="Repository name"),
    path: str = typer.Argument("", help="Directory inside the repository"),
    ref: Optional[str] = typer.Option(None, "--ref", help="Branch, tag or commit"),
    token: Optional[str] = TOKEN_OPTION,
):
    """List files in a repository directory."""
    config = _load_config()
    client = _get_client(token, config)
    try:
        entries = client.get_contents(repo, path, ref=ref)
    except NotFoundError:
        console.print(f"[yellow]{escape(repo)}/{escape(path)} is empty or does not exist[/yellow]")
        raise typer.Exit(1)
    except UploaderError as e:
        console.print(f"[red]✗[/red] {escape(str(e))}")
        raise typer.Exit(1)

    # Directories first, then files, each alphabetically
    for entry in sorted(entries, key=lambda e: (e.type != "dir", e.name)):
        if entry.type == "dir":
            console.print(f"  [blue]{entry.name}/[/blue]")
        else:
            console.print(f"  {entry.name} [dim]({humanize_size(entry.size)})[/dim]")


@app.command("cat")
def show_file(
    repo: str = typer.Argument(..., help="Repository name"),
    path: str = typer.Argument(..., help="File inside the repository"),
    ref: Optional[str] = typer.Option(None, "--ref", help="Branch, tag or commit"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the file here instead of stdout"),
    token: Optional[str] = TOKEN_OPTION,
):
    """Print a file from a repository."""
    config = _load_config()
    client = _get_client(token, config)
    try:
        data = client.get_file_content(repo, path, ref=ref)
    except NotFoundError:
        console.print(f"[yellow]{escape(repo)}/{escape(path)} does not exist[/yellow]")
        raise typer.Exit(1)
    except UploaderError as e:
        console.print(f"[red]✗[/red] {escape(str(e))}")
        raise typer.Exit(1)

    if output is not None:
        output.write_bytes(data)
        console.print(f"[green]✓[/green] Wrote {escape(str(output))} ({humanize_size(len(data))})")
        return
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError:
        console.print(f"[red]✗[/red] {escape(path)} is a binary file, use --output")
        raise typer.Exit(1)
    typer.echo(text, nl=False)


@app.command("create-repo")
def create_repo(
    name: str = typer.Argument(..., help="Repository name"),
    description: str = typer.Option("", "--description", "-d", help="Repository description"),
    private: bool = typer.Option(False, "--private", help="Create a private repository"),
    token: Optional[str] = TOKEN_OPTION,
):
    """Create an empty repository."""
    config = _load_config()
    client = _get_client(token, config)
    try:
        info = client.create_repository(name, description=description, private=private)
    except UploaderError as e:
        console.print(f"[red]✗[/red] Could not create {escape(name)}: {escape(str(e))}")
        raise typer.Exit(1)
    console.print(f"[green]✓[/green] Created {info.full_name}")
    console.print(f"  {info.html_url}")


@app.command("config")
def show_config():
    """Show the effective configuration."""
    config = _load_config()
    console.print(f"[dim]# {config_path()}[/dim]")
    data = config.model_dump(mode="json")
    data["state_dir"] = str(config.resolved_state_dir())
    console.print(yaml.safe_dump(data, default_flow_style=False, sort_keys=False).rstrip(), markup=False)


def main():
    """Entry point for CLI."""
    app()


if __name__ == "__main__":
    main()
