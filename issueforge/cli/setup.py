"""Setup and inspection commands (init, status, scan, cleanup)."""

import sys
from pathlib import Path
from typing import Optional

import click

from issueforge.cli._utils import console, load_config_or_exit
from issueforge.config import default_config_yaml, find_config_file
from issueforge.github import GitHubClient
from issueforge.workspace import WorkspaceReconciler


@click.command()
def init() -> None:
    """Create a starter config.yaml in the current directory."""
    config_path = Path("config.yaml")

    if config_path.exists():
        console.print("[yellow]Config file already exists: config.yaml[/yellow]")
        return

    config_path.write_text(default_config_yaml(Path.cwd()))
    console.print("[green]Created config.yaml[/green]")
    console.print("[dim]Edit the file to configure your projects.[/dim]")


@click.command()
def status() -> None:
    """Show whether a config file can be found."""
    config_path = find_config_file()
    if config_path:
        console.print(f"[green]Config found: {config_path}[/green]")
    else:
        console.print('[yellow]No config file found. Run "issue-forge init" to create one.[/yellow]')


@click.command()
@click.option("--config", "-c", "config_path", default=None, help="Path to config file")
def scan(config_path: Optional[str]) -> None:
    """List open issues for every configured project."""
    config, _ = load_config_or_exit(config_path)

    for project in config.projects:
        console.print(f"\n[blue]{project.path}[/blue]")
        try:
            github = GitHubClient(project.path, base_branch=project.base_branch)
            github.initialize()
            issues = github.fetch_open_issues()
        except Exception as e:
            console.print(f"  [red]Error: {e}[/red]")
            continue

        if not issues:
            console.print("  [dim]No open issues[/dim]")
            continue

        for issue in issues:
            labels = f" [dim]\\[{', '.join(issue.labels)}][/dim]" if issue.labels else ""
            console.print(f"  #{issue.number} {issue.title}{labels}")


@click.command()
@click.argument("branch")
@click.option("--config", "-c", "config_path", default=None, help="Path to config file")
@click.option("--project", "-p", "project_path", default=None, help="Project path (default: first project)")
def cleanup(branch: str, config_path: Optional[str], project_path: Optional[str]) -> None:
    """Return a project to its base branch and delete BRANCH locally.

    Examples:
        issue-forge cleanup issue-forge/issue-42
    """
    config, _ = load_config_or_exit(config_path)

    project = config.get_project(Path(project_path)) if project_path else config.projects[0]
    if project is None:
        console.print(f"[red]Project not configured: {project_path}[/red]")
        sys.exit(1)

    workspace = WorkspaceReconciler(project.path, base_branch=project.base_branch)
    workspace.cleanup_branch(branch)
    console.print(f"[green]✓ Cleaned up {branch} in {project.path}[/green]")
