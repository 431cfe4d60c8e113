"""Processing commands (start, run)."""

import signal
import sys
from pathlib import Path
from typing import Optional

import click
from rich.table import Table

from issueforge.cli._utils import build_processor, console, load_config_or_exit
from issueforge.github import GitHubClient, ensure_gh_cli
from issueforge.orchestrator import Orchestrator


def _print_status(orchestrator: Orchestrator) -> None:
    status = orchestrator.get_status()
    table = Table(title=f"Issue Forge ({status['provider']})")
    table.add_column("Project")
    table.add_column("Processed", justify="right")
    table.add_column("Cooling down", justify="right")
    table.add_column("Last issue", justify="right")
    for project in status["projects"]:
        last = project["last_processed"]
        table.add_row(
            project["path"],
            str(project["processed_count"]),
            str(project["cooldown_count"]),
            f"#{last}" if last else "-",
        )
    console.print(table)


@click.command()
@click.option("--config", "-c", "config_path", default=None, help="Path to config file")
def start(config_path: Optional[str]) -> None:
    """Start the Issue Forge daemon.

    Polls every configured project for open issues and processes them one
    at a time until interrupted.

    Examples:
        issue-forge start
        issue-forge start -c ~/forge/config.yaml
    """
    config, path = load_config_or_exit(config_path)
    console.print(f"[green]Loaded config from {path}[/green]")

    try:
        ensure_gh_cli()
    except RuntimeError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)

    processor, notifier = build_processor(config)
    orchestrator = Orchestrator(config, processor, notifier=notifier)

    def _request_stop(signum, frame) -> None:
        console.print("\n[yellow]Stopping after the current operation...[/yellow]")
        orchestrator.stop()

    signal.signal(signal.SIGTERM, _request_stop)

    try:
        orchestrator.start()
    except KeyboardInterrupt:
        orchestrator.stop()
    finally:
        _print_status(orchestrator)


@click.command()
@click.option("--config", "-c", "config_path", default=None, help="Path to config file")
@click.option("--issue", "-i", "issue_number", type=int, default=None, help="Specific issue number to process")
@click.option("--project", "-p", "project_path", default=None, help="Specific project path")
def run(config_path: Optional[str], issue_number: Optional[int], project_path: Optional[str]) -> None:
    """Process a single issue and exit.

    Examples:
        issue-forge run                 # First open issue of the first project
        issue-forge run -i 42 -p ~/app  # Issue #42 of a specific project
    """
    config, _ = load_config_or_exit(config_path)

    if project_path:
        project = config.get_project(Path(project_path))
        if project is None:
            console.print(f"[red]Project not configured: {project_path}[/red]")
            sys.exit(1)
    else:
        project = config.projects[0]

    processor, _ = build_processor(config)

    github = GitHubClient(project.path, base_branch=project.base_branch)
    github.initialize()

    if issue_number is not None:
        issue = github.get_issue(issue_number)
    else:
        issues = github.fetch_open_issues()
        if not issues:
            console.print("[yellow]No open issues found.[/yellow]")
            return
        issue = issues[0]

    console.print(f"[cyan]Processing issue #{issue.number}: {issue.title}[/cyan]")

    try:
        result = processor.process(project, issue, github=github)
    except Exception as e:
        console.print(f"[red]Processing failed: {e}[/red]")
        sys.exit(1)

    if result.succeeded:
        console.print(f"[green]✓ Created PR #{result.pr_number}: {result.pr_url}[/green]")
    else:
        console.print("[yellow]⚠ Issue escalated for human review[/yellow]")
