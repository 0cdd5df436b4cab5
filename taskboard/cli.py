"""Taskboard CLI - run and maintain the team/task tracker."""

import asyncio
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from taskboard import __version__
from taskboard.config import TaskboardConfig
from taskboard.logging import setup_logging

console = Console()

# Demo accounts created by `taskboard seed`
SEED_USERS = [
    {
        "name": "Test User",
        "email": "testuser@example.com",
        "password": "password123",
        "description": "General user with team access",
    },
    {
        "name": "Team Lead",
        "email": "teamlead@example.com",
        "password": "password123",
        "description": "User with team creation and management capabilities",
    },
    {
        "name": "Student",
        "email": "student@example.com",
        "password": "password123",
        "description": "Regular user for testing task assignment",
    },
]


def _load_config(ctx: click.Context) -> TaskboardConfig:
    return ctx.obj["config"]


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "config_path", type=click.Path(), help="Path to a taskboard.toml file")
@click.option("--db", "db_path", type=click.Path(), help="Override the database path")
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[str], db_path: Optional[str]):
    """Taskboard - team and task tracking"""
    config = TaskboardConfig.load(config_path)
    if db_path:
        config.db_path = db_path
    setup_logging(
        level=config.log_level,
        log_file=str(config.log_file) if config.log_file else None,
        json_format=config.json_logs,
    )
    ctx.ensure_object(dict)
    ctx.obj["config"] = config


@cli.command("init-db")
@click.pass_context
def init_db(ctx: click.Context):
    """Create the database schema."""
    from taskboard.persistence.database import Database

    config = _load_config(ctx)
    asyncio.run(Database(config.db_path).initialize())
    console.print(f"[green]✓[/] Database ready at [bold]{config.db_path}[/]")


@cli.command()
@click.pass_context
def seed(ctx: click.Context):
    """Create demo user accounts (existing ones are skipped)."""
    from taskboard.collaboration.users import UserStore
    from taskboard.core.errors import TaskboardError
    from taskboard.persistence.database import Database

    config = _load_config(ctx)

    async def run_seed() -> tuple[int, int]:
        store = UserStore(Database(config.db_path), min_password_length=config.min_password_length)
        created = skipped = 0
        for account in SEED_USERS:
            if await store.get_user_by_email(account["email"]):
                console.print(f"[dim]⏭  {account['email']} already exists, skipping[/]")
                skipped += 1
                continue
            try:
                user = await store.create_user(account["name"], account["email"], account["password"])
            except TaskboardError as e:
                console.print(f"[red]✗[/] {account['email']}: {e.message}")
                continue
            console.print(f"[green]✓[/] Created {user.email} (ID: {user.id})")
            created += 1
        return created, skipped

    created, skipped = asyncio.run(run_seed())

    table = Table(title="Demo Credentials")
    table.add_column("Email")
    table.add_column("Password")
    table.add_column("Purpose")
    for account in SEED_USERS:
        table.add_row(account["email"], account["password"], account["description"])
    console.print(table)
    console.print(f"Created: {created}  Skipped: {skipped}")


@cli.command()
@click.option("--limit", "-n", default=5, help="Number of tasks to show")
@click.pass_context
def tasks(ctx: click.Context, limit: int):
    """Show the newest tasks across all teams."""
    from taskboard.collaboration.tasks import TaskStore
    from taskboard.persistence.database import Database

    config = _load_config(ctx)

    async def load():
        store = TaskStore(Database(config.db_path))
        return await store.count_tasks(), await store.list_recent_tasks(limit=limit)

    total, recent = asyncio.run(load())
    console.print(f"Total tasks: [bold]{total}[/]")

    if not recent:
        console.print("[yellow]No tasks found[/]")
        return

    table = Table(title="Recent Tasks")
    table.add_column("ID", justify="right")
    table.add_column("Title", width=30)
    table.add_column("Team")
    table.add_column("Status")
    table.add_column("Due")
    table.add_column("Created")

    for task in recent:
        table.add_row(
            str(task.id),
            task.title[:30],
            task.team_name or str(task.team_id),
            task.status.value,
            task.due_date.isoformat() if task.due_date else "-",
            task.created_at.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)


@cli.command()
@click.option("--host", default=None, help="Host to bind to")
@click.option("--port", "-p", type=int, default=None, help="Port to listen on")
@click.pass_context
def serve(ctx: click.Context, host: Optional[str], port: Optional[int]):
    """Run the Taskboard API server."""
    from taskboard.web.server import run_server

    config = _load_config(ctx)
    if host:
        config.host = host
    if port:
        config.port = port

    console.print(f"[bold blue]Taskboard API[/] on http://{config.host}:{config.port}")
    console.print(f"[dim]Database: {config.db_path}[/dim]")
    run_server(config)


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
