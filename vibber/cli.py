"""Typer CLI for Vibber."""

from __future__ import annotations

import json
import os
import shutil
import subprocess
import sys
from pathlib import Path

from sqlalchemy.exc import OperationalError
import typer
import uvicorn

from .cleanup import purge_orphan_guests, vacuum_database
from .config import (
    load_settings,
    settings,
    settings_as_dict,
    update_config_file,
)
from .crud import get_person_by_email, promote_to_admin, register_person
from .database import get_session
from .errors import AttendanceError
from .invites import encode_bulk, format_bulk
from .models import Person
from .scheduler import start_scheduler, stop_scheduler
from .seed import seed_fake_data
from .storage import init_db, upgrade_database

app = typer.Typer(help="Vibber command-line interface")


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Show help when no subcommand is provided."""
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


def _fail(message: str) -> None:
    typer.secho(message, err=True, fg=typer.colors.RED)
    raise typer.Exit(code=1)


@app.command("upgrade-db")
def upgrade_db(
    no_backup: bool = typer.Option(
        False,
        "--no-backup",
        help="Skip creating a .bak copy of the database before upgrading",
    ),
) -> None:
    """Upgrade the SQLite database schema if needed."""
    try:
        actions = upgrade_database(make_backup=not no_backup)
    except OperationalError as exc:
        message = str(getattr(exc, "orig", exc)).lower()
        if "readonly" in message or "read-only" in message:
            _fail(
                "Unable to upgrade because the database is read-only. "
                f"Ensure write access to {settings.database_path}."
            )
        raise

    typer.echo("Database upgrade complete:")
    for action in actions:
        typer.echo(f"- {action}")


@app.command("create-admin")
def create_admin(
    email: str = typer.Argument(..., help="Email address for the admin account"),
    name: str = typer.Argument(..., help="Display name"),
    password: str = typer.Option(
        ..., "--password", prompt=True, hide_input=True, confirmation_prompt=True
    ),
) -> None:
    """Create an admin account, or promote an existing registered account."""
    init_db()
    try:
        with get_session() as session:
            person = get_person_by_email(session, email)
            if person is None:
                person = register_person(
                    session, email=email, name=name, password=password
                )
            elif person.is_guest:
                _fail("Guest identities cannot be promoted to admin.")
            promote_to_admin(session, person)
            person_id = person.id
    except AttendanceError as exc:
        _fail(exc.message)
    typer.echo(f"Admin ready: {person_id}")


@app.command("grant-create")
def grant_create(
    person_id: str = typer.Argument(..., help="Person id to update"),
    revoke: bool = typer.Option(False, "--revoke", help="Remove the permission"),
) -> None:
    """Set can_create_events for a person from the operator shell."""
    init_db()
    with get_session() as session:
        person = session.get(Person, person_id)
        if person is None:
            _fail(f"No person with id {person_id}")
        person.can_create_events = not revoke
        session.add(person)
    state = "revoked" if revoke else "granted"
    typer.echo(f"Event creation {state} for {person_id}")


@app.command("cleanup-guests")
def cleanup_guests(
    vacuum: bool = typer.Option(
        False,
        "--vacuum",
        help="Run SQLite VACUUM after cleanup completes",
    ),
) -> None:
    """Delete guest identities past the retention window that attend nothing."""
    init_db()
    stats = purge_orphan_guests()
    typer.echo(f"Cleanup complete: {stats}")
    if vacuum:
        vacuum_database()
        typer.echo("Database vacuum complete.")


@app.command("invite-links")
def invite_links(
    base_url: str = typer.Argument(..., help="Event URL the links should point at"),
    names_file: Path | None = typer.Option(
        None,
        "--names-file",
        exists=True,
        dir_okay=False,
        help="File with one guest name per line (default: read stdin)",
    ),
    as_json: bool = typer.Option(False, "--json", help="Emit JSON instead of text"),
) -> None:
    """Generate personal invite links for a pasted guest list."""
    block = (
        names_file.read_text(encoding="utf-8") if names_file else sys.stdin.read()
    )
    links = encode_bulk(base_url, block)
    if as_json:
        typer.echo(json.dumps([link._asdict() for link in links], indent=2))
        return
    typer.echo(format_bulk(links))


@app.command("runserver")
def runserver(
    host: str = typer.Option(settings.app_host, "--host", help="Host to bind"),
    port: int = typer.Option(settings.app_port, "--port", help="Port to bind"),
):
    """Start FastAPI with APScheduler."""
    init_db()
    start_scheduler()
    config = uvicorn.Config(
        "vibber.api:app",
        host=host,
        port=port,
        reload=False,
        proxy_headers=True,
        forwarded_allow_ips="*",
    )
    server = uvicorn.Server(config)
    try:
        typer.echo(f"Starting Vibber on {host}:{port}")
        server.run()
    finally:
        stop_scheduler()


@app.command("seed-data")
def seed_data(
    people: int = typer.Option(
        settings.seed_people, "--people", min=1, help="Registered people to create"
    ),
    events: int = typer.Option(
        settings.seed_events, "--events", min=0, help="Events to create"
    ),
    max_attendances: int = typer.Option(
        settings.seed_attendances_per_event,
        "--max-attendances",
        min=0,
        help="Maximum attendances (registered and guest) per event",
    ),
):
    """Populate the database with fake people, events and RSVPs."""
    stats = seed_fake_data(
        people_count=people,
        event_count=events,
        max_attendances_per_event=max_attendances,
    )
    typer.echo(
        f"Seed complete: {stats['people']} people, {stats['guests']} guests, "
        f"{stats['events']} events, {stats['attendances']} RSVPs created."
    )


@app.command("config")
def configure(
    show: bool = typer.Option(
        False, "--show", help="Show the current effective configuration"
    ),
    guest_email_domain: str | None = typer.Option(
        None, "--guest-email-domain", help="Domain used for synthetic guest emails"
    ),
    guest_default_name: str | None = typer.Option(
        None, "--guest-default-name", help="Name given to guests who leave it blank"
    ),
    name_max_length: int | None = typer.Option(
        None, "--name-max-length", min=1, help="Maximum display name length"
    ),
    guest_retention_days: int | None = typer.Option(
        None,
        "--guest-retention-days",
        min=0,
        help="Days before a guest with no RSVPs can be deleted",
    ),
    cleanup_interval_hours: int | None = typer.Option(
        None, "--cleanup-interval-hours", min=1, help="Hours between cleanup runs"
    ),
    enable_scheduler: bool | None = typer.Option(
        None,
        "--enable-scheduler/--disable-scheduler",
        help="Toggle background scheduler (guest cleanup)",
    ),
    host: str | None = typer.Option(None, "--host", help="Default host for runserver"),
    port: int | None = typer.Option(None, "--port", help="Default port for runserver"),
    config_path: Path | None = typer.Option(
        None, "--config-path", help="Path to vibber.toml (default: ./vibber.toml)"
    ),
):
    """View or update the persistent configuration file."""

    updates = {
        "guest_email_domain": guest_email_domain,
        "guest_default_name": guest_default_name,
        "name_max_length": name_max_length,
        "guest_retention_days": guest_retention_days,
        "cleanup_interval_hours": cleanup_interval_hours,
        "enable_scheduler": enable_scheduler,
        "app_host": host,
        "app_port": port,
    }
    clean_updates = {k: v for k, v in updates.items() if v is not None}

    settings_ref = settings
    target_path = config_path or settings.config_path
    if clean_updates:
        settings_ref = update_config_file(clean_updates, path=target_path)
        typer.echo(f"Updated configuration in {target_path}")
    else:
        settings_ref = load_settings(target_path)
    if show or not clean_updates:
        effective = settings_as_dict(settings_ref)
        effective["config_path"] = str(target_path)
        typer.echo(json.dumps(effective, indent=2))


@app.command("test")
def run_tests(pytest_args: list[str] = typer.Argument(None, help="Extra pytest args")):
    """Run the test suite with helpful defaults."""
    env = os.environ.copy()
    env.setdefault("PYTHONPATH", ".")
    uv_path = shutil.which("uv")
    if uv_path:
        cmd = [uv_path, "run", "pytest"]
    else:
        typer.echo("uv not found, falling back to python -m pytest")
        cmd = [sys.executable, "-m", "pytest"]
    if pytest_args:
        cmd.extend(pytest_args)
    typer.echo(f"Running tests: {' '.join(cmd)}")
    result = subprocess.run(cmd, env=env)
    raise typer.Exit(code=result.returncode)


if __name__ == "__main__":
    app()
