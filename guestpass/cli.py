"""Typer CLI for GuestPass."""

from __future__ import annotations

import json
from pathlib import Path

from sqlalchemy.exc import OperationalError
import typer
import uvicorn

from .auth import MIN_PASSWORD_LENGTH
from .config import (
    load_settings,
    settings,
    settings_as_dict,
    update_config_file,
)
from .crud import create_admin, get_admin_by_email, list_admins, set_admin_password
from .database import get_session
from .storage import init_db, upgrade_database

app = typer.Typer(help="GuestPass command-line interface")


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Show help when no subcommand is provided."""
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


def _fail(message: str) -> None:
    typer.secho(message, err=True, fg=typer.colors.RED)
    raise typer.Exit(code=1)


def _check_password(password: str) -> None:
    if len(password) < MIN_PASSWORD_LENGTH:
        _fail(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")


@app.command("upgrade-db")
def upgrade_db(
    no_backup: bool = typer.Option(
        False,
        "--no-backup",
        help="Skip creating a .bak copy of the SQLite database before upgrading",
    ),
) -> None:
    """Upgrade the database schema if needed."""
    try:
        actions = upgrade_database(make_backup=not no_backup)
    except OperationalError as exc:
        message = str(getattr(exc, "orig", exc)).lower()
        if "readonly" in message or "read-only" in message:
            _fail(
                "Unable to upgrade because the database is read-only. "
                f"Ensure write access to {settings.database_url}."
            )
        raise

    if not actions:
        typer.echo("Database already up to date.")
        return

    typer.echo("Database upgrade complete:")
    for action in actions:
        typer.echo(f"- {action}")


@app.command("runserver")
def runserver(
    host: str = typer.Option(settings.app_host, "--host", help="Host to bind"),
    port: int = typer.Option(settings.app_port, "--port", help="Port to bind"),
):
    """Start the API server; the scheduler runs inside the app lifespan."""
    init_db()
    config = uvicorn.Config(
        "guestpass.api:app",
        host=host,
        port=port,
        reload=False,
        proxy_headers=True,
        forwarded_allow_ips="*",
    )
    server = uvicorn.Server(config)
    typer.echo(f"Starting GuestPass on {host}:{port}")
    server.run()


@app.command("create-admin")
def create_admin_command(
    email: str = typer.Argument(..., help="Login email or username"),
    password: str = typer.Option(
        ..., "--password", prompt=True, hide_input=True, confirmation_prompt=True
    ),
) -> None:
    """Create a new admin account."""
    _check_password(password)
    init_db()
    try:
        with get_session() as session:
            admin = create_admin(session, email=email, password=password)
            admin_email = admin.email
    except ValueError as exc:
        _fail(str(exc))
    typer.echo(f"Created admin {admin_email}")


@app.command("reset-password")
def reset_password(
    email: str = typer.Argument(..., help="Login email of the admin"),
    password: str = typer.Option(
        ..., "--password", prompt=True, hide_input=True, confirmation_prompt=True
    ),
) -> None:
    """Set a new password for an existing admin."""
    _check_password(password)
    init_db()
    try:
        with get_session() as session:
            admin = get_admin_by_email(session, email)
            if admin is None:
                _fail(f"No admin found for {email}")
            set_admin_password(session, admin, password=password)
    except ValueError as exc:
        _fail(str(exc))
    typer.echo(f"Password updated for {email}")


@app.command("list-admins")
def list_admins_command() -> None:
    """Print every admin account."""
    init_db()
    with get_session() as session:
        admins = [(admin.email, admin.created_at) for admin in list_admins(session)]
    if not admins:
        typer.echo("No admins found.")
        return
    for email, created_at in admins:
        typer.echo(f"{email}\t{created_at:%Y-%m-%d %H:%M}")


@app.command("config")
def configure(
    show: bool = typer.Option(
        False, "--show", help="Show the current effective configuration"
    ),
    base_url: str | None = typer.Option(
        None, "--base-url", help="Public URL used in invitation links"
    ),
    environment: str | None = typer.Option(
        None, "--environment", help="Deployment environment (development/production)"
    ),
    email_subject: str | None = typer.Option(
        None, "--email-subject", help="Default invitation email subject"
    ),
    brevo_sender_email: str | None = typer.Option(
        None, "--sender-email", help="From address for invitation emails"
    ),
    brevo_sender_name: str | None = typer.Option(
        None, "--sender-name", help="From name for invitation emails"
    ),
    session_days: int | None = typer.Option(
        None, "--session-days", min=1, help="Admin session lifetime in days"
    ),
    token_expiry_days: int | None = typer.Option(
        None,
        "--token-expiry-days",
        min=1,
        help="Days an expiring invitation stays valid after first use",
    ),
    rate_limit_prune_minutes: int | None = typer.Option(
        None,
        "--rate-limit-prune-minutes",
        min=1,
        help="Minutes between pruning expired rate-limit windows",
    ),
    enable_scheduler: bool | None = typer.Option(
        None,
        "--enable-scheduler/--disable-scheduler",
        help="Toggle background scheduler",
    ),
    host: str | None = typer.Option(None, "--host", help="Default host for runserver"),
    port: int | None = typer.Option(None, "--port", help="Default port for runserver"),
    config_path: Path | None = typer.Option(
        None, "--config-path", help="Path to guestpass.toml (default: ./guestpass.toml)"
    ),
):
    """View or update the persistent configuration file."""

    updates = {
        "base_url": base_url,
        "environment": environment,
        "email_subject": email_subject,
        "brevo_sender_email": brevo_sender_email,
        "brevo_sender_name": brevo_sender_name,
        "session_days": session_days,
        "token_expiry_days": token_expiry_days,
        "rate_limit_prune_minutes": rate_limit_prune_minutes,
        "enable_scheduler": enable_scheduler,
        "app_host": host,
        "app_port": port,
    }
    clean_updates = {k: v for k, v in updates.items() if v is not None}

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


if __name__ == "__main__":
    app()
