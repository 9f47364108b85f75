"""Ceboelha CLI tool."""

import asyncio

import click

from ceboelha.auth.models import LoginAttempt, RefreshToken, UserRole
from ceboelha.auth.service import create_auth_service
from ceboelha.core.client import S3ClientManager
from ceboelha.core.exceptions import CeboelhaError
from ceboelha.core.log import configure_logging
from ceboelha.core.settings import CeboelhaSettings, load_settings


def _settings() -> CeboelhaSettings:
    try:
        settings = load_settings()
    except CeboelhaError as e:
        raise click.ClickException(e.message)
    configure_logging(settings.log_level)
    return settings


def lifecycle_rules(settings: CeboelhaSettings) -> list[dict]:
    """Bucket lifecycle rules expiring login attempts and old refresh tokens.

    Refresh token objects are kept for their lifetime plus the retention
    window, matching what ``cleanup-tokens`` purges.
    """
    base = settings.s3_base_path
    refresh_days = settings.jwt_refresh_expires_in.days + settings.refresh_token_retention_days + 1
    rules = [
        (LoginAttempt.plural_name(), f"{base}{LoginAttempt.plural_name()}/", settings.login_attempt_retention_days),
        (RefreshToken.plural_name(), f"{base}{RefreshToken.plural_name()}/", refresh_days),
        (
            f"{RefreshToken.plural_name()}-index",
            f"{base}_index/{RefreshToken.plural_name()}/",
            refresh_days,
        ),
    ]
    return [
        {
            "ID": f"expire-{name}",
            "Filter": {"Prefix": prefix},
            "Status": "Enabled",
            "Expiration": {"Days": days},
        }
        for name, prefix, days in rules
    ]


@click.group()
def cli():
    """Ceboelha CLI - Run and operate the auth API."""
    pass


@cli.command()
@click.option("--host", default="127.0.0.1", help="Interface to bind")
@click.option("--port", default=8000, type=int, help="Port to bind")
@click.option("--reload", is_flag=True, help="Reload on code changes")
def serve(host, port, reload):
    """Run the API with uvicorn."""
    import uvicorn

    settings = _settings()
    click.echo(f"Starting {settings.app_name} on {host}:{port}")
    uvicorn.run(
        "ceboelha.fastapi.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level=settings.log_level.lower(),
    )


@cli.command("ensure-bucket")
@click.option("--no-lifecycle", is_flag=True, help="Skip installing lifecycle rules")
def ensure_bucket(no_lifecycle):
    """Create the bucket if missing and install lifecycle rules."""
    settings = _settings()
    manager = S3ClientManager(settings)
    rules = None if no_lifecycle else lifecycle_rules(settings)
    try:
        created = manager.ensure_bucket_exists(lifecycle_rules=rules)
    except CeboelhaError as e:
        raise click.ClickException(e.message)

    state = "Created" if created else "Found"
    click.echo(f"✅ {state} bucket '{settings.aws_bucket_name}'")
    if rules:
        click.echo(f"   Installed {len(rules)} lifecycle rule(s)")


@cli.command("cleanup-tokens")
def cleanup_tokens():
    """Delete refresh tokens past their retention window."""
    settings = _settings()

    async def _cleanup():
        manager = S3ClientManager(settings)
        async with manager.get_async_client() as s3_client:
            service = create_auth_service(settings, s3_client)
            return await service.cleanup()

    deleted = asyncio.run(_cleanup())
    click.echo(f"🗑️  Deleted {deleted} refresh token(s)")


@cli.command("create-admin")
@click.option("--email", required=True, help="Admin email address")
@click.option("--name", required=True, help="Admin display name")
@click.option(
    "--password",
    prompt=True,
    hide_input=True,
    confirmation_prompt=True,
    help="Admin password (prompted when omitted)",
)
def create_admin(email, name, password):
    """Create an administrator account."""
    settings = _settings()

    async def _create():
        manager = S3ClientManager(settings)
        async with manager.get_async_client() as s3_client:
            service = create_auth_service(settings, s3_client)
            try:
                result = await service.register(email, password, name, role=UserRole.ADMIN)
            finally:
                await service.audit.drain()
            return result.user

    try:
        user = asyncio.run(_create())
    except CeboelhaError as e:
        raise click.ClickException(e.message)
    click.echo(f"✅ Created admin {user.email} ({user.id})")


@cli.command()
def version():
    """Show Ceboelha version."""
    from ceboelha import __version__

    click.echo(f"Ceboelha version: {__version__}")


if __name__ == "__main__":
    cli()
