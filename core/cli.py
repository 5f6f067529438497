"""
Command-line interface for the PDF store
"""
import click

from core.config import get_settings
from core.exceptions import StoreError
from core.logging import get_logger, setup_logging
from core.services import Services, build_services
from d2_checkout.maintenance import fail_stale_purchases, mark_purchase_disputed
from database.base import Base
from database.session import session_scope

logger = get_logger(__name__)


@click.group()
@click.version_option(version=get_settings().app_version)
@click.pass_context
def cli(ctx: click.Context):
    """Finance Transformers PDF store CLI"""
    if ctx.obj is None:
        settings = get_settings()
        setup_logging(settings)
        ctx.obj = build_services(settings)
        ctx.call_on_close(ctx.obj.close)


@cli.command()
@click.pass_obj
def init_db(services: Services):
    """Initialize database with tables"""
    click.echo("Creating database tables...")
    Base.metadata.create_all(bind=services.engine)
    click.echo("Database initialized successfully!")


@cli.command()
@click.option("--host", default="0.0.0.0", help="Host to bind to")
@click.option("--port", default=8000, help="Port to bind to")
@click.option("--reload", is_flag=True, help="Enable auto-reload")
@click.pass_obj
def runserver(services: Services, host: str, port: int, reload: bool):
    """Run the FastAPI development server"""
    import uvicorn

    settings = services.settings
    click.echo(f"Starting {settings.app_name} server on {host}:{port}")
    click.echo(f"Environment: {settings.environment}")

    uvicorn.run(
        "main:app",
        host=host,
        port=port,
        reload=reload,
        log_level=settings.log_level.lower(),
    )


@cli.command()
@click.option("--older-than-minutes", type=int, default=None, help="Age after which a pending purchase is abandoned")
@click.pass_obj
def sweep_pending(services: Services, older_than_minutes: int):
    """Mark abandoned pending purchases as failed"""
    minutes = older_than_minutes or services.settings.stale_pending_minutes
    with session_scope(services.session_factory) as db:
        count = fail_stale_purchases(db, minutes)
    click.echo(f"Marked {count} pending purchase(s) older than {minutes} minutes as failed")


@cli.command()
@click.pass_obj
def cleanup_tokens(services: Services):
    """Delete expired download tokens that were never used"""
    with session_scope(services.session_factory) as db:
        count = services.token_issuer(db).cleanup_expired()
    click.echo(f"Removed {count} expired download token(s)")


@cli.command()
@click.argument("session_id")
@click.pass_obj
def resend_email(services: Services, session_id: str):
    """Re-send the confirmation email for a checkout session"""
    with session_scope(services.session_factory) as db:
        try:
            result = services.fulfillment(db).resend(session_id)
        except StoreError as e:
            raise click.ClickException(f"{e.message}{f' ({e.details})' if e.details else ''}")
    click.echo(f"✓ Confirmation re-sent for purchase {result['purchase_id']} (resend #{result['resend_count']})")


@cli.command()
@click.argument("purchase_id")
@click.pass_obj
def mark_disputed(services: Services, purchase_id: str):
    """Flag a completed purchase as disputed"""
    with session_scope(services.session_factory) as db:
        try:
            mark_purchase_disputed(db, purchase_id)
        except StoreError as e:
            raise click.ClickException(f"{e.message}{f' ({e.details})' if e.details else ''}")
    click.echo(f"✓ Purchase {purchase_id} marked disputed")


@cli.command()
@click.pass_obj
def env_info(services: Services):
    """Display environment information"""
    settings = services.settings
    click.echo(f"{settings.app_name} v{settings.app_version}")
    click.echo(f"Environment: {settings.environment}")
    click.echo(f"Database: {settings.database_url}")
    click.echo(f"Stripe mode: {'test' if services.stripe_client.is_test_mode() else 'live'}")
    click.echo(f"SendGrid sandbox: {settings.sendgrid_sandbox_mode}")
    click.echo(f"Download links: {settings.download_max_redemptions} downloads over {settings.download_token_ttl_hours}h")
    click.echo(
        f"Payment link limit: {settings.payment_link_rate_limit} per {settings.payment_link_rate_window_seconds}s"
    )


def main():
    """Main entry point"""
    cli()


if __name__ == "__main__":
    main()
