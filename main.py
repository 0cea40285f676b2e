"""Process entry point for the mail relay service.

Usage:
    python main.py serve [--host HOST] [--port PORT]
    python main.py verify
    python main.py send-test [--to ADDRESS]
"""

import asyncio
import logging
import sys

import click
import uvicorn

from mail_relay_service.api import create_app
from mail_relay_service.config_loader import load_settings
from mail_relay_service.dispatcher import Dispatcher
from mail_relay_service.errors import MailServiceError
from mail_relay_service.logger import get_logger
from mail_relay_service.prometheus import MailMetrics
from mail_relay_service.rate_limit import RateLimiter
from mail_relay_service.transport import MailTransport
from mail_relay_service.validation import EmailRequest

logger = get_logger()


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format='[%(asctime)s] [%(levelname)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        force=True  # Force reconfiguration to avoid duplicate handlers
    )


def build_transport(settings: dict[str, object]) -> MailTransport:
    return MailTransport(
        host=str(settings["smtp_host"]),
        port=int(settings["smtp_port"]),
        user=settings.get("smtp_user"),
        password=settings.get("smtp_password"),
        sender_name=str(settings["sender_name"]),
        connect_timeout=float(settings["connect_timeout"]),
        send_timeout=float(settings["send_timeout"]),
    )


def build_app(settings: dict[str, object]):
    """Wire transport, dispatcher, metrics and limiter into the FastAPI app."""
    transport = build_transport(settings)
    metrics = MailMetrics()
    dispatcher = Dispatcher(
        transport,
        sender_address=settings.get("smtp_user"),
        sender_name=str(settings["sender_name"]),
        diagnostics=bool(settings.get("diagnostics")),
        metrics=metrics,
    )
    limiter = RateLimiter(
        max_requests=int(settings["rate_limit_max_requests"]),
        window_seconds=int(settings["rate_limit_window_seconds"]),
    )
    return create_app(
        dispatcher,
        api_token=settings.get("api_token"),
        max_body_bytes=int(settings["max_body_bytes"]),
        rate_limiter=limiter,
        cors_origins=settings["cors_origins"],
        environment=str(settings["environment"]),
        metrics=metrics,
    )


@click.group()
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Mail relay service."""
    settings = load_settings()
    configure_logging(str(settings["log_level"]))
    ctx.obj = settings


@cli.command("serve")
@click.option("--host", "-h", default=None, help="Host to bind to (default: from settings).")
@click.option("--port", "-p", type=int, default=None, help="Port to listen on (default: from settings).")
@click.pass_obj
def serve(settings: dict[str, object], host: str | None, port: int | None) -> None:
    """Run the HTTP API under uvicorn."""
    app = build_app(settings)
    logger.info("Environment: %s", settings["environment"])
    if settings.get("smtp_user") and settings.get("smtp_password"):
        logger.info("SMTP relay account configured: %s", settings["smtp_user"])
    else:
        logger.warning("SMTP credentials not configured; send requests will fail until GMAIL_USER and GMAIL_PASS are set")
    uvicorn.run(app, host=host or str(settings["http_host"]), port=port or int(settings["http_port"]))


@cli.command("verify")
@click.pass_obj
def verify(settings: dict[str, object]) -> None:
    """Check connectivity and credentials against the relay."""
    transport = build_transport(settings)
    try:
        asyncio.run(transport.verify())
    except MailServiceError as exc:
        click.echo(f"SMTP verification failed: {exc}", err=True)
        sys.exit(1)
    click.echo(f"SMTP connection to {transport.host}:{transport.port} verified")


@cli.command("send-test")
@click.option("--to", "recipient", default=None, help="Recipient (default: the relay account itself).")
@click.pass_obj
def send_test(settings: dict[str, object], recipient: str | None) -> None:
    """Send a test email to verify the service end to end."""
    transport = build_transport(settings)
    recipient = recipient or transport.user
    if not recipient:
        click.echo("No recipient given and GMAIL_USER is not set", err=True)
        sys.exit(1)
    request = EmailRequest(
        to=(recipient,),
        subject="Email Service Test",
        message="This is a test email to verify the email service is working correctly.",
    )

    async def _run():
        await transport.verify()
        return await transport.send(request)

    try:
        result = asyncio.run(_run())
    except MailServiceError as exc:
        click.echo(f"Email test failed: {exc}", err=True)
        sys.exit(1)
    click.echo(f"Test email sent to {recipient} (message id {result.message_id})")


if __name__ == "__main__":
    cli()
