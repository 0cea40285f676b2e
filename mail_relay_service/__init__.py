"""HTTP email relay: validate a send request and dispatch it over one SMTP relay.

This package provides a small synchronous-dispatch mail front end:

- Field-level validation of inbound requests, reporting every problem at once
- A lazily initialised SMTP transport bound to a single relay account
- Stable, client-facing error codes for transport failures
- Prometheus metrics and per-client request throttling
- FastAPI REST API exposing ``POST /api/v1/send-email``

Example:
    Basic usage with the FastAPI application::

        from mail_relay_service.transport import MailTransport
        from mail_relay_service.dispatcher import Dispatcher
        from mail_relay_service.api import create_app

        transport = MailTransport(user="relay@example.com", password="secret")
        app = create_app(Dispatcher(transport, sender_address="relay@example.com"))
"""

__version__ = "1.0.0"
