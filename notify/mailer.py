"""
notify/mailer.py -- Email delivery for account notifications (fastapi-mail).

EmailNotifier satisfies auth.service.Notifier: it renders the message with
notify.messages and hands it to FastMail. It raises on transport failure;
deciding that a failed email must not fail the request is the service's job,
not the transport's.

MAIL_SUPPRESS_SEND=true renders and "sends" without opening a connection,
which is what local development wants.
"""

from __future__ import annotations

import logging
from datetime import datetime

from fastapi_mail import ConnectionConfig, FastMail, MessageSchema, MessageType

from auth.models import Account
from core.config import Settings
from notify.messages import Message, render_reset_otp, render_verify_otp, render_welcome

logger = logging.getLogger("cybershield.notify")


def build_mail_client(settings: Settings) -> FastMail:
    """Construct the FastMail client from settings. Called once in lifespan."""
    config = ConnectionConfig(
        MAIL_USERNAME=settings.mail_username,
        MAIL_PASSWORD=settings.mail_password,
        MAIL_FROM=settings.mail_from,
        MAIL_FROM_NAME=settings.mail_from_name,
        MAIL_PORT=settings.mail_port,
        MAIL_SERVER=settings.mail_server,
        MAIL_STARTTLS=settings.mail_starttls,
        MAIL_SSL_TLS=settings.mail_ssl_tls,
        USE_CREDENTIALS=bool(settings.mail_username),
        SUPPRESS_SEND=settings.mail_suppress_send,
    )
    return FastMail(config)


class EmailNotifier:
    def __init__(self, client: FastMail) -> None:
        self._client = client

    async def send_welcome(self, account: Account) -> None:
        await self._send(render_welcome(account))

    async def send_verify_otp(self, account: Account, code: str, expires_at: datetime) -> None:
        await self._send(render_verify_otp(account, code, expires_at))

    async def send_reset_otp(self, account: Account, code: str, expires_at: datetime) -> None:
        await self._send(render_reset_otp(account, code, expires_at))

    async def _send(self, message: Message) -> None:
        schema = MessageSchema(
            subject=message.subject,
            recipients=[message.to],
            body=message.body,
            subtype=MessageType.html,
        )
        await self._client.send_message(schema)
        # Subject only -- bodies carry OTP codes.
        logger.info("Sent '%s' email", message.subject)
