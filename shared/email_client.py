"""
SMTP mailer built on fastapi-mail.

The engine only ever sends plain-text notifications; rendering lives in
engine.services.notification_service.
"""

import logging

from fastapi_mail import ConnectionConfig, FastMail, MessageSchema, MessageType
from fastapi_mail.errors import ConnectionErrors
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from shared.config import Settings, get_settings

logger = logging.getLogger(__name__)


class EmailNotConfiguredError(Exception):
    """Raised when a send is attempted without SMTP settings."""

    pass


class Mailer:
    """
    Thin async wrapper around FastMail.

    Usage:
        mailer = Mailer()
        await mailer.send(["resident@example.com"], "Booking approved", body)
    """

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self._client: FastMail | None = None

    def _get_client(self) -> FastMail:
        if not self.settings.mail_configured:
            raise EmailNotConfiguredError("SMTP settings are incomplete (MAIL_SERVER / MAIL_FROM)")

        if self._client is None:
            config = ConnectionConfig(
                MAIL_USERNAME=self.settings.MAIL_USERNAME,
                MAIL_PASSWORD=self.settings.MAIL_PASSWORD,
                MAIL_FROM=self.settings.MAIL_FROM,
                MAIL_FROM_NAME=self.settings.MAIL_FROM_NAME,
                MAIL_PORT=self.settings.MAIL_PORT,
                MAIL_SERVER=self.settings.MAIL_SERVER,
                MAIL_STARTTLS=self.settings.MAIL_STARTTLS,
                MAIL_SSL_TLS=self.settings.MAIL_SSL_TLS,
                USE_CREDENTIALS=bool(self.settings.MAIL_USERNAME),
                VALIDATE_CERTS=True,
            )
            self._client = FastMail(config)
        return self._client

    @retry(
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(ConnectionErrors),
        reraise=True,
    )
    async def send(self, recipients: list[str], subject: str, body: str) -> None:
        """
        Send a plain-text email.

        Raises:
            EmailNotConfiguredError: SMTP is not configured
            ConnectionErrors: SMTP server rejected or was unreachable (after retry)
        """
        if not recipients:
            return

        message = MessageSchema(
            subject=subject,
            recipients=recipients,
            body=body,
            subtype=MessageType.plain,
        )
        await self._get_client().send_message(message)

        logger.info(f"Email sent: '{subject}' to {len(recipients)} recipient(s)")
