"""
Outbound mail.

Two backends: ``console`` logs the message and keeps the most recent ones in
``outbox`` (development and tests), ``smtp`` delivers through aiosmtplib with STARTTLS.
"""
import logging
from collections import deque
from email.message import EmailMessage
from typing import Deque

import aiosmtplib

from config import settings

logger = logging.getLogger("shop.mail")

OUTBOX_LIMIT = 100


class Mailer:
    def __init__(self, backend: str = None):
        self.backend = backend or settings.mail_backend
        # console backend only; oldest messages drop off past the limit
        self.outbox: Deque[dict] = deque(maxlen=OUTBOX_LIMIT)

    async def send(self, to: str, subject: str, html: str) -> None:
        if self.backend == "smtp":
            message = EmailMessage()
            message["From"] = f"Ecommerce Support <{settings.mail_from}>"
            message["To"] = to
            message["Subject"] = subject
            message.set_content("This message requires an HTML capable mail client.")
            message.add_alternative(html, subtype="html")
            await aiosmtplib.send(
                message,
                hostname=settings.mail_host,
                port=settings.mail_port,
                username=settings.mail_user,
                password=settings.mail_pass,
                start_tls=True,
            )
            logger.info("Mail '%s' sent to %s", subject, to)
            return

        self.outbox.append({"to": to, "subject": subject, "html": html})
        logger.info("Console mail (not sent) to %s: %s", to, subject)

    async def send_reset_password_email(self, email: str, reset_link: str) -> None:
        html = (
            "<h2>Password Reset Request</h2>"
            "<p>Click below link to reset your password:</p>"
            f'<a href="{reset_link}">{reset_link}</a>'
            f"<p>This link will expire in {settings.reset_token_minutes} minutes.</p>"
        )
        await self.send(email, "Reset Your Password", html)


mailer = Mailer()


def get_mailer() -> Mailer:
    return mailer
