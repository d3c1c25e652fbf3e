from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from email.utils import make_msgid

from novel2epub.core.errors import TransportError
from novel2epub.ports import SendResult

logger = logging.getLogger(__name__)


class SmtpEmailTransport:
    def __init__(
        self,
        host: str,
        port: int,
        sender: str,
        username: str | None = None,
        password: str | None = None,
        use_tls: bool = True,
        timeout_sec: float = 30.0,
    ):
        self._host = host
        self._port = port
        self._sender = sender
        self._username = username
        self._password = password
        self._use_tls = use_tls
        self._timeout_sec = timeout_sec

    def send(self, to: str, subject: str | None, attachment: bytes, filename: str) -> SendResult:
        message = EmailMessage()
        message["From"] = self._sender
        message["To"] = to
        # Kindle ignores the body; the subject is optional
        message["Subject"] = subject or filename
        message_id = make_msgid()
        message["Message-ID"] = message_id
        message.set_content("Sent by novel2epub.")
        message.add_attachment(attachment, maintype="application", subtype="epub+zip", filename=filename)

        try:
            with smtplib.SMTP(self._host, self._port, timeout=self._timeout_sec) as smtp:
                if self._use_tls:
                    smtp.starttls()
                if self._username:
                    smtp.login(self._username, self._password or "")
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            raise TransportError(f"SMTP delivery to {to} failed: {exc}") from exc

        logger.info("Sent %s to %s", filename, to)
        return SendResult(id=message_id, success=True)
