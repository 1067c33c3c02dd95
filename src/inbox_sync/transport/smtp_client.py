"""SMTP client for delivering outgoing mail."""

from __future__ import annotations

import base64
import binascii
import logging
import smtplib
from email import encoders
from email.mime.base import MIMEBase
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formatdate, make_msgid

from ..core.account_settings import ProtocolSettings, secret_value
from ..core.errors import ConfigurationError
from ..core.models import OutgoingMail
from .imap_client import xoauth2_string

LOGGER = logging.getLogger(__name__)


class SmtpError(RuntimeError):
    """Raised when SMTP connection, authentication, or sending fails."""


class SmtpClient:
    """SMTP client for sending emails.

    Provides a context manager interface for automatic connection management.
    Supports implicit SSL and STARTTLS, with password or XOAUTH2 authentication.

    Example:
        >>> with SmtpClient(settings) as client:
        ...     client.send(outgoing)
    """

    def __init__(self, settings: ProtocolSettings, timeout: float = 30.0) -> None:
        """Initialize SMTP client with account settings.

        Args:
            settings: Protocol settings holding SMTP host, port and credentials
            timeout: Socket timeout in seconds
        """
        self._settings = settings
        self._timeout = timeout
        self._connection: smtplib.SMTP | None = None

    def __enter__(self) -> SmtpClient:
        """Enter context manager, establishing connection."""
        self.connect()
        return self

    def __exit__(self, *args: object) -> None:
        """Exit context manager, closing connection."""
        self.disconnect()

    def connect(self) -> None:
        """Establish SMTP connection and authenticate.

        Raises:
            ConfigurationError: If the host or credentials are missing
            SmtpError: If connection or authentication fails
        """
        host = self._settings.smtp_host
        port = self._settings.smtp_port
        if not host:
            raise ConfigurationError("SMTP host is not configured")

        LOGGER.debug("Attempting SMTP connection to %s:%d", host, port)
        try:
            if self._settings.smtp_use_ssl:
                self._connection = smtplib.SMTP_SSL(host, port, timeout=self._timeout)
            else:
                self._connection = smtplib.SMTP(host, port, timeout=self._timeout)
                self._connection.starttls()
            self._authenticate(self._connection)
        except ConfigurationError:
            self.disconnect()
            raise
        except smtplib.SMTPAuthenticationError as exc:
            self.disconnect()
            raise SmtpError(f"SMTP authentication failed: {exc}") from exc
        except smtplib.SMTPConnectError as exc:
            self.disconnect()
            raise SmtpError(f"Failed to connect to SMTP server: {exc}") from exc
        except smtplib.SMTPException as exc:
            self.disconnect()
            raise SmtpError(f"SMTP error: {exc}") from exc
        except OSError as exc:
            self.disconnect()
            raise SmtpError(f"Network error: {exc}") from exc
        LOGGER.debug("Connected to SMTP server: %s", host)

    def disconnect(self) -> None:
        """Close SMTP connection gracefully."""
        if self._connection:
            try:
                self._connection.quit()
                LOGGER.debug("SMTP connection closed")
            except (smtplib.SMTPException, OSError) as exc:
                LOGGER.warning("Error closing SMTP connection: %s", exc)
            finally:
                self._connection = None

    def send(self, outgoing: OutgoingMail) -> None:
        """Send a composed message to every To, Cc, and Bcc recipient.

        Args:
            outgoing: The message to deliver

        Raises:
            SmtpError: If sending fails or not connected
        """
        if not self._connection:
            raise SmtpError("Not connected to SMTP server")

        recipients = [
            address.address
            for address in (*outgoing.to, *outgoing.cc, *outgoing.bcc)
            if address.address
        ]
        if not recipients:
            raise SmtpError("Message has no recipients")

        mime_message = build_mime_message(outgoing)
        LOGGER.info(
            "Sending message to %d recipient(s): %s", len(recipients), outgoing.subject
        )
        try:
            refused = self._connection.send_message(
                mime_message,
                from_addr=outgoing.sender.address,
                to_addrs=recipients,
            )
        except smtplib.SMTPRecipientsRefused as exc:
            raise SmtpError(f"All recipients refused: {exc}") from exc
        except smtplib.SMTPSenderRefused as exc:
            raise SmtpError(f"Sender refused: {exc}") from exc
        except smtplib.SMTPDataError as exc:
            raise SmtpError(f"SMTP data error: {exc}") from exc
        except smtplib.SMTPException as exc:
            raise SmtpError(f"Failed to send email: {exc}") from exc
        if refused:
            raise SmtpError(f"Some recipients were refused: {refused}")

    def _authenticate(self, connection: smtplib.SMTP) -> None:
        username = self._settings.username
        password = secret_value(self._settings.password)
        token = secret_value(self._settings.access_token)
        if not username or not (password or token):
            raise ConfigurationError("missing authentication material for SMTP login")
        if password:
            connection.login(username, password)
            return
        connection.ehlo()
        connection.auth(
            "XOAUTH2",
            lambda challenge=None: xoauth2_string(username, token or ""),
            initial_response_ok=True,
        )


def build_mime_message(outgoing: OutgoingMail) -> MIMEMultipart:
    """Build the MIME tree for ``outgoing``.

    The bodies form a ``multipart/alternative`` part, wrapped in
    ``multipart/mixed`` when attachments are present. Bcc never appears in the
    headers.
    """
    body = MIMEMultipart("alternative")
    body.attach(MIMEText(outgoing.body_text, "plain", "utf-8"))
    if outgoing.body_html:
        body.attach(MIMEText(outgoing.body_html, "html", "utf-8"))

    if outgoing.attachments:
        root = MIMEMultipart("mixed")
        root.attach(body)
        for attachment in outgoing.attachments:
            root.attach(
                _attachment_part(
                    attachment.file_name,
                    attachment.mime_type,
                    attachment.content_base64,
                    attachment.inline,
                )
            )
    else:
        root = body

    root["From"] = outgoing.sender.formatted()
    root["To"] = ", ".join(address.formatted() for address in outgoing.to)
    if outgoing.cc:
        root["Cc"] = ", ".join(address.formatted() for address in outgoing.cc)
    if outgoing.reply_to:
        root["Reply-To"] = ", ".join(
            address.formatted() for address in outgoing.reply_to
        )
    root["Subject"] = outgoing.subject
    root["Date"] = formatdate(localtime=True)
    domain = outgoing.sender.address.rpartition("@")[2] or None
    root["Message-ID"] = make_msgid(domain=domain)
    return root


def _attachment_part(
    file_name: str, mime_type: str, content_base64: str, inline: bool
) -> MIMEBase:
    maintype, _, subtype = mime_type.partition("/")
    part = MIMEBase(maintype or "application", subtype or "octet-stream")
    try:
        part.set_payload(base64.b64decode(content_base64, validate=False))
    except (binascii.Error, ValueError) as exc:
        raise SmtpError(f"Attachment {file_name} is not valid base64") from exc
    encoders.encode_base64(part)
    disposition = "inline" if inline else "attachment"
    part.add_header("Content-Disposition", disposition, filename=file_name)
    return part


__all__ = ["SmtpClient", "SmtpError", "build_mime_message"]
