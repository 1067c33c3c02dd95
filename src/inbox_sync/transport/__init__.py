"""Socket and HTTP transports shared by the protocol adapters."""

from .http import HttpAdapter, bearer_headers, client_auth
from .imap_client import ImapClient, ImapError, xoauth2_string
from .smtp_client import SmtpClient, SmtpError, build_mime_message

__all__ = [
    "HttpAdapter",
    "ImapClient",
    "ImapError",
    "SmtpClient",
    "SmtpError",
    "bearer_headers",
    "build_mime_message",
    "client_auth",
    "xoauth2_string",
]
