"""Mail protocol backends and the email service."""

from .ews import EwsBackend
from .gmail import GmailBackend
from .imap_smtp import ImapSmtpBackend
from .jmap import JmapBackend
from .service import EmailService, detect_trackers, strip_tracking_pixels

__all__ = [
    "EmailService",
    "EwsBackend",
    "GmailBackend",
    "ImapSmtpBackend",
    "JmapBackend",
    "detect_trackers",
    "strip_tracking_pixels",
]
