"""Exchange Web Services adapter using hand-built SOAP envelopes."""

from __future__ import annotations

import logging
import re
from datetime import timedelta
from xml.sax.saxutils import escape, quoteattr, unescape

from ..core.account_settings import ProtocolSettings, secret_value
from ..core.datetime_utils import parse_remote_datetime, utc_now
from ..core.errors import ConfigurationError, RemoteError
from ..core.models import (
    Account,
    FetchResult,
    MailAddress,
    MailAttachment,
    MailFlags,
    MailFolder,
    MailMessage,
    OutgoingMail,
    attachment_record_id,
    mail_record_id,
)
from ..ingestion.parser import (
    DEFAULT_ATTACHMENT_NAME,
    DEFAULT_SUBJECT,
    html_to_text,
    make_preview,
)
from ..transport.http import HttpAdapter, client_auth

LOGGER = logging.getLogger(__name__)

DEFAULT_FOLDERS = ("Inbox", "Sent Items", "Drafts", "Archive", "Deleted Items")

_ENVELOPE = """<?xml version="1.0" encoding="utf-8"?>
<soap:Envelope xmlns:soap="http://schemas.xmlsoap.org/soap/envelope/"
               xmlns:t="http://schemas.microsoft.com/exchange/services/2006/types"
               xmlns:m="http://schemas.microsoft.com/exchange/services/2006/messages">
  <soap:Header><t:RequestServerVersion Version="Exchange2013_SP1"/></soap:Header>
  <soap:Body>{body}</soap:Body>
</soap:Envelope>"""

_XML_ENTITIES = {"&quot;": '"', "&apos;": "'"}

_DISPLAY_NAME = re.compile(r"(?s)<t:DisplayName>(.*?)</t:DisplayName>")
_MESSAGE = re.compile(r"(?s)<t:Message>(.*?)</t:Message>")
_ITEM_ID = re.compile(r'<t:ItemId\s+Id="([^"]+)"')
_SUBJECT = re.compile(r"(?s)<t:Subject>(.*?)</t:Subject>")
_BODY = re.compile(r"(?s)<t:Body(\s[^>]*)?>(.*?)</t:Body>")
_BODY_TYPE = re.compile(r'BodyType="(\w+)"')
_BODY_PREVIEW = re.compile(r"(?s)<t:BodyPreview>(.*?)</t:BodyPreview>")
_SENT = re.compile(r"<t:DateTimeSent>(.*?)</t:DateTimeSent>")
_RECEIVED = re.compile(r"<t:DateTimeReceived>(.*?)</t:DateTimeReceived>")
_FROM = re.compile(r"(?s)<t:From>(.*?)</t:From>")
_TO = re.compile(r"(?s)<t:ToRecipients>(.*?)</t:ToRecipients>")
_CC = re.compile(r"(?s)<t:CcRecipients>(.*?)</t:CcRecipients>")
_MAILBOX = re.compile(r"(?s)<t:Mailbox>(.*?)</t:Mailbox>")
_NAME = re.compile(r"(?s)<t:Name>(.*?)</t:Name>")
_EMAIL = re.compile(r"(?s)<t:EmailAddress>(.*?)</t:EmailAddress>")
_IS_READ = re.compile(r"<t:IsRead>(true|false)</t:IsRead>")
_CONVERSATION = re.compile(r'<t:ConversationId\s+Id="([^"]+)"')
_HAS_ATTACHMENTS = re.compile(r"<t:HasAttachments>(true|false)</t:HasAttachments>")
_ATTACHMENTS = re.compile(r"(?s)<t:Attachments>(.*?)</t:Attachments>")
_ATTACHMENT = re.compile(r"(?s)<t:(FileAttachment|ItemAttachment)>(.*?)</t:\1>")
_CONTENT_TYPE = re.compile(r"(?s)<t:ContentType>(.*?)</t:ContentType>")
_SIZE = re.compile(r"<t:Size>(\d+)</t:Size>")
_IS_INLINE = re.compile(r"<t:IsInline>(true|false)</t:IsInline>")
_RESPONSE_ERROR = re.compile(
    r'(?s)ResponseClass="Error".*?<m:MessageText>(.*?)</m:MessageText>'
)


def distinguished_folder(folder: str) -> str:
    """Map a folder name onto an EWS distinguished folder id."""
    name = folder.strip().lower()
    if name in ("sent", "sent items"):
        return "sentitems"
    if name == "drafts":
        return "drafts"
    if name == "archive":
        return "archiveinbox"
    if name in ("trash", "deleted items"):
        return "deleteditems"
    return "inbox"


def _text(pattern: re.Pattern[str], block: str) -> str | None:
    match = pattern.search(block)
    if match is None:
        return None
    return unescape(match.group(match.lastindex or 1), _XML_ENTITIES).strip() or None


def _mailboxes(block: str | None) -> list[MailAddress]:
    if not block:
        return []
    addresses = []
    for mailbox in _MAILBOX.findall(block):
        address = _text(_EMAIL, mailbox)
        if address:
            addresses.append(MailAddress(address=address, name=_text(_NAME, mailbox)))
    return addresses


def _attachments(message_id: str, block: str) -> list[MailAttachment]:
    collection = _ATTACHMENTS.search(block)
    if collection is None:
        return []
    attachments: list[MailAttachment] = []
    for _, entry in _ATTACHMENT.findall(collection.group(1)):
        size = _text(_SIZE, entry)
        attachments.append(
            MailAttachment(
                id=attachment_record_id(message_id, len(attachments)),
                file_name=_text(_NAME, entry) or DEFAULT_ATTACHMENT_NAME,
                mime_type=_text(_CONTENT_TYPE, entry) or "application/octet-stream",
                size=int(size) if size else 0,
                inline=_text(_IS_INLINE, entry) == "true",
            )
        )
    return attachments


class EwsBackend(HttpAdapter):
    """Mail backend for Exchange servers speaking EWS SOAP."""

    async def list_folders(
        self, account: Account, settings: ProtocolSettings
    ) -> list[MailFolder]:
        body = """
    <m:FindFolder Traversal="Shallow">
      <m:FolderShape><t:BaseShape>Default</t:BaseShape></m:FolderShape>
      <m:ParentFolderIds>
        <t:DistinguishedFolderId Id="msgfolderroot"/>
      </m:ParentFolderIds>
    </m:FindFolder>"""
        document = await self._call(settings, body)
        names = [
            unescape(name, _XML_ENTITIES) for name in _DISPLAY_NAME.findall(document)
        ]
        if not names:
            names = list(DEFAULT_FOLDERS)
        return [
            MailFolder(
                account_id=account.id,
                remote_id=name.lower().replace(" ", "_"),
                path=name,
                delimiter="/",
            )
            for name in names
        ]

    async def fetch_recent(
        self, account: Account, settings: ProtocolSettings, folder: str, limit: int
    ) -> FetchResult:
        restriction = ""
        if settings.offline_sync_limit is not None:
            since = utc_now() - timedelta(days=settings.offline_sync_limit)
            restriction = (
                "<m:Restriction><t:IsGreaterThanOrEqualTo>"
                '<t:FieldURI FieldURI="item:DateTimeReceived"/>'
                "<t:FieldURIOrConstant>"
                f'<t:Constant Value="{since:%Y-%m-%dT%H:%M:%SZ}"/>'
                "</t:FieldURIOrConstant>"
                "</t:IsGreaterThanOrEqualTo></m:Restriction>"
            )
        body = f"""
    <m:FindItem Traversal="Shallow">
      <m:ItemShape><t:BaseShape>AllProperties</t:BaseShape></m:ItemShape>
      <m:IndexedPageItemView
        MaxEntriesReturned="{limit}" Offset="0" BasePoint="Beginning"/>
      {restriction}
      <m:ParentFolderIds>
        <t:DistinguishedFolderId Id="{distinguished_folder(folder)}"/>
      </m:ParentFolderIds>
    </m:FindItem>"""
        document = await self._call(settings, body)
        messages: list[MailMessage] = []
        pending: list[MailMessage] = []
        for block in _MESSAGE.findall(document):
            message = self._parse_message(account, folder, block)
            if message is None:
                continue
            messages.append(message)
            if _text(_HAS_ATTACHMENTS, block) == "true" and not message.attachments:
                pending.append(message)
        if pending:
            await self._load_attachments(settings, pending)
        LOGGER.debug("EWS returned %d message(s) for %s", len(messages), account.id)
        return FetchResult(messages=messages[:limit])

    async def send(
        self, account: Account, settings: ProtocolSettings, outgoing: OutgoingMail
    ) -> None:
        body_type = "HTML" if outgoing.body_html else "Text"
        content = outgoing.body_html or outgoing.body_text
        attachments = ""
        if outgoing.attachments:
            attachments = (
                "<t:Attachments>"
                + "".join(
                    "<t:FileAttachment>"
                    f"<t:Name>{escape(item.file_name)}</t:Name>"
                    f"<t:ContentType>{escape(item.mime_type)}</t:ContentType>"
                    f"<t:IsInline>{str(item.inline).lower()}</t:IsInline>"
                    f"<t:Content>{item.content_base64}</t:Content>"
                    "</t:FileAttachment>"
                    for item in outgoing.attachments
                )
                + "</t:Attachments>"
            )
        body = f"""
    <m:CreateItem MessageDisposition="SendAndSaveCopy">
      <m:SavedItemFolderId>
        <t:DistinguishedFolderId Id="sentitems"/>
      </m:SavedItemFolderId>
      <m:Items>
        <t:Message>
          <t:Subject>{escape(outgoing.subject)}</t:Subject>
          <t:Body BodyType="{body_type}">{escape(content)}</t:Body>
          {attachments}
          {_recipients("ToRecipients", outgoing.to)}
          {_recipients("CcRecipients", outgoing.cc)}
          {_recipients("BccRecipients", outgoing.bcc)}
        </t:Message>
      </m:Items>
    </m:CreateItem>"""
        await self._call(settings, body)
        LOGGER.info("Sent EWS message for %s: %s", account.id, outgoing.subject)

    async def watch(
        self, account: Account, settings: ProtocolSettings, folder: str
    ) -> None:
        LOGGER.debug("EWS watch is a no-op for %s", account.id)

    # Internal helpers ---------------------------------------------------------
    async def _load_attachments(
        self, settings: ProtocolSettings, messages: list[MailMessage]
    ) -> None:
        """Fill attachment metadata, which FindItem never returns, via GetItem."""
        by_remote_id = {message.remote_id: message for message in messages}
        item_ids = "".join(
            f"<t:ItemId Id={quoteattr(remote_id)}/>"
            for remote_id in by_remote_id
        )
        body = f"""
    <m:GetItem>
      <m:ItemShape>
        <t:BaseShape>IdOnly</t:BaseShape>
        <t:AdditionalProperties>
          <t:FieldURI FieldURI="item:Attachments"/>
        </t:AdditionalProperties>
      </m:ItemShape>
      <m:ItemIds>{item_ids}</m:ItemIds>
    </m:GetItem>"""
        document = await self._call(settings, body)
        for block in _MESSAGE.findall(document):
            message = by_remote_id.get(_text(_ITEM_ID, block) or "")
            if message is not None:
                message.attachments = _attachments(message.id, block)

    async def _call(self, settings: ProtocolSettings, body: str) -> str:
        if not settings.endpoint:
            raise ConfigurationError("EWS endpoint is not configured")
        options = client_auth(
            secret_value(settings.access_token),
            settings.username,
            secret_value(settings.password),
            "EWS",
        )
        headers = options.setdefault("headers", {})
        headers["Content-Type"] = "text/xml; charset=utf-8"

        async with self._client(**options) as client:
            response = await self._request(
                client,
                "POST",
                settings.endpoint,
                expected=(200,),
                content=_ENVELOPE.format(body=body).encode("utf-8"),
            )
        document = response.text
        error = _RESPONSE_ERROR.search(document)
        if error:
            raise RemoteError(f"EWS error: {unescape(error.group(1)).strip()}")
        return document

    def _parse_message(
        self, account: Account, folder: str, block: str
    ) -> MailMessage | None:
        remote_id = _text(_ITEM_ID, block)
        if not remote_id:
            LOGGER.warning("EWS message without ItemId skipped")
            return None
        body_match = _BODY.search(block)
        body_html: str | None = None
        body_text: str | None = None
        if body_match:
            content = unescape(body_match.group(2), _XML_ENTITIES)
            body_type = _BODY_TYPE.search(body_match.group(1) or "")
            if body_type and body_type.group(1).upper() == "HTML":
                body_html = content
                body_text = html_to_text(content)
            else:
                body_text = content.strip()
        senders = _mailboxes(_text(_FROM, block))
        sent_at = parse_remote_datetime(_text(_SENT, block))
        received_at = parse_remote_datetime(_text(_RECEIVED, block))
        is_read = _text(_IS_READ, block)
        record_id = mail_record_id(account.id, remote_id)
        return MailMessage(
            id=record_id,
            account_id=account.id,
            remote_id=remote_id,
            thread_id=_text(_CONVERSATION, block) or remote_id,
            folder_path=folder,
            sender=senders[0] if senders else MailAddress(address=""),
            to=_mailboxes(_text(_TO, block)),
            cc=_mailboxes(_text(_CC, block)),
            subject=_text(_SUBJECT, block) or DEFAULT_SUBJECT,
            preview=_text(_BODY_PREVIEW, block) or make_preview(body_text),
            body_text=body_text,
            body_html=body_html,
            flags=MailFlags(seen=is_read == "true"),
            attachments=_attachments(record_id, block),
            sent_at=sent_at,
            received_at=received_at or sent_at or utc_now(),
        )


def _recipients(element: str, addresses: list[MailAddress]) -> str:
    if not addresses:
        return ""
    mailboxes = "".join(
        "<t:Mailbox>"
        + (f"<t:Name>{escape(item.name)}</t:Name>" if item.name else "")
        + f"<t:EmailAddress>{escape(item.address)}</t:EmailAddress>"
        + "</t:Mailbox>"
        for item in addresses
    )
    return f"<t:{element}>{mailboxes}</t:{element}>"


__all__ = ["DEFAULT_FOLDERS", "EwsBackend", "distinguished_folder"]
