"""JMAP mail adapter (RFC 8620 / RFC 8621)."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

import httpx

from ..core.account_settings import ProtocolSettings, secret_value
from ..core.datetime_utils import parse_remote_datetime, utc_now
from ..core.errors import ConfigurationError, ParseError, RemoteError
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

CORE_CAPABILITY = "urn:ietf:params:jmap:core"
MAIL_CAPABILITY = "urn:ietf:params:jmap:mail"
SUBMISSION_CAPABILITY = "urn:ietf:params:jmap:submission"

EMAIL_PROPERTIES = [
    "id",
    "threadId",
    "mailboxIds",
    "keywords",
    "from",
    "to",
    "cc",
    "bcc",
    "replyTo",
    "subject",
    "preview",
    "receivedAt",
    "sentAt",
    "textBody",
    "htmlBody",
    "bodyValues",
    "attachments",
]


@dataclass(slots=True)
class JmapSession:
    """Resolved API endpoint and account ids from the session resource."""

    api_url: str
    mail_account_id: str
    submission_account_id: str


def _addresses(entries: list[dict[str, Any]] | None) -> list[MailAddress]:
    return [
        MailAddress(address=entry["email"], name=entry.get("name") or None)
        for entry in entries or []
        if entry.get("email")
    ]


def _jmap_addresses(addresses: list[MailAddress]) -> list[dict[str, str]]:
    return [
        {"email": item.address, **({"name": item.name} if item.name else {})}
        for item in addresses
    ]


def flags_from_keywords(keywords: dict[str, bool] | None) -> MailFlags:
    """Translate JMAP keywords into message flags."""
    keywords = keywords or {}
    return MailFlags(
        seen=bool(keywords.get("$seen")),
        answered=bool(keywords.get("$answered")),
        flagged=bool(keywords.get("$flagged")),
        draft=bool(keywords.get("$draft")),
        forwarded=bool(keywords.get("$forwarded")),
    )


class JmapBackend(HttpAdapter):
    """Mail backend for JMAP servers such as Fastmail."""

    async def list_folders(
        self, account: Account, settings: ProtocolSettings
    ) -> list[MailFolder]:
        async with self._session_client(settings) as client:
            session = await self._session(client, settings)
            responses = await self._invoke(
                client,
                session,
                [
                    ["Mailbox/query", {"accountId": session.mail_account_id}, "m0"],
                    [
                        "Mailbox/get",
                        {
                            "accountId": session.mail_account_id,
                            "#ids": {
                                "resultOf": "m0",
                                "name": "Mailbox/query",
                                "path": "/ids",
                            },
                        },
                        "m1",
                    ],
                ],
            )
        mailboxes = _method_result(responses, "m1").get("list", [])
        return [
            MailFolder(
                account_id=account.id,
                remote_id=mailbox["id"],
                path=mailbox.get("name") or mailbox["id"],
                delimiter="/",
                unread_count=int(mailbox.get("unreadEmails", 0)),
                total_count=int(mailbox.get("totalEmails", 0)),
            )
            for mailbox in mailboxes
            if mailbox.get("id")
        ]

    async def fetch_recent(
        self, account: Account, settings: ProtocolSettings, folder: str, limit: int
    ) -> FetchResult:
        if folder.upper() == "INBOX":
            mailbox_filter: dict[str, Any] = {"role": "inbox"}
        else:
            mailbox_filter = {"name": folder}

        async with self._session_client(settings) as client:
            session = await self._session(client, settings)
            mailbox_response = await self._invoke(
                client,
                session,
                [
                    [
                        "Mailbox/query",
                        {
                            "accountId": session.mail_account_id,
                            "filter": mailbox_filter,
                        },
                        "m0",
                    ]
                ],
            )
            mailbox_ids = _method_result(mailbox_response, "m0").get("ids", [])
            if not mailbox_ids:
                LOGGER.warning("JMAP mailbox %s not found for %s", folder, account.id)
                return FetchResult()

            email_filter: dict[str, Any] = {"inMailbox": mailbox_ids[0]}
            if settings.offline_sync_limit is not None:
                since = utc_now() - timedelta(days=settings.offline_sync_limit)
                email_filter["after"] = since.strftime("%Y-%m-%dT%H:%M:%SZ")
            responses = await self._invoke(
                client,
                session,
                [
                    [
                        "Email/query",
                        {
                            "accountId": session.mail_account_id,
                            "filter": email_filter,
                            "sort": [{"property": "receivedAt", "isAscending": False}],
                            "limit": limit,
                        },
                        "q0",
                    ],
                    [
                        "Email/get",
                        {
                            "accountId": session.mail_account_id,
                            "#ids": {
                                "resultOf": "q0",
                                "name": "Email/query",
                                "path": "/ids",
                            },
                            "properties": EMAIL_PROPERTIES,
                            "fetchTextBodyValues": True,
                            "fetchHTMLBodyValues": True,
                        },
                        "g0",
                    ],
                ],
            )
        emails = _method_result(responses, "g0").get("list", [])
        return FetchResult(
            messages=[self._to_message(account, folder, email) for email in emails]
        )

    async def send(
        self, account: Account, settings: ProtocolSettings, outgoing: OutgoingMail
    ) -> None:
        async with self._session_client(settings) as client:
            session = await self._session(client, settings)
            lookup = await self._invoke(
                client,
                session,
                [
                    [
                        "Mailbox/query",
                        {
                            "accountId": session.mail_account_id,
                            "filter": {"role": "drafts"},
                        },
                        "m0",
                    ],
                    [
                        "Identity/get",
                        {"accountId": session.submission_account_id},
                        "i0",
                    ],
                ],
            )
            drafts = _method_result(lookup, "m0").get("ids", [])
            identities = _method_result(lookup, "i0").get("list", [])
            if not drafts:
                raise RemoteError("JMAP account has no drafts mailbox")
            identity = next(
                (
                    item
                    for item in identities
                    if item.get("email", "").lower() == outgoing.sender.address.lower()
                ),
                identities[0] if identities else None,
            )
            if identity is None:
                raise RemoteError("JMAP account has no sending identity")

            responses = await self._invoke(
                client,
                session,
                [
                    [
                        "Email/set",
                        {
                            "accountId": session.mail_account_id,
                            "create": {"draft1": _draft(outgoing, drafts[0])},
                        },
                        "s0",
                    ],
                    [
                        "EmailSubmission/set",
                        {
                            "accountId": session.submission_account_id,
                            "create": {
                                "send1": {
                                    "identityId": identity["id"],
                                    "emailId": "#draft1",
                                }
                            },
                            "onSuccessDestroyEmail": ["#send1"],
                        },
                        "s1",
                    ],
                ],
            )
        for call_id in ("s0", "s1"):
            not_created = _method_result(responses, call_id).get("notCreated")
            if not_created:
                raise RemoteError(f"JMAP rejected the message: {not_created}")
        LOGGER.info("Sent JMAP message for %s: %s", account.id, outgoing.subject)

    async def watch(
        self, account: Account, settings: ProtocolSettings, folder: str
    ) -> None:
        LOGGER.debug("JMAP watch is a no-op for %s", account.id)

    # Internal helpers ---------------------------------------------------------
    def _session_client(self, settings: ProtocolSettings) -> httpx.AsyncClient:
        return self._client(
            **client_auth(
                secret_value(settings.access_token),
                settings.username,
                secret_value(settings.password),
                "JMAP",
            )
        )

    async def _session(
        self, client: httpx.AsyncClient, settings: ProtocolSettings
    ) -> JmapSession:
        if not settings.endpoint:
            raise ConfigurationError("JMAP session endpoint is not configured")
        data = await self._json(client, "GET", settings.endpoint)
        api_url = data.get("apiUrl")
        primary = data.get("primaryAccounts") or {}
        mail_account = primary.get(MAIL_CAPABILITY) or next(
            iter(data.get("accounts") or {}), None
        )
        if not api_url or not mail_account:
            raise ParseError("JMAP session is missing apiUrl or a mail account")
        return JmapSession(
            api_url=api_url,
            mail_account_id=mail_account,
            submission_account_id=primary.get(SUBMISSION_CAPABILITY) or mail_account,
        )

    async def _invoke(
        self,
        client: httpx.AsyncClient,
        session: JmapSession,
        calls: list[list[Any]],
    ) -> list[list[Any]]:
        body = {
            "using": [CORE_CAPABILITY, MAIL_CAPABILITY, SUBMISSION_CAPABILITY],
            "methodCalls": calls,
        }
        data = await self._json(client, "POST", session.api_url, json=body)
        responses = data.get("methodResponses")
        if not isinstance(responses, list):
            raise ParseError("JMAP response is missing methodResponses")
        for name, arguments, call_id in responses:
            if name == "error":
                raise RemoteError(
                    f"JMAP call {call_id} failed: {arguments.get('type', 'unknown')}"
                )
        return responses

    def _to_message(
        self, account: Account, folder: str, email: dict[str, Any]
    ) -> MailMessage:
        remote_id = email.get("id")
        if not remote_id:
            raise ParseError("JMAP email is missing its id")
        values = email.get("bodyValues") or {}
        body_text = _body(email.get("textBody"), values)
        body_html = _body(email.get("htmlBody"), values)
        if body_html and body_html == body_text:
            body_html = None
        if body_text is None and body_html:
            body_text = html_to_text(body_html)
        senders = _addresses(email.get("from"))
        sent_at = parse_remote_datetime(email.get("sentAt"))
        received_at = parse_remote_datetime(email.get("receivedAt"))
        record_id = mail_record_id(account.id, remote_id)
        return MailMessage(
            id=record_id,
            account_id=account.id,
            remote_id=remote_id,
            thread_id=email.get("threadId") or remote_id,
            folder_path=folder,
            sender=senders[0] if senders else MailAddress(address=""),
            to=_addresses(email.get("to")),
            cc=_addresses(email.get("cc")),
            bcc=_addresses(email.get("bcc")),
            reply_to=_addresses(email.get("replyTo")),
            subject=email.get("subject") or DEFAULT_SUBJECT,
            preview=email.get("preview") or make_preview(body_text),
            body_text=body_text,
            body_html=body_html,
            flags=flags_from_keywords(email.get("keywords")),
            labels=list((email.get("mailboxIds") or {}).keys()),
            attachments=_attachments(record_id, email.get("attachments")),
            sent_at=sent_at,
            received_at=received_at or sent_at or utc_now(),
        )


def _method_result(responses: list[list[Any]], call_id: str) -> dict[str, Any]:
    for _, arguments, response_id in responses:
        if response_id == call_id:
            return arguments
    raise ParseError(f"JMAP response is missing call {call_id}")


def _body(parts: list[dict[str, Any]] | None, values: dict[str, Any]) -> str | None:
    chunks = [
        values[part["partId"]].get("value", "")
        for part in parts or []
        if part.get("partId") in values
    ]
    text = "".join(chunks)
    return text or None


def _attachments(
    message_id: str, parts: list[dict[str, Any]] | None
) -> list[MailAttachment]:
    return [
        MailAttachment(
            id=attachment_record_id(message_id, index),
            file_name=part.get("name") or DEFAULT_ATTACHMENT_NAME,
            mime_type=part.get("type") or "application/octet-stream",
            size=int(part.get("size") or 0),
            inline=part.get("disposition") == "inline",
        )
        for index, part in enumerate(parts or [])
    ]


def _draft(outgoing: OutgoingMail, drafts_id: str) -> dict[str, Any]:
    draft: dict[str, Any] = {
        "mailboxIds": {drafts_id: True},
        "keywords": {"$draft": True, "$seen": True},
        "from": _jmap_addresses([outgoing.sender]),
        "to": _jmap_addresses(outgoing.to),
        "subject": outgoing.subject,
        "bodyValues": {"text": {"value": outgoing.body_text}},
        "textBody": [{"partId": "text", "type": "text/plain"}],
    }
    if outgoing.cc:
        draft["cc"] = _jmap_addresses(outgoing.cc)
    if outgoing.bcc:
        draft["bcc"] = _jmap_addresses(outgoing.bcc)
    if outgoing.reply_to:
        draft["replyTo"] = _jmap_addresses(outgoing.reply_to)
    if outgoing.body_html:
        draft["bodyValues"]["html"] = {"value": outgoing.body_html}
        draft["htmlBody"] = [{"partId": "html", "type": "text/html"}]
    return draft


__all__ = ["JmapBackend", "JmapSession", "flags_from_keywords"]
