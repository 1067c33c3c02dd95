"""Tests for the Gmail, JMAP, EWS, and IMAP/SMTP mail backends."""

from __future__ import annotations

import base64
import json
from datetime import UTC, datetime
from email import message_from_bytes
from pathlib import Path

import httpx
import pytest

from inbox_sync.core.account_settings import ProtocolSettings
from inbox_sync.core.errors import ConfigurationError, RemoteError
from inbox_sync.core.models import (
    Account,
    MailAddress,
    MessageChunk,
    OutgoingMail,
    Provider,
    attachment_record_id,
    mail_record_id,
)
from inbox_sync.mail import EwsBackend, GmailBackend, ImapSmtpBackend, JmapBackend
from inbox_sync.mail.ews import distinguished_folder
from inbox_sync.mail.gmail import label_query
from inbox_sync.transport import ImapError

FIXTURE = (Path(__file__).parent / "fixtures" / "sample_email.eml").read_bytes()


def _account(provider: Provider) -> Account:
    return Account(
        id="acct-1",
        provider=provider,
        display_name="Me",
        email_address="me@example.com",
    )


def _outgoing() -> OutgoingMail:
    return OutgoingMail(
        sender=MailAddress(address="me@example.com", name="Me"),
        to=[MailAddress(address="you@example.com")],
        subject="Status",
        body_text="All good",
    )


# Gmail -----------------------------------------------------------------------
@pytest.mark.asyncio
async def test_gmail_fetch_recent_skips_failed_messages() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.url.path.endswith("/messages"):
            assert request.url.params["q"] == "label:INBOX"
            return httpx.Response(200, json={"messages": [{"id": "m1"}, {"id": "m2"}]})
        if request.url.path.endswith("/messages/m1"):
            raw = base64.urlsafe_b64encode(FIXTURE).decode().rstrip("=")
            return httpx.Response(
                200,
                json={
                    "id": "m1",
                    "threadId": "t1",
                    "labelIds": ["INBOX", "UNREAD", "STARRED"],
                    "snippet": "Hi &amp; bye",
                    "internalDate": "1761318000000",
                    "raw": raw,
                },
            )
        return httpx.Response(404, json={"error": "not found"})

    backend = GmailBackend(transport=httpx.MockTransport(handler))
    result = await backend.fetch_recent(
        _account(Provider.GMAIL), ProtocolSettings(access_token="tok"), "INBOX", 10
    )

    assert [message.remote_id for message in result.messages] == ["m1"]
    message = result.messages[0]
    assert message.thread_id == "t1"
    assert message.preview == "Hi & bye"
    assert message.flags.seen is False
    assert message.flags.flagged is True
    assert message.labels == ["INBOX", "UNREAD", "STARRED"]
    assert message.received_at == datetime(2025, 10, 24, 15, 0, tzinfo=UTC)
    assert len(result.attachment_content) == 1
    assert all(req.headers["Authorization"] == "Bearer tok" for req in seen)


@pytest.mark.asyncio
async def test_gmail_send_posts_raw_message() -> None:
    bodies: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"id": "sent-1"})

    backend = GmailBackend(transport=httpx.MockTransport(handler))
    await backend.send(
        _account(Provider.GMAIL), ProtocolSettings(access_token="tok"), _outgoing()
    )

    raw = base64.urlsafe_b64decode(bodies[0]["raw"])
    assert message_from_bytes(raw)["Subject"] == "Status"


@pytest.mark.asyncio
async def test_gmail_requires_token() -> None:
    backend = GmailBackend(transport=httpx.MockTransport(lambda _: httpx.Response(200)))

    with pytest.raises(ConfigurationError):
        await backend.list_folders(_account(Provider.GMAIL), ProtocolSettings())


@pytest.mark.asyncio
async def test_gmail_list_pages_until_limit() -> None:
    list_tokens: list[str | None] = []
    detail_paths: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/messages"):
            token = request.url.params.get("pageToken")
            list_tokens.append(token)
            assert request.url.params["maxResults"] == "3"
            if token is None:
                return httpx.Response(
                    200,
                    json={
                        "messages": [{"id": "m1"}, {"id": "m2"}],
                        "nextPageToken": "t2",
                    },
                )
            return httpx.Response(200, json={"messages": [{"id": "m3"}, {"id": "m4"}]})
        detail_paths.append(request.url.path.rsplit("/", 1)[-1])
        return httpx.Response(404, json={"error": "gone"})

    backend = GmailBackend(transport=httpx.MockTransport(handler))
    await backend.fetch_recent(
        _account(Provider.GMAIL), ProtocolSettings(access_token="tok"), "INBOX", 3
    )

    assert list_tokens == [None, "t2"]
    assert detail_paths == ["m1", "m2", "m3"]


def test_label_query_quotes_names_with_spaces() -> None:
    assert label_query("INBOX") == "label:INBOX"
    assert label_query("Project Alpha") == 'label:"Project Alpha"'
    assert label_query('Say "hi"') == 'label:"Say hi"'


# JMAP ------------------------------------------------------------------------
JMAP_SETTINGS = ProtocolSettings(
    endpoint="https://jmap.example.com/session", username="me", password="pw"
)
JMAP_EMAIL = {
    "id": "e1",
    "threadId": "th1",
    "mailboxIds": {"mb1": True},
    "keywords": {"$seen": True},
    "from": [{"name": "Ann", "email": "ann@example.com"}],
    "to": [{"email": "me@example.com"}],
    "subject": "Hello",
    "preview": "Body text",
    "receivedAt": "2025-10-24T15:00:00Z",
    "textBody": [{"partId": "1"}],
    "htmlBody": [{"partId": "2"}],
    "bodyValues": {"1": {"value": "Body text"}, "2": {"value": "<p>Body text</p>"}},
}


def _jmap_handler(
    calls: list[list], email: dict = JMAP_EMAIL
) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"].startswith("Basic ")
        if request.method == "GET":
            return httpx.Response(
                200,
                json={
                    "apiUrl": "https://jmap.example.com/api",
                    "primaryAccounts": {"urn:ietf:params:jmap:mail": "A1"},
                },
            )
        method_calls = json.loads(request.content)["methodCalls"]
        calls.append(method_calls)
        first = method_calls[0][0]
        if first == "Mailbox/query" and len(method_calls) == 1:
            mailbox = ["Mailbox/query", {"ids": ["mb1"]}, "m0"]
            return httpx.Response(200, json={"methodResponses": [mailbox]})
        if first == "Email/query":
            return httpx.Response(
                200,
                json={
                    "methodResponses": [
                        ["Email/query", {"ids": ["e1"]}, "q0"],
                        ["Email/get", {"list": [email]}, "g0"],
                    ]
                },
            )
        return httpx.Response(
            200, json={"methodResponses": [["error", {"type": "unknownMethod"}, "m0"]]}
        )

    return httpx.MockTransport(handler)


@pytest.mark.asyncio
async def test_jmap_fetch_recent_uses_two_round_trips() -> None:
    calls: list[list] = []
    backend = JmapBackend(transport=_jmap_handler(calls))

    result = await backend.fetch_recent(
        _account(Provider.FASTMAIL), JMAP_SETTINGS, "INBOX", 5
    )

    assert len(calls) == 2
    assert calls[0][0][1]["filter"] == {"role": "inbox"}
    assert calls[1][0][1]["limit"] == 5
    assert calls[1][1][1]["#ids"]["resultOf"] == "q0"
    message = result.messages[0]
    assert message.remote_id == "e1"
    assert message.thread_id == "th1"
    assert message.sender.formatted() == "Ann <ann@example.com>"
    assert message.body_text == "Body text"
    assert message.body_html == "<p>Body text</p>"
    assert message.flags.seen is True
    assert message.labels == ["mb1"]


@pytest.mark.asyncio
async def test_jmap_method_error_raises_remote_error() -> None:
    backend = JmapBackend(transport=_jmap_handler([]))

    with pytest.raises(RemoteError):
        await backend.list_folders(_account(Provider.FASTMAIL), JMAP_SETTINGS)


@pytest.mark.asyncio
async def test_jmap_requires_endpoint() -> None:
    backend = JmapBackend(transport=_jmap_handler([]))

    with pytest.raises(ConfigurationError):
        await backend.fetch_recent(
            _account(Provider.FASTMAIL),
            ProtocolSettings(access_token="tok"),
            "INBOX",
            5,
        )


@pytest.mark.asyncio
async def test_jmap_attachments_are_requested_and_mapped() -> None:
    calls: list[list] = []
    email = {
        **JMAP_EMAIL,
        "attachments": [
            {"name": "invoice.pdf", "type": "application/pdf", "size": 1234},
            {"type": "image/png", "size": 10, "disposition": "inline"},
        ],
    }
    backend = JmapBackend(transport=_jmap_handler(calls, email))

    result = await backend.fetch_recent(
        _account(Provider.FASTMAIL), JMAP_SETTINGS, "INBOX", 5
    )

    assert "attachments" in calls[1][1][1]["properties"]
    invoice, image = result.messages[0].attachments
    assert invoice.id == attachment_record_id(mail_record_id("acct-1", "e1"), 0)
    assert invoice.file_name == "invoice.pdf"
    assert invoice.mime_type == "application/pdf"
    assert invoice.size == 1234
    assert invoice.inline is False
    assert image.file_name == "attachment.bin"
    assert image.inline is True


# EWS -------------------------------------------------------------------------
EWS_FIND_ITEM = """<?xml version="1.0" encoding="utf-8"?>
<s:Envelope><s:Body><m:FindItemResponse><m:ResponseMessages>
<m:FindItemResponseMessage ResponseClass="Success">
<m:RootFolder><t:Items>
<t:Message>
  <t:ItemId Id="AAA=" ChangeKey="CK"/>
  <t:Subject>Budget &amp; plan</t:Subject>
  <t:BodyPreview>Hello team</t:BodyPreview>
  <t:Body BodyType="HTML" IsTruncated="false">&lt;p&gt;Hello team&lt;/p&gt;</t:Body>
  <t:DateTimeReceived>2025-10-24T15:00:00Z</t:DateTimeReceived>
  <t:From><t:Mailbox><t:Name>Boss</t:Name>
    <t:EmailAddress>boss@corp.example</t:EmailAddress></t:Mailbox></t:From>
  <t:ToRecipients><t:Mailbox>
    <t:EmailAddress>me@corp.example</t:EmailAddress></t:Mailbox></t:ToRecipients>
  <t:IsRead>false</t:IsRead>
  <t:ConversationId Id="CONV1"/>
</t:Message>
</t:Items></m:RootFolder>
</m:FindItemResponseMessage>
</m:ResponseMessages></m:FindItemResponse></s:Body></s:Envelope>"""

EWS_ERROR = """<m:FindItemResponseMessage ResponseClass="Error">
<m:MessageText>The specified folder could not be found.</m:MessageText>
</m:FindItemResponseMessage>"""

EWS_SETTINGS = ProtocolSettings(
    endpoint="https://mail.corp.example/EWS/Exchange.asmx", access_token="tok"
)


@pytest.mark.asyncio
async def test_ews_fetch_recent_parses_messages() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, text=EWS_FIND_ITEM)

    backend = EwsBackend(transport=httpx.MockTransport(handler))
    result = await backend.fetch_recent(
        _account(Provider.EXCHANGE), EWS_SETTINGS, "Inbox", 10
    )

    body = requests[0].content.decode()
    assert requests[0].headers["Content-Type"].startswith("text/xml")
    assert 'DistinguishedFolderId Id="inbox"' in body
    assert 'MaxEntriesReturned="10"' in body
    message = result.messages[0]
    assert message.remote_id == "AAA="
    assert message.thread_id == "CONV1"
    assert message.subject == "Budget & plan"
    assert message.body_html == "<p>Hello team</p>"
    assert message.body_text == "Hello team"
    assert message.sender.address == "boss@corp.example"
    assert message.sender.name == "Boss"
    assert [item.address for item in message.to] == ["me@corp.example"]
    assert message.flags.seen is False
    assert message.received_at == datetime(2025, 10, 24, 15, 0, tzinfo=UTC)


@pytest.mark.asyncio
async def test_ews_error_response_raises() -> None:
    backend = EwsBackend(
        transport=httpx.MockTransport(lambda _: httpx.Response(200, text=EWS_ERROR))
    )

    with pytest.raises(RemoteError, match="could not be found"):
        await backend.fetch_recent(
            _account(Provider.EXCHANGE), EWS_SETTINGS, "Archive", 10
        )


@pytest.mark.asyncio
async def test_ews_send_escapes_content() -> None:
    bodies: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(request.content.decode())
        return httpx.Response(200, text="<ok/>")

    outgoing = _outgoing()
    outgoing.subject = "Q&A <draft>"
    backend = EwsBackend(transport=httpx.MockTransport(handler))
    await backend.send(_account(Provider.EXCHANGE), EWS_SETTINGS, outgoing)

    assert "<t:Subject>Q&amp;A &lt;draft&gt;</t:Subject>" in bodies[0]
    assert "<t:EmailAddress>you@example.com</t:EmailAddress>" in bodies[0]


EWS_GET_ITEM = """<?xml version="1.0" encoding="utf-8"?>
<s:Envelope><s:Body><m:GetItemResponse><m:ResponseMessages>
<m:GetItemResponseMessage ResponseClass="Success"><m:Items>
<t:Message>
  <t:ItemId Id="AAA=" ChangeKey="CK2"/>
  <t:Attachments>
    <t:FileAttachment>
      <t:AttachmentId Id="ATT1"/>
      <t:Name>report.xlsx</t:Name>
      <t:ContentType>application/vnd.ms-excel</t:ContentType>
      <t:Size>2048</t:Size>
      <t:IsInline>false</t:IsInline>
    </t:FileAttachment>
  </t:Attachments>
</t:Message>
</m:Items></m:GetItemResponseMessage>
</m:ResponseMessages></m:GetItemResponse></s:Body></s:Envelope>"""


@pytest.mark.asyncio
async def test_ews_attachments_are_loaded_with_get_item() -> None:
    bodies: list[str] = []
    find_item = EWS_FIND_ITEM.replace(
        "<t:IsRead>", "<t:HasAttachments>true</t:HasAttachments>\n  <t:IsRead>"
    )

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(request.content.decode())
        if b"GetItem" in request.content:
            return httpx.Response(200, text=EWS_GET_ITEM)
        return httpx.Response(200, text=find_item)

    backend = EwsBackend(transport=httpx.MockTransport(handler))
    result = await backend.fetch_recent(
        _account(Provider.EXCHANGE), EWS_SETTINGS, "Inbox", 10
    )

    assert len(bodies) == 2
    assert '<t:ItemId Id="AAA="/>' in bodies[1]
    assert 'FieldURI="item:Attachments"' in bodies[1]
    [attachment] = result.messages[0].attachments
    assert attachment.file_name == "report.xlsx"
    assert attachment.mime_type == "application/vnd.ms-excel"
    assert attachment.size == 2048
    message_id = mail_record_id("acct-1", "AAA=")
    assert attachment.id == attachment_record_id(message_id, 0)


@pytest.mark.asyncio
async def test_ews_skips_get_item_without_attachments() -> None:
    bodies: list[bytes] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(request.content)
        return httpx.Response(200, text=EWS_FIND_ITEM)

    backend = EwsBackend(transport=httpx.MockTransport(handler))
    result = await backend.fetch_recent(
        _account(Provider.EXCHANGE), EWS_SETTINGS, "Inbox", 10
    )

    assert len(bodies) == 1
    assert result.messages[0].attachments == []


def test_distinguished_folder_names() -> None:
    assert distinguished_folder("INBOX") == "inbox"
    assert distinguished_folder("Sent Items") == "sentitems"
    assert distinguished_folder("Trash") == "deleteditems"


# IMAP / SMTP -----------------------------------------------------------------
class FakeImap:
    def __init__(self, chunks: list[MessageChunk], error: bool = False) -> None:
        self.chunks = chunks
        self.error = error
        self.calls: list[tuple] = []

    def __enter__(self) -> FakeImap:
        return self

    def __exit__(self, *args: object) -> None:
        return None

    def fetch_recent(self, folder, limit, since=None):
        self.calls.append((folder, limit, since))
        if self.error:
            raise ImapError("connection dropped")
        return self.chunks


@pytest.mark.asyncio
async def test_imap_backend_parses_chunks() -> None:
    fake = FakeImap(
        [MessageChunk(uid="101", raw=FIXTURE, flags=("\\Seen", "$Forwarded"))]
    )
    backend = ImapSmtpBackend(imap_factory=lambda settings, provider: fake)

    result = await backend.fetch_recent(
        _account(Provider.GENERIC),
        ProtocolSettings(imap_host="imap.example.com"),
        "INBOX",
        20,
    )

    assert fake.calls == [("INBOX", 20, None)]
    message = result.messages[0]
    assert message.remote_id == "101"
    assert message.flags.seen and message.flags.forwarded
    assert message.subject == "Test Email"


@pytest.mark.asyncio
async def test_imap_errors_surface_as_remote_errors() -> None:
    backend = ImapSmtpBackend(
        imap_factory=lambda settings, provider: FakeImap([], error=True)
    )

    with pytest.raises(RemoteError):
        await backend.fetch_recent(
            _account(Provider.YAHOO),
            ProtocolSettings(imap_host="imap.mail.yahoo.com", offline_sync_limit=7),
            "INBOX",
            20,
        )


@pytest.mark.asyncio
async def test_gmail_accounts_are_delegated_to_rest() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"messages": []})

    def refuse(settings, provider):
        raise AssertionError("IMAP must not be used for Gmail")

    backend = ImapSmtpBackend(
        gmail=GmailBackend(transport=httpx.MockTransport(handler)),
        imap_factory=refuse,
    )

    result = await backend.fetch_recent(
        _account(Provider.GMAIL), ProtocolSettings(access_token="tok"), "INBOX", 5
    )

    assert result.messages == []
