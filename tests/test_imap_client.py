"""Tests for the IMAP transport adapter."""

# pylint: disable=protected-access

from __future__ import annotations

from datetime import date
from unittest.mock import MagicMock

import pytest

from inbox_sync.core.account_settings import ProtocolSettings
from inbox_sync.core.errors import ConfigurationError
from inbox_sync.transport import ImapClient, xoauth2_string

FETCH_RESPONSE = [
    (
        b'4 (UID 101 FLAGS (\\Seen) INTERNALDATE "17-Jul-2024 02:44:25 +0000" '
        b"RFC822 {7}",
        b"raw-101",
    ),
    b")",
    (b"5 (UID 102 FLAGS () RFC822 {7}", b"raw-102"),
    b")",
]


def _client() -> tuple[ImapClient, MagicMock]:
    settings = ProtocolSettings(
        imap_host="imap.test",
        imap_port=993,
        imap_use_ssl=False,
        username="user",
        password="password",
    )
    client = ImapClient(settings)
    mock_connection = MagicMock()
    mock_connection.select.return_value = ("OK", [b"5"])
    client._connection = mock_connection  # type: ignore[assignment]
    return client, mock_connection


def test_fetch_recent_takes_last_sequence_numbers() -> None:
    client, mock_connection = _client()
    mock_connection.fetch.return_value = ("OK", FETCH_RESPONSE)

    chunks = client.fetch_recent("INBOX", limit=2)

    assert [chunk.uid for chunk in chunks] == ["101", "102"]
    assert chunks[0].raw == b"raw-101"
    assert chunks[0].flags == ("\\Seen",)
    assert chunks[0].internal_date is not None
    assert chunks[0].internal_date.year == 2024
    assert chunks[1].flags == ()
    assert chunks[1].internal_date is None
    mock_connection.select.assert_called_once_with("INBOX", readonly=True)
    mock_connection.fetch.assert_called_once_with(
        "4:5", "(UID FLAGS INTERNALDATE RFC822)"
    )


def test_fetch_recent_since_searches_by_date() -> None:
    client, mock_connection = _client()

    def uid(command, *args):
        if command == "SEARCH":
            return "OK", [b"3 9 7"]
        if command == "FETCH":
            return "OK", FETCH_RESPONSE
        raise AssertionError("Unexpected IMAP command")

    mock_connection.uid.side_effect = uid

    chunks = client.fetch_recent("INBOX", limit=2, since=date(2024, 3, 1))

    assert len(chunks) == 2
    mock_connection.uid.assert_any_call("SEARCH", None, "SINCE", "01-Mar-2024")
    mock_connection.uid.assert_any_call(
        "FETCH", "7,9", "(UID FLAGS INTERNALDATE RFC822)"
    )


def test_list_folders_parses_list_response() -> None:
    client, mock_connection = _client()
    mock_connection.list.return_value = (
        "OK",
        [
            b'(\\HasNoChildren) "/" "INBOX"',
            b'(\\HasNoChildren \\Sent) "/" "Sent Items"',
        ],
    )

    folders = client.list_folders()

    assert folders == [
        ("INBOX", "/", ("\\HasNoChildren",)),
        ("Sent Items", "/", ("\\HasNoChildren", "\\Sent")),
    ]


def test_connect_requires_host() -> None:
    client = ImapClient(ProtocolSettings(username="user", password="secret"))

    with pytest.raises(ConfigurationError):
        client.connect()


def test_xoauth2_string_format() -> None:
    assert xoauth2_string("me@example.com", "tok") == (
        "user=me@example.com\x01auth=Bearer tok\x01\x01"
    )
