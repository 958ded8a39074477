from __future__ import annotations

import pytest

import imap_client
from tests.helpers import FakeServer, make_config


@pytest.fixture
def server(monkeypatch) -> FakeServer:
    fake = FakeServer()
    monkeypatch.setattr(imap_client, "IMAPClient", fake)
    return fake


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def client(server, config):
    mailbox = imap_client.MailboxClient(config)
    yield mailbox
    mailbox.disconnect()
