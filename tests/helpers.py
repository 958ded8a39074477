from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from email.mime.application import MIMEApplication
from email.mime.image import MIMEImage
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.message import Message

from imapclient.exceptions import LoginError
from imapclient.response_types import BodyData

from models import MailboxConnectionConfig

PASSWORD = "app-password"

BROKEN_MULTIPART = (
    b"From: Sender <sender@example.test>\r\n"
    b"Subject: Broken\r\n"
    b"MIME-Version: 1.0\r\n"
    b'Content-Type: multipart/mixed; boundary="XYZ"\r\n'
    b"\r\n"
    b"there is no boundary in this body\r\n"
)

# BODYSTRUCTURE claiming one PDF attachment, used with messages whose body disagrees
PDF_ATTACHMENT_STRUCTURE = (
    (b"application", b"pdf", (b"name", b"x.pdf"), None, None, b"base64", 10,
     None, (b"attachment", (b"filename", b"x.pdf")), None, None),
    b"mixed", (b"boundary", b"XYZ"), None, None, None,
)


def make_config(**overrides) -> MailboxConnectionConfig:
    values = {
        "email": "main@example.test",
        "password": PASSWORD,
        "host": "imap.example.test",
        "port": 993,
        "tls": True,
    }
    values.update(overrides)
    return MailboxConnectionConfig(**values)


def make_message(
    *,
    subject: str | None = "Test message",
    sender: str = "Sender <sender@example.test>",
    date: str = "Mon, 16 Feb 2026 10:00:00 -0500",
    text: str | None = "Hello",
    html: str | None = None,
    attachments: list[tuple[str, bytes]] = (),
    inline_images: list[tuple[str, bytes]] = (),
) -> Message:
    msg = MIMEMultipart("mixed")
    if subject is not None:
        msg["Subject"] = subject
    msg["From"] = sender
    msg["Date"] = date
    msg["Message-ID"] = f"<{abs(hash((subject, date)))}@example.test>"

    if text is not None and html is not None:
        body = MIMEMultipart("alternative")
        body.attach(MIMEText(text, "plain"))
        body.attach(MIMEText(html, "html"))
        msg.attach(body)
    elif text is not None:
        msg.attach(MIMEText(text, "plain"))
    elif html is not None:
        msg.attach(MIMEText(html, "html"))

    for filename, content in inline_images:
        image = MIMEImage(content, _subtype="png")
        image.add_header("Content-Disposition", "inline", filename=filename)
        image.add_header("Content-ID", f"<{filename}>")
        msg.attach(image)

    for filename, content in attachments:
        part = MIMEApplication(content, _subtype="pdf")
        part.add_header("Content-Disposition", "attachment", filename=filename)
        msg.attach(part)

    return msg


def _params(part: Message):
    params = part.get_params() or []
    flat = []
    for key, value in params[1:]:
        flat.extend([key.encode(), str(value).encode()])
    return tuple(flat) or None


def _disposition_field(part: Message):
    disposition = part.get_content_disposition()
    if not disposition:
        return None
    filename = part.get_filename()
    return (disposition.encode(), (b"filename", filename.encode()) if filename else None)


def _envelope(msg: Message):
    subject = msg.get("Subject")
    return (None, subject.encode() if subject else None, None, None, None, None, None, None, None, None)


def _message_structure(part: Message):
    # message/rfc822: basic fields, then envelope, enclosed body and line count before the extensions
    inner = part.get_payload()[0]
    text = inner.as_bytes()
    return (
        b"message", b"rfc822", None, None, None, b"7bit", len(text),
        _envelope(inner), _structure(inner), text.count(b"\n"),
        None, _disposition_field(part), None, None,
    )


def _structure(part: Message):
    if part.get_content_type() == "message/rfc822":
        return _message_structure(part)
    if part.is_multipart():
        children = tuple(_structure(child) for child in part.get_payload())
        return children + (part.get_content_subtype().encode(), _params(part), None, None, None)

    payload = part.get_payload()
    maintype = part.get_content_maintype().encode()
    fields = [
        maintype,
        part.get_content_subtype().encode(),
        _params(part),
        None,
        None,
        (part.get("Content-Transfer-Encoding") or "7bit").encode(),
        len(payload),
    ]
    if maintype == b"text":
        fields.append(payload.count("\n"))

    fields.extend([None, _disposition_field(part), None, None])
    return tuple(fields)


def body_structure_for(msg: Message) -> BodyData:
    return BodyData.create(_structure(msg))


class FakeIMAPClient:
    def __init__(self, server: "FakeServer", host, port=None, use_uid=True, ssl=True, ssl_context=None,
                 timeout=None):
        self.server = server
        self.host = host
        self.port = port
        self.ssl = ssl
        self.ssl_context = ssl_context
        self.timeout = timeout
        self.logged_in = False
        self.logged_out = False
        self.shut_down = False
        self.selected = []
        self.fetches = []

    def login(self, username, password):
        if self.server.login_error is not None:
            raise self.server.login_error
        if password != self.server.password:
            raise LoginError("[AUTHENTICATIONFAILED] Invalid credentials")
        self.logged_in = True
        return b"Logged in"

    def select_folder(self, folder, readonly=False):
        self.selected.append((folder, readonly))
        return {b"EXISTS": len(self.server.messages)}

    def search(self, criteria="ALL"):
        if self.server.search_error is not None:
            raise self.server.search_error
        return list(self.server.messages)

    def fetch(self, messages, data):
        with self.server.tracking_fetch():
            return self._fetch(messages, data)

    def _fetch(self, messages, data):
        if self.server.fetch_error is not None:
            raise self.server.fetch_error
        items = [item if isinstance(item, bytes) else item.encode() for item in data]
        self.fetches.append((list(messages), items))

        response = {}
        for seq, uid in enumerate(messages, start=1):
            if uid not in self.server.messages:
                continue
            raw, structure = self.server.messages[uid]
            entry = {b"SEQ": seq}
            if b"BODY.PEEK[]" in items:
                entry[b"BODY[]"] = raw
            if b"BODYSTRUCTURE" in items:
                entry[b"BODYSTRUCTURE"] = structure
            response[uid] = entry
        return response

    def logout(self):
        if self.server.logout_error is not None:
            raise self.server.logout_error
        self.logged_out = True
        return b"Logging out"

    def shutdown(self):
        self.shut_down = True


class FakeServer:
    """Stands in for the IMAPClient class; each call opens a FakeIMAPClient"""

    def __init__(self):
        self.password = PASSWORD
        self.messages = {}
        self.clients = []
        self.connect_error = None
        self.login_error = None
        self.search_error = None
        self.fetch_error = None
        self.logout_error = None
        self.fetch_delay = 0.0
        self.active_fetches = 0
        self.max_concurrent_fetches = 0
        self._counter_lock = threading.Lock()

    def __call__(self, host, **kwargs) -> FakeIMAPClient:
        if self.connect_error is not None:
            raise self.connect_error
        client = FakeIMAPClient(self, host, **kwargs)
        self.clients.append(client)
        return client

    @contextmanager
    def tracking_fetch(self):
        with self._counter_lock:
            self.active_fetches += 1
            self.max_concurrent_fetches = max(self.max_concurrent_fetches, self.active_fetches)
        try:
            time.sleep(self.fetch_delay)
            yield
        finally:
            with self._counter_lock:
                self.active_fetches -= 1

    def add_message(self, uid: int, msg: Message | None = None, *, raw: bytes | None = None,
                    structure=None) -> None:
        if raw is None:
            raw = msg.as_bytes()
        if structure is None:
            structure = body_structure_for(msg)
        elif not isinstance(structure, BodyData):
            structure = BodyData.create(structure)
        self.messages[uid] = (raw, structure)
