"""
MIME parsing for fetched messages
"""
import email
import email.errors
import email.utils
from datetime import datetime, timezone
from email.header import decode_header
from email.message import Message
from typing import Iterator, List, Optional

from loguru import logger

from exceptions import ParseError
from models import (
    AttachmentPayload,
    AttachmentSummary,
    MessageSummary,
    DEFAULT_CONTENT_TYPE,
    DEFAULT_FILENAME,
    DEFAULT_SENDER,
    DEFAULT_SUBJECT,
)

# Defects that mean the part tree itself cannot be trusted
STRUCTURAL_DEFECTS = (
    email.errors.NoBoundaryInMultipartDefect,
    email.errors.StartBoundaryNotFoundDefect,
    email.errors.CloseBoundaryNotFoundDefect,
    email.errors.MultipartInvariantViolationDefect,
)


def decode_header_value(header_value) -> str:
    """Decode an RFC 2047 encoded header"""
    if header_value is None:
        return ""

    try:
        decoded = decode_header(str(header_value))
    except email.errors.HeaderParseError:
        return str(header_value)

    header_str = ""
    for part, encoding in decoded:
        if isinstance(part, bytes):
            try:
                part = part.decode(encoding or 'utf-8', errors='replace')
            except LookupError:
                part = part.decode('utf-8', errors='replace')
        header_str += str(part)
    return header_str.strip()


def parse_message(raw: bytes) -> Message:
    """Parse a complete RFC 822 buffer, raising ParseError on structural damage"""
    if not isinstance(raw, (bytes, bytearray)) or not raw:
        raise ParseError("Empty or non-binary message buffer")

    try:
        msg = email.message_from_bytes(bytes(raw))
    except Exception as e:
        raise ParseError(f"Unparsable message: {e}") from e

    for part in msg.walk():
        for defect in part.defects:
            if isinstance(defect, STRUCTURAL_DEFECTS):
                raise ParseError(f"Malformed MIME structure: {type(defect).__name__}")
            logger.debug(f"Tolerated MIME defect in {part.get_content_type()}: {type(defect).__name__}")

    return msg


def _is_attached_message(part: Message) -> bool:
    return part.get_content_maintype() == "message" and part.get_content_disposition() == "attachment"


def iter_leaf_parts(msg: Message) -> Iterator[Message]:
    """Walk leaf parts in MIME order without descending into attached messages"""
    stack = [msg]
    while stack:
        part = stack.pop()
        if part.is_multipart() and not _is_attached_message(part):
            stack.extend(reversed(part.get_payload()))
        else:
            yield part


def iter_attachment_parts(msg: Message) -> Iterator[Message]:
    for part in iter_leaf_parts(msg):
        if part.get_content_disposition() == "attachment":
            yield part


def _part_content(part: Message) -> bytes:
    if part.is_multipart():
        # message/rfc822 attachment: hand back the enclosed message verbatim
        inner = part.get_payload()
        return b"".join(p.as_bytes() for p in inner) if isinstance(inner, list) else b""
    return part.get_payload(decode=True) or b""


def _part_filename(part: Message) -> str:
    return decode_header_value(part.get_filename()) or DEFAULT_FILENAME


def _part_text(part: Message) -> str:
    payload = part.get_payload(decode=True) or b""
    charset = part.get_content_charset() or 'utf-8'
    try:
        return payload.decode(charset, errors='replace')
    except LookupError:
        return payload.decode('utf-8', errors='replace')


def extract_attachments(msg: Message) -> List[AttachmentPayload]:
    attachments = []
    for part in iter_attachment_parts(msg):
        attachments.append(AttachmentPayload(
            filename=_part_filename(part),
            content=_part_content(part),
            content_type=part.get_content_type() or DEFAULT_CONTENT_TYPE
        ))
    return attachments


def extract_attachment_info(msg: Message) -> List[AttachmentSummary]:
    infos = []
    for part in iter_attachment_parts(msg):
        content_id = part.get('Content-ID')
        infos.append(AttachmentSummary(
            filename=_part_filename(part),
            size=len(_part_content(part)),
            content_type=part.get_content_type() or DEFAULT_CONTENT_TYPE,
            content_id=str(content_id).strip() if content_id else None
        ))
    return infos


def extract_body(msg: Message) -> str:
    """Plain text if present, else HTML, else an empty string"""
    body_text = None
    body_html = None

    for part in iter_leaf_parts(msg):
        if part.get_content_disposition() == "attachment":
            continue
        content_type = part.get_content_type()
        if content_type == 'text/plain' and body_text is None:
            body_text = _part_text(part)
        elif content_type == 'text/html' and body_html is None:
            body_html = _part_text(part)

    return body_text or body_html or ""


def parse_date(date_str: Optional[str]) -> datetime:
    if date_str:
        try:
            parsed = email.utils.parsedate_to_datetime(str(date_str))
            if parsed is not None:
                return parsed
        except (TypeError, ValueError, IndexError):
            logger.debug(f"Unparsable Date header: {date_str!r}")
    return datetime.now(timezone.utc)


def build_summary(uid: str, msg: Message, include_body: bool = False) -> MessageSummary:
    """Build a MessageSummary from a parsed message"""
    attachments = extract_attachment_info(msg)

    return MessageSummary(
        uid=str(uid),
        message_id=str(msg.get('Message-ID', '')).strip(),
        subject=decode_header_value(msg.get('Subject')) or DEFAULT_SUBJECT,
        sender=decode_header_value(msg.get('From')) or DEFAULT_SENDER,
        date=parse_date(msg.get('Date')),
        has_attachments=bool(attachments),
        attachments=attachments,
        body=extract_body(msg) if include_body else None
    )
