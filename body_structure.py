"""
Tagged view of the IMAP BODYSTRUCTURE response

imapclient hands back BODYSTRUCTURE as nested tuples (``BodyData``) whose shape
depends on the part type. The tree is converted once into ``LeafPart`` and
``CompositePart`` nodes so callers never inspect raw tuples.

Leaf layout (RFC 3501, 7.4.2):
    (type subtype params id description encoding size <type specific> md5 disposition ...)
where ``text/*`` adds a line count and ``message/rfc822`` adds envelope, body
and line count before the extension fields.
"""
from dataclasses import dataclass
from typing import Iterator, Optional, Tuple, Union

# Position of the disposition extension field per leaf kind
_DISPOSITION_INDEX_BASIC = 8
_DISPOSITION_INDEX_TEXT = 9
_DISPOSITION_INDEX_MESSAGE = 11
_ENCLOSED_BODY_INDEX = 8


@dataclass(frozen=True)
class LeafPart:
    content_type: str
    disposition: Optional[str] = None
    filename: Optional[str] = None
    size: int = 0

    @property
    def is_attachment(self) -> bool:
        return (self.disposition or "").lower() == "attachment"


@dataclass(frozen=True)
class CompositePart:
    subtype: str
    children: Tuple["MimePartNode", ...] = ()


MimePartNode = Union[LeafPart, CompositePart]


def _text(value) -> Optional[str]:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, str):
        return value
    return None


def _param(params, name: str) -> Optional[str]:
    """Look up ``name`` in a flat (key, value, key, value, ...) parameter list"""
    if not isinstance(params, (tuple, list)):
        return None
    for i in range(0, len(params) - 1, 2):
        key = _text(params[i])
        if key and key.lower() == name:
            return _text(params[i + 1])
    return None


def _parse_leaf(raw) -> LeafPart:
    maintype = (_text(raw[0]) if len(raw) > 0 else None) or "application"
    subtype = (_text(raw[1]) if len(raw) > 1 else None) or "octet-stream"
    content_type = f"{maintype}/{subtype}".lower()

    if content_type == "message/rfc822":
        index = _DISPOSITION_INDEX_MESSAGE
    elif maintype.lower() == "text":
        index = _DISPOSITION_INDEX_TEXT
    else:
        index = _DISPOSITION_INDEX_BASIC

    disposition = None
    filename = None
    field = raw[index] if len(raw) > index else None
    if isinstance(field, (tuple, list)) and field:
        disposition = _text(field[0])
        if len(field) > 1:
            filename = _param(field[1], "filename")

    if filename is None and len(raw) > 2:
        filename = _param(raw[2], "name")

    size = raw[6] if len(raw) > 6 and isinstance(raw[6], int) else 0
    return LeafPart(content_type=content_type, disposition=disposition, filename=filename, size=size)


def _enclosed_message(leaf: LeafPart, raw) -> MimePartNode:
    # An inline forwarded message is opened up like a multipart; an attached one stays a single leaf
    enclosed = parse_body_structure(raw[_ENCLOSED_BODY_INDEX]) if len(raw) > _ENCLOSED_BODY_INDEX else None
    if enclosed is None:
        return leaf
    return CompositePart(subtype="rfc822", children=(enclosed,))


def parse_body_structure(raw) -> Optional[MimePartNode]:
    """Convert a BODYSTRUCTURE response into a MimePartNode tree.

    Accepts imapclient's ``BodyData`` (children collected into a list at index
    0) as well as the unnormalised form where child tuples lead the response.
    Returns None when there is nothing to parse.
    """
    if not isinstance(raw, (tuple, list)) or not raw:
        return None

    if isinstance(raw[0], list):
        children = raw[0]
        rest = raw[1:]
    elif isinstance(raw[0], tuple):
        count = 0
        while count < len(raw) and isinstance(raw[count], tuple):
            count += 1
        children = raw[:count]
        rest = raw[count:]
    else:
        leaf = _parse_leaf(raw)
        if leaf.content_type == "message/rfc822" and not leaf.is_attachment:
            return _enclosed_message(leaf, raw)
        return leaf

    subtype = (_text(rest[0]) if rest else None) or "mixed"
    nodes = tuple(node for node in (parse_body_structure(child) for child in children) if node is not None)
    return CompositePart(subtype=subtype.lower(), children=nodes)


def iter_leaves(node: Optional[MimePartNode]) -> Iterator[LeafPart]:
    """Yield leaf parts in document order"""
    stack = [node] if node is not None else []
    while stack:
        current = stack.pop()
        if isinstance(current, CompositePart):
            stack.extend(reversed(current.children))
        else:
            yield current


def has_attachment_disposition(node: Optional[MimePartNode]) -> bool:
    return any(leaf.is_attachment for leaf in iter_leaves(node))


def count_attachments(node: Optional[MimePartNode]) -> int:
    return sum(1 for leaf in iter_leaves(node) if leaf.is_attachment)
