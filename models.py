"""
Pydantic models for mailbox, attachment and download data
"""
from datetime import datetime
from enum import Enum
from typing import Optional, List
from pydantic import BaseModel, ConfigDict, Field, SecretStr, model_validator


DEFAULT_SUBJECT = "(No Subject)"
DEFAULT_SENDER = "Unknown"
DEFAULT_FILENAME = "unnamed"
DEFAULT_CONTENT_TYPE = "application/octet-stream"


class MailboxConnectionConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    email: str
    password: SecretStr
    host: str
    port: int = Field(default=993, ge=1, le=65535)
    tls: bool = True


class ConnectionState(str, Enum):
    NONE = "none"
    CONNECTING = "connecting"
    READY = "ready"
    ERROR = "error"
    CLOSED = "closed"


class AttachmentSummary(BaseModel):
    filename: str = DEFAULT_FILENAME
    size: int = 0
    content_type: str = DEFAULT_CONTENT_TYPE
    content_id: Optional[str] = None


class MessageSummary(BaseModel):
    uid: str
    message_id: str = ""
    subject: str = DEFAULT_SUBJECT
    sender: str = DEFAULT_SENDER
    date: datetime
    has_attachments: bool
    attachments: List[AttachmentSummary] = []
    body: Optional[str] = None

    @model_validator(mode="after")
    def _attachments_match_flag(self):
        if self.has_attachments != bool(self.attachments):
            raise ValueError("has_attachments must be true exactly when attachments is non-empty")
        return self


class AttachmentPayload(BaseModel):
    filename: str = DEFAULT_FILENAME
    content: bytes
    content_type: str = DEFAULT_CONTENT_TYPE

    @property
    def size(self) -> int:
        return len(self.content)


class EmailContext(BaseModel):
    subject: str = DEFAULT_SUBJECT
    sender: str = DEFAULT_SENDER
    body: Optional[str] = None
    date: datetime


class AttachmentInfo(BaseModel):
    filename: str
    content_type: str = DEFAULT_CONTENT_TYPE
    size: int = 0


class FileSuggestion(BaseModel):
    original_filename: str
    suggested_filename: str
    suggested_path: str
    confidence: float = Field(ge=0.0, le=1.0)


class FileToDownload(BaseModel):
    original_filename: str
    suggested_filename: str
    suggested_path: str = ""
    content: bytes


class PreparedDownload(BaseModel):
    filename: str
    content: bytes
    content_type: str
