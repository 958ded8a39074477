"""
FastAPI server for the Mail Attachment Extractor
"""
import asyncio
import base64
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import Response
from loguru import logger
from pydantic import Base64Bytes, BaseModel, Field

from config import settings
from downloads import build_download
from exceptions import AuthError, MailboxError, ParseError
from imap_client import MailboxClient
from models import (
    AttachmentInfo,
    EmailContext,
    FileSuggestion,
    FileToDownload,
    MailboxConnectionConfig,
    MessageSummary,
)
from rate_limiter import RateLimiter
from suggestions import SuggestionGenerator

MAILBOX_UNREACHABLE = "Failed to reach mailbox. Please reconnect and try again."


class ConnectRequest(BaseModel):
    email: str
    password: str
    host: str
    port: int = Field(ge=1, le=65535)
    security: str = "SSL"

    def to_config(self) -> MailboxConnectionConfig:
        return MailboxConnectionConfig(
            email=self.email,
            password=self.password,
            host=self.host,
            port=self.port,
            tls=self.security.upper() in ("SSL", "TLS")
        )


class ListRequest(BaseModel):
    config: MailboxConnectionConfig
    limit: int = Field(default=settings.default_list_limit, ge=1)


class FetchRequest(BaseModel):
    config: MailboxConnectionConfig


class SuggestRequest(BaseModel):
    email: EmailContext
    attachments: List[AttachmentInfo]


class DownloadFile(FileToDownload):
    content: Base64Bytes


class DownloadRequest(BaseModel):
    email_uid: str
    files: List[DownloadFile]


class ListResponse(BaseModel):
    emails: List[MessageSummary]


class SuggestResponse(BaseModel):
    suggestions: List[FileSuggestion]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """FastAPI lifespan manager"""
    logger.info("Starting Mail Attachment Extractor API")
    app.state.rate_limiter = RateLimiter(
        window_seconds=settings.suggest_rate_limit_window_seconds,
        max_requests=settings.suggest_rate_limit_max_requests,
        max_keys=settings.rate_limit_max_keys
    )
    app.state.suggestions = SuggestionGenerator()
    cleanup_task = asyncio.create_task(
        app.state.rate_limiter.run_cleanup(settings.rate_limit_cleanup_interval_seconds)
    )

    yield

    logger.info("Shutting down Mail Attachment Extractor API")
    cleanup_task.cancel()
    try:
        await cleanup_task
    except asyncio.CancelledError:
        pass


app = FastAPI(
    title="Mail Attachment Extractor",
    description="Lists IMAP messages with attachments, suggests where to file them and packages downloads",
    version="1.0.0",
    lifespan=lifespan
)


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


def get_suggestion_generator(request: Request) -> SuggestionGenerator:
    return request.app.state.suggestions


def client_address(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    if request.client and request.client.host:
        return request.client.host
    return "anonymous"


def _mailbox_http_error(e: MailboxError) -> HTTPException:
    if isinstance(e, AuthError):
        return HTTPException(status_code=401, detail="Mailbox rejected the credentials. Please reconnect.")
    return HTTPException(status_code=502, detail=MAILBOX_UNREACHABLE)


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "timestamp": datetime.now().isoformat()}


@app.post("/api/imap/connect")
def connect_mailbox(body: ConnectRequest):
    """Validate mailbox credentials"""
    client = MailboxClient(body.to_config())
    if not client.test_connection():
        raise HTTPException(
            status_code=400,
            detail="Failed to connect to IMAP server. Please check your credentials and settings."
        )
    return {"success": True}


@app.post("/api/imap/list", response_model=ListResponse)
def list_emails(body: ListRequest):
    """List recent emails with attachments"""
    try:
        with MailboxClient(body.config) as client:
            emails = client.list_attachment_messages(body.limit)
    except MailboxError as e:
        logger.error(f"Error fetching emails: {e}")
        raise _mailbox_http_error(e)
    return ListResponse(emails=emails)


@app.post("/api/imap/fetch/{uid}")
def fetch_email(uid: str, body: FetchRequest):
    """Email details plus base64 encoded attachments"""
    try:
        with MailboxClient(body.config) as client:
            fetched = client.fetch_message(uid)
            if fetched is None:
                raise HTTPException(status_code=404, detail="Email not found")
            details, attachments = fetched
    except ParseError as e:
        logger.error(f"Unparsable email {uid}: {e}")
        raise HTTPException(status_code=422, detail="Email could not be parsed")
    except MailboxError as e:
        logger.error(f"Error fetching email {uid}: {e}")
        raise _mailbox_http_error(e)

    return {
        "email": details.model_dump(mode="json"),
        "attachments": [
            {
                "filename": att.filename,
                "content_type": att.content_type,
                "size": att.size,
                "content": base64.b64encode(att.content).decode("ascii")
            }
            for att in attachments
        ]
    }


@app.post("/api/extract/suggest", response_model=SuggestResponse)
def suggest_filing(
    body: SuggestRequest,
    request: Request,
    limiter: RateLimiter = Depends(get_rate_limiter),
    generator: SuggestionGenerator = Depends(get_suggestion_generator),
):
    """Suggest filenames and folders for attachments"""
    if not limiter.allow(client_address(request)):
        raise HTTPException(status_code=429, detail="Too many requests. Please try again later.")
    return SuggestResponse(suggestions=generator.generate(body.email, body.attachments))


@app.post("/api/extract/download")
def download_files(body: DownloadRequest):
    """Return one file as-is or several files as a ZIP archive"""
    if not body.files:
        raise HTTPException(status_code=400, detail="Missing required fields")

    prepared = build_download(body.files)
    logger.info(f"Prepared {prepared.filename} ({len(prepared.content)} bytes) for UID {body.email_uid}")
    return Response(
        content=prepared.content,
        media_type=prepared.content_type,
        headers={
            "Content-Disposition": f'attachment; filename="{prepared.filename}"',
            "Content-Length": str(len(prepared.content))
        }
    )
