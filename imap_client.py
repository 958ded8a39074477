"""
IMAP client for listing messages with attachments and extracting them
"""
import ssl
import threading
from email.message import Message
from typing import Dict, List, Optional, Tuple

from imapclient import IMAPClient, SocketTimeout
from imapclient.exceptions import IMAPClientAbortError, IMAPClientError, LoginError
from loguru import logger

from body_structure import has_attachment_disposition, parse_body_structure
from config import settings
from exceptions import AuthError, FetchError, MailboxConnectionError, NotConnectedError, ParseError
from mime_parser import build_summary, extract_attachments, parse_message
from models import AttachmentPayload, ConnectionState, MailboxConnectionConfig, MessageSummary

BODY_ITEM = b'BODY.PEEK[]'
BODY_KEY = b'BODY[]'
STRUCTURE_KEY = b'BODYSTRUCTURE'


class MailboxClient:
    """One IMAP account, one socket, operations serialized per instance.

    Instances are single-use: once closed or errored, build a new one.
    """

    def __init__(self, config: MailboxConnectionConfig, folder: Optional[str] = None):
        self.config = config
        self.folder = folder or settings.imap_folder
        self.connect_timeout = settings.imap_connect_timeout
        self.read_timeout = settings.imap_read_timeout
        self.verify_certificates = settings.imap_verify_certificates
        self.client: Optional[IMAPClient] = None
        self._state = ConnectionState.NONE
        self._folder_selected = False
        self._lock = threading.RLock()

    def __enter__(self) -> "MailboxClient":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.disconnect()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.READY

    def _ssl_context(self) -> Optional[ssl.SSLContext]:
        if not self.config.tls:
            return None
        context = ssl.create_default_context()
        if not self.verify_certificates:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        return context

    def connect(self) -> None:
        """Open the transport and authenticate"""
        with self._lock:
            if self._state is not ConnectionState.NONE:
                raise MailboxConnectionError(
                    f"Client is {self._state.value}; create a new MailboxClient to reconnect"
                )

            self._state = ConnectionState.CONNECTING
            host, port = self.config.host, self.config.port
            logger.info(f"Connecting to IMAP server {host}:{port} (tls={self.config.tls})")

            try:
                client = IMAPClient(
                    host,
                    port=port,
                    use_uid=True,
                    ssl=self.config.tls,
                    ssl_context=self._ssl_context(),
                    timeout=SocketTimeout(connect=self.connect_timeout, read=self.read_timeout)
                )
            except (OSError, IMAPClientError) as e:
                self._state = ConnectionState.ERROR
                logger.error(f"Failed to reach IMAP server {host}:{port}: {e}")
                raise MailboxConnectionError(f"Failed to reach IMAP server {host}:{port}: {e}") from e
            except Exception:
                self._state = ConnectionState.ERROR
                raise

            try:
                client.login(self.config.email, self.config.password.get_secret_value())
            except LoginError as e:
                self._state = ConnectionState.ERROR
                self._release(client)
                logger.warning(f"IMAP login rejected for {self.config.email}")
                raise AuthError(f"Login rejected for {self.config.email}") from e
            except (OSError, IMAPClientError) as e:
                self._state = ConnectionState.ERROR
                self._release(client)
                logger.error(f"IMAP connection lost during login: {e}")
                raise MailboxConnectionError(f"Connection lost during login: {e}") from e
            except Exception:
                self._state = ConnectionState.ERROR
                self._release(client)
                raise

            self.client = client
            self._state = ConnectionState.READY
            logger.info(f"Connected to IMAP server: {host}")

    def disconnect(self) -> None:
        """Release the transport; safe to call in any state, any number of times"""
        with self._lock:
            if self.client is None:
                return
            try:
                self.client.logout()
                logger.info("Disconnected from IMAP server")
            except (OSError, IMAPClientError) as e:
                logger.warning(f"Error during disconnect: {e}")
                self._release(self.client)
            finally:
                self.client = None
                if self._state is ConnectionState.READY:
                    self._state = ConnectionState.CLOSED

    def test_connection(self) -> bool:
        """Validate credentials by connecting and disconnecting"""
        try:
            self.connect()
            return True
        except Exception as e:
            logger.warning(f"IMAP connection test failed: {e}")
            return False
        finally:
            self.disconnect()

    @staticmethod
    def _release(client: IMAPClient) -> None:
        try:
            client.shutdown()
        except OSError as e:
            logger.debug(f"Socket shutdown failed: {e}")

    def _fail(self, error: Exception) -> None:
        """Move to the error state and drop the socket"""
        self._state = ConnectionState.ERROR
        if self.client is not None:
            self._release(self.client)
            self.client = None
        logger.error(f"IMAP transport failure: {error}")

    def _require_ready(self) -> IMAPClient:
        if self._state is not ConnectionState.READY or self.client is None:
            raise NotConnectedError(f"Not connected to IMAP server (state: {self._state.value})")
        return self.client

    def _select_folder(self) -> None:
        client = self._require_ready()
        if self._folder_selected:
            return
        try:
            # Read-only so listing and fetching never touch \Seen
            client.select_folder(self.folder, readonly=True)
        except (IMAPClientAbortError, OSError) as e:
            self._fail(e)
            raise FetchError(f"Failed to select {self.folder}: {e}") from e
        except IMAPClientError as e:
            raise FetchError(f"Failed to select {self.folder}: {e}") from e
        self._folder_selected = True

    def _search_all(self) -> List[int]:
        client = self._require_ready()
        try:
            return [int(uid) for uid in client.search(['ALL'])]
        except (IMAPClientAbortError, OSError) as e:
            self._fail(e)
            raise FetchError(f"Search failed: {e}") from e
        except IMAPClientError as e:
            raise FetchError(f"Search failed: {e}") from e

    def _fetch(self, uids: List[int], items: List[bytes]) -> Dict[int, dict]:
        client = self._require_ready()
        try:
            return client.fetch(uids, items)
        except (IMAPClientAbortError, OSError) as e:
            self._fail(e)
            raise FetchError(f"Fetch of {len(uids)} message(s) failed: {e}") from e
        except IMAPClientError as e:
            raise FetchError(f"Fetch of {len(uids)} message(s) failed: {e}") from e

    @staticmethod
    def _parse_uid(identifier) -> Optional[int]:
        try:
            uid = int(str(identifier).strip())
        except (TypeError, ValueError):
            return None
        return uid if uid > 0 else None

    def list_attachment_messages(self, limit: Optional[int] = None) -> List[MessageSummary]:
        """Most recent messages carrying attachments, newest first"""
        limit = settings.default_list_limit if limit is None else limit
        if limit < 1:
            raise ValueError("limit must be at least 1")

        with self._lock:
            self._select_folder()
            uids = self._search_all()
            if not uids:
                return []

            recent = sorted(uids)[-limit:][::-1]
            structures = self._fetch(recent, [STRUCTURE_KEY])

            candidates = []
            for uid in recent:
                data = structures.get(uid) or {}
                if has_attachment_disposition(parse_body_structure(data.get(STRUCTURE_KEY))):
                    candidates.append(uid)

            logger.info(f"📬 {len(candidates)} of {len(recent)} recent messages report attachments")
            if not candidates:
                return []

            bodies = self._fetch(candidates, [BODY_ITEM])

            emails = []
            for uid in candidates:
                raw = (bodies.get(uid) or {}).get(BODY_KEY)
                if raw is None:
                    logger.warning(f"No body returned for UID {uid}, skipping")
                    continue
                try:
                    summary = build_summary(str(uid), parse_message(raw))
                except (ParseError, ValueError) as e:
                    logger.error(f"Error parsing email UID {uid}: {e}")
                    continue
                if not summary.has_attachments:
                    logger.debug(f"UID {uid} structure reported attachments but none were parsed")
                    continue
                emails.append(summary)

            return emails

    def _fetch_message(self, identifier: str, items: List[bytes]) -> Tuple[Optional[int], Optional[dict]]:
        """Fetch one message by UID; (None, None) when the UID is invalid or unknown"""
        self._require_ready()
        uid = self._parse_uid(identifier)
        if uid is None:
            logger.warning(f"Ignoring invalid UID {identifier!r}")
            return None, None

        self._select_folder()
        data = self._fetch([uid], items).get(uid)
        if not data or data.get(BODY_KEY) is None:
            logger.info(f"UID {uid} not found in {self.folder}")
            return uid, None
        return uid, data

    def _details_from(self, uid: int, msg: Message, data: dict) -> MessageSummary:
        summary = build_summary(str(uid), msg, include_body=True)
        structure = parse_body_structure(data.get(STRUCTURE_KEY))
        if structure is not None and has_attachment_disposition(structure) != summary.has_attachments:
            logger.debug(f"UID {uid}: BODYSTRUCTURE and parsed MIME disagree on attachments")
        return summary

    def get_message_details(self, identifier: str) -> Optional[MessageSummary]:
        """Metadata plus primary text body for one message, or None if unknown"""
        with self._lock:
            uid, data = self._fetch_message(identifier, [BODY_ITEM, STRUCTURE_KEY])
            if data is None:
                return None
            return self._details_from(uid, parse_message(data[BODY_KEY]), data)

    def download_attachments(self, identifier: str) -> List[AttachmentPayload]:
        """Every attachment-disposition leaf of one message, in MIME order"""
        with self._lock:
            uid, data = self._fetch_message(identifier, [BODY_ITEM])
            if data is None:
                return []

            attachments = extract_attachments(parse_message(data[BODY_KEY]))
            logger.info(f"Extracted {len(attachments)} attachment(s) from UID {uid}")
            return attachments

    def fetch_message(self, identifier: str) -> Optional[Tuple[MessageSummary, List[AttachmentPayload]]]:
        """Details and attachments of one message from a single body download"""
        with self._lock:
            uid, data = self._fetch_message(identifier, [BODY_ITEM, STRUCTURE_KEY])
            if data is None:
                return None

            msg = parse_message(data[BODY_KEY])
            attachments = extract_attachments(msg)
            logger.info(f"Extracted {len(attachments)} attachment(s) from UID {uid}")
            return self._details_from(uid, msg, data), attachments

    def get_status(self) -> dict:
        """Get client status"""
        return {
            "connected": self.is_connected,
            "state": self._state.value,
            "server": self.config.host,
            "port": self.config.port,
            "username": self.config.email,
            "folder": self.folder
        }

