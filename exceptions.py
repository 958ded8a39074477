"""
Error taxonomy for the mailbox client
"""


class MailboxError(Exception):
    """Base class for every mailbox client failure"""


class MailboxConnectionError(MailboxError, ConnectionError):
    """Transport, DNS, TLS or timeout failure while reaching the server"""


class AuthError(MailboxError):
    """The server rejected the supplied credentials"""


class NotConnectedError(MailboxError):
    """An operation was attempted without a ready connection"""


class FetchError(MailboxError):
    """A search/fetch command failed after the connection was established"""


class ParseError(MailboxError):
    """The fetched message is not structurally valid MIME"""
