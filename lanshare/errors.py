"""Exception types raised by the discovery, transfer and signaling services."""


class LanShareError(Exception):
    """Base class for all LanShare errors."""


class ProtocolError(LanShareError, ConnectionError):
    """The peer violated the transfer wire protocol or closed the stream early."""


class ConnectTimeoutError(LanShareError, TimeoutError):
    """Opening a transfer connection did not complete within the timeout."""


class ArchiveError(LanShareError):
    """A folder could not be archived or an archive could not be extracted."""


class InvalidFileNameError(LanShareError, ValueError):
    """A name cannot be carried by the pipe-delimited transfer header."""
