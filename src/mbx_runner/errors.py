"""Error taxonomy for the mailbox protocol."""

from pathlib import Path
from typing import Optional, Union


class MailboxError(Exception):
    """Base class for every mailbox failure."""


class TransportError(MailboxError):
    """A slot read, write, rename or remove failed."""

    def __init__(self, message: str, errno: Optional[int] = None, path: Optional[Union[str, Path]] = None):
        super().__init__(message)
        self.errno = errno
        self.path = path

    @classmethod
    def from_os_error(cls, action: str, path: Union[str, Path], exc: OSError) -> "TransportError":
        """Wrap an OSError raised while touching a slot file."""
        return cls(
            f"Failed to {action} {Path(path).name} (errno={exc.errno}): {exc.strerror or exc}",
            errno=exc.errno,
            path=path,
        )


class MailboxTimeoutError(MailboxError, TimeoutError):
    """No output was observed within the wait bound."""


class ProtocolError(MailboxError):
    """The claimed command content cannot be processed."""


class PayloadTooLargeError(ProtocolError):
    """The command payload exceeds the configured size bound."""

    def __init__(self, size: int, limit: int):
        super().__init__(f"payload too large ({size} bytes, limit {limit})")
        self.size = size
        self.limit = limit


class ExecutionError(MailboxError):
    """The interpreter could not be invoked or produced no output."""
