"""
MBX Runner - command execution through a shared-folder mailbox

This package lets a host submit a text command to an isolated guest (an
emulator, VM or sandbox) and read back its output and exit status, using
nothing but files in a directory both sides can see.

Key Components:
- SlotTransport: stage-then-rename publish, rename-based claim, stamp probes
- MailboxClient: host side, publishes a command and waits for the reply
- MailboxServer: guest side, claims, executes and publishes results
- ShellInterpreter: default capability that runs the synthesized wrapper

Usage:
    # Guest (inside the isolated environment)
    mbx-server /mnt/shared
    python -m mbx_runner.app /mnt/shared

    # Host
    mbx-host ./shared --cmd "echo hello" --timeout 8000
    mbx-host ./shared                      # interactive

    # Programmatic usage
    from mbx_runner import MailboxClient, MailboxConfig
    client = MailboxClient(MailboxConfig(directory="./shared"))
    reply = client.submit("echo hello")

Architecture:
- Producers only write staging names and atomically rename them into place
- The guest claims a command by renaming it, so at most one job is in flight
- Output is the primary completion signal; the return code may lag slightly
"""

from .app import MailboxServer, ServerStatus
from .client import MailboxClient, Reply, parse_return_code
from .config import MailboxConfig, SlotNames, WrapperDialect
from .errors import (
    ExecutionError,
    MailboxError,
    MailboxTimeoutError,
    PayloadTooLargeError,
    ProtocolError,
    TransportError,
)
from .runner import ExecutionResult, ShellInterpreter, build_wrapper
from .slots import SlotState, SlotTransport

__version__ = "0.1.0"

__all__ = [
    # Protocol endpoints
    "MailboxClient",
    "MailboxServer",
    "ServerStatus",
    "Reply",
    "parse_return_code",

    # Configuration
    "MailboxConfig",
    "SlotNames",
    "WrapperDialect",

    # Transport and execution
    "SlotTransport",
    "SlotState",
    "ShellInterpreter",
    "ExecutionResult",
    "build_wrapper",

    # Errors
    "MailboxError",
    "TransportError",
    "MailboxTimeoutError",
    "ProtocolError",
    "PayloadTooLargeError",
    "ExecutionError",

    # Metadata
    "__version__",
]
