#!/usr/bin/env python3
"""
Mailbox client - host side of the shared-folder protocol.

Publishes a command into the mailbox directory and waits for the guest to
publish its output and return code.
"""

import argparse
import re
import sys
import time
from typing import Optional

from loguru import logger
from pydantic import BaseModel

from .config import MailboxConfig
from .errors import MailboxError, MailboxTimeoutError
from .slots import SlotStamp, SlotTransport

_RC_PATTERN = re.compile(r"\s*([-+]?\d+)")


class Reply(BaseModel):
    """Output of one command, with its return code when the guest supplied one."""

    output: str
    return_code: Optional[int] = None

    @property
    def has_return_code(self) -> bool:
        return self.return_code is not None


def parse_return_code(text: str) -> Optional[int]:
    """Parse the leading integer of a return-code file; whitespace and CR/LF are skipped."""
    match = _RC_PATTERN.match(text)
    if not match:
        return None
    return int(match.group(1))


def _changed(now: Optional[SlotStamp], before: Optional[SlotStamp]) -> bool:
    return now is not None and now != before


class MailboxClient:
    """Submits commands to a guest through the mailbox directory."""

    def __init__(self, config: MailboxConfig):
        self.config = config
        self.transport = SlotTransport(config)

    def submit(self, command: str, timeout: Optional[float] = None,
               poll_interval: Optional[float] = None) -> Reply:
        """
        Publish a command and wait for the guest's reply.

        Args:
            command: Command text; a line ending is appended
            timeout: Seconds to wait for output (default config.timeout_ms)
            poll_interval: Seconds between output probes (default config.poll_interval_ms)

        Returns:
            Reply: Output text and, if it arrived in time, the return code

        Raises:
            MailboxTimeoutError: If no new output appears within timeout
            TransportError: If the command cannot be published or the output read
        """
        if timeout is None:
            timeout = self.config.timeout_ms / 1000
        if poll_interval is None:
            poll_interval = self.config.poll_interval_ms / 1000

        transport = self.transport
        output_before = transport.probe(transport.output)
        rc_before = transport.probe(transport.return_code)

        transport.remove(transport.command.staging)
        transport.publish(transport.command, command + self.config.newline)
        logger.debug(f"Published command to {transport.command.published}")

        start = time.monotonic()
        while True:
            if _changed(transport.probe(transport.output), output_before):
                output = transport.read(transport.output.published)
                return Reply(output=output, return_code=self._wait_return_code(rc_before))

            if time.monotonic() - start > timeout:
                raise MailboxTimeoutError(
                    f"Timeout waiting for {transport.output.published.name}. "
                    f"Is the mailbox server running in {self.config.directory}?"
                )
            time.sleep(poll_interval)

    def _wait_return_code(self, rc_before: Optional[SlotStamp]) -> Optional[int]:
        """Read the return code, giving it a short grace window to catch up with the output."""
        return_code = self.transport.return_code
        grace_end = time.monotonic() + self.config.grace_ms / 1000
        while True:
            if _changed(self.transport.probe(return_code), rc_before):
                return parse_return_code(self.transport.read(return_code.published))
            if time.monotonic() >= grace_end:
                logger.debug("Return code did not arrive within the grace window")
                return None
            time.sleep(self.config.grace_poll_ms / 1000)


def _print_reply(reply: Reply):
    sys.stdout.write(reply.output)
    if reply.has_return_code:
        if reply.output and not reply.output.endswith("\n"):
            sys.stdout.write("\n")
        sys.stdout.write(f"[RC] {reply.return_code}\n")
    sys.stdout.flush()


def repl(client: MailboxClient, timeout: Optional[float] = None, stdin=None) -> int:
    """
    Interactive loop: each line is sent as a command.

    'exit' quits locally, 'quit-guest' stops the guest and quits.

    Returns:
        int: Last observed return code, 0 when none was seen
    """
    stdin = stdin or sys.stdin
    last_rc = 0
    print(f"mbx-host REPL. Shared folder: {client.config.directory}")
    print("Type commands. Use 'exit' to quit, 'quit-guest' to stop the guest and quit.")

    while True:
        sys.stdout.write("dos> ")
        sys.stdout.flush()
        line = stdin.readline()
        if not line:
            break
        line = line.rstrip("\r\n")

        if line == "exit":
            break
        if line == "quit-guest":
            reply = client.submit("EXIT", timeout)
            sys.stdout.write(reply.output)
            break
        if not line.strip():
            continue

        reply = client.submit(line, timeout)
        _print_reply(reply)
        if reply.has_return_code:
            last_rc = reply.return_code

    return last_rc


def main(argv=None):
    """Main entry point for the host client."""
    parser = argparse.ArgumentParser(prog="mbx-host", description="Send commands to a guest through a shared-folder mailbox")
    parser.add_argument("directory", help="Shared mailbox directory")
    parser.add_argument("--cmd", help="Send one command and exit with its return code")
    parser.add_argument("--timeout", type=int, help="Milliseconds to wait for output (default: 5000)")
    args = parser.parse_args(argv)

    try:
        config = MailboxConfig.from_env(args.directory, timeout_ms=args.timeout)
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(2)

    if not config.directory.is_dir():
        print(f"Shared folder does not exist: {config.directory}", file=sys.stderr)
        sys.exit(2)

    client = MailboxClient(config)
    try:
        if args.cmd is not None:
            reply = client.submit(args.cmd)
            _print_reply(reply)
            sys.exit(reply.return_code if reply.has_return_code else 0)
        sys.exit(repl(client))
    except MailboxError as e:
        logger.error(f"mbx-host error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
