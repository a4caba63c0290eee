#!/usr/bin/env python3
"""
Mailbox server - guest side of the shared-folder protocol.

Runs inside the isolated environment, polling the mailbox directory for a
published command, claiming it, executing it through the configured
interpreter and publishing the output and return code.
"""

import argparse
import signal
import sys
import threading
import time
import uuid
from typing import Callable, Optional

from loguru import logger

from .config import MailboxConfig, WrapperDialect
from .errors import ExecutionError, MailboxError, ProtocolError, TransportError
from .runner import (
    ExecutionResult,
    Interpreter,
    ShellInterpreter,
    build_wrapper,
    first_directive,
    is_exit_directive,
)
from .slots import SlotTransport

BYE_MESSAGE = "MBXSRV BYE"
LOG_FORMAT = "[{time:YYYY-MM-DD HH:mm:ss}] {message}"


class ServerStatus:
    """Tokens written to the status slot."""

    READY = "READY"
    RUNNING = "RUNNING"
    BYE = "BYE"


class MailboxServer:
    """Single-threaded poll loop that serves one command at a time."""

    def __init__(self, config: MailboxConfig,
                 interpreter: Optional[Interpreter] = None,
                 abort_check: Optional[Callable[[], bool]] = None):
        """
        Initialize the server.

        Args:
            config: Mailbox configuration
            interpreter: Capability used to run wrapper scripts
                (defaults to a ShellInterpreter built from config)
            abort_check: Non-blocking callable; returning True stops the loop
        """
        self.config = config
        self.transport = SlotTransport(config)
        self.interpreter = interpreter or ShellInterpreter(config)
        self.abort_check = abort_check or (lambda: False)
        self.status = None
        self.stopped = False

        # Mirror this server's log lines into the log slot
        key = uuid.uuid4().hex
        self.log = logger.bind(mailbox=key)
        self._sink_id = logger.add(
            str(self.transport.log.published),
            format=LOG_FORMAT,
            filter=lambda record: record["extra"].get("mailbox") == key,
            level="DEBUG",
        )
        self._started = False

    def start(self):
        """Announce readiness and report a command left over from a crash."""
        self.log.info("MBXSRV starting")
        self._set_status(ServerStatus.READY)
        if self.transport.exists(self.transport.command.owned):
            self.log.warning(f"Found stale {self.transport.command.owned.name}; will process it")
        self._started = True

    def run(self):
        """Poll until an EXIT/QUIT directive or an abort request."""
        if not self._started:
            self.start()
        interval = self.config.idle_interval_ms / 1000
        self.log.info(f"🔄 Polling {self.config.directory} every {self.config.idle_interval_ms}ms")

        try:
            while True:
                try:
                    if not self.tick():
                        break
                except Exception as e:
                    self.log.error(f"Error in polling cycle: {e}")
                    self._discard_claimed()
                    self._set_status(ServerStatus.READY)
                time.sleep(interval)
        except KeyboardInterrupt:
            self.log.info("Interrupted; exiting")
            self._set_status(ServerStatus.BYE)
            self.stopped = True
        finally:
            self.log.info("MBXSRV stopped")

    def close(self):
        """Detach the log slot sink."""
        if self._sink_id is not None:
            logger.remove(self._sink_id)
            self._sink_id = None

    def tick(self) -> bool:
        """
        Run one polling cycle.

        Returns:
            bool: False once the server has reached the BYE state
        """
        if not self._started:
            self.start()

        if self.abort_check():
            self.log.info("Abort requested; exiting")
            self._set_status(ServerStatus.BYE)
            self.stopped = True
            return False

        command = self.transport.command
        if not self.transport.exists(command.owned) and self.transport.exists(command.published):
            if self._claim_command():
                self.log.info(f"Claimed {command.published.name} -> {command.owned.name}")

        if not self.transport.exists(command.owned):
            return True

        try:
            return self._process_claimed()
        except MailboxError as e:
            self.log.error(f"ERROR: job aborted: {e}")
            try:
                self._publish_error(str(e))
            except TransportError as publish_error:
                self.log.error(f"ERROR: failed to publish error output: {publish_error}")
            self._discard_claimed()
            self._set_status(ServerStatus.READY)
            return True

    def _claim_command(self) -> bool:
        """Claim the published command, retrying while the host's rename settles."""
        command = self.transport.command
        for _ in range(self.config.claim_attempts):
            if not self.transport.exists(command.published):
                return False
            try:
                if self.transport.claim(command):
                    return True
            except TransportError as e:
                self.log.debug(f"Claim attempt failed: {e}")
            time.sleep(self.config.claim_backoff_ms / 1000)
        self.log.warning(f"Could not claim {command.published.name} after {self.config.claim_attempts} attempts")
        return False

    def _process_claimed(self) -> bool:
        command = self.transport.command
        self._set_status(ServerStatus.RUNNING)

        content = self.transport.read(command.owned)
        directive = first_directive(content)

        if directive is None:
            self.log.error(f"ERROR: {command.owned.name} empty")
            self._publish_error("CMD file is empty")
            self._finish(ServerStatus.READY)
            return True

        if is_exit_directive(directive):
            self.log.info("Received EXIT/QUIT")
            nl = self.config.newline
            self.transport.publish(self.transport.output, BYE_MESSAGE + nl)
            self.transport.publish(self.transport.return_code, "0" + nl)
            self._finish(ServerStatus.BYE)
            self.stopped = True
            return False

        try:
            script = build_wrapper(content, self.config)
        except ProtocolError as e:
            self.log.error(f"ERROR: wrapper synthesis failed: {e}")
            self._publish_error(f"Failed to build {self.config.wrapper_name} ({e})")
            self._finish(ServerStatus.READY)
            return True

        payload_bytes = len(content.encode("utf-8"))
        self.log.info(f"Executing job (payload={payload_bytes} bytes)")

        # Clear previous results so the host never reads a stale reply
        self.transport.remove(self.transport.output.published)
        self.transport.remove(self.transport.return_code.published)
        self.transport.remove(self.transport.return_code.staging)

        try:
            result = self.interpreter.run(script, self.config.directory)
        except ExecutionError as e:
            self.log.error(f"ERROR: {e}")
            result = ExecutionResult(stdout=None, status=-1)
        self.log.info(f"interpreter status={result.status}")

        self._publish_results(result)
        self._finish(ServerStatus.READY)
        return True

    def _publish_results(self, result: ExecutionResult):
        """Publish output, then the return code captured by the wrapper."""
        nl = self.config.newline
        output = self.transport.output
        return_code = self.transport.return_code

        if result.stdout is None:
            self.log.error(f"ERROR: interpreter produced no output (status={result.status})")
            self.transport.write_staging(output, f"ERROR: {output.staging.name} missing (system rc={result.status}){nl}")
        else:
            self.transport.write_staging(output, result.stdout)

        try:
            self.transport.promote(output)
        except TransportError as e:
            self.log.error(f"ERROR: {e}")

        if self.transport.exists(return_code.staging):
            try:
                self.transport.promote(return_code)
            except TransportError as e:
                self.log.error(f"ERROR: {e}")
        else:
            fallback = result.status if result.status != 0 else 1
            self.log.warning(f"{return_code.staging.name} missing; publishing {fallback}")
            self.transport.publish(return_code, f"{fallback}{nl}")

    def _publish_error(self, what: str):
        """Publish a diagnostic output and force a non-zero return code."""
        nl = self.config.newline
        self.transport.publish(self.transport.output, f"ERROR: {what}{nl}")
        self.transport.publish(self.transport.return_code, f"1{nl}")

    def _finish(self, status: str):
        self._discard_claimed()
        self._set_status(status)

    def _discard_claimed(self):
        try:
            self.transport.remove(self.transport.command.owned)
        except TransportError as e:
            self.log.error(f"ERROR: {e}")

    def _set_status(self, status: str):
        try:
            self.transport.publish(self.transport.status, status + self.config.newline)
            self.status = status
        except TransportError as e:
            self.log.warning(f"WARN: failed to write {self.transport.status.published.name}: {e}")


def _install_stop_handlers() -> threading.Event:
    """Route SIGINT/SIGTERM to a flag the poll loop checks each tick."""
    stop = threading.Event()

    def _handler(signum, frame):
        stop.set()

    signal.signal(signal.SIGINT, _handler)
    if hasattr(signal, "SIGTERM"):
        signal.signal(signal.SIGTERM, _handler)
    return stop


def main(argv=None):
    """Main entry point for the mailbox server."""
    parser = argparse.ArgumentParser(prog="mbx-server", description="Serve commands from a shared-folder mailbox")
    parser.add_argument("directory", nargs="?", help="Mailbox directory (default: $MBX_DIR)")
    parser.add_argument("idle_ms", nargs="?", type=int, help="Idle poll interval in ms (10-2000)")
    parser.add_argument("--stderr", action="store_true", default=None, help="Capture stderr into the output slot")
    parser.add_argument("--dialect", choices=[d.value for d in WrapperDialect], help="Wrapper script dialect")
    parser.add_argument("--shell", help="Interpreter used to run the wrapper")
    parser.add_argument("--max-payload", type=int, help="Maximum command payload in bytes")
    args = parser.parse_args(argv)

    try:
        config = MailboxConfig.from_env(
            args.directory,
            idle_interval_ms=args.idle_ms,
            capture_stderr=args.stderr,
            dialect=args.dialect,
            shell=args.shell,
            max_payload=args.max_payload,
        )
        if not config.directory.is_dir():
            logger.error(f"Mailbox directory does not exist: {config.directory}")
            sys.exit(2)

        stop = _install_stop_handlers()
        server = MailboxServer(config, abort_check=stop.is_set)
        try:
            server.run()
        finally:
            server.close()
    except (MailboxError, ValueError) as e:
        logger.error(f"Server failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
