"""Wrapper synthesis and interpreter invocation for claimed commands."""

import shlex
import subprocess
import time
from pathlib import Path
from typing import Optional, Protocol

from loguru import logger
from pydantic import BaseModel

from .config import MailboxConfig, WrapperDialect
from .errors import ExecutionError, PayloadTooLargeError, TransportError

EXIT_DIRECTIVES = ("EXIT", "QUIT")


class ExecutionResult(BaseModel):
    """What an interpreter reports back for one wrapper run."""

    stdout: Optional[str] = None
    status: int = 0
    duration: float = 0.0


class Interpreter(Protocol):
    """Capability that runs a script body and captures its standard output."""

    def run(self, script: str, workdir: Path) -> ExecutionResult:
        ...


def first_directive(content: str) -> Optional[str]:
    """Return the first non-blank line of a command, trimmed, or None."""
    for line in content.splitlines():
        line = line.strip()
        if line:
            return line
    return None


def is_exit_directive(directive: str) -> bool:
    return directive.upper() in EXIT_DIRECTIVES


def _batch_quote(path: str) -> str:
    return f"\"{path}\"" if " " in path else path


def build_wrapper(payload: str, config: MailboxConfig) -> str:
    """
    Wrap a command payload in a script that records its exit status.

    The trailing step writes the status of the payload's last command into
    the return-code staging file by absolute path, so payloads that change
    directory still report their status to the mailbox.

    Args:
        payload: Full claimed command content
        config: Mailbox configuration (dialect, size bound, slot names)

    Returns:
        str: Script text ready to hand to an interpreter

    Raises:
        PayloadTooLargeError: If the payload exceeds config.max_payload bytes
    """
    size = len(payload.encode("utf-8"))
    if size > config.max_payload:
        raise PayloadTooLargeError(size, config.max_payload)

    nl = config.newline
    body = nl.join(payload.splitlines())
    rc_path = str(config.path(config.slots.rc_staging).absolute())

    if config.dialect == WrapperDialect.batch:
        lines = [
            "@echo off",
            "rem MBXSRV job wrapper",
            body,
            "",
            "rem Capture ERRORLEVEL of last command",
            f"echo %errorlevel% > {_batch_quote(rc_path)}",
        ]
    else:
        lines = [
            "# MBXSRV job wrapper",
            body,
            "",
            "# Capture exit status of last command",
            f"echo $? > {shlex.quote(rc_path)}",
        ]
    return nl.join(lines) + nl


class ShellInterpreter:
    """Runs wrapper scripts through a system shell."""

    def __init__(self, config: MailboxConfig):
        """
        Initialize the shell interpreter.

        Args:
            config: Mailbox configuration; uses dialect, shell,
                capture_stderr, execution_timeout and max_output_size
        """
        self.config = config
        self.timeout = config.execution_timeout
        self.max_output_size = config.max_output_size
        if config.shell:
            self.shell = config.shell
        elif config.dialect == WrapperDialect.batch:
            self.shell = "COMMAND.COM"
        else:
            self.shell = "sh"

    def command_line(self, script_name: str) -> list:
        if self.config.dialect == WrapperDialect.batch:
            return [self.shell, "/C", script_name]
        return [self.shell, script_name]

    def run(self, script: str, workdir: Path) -> ExecutionResult:
        """
        Write the wrapper into the mailbox directory and execute it.

        Args:
            script: Wrapper script text
            workdir: Mailbox directory, used as the working directory

        Returns:
            ExecutionResult: Captured stdout and the invocation status

        Raises:
            ExecutionError: If the shell cannot be started
        """
        script_path = Path(workdir) / self.config.wrapper_name
        try:
            with open(script_path, "w", encoding="utf-8", newline="") as f:
                f.write(script)
        except OSError as e:
            raise TransportError.from_os_error("write", script_path, e) from e

        stderr = subprocess.STDOUT if self.config.capture_stderr else None
        start_time = time.time()

        try:
            process = subprocess.Popen(
                self.command_line(script_path.name),
                cwd=workdir,
                stdout=subprocess.PIPE,
                stderr=stderr,
                text=True,
                encoding="utf-8",
                errors="replace",
            )
        except OSError as e:
            raise ExecutionError(f"Failed to start {self.shell}: {e}") from e

        try:
            stdout, _ = process.communicate(timeout=self.timeout)
            status = process.returncode
        except subprocess.TimeoutExpired:
            logger.warning(f"Job timed out after {self.timeout}s")
            process.kill()
            stdout, _ = process.communicate()
            status = -1
            stdout = (stdout or "") + f"{self.config.newline}[JOB TERMINATED - TIMEOUT AFTER {self.timeout}s]{self.config.newline}"

        if stdout is not None and len(stdout) > self.max_output_size:
            stdout = stdout[:self.max_output_size] + f"{self.config.newline}[OUTPUT TRUNCATED - TOO LARGE]{self.config.newline}"

        duration = time.time() - start_time
        logger.debug(f"{self.shell} finished with status {status} in {duration:.2f}s")
        return ExecutionResult(stdout=stdout, status=status, duration=duration)
