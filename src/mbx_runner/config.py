"""
Mailbox configuration.

A single MailboxConfig value carries everything the client and the server
need to agree on: the shared directory, slot filenames, timing, the payload
bound and the interpreter settings. It is built once at the entry point and
passed explicitly from there.
"""

import enum
import os
from pathlib import Path
from typing import Optional, Union

from pydantic import BaseModel, Field, field_validator

MIN_IDLE_MS = 10
MAX_IDLE_MS = 2000


class WrapperDialect(str, enum.Enum):
    """Flavour of the synthesized wrapper script."""

    posix = "posix"  # sh, exit status in $?
    batch = "batch"  # COMMAND.COM / cmd.exe, exit status in %errorlevel%


class SlotNames(BaseModel):
    """Filenames backing each slot inside the mailbox directory."""

    command_staging: str = "CMD.NEW"
    command: str = "CMD.TXT"
    command_claimed: str = "CMD.RUN"
    output_staging: str = "OUT.NEW"
    output: str = "OUT.TXT"
    rc_staging: str = "RC.NEW"
    rc: str = "RC.TXT"
    status_staging: str = "STA.NEW"
    status: str = "STA.TXT"
    log: str = "LOG.TXT"
    wrapper: Optional[str] = None


class MailboxConfig(BaseModel):
    """Configuration shared by the host client and the guest server."""

    directory: Path
    slots: SlotNames = Field(default_factory=SlotNames)

    # Guest side
    idle_interval_ms: int = 100
    max_payload: int = 32 * 1024
    claim_attempts: int = 20
    claim_backoff_ms: int = 50
    dialect: WrapperDialect = WrapperDialect.posix
    shell: Optional[str] = None
    capture_stderr: bool = False
    execution_timeout: Optional[float] = None
    max_output_size: int = 10 * 1024 * 1024

    # Host side
    timeout_ms: int = 5000
    poll_interval_ms: int = 50
    grace_ms: int = 200
    grace_poll_ms: int = 20

    @field_validator("idle_interval_ms")
    @classmethod
    def clamp_idle_interval(cls, value: int) -> int:
        return max(MIN_IDLE_MS, min(MAX_IDLE_MS, value))

    @field_validator("max_payload", "claim_attempts", "timeout_ms", "poll_interval_ms")
    @classmethod
    def require_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be positive")
        return value

    @property
    def newline(self) -> str:
        """Line ending used for every text file written to the mailbox."""
        return "\r\n" if self.dialect == WrapperDialect.batch else "\n"

    @property
    def wrapper_name(self) -> str:
        if self.slots.wrapper:
            return self.slots.wrapper
        return "MBXJOB.BAT" if self.dialect == WrapperDialect.batch else "MBXJOB.SH"

    def path(self, name: str) -> Path:
        """Absolute path of a slot file inside the mailbox directory."""
        return self.directory / name

    @classmethod
    def from_env(cls, directory: Optional[Union[str, Path]] = None, **overrides) -> "MailboxConfig":
        """
        Build a configuration from MBX_* environment variables.

        Only entry points call this; library code receives the resulting
        value explicitly.

        Args:
            directory: Mailbox directory (falls back to MBX_DIR)
            **overrides: Field values that win over the environment

        Returns:
            MailboxConfig: The assembled configuration
        """
        directory = directory or os.getenv("MBX_DIR")
        if not directory:
            raise ValueError("Mailbox directory not given and MBX_DIR is not set")

        values = {"directory": Path(directory)}
        if os.getenv("MBX_STDERR", "").startswith("1"):
            values["capture_stderr"] = True
        if os.getenv("MBX_IDLE_MS"):
            values["idle_interval_ms"] = int(os.environ["MBX_IDLE_MS"])
        if os.getenv("MBX_TIMEOUT_MS"):
            values["timeout_ms"] = int(os.environ["MBX_TIMEOUT_MS"])
        if os.getenv("MBX_DIALECT"):
            values["dialect"] = WrapperDialect(os.environ["MBX_DIALECT"].lower())
        if os.getenv("MBX_SHELL"):
            values["shell"] = os.environ["MBX_SHELL"]
        elif values.get("dialect") == WrapperDialect.batch and os.getenv("COMSPEC"):
            values["shell"] = os.environ["COMSPEC"]

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
