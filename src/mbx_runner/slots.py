"""
Slot transport for the shared-folder mailbox.

Every logical channel (command, output, return code, status, log) is a slot
backed by a staging filename and a published filename. Producers only ever
write the staging name and then atomically replace the published name, so a
reader sees either the old file or the new one, never a partial write.

Mailbox layout:
mailbox/
├── CMD.NEW   host staging
├── CMD.TXT   published command
├── CMD.RUN   command claimed by the guest
├── OUT.NEW / OUT.TXT
├── RC.NEW  / RC.TXT
├── STA.NEW / STA.TXT
└── LOG.TXT   append-only
"""

import enum
import os
from pathlib import Path
from typing import NamedTuple, Optional, Union

from loguru import logger

from .config import MailboxConfig
from .errors import TransportError


class SlotState(str, enum.Enum):
    """State of a slot as seen from the filesystem."""

    absent = "absent"        # Nothing published
    published = "published"  # Producer finished, waiting for a consumer
    claimed = "claimed"      # Renamed to the owned name by the guest


class SlotStamp(NamedTuple):
    """Snapshot of a published file used to detect replacement."""

    mtime_ns: int
    size: int
    inode: int


class Slot:
    """A logical channel realized as a staging/published filename pair."""

    def __init__(self, name: str, directory: Path, published: str,
                 staging: Optional[str] = None, owned: Optional[str] = None):
        self.name = name
        self.published = directory / published
        self.staging = directory / staging if staging else None
        self.owned = directory / owned if owned else None

    def __repr__(self) -> str:
        return f"Slot({self.name!r}, published={self.published.name!r})"


class SlotTransport:
    """
    Publish, claim and probe primitives over one mailbox directory.

    All protocol state transitions go through publish() and claim(); nothing
    in this package writes a published name directly.
    """

    def __init__(self, config: MailboxConfig):
        self.config = config
        names = config.slots
        directory = config.directory

        self.command = Slot("command", directory, names.command, names.command_staging, names.command_claimed)
        self.output = Slot("output", directory, names.output, names.output_staging)
        self.return_code = Slot("return-code", directory, names.rc, names.rc_staging)
        self.status = Slot("status", directory, names.status, names.status_staging)
        self.log = Slot("log", directory, names.log)

    @property
    def slots(self):
        return [self.command, self.output, self.return_code, self.status, self.log]

    def write_staging(self, slot: Slot, content: str):
        """Write content to the slot's staging name, replacing any leftover."""
        if slot.staging is None:
            raise TransportError(f"Slot {slot.name} has no staging name")
        self.remove(slot.staging)
        try:
            with open(slot.staging, "w", encoding="utf-8", newline="") as f:
                f.write(content)
        except OSError as e:
            raise TransportError.from_os_error("write", slot.staging, e) from e

    def promote(self, slot: Slot):
        """Replace the published name with the staging file."""
        self.remove(slot.published)
        try:
            os.rename(slot.staging, slot.published)
        except OSError as e:
            raise TransportError.from_os_error(f"rename {slot.staging.name} ->", slot.published, e) from e

    def publish(self, slot: Slot, content: str):
        """
        Stage content and atomically make it the slot's published file.

        The published name is briefly absent between the remove and the
        rename; single-slot coordination tolerates that window.

        Args:
            slot: Target slot
            content: Full text to publish
        """
        self.write_staging(slot, content)
        self.promote(slot)

    def probe(self, slot_or_path: Union[Slot, Path]) -> Optional[SlotStamp]:
        """Return the stamp of a published file, or None when it is absent."""
        path = slot_or_path.published if isinstance(slot_or_path, Slot) else slot_or_path
        try:
            st = os.stat(path)
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.debug(f"probe of {path.name} failed (errno={e.errno})")
            return None
        return SlotStamp(st.st_mtime_ns, st.st_size, st.st_ino)

    def exists(self, path: Path) -> bool:
        return self.probe(path) is not None

    def claim(self, slot: Slot) -> bool:
        """
        Take exclusive ownership of a published file by renaming it.

        Returns:
            bool: True if this caller now owns the file, False if there was
            nothing to claim or another claimant got there first
        """
        if slot.owned is None:
            raise TransportError(f"Slot {slot.name} cannot be claimed")
        if self.exists(slot.owned):
            return False
        try:
            os.rename(slot.published, slot.owned)
        except FileNotFoundError:
            return False
        except OSError as e:
            raise TransportError.from_os_error(f"claim {slot.published.name} ->", slot.owned, e) from e
        return True

    def state(self, slot: Slot) -> SlotState:
        """Classify a slot as claimed, published or absent."""
        if slot.owned is not None and self.exists(slot.owned):
            return SlotState.claimed
        if self.exists(slot.published):
            return SlotState.published
        return SlotState.absent

    def read(self, path: Path) -> str:
        """Read a slot file as text with universal newlines."""
        try:
            return path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            raise TransportError.from_os_error("read", path, e) from e

    def remove(self, path: Path) -> bool:
        """Delete a file; an absent file is not an error."""
        try:
            os.remove(path)
        except FileNotFoundError:
            return False
        except OSError as e:
            raise TransportError.from_os_error("remove", path, e) from e
        return True
