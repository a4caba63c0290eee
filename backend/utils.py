"""Utility functions for the mailbox inspector backend."""

import re
from collections import deque
from datetime import datetime
from typing import List, Optional
from loguru import logger

from mbx_runner.client import parse_return_code
from mbx_runner.config import MailboxConfig
from mbx_runner.errors import TransportError
from mbx_runner.slots import Slot, SlotState, SlotTransport

from .models import LogEntry, ResultResponse, SlotInfo

_LOG_LINE = re.compile(r"^\[(?P<timestamp>[^\]]+)\]\s?(?P<message>.*)$")


def _modified_at(mtime_ns: int) -> datetime:
    return datetime.fromtimestamp(mtime_ns / 1e9)


def _slot_info(transport: SlotTransport, slot: Slot) -> SlotInfo:
    if slot.owned is not None:
        state = transport.state(slot)
    else:
        state = SlotState.published if transport.exists(slot.published) else SlotState.absent

    path = slot.owned if state == SlotState.claimed else slot.published
    stamp = transport.probe(path)
    return SlotInfo(
        slot=slot.name,
        path=str(path),
        state=state.value,
        modified_at=_modified_at(stamp.mtime_ns) if stamp else None,
        size=stamp.size if stamp else None,
    )


def get_slot_states(config: MailboxConfig) -> List[SlotInfo]:
    """Describe every slot of a mailbox directory."""
    transport = SlotTransport(config)
    return [_slot_info(transport, slot) for slot in transport.slots]


def get_server_status(config: MailboxConfig) -> Optional[str]:
    """Read the token in the status slot, or None when there is none."""
    transport = SlotTransport(config)
    if not transport.exists(transport.status.published):
        return None
    try:
        return transport.read(transport.status.published).strip() or None
    except TransportError as e:
        logger.warning(f"Failed to read status slot: {e}")
        return None


def get_last_result(config: MailboxConfig) -> ResultResponse:
    """Read the currently published output and return code."""
    transport = SlotTransport(config)
    result = ResultResponse()

    stamp = transport.probe(transport.output)
    if stamp is not None:
        result.output = transport.read(transport.output.published)
        result.output_modified_at = _modified_at(stamp.mtime_ns)

    if transport.exists(transport.return_code.published):
        result.return_code = parse_return_code(transport.read(transport.return_code.published))

    return result


def parse_log_line(line: str) -> LogEntry:
    """Split a '[timestamp] message' log line."""
    match = _LOG_LINE.match(line)
    if not match:
        return LogEntry(message=line)
    return LogEntry(timestamp=match.group("timestamp"), message=match.group("message"))


def read_log_tail(config: MailboxConfig, limit: int = 50) -> List[LogEntry]:
    """Return the last `limit` entries of the log slot, oldest first."""
    log_path = config.path(config.slots.log)
    if not log_path.exists():
        return []

    try:
        with open(log_path, "r", encoding="utf-8", errors="replace") as f:
            lines = deque((line.rstrip("\r\n") for line in f if line.strip()), maxlen=max(limit, 0))
    except OSError as e:
        logger.error(f"Error reading log slot {log_path}: {e}")
        return []

    return [parse_log_line(line) for line in lines]
