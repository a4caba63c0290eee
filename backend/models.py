"""Pydantic models for the mailbox inspector API."""

from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel


class StatusResponse(BaseModel):
    """Application status response."""
    app: str
    version: str
    timestamp: datetime
    directory: str
    server_status: Optional[str] = None
    command_state: str


class SlotInfo(BaseModel):
    """State of a single slot file."""
    slot: str
    path: str
    state: str
    modified_at: Optional[datetime] = None
    size: Optional[int] = None


class SlotsResponse(BaseModel):
    """Response for the slots endpoint."""
    slots: List[SlotInfo]
    status: str = "success"


class ResultResponse(BaseModel):
    """Last published output and return code."""
    output: Optional[str] = None
    return_code: Optional[int] = None
    output_modified_at: Optional[datetime] = None
    status: str = "success"


class LogEntry(BaseModel):
    """Single line of the log slot."""
    timestamp: Optional[str] = None
    message: str


class LogResponse(BaseModel):
    """Tail of the log slot."""
    entries: List[LogEntry]
    total: int
    status: str = "success"


class CommandRequest(BaseModel):
    """Command to submit through the mailbox."""
    command: str
    timeout_ms: Optional[int] = None


class ReplyResponse(BaseModel):
    """Reply to a submitted command."""
    output: str
    return_code: Optional[int] = None
    status: str = "success"
