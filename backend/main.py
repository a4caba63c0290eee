"""
FastAPI backend for inspecting a mailbox directory
"""

from datetime import datetime

from fastapi import FastAPI, Depends, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from mbx_runner import __version__
from mbx_runner.client import MailboxClient
from mbx_runner.config import MailboxConfig
from mbx_runner.errors import MailboxTimeoutError, TransportError
from mbx_runner.slots import SlotTransport

from .models import (
    CommandRequest, LogResponse, ReplyResponse, ResultResponse,
    SlotsResponse, StatusResponse
)
from .utils import (
    get_last_result,
    get_server_status,
    get_slot_states,
    read_log_tail
)


def get_config() -> MailboxConfig:
    """Get the mailbox configuration from the environment."""
    try:
        config = MailboxConfig.from_env()
    except ValueError as e:
        logger.error(f"Failed to load mailbox configuration: {e}")
        raise HTTPException(status_code=500, detail="Mailbox directory not configured")
    if not config.directory.is_dir():
        raise HTTPException(status_code=500, detail=f"Mailbox directory does not exist: {config.directory}")
    return config


app = FastAPI(
    title="MBX Runner Inspector API",
    description="Inspect slots, results and logs of a shared-folder mailbox",
    version=__version__,
)

# Add CORS middleware for development
app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=r"http://(localhost|127\.0\.0\.1):\d+",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "timestamp": datetime.now()}


@app.get("/api/status")
async def get_status(config: MailboxConfig = Depends(get_config)) -> StatusResponse:
    """Get mailbox status."""
    transport = SlotTransport(config)
    return StatusResponse(
        app="MBX Runner",
        version=__version__,
        timestamp=datetime.now(),
        directory=str(config.directory),
        server_status=get_server_status(config),
        command_state=transport.state(transport.command).value,
    )


@app.get(
    "/api/v1/slots",
    response_model=SlotsResponse,
    tags=["mailbox"],
    summary="Get slot states",
    description="Report whether each slot file is absent, published or claimed"
)
async def get_slots_endpoint(config: MailboxConfig = Depends(get_config)) -> SlotsResponse:
    """Get the state of every slot."""
    return SlotsResponse(slots=get_slot_states(config))


@app.get(
    "/api/v1/result",
    response_model=ResultResponse,
    tags=["mailbox"],
    summary="Get the last published result",
)
async def get_result_endpoint(config: MailboxConfig = Depends(get_config)) -> ResultResponse:
    """Get the last published output and return code."""
    try:
        return get_last_result(config)
    except TransportError as e:
        logger.error(f"Failed to read result: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.get(
    "/api/v1/log",
    response_model=LogResponse,
    tags=["mailbox"],
    summary="Get the log tail",
    description="Get the most recent entries of the server's log slot"
)
async def get_log_endpoint(
    limit: int = 50,
    config: MailboxConfig = Depends(get_config),
) -> LogResponse:
    """Get the last entries of the log slot."""
    entries = read_log_tail(config, limit=limit)
    return LogResponse(entries=entries, total=len(entries))


@app.post(
    "/api/v1/commands",
    response_model=ReplyResponse,
    tags=["mailbox"],
    summary="Submit a command",
    description="Publish a command and wait for the guest's reply"
)
def submit_command_endpoint(
    request: CommandRequest,
    config: MailboxConfig = Depends(get_config),
) -> ReplyResponse:
    """Submit a command through the mailbox (blocks in the threadpool)."""
    if not request.command.strip():
        raise HTTPException(status_code=422, detail="Command is empty")

    timeout = request.timeout_ms / 1000 if request.timeout_ms else None
    try:
        reply = MailboxClient(config).submit(request.command, timeout=timeout)
    except MailboxTimeoutError as e:
        logger.warning(f"Command timed out: {e}")
        raise HTTPException(status_code=504, detail=str(e))
    except TransportError as e:
        logger.error(f"Failed to submit command: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    return ReplyResponse(output=reply.output, return_code=reply.return_code)
