"""Shared fixtures for the mailbox test suite."""

from pathlib import Path

import pytest

from mbx_runner.app import MailboxServer
from mbx_runner.config import MailboxConfig
from mbx_runner.slots import SlotTransport

from .fakes import FakeInterpreter


@pytest.fixture()
def mailbox_dir(tmp_path: Path) -> Path:
    """Return an empty shared mailbox directory."""
    path = tmp_path / "shared"
    path.mkdir()
    return path


@pytest.fixture()
def config(mailbox_dir: Path) -> MailboxConfig:
    """Configuration with short intervals suitable for tests."""
    return MailboxConfig(
        directory=mailbox_dir,
        idle_interval_ms=10,
        claim_backoff_ms=5,
        poll_interval_ms=10,
        timeout_ms=2000,
    )


@pytest.fixture()
def transport(config: MailboxConfig) -> SlotTransport:
    return SlotTransport(config)


@pytest.fixture()
def make_server(config: MailboxConfig):
    """Factory for servers whose log sinks are detached after the test."""
    servers = []

    def _make(interpreter=None, cfg=None, **kwargs):
        server = MailboxServer(cfg or config, interpreter=interpreter or FakeInterpreter(), **kwargs)
        servers.append(server)
        return server

    yield _make
    for server in servers:
        server.close()
