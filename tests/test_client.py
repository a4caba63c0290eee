"""Tests for the host-side mailbox client."""

import io
import time

import pytest

from mbx_runner import client as client_module
from mbx_runner.client import MailboxClient, Reply, main, parse_return_code, repl
from mbx_runner.errors import MailboxTimeoutError

from .fakes import start_fake_guest


@pytest.mark.parametrize("text, expected", [
    ("0\r\n", 0),
    ("  3 \n", 3),
    ("\r\n\t-2\r\n", -2),
    ("12 34\n", 12),
    ("", None),
    ("ECHO is off.\r\n", None),
])
def test_parse_return_code(text, expected):
    assert parse_return_code(text) == expected


def test_submit_times_out_without_a_guest(config, transport):
    client = MailboxClient(config)

    start = time.monotonic()
    with pytest.raises(MailboxTimeoutError) as excinfo:
        client.submit("dir", timeout=0.2, poll_interval=0.01)
    elapsed = time.monotonic() - start

    assert isinstance(excinfo.value, TimeoutError)
    assert 0.2 <= elapsed < 2.0
    assert transport.command.published.read_text() == "dir\n"
    assert not transport.command.staging.exists()


def test_submit_clears_leftover_host_staging(config, transport):
    transport.command.staging.write_text("half-written junk")
    client = MailboxClient(config)

    with pytest.raises(MailboxTimeoutError):
        client.submit("ver", timeout=0.05)

    assert transport.command.published.read_text() == "ver\n"
    assert not transport.command.staging.exists()


def test_submit_returns_output_and_return_code(config):
    guest = start_fake_guest(config, output="hello\n", rc="4\r\n")

    reply = MailboxClient(config).submit("echo hello")
    guest.join(2)

    assert reply == Reply(output="hello\n", return_code=4)
    assert guest.seen["command"] == "echo hello\n"


def test_submit_detects_change_over_existing_output(config, transport):
    transport.publish(transport.output, "old output\n")
    transport.publish(transport.return_code, "9\n")
    guest = start_fake_guest(config, output="new output\n", rc="0\n")

    reply = MailboxClient(config).submit("ver")
    guest.join(2)

    assert reply.output == "new output\n"
    assert reply.return_code == 0


def test_return_code_within_grace_window_is_picked_up(config):
    guest = start_fake_guest(config, output="slow rc\n", rc="2\n", rc_delay=0.05)

    reply = MailboxClient(config).submit("dir")
    guest.join(2)

    assert reply.output == "slow rc\n"
    assert reply.return_code == 2


def test_missing_return_code_is_reported_as_unknown(config):
    guest = start_fake_guest(config, output="no rc\n", publish_rc=False)

    start = time.monotonic()
    reply = MailboxClient(config).submit("dir")
    elapsed = time.monotonic() - start
    guest.join(2)

    assert reply.output == "no rc\n"
    assert reply.return_code is None
    assert not reply.has_return_code
    assert elapsed >= config.grace_ms / 1000


def test_stale_return_code_is_not_reported(config, transport):
    transport.publish(transport.return_code, "9\n")
    guest = start_fake_guest(config, output="fresh\n", publish_rc=False)

    reply = MailboxClient(config).submit("dir")
    guest.join(2)

    assert reply.return_code is None


class _ScriptedClient:
    def __init__(self, config, replies):
        self.config = config
        self.replies = list(replies)
        self.sent = []

    def submit(self, command, timeout=None):
        self.sent.append(command)
        return self.replies.pop(0)


def test_repl_sends_lines_and_returns_last_code(config, capsys):
    scripted = _ScriptedClient(config, [Reply(output="a\n", return_code=0), Reply(output="b\n", return_code=3)])

    rc = repl(scripted, stdin=io.StringIO("echo a\n\n   \necho b\nexit\necho never\n"))

    assert rc == 3
    assert scripted.sent == ["echo a", "echo b"]
    out = capsys.readouterr().out
    assert "[RC] 3" in out


def test_repl_quit_guest_sends_exit(config, capsys):
    scripted = _ScriptedClient(config, [Reply(output="MBXSRV BYE\n", return_code=0)])

    rc = repl(scripted, stdin=io.StringIO("quit-guest\necho never\n"))

    assert rc == 0
    assert scripted.sent == ["EXIT"]
    assert "MBXSRV BYE" in capsys.readouterr().out


def test_main_rejects_missing_directory(tmp_path, capsys):
    with pytest.raises(SystemExit) as excinfo:
        main([str(tmp_path / "nope"), "--cmd", "dir"])

    assert excinfo.value.code == 2
    assert "does not exist" in capsys.readouterr().err


def test_main_one_shot_exits_with_return_code(config, monkeypatch, capsys):
    monkeypatch.setattr(MailboxClient, "submit", lambda self, command: Reply(output="x\n", return_code=5))

    with pytest.raises(SystemExit) as excinfo:
        main([str(config.directory), "--cmd", "dir"])

    assert excinfo.value.code == 5
    assert capsys.readouterr().out == "x\n[RC] 5\n"


def test_main_one_shot_without_return_code_exits_zero(config, monkeypatch):
    monkeypatch.setattr(MailboxClient, "submit", lambda self, command: Reply(output="x\n"))

    with pytest.raises(SystemExit) as excinfo:
        main([str(config.directory), "--cmd", "dir"])

    assert excinfo.value.code == 0


def test_main_reports_timeout_as_failure(config, monkeypatch):
    def _timeout(self, command):
        raise MailboxTimeoutError("Timeout waiting for OUT.TXT")

    monkeypatch.setattr(MailboxClient, "submit", _timeout)

    with pytest.raises(SystemExit) as excinfo:
        main([str(config.directory), "--cmd", "dir", "--timeout", "10"])

    assert excinfo.value.code == 1


def test_main_passes_timeout_to_config(config, monkeypatch):
    seen = {}

    def _submit(self, command):
        seen["timeout_ms"] = self.config.timeout_ms
        return Reply(output="")

    monkeypatch.setattr(client_module.MailboxClient, "submit", _submit)

    with pytest.raises(SystemExit):
        main([str(config.directory), "--cmd", "dir", "--timeout", "8000"])

    assert seen["timeout_ms"] == 8000
