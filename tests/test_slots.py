"""Tests for the slot transport primitives."""

import os
import threading

import pytest

from mbx_runner.errors import TransportError
from mbx_runner.slots import SlotState


def test_publish_leaves_only_the_published_file(transport):
    transport.publish(transport.output, "hello\n")

    assert transport.output.published.read_text() == "hello\n"
    assert not transport.output.staging.exists()


def test_publish_replaces_existing_content(transport):
    transport.publish(transport.output, "first\n")
    transport.publish(transport.output, "second, longer\n")

    assert transport.output.published.read_text() == "second, longer\n"


def test_repeated_status_publication_is_idempotent(transport, mailbox_dir):
    for _ in range(3):
        transport.publish(transport.status, "READY\n")

    status_files = sorted(p.name for p in mailbox_dir.iterdir() if p.name.startswith("STA"))
    assert status_files == ["STA.TXT"]
    assert transport.status.published.read_text() == "READY\n"


def test_publish_overwrites_stale_staging_file(transport):
    transport.output.staging.write_text("partial garbage")
    transport.publish(transport.output, "clean\n")

    assert transport.output.published.read_text() == "clean\n"


def test_probe_absent_returns_none(transport):
    assert transport.probe(transport.output) is None


def test_probe_detects_replacement(transport):
    transport.publish(transport.output, "a\n")
    before = transport.probe(transport.output)

    transport.publish(transport.output, "bb\n")
    after = transport.probe(transport.output)

    assert before is not None and after is not None
    assert after != before


def test_claim_moves_published_to_owned(transport):
    transport.publish(transport.command, "dir\n")

    assert transport.claim(transport.command) is True
    assert not transport.command.published.exists()
    assert transport.command.owned.read_text() == "dir\n"


def test_claim_of_absent_command_fails(transport):
    assert transport.claim(transport.command) is False


def test_claim_refuses_when_owned_name_is_taken(transport):
    transport.command.owned.write_text("older job\n")
    transport.publish(transport.command, "newer job\n")

    assert transport.claim(transport.command) is False
    assert transport.command.owned.read_text() == "older job\n"
    assert transport.command.published.exists()


def test_concurrent_claims_have_exactly_one_winner(transport):
    transport.publish(transport.command, "echo race\n")
    barrier = threading.Barrier(8)
    results = []
    lock = threading.Lock()

    def _claim():
        barrier.wait()
        won = transport.claim(transport.command)
        with lock:
            results.append(won)

    threads = [threading.Thread(target=_claim) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results.count(True) == 1
    assert transport.command.owned.read_text() == "echo race\n"


def test_command_state_machine(transport):
    assert transport.state(transport.command) is SlotState.absent

    transport.publish(transport.command, "ver\n")
    assert transport.state(transport.command) is SlotState.published

    transport.claim(transport.command)
    assert transport.state(transport.command) is SlotState.claimed

    transport.remove(transport.command.owned)
    assert transport.state(transport.command) is SlotState.absent


def test_remove_absent_file_is_not_an_error(transport):
    assert transport.remove(transport.output.published) is False


def test_read_missing_file_raises_transport_error(transport):
    with pytest.raises(TransportError) as excinfo:
        transport.read(transport.output.published)
    assert excinfo.value.errno is not None


def test_log_slot_cannot_be_staged(transport):
    with pytest.raises(TransportError):
        transport.write_staging(transport.log, "nope")


def test_rename_failure_reports_os_error_code(transport, monkeypatch):
    def _fail(src, dst):
        raise PermissionError(13, "Permission denied")

    monkeypatch.setattr(os, "rename", _fail)
    with pytest.raises(TransportError) as excinfo:
        transport.publish(transport.output, "x\n")

    assert excinfo.value.errno == 13
    assert "errno=13" in str(excinfo.value)
