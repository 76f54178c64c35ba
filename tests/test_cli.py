import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

import json

import pytest
from typer.testing import CliRunner

from helpers import REMOTE, echo_reply_for
from pingsense.cli import main
from pingsense.config import Settings
from pingsense.probe.errors import ResolutionError
from pingsense.probe.fake import FakeTransport
from pingsense.probe.pinger import Pinger
from pingsense.storage.database import PingSenseDB

runner = CliRunner()


@pytest.fixture
def settings(tmp_path, monkeypatch):
    settings = Settings(
        repetitions=2,
        timeout=0.2,
        db_path=str(tmp_path / "sessions.db"),
        model_path=str(tmp_path / "model.pkl"),
    )
    monkeypatch.setattr(main, "settings", settings)
    return settings


def fake_pinger(monkeypatch, settings, script):
    def resolver(hostname):
        if hostname.endswith(".test"):
            return REMOTE
        raise ResolutionError(hostname, "Name or service not known")

    def factory(address, timeout, ttl):
        return FakeTransport(address, script)

    monkeypatch.setattr(main, "build_pinger",
                        lambda: Pinger(settings, resolver=resolver, transport_factory=factory))


def stored_sessions(settings):
    db = PingSenseDB(settings.db_path)
    try:
        return db.get_sessions()
    finally:
        db.close()


def test_ping_success_is_saved(settings, monkeypatch):
    fake_pinger(monkeypatch, settings, [echo_reply_for] * 2)

    result = runner.invoke(main.app, ["ping", REMOTE, "-v"])

    assert result.exit_code == 0, result.output
    assert "Success" in result.output
    sessions = stored_sessions(settings)
    assert len(sessions) == 1
    assert sessions[0]["address"] == REMOTE
    assert sessions[0]["number_of_replies"] == 2


def test_ping_with_loss_exits_1(settings, monkeypatch):
    fake_pinger(monkeypatch, settings, [echo_reply_for])

    result = runner.invoke(main.app, ["ping", REMOTE, "--no-save"])

    assert result.exit_code == 1
    assert stored_sessions(settings) == []


def test_ping_unknown_host(settings, monkeypatch):
    fake_pinger(monkeypatch, settings, [])

    result = runner.invoke(main.app, ["ping", "no-such-host.invalid"])

    assert result.exit_code == 2
    assert "Could not resolve" in result.output
    assert stored_sessions(settings) == []


def test_ping_invalid_count(settings, monkeypatch):
    fake_pinger(monkeypatch, settings, [])
    result = runner.invoke(main.app, ["ping", REMOTE, "-c", "0"])
    assert result.exit_code == 2


def test_multi_reports_dns_failures(settings, monkeypatch):
    fake_pinger(monkeypatch, settings, [echo_reply_for] * 2)

    result = runner.invoke(main.app, ["multi", REMOTE, "bad.invalid"])

    assert result.exit_code == 1
    assert "DNSError" in result.output
    assert [s["target"] for s in stored_sessions(settings)] == [REMOTE]


def test_multi_stores_resolved_address(settings, monkeypatch):
    fake_pinger(monkeypatch, settings, [echo_reply_for] * 2)

    result = runner.invoke(main.app, ["multi", "example.test"])

    assert result.exit_code == 0, result.output
    sessions = stored_sessions(settings)
    assert [(s["target"], s["address"]) for s in sessions] == [("example.test", REMOTE)]


def test_history_and_stats(settings, monkeypatch):
    result = runner.invoke(main.app, ["history"])
    assert result.exit_code == 0
    assert "No sessions found" in result.output

    fake_pinger(monkeypatch, settings, [echo_reply_for] * 2)
    runner.invoke(main.app, ["ping", REMOTE])

    result = runner.invoke(main.app, ["history", "--target", REMOTE])
    assert result.exit_code == 0
    assert "Ping History" in result.output

    result = runner.invoke(main.app, ["stats"])
    assert result.exit_code == 0
    assert "Probe Outcomes" in result.output


def test_db_option(settings, monkeypatch, tmp_path):
    other = tmp_path / "other.db"
    fake_pinger(monkeypatch, settings, [echo_reply_for] * 2)

    result = runner.invoke(main.app, ["--db", str(other), "ping", REMOTE])

    assert result.exit_code == 0
    assert other.exists()


def test_export_json(settings, monkeypatch, tmp_path):
    fake_pinger(monkeypatch, settings, [echo_reply_for] * 2)
    runner.invoke(main.app, ["ping", REMOTE])
    output = tmp_path / "sessions.json"

    result = runner.invoke(main.app, ["export", "json", str(output)])

    assert result.exit_code == 0
    sessions = json.loads(output.read_text())
    assert sessions[0]["target"] == REMOTE
    assert [probe["error"] for probe in sessions[0]["probes"]] == ["Success", "Success"]


def test_export_unknown_format(settings, monkeypatch, tmp_path):
    fake_pinger(monkeypatch, settings, [echo_reply_for] * 2)
    runner.invoke(main.app, ["ping", REMOTE])
    result = runner.invoke(main.app, ["export", "xml", str(tmp_path / "out.xml")])
    assert result.exit_code == 2


def test_decode_echo_request(settings):
    result = runner.invoke(main.app, ["decode", "0800f7ff00000000"])

    assert result.exit_code == 0
    assert "Echo Request" in result.output
    assert "valid" in result.output


def test_decode_rejects_garbage(settings):
    assert runner.invoke(main.app, ["decode", "zz"]).exit_code == 2
    assert runner.invoke(main.app, ["decode", "0d00"]).exit_code == 1


def test_train_needs_baseline(settings):
    result = runner.invoke(main.app, ["train"])
    assert result.exit_code == 1
    assert "Not enough data" in result.output


def test_detect_reports_total_loss(settings, monkeypatch):
    fake_pinger(monkeypatch, settings, [])
    runner.invoke(main.app, ["ping", REMOTE])

    result = runner.invoke(main.app, ["detect"])

    assert result.exit_code == 0
    assert "TOTAL_LOSS" in result.output
