import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from datetime import timedelta

import pytest

from pingsense.probe.errors import ICMPErrors
from pingsense.probe.results import PingResult, aggregate
from pingsense.storage.database import PingSenseDB


def ms(value):
    return timedelta(milliseconds=value)


@pytest.fixture
def db(tmp_path):
    db = PingSenseDB(str(tmp_path / "test_db.db"))
    yield db
    db.close()


def mixed_session():
    results = [
        PingResult(ICMPErrors.Success, ms(10)),
        PingResult(ICMPErrors.Success, ms(20)),
        PingResult(ICMPErrors.Timeout, ms(1000)),
    ]
    return aggregate(results, ms(1000), ms(1040))


def lost_session():
    return aggregate([PingResult(ICMPErrors.Timeout, ms(1000))] * 2, ms(1000), ms(2000))


def test_insert_and_get_session(db):
    session_id = db.insert_session("example.test", "198.51.100.7", mixed_session(), timestamp=1000.0)

    sessions = db.get_sessions(limit=10)
    assert len(sessions) == 1
    session = sessions[0]
    assert session["id"] == session_id
    assert session["target"] == "example.test"
    assert session["address"] == "198.51.100.7"
    assert session["error"] == "Mixed"
    assert session["success"] == 0
    assert session["number_of_tests"] == 3
    assert session["number_of_replies"] == 2
    assert session["packet_loss_percent"] == 33
    assert session["avg_ms"] == pytest.approx(15.0)
    assert session["stddev_ms"] == pytest.approx(5.0)
    assert session["timeout_ms"] == pytest.approx(1000.0)


def test_probes_keep_their_order(db):
    session_id = db.insert_session("example.test", None, mixed_session())

    probes = db.get_probes(session_id)
    assert [probe["position"] for probe in probes] == [0, 1, 2]
    assert [probe["error"] for probe in probes] == ["Success", "Success", "Timeout"]
    assert probes[0]["runtime_ms"] == pytest.approx(10.0)


def test_filters(db):
    db.insert_session("a.test", None, mixed_session(), timestamp=100.0)
    db.insert_session("b.test", None, lost_session(), timestamp=200.0)
    db.insert_session("a.test", None, lost_session(), timestamp=300.0)

    assert [s["timestamp"] for s in db.get_sessions()] == [300.0, 200.0, 100.0]
    assert len(db.get_sessions(filters={"target": "a.test"})) == 2
    assert [s["target"] for s in db.get_sessions(filters={"error": "Timeout"})] == ["a.test", "b.test"]
    assert len(db.get_sessions(filters={"start_time": 150.0, "end_time": 250.0})) == 1
    assert len(db.get_sessions(limit=1)) == 1


def test_statistics(db):
    db.insert_session("a.test", None, mixed_session())
    db.insert_session("a.test", None, lost_session())
    db.insert_session("b.test", None, lost_session())

    stats = db.get_statistics()

    assert stats["total_sessions"] == 3
    assert stats["total_probes"] == 7
    assert stats["total_replies"] == 2
    assert stats["error_distribution"] == {"Timeout": 5, "Success": 2}

    targets = {row["target"]: row for row in stats["targets"]}
    assert targets["a.test"]["sessions"] == 2
    assert targets["a.test"]["avg_loss"] == pytest.approx((33 + 100) / 2)
    assert targets["a.test"]["avg_rtt_ms"] == pytest.approx(15.0)
    assert targets["b.test"]["avg_rtt_ms"] is None


def test_empty_statistics(db):
    stats = db.get_statistics()
    assert stats["total_sessions"] == 0
    assert stats["total_probes"] == 0
    assert stats["error_distribution"] == {}
    assert stats["targets"] == []
