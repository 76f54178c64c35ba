import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest

from pingsense.config import Settings


def test_defaults():
    settings = Settings.from_env(environ={})
    assert settings.repetitions == 3
    assert settings.timeout == 3.0
    assert settings.test_data_length == 30


def test_environment_overrides():
    settings = Settings.from_env(environ={
        "PINGSENSE_REPETITIONS": "5",
        "PINGSENSE_TIMEOUT": "0.5",
        "PINGSENSE_DB_PATH": "/tmp/ping.db",
        "OTHER_TTL": "1",
    })
    assert settings.repetitions == 5
    assert settings.timeout == 0.5
    assert settings.db_path == "/tmp/ping.db"
    assert settings.ttl == 64


def test_invalid_environment_value():
    with pytest.raises(ValueError, match="PINGSENSE_TTL"):
        Settings.from_env(environ={"PINGSENSE_TTL": "many"})
