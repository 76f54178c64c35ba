import os
from dataclasses import dataclass, fields


@dataclass
class Settings:
    repetitions: int = 3
    timeout: float = 3.0            # seconds per probe
    ttl: int = 64
    test_data_length: int = 30      # random payload size when no test data is given
    receive_buffer: int = 65536
    workers: int = 4                # concurrent sessions for multi-target pings

    db_path: str = "pingsense.db"
    model_path: str = "models/latency_model.pkl"

    log_level: str = "WARNING"

    @classmethod
    def from_env(cls, prefix="PINGSENSE_", environ=None):
        """Defaults overridden by PINGSENSE_<FIELD> environment variables."""
        environ = os.environ if environ is None else environ
        values = {}
        for f in fields(cls):
            raw = environ.get(prefix + f.name.upper())
            if raw is None:
                continue
            kind = type(f.default)
            try:
                values[f.name] = kind(raw)
            except ValueError as exc:
                raise ValueError(f"Invalid value for {prefix + f.name.upper()}: {raw!r}") from exc
        return cls(**values)
