"""Pytest configuration and fixtures."""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Ensure src is on path for tests
root = Path(__file__).resolve().parent.parent
src = root / "src"
if str(src) not in sys.path:
    sys.path.insert(0, str(src))

from neurolint_mcp.config import load_config  # noqa: E402
from neurolint_mcp.core import NeuroLintCore  # noqa: E402
from neurolint_mcp.jobs import InMemoryJobStore, SqliteJobStore  # noqa: E402
from neurolint_mcp.models import Caller  # noqa: E402
from neurolint_mcp.rules_engine import RuleEngine  # noqa: E402

PROJECT_RULES_DIR = root / "rules"


class FixedClock:
    """Deterministic clock; every call advances one second so creation order is total."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        current = self.now
        self.now = current + timedelta(seconds=1)
        return current

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def rules_dir(tmp_path):
    """An empty rules directory: defaults only, no learned rules."""
    directory = tmp_path / "rules"
    directory.mkdir()
    return directory


@pytest.fixture
def config(rules_dir):
    return load_config(rules_dir)


@pytest.fixture
def engine(config):
    return RuleEngine(config)


@pytest.fixture
def core(config, engine):
    return NeuroLintCore(config=config, engine=engine)


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    """Each job store implementation."""
    if request.param == "memory":
        yield InMemoryJobStore()
    else:
        sqlite_store = SqliteJobStore(tmp_path / "jobs.db")
        yield sqlite_store
        sqlite_store.close()


@pytest.fixture
def alice():
    return Caller(user_id="alice", tier="free")


@pytest.fixture
def bob():
    return Caller(user_id="bob", tier="premium")
