from __future__ import annotations

from pathlib import Path

import pytest

from fmda_mcp.connection import ConnectionProfile, ConnectionRegistry
from fmda_mcp.session import TokenCache


class FakeClock:
    """Stand-in for time.time that only moves when told to."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def config_dir(tmp_path: Path) -> Path:
    return tmp_path / "fmda"


@pytest.fixture
def registry(config_dir: Path) -> ConnectionRegistry:
    return ConnectionRegistry(config_dir)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def tokens(config_dir: Path, clock: FakeClock) -> TokenCache:
    return TokenCache(config_dir, clock=clock)


@pytest.fixture
def prod_profile() -> ConnectionProfile:
    return ConnectionProfile(
        server="10.0.0.1",
        database="Sales",
        user="admin",
        password="x",
        version="vLatest",
    )
