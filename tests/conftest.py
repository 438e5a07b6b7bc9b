"""Shared test fixtures for the stackboot test suite.

Everything that touches time, the container runtime or the data store runs
against the in-memory fakes in :mod:`tests.fakes`.
"""

from __future__ import annotations

import io

import pytest

from stackboot.startup.config_schema import StackConfig
from stackboot.startup.progress_reporter import StartupProgressReporter
from tests.fakes import FakeClock, FakeDataStore, FakeRuntime, make_config


@pytest.fixture
def stack_config() -> StackConfig:
    return make_config()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def runtime(clock: FakeClock) -> FakeRuntime:
    return FakeRuntime(clock)


@pytest.fixture
def store() -> FakeDataStore:
    return FakeDataStore()


@pytest.fixture
def reporter_output() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def reporter(reporter_output: io.StringIO) -> StartupProgressReporter:
    """Progress reporter writing plain text to a buffer."""
    return StartupProgressReporter(reporter_output, enable_colors=False)
