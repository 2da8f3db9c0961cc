"""Shared test fixtures for tablewatch."""

from __future__ import annotations

import pytest

from tests.fakes import FakeExecutor, FakeListener


@pytest.fixture
def executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def listener() -> FakeListener:
    return FakeListener()
