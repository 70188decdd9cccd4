"""Shared test fixtures for sparkle."""

import pytest

from sparkle import Runtime, set_runtime


@pytest.fixture(autouse=True)
def runtime():
    """A fresh default runtime per test, so buses and key pools never leak."""
    rt = Runtime()
    previous = set_runtime(rt)
    try:
        yield rt
    finally:
        set_runtime(previous)
