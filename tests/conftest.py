"""Shared pytest fixtures for test modules."""

import pytest

from helpers import make_record


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in ("OPENAI_API_KEY", "OPENAI_MODEL", "TARGET_SEASON"):
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def batter():
    return make_record()


@pytest.fixture
def pitcher():
    return make_record(name="古林睿煬", player_type="pitcher")
