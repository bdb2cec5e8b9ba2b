import os

os.environ["VIEWS_BACKEND"] = "memory"

import pytest

import track_view
from view_stores import MemoryStore


@pytest.fixture
def store(monkeypatch):
    memory_store = MemoryStore()
    monkeypatch.setattr(track_view, "store", memory_store)
    return memory_store


@pytest.fixture
def client(store):
    track_view.app.config["TESTING"] = True
    return track_view.app.test_client()
