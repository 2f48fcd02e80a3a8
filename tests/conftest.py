import os
import struct

# Environment must be in place before pastebox modules are imported
os.environ["REDIS_URL"] = "redis://127.0.0.1:1/0"  # unreachable, forces the in-memory store
os.environ["TEST_MODE"] = "1"
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
from fastapi.testclient import TestClient

from pastebox.config import settings
from pastebox.database import InMemoryStore, db
from pastebox.main import app


@pytest.fixture(autouse=True)
def memory_store(monkeypatch):
    """Give every test an empty store and default settings."""
    store = InMemoryStore()
    monkeypatch.setattr(db, "redis", store)
    monkeypatch.setattr(settings, "TEST_MODE", True)
    monkeypatch.setattr(settings, "CACHE_ENABLED", True)
    monkeypatch.setattr(settings, "PUBLIC_URL", "")
    monkeypatch.setattr(settings, "EXPIRATION_TTL", 86400)
    monkeypatch.setattr(settings, "MAX_SIZE", 1024 * 1024)
    monkeypatch.setattr(settings, "ID_LENGTH", 6)
    return store


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def no_cache(monkeypatch):
    monkeypatch.setattr(settings, "CACHE_ENABLED", False)


def make_png(width, height):
    ihdr = struct.pack(">II", width, height) + b"\x08\x02\x00\x00\x00"
    return b"\x89PNG\r\n\x1a\n" + b"\x00\x00\x00\x0dIHDR" + ihdr + b"\x00\x00\x00\x00"


@pytest.fixture
def png_bytes():
    return make_png(3, 2)
