"""Shared fixtures for the Parley Chat API test suite."""
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

import pytest

from fakes import FakeSupabaseClient, TickingClock
from storage.document_store import DocumentStore
from storage.file_store import FileStore


@pytest.fixture
def clock():
    return TickingClock()


@pytest.fixture
def fake_supabase():
    return FakeSupabaseClient()


@pytest.fixture
def file_store(tmp_path, clock):
    return FileStore(tmp_path / "conversations.json", clock=clock)


@pytest.fixture
def document_store(fake_supabase, clock):
    return DocumentStore(client=fake_supabase, clock=clock)


@pytest.fixture(params=["file", "supabase"])
def store(request, tmp_path):
    """Each contract test runs once per backend."""
    if request.param == "file":
        return FileStore(tmp_path / "conversations.json", clock=TickingClock())
    return DocumentStore(client=FakeSupabaseClient(), clock=TickingClock())
