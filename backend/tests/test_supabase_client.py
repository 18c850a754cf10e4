"""
Tests for the service-role Supabase client factory.
"""

import pytest

from nodeflow.db.supabase import get_supabase_client
from nodeflow.services.run_store import SupabaseRunStore


@pytest.fixture(autouse=True)
def fresh_client_cache():
    get_supabase_client.cache_clear()
    yield
    get_supabase_client.cache_clear()


class TestGetSupabaseClient:
    def test_missing_url(self, monkeypatch):
        monkeypatch.delenv("SUPABASE_URL", raising=False)
        monkeypatch.setenv("SUPABASE_SERVICE_ROLE_KEY", "key")
        with pytest.raises(ValueError, match="SUPABASE_URL"):
            get_supabase_client()

    def test_blank_key(self, monkeypatch):
        monkeypatch.setenv("SUPABASE_URL", "https://example.supabase.co")
        monkeypatch.setenv("SUPABASE_SERVICE_ROLE_KEY", "  ")
        with pytest.raises(ValueError, match="SUPABASE_SERVICE_ROLE_KEY"):
            get_supabase_client()

    def test_store_builds_client_lazily(self, monkeypatch):
        monkeypatch.delenv("SUPABASE_URL", raising=False)
        store = SupabaseRunStore()
        with pytest.raises(ValueError):
            store.client

    def test_injected_client_skips_factory(self, monkeypatch):
        monkeypatch.delenv("SUPABASE_URL", raising=False)
        sentinel = object()
        assert SupabaseRunStore(client=sentinel).client is sentinel
