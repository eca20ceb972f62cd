"""Tests for profile store adapters."""

from unittest.mock import MagicMock

import pytest
import requests

from crmshift.errors import ProfileStoreError
from crmshift.models.migration import MigrationConfig
from crmshift.stores import (
    InMemoryProfileStore,
    JsonFileProfileStore,
    SupabaseProfileStore,
    create_profile_store,
)


class TestJsonFileProfileStore:
    def test_missing_profile_is_empty(self, tmp_path):
        assert JsonFileProfileStore(str(tmp_path)).read_profile("u1") == {}

    def test_update_merges_fields(self, tmp_path):
        store = JsonFileProfileStore(str(tmp_path))
        store.update_profile("u1", {"a": 1, "b": {"nested": True}})
        store.update_profile("u1", {"a": 2})

        assert store.read_profile("u1") == {"a": 2, "b": {"nested": True}}
        assert not list(tmp_path.glob("*.tmp"))

    def test_unsafe_user_ids_stay_in_directory(self, tmp_path):
        store = JsonFileProfileStore(str(tmp_path))
        store.update_profile("../escape", {"a": 1})

        assert [p.name for p in tmp_path.iterdir()] == [".._escape.json"]

    def test_corrupt_file_raises(self, tmp_path):
        (tmp_path / "u1.json").write_text("{broken")

        with pytest.raises(ProfileStoreError) as exc_info:
            JsonFileProfileStore(str(tmp_path)).read_profile("u1")
        assert exc_info.value.status_code == 500


class TestInMemoryProfileStore:
    def test_reads_are_copies(self):
        store = InMemoryProfileStore({"u1": {"doc": {"x": 1}}})
        store.read_profile("u1")["doc"]["x"] = 2

        assert store.read_profile("u1") == {"doc": {"x": 1}}
        assert store.write_count == 0


class TestSupabaseProfileStore:
    @pytest.fixture
    def session(self) -> MagicMock:
        mock = MagicMock()
        mock.headers = {}
        return mock

    def test_read_profile_filters_by_id(self, session):
        session.get.return_value = MagicMock(json=MagicMock(return_value=[{"id": "u1", "x": 1}]))
        store = SupabaseProfileStore("https://proj.supabase.co/", "service-key", session=session)

        assert store.read_profile("u1") == {"id": "u1", "x": 1}
        url = session.get.call_args[0][0]
        assert url == "https://proj.supabase.co/rest/v1/profiles"
        assert session.get.call_args[1]["params"]["id"] == "eq.u1"
        assert session.headers["apikey"] == "service-key"

    def test_missing_row_is_empty(self, session):
        session.get.return_value = MagicMock(json=MagicMock(return_value=[]))
        store = SupabaseProfileStore("https://proj.supabase.co", "service-key", session=session)

        assert store.read_profile("u1") == {}

    def test_update_patches_fields(self, session):
        store = SupabaseProfileStore("https://proj.supabase.co", "service-key", session=session)
        store.update_profile("u1", {"hubspot_access_token_a": "tok"})

        kwargs = session.patch.call_args[1]
        assert kwargs["json"] == {"hubspot_access_token_a": "tok"}
        assert kwargs["headers"]["Prefer"] == "return=minimal"

    def test_http_errors_become_store_errors(self, session):
        session.patch.side_effect = requests.exceptions.ConnectionError("refused")
        store = SupabaseProfileStore("https://proj.supabase.co", "service-key", session=session)

        with pytest.raises(ProfileStoreError):
            store.update_profile("u1", {"x": 1})


class TestCreateProfileStore:
    def test_file_store_by_default(self, tmp_path):
        store = create_profile_store(MigrationConfig(data_dir=str(tmp_path)))
        assert isinstance(store, JsonFileProfileStore)

    def test_supabase_when_configured(self):
        config = MigrationConfig(supabase_url="https://proj.supabase.co", supabase_key="key")
        assert isinstance(create_profile_store(config), SupabaseProfileStore)

    def test_config_from_env(self):
        config = MigrationConfig.from_env({
            "CLIENT_ID": "cid",
            "HUBSPOT_API_BASE": "https://crm.example/",
            "API_TIMEOUT": "15000",
            "CRMSHIFT_DRY_RUN": "true",
        })

        assert config.client_id == "cid"
        assert config.api_base_url == "https://crm.example"
        assert config.token_url == "https://crm.example/oauth/v1/token"
        assert config.request_timeout == 15.0
        assert config.dry_run
        assert "client_secret" not in config.to_dict()
