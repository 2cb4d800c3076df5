"""Tests for configuration loading."""

import json
import os
from unittest.mock import patch

from app_config import AppConfig, load_config, save_config


class TestAppConfig:
    def test_defaults_are_local_only(self):
        config = AppConfig()
        assert config.remote_enabled is False

    def test_remote_needs_url_and_key(self):
        assert AppConfig(supabase_url="https://x.supabase.co").remote_enabled is False
        assert AppConfig(supabase_url="https://x.supabase.co",
                         supabase_anon_key="key").remote_enabled is True


class TestLoadConfig:
    """Tests for file and environment loading."""

    @patch.dict(os.environ, {"BIBLIA_SUPABASE_URL": "https://env.supabase.co",
                             "BIBLIA_SUPABASE_ANON_KEY": "env-key"})
    def test_environment_fallback(self, temp_data_dir):
        config = load_config(os.path.join(temp_data_dir, "missing.json"))
        assert config.supabase_url == "https://env.supabase.co"
        assert config.remote_enabled

    @patch.dict(os.environ, {"BIBLIA_SUPABASE_ANON_KEY": "env-key"})
    def test_file_values_win_per_key(self, temp_data_dir):
        path = os.path.join(temp_data_dir, "biblia_config.json")
        with open(path, "w") as f:
            json.dump({"data_dir": temp_data_dir,
                       "supabase": {"url": "https://file.supabase.co"}}, f)
        config = load_config(path)
        assert config.supabase_url == "https://file.supabase.co"
        assert config.supabase_anon_key == "env-key"
        assert config.data_dir == temp_data_dir

    def test_corrupt_file_uses_defaults(self, temp_data_dir):
        path = os.path.join(temp_data_dir, "biblia_config.json")
        with open(path, "w") as f:
            f.write("not json")
        config = load_config(path)
        assert isinstance(config, AppConfig)

    def test_save_and_load(self, temp_data_dir):
        path = os.path.join(temp_data_dir, "biblia_config.json")
        save_config(AppConfig(data_dir=temp_data_dir, supabase_url="https://a.supabase.co",
                              supabase_anon_key="k", request_timeout=5.0), path)
        config = load_config(path)
        assert config.supabase_url == "https://a.supabase.co"
        assert config.request_timeout == 5.0
