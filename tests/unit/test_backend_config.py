# =============================================================================
# tests/unit/test_backend_config.py
# Unit Tests for backend configuration loading
# =============================================================================

from pathlib import Path

import pytest

from ministry_core.data.backend_config import DEFAULT_MIRROR_PATH, load_backend_config
from ministry_core.errors import ConfigurationError


class TestLoadBackendConfig:

    def test_secrets_take_precedence(self, mock_streamlit):
        mock_streamlit.secrets = {"supabase": {"url": "https://a.supabase.co", "key": "secret-key"}}

        config = load_backend_config({"SUPABASE_URL": "https://env.supabase.co", "SUPABASE_KEY": "env"})

        assert config.url == "https://a.supabase.co"
        assert config.key == "secret-key"
        assert config.mirror_path == DEFAULT_MIRROR_PATH

    def test_environment_fallback(self, mock_streamlit):
        config = load_backend_config({
            "SUPABASE_URL": "https://env.supabase.co",
            "SUPABASE_KEY": "env-key",
            "MINISTRY_MIRROR_PATH": "/tmp/m.db",
            "MINISTRY_PAGE_SIZE": "250",
        })

        assert config.url == "https://env.supabase.co"
        assert config.mirror_path == Path("/tmp/m.db")
        assert config.page_size == 250

    def test_missing_url(self, mock_streamlit):
        with pytest.raises(ConfigurationError) as exc_info:
            load_backend_config({"SUPABASE_KEY": "k"})

        assert exc_info.value.details["config_key"] == "SUPABASE_URL"

    def test_bad_page_size(self, mock_streamlit):
        with pytest.raises(ConfigurationError):
            load_backend_config({"SUPABASE_URL": "u", "SUPABASE_KEY": "k", "MINISTRY_PAGE_SIZE": "lots"})
