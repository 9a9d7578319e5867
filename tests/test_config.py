"""Tests for configuration management."""

import os
import textwrap
from unittest.mock import patch

import pytest

from lanesearch.core import config as config_module
from lanesearch.core.config import SOURCE_IDS, Config, get_config, reload_config
from lanesearch.sources import CommunityAdapter, YouTubeAdapter, build_registry, create_adapter

_ENV_VARS = (
    "YOUTUBE_API_KEY",
    "SCRAPEBADGER_API_KEY",
    "RAPIDAPI_KEY",
    "SEARCH_PAGE_SIZE",
    "LOGGING_LEVEL",
    "SOURCES_HEYE_BASE_URL",
    "SOURCES_KGIRLS_ISSUE_ENABLED",
    "SOURCES_YOUTUBE_TIMEOUT_SECONDS",
)


@pytest.fixture(autouse=True)
def isolated(tmp_path, monkeypatch):
    """Run every test in an empty directory with a clean environment."""
    monkeypatch.chdir(tmp_path)
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def _write(tmp_path, name, content):
    path = tmp_path / name
    path.write_text(textwrap.dedent(content), encoding="utf-8")
    return str(path)


class TestConfigLoading:
    """Tests for loading configuration."""

    def test_defaults(self):
        """Without a file every default is available."""
        config = Config(load_env=False)
        assert config.get("search.page_size") == 6
        assert config.get("cache.ttl_hours") == 24
        assert config.get("cache.backend") == "sqlite"
        assert config.enabled_sources == list(SOURCE_IDS)

    def test_yaml_file_merges_with_defaults(self, tmp_path):
        """A YAML file overrides only the keys it sets."""
        path = _write(
            tmp_path,
            "lanesearch.yaml",
            """
            search:
              page_size: 8
            sources:
              tiktok:
                enabled: false
            aliases:
              닝닝: ningning
            """,
        )
        config = Config(path, load_env=False)
        assert config.get("search.page_size") == 8
        assert config.get("search.fetch_count") == 20
        assert not config.is_source_enabled("tiktok")
        assert "tiktok" not in config.enabled_sources
        assert config.get_source_config("tiktok")["options"] == {"region": "kr"}
        assert config.get_section("aliases") == {"닝닝": "ningning"}

    def test_toml_file(self, tmp_path):
        """TOML files are supported too."""
        path = _write(
            tmp_path,
            "lanesearch.toml",
            """
            [cache]
            backend = "memory"
            ttl_hours = 2
            """,
        )
        config = Config(path, load_env=False)
        assert config.get("cache.backend") == "memory"
        assert config.get("cache.ttl_hours") == 2

    def test_auto_load(self, tmp_path):
        """config/lanesearch.yaml is picked up automatically."""
        (tmp_path / "config").mkdir()
        _write(tmp_path, "config/lanesearch.yaml", "search:\n  language: en\n")
        assert Config(load_env=False).get("search.language") == "en"

    def test_missing_file(self, tmp_path):
        """A missing file falls back to defaults."""
        config = Config(str(tmp_path / "nope.yaml"), load_env=False)
        assert config.get("search.page_size") == 6

    def test_invalid_yaml(self, tmp_path):
        """A broken file is logged and ignored."""
        path = _write(tmp_path, "broken.yaml", "search: [unclosed\n")
        assert Config(path, load_env=False).get("search.page_size") == 6

    def test_dotenv(self, tmp_path):
        """A .env file in the working directory provides API keys."""
        _write(tmp_path, ".env", "YOUTUBE_API_KEY=from-dotenv\n")
        with patch.dict(os.environ):
            config = Config()
            assert config.get_api_key("youtube_api_key") == "from-dotenv"

    def test_reload(self, tmp_path):
        """Reloading picks up file changes."""
        path = _write(tmp_path, "lanesearch.yaml", "search:\n  page_size: 4\n")
        config = Config(path, load_env=False)
        _write(tmp_path, "lanesearch.yaml", "search:\n  page_size: 9\n")
        config.reload()
        assert config.get("search.page_size") == 9


class TestConfigAccess:
    """Tests for reading and overriding values."""

    def test_env_override_coerced(self, monkeypatch):
        """Environment overrides take the type of the configured value."""
        monkeypatch.setenv("SEARCH_PAGE_SIZE", "10")
        monkeypatch.setenv("SOURCES_KGIRLS_ISSUE_ENABLED", "false")
        config = Config(load_env=False)
        assert config.get("search.page_size") == 10
        assert not config.is_source_enabled("kgirls-issue")

    def test_default_for_missing_key(self):
        """Unknown keys return the default."""
        assert Config(load_env=False).get("search.nothing", "fallback") == "fallback"

    def test_set(self):
        """Values can be set at runtime."""
        config = Config(load_env=False)
        config.set("sources.selca.base_url", "https://gateway.test/selca")
        assert config.get_source_config("selca")["base_url"] == "https://gateway.test/selca"

    def test_source_config_env_override(self, monkeypatch):
        """Source endpoints can come from the environment."""
        monkeypatch.setenv("SOURCES_HEYE_BASE_URL", "https://gateway.test/heye")
        assert Config(load_env=False).get_source_config("heye")["base_url"] == "https://gateway.test/heye"

    def test_api_key_lookup(self, tmp_path, monkeypatch):
        """API keys come from the environment first, then the file."""
        path = _write(
            tmp_path,
            "lanesearch.yaml",
            "api_keys:\n  youtube_api_key: from-file\n  rapidapi_key: rapid-file\n",
        )
        config = Config(path, load_env=False)
        assert config.get_api_key("youtube_api_key") == "from-file"
        assert config.get_api_key("youtube") == "from-file"
        assert config.get_api_key("rapidapi") == "rapid-file"
        assert config.get_api_key("scrapebadger_api_key") == ""

        monkeypatch.setenv("YOUTUBE_API_KEY", "from-env")
        assert config.get_api_key("youtube_api_key") == "from-env"

    def test_to_dict_is_a_copy(self):
        """Mutating the exported dict does not change the config."""
        config = Config(load_env=False)
        data = config.to_dict()
        data["search"]["page_size"] = 100
        assert config.get("search.page_size") == 6


class TestConfigValidation:
    """Tests for configuration validation."""

    def test_defaults_valid_with_missing_keys(self):
        """Defaults are valid; missing credentials are only reported."""
        result = Config(load_env=False).validate()
        assert result.is_valid
        assert any("youtube_api_key" in k for k in result.missing_api_keys)
        assert any("heye" in w for w in result.warnings)

    def test_invalid_values(self, tmp_path):
        """Bad types and ranges are errors."""
        path = _write(
            tmp_path,
            "lanesearch.yaml",
            """
            logging:
              level: LOUD
            search:
              page_size: 0
            cache:
              backend: redis
              ttl_hours: -1
            """,
        )
        result = Config(path, load_env=False).validate()
        assert not result.is_valid
        assert len(result.errors) == 4
        assert "Errors:" in str(result)

    def test_fetch_count_below_page_size(self, tmp_path):
        """Fetching fewer than a batch is allowed but warned about."""
        path = _write(tmp_path, "lanesearch.yaml", "search:\n  fetch_count: 3\n")
        result = Config(path, load_env=False).validate()
        assert result.is_valid
        assert any("fetch_count=3" in w for w in result.warnings)

    def test_unknown_source(self, tmp_path):
        """Unknown sources are warned about."""
        path = _write(tmp_path, "lanesearch.yaml", "sources:\n  instagram:\n    enabled: true\n")
        result = Config(path, load_env=False).validate()
        assert any("instagram" in w for w in result.warnings)

    def test_validate_and_raise(self, tmp_path):
        """Invalid configuration raises ValueError."""
        path = _write(tmp_path, "lanesearch.yaml", "cache:\n  backend: redis\n")
        with pytest.raises(ValueError, match="Invalid configuration"):
            Config(path, load_env=False).validate_and_raise()


class TestAdaptersFromConfig:
    """Tests for building adapters from configuration."""

    def test_create_adapter_applies_overrides(self, monkeypatch):
        """Keys, endpoints and timeouts are taken from configuration."""
        monkeypatch.setenv("YOUTUBE_API_KEY", "key")
        monkeypatch.setenv("SOURCES_YOUTUBE_TIMEOUT_SECONDS", "3")
        monkeypatch.setenv("SOURCES_HEYE_BASE_URL", "https://gateway.test/heye")
        config = Config(load_env=False)

        youtube = create_adapter("youtube", config)
        heye = create_adapter("heye", config)

        assert isinstance(youtube, YouTubeAdapter)
        assert youtube.is_configured
        assert youtube.timeout == 3.0
        assert youtube.period == "month"
        assert isinstance(heye, CommunityAdapter)
        assert heye.is_configured
        assert heye.config.base_url == "https://gateway.test/heye"

    def test_unknown_source(self):
        """Unknown source ids are rejected."""
        with pytest.raises(ValueError):
            create_adapter("instagram", Config(load_env=False))

    def test_build_registry(self):
        """Unconfigured sources are still registered so their lane can report it."""
        registry = build_registry(Config(load_env=False), ["heye", "tiktok"])
        assert registry.source_ids == ["heye", "tiktok"]
        assert not registry.get("heye").is_configured
        assert not registry.get("tiktok").is_configured


class TestGlobalConfig:
    """Tests for the shared configuration instance."""

    def test_get_config_is_shared(self, tmp_path, monkeypatch):
        """get_config returns one instance; reload_config refreshes it in place."""
        monkeypatch.setattr(config_module, "_global_config", None)
        path = _write(tmp_path, "lanesearch.yaml", "search:\n  page_size: 5\n")

        first = get_config(path)
        assert get_config() is first
        assert first.get("search.page_size") == 5

        _write(tmp_path, "lanesearch.yaml", "search:\n  page_size: 7\n")
        reload_config()
        assert get_config() is first
        assert first.get("search.page_size") == 7
