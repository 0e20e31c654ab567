"""
Tests for Settings: defaults, YAML loading and environment overrides.
"""

from sleepfeed.config import Settings, get_settings, normalize_database_url, reset_settings


class TestDefaults:
    def test_development_defaults(self):
        settings = Settings()
        assert settings.env == "development"
        assert settings.is_production is False
        assert settings.enable_request_logging is True
        assert settings.admin_enabled is True
        assert settings.slow_query_threshold == 10
        assert settings.ttl_social_sleep_stats == 300

    def test_production_turns_off_admin_and_request_logging(self):
        settings = Settings(env="production")
        assert settings.is_production
        assert settings.admin_enabled is False
        assert settings.enable_request_logging is False

    def test_explicit_flags_win(self):
        assert Settings(env="production", admin_enabled=True).admin_enabled is True

    def test_postgres_url_normalized(self):
        assert normalize_database_url("postgres://u:p@h/db") == "postgresql+psycopg2://u:p@h/db"
        assert Settings(database_url="postgres://u@h/db").database_url == "postgresql+psycopg2://u@h/db"
        assert normalize_database_url("sqlite:///x.db") == "sqlite:///x.db"


class TestFromMapping:
    def test_coerces_strings(self):
        settings = Settings.from_mapping({
            "redis_port": "6380",
            "redis_socket_timeout": "0.5",
            "admin_enabled": "false",
            "enable_request_logging": "yes",
            "ttl_following_list": "60",
            "unknown": "ignored",
        })
        assert settings.redis_port == 6380
        assert settings.redis_socket_timeout == 0.5
        assert settings.admin_enabled is False
        assert settings.enable_request_logging is True
        assert settings.ttl_following_list == 60


class TestFromYaml:
    def test_file_then_env(self, tmp_path, monkeypatch):
        path = tmp_path / "config.yaml"
        path.write_text(
            "sleepfeed:\n"
            "  env: staging\n"
            "  redis_db: 3\n"
            "  ttl_followers_count: 120\n"
        )
        monkeypatch.setenv("REDIS_DB", "9")
        monkeypatch.delenv("APP_ENV", raising=False)

        settings = Settings.from_yaml(path)

        assert settings.env == "staging"
        assert settings.redis_db == 9
        assert settings.ttl_followers_count == 120

    def test_without_env(self, tmp_path, monkeypatch):
        path = tmp_path / "config.yaml"
        path.write_text("sleepfeed:\n  log_level: DEBUG\n")
        monkeypatch.setenv("LOG_LEVEL", "ERROR")

        assert Settings.from_yaml(path, use_env=False).log_level == "DEBUG"

    def test_missing_file(self, tmp_path, monkeypatch):
        monkeypatch.setenv("QUERY_COUNT_WARN_THRESHOLD", "25")
        settings = Settings.from_yaml(tmp_path / "absent.yaml")
        assert settings.slow_query_threshold == 25


class TestGetSettings:
    def test_cached_until_reset(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "ERROR")
        reset_settings()
        try:
            first = get_settings()
            assert get_settings() is first
            assert first.log_level == "ERROR"

            monkeypatch.setenv("LOG_LEVEL", "DEBUG")
            reset_settings()
            assert get_settings().log_level == "DEBUG"
        finally:
            reset_settings()
