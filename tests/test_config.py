"""Tests for configuration."""

from solr_reindex.config import Settings, get_settings


def test_settings_defaults():
    """Test that settings have correct default values."""
    settings = Settings()
    assert settings.app_name == "Solr Reindex API"
    assert settings.app_version == "0.1.0"
    assert settings.environment in ["development", "staging", "production"]
    assert settings.api_v1_prefix == "/api/v1"


def test_get_settings_returns_singleton():
    """Test that get_settings returns the same instance."""
    settings1 = get_settings()
    settings2 = get_settings()
    assert settings1 is settings2


def test_settings_cors_configuration():
    """Test CORS configuration defaults."""
    settings = Settings()
    assert settings.cors_origins == ["*"]
    assert settings.cors_credentials is True
    assert settings.cors_methods == ["*"]
    assert settings.cors_headers == ["*"]


def test_job_defaults():
    """Job defaults match the documented retry policy."""
    settings = Settings()
    assert settings.default_batch_size == 500
    assert settings.default_max_retries == 3
    assert settings.default_backoff_initial_seconds == 0.25
    assert settings.default_backoff_max_seconds == 5.0


def test_target_url_falls_back_to_source():
    settings = Settings(solr_source_url="http://solr-a:8983/solr")
    assert settings.effective_target_url == "http://solr-a:8983/solr"

    settings = Settings(
        solr_source_url="http://solr-a:8983/solr", solr_target_url="http://solr-b:8983/solr"
    )
    assert settings.effective_target_url == "http://solr-b:8983/solr"


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv("REGISTRY_BACKEND", "supabase")
    monkeypatch.setenv("LIVENESS_TIMEOUT_SECONDS", "42")

    settings = Settings()
    assert settings.registry_backend == "supabase"
    assert settings.liveness_timeout_seconds == 42.0
