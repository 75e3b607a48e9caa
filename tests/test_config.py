from __future__ import annotations

from seekrag.config import get_settings


def test_defaults_poll_backoff_is_bounded():
    settings = get_settings({})
    assert settings.poll_initial_delay_seconds == 3.0
    assert settings.poll_interval_seconds == 5.0
    assert settings.poll_backoff_factor >= 1.0
    assert settings.poll_max_interval_seconds >= settings.poll_interval_seconds
    assert settings.poll_max_wait_seconds > 0


def test_query_defaults():
    settings = get_settings({})
    assert settings.default_temperature == 0.7
    assert settings.default_max_tokens == 2000
    assert settings.default_response_format == "text"


def test_endpoint_urls_join_cleanly():
    settings = get_settings({"knowledge_base_url": "http://kb.local/", "seek_path": "/seek", "documents_path": "docs"})
    assert settings.seek_url == "http://kb.local/seek"
    assert settings.documents_url == "http://kb.local/docs"


def test_override_does_not_mutate_cache():
    cached = get_settings()
    overridden = get_settings({"environment": "test"})
    assert overridden.is_test
    assert get_settings() is cached
