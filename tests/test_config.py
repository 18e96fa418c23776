from claude_usage_monitor.config import (
    DEFAULT_POLL_INTERVAL_SECONDS,
    MAX_POLL_INTERVAL_SECONDS,
    MIN_POLL_INTERVAL_SECONDS,
    Settings,
    load_settings,
)


def test_defaults_without_environment() -> None:
    settings = load_settings({})

    assert settings == Settings()
    assert settings.poll_interval_seconds == DEFAULT_POLL_INTERVAL_SECONDS
    assert settings.warn_at_percent == 80
    assert settings.silent_timeout_seconds == 15.0
    assert settings.base_url == "https://claude.ai"
    assert settings.token_path is None


def test_environment_overrides() -> None:
    settings = load_settings(
        {
            "CLAUDE_USAGE_POLL_INTERVAL": "60",
            "CLAUDE_USAGE_WARN_PERCENT": "70",
            "CLAUDE_USAGE_SILENT_TIMEOUT": "5",
            "CLAUDE_USAGE_REQUEST_TIMEOUT": "12.5",
            "CLAUDE_USAGE_BASE_URL": "https://claude.test",
            "CLAUDE_USAGE_TOKEN_PATH": "~/session",
        }
    )

    assert settings.poll_interval_seconds == 60
    assert settings.warn_at_percent == 70
    assert settings.silent_timeout_seconds == 5.0
    assert settings.request_timeout_seconds == 12.5
    assert settings.base_url == "https://claude.test"
    assert settings.token_path == "~/session"


def test_interval_is_clamped() -> None:
    assert (
        load_settings({"CLAUDE_USAGE_POLL_INTERVAL": "5"}).poll_interval_seconds
        == MIN_POLL_INTERVAL_SECONDS
    )
    assert (
        load_settings({"CLAUDE_USAGE_POLL_INTERVAL": "9000"}).poll_interval_seconds
        == MAX_POLL_INTERVAL_SECONDS
    )
    assert Settings().with_interval(10).poll_interval_seconds == MIN_POLL_INTERVAL_SECONDS
    assert Settings().with_interval(None).poll_interval_seconds == 120


def test_invalid_values_fall_back_to_defaults() -> None:
    settings = load_settings(
        {
            "CLAUDE_USAGE_POLL_INTERVAL": "often",
            "CLAUDE_USAGE_WARN_PERCENT": "150",
            "CLAUDE_USAGE_SILENT_TIMEOUT": "-1",
            "CLAUDE_USAGE_REQUEST_TIMEOUT": "soon",
        }
    )

    assert settings.poll_interval_seconds == DEFAULT_POLL_INTERVAL_SECONDS
    assert settings.warn_at_percent == 100
    assert settings.silent_timeout_seconds == 15.0
    assert settings.request_timeout_seconds == 30.0
