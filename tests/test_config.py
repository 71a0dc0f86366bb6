import pytest

from scrobbler.config import DEFAULT_CUSTOM_URL, Settings

ENV_VARS = (
    "LOG_LEVEL", "NOW_PLAYING_SOURCE", "BLUOS_HOST", "BLUOS_PORT", "LASTFM_ENABLED",
    "LASTFM_API_KEY", "LASTFM_API_SECRET", "LASTFM_USERNAME", "LASTFM_PASSWORD",
    "AUTH_SETTLE_DELAY", "CUSTOM_SCROBBLER_ENABLED", "CUSTOM_SCROBBLER_URL", "BLUESKY_HANDLE",
    "SESSION_CHECK_INTERVAL", "STORE_PATH", "HTTP_TIMEOUT", "FRIENDS_LIMIT", "FRIEND_TRACKS_LIMIT",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    settings = Settings.from_env()
    assert settings.log_level == "INFO"
    assert settings.now_playing_source == "music"
    assert settings.lastfm_enabled is True
    assert settings.custom_enabled is False
    assert settings.custom_url == DEFAULT_CUSTOM_URL
    assert settings.auth_settle_delay == 3.0


def test_from_env(monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "debug")
    monkeypatch.setenv("NOW_PLAYING_SOURCE", " BluOS ")
    monkeypatch.setenv("BLUOS_PORT", "11001")
    monkeypatch.setenv("LASTFM_ENABLED", "no")
    monkeypatch.setenv("CUSTOM_SCROBBLER_ENABLED", "1")
    monkeypatch.setenv("BLUESKY_HANDLE", "alice.bsky.social")
    monkeypatch.setenv("HTTP_TIMEOUT", "2.5")
    settings = Settings.from_env()
    assert settings.log_level == "DEBUG"
    assert settings.now_playing_source == "bluos"
    assert settings.bluos_port == 11001
    assert settings.lastfm_enabled is False
    assert settings.custom_enabled is True
    assert settings.http_timeout == 2.5
    settings.validate()


def test_lastfm_needs_credentials():
    with pytest.raises(SystemExit, match="LASTFM_API_KEY"):
        Settings().validate()


def test_custom_needs_handle():
    with pytest.raises(SystemExit, match="BLUESKY_HANDLE"):
        Settings(lastfm_enabled=False, custom_enabled=True).validate()


def test_needs_a_service():
    with pytest.raises(SystemExit, match="at least one"):
        Settings(lastfm_enabled=False).validate()


def test_unknown_source():
    with pytest.raises(SystemExit, match="NOW_PLAYING_SOURCE"):
        Settings(lastfm_api_key="k", lastfm_api_secret="s", now_playing_source="winamp").validate()
