"""
Tests for Link Settings
"""

import pytest

from hplink.config import DEFAULT_SETTINGS, LinkSettings


class TestDefaults:
    """Tests for the calculator-matched defaults."""

    def test_timing(self):
        assert DEFAULT_SETTINGS.read_timeout == 4.0
        assert DEFAULT_SETTINGS.handshake_attempts == 4
        assert DEFAULT_SETTINGS.handshake_interval == 3.0
        assert DEFAULT_SETTINGS.command_delay == 0.3
        assert DEFAULT_SETTINGS.receive_delay == 0.5

    def test_retries(self):
        assert DEFAULT_SETTINGS.max_retries == 3

    def test_kermit(self):
        assert DEFAULT_SETTINGS.kermit_packet_size == 94
        assert DEFAULT_SETTINGS.kermit_timeout == 2


class TestValidation:
    """Tests for rejected settings."""

    def test_handshake_attempts(self):
        with pytest.raises(ValueError):
            LinkSettings(handshake_attempts=0)

    def test_negative_retries(self):
        with pytest.raises(ValueError):
            LinkSettings(max_retries=-1)

    @pytest.mark.parametrize("size", [9, 95])
    def test_kermit_packet_size(self, size):
        with pytest.raises(ValueError):
            LinkSettings(kermit_packet_size=size)


class TestFromEnv:
    """Tests for HPLINK_* environment variables."""

    def test_empty_environment(self):
        assert LinkSettings.from_env({}) == LinkSettings()

    def test_overrides(self):
        settings = LinkSettings.from_env({
            "HPLINK_READ_TIMEOUT": "6.5",
            "HPLINK_MAX_RETRIES": "5",
            "UNRELATED": "x",
        })
        assert settings.read_timeout == 6.5
        assert settings.max_retries == 5
        assert settings.command_delay == 0.3

    def test_invalid_value(self):
        with pytest.raises(ValueError, match="HPLINK_MAX_RETRIES"):
            LinkSettings.from_env({"HPLINK_MAX_RETRIES": "lots"})

    def test_validation_applies(self):
        with pytest.raises(ValueError):
            LinkSettings.from_env({"HPLINK_KERMIT_PACKET_SIZE": "200"})

    def test_reads_os_environ(self, monkeypatch):
        monkeypatch.setenv("HPLINK_HANDSHAKE_ATTEMPTS", "2")
        assert LinkSettings.from_env().handshake_attempts == 2


class TestWithOverrides:
    """Tests for per-invocation overrides."""

    def test_replaces_fields(self):
        settings = DEFAULT_SETTINGS.with_overrides(read_timeout=1.0)
        assert settings.read_timeout == 1.0
        assert DEFAULT_SETTINGS.read_timeout == 4.0

    def test_none_is_skipped(self):
        assert DEFAULT_SETTINGS.with_overrides(read_timeout=None) == DEFAULT_SETTINGS

    def test_validation_applies(self):
        with pytest.raises(ValueError):
            DEFAULT_SETTINGS.with_overrides(handshake_attempts=0)
