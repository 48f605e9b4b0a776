"""Tests for host settings."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from p2p_host.settings import (
    DIAL_TIMEOUT_ENV,
    DIAL_TIMEOUT_SECS,
    MAX_INBOUND_UPGRADES,
    NEGOTIATION_TIMEOUT_SECS,
    HostSettings,
)


class TestHostSettings:
    """Defaults, validation, and environment overrides."""

    def test_defaults(self) -> None:
        settings = HostSettings()
        assert settings.dial_timeout_secs == DIAL_TIMEOUT_SECS
        assert settings.negotiation_timeout_secs == NEGOTIATION_TIMEOUT_SECS
        assert settings.max_inbound_upgrades == MAX_INBOUND_UPGRADES

    def test_rejects_non_positive(self) -> None:
        with pytest.raises(ValidationError):
            HostSettings(dial_timeout_secs=0.0)
        with pytest.raises(ValidationError):
            HostSettings(max_inbound_upgrades=0)

    def test_rejects_unknown_fields(self) -> None:
        with pytest.raises(ValidationError):
            HostSettings(retries=3)  # type: ignore[call-arg]

    def test_frozen(self) -> None:
        settings = HostSettings()
        with pytest.raises(ValidationError):
            settings.dial_timeout_secs = 1.0  # type: ignore[misc]

    def test_from_env(self) -> None:
        assert HostSettings.from_env({DIAL_TIMEOUT_ENV: "2.5"}).dial_timeout_secs == 2.5
        assert HostSettings.from_env({}) == HostSettings()

    def test_from_env_rejects_garbage(self) -> None:
        with pytest.raises(ValueError):
            HostSettings.from_env({DIAL_TIMEOUT_ENV: "soon"})
        with pytest.raises(ValueError):
            HostSettings.from_env({DIAL_TIMEOUT_ENV: "-1"})

    def test_from_process_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv(DIAL_TIMEOUT_ENV, "7")
        assert HostSettings.from_env().dial_timeout_secs == 7.0
