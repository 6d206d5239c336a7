"""Unit tests for orchestrator settings."""

import pytest
from pydantic import ValidationError

from polystore.core.config import Settings, clear_settings_cache, get_settings
from polystore.models.backend import BackendKind


@pytest.mark.unit
class TestSettings:
    """Settings validation and helpers."""

    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("DB_TYPE", raising=False)
        settings = Settings()

        assert settings.db_type == "primary"
        assert settings.document_store_enabled is True
        assert settings.connect_retry_attempts == 3
        assert settings.reconnect_failure_budget == 3
        assert settings.relational_kind == BackendKind.PRIMARY

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("postgresql", "primary"),
            ("PG", "primary"),
            ("mysql", "secondary"),
            (" MariaDB ", "secondary"),
        ],
    )
    def test_db_type_aliases(self, raw: str, expected: str) -> None:
        assert Settings(db_type=raw).db_type == expected

    def test_unknown_db_type_rejected(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            Settings(db_type="oracle")

        assert "Unsupported DB_TYPE" in str(exc_info.value)

    def test_db_type_from_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DB_TYPE", "mysql")

        assert Settings().relational_kind == BackendKind.SECONDARY

    def test_probe_timeout_must_cover_latency_budget(self) -> None:
        with pytest.raises(ValidationError):
            Settings(health_latency_budget_ms=500.0, health_probe_timeout_ms=100.0)

    def test_settings_are_frozen(self) -> None:
        settings = Settings()

        with pytest.raises(ValidationError):
            settings.connect_retry_attempts = 9  # type: ignore[misc]

    def test_exponential_retry_delay(self) -> None:
        settings = Settings(connect_retry_delay_seconds=0.5, connect_retry_exponential=True)

        assert [settings.retry_delay(n) for n in (1, 2, 3)] == [0.5, 1.0, 2.0]

    def test_fixed_retry_delay(self) -> None:
        settings = Settings(connect_retry_delay_seconds=0.5, connect_retry_exponential=False)

        assert settings.retry_delay(3) == 0.5

    def test_get_settings_is_cached(self) -> None:
        first = get_settings()

        assert get_settings() is first
        clear_settings_cache()
        assert get_settings() is not first
