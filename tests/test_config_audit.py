"""Tests for configuration and the audit logger."""

import pytest
from uuid import UUID

from pydantic import ValidationError

from notafacil.audit import AuditLogger, create_correlation_id
from notafacil.config import (
    AppSettings,
    GeminiSettings,
    SupabaseSettings,
    get_settings,
    validate_all_settings,
)
from notafacil.models.audit import AuditEventBuilder, AuditEventType


@pytest.fixture
def clean_env(monkeypatch):
    for name in (
        "SUPABASE_URL",
        "SUPABASE_ANON_KEY",
        "GEMINI_API_KEY",
        "API_KEY",
        "GEMINI_MAX_TOOL_ITERATIONS",
        "DEFAULT_LANGUAGE",
    ):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield monkeypatch
    get_settings.cache_clear()


class TestSettings:
    """Tests for pydantic-settings configuration."""

    def test_supabase_from_env(self, clean_env):
        clean_env.setenv("SUPABASE_URL", "https://project.supabase.co/")
        clean_env.setenv("SUPABASE_ANON_KEY", "anon")

        settings = SupabaseSettings()

        assert settings.url == "https://project.supabase.co"
        assert settings.invoices_table == "invoices"
        assert settings.channel_name == "public:invoices"

    def test_supabase_rejects_non_http_url(self, clean_env):
        clean_env.setenv("SUPABASE_URL", "project.supabase.co")
        clean_env.setenv("SUPABASE_ANON_KEY", "anon")
        with pytest.raises(ValidationError):
            SupabaseSettings()

    def test_supabase_requires_credentials(self, clean_env):
        with pytest.raises(ValidationError):
            SupabaseSettings()

    def test_gemini_defaults(self, clean_env):
        settings = GeminiSettings()
        assert settings.api_key is None
        assert settings.is_configured is False
        assert settings.model_name == "gemini-2.5-flash"
        assert settings.max_tool_iterations == 5

    def test_gemini_key_aliases(self, clean_env):
        clean_env.setenv("API_KEY", "legacy-key")
        assert GeminiSettings().api_key == "legacy-key"

        clean_env.setenv("GEMINI_API_KEY", "gemini-key")
        assert GeminiSettings().api_key == "gemini-key"

    def test_blank_gemini_key_is_missing(self, clean_env):
        clean_env.setenv("GEMINI_API_KEY", "   ")
        assert GeminiSettings().is_configured is False

    def test_tool_iteration_cap_from_env(self, clean_env):
        clean_env.setenv("GEMINI_MAX_TOOL_ITERATIONS", "2")
        assert GeminiSettings().max_tool_iterations == 2

    def test_app_language(self, clean_env):
        assert AppSettings().default_language == "pt"
        clean_env.setenv("DEFAULT_LANGUAGE", "de")
        with pytest.raises(ValidationError):
            AppSettings()

    def test_validate_all_settings_reports_each_part(self, clean_env):
        results = validate_all_settings()
        assert results["supabase"] is False
        assert "supabase_error" in results
        assert results["gemini"] is False
        assert results["app"] is True

    def test_get_settings_is_cached(self, clean_env):
        assert get_settings() is get_settings()


class TestAuditLogger:
    """Tests for the structlog-backed audit logger."""

    def test_sink_receives_events(self):
        events = []
        logger = AuditLogger(sink=events.append)
        correlation_id = create_correlation_id()

        logger.log_invoice_created("inv-1", "Acme", "150.00", correlation_id)
        logger.log_rollback("create", "inv-1", True, correlation_id)

        assert [e.event_type for e in events] == [
            AuditEventType.INVOICE_CREATED,
            AuditEventType.MUTATION_ROLLED_BACK,
        ]
        assert all(e.correlation_id == correlation_id for e in events)

    def test_failing_sink_does_not_raise(self):
        def broken(event):
            raise RuntimeError("sink down")

        logger = AuditLogger(sink=broken)
        assert logger.log(AuditEventBuilder.feed_closed("user-1")) is False

    def test_without_sink(self):
        assert AuditLogger().log(AuditEventBuilder.session_started("user-1")) is True

    def test_error_helpers(self):
        events = []
        logger = AuditLogger(sink=events.append)

        logger.log_error("feed_event_failed", "boom", details={"owner": "user-1"})
        logger.log_external_service_error("gemini", "quota")

        assert events[0].event_type is AuditEventType.SYSTEM_ERROR
        assert events[0].details == {"owner": "user-1"}
        assert events[1].details == {"service": "gemini"}

    def test_correlation_ids_are_unique(self):
        first, second = create_correlation_id(), create_correlation_id()
        assert isinstance(first, UUID)
        assert first != second
