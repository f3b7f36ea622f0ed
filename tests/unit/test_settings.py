"""Tests for FactorySettings defaults, validation and env loading."""

import pytest

from factory_plane.app.settings import FactorySettings


class TestDefaults:
    def test_local_is_valid(self):
        settings = FactorySettings()
        assert settings.is_local
        assert settings.validate() == []

    def test_orchestration_defaults(self):
        settings = FactorySettings()
        assert settings.resource_prefix == "cx-"
        assert settings.wait_polls == 30
        assert settings.resume_wait_polls == 0
        assert settings.stale_run_hours == 72


class TestValidate:
    def test_non_local_requires_control_database_and_cron_secret(self):
        errors = FactorySettings(environment="production").validate()
        assert any("supabase_url" in e for e in errors)
        assert any("supabase_service_role_key" in e for e in errors)
        assert any("cron_secret" in e for e in errors)

    def test_negative_polls_rejected(self):
        errors = FactorySettings(wait_polls=-1).validate()
        assert errors == ["wait_polls must be >= 0"]

    def test_stale_threshold_must_be_positive(self):
        assert FactorySettings(stale_run_hours=0).validate() == [
            "stale_run_hours must be >= 1"
        ]

    def test_provider_tokens_not_required_at_startup(self):
        settings = FactorySettings(
            environment="staging",
            supabase_url="https://control.supabase.co",
            supabase_service_role_key="key",
            cron_secret="secret",
        )
        assert settings.validate() == []


class TestFromEnv:
    def test_reads_values(self):
        settings = FactorySettings.from_env({
            "ENVIRONMENT": "staging",
            "SUPABASE_URL": "https://control.supabase.co",
            "GITHUB_ORG": "acme-platforms",
            "STRIPE_DEFAULT_PRICE_ID": "price_123",
            "PROVISION_WAIT_POLLS": "5",
            "CORS_ORIGINS": "https://a.example.com, https://b.example.com",
        })
        assert settings.environment == "staging"
        assert settings.github_org == "acme-platforms"
        assert settings.stripe_default_price_id == "price_123"
        assert settings.wait_polls == 5
        assert settings.cors_origins == ("https://a.example.com", "https://b.example.com")

    def test_blank_values_fall_back_to_defaults(self):
        settings = FactorySettings.from_env({"GITHUB_ORG": "", "RESOURCE_PREFIX": ""})
        assert settings.github_org == FactorySettings().github_org
        assert settings.resource_prefix == "cx-"

    def test_bad_integer(self):
        with pytest.raises(ValueError, match="STALE_RUN_HOURS"):
            FactorySettings.from_env({"STALE_RUN_HOURS": "soon"})
