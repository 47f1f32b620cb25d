import pytest

from app.core.config import Settings, validate_settings


def test_defaults():
    settings = Settings(_env_file=None)
    assert settings.LEADTEH_AUTH_ORDER == ["bearer", "x-api-key"]
    assert settings.LEADTEH_API_BASE_URL == "https://app.leadteh.ru/api/v1"
    assert settings.BRIDGE_MAX_RETRIES == 2
    assert settings.verify_init_data is False


def test_auth_order_is_normalized():
    settings = Settings(_env_file=None, LEADTEH_AUTH_ORDER=[" X-Api-Key", "Bearer", "query"])
    assert settings.LEADTEH_AUTH_ORDER == ["x-api-key", "bearer", "query"]


def test_unknown_auth_strategy_rejected():
    with pytest.raises(ValueError):
        Settings(_env_file=None, LEADTEH_AUTH_ORDER=["basic"])


def test_production_requires_api_key():
    with pytest.raises(ValueError):
        Settings(_env_file=None, ENVIRONMENT="production", LEADTEH_API_KEY="")


def test_validate_settings_production_requires_webhook():
    settings = Settings(
        _env_file=None,
        ENVIRONMENT="production",
        LEADTEH_API_KEY="key",
        LEADTEH_BOT_ID=257034,
        LEADTEH_WEBHOOK_URL="",
    )
    with pytest.raises(ValueError, match="LEADTEH_WEBHOOK_URL"):
        validate_settings(settings)


def test_validate_settings_development_is_lenient():
    assert validate_settings(Settings(_env_file=None)) is True
