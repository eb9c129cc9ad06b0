import pytest

from formjobs.config.settings import AuthMode, Settings, get_settings


def test_default_settings():
    """Test default settings values."""
    settings = Settings()

    assert settings.app_name == "Form Jobs"
    assert settings.version == "1.0.0"
    assert settings.auth_mode == AuthMode.NONE
    assert settings.jobs_enabled is True
    assert settings.job_max_concurrent == 3
    assert settings.job_default_max_attempts == 3
    assert settings.job_backoff_base_s == 120
    assert settings.job_manual_retry_resets_attempts is False


def test_production_validation_blocks_none_auth():
    """Test that production environment blocks AUTH_MODE=none."""
    with pytest.raises(ValueError, match="AUTH_MODE=none is not allowed in production"):
        Settings(environment="production", auth_mode=AuthMode.NONE)


def test_production_validation_blocks_dev_auth():
    """Test that production environment blocks AUTH_MODE=dev."""
    with pytest.raises(ValueError, match="AUTH_MODE=dev is not allowed in production"):
        Settings(environment="production", auth_mode=AuthMode.DEV)


def test_production_allows_token_auth():
    settings = Settings(
        environment="production", auth_mode=AuthMode.TOKEN, admin_api_token="s3cret"
    )
    assert settings.auth_mode == AuthMode.TOKEN


def test_token_mode_requires_token():
    with pytest.raises(ValueError, match="requires ADMIN_API_TOKEN"):
        Settings(auth_mode=AuthMode.TOKEN)


def test_execution_timeout_must_be_below_stuck_timeout():
    with pytest.raises(ValueError, match="JOB_EXECUTION_TIMEOUT_S"):
        Settings(job_execution_timeout_s=300, job_stuck_timeout_s=300)


def test_max_concurrent_must_be_positive():
    with pytest.raises(ValueError, match="JOB_MAX_CONCURRENT"):
        Settings(job_max_concurrent=0)


def test_settings_read_from_environment(monkeypatch):
    monkeypatch.setenv("JOB_MAX_CONCURRENT", "7")
    monkeypatch.setenv("JOBS_ENABLED", "false")

    settings = Settings()

    assert settings.job_max_concurrent == 7
    assert settings.jobs_enabled is False


def test_settings_dependency_injection():
    """Test the get_settings dependency function."""
    settings = get_settings()
    assert isinstance(settings, Settings)
    assert settings.app_name == "Form Jobs"
