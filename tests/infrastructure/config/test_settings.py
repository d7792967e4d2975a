"""Tests for Settings validation"""

import pytest
from pydantic import ValidationError

from mailsync.infrastructure.config.settings import Settings

REQUIRED = {
    "database_url": "sqlite+aiosqlite:///:memory:",
    "secret_key": "secret",
    "encryption_salt": "salt",
    "_env_file": None,
}


class TestSettings:
    """Tests for configuration defaults and validation"""

    def test_defaults(self):
        settings = Settings(**REQUIRED)

        assert settings.quota_units_per_window == 150
        assert settings.quota_window_seconds == 1.0
        assert settings.sync_batch_size == 50
        assert settings.token_refresh_margin_seconds == 300

    def test_quota_cost_lookup(self):
        settings = Settings(**REQUIRED, gmail_get_cost=7)

        assert settings.quota_cost("gmail", "get") == 7
        assert settings.quota_cost("gmail", "list") == 5
        with pytest.raises(ValueError):
            settings.quota_cost("outlook", "get")

    @pytest.mark.parametrize("missing", ["database_url", "secret_key", "encryption_salt"])
    def test_required_values(self, missing):
        values = {**REQUIRED, missing: ""}

        with pytest.raises(ValidationError):
            Settings(**values)

    def test_cost_above_budget_rejected(self):
        with pytest.raises(ValidationError):
            Settings(**REQUIRED, quota_units_per_window=50, gmail_send_cost=100)

    def test_non_positive_values_rejected(self):
        with pytest.raises(ValidationError):
            Settings(**REQUIRED, sync_batch_size=0)
        with pytest.raises(ValidationError):
            Settings(**REQUIRED, quota_window_seconds=0)
