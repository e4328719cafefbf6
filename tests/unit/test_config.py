"""
Unit tests for configuration.
"""

import pytest
from pydantic import ValidationError

from leasequeue.config import Settings
from leasequeue.constants import DEFAULT_ATTEMPTS, DEFAULT_COLLECTION, DEFAULT_TIMEOUT_SECONDS


class TestSettings:
    """Tests for Settings."""

    def test_defaults(self, monkeypatch):
        """Test the documented defaults."""
        for name in ("COLLECTION", "ATTEMPTS", "TIMEOUT"):
            monkeypatch.delenv(f"LEASEQUEUE_{name}", raising=False)
        settings = Settings(_env_file=None)

        assert settings.collection == DEFAULT_COLLECTION == "mongo_queue"
        assert settings.attempts == DEFAULT_ATTEMPTS == 3
        assert settings.timeout == DEFAULT_TIMEOUT_SECONDS == 300
        assert settings.archive_collection == "mongo_queue_purged"

    def test_environment_override(self, monkeypatch):
        """Test that prefixed environment variables are read."""
        monkeypatch.setenv("LEASEQUEUE_COLLECTION", "emails")
        monkeypatch.setenv("LEASEQUEUE_ATTEMPTS", "5")
        monkeypatch.setenv("LEASEQUEUE_TIMEOUT", "30")

        settings = Settings(_env_file=None)

        assert settings.collection == "emails"
        assert settings.attempts == 5
        assert settings.timeout == 30
        assert settings.archive_collection == "emails_purged"

    def test_frozen(self):
        """Test that settings cannot change after construction."""
        settings = Settings(_env_file=None)

        with pytest.raises(ValidationError):
            settings.attempts = 10
