"""
Unit tests for sync configuration.
"""

import importlib
import json
import os
from unittest.mock import MagicMock, patch

import pytest

import marketsync.config as config_module

DB_ENV = {
    "DB_HOST": "localhost",
    "DB_NAME": "marketsync",
    "DB_USER": "sync",
    "DB_PASSWORD": "secret",
}


def _reload_config():
    """
    Reload the marketsync.config module to ensure environment changes are picked up.
    """
    importlib.reload(config_module)
    return config_module.Config


class TestConfig:
    """Test environment driven settings and per-job validation."""

    @patch.dict(os.environ, {}, clear=True)
    def test_defaults(self):
        """Test provider defaults match the documented limits."""
        Config = _reload_config()
        assert Config.WB_ORDERS_PAGE_LIMIT == 80000
        assert Config.WB_ORDERS_PAGINATION_DELAY == 61.0
        assert Config.MS_NORMAL_PER_MINUTE == 45
        assert Config.MS_HEAVY_PER_MINUTE == 5
        assert Config.OZON_STOCKS_PAGE_LIMIT == 100
        assert Config.REMAINS_POLL_INTERVAL == 5.0
        assert Config.EXCLUDE_TODAY is True

    @patch.dict(os.environ, {"REMAINS_READY_DELAY": "180", "EXCLUDE_TODAY": "false"}, clear=True)
    def test_overrides_from_environment(self):
        """Test report waits and window flags are configurable."""
        Config = _reload_config()
        assert Config.REMAINS_READY_DELAY == 180.0
        assert Config.EXCLUDE_TODAY is False

    @patch.dict(os.environ, {**DB_ENV, "WB_API_TOKEN": "token"}, clear=True)
    def test_validate_success(self):
        """Test validation passes when the job's variables are set."""
        Config = _reload_config()
        Config.validate("wb-orders")

    @patch.dict(os.environ, {"WB_API_TOKEN": "token"}, clear=True)
    def test_validate_missing_database(self):
        """Test validation names every missing database variable."""
        Config = _reload_config()
        with pytest.raises(ValueError) as exc_info:
            Config.validate("wb-cards")

        error_msg = str(exc_info.value)
        for name in DB_ENV:
            assert name in error_msg

    @patch.dict(os.environ, DB_ENV, clear=True)
    def test_validate_missing_provider_credentials(self):
        """Test validation only asks for the credentials the job needs."""
        Config = _reload_config()
        with pytest.raises(ValueError) as exc_info:
            Config.validate("ozon-stocks")

        error_msg = str(exc_info.value)
        assert "OZON_CLIENT_ID" in error_msg
        assert "OZON_API_KEY" in error_msg
        assert "WB_API_TOKEN" not in error_msg

    @patch.dict(os.environ, {"DB_SECRET_ARN": "arn:aws:secretsmanager:eu-west-1:1:secret:db", "MS_TOKEN": "t"}, clear=True)
    def test_validate_secret_arn_replaces_database_variables(self):
        """Test a secret ARN satisfies the database requirements."""
        Config = _reload_config()
        Config.validate("moysklad")

    @patch.dict(os.environ, DB_ENV, clear=True)
    def test_validate_unknown_job(self):
        """Test validation rejects unknown jobs."""
        Config = _reload_config()
        with pytest.raises(ValueError, match="Unsupported job"):
            Config.validate("amazon-orders")

    @patch.dict(os.environ, DB_ENV, clear=True)
    def test_connection_details_from_environment(self):
        """Test connection details are read from the environment."""
        Config = _reload_config()
        details = Config.get_db_connection_details()
        assert details["host"] == "localhost"
        assert details["dbname"] == "marketsync"
        assert details["port"] == 5432
        assert details["connect_timeout"] == 5

    @patch.dict(os.environ, {"DB_SECRET_ARN": "arn:aws:secretsmanager:eu-west-1:1:secret:db"}, clear=True)
    def test_connection_details_from_secret(self):
        """Test missing credentials are filled from Secrets Manager."""
        Config = _reload_config()
        mock_client = MagicMock()
        mock_client.get_secret_value.return_value = {
            "SecretString": json.dumps(
                {
                    "host": "db.internal",
                    "port": 5433,
                    "dbname": "sync",
                    "username": "admin",
                    "password": "pw",
                }
            )
        }
        with patch("boto3.client", return_value=mock_client) as mock_boto:
            details = Config.get_db_connection_details()
            Config.get_db_connection_details()

        mock_boto.assert_called_once_with("secretsmanager")
        assert details["host"] == "db.internal"
        assert details["port"] == 5433
        assert details["user"] == "admin"
        assert details["password"] == "pw"

    @patch.dict(os.environ, {"DB_HOST": "localhost"}, clear=True)
    def test_connection_details_missing(self):
        """Test missing credentials raise a ValueError."""
        Config = _reload_config()
        with pytest.raises(ValueError, match="dbname"):
            Config.get_db_connection_details()
