"""
Unit tests for configuration loading and validation.

Tests strict validation and error handling for credit policy files.
"""

import os
import shutil
import tempfile
from datetime import timezone

import pytest
import yaml

from scan_credits.config.loader import (
    CreditPolicy,
    database_path,
    env_secret,
    load_credit_policy,
    resolve_timezone
)
from scan_credits.core.catalog import OperationKind


class TestCreditPolicy:
    """Test CreditPolicy defaults and validation."""

    def test_defaults(self):
        policy = CreditPolicy()
        assert policy.starter_grant == 3
        assert policy.daily_ceiling == 10
        assert policy.timezone == "UTC"
        assert policy.cost_of(OperationKind.BASIC) == 1
        assert policy.cost_of(OperationKind.DEEP) == 3
        assert policy.cost_of(OperationKind.ULTRA) == 10

    def test_invalid_values(self):
        with pytest.raises(ValueError, match="starter_grant"):
            CreditPolicy(starter_grant=-1)
        with pytest.raises(ValueError, match="daily_ceiling"):
            CreditPolicy(daily_ceiling=0)
        with pytest.raises(ValueError, match="Unknown timezone"):
            CreditPolicy(timezone="Mars/Olympus_Mons")

    def test_missing_operation_cost(self):
        with pytest.raises(ValueError, match="Missing operation costs"):
            CreditPolicy(operation_costs={OperationKind.BASIC: 1})

    def test_non_positive_operation_cost(self):
        costs = {OperationKind.BASIC: 0, OperationKind.DEEP: 3, OperationKind.ULTRA: 10}
        with pytest.raises(ValueError, match="cost of 'basic'"):
            CreditPolicy(operation_costs=costs)

    def test_resolve_timezone_utc_case_insensitive(self):
        assert resolve_timezone("utc") is timezone.utc


class TestConfigLoading:
    """Test configuration loading and validation."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        """Clean up test environment."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write_config(self, config_data, filename: str = "policy.yaml") -> str:
        """Write configuration data to temporary file."""
        config_path = os.path.join(self.temp_dir, filename)
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump(config_data, f)
        return config_path

    def test_valid_config_loads_correctly(self):
        path = self._write_config({
            "starter_grant": 5,
            "daily_ceiling": 20,
            "timezone": "UTC",
            "operation_costs": {"basic": 2, "ultra": 15}
        })

        policy = load_credit_policy(path)

        assert policy.starter_grant == 5
        assert policy.daily_ceiling == 20
        assert policy.cost_of(OperationKind.BASIC) == 2
        assert policy.cost_of(OperationKind.DEEP) == 3
        assert policy.cost_of(OperationKind.ULTRA) == 15

    def test_partial_config_uses_defaults(self):
        policy = load_credit_policy(self._write_config({"daily_ceiling": 5}))
        assert policy.daily_ceiling == 5
        assert policy.starter_grant == 3

    def test_empty_file_uses_defaults(self):
        path = os.path.join(self.temp_dir, "empty.yaml")
        with open(path, 'w', encoding='utf-8') as f:
            f.write("")
        assert load_credit_policy(path) == CreditPolicy()

    def test_missing_file(self):
        with pytest.raises(FileNotFoundError, match="Credit policy file not found"):
            load_credit_policy(os.path.join(self.temp_dir, "nope.yaml"))

    def test_invalid_yaml(self):
        path = os.path.join(self.temp_dir, "bad.yaml")
        with open(path, 'w', encoding='utf-8') as f:
            f.write("starter_grant: [unclosed")
        with pytest.raises(yaml.YAMLError):
            load_credit_policy(path)

    def test_non_mapping_rejected(self):
        with pytest.raises(ValueError, match="must be a mapping"):
            load_credit_policy(self._write_config([1, 2, 3]))

    def test_unknown_top_level_key(self):
        with pytest.raises(ValueError, match="Unknown configuration keys"):
            load_credit_policy(self._write_config({"daily_limit": 10}))

    def test_non_integer_values(self):
        with pytest.raises(ValueError, match="'starter_grant' must be an integer"):
            load_credit_policy(self._write_config({"starter_grant": "3"}))
        with pytest.raises(ValueError, match="'daily_ceiling' must be an integer"):
            load_credit_policy(self._write_config({"daily_ceiling": True}))

    def test_out_of_range_values(self):
        with pytest.raises(ValueError, match="daily_ceiling must be > 0"):
            load_credit_policy(self._write_config({"daily_ceiling": 0}))

    def test_timezone_must_be_string(self):
        with pytest.raises(ValueError, match="'timezone' must be a string"):
            load_credit_policy(self._write_config({"timezone": 5}))

    def test_unknown_operation_kind(self):
        with pytest.raises(ValueError, match="Unknown operation kind 'mega'"):
            load_credit_policy(self._write_config({"operation_costs": {"mega": 50}}))

    def test_invalid_operation_cost(self):
        with pytest.raises(ValueError, match="must be a positive integer"):
            load_credit_policy(self._write_config({"operation_costs": {"deep": -3}}))
        with pytest.raises(ValueError, match="'operation_costs' must be a dictionary"):
            load_credit_policy(self._write_config({"operation_costs": [1, 3, 10]}))


class TestEnvironment:
    """Test environment-derived settings."""

    def test_database_path_default(self, monkeypatch):
        monkeypatch.delenv("SCAN_CREDITS_DB", raising=False)
        assert database_path() == "scan_credits.db"

    def test_database_path_from_env(self, monkeypatch):
        monkeypatch.setenv("SCAN_CREDITS_DB", "/tmp/credits.db")
        assert database_path() == "/tmp/credits.db"

    def test_blank_secret_is_unset(self, monkeypatch):
        monkeypatch.setenv("STRIPE_SECRET_KEY", "  ")
        assert env_secret("STRIPE_SECRET_KEY") is None
        monkeypatch.setenv("STRIPE_SECRET_KEY", "sk_test_123")
        assert env_secret("STRIPE_SECRET_KEY") == "sk_test_123"
