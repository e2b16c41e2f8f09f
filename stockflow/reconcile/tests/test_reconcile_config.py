"""
Tests for configuration loading.

Run with: pytest stockflow/reconcile/tests/test_reconcile_config.py -v
"""

import json

import pytest

from stockflow.reconcile.config import (
    DEFAULT_CONFIG_PATH,
    ConfigError,
    default_config,
    load_config,
    normalize_category,
    parse_config,
)
from stockflow.reconcile.models import IssueCategory


@pytest.fixture
def raw_config():
    """Decoded default config, safe to mutate."""
    return json.loads(DEFAULT_CONFIG_PATH.read_text())


class TestLoadConfig:

    def test_default_config_loads(self):
        config = load_config(DEFAULT_CONFIG_PATH)
        assert config.fields.item_code[0] == "itemCode"
        assert config.settings.min_contains_length == 3

    def test_default_config_is_cached(self):
        assert default_config() is default_config()

    def test_accepted_qty_prefers_accepted_over_received(self):
        fields = default_config().fields.purchase_accepted_qty
        assert fields.index("qtyAccepted") < fields.index("qtyReceived")

    def test_load_from_file(self, tmp_path, raw_config):
        raw_config["settings"]["min_contains_length"] = 5
        path = tmp_path / "custom.json"
        path.write_text(json.dumps(raw_config))

        config = load_config(path)
        assert config.settings.min_contains_length == 5


class TestConfigValidation:
    """Bad configuration fails at load time with ConfigError."""

    def test_missing_field_list(self, raw_config):
        del raw_config["fields"]["issued_qty"]
        with pytest.raises(ConfigError, match="issued_qty"):
            parse_config(raw_config)

    def test_empty_field_list(self, raw_config):
        raw_config["fields"]["item_code"] = []
        with pytest.raises(ConfigError):
            parse_config(raw_config)

    def test_blank_field_name(self, raw_config):
        raw_config["fields"]["item_name"] = ["itemName", "  "]
        with pytest.raises(ConfigError):
            parse_config(raw_config)

    def test_unknown_category(self, raw_config):
        raw_config["category_aliases"]["from-nowhere"] = ["Nowhere"]
        with pytest.raises(ConfigError, match="from-nowhere"):
            parse_config(raw_config)

    def test_aliases_must_be_lists(self, raw_config):
        raw_config["category_aliases"]["from-vendor"] = "Vendor"
        with pytest.raises(ConfigError):
            parse_config(raw_config)

    @pytest.mark.parametrize("value", [0, -1, "3", True])
    def test_invalid_min_contains_length(self, raw_config, value):
        raw_config["settings"]["min_contains_length"] = value
        with pytest.raises(ConfigError):
            parse_config(raw_config)

    def test_root_must_be_object(self):
        with pytest.raises(ConfigError):
            parse_config([])

    def test_config_error_is_value_error(self):
        assert issubclass(ConfigError, ValueError)


class TestNormalizeCategory:

    @pytest.fixture
    def config(self):
        return default_config()

    def test_transaction_type_labels(self, config):
        assert normalize_category("Purchase", config) == IssueCategory.FROM_PURCHASE
        assert normalize_category("Vendor", config) == IssueCategory.FROM_VENDOR
        assert normalize_category("Stock", config) == IssueCategory.FROM_RAW_STOCK

    def test_case_and_whitespace_insensitive(self, config):
        assert normalize_category("  purchase ", config) == IssueCategory.FROM_PURCHASE

    def test_category_values_map_to_themselves(self, config):
        assert normalize_category("from-raw-stock", config) == IssueCategory.FROM_RAW_STOCK

    def test_unknown_and_blank(self, config):
        assert normalize_category("Scrap", config) is None
        assert normalize_category("", config) is None
        assert normalize_category(None, config) is None
