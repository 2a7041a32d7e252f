"""
Tests for YAML configuration loading and validation.
"""

import pytest

from supply_config import DEFAULT_CONFIG_PATH, get_active_config
from supply_config.loader import parse_config
from supply_config.schema import NumberPrefixes, SupplyConfig


class TestDefaultConfig:
    def test_bundled_defaults(self):
        config = get_active_config()

        assert config.branches == ("Slemany", "Erbil")
        assert config.default_branch == "Slemany"
        assert config.currency == "IQD"
        assert config.money_places == 2
        assert config.max_conflict_retries == 3
        assert config.number_prefixes.sale_bill == "SB"
        assert len(config.checksum) == 64

    def test_load_emits_trace(self, captured_logs):
        get_active_config(DEFAULT_CONFIG_PATH)

        traces = [r for r in captured_logs() if r["message"] == "SUPPLY_CONFIG_TRACE"]
        assert traces[-1]["config_id"] == "default"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path / "nope.yaml")

    def test_custom_file(self, tmp_path):
        path = tmp_path / "custom.yaml"
        path.write_text(
            "config_id: test\n"
            "branches: [Erbil, Duhok]\n"
            "max_conflict_retries: 0\n"
            "number_prefixes:\n"
            "  payment: PAY\n"
        )

        config = get_active_config(path)

        assert config.config_id == "test"
        assert config.default_branch == "Erbil"
        assert config.is_known_branch("Duhok")
        assert not config.is_known_branch("Slemany")
        assert config.number_prefixes.payment == "PAY"
        assert config.number_prefixes.transport == "TR"

    def test_top_level_must_be_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")

        with pytest.raises(ValueError, match="mapping"):
            get_active_config(path)


class TestValidation:
    def test_unknown_key(self):
        with pytest.raises(ValueError, match="Unknown configuration keys"):
            parse_config({"branchez": ["A"]})

    def test_empty_branches(self):
        with pytest.raises(ValueError, match="branches"):
            parse_config({"branches": []})

    def test_default_branch_must_be_listed(self):
        with pytest.raises(ValueError, match="default_branch"):
            parse_config({"branches": ["A", "B"], "default_branch": "C"})

    def test_negative_retries(self):
        with pytest.raises(ValueError, match="max_conflict_retries"):
            SupplyConfig(max_conflict_retries=-1)

    def test_retries_must_be_integer(self):
        with pytest.raises(ValueError, match="integer"):
            parse_config({"max_conflict_retries": "three"})

    def test_prefixes_must_be_distinct(self):
        with pytest.raises(ValueError, match="distinct"):
            NumberPrefixes(purchase_bill="B", sale_bill="B")

    def test_prefix_may_not_contain_separator(self):
        with pytest.raises(ValueError, match="'-'"):
            NumberPrefixes(payment="P-Y")

    def test_checksum_tracks_content(self):
        a = parse_config({"currency": "IQD"})
        b = parse_config({"currency": "USD"})

        assert a.checksum != b.checksum
