"""
Tests for tenant settlement configuration loading.
"""

from decimal import Decimal

import pytest

from settlement_config import get_tenant_config
from settlement_config.loader import compute_checksum, load_config_file, parse_tenant_config
from settlement_kernel.domain.dtos import Direction, Strategy
from settlement_kernel.exceptions import TenantConfigNotFoundError

TENANT_BLOCK = """\
config_id: {config_id}
version: 3
tenants:
  - tenant_id: {tenant}
    base_currency: eur
    default_strategy: pro-rata
    counter_accounts:
      receipt: "1100"
{extra}"""


def _write_set(directory, name, tenant="globex", config_id="regional", extra=""):
    path = directory / f"{name}.yaml"
    path.write_text(TENANT_BLOCK.format(tenant=tenant, config_id=config_id, extra=extra))
    return path


class TestDefaultSets:

    def test_acme(self):
        config = get_tenant_config("acme")

        assert config.base_currency == "USD"
        assert config.default_strategy is Strategy.FIFO
        assert config.rounding_tolerance is None
        assert config.config_id == "default"

    def test_counter_accounts_in_preference_order(self):
        config = get_tenant_config("acme")

        assert config.counter_account_codes(Direction.RECEIPT) == ("1200", "4000")
        assert config.counter_account_codes(Direction.PAYMENT) == ("2000", "5000")

    def test_tenant_without_fallbacks(self):
        config = get_tenant_config("accra-traders")

        assert config.counter_account_codes(Direction.RECEIPT) == ("1200",)
        assert config.rounding_tolerance == Decimal("0.05")

    def test_unknown_tenant(self):
        with pytest.raises(TenantConfigNotFoundError) as exc_info:
            get_tenant_config("globex")

        assert exc_info.value.tenant_id == "globex"

    def test_trace_logged(self, captured_logs):
        config = get_tenant_config("acme")

        traces = [r for r in captured_logs() if r["message"] == "SETTLEMENT_CONFIG_TRACE"]
        assert len(traces) == 1
        assert traces[0]["tenant_id"] == "acme"
        assert traces[0]["checksum"] == config.checksum


class TestCustomConfigDir:

    def test_loads_from_directory(self, tmp_path):
        _write_set(tmp_path, "regional")

        config = get_tenant_config("globex", config_dir=tmp_path)

        assert config.base_currency == "EUR"
        assert config.default_strategy is Strategy.PRO_RATA
        assert config.config_id == "regional"
        assert config.version == 3
        assert config.counter_account_codes(Direction.PAYMENT) == ()

    def test_duplicate_tenant_rejected(self, tmp_path):
        _write_set(tmp_path, "a")
        _write_set(tmp_path, "b")

        with pytest.raises(ValueError, match="declared in 2"):
            get_tenant_config("globex", config_dir=tmp_path)

    def test_float_tolerance_rejected(self, tmp_path):
        """An unquoted 0.05 is parsed by YAML as a float."""
        _write_set(tmp_path, "regional", extra="    rounding_tolerance: 0.05\n")

        with pytest.raises(ValueError, match="quoted decimal"):
            load_config_file(tmp_path / "regional.yaml")

    def test_quoted_tolerance_accepted(self, tmp_path):
        _write_set(tmp_path, "regional", extra='    rounding_tolerance: "0.02"\n')

        [config] = load_config_file(tmp_path / "regional.yaml")

        assert config.rounding_tolerance == Decimal("0.02")


class TestParseTenantConfig:

    def test_missing_currency(self):
        with pytest.raises(KeyError):
            parse_tenant_config({"tenant_id": "x"})

    def test_bad_currency(self):
        with pytest.raises(ValueError):
            parse_tenant_config({"tenant_id": "x", "base_currency": "XXQ"})

    def test_bad_strategy(self):
        with pytest.raises(ValueError):
            parse_tenant_config({"tenant_id": "x", "base_currency": "USD", "default_strategy": "LIFO"})

    def test_negative_tolerance(self):
        with pytest.raises(ValueError, match="negative"):
            parse_tenant_config({"tenant_id": "x", "base_currency": "USD", "rounding_tolerance": "-0.01"})

    def test_checksum_independent_of_key_order(self):
        first = {"tenant_id": "x", "base_currency": "USD"}
        second = {"base_currency": "USD", "tenant_id": "x"}

        assert compute_checksum(first) == compute_checksum(second)
        assert parse_tenant_config(first).checksum == parse_tenant_config(second).checksum
