"""
Tests for billing configuration: loading, validation, bridges and the
runtime settings read from the environment.
"""

import textwrap
from decimal import Decimal
from uuid import uuid4

import pytest
import yaml

from billing_config import (
    get_runtime_settings,
    get_tenant_settings,
    resolve_settings_path,
)
from billing_config.bridges import (
    build_distribution_method,
    build_early_payment_policy,
    build_late_fee_policy,
)
from billing_config.loader import compute_checksum, load_tenant_settings, parse_tenant_settings
from billing_config.schema import LateFeeSettings, TenantBillingSettings
from billing_config.validator import validate_tenant_settings
from billing_engines.billing_rules import ApplyOn, PolicyType
from billing_engines.distribution import DistributionMethod
from billing_kernel.exceptions import FatalConfigurationError


def _write(directory, name, body):
    path = directory / name
    path.write_text(textwrap.dedent(body))
    return path


TENANT_YAML = """
    tenant: torre-norte
    early_payment:
      enabled: true
      type: percentage
      value: 5
      cutoff_day: 5
    late_fee:
      enabled: true
      type: fixed_amount
      value: "25.50"
      grace_days: 3
      apply_on: total
    default_due_day: 15
    distribution_method: equal
"""


class TestLoader:

    def test_parses_tenant_file(self, tmp_path):
        path = _write(tmp_path, "t.yaml", TENANT_YAML)

        settings = load_tenant_settings(path, "fallback")

        assert settings.tenant == "torre-norte"
        assert settings.early_payment.value == Decimal("5")
        assert settings.late_fee.value == Decimal("25.50")
        assert settings.late_fee.apply_on == "total"
        assert settings.default_due_day == 15
        assert settings.source_path == str(path)

    def test_float_values_parsed_through_str(self):
        settings = parse_tenant_settings(
            {"late_fee": {"enabled": True, "type": "percentage", "value": 1.1}}, "t"
        )
        assert settings.late_fee.value == Decimal("1.1")

    def test_missing_sections_default_to_disabled(self):
        settings = parse_tenant_settings({}, "t")
        assert settings.tenant == "t"
        assert not settings.early_payment.enabled
        assert not settings.late_fee.enabled
        assert settings.distribution_method == "by_aliquot"

    def test_unknown_key_rejected(self):
        with pytest.raises(ValueError, match="interest_rate"):
            parse_tenant_settings({"interest_rate": 2}, "t")

    @pytest.mark.parametrize(
        "data",
        [
            {"late_fee": {"value": "abc"}},
            {"late_fee": {"grace_days": "5"}},
            {"default_due_day": True},
        ],
    )
    def test_bad_values(self, data):
        with pytest.raises(ValueError):
            parse_tenant_settings(data, "t")

    def test_non_mapping_file(self, tmp_path):
        path = _write(tmp_path, "t.yaml", "- a\n- b\n")
        with pytest.raises(ValueError):
            load_tenant_settings(path, "t")

    def test_malformed_yaml(self, tmp_path):
        path = _write(tmp_path, "t.yaml", "late_fee: [unclosed\n")
        with pytest.raises(yaml.YAMLError):
            load_tenant_settings(path, "t")

    def test_checksum_ignores_key_order(self):
        assert compute_checksum({"a": 1, "b": 2}) == compute_checksum({"b": 2, "a": 1})
        assert compute_checksum({"a": 1}) != compute_checksum({"a": 2})


class TestValidator:

    def test_default_settings_are_valid(self):
        assert validate_tenant_settings(TenantBillingSettings(tenant="t")).is_valid

    def test_enabled_policy_needs_type_and_value(self):
        settings = TenantBillingSettings(tenant="t", late_fee=LateFeeSettings(enabled=True))
        result = validate_tenant_settings(settings)

        assert not result.is_valid
        assert any("late_fee.type" in e for e in result.errors)
        assert any("late_fee.value" in e for e in result.errors)

    def test_percentage_above_hundred(self):
        settings = parse_tenant_settings(
            {"late_fee": {"enabled": True, "type": "percentage", "value": 150}}, "t"
        )
        assert not validate_tenant_settings(settings).is_valid

    @pytest.mark.parametrize("day", [0, 29, 31])
    def test_due_day_range(self, day):
        settings = parse_tenant_settings({"default_due_day": day}, "t")
        assert not validate_tenant_settings(settings).is_valid

    def test_unknown_distribution_method(self):
        settings = parse_tenant_settings({"distribution_method": "by_area"}, "t")
        assert not validate_tenant_settings(settings).is_valid

    def test_compound_without_cap_warns(self):
        settings = parse_tenant_settings(
            {"late_fee": {"enabled": True, "type": "percentage", "value": 2, "compound": True}}, "t"
        )
        result = validate_tenant_settings(settings)
        assert result.is_valid
        assert result.warnings


class TestBridges:

    def test_policies_built_from_settings(self, tmp_path):
        settings = load_tenant_settings(_write(tmp_path, "t.yaml", TENANT_YAML), "t")

        early = build_early_payment_policy(settings)
        late = build_late_fee_policy(settings)

        assert early.type == PolicyType.PERCENTAGE
        assert early.cutoff_day == 5
        assert late.type == PolicyType.FIXED_AMOUNT
        assert late.value == Decimal("25.50")
        assert late.apply_on == ApplyOn.TOTAL
        assert build_distribution_method(settings) == DistributionMethod.EQUAL

    def test_disabled_policy_is_none(self):
        settings = TenantBillingSettings(tenant="t")
        assert build_early_payment_policy(settings) is None
        assert build_late_fee_policy(settings) is None


class TestGetTenantSettings:

    def test_tenant_file_preferred(self, tmp_path):
        tenant = uuid4()
        _write(tmp_path, "default.yaml", "tenant: default\n")
        _write(tmp_path, f"{tenant}.yaml", TENANT_YAML)

        assert resolve_settings_path(tenant, tmp_path).name == f"{tenant}.yaml"
        assert get_tenant_settings(tenant, tmp_path).tenant == "torre-norte"

    def test_default_fallback(self, tmp_path):
        _write(tmp_path, "default.yaml", "tenant: default\n")
        assert get_tenant_settings(uuid4(), tmp_path).tenant == "default"

    def test_shipped_default_is_valid(self):
        settings = get_tenant_settings(uuid4())

        policy = build_late_fee_policy(settings)
        assert policy.value == Decimal("1.5")
        assert policy.grace_days == 5
        assert policy.max_rate == Decimal("20")

    def test_trace_logged(self, tmp_path, captured_logs):
        _write(tmp_path, "default.yaml", "tenant: default\n")
        get_tenant_settings("abc", tmp_path)

        trace = [r for r in captured_logs() if r["message"] == "BILLING_CONFIG_TRACE"][0]
        assert trace["tenant_id"] == "abc"
        assert len(trace["checksum"]) == 64

    def test_no_files(self, tmp_path):
        with pytest.raises(FatalConfigurationError):
            get_tenant_settings(uuid4(), tmp_path)

    def test_missing_directory(self, tmp_path):
        with pytest.raises(FatalConfigurationError):
            get_tenant_settings(uuid4(), tmp_path / "absent")

    def test_invalid_settings_are_fatal(self, tmp_path):
        _write(tmp_path, "default.yaml", "default_due_day: 40\n")

        with pytest.raises(FatalConfigurationError) as exc_info:
            get_tenant_settings(uuid4(), tmp_path)
        assert "default_due_day" in str(exc_info.value)


class TestRuntimeSettings:

    def test_defaults(self):
        settings = get_runtime_settings({})
        assert settings.max_retries == 3
        assert settings.log_level == "INFO"
        assert settings.config_dir is None
        assert settings.database_url.startswith("sqlite")

    def test_from_environment(self):
        settings = get_runtime_settings(
            {
                "BILLING_DATABASE_URL": "postgresql://localhost/billing",
                "BILLING_MAX_RETRIES": "5",
                "BILLING_LOG_LEVEL": "debug",
                "BILLING_CONFIG_DIR": "/etc/billing",
            }
        )
        assert settings.database_url == "postgresql://localhost/billing"
        assert settings.max_retries == 5
        assert settings.log_level == "DEBUG"
        assert settings.config_dir == "/etc/billing"

    @pytest.mark.parametrize("value", ["three", "-1"])
    def test_bad_retries(self, value):
        with pytest.raises(ValueError):
            get_runtime_settings({"BILLING_MAX_RETRIES": value})
