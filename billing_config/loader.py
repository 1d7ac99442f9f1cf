"""
Configuration Loader (``billing_config.loader``).

Responsibility
--------------
Loads tenant billing YAML files and parses them into typed
``billing_config.schema`` dataclasses.  Callers go through
``billing_config.get_tenant_settings()``; this module is the parsing
step underneath it.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` with the offending key in the
  message; unknown top-level keys are rejected rather than ignored.
* Amounts are parsed to ``Decimal`` through ``str`` so YAML floats never
  leak binary rounding into policies.
* ``compute_checksum`` is deterministic for identical file contents.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from billing_config.schema import EarlyPaymentSettings, LateFeeSettings, TenantBillingSettings

_TOP_LEVEL_KEYS = frozenset(
    {"tenant", "early_payment", "late_fee", "default_due_day", "distribution_method"}
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file; an empty file yields an empty dict."""
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return data


def parse_decimal(value: Any, key: str) -> Decimal:
    if isinstance(value, bool):
        raise ValueError(f"{key}: expected a number, got {value!r}")
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"{key}: expected a number, got {value!r}") from None


def parse_int(value: Any, key: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{key}: expected an integer, got {value!r}")
    return value


def parse_early_payment(data: dict[str, Any] | None) -> EarlyPaymentSettings:
    if not data:
        return EarlyPaymentSettings()
    cutoff = data.get("cutoff_day")
    return EarlyPaymentSettings(
        enabled=bool(data.get("enabled", False)),
        type=data.get("type"),
        value=parse_decimal(data.get("value", 0), "early_payment.value"),
        cutoff_day=parse_int(cutoff, "early_payment.cutoff_day") if cutoff is not None else None,
        apply_on=data.get("apply_on", "balance"),
    )


def parse_late_fee(data: dict[str, Any] | None) -> LateFeeSettings:
    if not data:
        return LateFeeSettings()
    max_rate = data.get("max_rate")
    return LateFeeSettings(
        enabled=bool(data.get("enabled", False)),
        type=data.get("type"),
        value=parse_decimal(data.get("value", 0), "late_fee.value"),
        grace_days=parse_int(data.get("grace_days", 0), "late_fee.grace_days"),
        apply_on=data.get("apply_on", "balance"),
        max_rate=parse_decimal(max_rate, "late_fee.max_rate") if max_rate is not None else None,
        compound=bool(data.get("compound", False)),
    )


def parse_tenant_settings(
    data: dict[str, Any],
    tenant: str,
    source_path: str | None = None,
) -> TenantBillingSettings:
    """Build TenantBillingSettings from a parsed YAML mapping."""
    unknown = set(data) - _TOP_LEVEL_KEYS
    if unknown:
        raise ValueError(f"Unknown billing settings keys: {', '.join(sorted(unknown))}")
    return TenantBillingSettings(
        tenant=str(data.get("tenant", tenant)),
        early_payment=parse_early_payment(data.get("early_payment")),
        late_fee=parse_late_fee(data.get("late_fee")),
        default_due_day=parse_int(data.get("default_due_day", 10), "default_due_day"),
        distribution_method=data.get("distribution_method", "by_aliquot"),
        source_path=source_path,
        checksum=compute_checksum(data),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON rendering of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def load_tenant_settings(path: Path, tenant: str) -> TenantBillingSettings:
    return parse_tenant_settings(load_yaml_file(path), tenant, source_path=str(path))
