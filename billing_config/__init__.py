"""
billing_config -- single public entrypoint for billing configuration.

Responsibility:
    Provides the ONLY ways to obtain configuration at runtime:
    ``get_tenant_settings()`` for a tenant's billing rules and
    ``get_runtime_settings()`` for process settings.  No other component
    reads configuration files or environment variables.

Architecture position:
    Configuration -- sits above ``billing_kernel`` and ``billing_engines``
    and below ``billing_services``.  The kernel MUST NEVER import from
    ``billing_config``; bridges in this package translate settings into
    engine policies.

Invariants enforced:
    - Settings are validated before they are returned.
    - A tenant without its own file gets ``default.yaml``.

Failure modes:
    - ``FatalConfigurationError`` -- no settings file, or validation failed.
    - ``ValueError`` -- malformed YAML values or environment variables.

Audit relevance:
    Every successful ``get_tenant_settings()`` call emits a
    ``BILLING_CONFIG_TRACE`` log entry with the tenant, source file and
    checksum of the settings used.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from uuid import UUID

from billing_config.loader import load_tenant_settings
from billing_config.schema import (
    EarlyPaymentSettings,
    LateFeeSettings,
    RuntimeSettings,
    TenantBillingSettings,
)
from billing_config.validator import ConfigValidationResult, validate_tenant_settings
from billing_kernel.exceptions import FatalConfigurationError
from billing_kernel.logging_config import get_logger

_logger = get_logger("config")

# Default tenant settings directory
_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"

DEFAULT_DATABASE_URL = "sqlite:///billing.db"

__all__ = [
    "ConfigValidationResult",
    "EarlyPaymentSettings",
    "LateFeeSettings",
    "RuntimeSettings",
    "TenantBillingSettings",
    "get_runtime_settings",
    "get_tenant_settings",
    "resolve_settings_path",
]


def resolve_settings_path(tenant_id: UUID | str, config_dir: Path) -> Path:
    """``<tenant_id>.yaml`` if present, else ``default.yaml``."""
    if not config_dir.is_dir():
        raise FatalConfigurationError(f"Billing configuration directory not found: {config_dir}")
    tenant_file = config_dir / f"{tenant_id}.yaml"
    if tenant_file.is_file():
        return tenant_file
    default_file = config_dir / "default.yaml"
    if default_file.is_file():
        return default_file
    raise FatalConfigurationError(
        f"No billing settings for tenant {tenant_id} and no default.yaml in {config_dir}"
    )


def get_tenant_settings(
    tenant_id: UUID | str,
    config_dir: Path | None = None,
) -> TenantBillingSettings:
    """Load and validate a tenant's billing settings.

    Args:
        tenant_id: The tenant (condominium) id.
        config_dir: Override the settings directory.  Defaults to the
            runtime ``config_dir`` or billing_config/sets/.

    Raises:
        FatalConfigurationError: If no file matches or validation fails.
    """
    if config_dir is None:
        runtime_dir = get_runtime_settings().config_dir
        config_dir = Path(runtime_dir) if runtime_dir else _DEFAULT_CONFIG_DIR

    path = resolve_settings_path(tenant_id, config_dir)
    settings = load_tenant_settings(path, str(tenant_id))

    validation = validate_tenant_settings(settings)
    for warning in validation.warnings:
        _logger.warning("billing_config_warning", extra={"warning": warning, "path": str(path)})
    if not validation.is_valid:
        raise FatalConfigurationError(
            f"Billing settings in {path} are invalid:\n"
            + "\n".join(f"  - {e}" for e in validation.errors)
        )

    _logger.info(
        "BILLING_CONFIG_TRACE",
        extra={
            "trace_type": "BILLING_CONFIG_TRACE",
            "tenant_id": str(tenant_id),
            "config_path": str(path),
            "checksum": settings.checksum,
            "early_payment_enabled": settings.early_payment.enabled,
            "late_fee_enabled": settings.late_fee.enabled,
        },
    )
    return settings


def get_runtime_settings(environ: Mapping[str, str] | None = None) -> RuntimeSettings:
    """Read process settings from the environment.

    Variables: BILLING_DATABASE_URL, BILLING_MAX_RETRIES (>= 0),
    BILLING_LOG_LEVEL, BILLING_CONFIG_DIR.
    """
    env = os.environ if environ is None else environ

    raw_retries = env.get("BILLING_MAX_RETRIES", "3")
    try:
        max_retries = int(raw_retries)
    except ValueError:
        raise ValueError(f"BILLING_MAX_RETRIES must be an integer, got {raw_retries!r}") from None
    if max_retries < 0:
        raise ValueError("BILLING_MAX_RETRIES cannot be negative")

    return RuntimeSettings(
        database_url=env.get("BILLING_DATABASE_URL", DEFAULT_DATABASE_URL),
        max_retries=max_retries,
        log_level=env.get("BILLING_LOG_LEVEL", "INFO").upper(),
        config_dir=env.get("BILLING_CONFIG_DIR") or None,
    )
