"""
Import-boundary enforcement.

1. Kernel boundary      -- billing_kernel/** may not import billing_services,
                           billing_config or billing_engines.
2. Engine purity        -- billing_engines/** may not import the ORM, kernel
                           models/services/selectors, services or config.
3. Engine no-impure     -- billing_engines/** may not read the wall clock or
                           the environment.
4. Config direction     -- billing_config/** may not import billing_services.

All scanning is done via AST; these tests are read-only.
"""

import ast
from pathlib import Path

from billing_kernel.invariants import FORBIDDEN_KERNEL_IMPORTS

ROOT = Path(__file__).resolve().parents[2]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _python_files(package: str) -> list[Path]:
    """All .py files under *package*, sorted for deterministic order."""
    return sorted((ROOT / package).rglob("*.py"))


def _parse(filepath: Path) -> ast.AST | None:
    try:
        return ast.parse(filepath.read_text(), filename=str(filepath))
    except (SyntaxError, UnicodeDecodeError):
        return None


def _extract_imports(filepath: Path) -> list[tuple[int, str]]:
    """Return (line_number, module_string) for every import in *filepath*."""
    tree = _parse(filepath)
    if tree is None:
        return []

    results: list[tuple[int, str]] = []
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            for alias in node.names:
                results.append((node.lineno, alias.name))
        elif isinstance(node, ast.ImportFrom):
            if node.module:
                results.append((node.lineno, node.module))
    return results


def _extract_attribute_calls(filepath: Path) -> list[tuple[int, str]]:
    """Return (line_number, 'receiver.attr') for two-level attribute references."""
    tree = _parse(filepath)
    if tree is None:
        return []
    return [
        (node.lineno, f"{node.value.id}.{node.attr}")
        for node in ast.walk(tree)
        if isinstance(node, ast.Attribute) and isinstance(node.value, ast.Name)
    ]


def _matches_any(module: str, prefixes: tuple[str, ...]) -> bool:
    """True if *module* equals or is a child of any prefix."""
    return any(module == prefix or module.startswith(f"{prefix}.") for prefix in prefixes)


def _violations(package: str, forbidden: tuple[str, ...]) -> list[str]:
    return [
        f"  {filepath.relative_to(ROOT)}:{lineno} imports '{module}'"
        for filepath in _python_files(package)
        for lineno, module in _extract_imports(filepath)
        if _matches_any(module, forbidden)
    ]


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------

class TestKernelBoundary:

    def test_files_are_scanned(self):
        assert _python_files("billing_kernel")

    def test_kernel_does_not_import_upper_layers(self):
        violations = _violations("billing_kernel", FORBIDDEN_KERNEL_IMPORTS + ("billing_engines",))
        assert not violations, (
            "Kernel boundary violation -- billing_kernel/** must not import "
            "services, config or engines:\n" + "\n".join(violations)
        )


class TestEnginePurity:

    FORBIDDEN_PREFIXES = (
        "sqlalchemy",
        "psycopg2",
        "sqlite3",
        "billing_kernel.models",
        "billing_kernel.services",
        "billing_kernel.selectors",
        "billing_services",
        "billing_config",
    )

    def test_engine_files_have_no_forbidden_imports(self):
        violations = _violations("billing_engines", self.FORBIDDEN_PREFIXES)
        assert not violations, (
            "Engine purity violation -- billing_engines/** must not import "
            "the ORM, kernel models or services:\n" + "\n".join(violations)
        )


class TestEngineNoImpureFunctions:

    IMPURE = ("datetime.now", "datetime.utcnow", "date.today", "os.environ", "os.getenv")

    def test_no_clock_or_environment_reads(self):
        violations = [
            f"  {filepath.relative_to(ROOT)}:{lineno} uses '{attr}'"
            for filepath in _python_files("billing_engines")
            for lineno, attr in _extract_attribute_calls(filepath)
            if attr in self.IMPURE
        ]
        assert not violations, "Engines must be pure:\n" + "\n".join(violations)


class TestConfigDirection:

    def test_config_does_not_import_services(self):
        violations = _violations("billing_config", ("billing_services",))
        assert not violations, "\n".join(violations)
