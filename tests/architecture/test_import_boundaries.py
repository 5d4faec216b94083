"""
Import-boundary enforcement for the approval packages.

1. Engine purity       -- approval_engines/** may not import DB, ORM, kernel
                          models/db/services, batch, or config layers.
2. Engine no-impure    -- approval_engines/** may not read the wall clock or
                          the environment.
3. Domain purity       -- approval_kernel/domain/** imports nothing outside
                          the domain and the exception module.
4. Kernel independence -- approval_kernel/** never imports approval_config
                          or approval_batch.
5. Config centralisation -- outside approval_config, only the package root
                          and approval_config.bridges may be imported.

All scanning is done via AST; these tests are read-only.
"""

import ast
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]


def _python_files(package: str) -> list[Path]:
    return sorted((ROOT / package).rglob("*.py"))


def _extract_imports(filepath: Path) -> list[tuple[int, str]]:
    tree = ast.parse(filepath.read_text(), filename=str(filepath))
    results: list[tuple[int, str]] = []
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            for alias in node.names:
                results.append((node.lineno, alias.name))
        elif isinstance(node, ast.ImportFrom) and node.module:
            results.append((node.lineno, node.module))
    return results


def _extract_attribute_calls(filepath: Path) -> list[tuple[int, str]]:
    tree = ast.parse(filepath.read_text(), filename=str(filepath))
    return [
        (node.lineno, f"{node.value.id}.{node.attr}")
        for node in ast.walk(tree)
        if isinstance(node, ast.Attribute) and isinstance(node.value, ast.Name)
    ]


def _matches_any(module: str, prefixes: tuple[str, ...]) -> bool:
    return any(module == p or module.startswith(f"{p}.") for p in prefixes)


def _violations(package: str, forbidden: tuple[str, ...]) -> list[str]:
    found = []
    for filepath in _python_files(package):
        for lineno, module in _extract_imports(filepath):
            if _matches_any(module, forbidden):
                found.append(f"  {filepath.relative_to(ROOT)}:{lineno} imports '{module}'")
    return found


class TestEnginePurity:
    FORBIDDEN_PREFIXES = (
        "sqlalchemy",
        "psycopg2",
        "sqlite3",
        "approval_kernel.models",
        "approval_kernel.db",
        "approval_kernel.services",
        "approval_kernel.selectors",
        "approval_batch",
        "approval_config",
    )

    FORBIDDEN_CALLS = frozenset({
        "datetime.now",
        "datetime.utcnow",
        "date.today",
        "time.time",
        "os.environ",
        "os.getenv",
    })

    def test_engine_files_have_no_forbidden_imports(self):
        violations = _violations("approval_engines", self.FORBIDDEN_PREFIXES)
        assert not violations, (
            "Engine purity violation:\n" + "\n".join(violations)
        )

    def test_no_impure_calls_in_engines(self):
        violations = [
            f"  {filepath.relative_to(ROOT)}:{lineno} calls '{qualname}'"
            for filepath in _python_files("approval_engines")
            for lineno, qualname in _extract_attribute_calls(filepath)
            if qualname in self.FORBIDDEN_CALLS
        ]
        assert not violations, (
            "Engines must take time as a parameter:\n" + "\n".join(violations)
        )


class TestDomainPurity:
    def test_domain_imports_only_domain(self):
        violations = _violations("approval_kernel/domain", (
            "sqlalchemy",
            "approval_kernel.db",
            "approval_kernel.models",
            "approval_kernel.services",
            "approval_kernel.selectors",
            "approval_engines",
            "approval_batch",
            "approval_config",
        ))
        assert not violations, "Domain purity violation:\n" + "\n".join(violations)


class TestKernelIndependence:
    def test_kernel_never_imports_outer_layers(self):
        violations = _violations("approval_kernel", ("approval_config", "approval_batch"))
        assert not violations, (
            "approval_kernel must receive settings as arguments:\n" + "\n".join(violations)
        )


class TestConfigCentralization:
    ALLOWED = {"approval_config", "approval_config.bridges", "approval_config.schema"}

    def test_only_public_config_surface_is_imported(self):
        violations = []
        for package in ("approval_kernel", "approval_engines", "approval_batch", "scripts"):
            for filepath in _python_files(package):
                for lineno, module in _extract_imports(filepath):
                    if module.startswith("approval_config") and module not in self.ALLOWED:
                        violations.append(
                            f"  {filepath.relative_to(ROOT)}:{lineno} imports '{module}'"
                        )
        assert not violations, (
            "Import settings via get_active_settings():\n" + "\n".join(violations)
        )
