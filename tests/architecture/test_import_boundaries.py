"""
Import-boundary enforcement.

1. Engine purity      -- supply_engines/** may not import DB, ORM, models,
                         kernel services, selectors, services or config.
2. Engine no-impure   -- supply_engines/** may not read the wall clock or
                         the environment.
3. Kernel direction   -- supply_kernel/** may not import supply_services
                         or supply_engines.
4. Config centralisation -- nothing outside supply_config imports its loader.
5. Selectors are read-only -- selectors never import kernel services.

All scanning is done via AST; these tests are read-only.
"""

import ast
import glob
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]


def _python_files(package: str) -> list[str]:
    return sorted(glob.glob(f"{ROOT / package}/**/*.py", recursive=True))


def _extract_imports(filepath: str) -> list[tuple[int, str]]:
    """Return (line_number, module_string) for every import in *filepath*."""
    tree = ast.parse(Path(filepath).read_text(), filename=filepath)

    results: list[tuple[int, str]] = []
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            for alias in node.names:
                results.append((node.lineno, alias.name))
        elif isinstance(node, ast.ImportFrom) and node.module:
            results.append((node.lineno, node.module))
    return results


def _matches_any(module: str, prefixes: tuple[str, ...]) -> bool:
    return any(module == p or module.startswith(f"{p}.") for p in prefixes)


def _violations(package: str, forbidden: tuple[str, ...]) -> list[str]:
    found = []
    for filepath in _python_files(package):
        for lineno, module in _extract_imports(filepath):
            if _matches_any(module, forbidden):
                found.append(f"  {Path(filepath).relative_to(ROOT)}:{lineno} imports '{module}'")
    return found


class TestEnginePurity:
    FORBIDDEN_PREFIXES = (
        "sqlalchemy",
        "psycopg2",
        "sqlite3",
        "supply_kernel.db",
        "supply_kernel.models",
        "supply_kernel.services",
        "supply_kernel.selectors",
        "supply_services",
        "supply_config",
    )

    def test_engine_files_have_no_forbidden_imports(self):
        violations = _violations("supply_engines", self.FORBIDDEN_PREFIXES)

        assert not violations, (
            "supply_engines/** must stay pure:\n" + "\n".join(violations)
        )


class TestEngineNoImpureFunctions:
    IMPURE = {"datetime.now", "datetime.utcnow", "date.today", "time.time", "os.environ", "os.getenv"}

    def test_no_clock_or_environment_access(self):
        violations = []
        for filepath in _python_files("supply_engines"):
            tree = ast.parse(Path(filepath).read_text(), filename=filepath)
            for node in ast.walk(tree):
                if isinstance(node, ast.Attribute) and isinstance(node.value, ast.Name):
                    ref = f"{node.value.id}.{node.attr}"
                    if ref in self.IMPURE:
                        violations.append(f"  {filepath}:{node.lineno} uses {ref}")

        assert not violations, "\n".join(violations)


class TestKernelDirection:
    def test_kernel_does_not_import_upward(self):
        violations = _violations("supply_kernel", ("supply_services", "supply_engines"))

        assert not violations, (
            "supply_kernel/** must not depend on higher layers:\n" + "\n".join(violations)
        )

    def test_config_imports_only_kernel_logging(self):
        violations = _violations(
            "supply_config",
            (
                "supply_kernel.db",
                "supply_kernel.models",
                "supply_kernel.services",
                "supply_kernel.selectors",
                "supply_services",
                "supply_engines",
            ),
        )

        assert not violations, "\n".join(violations)


class TestConfigCentralisation:
    INTERNAL = ("supply_config.loader",)

    def test_only_package_root_is_imported(self):
        violations = []
        for package in ("supply_kernel", "supply_engines", "supply_services"):
            violations.extend(_violations(package, self.INTERNAL))

        assert not violations, (
            "Import get_active_config/load_config from supply_config:\n" + "\n".join(violations)
        )


class TestSelectorsReadOnly:
    def test_selectors_do_not_import_services(self):
        violations = _violations("supply_kernel/selectors", ("supply_kernel.services",))

        assert not violations, "\n".join(violations)
