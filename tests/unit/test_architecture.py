"""
Architectural tests: enforce layer boundaries.

- workspace/ only writes files: stdlib plus config
- adapters/ must not depend on tools/
- validation, config and logging_config are shared by every layer and depend on none of them
- tools/ wires everything together
"""

import ast
import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).parent.parent.parent

# Layers and their forbidden imports
LAYER_RULES = {
    "workspace": {"adapters", "tools"},
    "adapters": {"tools", "workspace"},
}

# models.py may name CdpSession under TYPE_CHECKING
SHARED_MODULES = ["validation.py", "config.py", "logging_config.py"]


def get_imports_from_file(filepath: Path) -> set[str]:
    """Extract all top-level import names from a Python file."""
    tree = ast.parse(filepath.read_text(encoding="utf-8"), filename=str(filepath))

    imports = set()
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            for alias in node.names:
                imports.add(alias.name.split(".")[0])
        elif isinstance(node, ast.ImportFrom):
            if node.module and node.level == 0:
                imports.add(node.module.split(".")[0])

    return imports


def get_python_files(directory: Path) -> list[Path]:
    if not directory.exists():
        return []
    return list(directory.glob("*.py"))


class TestLayerBoundaries:
    """Verify that layer boundaries are respected."""

    @pytest.mark.parametrize("layer,forbidden", list(LAYER_RULES.items()))
    def test_layer_does_not_import_forbidden(self, layer: str, forbidden: set[str]) -> None:
        violations = []

        for filepath in get_python_files(PROJECT_ROOT / layer):
            bad_imports = get_imports_from_file(filepath) & forbidden
            if bad_imports:
                violations.append(f"{filepath.name} imports {bad_imports}")

        assert not violations, (
            f"Layer '{layer}' has forbidden imports:\n" +
            "\n".join(f"  - {v}" for v in violations)
        )

    @pytest.mark.parametrize("module", SHARED_MODULES)
    def test_shared_modules_import_no_layer(self, module: str) -> None:
        imports = get_imports_from_file(PROJECT_ROOT / module)
        assert not imports & {"adapters", "tools", "workspace", "server", "cli"}

    def test_workspace_is_stdlib_only(self) -> None:
        """Deposit code touches the filesystem and nothing else."""
        stdlib_modules = getattr(sys, "stdlib_module_names", set())
        allowed = {"workspace", "config"}

        violations = []
        for filepath in get_python_files(PROJECT_ROOT / "workspace"):
            non_stdlib = get_imports_from_file(filepath) - stdlib_modules - allowed
            if non_stdlib:
                violations.append(f"{filepath.name} imports non-stdlib: {non_stdlib}")

        assert not violations, "\n".join(violations)


class TestPackageStructure:
    """Verify expected package structure exists."""

    @pytest.mark.parametrize("package", ["adapters", "tools", "workspace"])
    def test_package_has_init(self, package: str) -> None:
        init_file = PROJECT_ROOT / package / "__init__.py"
        assert init_file.exists(), f"{package}/__init__.py missing"

    def test_tests_is_not_package(self) -> None:
        """tests/ is collected from the project root, not imported as a package."""
        assert not (PROJECT_ROOT / "tests" / "__init__.py").exists()
