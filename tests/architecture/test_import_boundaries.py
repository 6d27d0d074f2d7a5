"""
Layer boundaries inside the commerce kernel.

- commerce_kernel/** never imports commerce_config (configuration is
  injected as kernel value objects)
- commerce_kernel/domain/** is pure: no SQLAlchemy, no db, models,
  services or selectors
- commerce_kernel/selectors/** never imports services
- commerce_kernel/models/** never imports services or selectors
"""

import ast
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]
KERNEL = ROOT / "commerce_kernel"


def _python_files(root: Path) -> list[Path]:
    return sorted(root.rglob("*.py"))


def _extract_imports(filepath: Path) -> list[tuple[int, str]]:
    tree = ast.parse(filepath.read_text(), filename=str(filepath))
    results: list[tuple[int, str]] = []
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            for alias in node.names:
                results.append((node.lineno, alias.name))
        elif isinstance(node, ast.ImportFrom):
            if node.module:
                results.append((node.lineno, node.module))
    return results


def _violations(root: Path, forbidden: tuple[str, ...]) -> list[str]:
    found: list[str] = []
    for filepath in _python_files(root):
        for lineno, module in _extract_imports(filepath):
            if any(module == f or module.startswith(f"{f}.") for f in forbidden):
                found.append(f"  {filepath.relative_to(ROOT)}:{lineno} imports '{module}'")
    return found


class TestKernelBoundaries:

    def test_kernel_does_not_import_config(self):
        violations = _violations(KERNEL, ("commerce_config",))
        assert not violations, "Kernel imports configuration:\n" + "\n".join(violations)

    def test_domain_is_pure(self):
        violations = _violations(
            KERNEL / "domain",
            (
                "sqlalchemy",
                "commerce_kernel.db",
                "commerce_kernel.models",
                "commerce_kernel.services",
                "commerce_kernel.selectors",
            ),
        )
        assert not violations, "Domain layer has I/O imports:\n" + "\n".join(violations)

    def test_selectors_do_not_import_services(self):
        violations = _violations(KERNEL / "selectors", ("commerce_kernel.services",))
        assert not violations, "Selectors import services:\n" + "\n".join(violations)

    def test_models_do_not_import_upper_layers(self):
        violations = _violations(
            KERNEL / "models",
            ("commerce_kernel.services", "commerce_kernel.selectors"),
        )
        assert not violations, "Models import upper layers:\n" + "\n".join(violations)

    def test_kernel_files_found(self):
        assert len(_python_files(KERNEL)) > 10
