from pathlib import Path

import pytest

tomllib = pytest.importorskip("tomllib")

PYPROJECT = Path(__file__).resolve().parent.parent.parent / "pyproject.toml"


def test_no_bare_modules_installed():
    data = tomllib.loads(PYPROJECT.read_text())
    setuptools_cfg = data["tool"]["setuptools"]
    assert setuptools_cfg["py-modules"] == []
    assert setuptools_cfg["packages"] == []
    assert "package-dir" not in setuptools_cfg


def test_runtime_dependencies_declared():
    deps = " ".join(tomllib.loads(PYPROJECT.read_text())["project"]["dependencies"])
    for name in ("mcp", "Pillow", "numpy", "openai"):
        assert name in deps
