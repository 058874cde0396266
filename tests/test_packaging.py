import re
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent


def test_pyproject_installs_root_modules_without_readme():
    text = (ROOT / "pyproject.toml").read_text()
    assert not re.search(r"^readme\s*=", text, re.MULTILINE)
    for module in ("config", "main"):
        assert f'"{module}"' in text
        assert (ROOT / f"{module}.py").exists()
