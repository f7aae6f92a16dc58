from __future__ import annotations

from pathlib import Path

PYPROJECT = Path(__file__).resolve().parent.parent / "pyproject.toml"


def test_project_metadata() -> None:
    """The package description is not taken from design documents."""
    text = PYPROJECT.read_text()
    assert 'name = "dne"' in text
    assert "readme" not in text
    assert 'dne = "dne.cli:main"' in text
    assert '"lark>=1.1"' in text
