"""
tests/test_discovery.py
-----------------------
Unit tests for core/discovery.py using model files in a temp directory.
Run with: python -m pytest tests/
"""
from __future__ import annotations

from pathlib import Path

import pytest

from core.discovery import discover_models, iter_model_files
from core.registry import MetadataRegistry

_HEADER = (
    "from core.model import Model\n"
    "from models.definition import ColumnDefinition, RelationDefinition\n\n\n"
)


@pytest.fixture
def models_dir(tmp_path: Path) -> Path:
    root = tmp_path / "app_models"
    (root / "blog").mkdir(parents=True)
    (root / "account.py").write_text(
        _HEADER
        + "class Account(Model):\n"
        "    __table__ = 'accounts'\n"
        "    __columns__ = {'email': ColumnDefinition('string', unique=True)}\n"
        "    __relations__ = {'entries': RelationDefinition('hasMany', target='Entry')}\n",
        encoding="utf-8",
    )
    (root / "blog" / "entry.py").write_text(
        _HEADER
        + "class BaseEntry(Model):\n"
        "    pass\n\n\n"
        "class Entry(BaseEntry):\n"
        "    __table__ = 'entries'\n"
        "    __columns__ = {'account_id': ColumnDefinition('string')}\n",
        encoding="utf-8",
    )
    (root / "_private.py").write_text("raise RuntimeError('must not be imported')\n", encoding="utf-8")
    (root / "notes.txt").write_text("not python", encoding="utf-8")
    return root


class TestDiscovery:
    def test_lists_python_files_recursively(self, models_dir: Path) -> None:
        names = [p.relative_to(models_dir).as_posix() for p in iter_model_files(models_dir)]
        assert names == ["account.py", "blog/entry.py"]

    def test_registers_models(self, models_dir: Path) -> None:
        registry = MetadataRegistry()
        found = discover_models(models_dir, registry)
        assert sorted(cls.__name__ for cls in found) == ["Account", "Entry"]
        assert registry.get_model_definition("Account").table_name == "accounts"
        assert "entries" in registry.get_model_definition("Account").relations
        assert registry.get_model_definition("Entry").columns["account_id"].type.value == "string"
        assert not registry.has_model("BaseEntry")

    def test_missing_directory(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            discover_models(tmp_path / "nope", MetadataRegistry())

    def test_broken_model_file_propagates(self, tmp_path: Path) -> None:
        root = tmp_path / "broken_models"
        root.mkdir()
        (root / "bad_model.py").write_text("def (:\n", encoding="utf-8")
        with pytest.raises(SyntaxError):
            discover_models(root, MetadataRegistry())
