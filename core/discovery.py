"""
core/discovery.py
-----------------
Model discovery: import every ``*.py`` file below a models directory and
register the :class:`Model` subclasses each one defines.

Design Decisions:
    * Files are loaded with ``importlib`` under a synthetic module name
      derived from their relative path, so two ``user.py`` files in
      different folders do not collide.
    * Only classes defined in the scanned module are registered; models
      imported from elsewhere are left to their own file.
    * Files and folders starting with ``_`` or ``.`` are skipped.
    * Import errors propagate; the migration generator wraps them.
"""
from __future__ import annotations

import importlib.util
import inspect
import sys
from pathlib import Path
from types import ModuleType

from core.model import Model
from core.registry import MetadataRegistry
from logger import get_logger

log = get_logger(__name__)

_MODULE_PREFIX = "pgrecord_models"


def iter_model_files(models_path: Path | str) -> list[Path]:
    """Return every importable ``.py`` file below *models_path*, sorted."""
    root = Path(models_path)
    if not root.is_dir():
        raise FileNotFoundError(f"Models directory '{root}' does not exist")
    files = []
    for path in sorted(root.rglob("*.py")):
        relative = path.relative_to(root)
        if any(part.startswith(("_", ".")) for part in relative.parts):
            continue
        files.append(path)
    return files


def _import_file(root: Path, path: Path) -> ModuleType:
    relative = path.relative_to(root).with_suffix("")
    module_name = ".".join((_MODULE_PREFIX, *relative.parts))
    if module_name in sys.modules:
        return sys.modules[module_name]

    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        raise ImportError(f"Cannot load model file '{path}'")
    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    try:
        spec.loader.exec_module(module)
    except BaseException:
        sys.modules.pop(module_name, None)
        raise
    return module


def discover_models(models_path: Path | str, registry: MetadataRegistry) -> list[type[Model]]:
    """
    Import every model file under *models_path* and register its models.

    Returns:
        The registered model classes in discovery order.
    """
    root = Path(models_path)
    found: list[type[Model]] = []
    for path in iter_model_files(root):
        module = _import_file(root, path)
        for _, obj in inspect.getmembers(module, inspect.isclass):
            if obj is Model or not issubclass(obj, Model):
                continue
            if obj.__module__ != module.__name__ or not obj.__dict__.get("__table__"):
                continue
            obj.register(registry)
            found.append(obj)
            log.debug("Discovered model %s in %s", obj.model_name(), path)
    log.info("Discovered %d model(s) under '%s'.", len(found), root)
    return found
