from __future__ import annotations

"""
Module metadata without importing module code.

MODULE_META is read with an AST literal parse of the module file, either at
module level or inside the `Module` class body.
"""

import ast
import os
from typing import Any, Dict, Optional, Tuple

from pydantic import ValidationError

from rites.core.modules.models import ModuleMeta, ModuleMetadata, module_priority


def _literal_dict_from_node(node: ast.AST) -> Optional[Dict[str, Any]]:
    if not isinstance(node, ast.Dict):
        return None
    try:
        val = ast.literal_eval(node)
    except Exception:  # noqa: BLE001
        return None
    return val if isinstance(val, dict) else None


def _meta_in_body(body) -> Tuple[bool, Optional[Dict[str, Any]]]:
    for node in body:
        if isinstance(node, ast.Assign):
            if any(isinstance(t, ast.Name) and t.id == "MODULE_META" for t in node.targets):
                return True, _literal_dict_from_node(node.value)
        if isinstance(node, ast.AnnAssign):
            if isinstance(node.target, ast.Name) and node.target.id == "MODULE_META" and node.value is not None:
                return True, _literal_dict_from_node(node.value)
    return False, None


def read_module_meta_from_source(source_path: str) -> Tuple[Optional[Dict[str, Any]], str]:
    """
    Returns (meta, error). error is "" on success.
    """
    try:
        with open(source_path, "r", encoding="utf-8") as f:
            src = f.read()
    except OSError as e:
        return None, f"unreadable: {e}"
    try:
        tree = ast.parse(src, filename=source_path)
    except SyntaxError as e:
        return None, f"syntax error: {e.msg} (line {e.lineno})"

    found, meta = _meta_in_body(tree.body)
    if not found:
        for node in tree.body:
            if isinstance(node, ast.ClassDef) and node.name == "Module":
                found, meta = _meta_in_body(node.body)
                break
    if not found:
        return None, "MODULE_META not declared"
    if meta is None:
        return None, "MODULE_META is not a literal dict"
    return meta, ""


def get_module_metadata(path: str, *, name: Optional[str] = None, state=None) -> ModuleMetadata:
    name = name or os.path.splitext(os.path.basename(path))[0]
    base = {"name": name, "path": path, "priority": module_priority(name), "state": state}
    if not os.path.isfile(path):
        return ModuleMetadata(status="missing", error="module file not found", **base)

    raw, err = read_module_meta_from_source(path)
    if raw is None:
        return ModuleMetadata(status="invalid", error=err, **base)
    try:
        meta = ModuleMeta.model_validate({"name": name, **raw})
    except ValidationError as e:
        return ModuleMetadata(status="invalid", error=str(e.errors()[:3]), **base)

    error = ""
    if meta.name != name:
        error = f"declared name {meta.name!r} differs from file name"
    return ModuleMetadata(
        status="ok",
        description=meta.description,
        version=meta.version,
        dependencies=list(meta.dependencies),
        error=error,
        **base,
    )
