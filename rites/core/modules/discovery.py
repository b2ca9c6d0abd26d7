from __future__ import annotations

"""
Module registry: discovery, ordering, dependency gating and loading.

Discovery only lists filenames; nothing is imported until load(). Order is the
lexicographic filename order, which equals priority order because every name
starts with a two-digit priority.
"""

import importlib.util
import inspect
import os
import re
import sys
from typing import List, Optional

from rites.core.errors import ConfigError, ModuleLoadError, UnknownModuleError
from rites.core.modules.contract import ModuleContext, ProvisioningModule
from rites.core.modules.introspect import get_module_metadata
from rites.core.modules.models import MODULE_NAME_RE, ModuleMetadata, ModuleState, module_priority
from rites.core.modules.state import ModuleStateStore


_IMPORT_NAME = re.compile(r"[^A-Za-z0-9_]+")


class ModuleRegistry:
    def __init__(self, *, modules_dir: str, logger=None):
        self.modules_dir = os.path.abspath(modules_dir)
        self.logger = logger

    def list_modules(self) -> List[str]:
        if not os.path.isdir(self.modules_dir):
            raise ConfigError(f"Module directory not found: {self.modules_dir}", modules_dir=self.modules_dir)
        names: List[str] = []
        for fn in sorted(os.listdir(self.modules_dir)):
            if not fn.endswith(".py"):
                continue
            name = fn[: -len(".py")]
            if not MODULE_NAME_RE.match(name):
                continue
            if not os.path.isfile(os.path.join(self.modules_dir, fn)):
                continue
            names.append(name)
        return names

    def path_for(self, name: str) -> str:
        return os.path.join(self.modules_dir, f"{name}.py")

    def require(self, name: str) -> str:
        if not MODULE_NAME_RE.match(str(name or "")):
            raise UnknownModuleError(f"Invalid module name: {name!r} (expected NN-slug)", module=name)
        if name not in self.list_modules():
            raise UnknownModuleError(f"Unknown module: {name}", module=name, modules_dir=self.modules_dir)
        return self.path_for(name)

    def module_dependencies_met(self, name: str, store: ModuleStateStore, *, skipped_satisfies: bool = True) -> bool:
        """
        True when every discovered module with a lower priority than `name` is
        completed (or skipped, when skipped_satisfies). Declared dependency lists
        are informational only.
        """
        if module_priority(name) is None:
            return False
        return not self.unmet_dependencies(name, store, skipped_satisfies=skipped_satisfies)

    def unmet_dependencies(self, name: str, store: ModuleStateStore, *, skipped_satisfies: bool = True) -> List[str]:
        prio = module_priority(name)
        out: List[str] = []
        if prio is None:
            return out
        for other in self.list_modules():
            other_prio = module_priority(other)
            if other_prio is None or other_prio >= prio:
                continue
            if skipped_satisfies and store.is_skipped(other):
                continue
            if store.get(other) != ModuleState.completed:
                out.append(other)
        return out

    def metadata(self, name: str, store: Optional[ModuleStateStore] = None) -> ModuleMetadata:
        return get_module_metadata(self.path_for(name), name=name, state=store.get(name) if store is not None else None)

    def load(self, name: str, ctx: ModuleContext) -> ProvisioningModule:
        """
        Import the module file fresh and construct its Module(ctx).
        Raises ModuleLoadError for anything malformed.
        """
        path = self.require(name)
        import_name = "rites_module_" + _IMPORT_NAME.sub("_", name)
        spec = importlib.util.spec_from_file_location(import_name, path)
        if spec is None or spec.loader is None:
            raise ModuleLoadError(f"Cannot load module {name}", module=name, path=path)
        mod = importlib.util.module_from_spec(spec)
        sys.modules[import_name] = mod
        try:
            spec.loader.exec_module(mod)
        except Exception as e:  # noqa: BLE001
            raise ModuleLoadError(f"Module {name} failed to import: {type(e).__name__}: {e}", module=name, path=path) from e
        finally:
            sys.modules.pop(import_name, None)

        cls = getattr(mod, "Module", None)
        if not (inspect.isclass(cls) and issubclass(cls, ProvisioningModule)):
            raise ModuleLoadError(f"Module {name} does not define a Module class deriving from ProvisioningModule", module=name, path=path)
        meta = getattr(mod, "MODULE_META", None)
        if isinstance(meta, dict) and not cls.__dict__.get("MODULE_META"):
            cls.MODULE_META = meta
        if not cls.MODULE_META:
            cls.MODULE_META = {"name": name}
        try:
            instance = cls(ctx)
        except Exception as e:  # noqa: BLE001
            raise ModuleLoadError(f"Module {name} could not be constructed: {type(e).__name__}: {e}", module=name, path=path) from e
        if self.logger and str(cls.MODULE_META.get("name") or name) != name:
            self.logger.warning(f"[registry] {name}: MODULE_META name {cls.MODULE_META.get('name')!r} differs from file name")
        return instance
