from __future__ import annotations

import os
from typing import Any, Dict, List, Optional

from rites.core.errors import UnknownModuleError
from rites.core.modules.contract import ProvisioningModule


# Step behaviours: "ok" returns True, "fail" returns False, "raise" raises,
# None leaves the optional step (verify/rollback) undefined.
_STEP_BODY = {
    "ok": "return True",
    "fail": "return False",
    "raise": "raise RuntimeError({msg!r})",
}


def _step_src(step: str, behaviour: Optional[str]) -> str:
    if behaviour is None:
        return ""
    body = _STEP_BODY[behaviour].format(msg=f"{step} boom")
    return f"    def {step}(self):\n        _log({step!r})\n        {body}\n\n"


def write_module(
    modules_dir: str,
    name: str,
    *,
    validate: str = "ok",
    execute: str = "ok",
    verify: Optional[str] = None,
    rollback: Optional[str] = None,
    meta: Optional[Dict[str, Any]] = None,
) -> str:
    """
    Write a synthetic <modules_dir>/<name>.py. Every step invocation appends
    "<name>:<step>" to <modules_dir>/calls.log.
    """
    os.makedirs(modules_dir, exist_ok=True)
    meta = meta or {"name": name, "description": f"synthetic {name}", "version": "1.0.0", "dependencies": []}
    calls = os.path.join(modules_dir, "calls.log")
    src = (
        "from rites.core.modules.contract import ProvisioningModule\n\n"
        f"MODULE_META = {meta!r}\n"
        f"CALLS = {calls!r}\n\n\n"
        "def _log(step):\n"
        "    with open(CALLS, 'a', encoding='utf-8') as f:\n"
        f"        f.write({name!r} + ':' + step + '\\n')\n\n\n"
        "class Module(ProvisioningModule):\n"
        + _step_src("validate", validate)
        + _step_src("execute", execute)
        + _step_src("verify", verify)
        + _step_src("rollback", rollback)
    )
    path = os.path.join(modules_dir, f"{name}.py")
    with open(path, "w", encoding="utf-8") as f:
        f.write(src)
    return path


def read_calls(modules_dir: str) -> List[str]:
    path = os.path.join(modules_dir, "calls.log")
    if not os.path.exists(path):
        return []
    with open(path, "r", encoding="utf-8") as f:
        return [line.strip() for line in f if line.strip()]


def _behave(behaviour: str, step: str, calls: List[str]):
    def fn(self):
        calls.append(step)
        if behaviour == "raise":
            raise RuntimeError(f"{step} boom")
        if behaviour == "interrupt":
            raise KeyboardInterrupt()
        if behaviour == "hang":
            import time

            time.sleep(5)
        return behaviour == "ok"

    return fn


def make_module_class(
    *,
    validate: str = "ok",
    execute: str = "ok",
    verify: Optional[str] = None,
    rollback: Optional[str] = None,
    calls: Optional[List[str]] = None,
    name: str = "50-fake",
):
    """In-memory ProvisioningModule subclass with scripted step outcomes."""
    calls = calls if calls is not None else []
    attrs: Dict[str, Any] = {
        "MODULE_META": {"name": name, "description": "fake", "version": "0.0.1", "dependencies": []},
        "validate": _behave(validate, "validate", calls),
        "execute": _behave(execute, "execute", calls),
    }
    if verify is not None:
        attrs["verify"] = _behave(verify, "verify", calls)
    if rollback is not None:
        attrs["rollback"] = _behave(rollback, "rollback", calls)
    return type("FakeModule", (ProvisioningModule,), attrs)


class StaticRegistry:
    """Registry stand-in serving in-memory module classes (no files)."""

    def __init__(self, classes: Dict[str, Any]):
        self.classes = dict(classes)
        self.load_errors: Dict[str, Exception] = {}

    def list_modules(self) -> List[str]:
        return sorted(self.classes)

    def require(self, name: str) -> str:
        if name not in self.classes:
            raise UnknownModuleError(f"Unknown module: {name}", module=name)
        return name

    def load(self, name: str, ctx) -> ProvisioningModule:  # noqa: ANN001
        self.require(name)
        if name in self.load_errors:
            raise self.load_errors[name]
        return self.classes[name](ctx)
